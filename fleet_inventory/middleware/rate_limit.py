from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse
from prometheus_client import Counter

from fleet_inventory.core.environment import get_rate_limit, is_rate_limit_enabled
from fleet_inventory.core.prometheus_metrics import REGISTRY

# Metric for monitoring
rate_limit_exceeded_counter = Counter(
    'fleet_rate_limit_exceeded_total',
    'Total rate limit violations',
    ['endpoint'],
    registry=REGISTRY
)


def build_limiter(default_limit: str = None, enabled: bool = None) -> Limiter:
    """One limiter per app, so separately built apps keep separate counters."""
    return Limiter(
        key_func=get_remote_address,
        default_limits=[default_limit or get_rate_limit()],
        enabled=is_rate_limit_enabled() if enabled is None else enabled,
        # storage_uri="redis://localhost:6379" once several workers share limits
    )


async def enforce_rate_limit(request: Request):
    """
    App-wide dependency applying the limiter's default limits.

    Runs after routing, so the matched endpoint is known and
    ``limiter.exempt`` still works. Raises RateLimitExceeded when the
    client is over its limit.
    """
    limiter: Limiter = request.app.state.limiter
    limiter._check_request_limit(request, request.scope.get("endpoint"), True)


def custom_rate_limit_exceeded(request: Request, exc: RateLimitExceeded):
    rate_limit_exceeded_counter.labels(endpoint=request.url.path).inc()

    return JSONResponse(
        status_code=429,
        content={"message": f"Rate limit exceeded: {exc.detail}. Please try again later."},
    )
