from contextlib import asynccontextmanager
import logging
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded

from fleet_inventory import __version__
from fleet_inventory.core.environment import (
    get_cors_origins,
    get_database_url,
    get_log_level,
    get_port,
    get_store_backend,
    get_upload_dir,
)
from fleet_inventory.core.logging import setup_logging
from fleet_inventory.exceptions import (
    FleetInventoryError,
    fleet_exception_handler,
    request_validation_exception_handler,
    unhandled_exception_handler,
)
from fleet_inventory.middleware.rate_limit import build_limiter, custom_rate_limit_exceeded, enforce_rate_limit
from fleet_inventory.routers import health, metrics, vehicles
from fleet_inventory.services.media_manager import MediaAttachmentManager, PUBLIC_PREFIX
from fleet_inventory.services.sql_vehicle_store import SqlVehicleStore
from fleet_inventory.services.vehicle_service import VehicleService
from fleet_inventory.services.vehicle_store import InMemoryVehicleStore, VehicleStore

logger = logging.getLogger(__name__)


class PublicStaticFiles(StaticFiles):
    """Static files readable from any origin, with or without an Origin header."""

    async def check_config(self) -> None:
        # the upload directory may not exist until the first file is stored
        Path(self.directory).mkdir(parents=True, exist_ok=True)
        await super().check_config()

    def file_response(self, *args, **kwargs):
        response = super().file_response(*args, **kwargs)
        response.headers["Access-Control-Allow-Origin"] = "*"
        return response


def build_store(backend: Optional[str] = None) -> VehicleStore:
    backend = backend or get_store_backend()
    if backend == "memory":
        return InMemoryVehicleStore()
    if backend == "sql":
        return SqlVehicleStore(get_database_url())
    raise ValueError(f"Unknown vehicle store backend: {backend!r}")


def create_app(
    store: Optional[VehicleStore] = None,
    upload_dir: Optional[Path] = None,
    rate_limit: Optional[str] = None,
    rate_limit_enabled: Optional[bool] = None,
) -> FastAPI:
    """
    Builds the API with its own store and upload directory.

    Nothing here is global: each call wires a fresh limiter, media manager
    and service, which lets tests run isolated apps side by side.
    """
    store = store or build_store()
    upload_dir = Path(upload_dir) if upload_dir else get_upload_dir()
    media = MediaAttachmentManager(store, upload_dir)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        media.ensure_upload_dir()
        await store.startup()
        logger.info(
            "Fleet inventory API started",
            extra={"store": type(store).__name__, "upload_dir": str(upload_dir)},
        )
        try:
            yield
        finally:
            # teardown on shutdown
            await store.shutdown()

    app = FastAPI(
        title="Fleet Inventory API",
        version=__version__,
        lifespan=lifespan,
        dependencies=[Depends(enforce_rate_limit)],
    )

    app.state.vehicle_store = store
    app.state.vehicle_service = VehicleService(store, media)
    app.state.limiter = build_limiter(rate_limit, rate_limit_enabled)

    # Register exception handlers
    app.add_exception_handler(FleetInventoryError, fleet_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, custom_rate_limit_exceeded)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(),
        allow_methods=["*"],   # Allows POST, PATCH, DELETE, OPTIONS, etc
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(metrics.router)
    app.include_router(vehicles.router)
    app.mount(PUBLIC_PREFIX, PublicStaticFiles(directory=upload_dir, check_dir=False), name="uploads")

    return app


setup_logging(get_log_level())
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_port())
