import time
import uuid
import logging
from functools import wraps
from typing import Optional

from fleet_inventory.core.prometheus_metrics import prometheus_collector

logger = logging.getLogger(__name__)


def track_performance(service_name: Optional[str] = None):
    """
    Decorator to automatically track method performance

    Usage:
    @track_performance(service_name="VehicleService")
    async def my_method(self, param1, param2):
        # method implementation
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            # Generate correlation ID
            correlation_id = str(uuid.uuid4())

            # Extract service name and method name
            actual_service_name = service_name or (args[0].__class__.__name__ if args else "Unknown")
            method_name = func.__name__

            # Start timing
            start_time = time.perf_counter()
            success = False
            error_message = None

            try:
                result = await func(*args, **kwargs)
                success = True
                return result

            except Exception as e:
                error_message = str(e)
                logger.warning(f"Error in {actual_service_name}.{method_name}: {e}")
                raise

            finally:
                duration_seconds = time.perf_counter() - start_time

                prometheus_collector.record_operation(
                    service_name=actual_service_name,
                    method_name=method_name,
                    duration_seconds=duration_seconds,
                    success=success
                )

                # Log structured metrics
                logger.info(
                    f"Method executed: {actual_service_name}.{method_name}",
                    extra={
                        'correlation_id': correlation_id,
                        'service_name': actual_service_name,
                        'method_name': method_name,
                        'duration_ms': round(duration_seconds * 1000, 3),
                        'success': success,
                        'error_message': error_message
                    }
                )

        return wrapper
    return decorator
