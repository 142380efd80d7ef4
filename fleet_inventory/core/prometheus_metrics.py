import logging
from prometheus_client import Counter, Histogram, Info, generate_latest
from prometheus_client.core import CollectorRegistry

from fleet_inventory import __version__
from fleet_inventory.core.environment import is_production

logger = logging.getLogger(__name__)

# Prometheus Registry
REGISTRY = CollectorRegistry()

# Service Metrics
vehicle_operations_total = Counter(
    'fleet_vehicle_operations_total',
    'Total vehicle service operations',
    ['status', 'service', 'method'],
    registry=REGISTRY
)

vehicle_operation_duration_seconds = Histogram(
    'fleet_vehicle_operation_duration_seconds',
    'Vehicle service operation duration in seconds',
    ['service', 'method'],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.0],
    registry=REGISTRY
)

# Media Metrics
media_files_stored_total = Counter(
    'fleet_media_files_stored_total',
    'Uploaded media files written to disk',
    ['media_type'],
    registry=REGISTRY
)

media_bytes_stored_total = Counter(
    'fleet_media_bytes_stored_total',
    'Bytes of uploaded media written to disk',
    registry=REGISTRY
)

media_files_removed_total = Counter(
    'fleet_media_files_removed_total',
    'Media files deleted from disk',
    registry=REGISTRY
)

media_uploads_rejected_total = Counter(
    'fleet_media_uploads_rejected_total',
    'Uploads rejected before persistence',
    ['reason'],
    registry=REGISTRY
)

system_info = Info(
    'fleet_inventory_info',
    'System information',
    registry=REGISTRY
)


class PrometheusMetricsCollector:
    """Thin facade over the fleet inventory Prometheus metrics"""

    def __init__(self):
        system_info.info({
            'version': __version__,
            'environment': 'production' if is_production() else 'development',
            'service': 'fleet-inventory'
        })

    def record_operation(
        self,
        service_name: str,
        method_name: str,
        duration_seconds: float,
        success: bool
    ):
        status = 'success' if success else 'error'

        vehicle_operations_total.labels(
            status=status,
            service=service_name,
            method=method_name
        ).inc()

        vehicle_operation_duration_seconds.labels(
            service=service_name,
            method=method_name
        ).observe(duration_seconds)

    def record_media_stored(self, media_type: str, size_bytes: int):
        media_files_stored_total.labels(media_type=media_type).inc()
        media_bytes_stored_total.inc(size_bytes)

    def record_media_removed(self, count: int = 1):
        if count:
            media_files_removed_total.inc(count)

    def record_upload_rejected(self, reason: str):
        media_uploads_rejected_total.labels(reason=reason).inc()

    def get_prometheus_metrics(self) -> bytes:
        """Get Prometheus metrics in text format"""
        return generate_latest(REGISTRY)

# Global instance
prometheus_collector = PrometheusMetricsCollector()
