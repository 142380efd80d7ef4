from datetime import datetime, timezone
from fastapi import APIRouter, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST
from typing import Dict, Any

from fleet_inventory.core.environment import is_production
from fleet_inventory.core.prometheus_metrics import prometheus_collector

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("/health")
async def metrics_health() -> Dict[str, Any]:
    """Health check for metrics system"""
    return {
        "status": "healthy",
        "metrics_system": "operational",
        "environment": "production" if is_production() else "development",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/prometheus")  # Public endpoint for Prometheus scraping
async def prometheus_metrics():
    """Prometheus metrics endpoint for scraping"""
    try:
        metrics_data = prometheus_collector.get_prometheus_metrics()
        return Response(content=metrics_data, media_type=CONTENT_TYPE_LATEST)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to generate Prometheus metrics: {str(e)}")
