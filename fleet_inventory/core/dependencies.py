from fastapi import Request

from fleet_inventory.services.vehicle_service import VehicleService


def get_vehicle_service(request: Request) -> VehicleService:
    """Service wired up by create_app and kept on app.state."""
    return request.app.state.vehicle_service
