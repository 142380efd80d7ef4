from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from fleet_inventory.core.dependencies import get_vehicle_service
from fleet_inventory.schemas.vehicle import MediaRemoveRequest, MessageOut, VehicleOut
from fleet_inventory.services.media_manager import MediaUpload
from fleet_inventory.services.validators import BusinessRules, coerce_form_fields
from fleet_inventory.services.vehicle_service import VehicleService

router = APIRouter(prefix="/api/vehicles", tags=["vehicles"])


async def _read_uploads(media: Optional[List[UploadFile]], service: VehicleService) -> List[MediaUpload]:
    uploads = []
    for upload in media or []:
        # browsers send an empty part when no file was picked
        if not upload.filename:
            continue
        # reject oversized or disallowed files before buffering them
        if upload.size is not None:
            service.media.validate(upload.size, upload.content_type)
        content = await upload.read()
        uploads.append(MediaUpload(content=content, filename=upload.filename, content_type=upload.content_type or ""))
    return uploads


def _form_fields(make, model, year, license_plate, vin, mileage, price, status) -> dict:
    return coerce_form_fields({
        "make": make,
        "model": model,
        "year": year,
        "licensePlate": license_plate,
        "vin": vin,
        "mileage": mileage,
        "price": price,
        "status": status,
    })


@router.get("", response_model=List[VehicleOut])
async def list_vehicles(
    search: str = "",
    make: str = "",
    year: str = "",
    service: VehicleService = Depends(get_vehicle_service),
):
    """List vehicles, newest first; any non-empty parameter switches to search."""
    return await service.list_vehicles(search=search.strip(), make=make.strip(), year=year.strip())


@router.get("/{vehicle_id}", response_model=VehicleOut)
async def get_vehicle(vehicle_id: str, service: VehicleService = Depends(get_vehicle_service)):
    return await service.get_vehicle(vehicle_id)


@router.post("", response_model=VehicleOut, status_code=201)
async def create_vehicle(
    make: Optional[str] = Form(None),
    model: Optional[str] = Form(None),
    year: Optional[str] = Form(None),
    license_plate: Optional[str] = Form(None, alias="licensePlate"),
    vin: Optional[str] = Form(None),
    mileage: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    media: Optional[List[UploadFile]] = File(None, description=f"Up to {BusinessRules.MAX_FILES_PER_REQUEST} images or videos"),
    service: VehicleService = Depends(get_vehicle_service),
):
    fields = _form_fields(make, model, year, license_plate, vin, mileage, price, status)
    uploads = await _read_uploads(media, service)
    return await service.create_vehicle(fields, uploads)


@router.patch("/{vehicle_id}", response_model=VehicleOut)
async def update_vehicle(
    vehicle_id: str,
    make: Optional[str] = Form(None),
    model: Optional[str] = Form(None),
    year: Optional[str] = Form(None),
    license_plate: Optional[str] = Form(None, alias="licensePlate"),
    vin: Optional[str] = Form(None),
    mileage: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    media: Optional[List[UploadFile]] = File(None),
    service: VehicleService = Depends(get_vehicle_service),
):
    """Partial update; uploaded media is appended to the existing files."""
    fields = _form_fields(make, model, year, license_plate, vin, mileage, price, status)
    uploads = await _read_uploads(media, service)
    return await service.update_vehicle(vehicle_id, fields, uploads)


@router.delete("/{vehicle_id}", response_model=MessageOut)
async def delete_vehicle(vehicle_id: str, service: VehicleService = Depends(get_vehicle_service)):
    await service.delete_vehicle(vehicle_id)
    return MessageOut(message="Vehicle deleted successfully")


@router.delete("/{vehicle_id}/media", response_model=VehicleOut)
async def remove_media(
    vehicle_id: str,
    body: MediaRemoveRequest,
    service: VehicleService = Depends(get_vehicle_service),
):
    return await service.remove_media(vehicle_id, body.file_path)
