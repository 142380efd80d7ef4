import logging
from typing import Any, Dict, List, Optional, Sequence

from starlette.concurrency import run_in_threadpool

from fleet_inventory.core.metrics import track_performance
from fleet_inventory.exceptions import NotFoundError, ValidationError
from fleet_inventory.schemas.vehicle import VehicleFilters, VehicleOut
from fleet_inventory.services.media_manager import MediaAttachmentManager, MediaUpload
from fleet_inventory.services.validators import BusinessRules
from fleet_inventory.services.vehicle_store import VehicleStore

logger = logging.getLogger(__name__)


class VehicleService:
    """
    Orchestrates the record store and the media manager for each request.

    Media is always persisted before the record call that references it. If
    that call fails, the freshly written files are purged again, so a
    rejected request never leaves orphaned uploads behind. File writes and
    unlinks run in the threadpool; store calls stay on the event loop.

    Deletion is two-phase: the record goes first, then its files are purged
    as best-effort cleanup. An unlink failure is logged and does not fail
    the request; a half-done delete is never rolled back.
    """

    def __init__(self, store: VehicleStore, media: MediaAttachmentManager):
        self.store = store
        self.media = media

    @staticmethod
    def _check_upload_count(uploads: Sequence[MediaUpload]) -> None:
        if len(uploads) > BusinessRules.MAX_FILES_PER_REQUEST:
            raise ValidationError.for_field(
                "media", f"At most {BusinessRules.MAX_FILES_PER_REQUEST} files per request"
            )

    @track_performance(service_name="VehicleService")
    async def list_vehicles(self, search: str = "", make: str = "", year: str = "") -> List[VehicleOut]:
        if search or make or year:
            filters = VehicleFilters(make=make or None, year=year or None)
            return await self.store.search(search, filters)
        return await self.store.list()

    @track_performance(service_name="VehicleService")
    async def get_vehicle(self, vehicle_id: str) -> VehicleOut:
        vehicle = await self.store.get(vehicle_id)
        if vehicle is None:
            raise NotFoundError()
        return vehicle

    @track_performance(service_name="VehicleService")
    async def create_vehicle(
        self, fields: Dict[str, Any], uploads: Optional[Sequence[MediaUpload]] = None
    ) -> VehicleOut:
        uploads = list(uploads or [])
        self._check_upload_count(uploads)

        references = await run_in_threadpool(self.media.store_many, uploads)
        try:
            return await self.store.create({**fields, "media_files": references})
        except Exception:
            await run_in_threadpool(self.media.purge, references)
            raise

    @track_performance(service_name="VehicleService")
    async def update_vehicle(
        self, vehicle_id: str, fields: Dict[str, Any], uploads: Optional[Sequence[MediaUpload]] = None
    ) -> VehicleOut:
        uploads = list(uploads or [])
        self._check_upload_count(uploads)

        # 404 before any bytes hit the disk
        if await self.store.get(vehicle_id) is None:
            raise NotFoundError()

        references = await run_in_threadpool(self.media.store_many, uploads)
        try:
            vehicle = None
            if fields or not references:
                vehicle = await self.store.update(vehicle_id, fields)
                if vehicle is None:
                    raise NotFoundError()
            if references:
                vehicle = await self.media.attach(vehicle_id, references)
            return vehicle
        except Exception:
            await run_in_threadpool(self.media.purge, references)
            raise

    @track_performance(service_name="VehicleService")
    async def delete_vehicle(self, vehicle_id: str) -> None:
        vehicle = await self.store.get(vehicle_id)
        if vehicle is None:
            raise NotFoundError()

        if not await self.store.delete(vehicle_id):
            raise NotFoundError()

        removed = await run_in_threadpool(self.media.purge, vehicle.media_files)
        if removed < len(vehicle.media_files):
            logger.warning(
                "Vehicle deleted with media files left behind or already gone",
                extra={"vehicle_id": vehicle_id, "expected": len(vehicle.media_files), "removed": removed},
            )

    @track_performance(service_name="VehicleService")
    async def remove_media(self, vehicle_id: str, reference: str) -> VehicleOut:
        return await self.media.detach(vehicle_id, reference)
