"""
Record store for vehicle entities.

``VehicleStore`` is the contract shared by every backend. The default
``InMemoryVehicleStore`` keeps vehicles in a process-local dict; the
SQLAlchemy backend lives in ``sql_vehicle_store``. A store is built once at
process start and passed to the services that need it.
"""

import itertools
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from fleet_inventory.exceptions import DuplicateLicensePlateError, ValidationError
from fleet_inventory.schemas.vehicle import VehicleCreate, VehicleFilters, VehicleOut, VehicleUpdate
from fleet_inventory.services.validators import BusinessRules

logger = logging.getLogger(__name__)

CreateFields = Union[VehicleCreate, Mapping[str, Any]]
UpdateFields = Union[VehicleUpdate, Mapping[str, Any]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_updated_at(previous: datetime) -> datetime:
    """Current time, nudged forward so updatedAt strictly increases."""
    now = utcnow()
    if previous.tzinfo is None:
        previous = previous.replace(tzinfo=timezone.utc)
    if now <= previous:
        now = previous + timedelta(microseconds=1)
    return now


def validate_create(fields: CreateFields) -> VehicleCreate:
    if isinstance(fields, VehicleCreate):
        return fields
    try:
        return VehicleCreate.model_validate(dict(fields))
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e)


def validate_update(fields: UpdateFields) -> VehicleUpdate:
    if isinstance(fields, VehicleUpdate):
        return fields
    try:
        return VehicleUpdate.model_validate(dict(fields))
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e)


def matches_search(vehicle: VehicleOut, query: str, filters: VehicleFilters) -> bool:
    if query:
        needle = query.lower()
        haystacks = (vehicle.make, vehicle.model, vehicle.license_plate)
        if not any(needle in value.lower() for value in haystacks):
            return False
    if filters.make and vehicle.make.lower() != filters.make.lower():
        return False
    if filters.year and str(vehicle.year) != filters.year:
        return False
    return True


class VehicleStore(ABC):
    """Authoritative set of vehicles with create/read/update/delete/search."""

    async def startup(self) -> None:
        """Acquire backend resources (schema, connections)."""

    async def shutdown(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def create(self, fields: CreateFields) -> VehicleOut:
        ...

    @abstractmethod
    async def get(self, vehicle_id: str) -> Optional[VehicleOut]:
        ...

    @abstractmethod
    async def list(self) -> List[VehicleOut]:
        ...

    @abstractmethod
    async def update(self, vehicle_id: str, fields: UpdateFields) -> Optional[VehicleOut]:
        ...

    @abstractmethod
    async def delete(self, vehicle_id: str) -> bool:
        ...

    @abstractmethod
    async def search(self, query: str = "", filters: Optional[VehicleFilters] = None) -> List[VehicleOut]:
        ...


class InMemoryVehicleStore(VehicleStore):
    """
    Process-local store.

    No method awaits between reading and writing the map, so each call is
    atomic with respect to other requests on the same event loop. Returned
    vehicles are copies; mutating them does not touch the stored record.
    """

    def __init__(self):
        self._vehicles: Dict[str, VehicleOut] = {}
        # insertion sequence, breaks createdAt ties newest-first
        self._sequence: Dict[str, int] = {}
        self._counter = itertools.count()

    def _newest_first(self, vehicles: Iterable[VehicleOut]) -> List[VehicleOut]:
        return sorted(vehicles, key=lambda v: (v.created_at, self._sequence[v.id]), reverse=True)

    def _ensure_unique_plate(self, license_plate: str, exclude_id: Optional[str] = None) -> None:
        key = BusinessRules.normalize_license_plate(license_plate)
        for vehicle in self._vehicles.values():
            if vehicle.id == exclude_id:
                continue
            if BusinessRules.normalize_license_plate(vehicle.license_plate) == key:
                raise DuplicateLicensePlateError(license_plate)

    async def create(self, fields: CreateFields) -> VehicleOut:
        data = validate_create(fields)
        self._ensure_unique_plate(data.license_plate)

        now = utcnow()
        vehicle = VehicleOut(
            id=str(uuid.uuid4()),
            **data.model_dump(),
            created_at=now,
            updated_at=now,
        )
        self._vehicles[vehicle.id] = vehicle
        self._sequence[vehicle.id] = next(self._counter)
        logger.info("Vehicle created", extra={"vehicle_id": vehicle.id})
        return vehicle.model_copy(deep=True)

    async def get(self, vehicle_id: str) -> Optional[VehicleOut]:
        vehicle = self._vehicles.get(vehicle_id)
        return vehicle.model_copy(deep=True) if vehicle else None

    async def list(self) -> List[VehicleOut]:
        return [v.model_copy(deep=True) for v in self._newest_first(self._vehicles.values())]

    async def update(self, vehicle_id: str, fields: UpdateFields) -> Optional[VehicleOut]:
        changes = validate_update(fields).changes()
        current = self._vehicles.get(vehicle_id)
        if current is None:
            return None

        if "license_plate" in changes:
            self._ensure_unique_plate(changes["license_plate"], exclude_id=vehicle_id)
        if "media_files" in changes:
            changes["media_files"] = list(changes["media_files"])

        changes["updated_at"] = next_updated_at(current.updated_at)
        updated = current.model_copy(update=changes, deep=True)
        self._vehicles[vehicle_id] = updated
        return updated.model_copy(deep=True)

    async def delete(self, vehicle_id: str) -> bool:
        self._sequence.pop(vehicle_id, None)
        return self._vehicles.pop(vehicle_id, None) is not None

    async def search(self, query: str = "", filters: Optional[VehicleFilters] = None) -> List[VehicleOut]:
        filters = filters or VehicleFilters()
        hits = [v for v in self._vehicles.values() if matches_search(v, query or "", filters)]
        return [v.model_copy(deep=True) for v in self._newest_first(hits)]
