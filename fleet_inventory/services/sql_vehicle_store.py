import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from sqlalchemy import String, cast, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from fleet_inventory.core.db import Base, build_engine, build_session_factory
from fleet_inventory.exceptions import DuplicateLicensePlateError, InternalError
from fleet_inventory.models.vehicle import Vehicle
from fleet_inventory.schemas.vehicle import VehicleFilters, VehicleOut, VehicleStatus
from fleet_inventory.services.validators import BusinessRules
from fleet_inventory.services.vehicle_store import (
    CreateFields,
    UpdateFields,
    VehicleStore,
    next_updated_at,
    utcnow,
    validate_create,
    validate_update,
)

logger = logging.getLogger(__name__)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _refresh_search_columns(row: Vehicle) -> None:
    row.make_lower = row.make.lower()
    row.model_lower = row.model.lower()
    row.plate_lower = row.license_plate.lower()


def to_schema(row: Vehicle) -> VehicleOut:
    return VehicleOut(
        id=row.id,
        make=row.make,
        model=row.model,
        year=row.year,
        license_plate=row.license_plate,
        vin=row.vin,
        mileage=row.mileage,
        price=row.price,
        status=row.status,
        media_files=row.media_files,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlVehicleStore(VehicleStore):
    """
    Vehicle store backed by SQLAlchemy 2.0 async.

    Each operation runs in its own session and transaction. Plate uniqueness
    is checked up front for a readable error and backed by the unique
    ``plate_key`` column, which settles concurrent inserts.
    """

    def __init__(self, database_url: Optional[str] = None, engine: Optional[AsyncEngine] = None):
        self.engine = engine or build_engine(database_url)
        self.session_factory = build_session_factory(self.engine)

    async def startup(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Vehicle schema ready")

    async def shutdown(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                logger.error(f"Vehicle store query failed: {e}")
                raise InternalError(str(e)) from e

    async def _ensure_unique_plate(
        self, session: AsyncSession, license_plate: str, exclude_id: Optional[str] = None
    ) -> str:
        key = BusinessRules.normalize_license_plate(license_plate)
        stmt = select(Vehicle.id).where(Vehicle.plate_key == key)
        if exclude_id is not None:
            stmt = stmt.where(Vehicle.id != exclude_id)
        if (await session.execute(stmt)).first() is not None:
            raise DuplicateLicensePlateError(license_plate)
        return key

    async def _commit(self, session: AsyncSession, license_plate: str) -> None:
        try:
            await session.commit()
        except IntegrityError:
            # handle race where another request claimed the same plate
            await session.rollback()
            raise DuplicateLicensePlateError(license_plate)

    async def create(self, fields: CreateFields) -> VehicleOut:
        data = validate_create(fields)
        async with self._session() as session:
            key = await self._ensure_unique_plate(session, data.license_plate)
            now = utcnow()
            row = Vehicle(
                id=str(uuid.uuid4()),
                make=data.make,
                model=data.model,
                year=data.year,
                license_plate=data.license_plate,
                plate_key=key,
                vin=data.vin,
                mileage=data.mileage,
                price=data.price,
                status=data.status.value,
                media_files=list(data.media_files),
                created_at=now,
                updated_at=now,
            )
            _refresh_search_columns(row)
            session.add(row)
            await self._commit(session, data.license_plate)
            logger.info("Vehicle created", extra={"vehicle_id": row.id})
            return to_schema(row)

    async def get(self, vehicle_id: str) -> Optional[VehicleOut]:
        async with self._session() as session:
            row = await session.get(Vehicle, vehicle_id)
            return to_schema(row) if row else None

    async def list(self) -> List[VehicleOut]:
        async with self._session() as session:
            result = await session.execute(select(Vehicle).order_by(Vehicle.created_at.desc()))
            return [to_schema(row) for row in result.scalars().all()]

    async def update(self, vehicle_id: str, fields: UpdateFields) -> Optional[VehicleOut]:
        changes = validate_update(fields).changes()
        async with self._session() as session:
            row = await session.get(Vehicle, vehicle_id)
            if row is None:
                return None

            license_plate = changes.get("license_plate", row.license_plate)
            if "license_plate" in changes:
                row.plate_key = await self._ensure_unique_plate(session, license_plate, exclude_id=vehicle_id)

            for name, value in changes.items():
                if isinstance(value, VehicleStatus):
                    value = value.value
                elif name == "media_files":
                    # new list object so the JSON column is flagged dirty
                    value = list(value)
                setattr(row, name, value)

            _refresh_search_columns(row)
            row.updated_at = next_updated_at(row.updated_at)
            await self._commit(session, license_plate)
            return to_schema(row)

    async def delete(self, vehicle_id: str) -> bool:
        async with self._session() as session:
            row = await session.get(Vehicle, vehicle_id)
            if row is None:
                return False
            await session.delete(row)
            await session.commit()
            return True

    async def search(self, query: str = "", filters: Optional[VehicleFilters] = None) -> List[VehicleOut]:
        filters = filters or VehicleFilters()
        stmt = select(Vehicle)

        if query:
            pattern = f"%{_escape_like(query.lower())}%"
            stmt = stmt.where(or_(
                Vehicle.make_lower.like(pattern, escape="\\"),
                Vehicle.model_lower.like(pattern, escape="\\"),
                Vehicle.plate_lower.like(pattern, escape="\\"),
            ))
        if filters.make:
            stmt = stmt.where(Vehicle.make_lower == filters.make.lower())
        if filters.year:
            stmt = stmt.where(cast(Vehicle.year, String) == filters.year)

        async with self._session() as session:
            result = await session.execute(stmt.order_by(Vehicle.created_at.desc()))
            return [to_schema(row) for row in result.scalars().all()]
