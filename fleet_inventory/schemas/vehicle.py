from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from fleet_inventory.services.validators import BusinessRules

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
PriceDecimal = Annotated[Decimal, Field(ge=0, max_digits=10, decimal_places=2)]

# Fields a partial update may not clear with an explicit null
REQUIRED_FIELDS = ("make", "model", "year", "license_plate", "status")


class VehicleStatus(str, Enum):
    AVAILABLE = "available"
    IN_USE = "in-use"
    MAINTENANCE = "maintenance"
    SOLD = "sold"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _quantize_price(value: Optional[Decimal]) -> Optional[Decimal]:
    if value is None:
        return None
    return value.quantize(BusinessRules.PRICE_QUANTUM)


class VehicleCreate(CamelModel):
    """Fields accepted when registering a vehicle."""
    make: NonEmptyStr
    model: NonEmptyStr
    year: int = Field(..., ge=BusinessRules.MIN_YEAR, le=BusinessRules.MAX_YEAR)
    license_plate: NonEmptyStr
    vin: Optional[NonEmptyStr] = None
    mileage: Optional[int] = Field(None, ge=0, le=BusinessRules.MAX_MILEAGE)
    price: Optional[PriceDecimal] = None
    status: VehicleStatus = VehicleStatus.AVAILABLE
    media_files: List[str] = Field(default_factory=list)

    @field_validator("price")
    def round_price(cls, v):
        return _quantize_price(v)


class VehicleUpdate(CamelModel):
    """
    Partial update: one optional slot per mutable attribute.

    A field counts as supplied only when it is present in ``model_fields_set``.
    An explicit ``None`` clears ``vin``, ``mileage`` or ``price`` and is
    rejected for the required attributes.
    """
    make: Optional[NonEmptyStr] = None
    model: Optional[NonEmptyStr] = None
    year: Optional[int] = Field(None, ge=BusinessRules.MIN_YEAR, le=BusinessRules.MAX_YEAR)
    license_plate: Optional[NonEmptyStr] = None
    vin: Optional[NonEmptyStr] = None
    mileage: Optional[int] = Field(None, ge=0, le=BusinessRules.MAX_MILEAGE)
    price: Optional[PriceDecimal] = None
    status: Optional[VehicleStatus] = None
    media_files: Optional[List[str]] = None

    @field_validator(*REQUIRED_FIELDS, "media_files")
    def not_cleared(cls, v):
        if v is None:
            raise ValueError("Field cannot be cleared")
        return v

    @field_validator("price")
    def round_price(cls, v):
        return _quantize_price(v)

    def changes(self) -> Dict[str, Any]:
        """Returns only the explicitly supplied fields."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class VehicleFilters(BaseModel):
    make: Optional[str] = None
    year: Optional[str] = None


class VehicleOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    make: str
    model: str
    year: int
    license_plate: str
    vin: Optional[str] = None
    mileage: Optional[int] = None
    price: Optional[Decimal] = None
    status: VehicleStatus
    media_files: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    def ensure_utc(cls, v: datetime):
        # sqlite drops tzinfo on the way back
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("media_files", mode="before")
    def default_media(cls, v):
        return list(v) if v is not None else []

    @field_serializer("price", when_used="json")
    def price_as_number(self, v: Optional[Decimal]):
        return float(v) if v is not None else None


class MediaRemoveRequest(CamelModel):
    file_path: str = Field(..., min_length=1)


class MessageOut(BaseModel):
    message: str
