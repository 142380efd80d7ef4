from decimal import Decimal, InvalidOperation
from typing import Any, Dict, FrozenSet, Mapping, Optional

from fleet_inventory.exceptions import ValidationError


class BusinessRules:
    MIN_YEAR = 1900
    MAX_YEAR = 2030
    PRICE_QUANTUM = Decimal("0.01")
    # fits a signed 32-bit INTEGER column on every backend
    MAX_MILEAGE = 2 ** 31 - 1

    MAX_UPLOAD_BYTES = 10 * 1024 * 1024
    MAX_FILES_PER_REQUEST = 10
    ALLOWED_MEDIA_TYPES: FrozenSet[str] = frozenset({
        "image/jpeg",
        "image/png",
        "image/gif",
        "video/mp4",
        "video/webm",
    })

    @staticmethod
    def normalize_mime_type(mime_type: Optional[str]) -> str:
        # "image/png; charset=binary" -> "image/png"
        return (mime_type or "").split(";", 1)[0].strip().lower()

    @staticmethod
    def is_allowed_media_type(mime_type: Optional[str]) -> bool:
        return BusinessRules.normalize_mime_type(mime_type) in BusinessRules.ALLOWED_MEDIA_TYPES

    @staticmethod
    def normalize_license_plate(license_plate: str) -> str:
        """Key used for plate uniqueness: case and surrounding spaces ignored."""
        return license_plate.strip().upper()


INT_FORM_FIELDS = ("year", "mileage")
DECIMAL_FORM_FIELDS = ("price",)


def coerce_form_fields(raw: Mapping[str, Optional[str]]) -> Dict[str, Any]:
    """
    Turns textual multipart form values into typed vehicle fields.

    Empty and whitespace-only values count as absent and are dropped.
    Numeric fields that cannot be parsed raise a field-level ValidationError.
    """
    fields: Dict[str, Any] = {}
    errors = []
    for name, value in raw.items():
        if value is None:
            continue
        value = value.strip()
        if not value:
            continue

        if name in INT_FORM_FIELDS:
            try:
                fields[name] = int(value)
            except ValueError:
                errors.append({"field": name, "message": "Input should be a valid integer"})
        elif name in DECIMAL_FORM_FIELDS:
            try:
                number = Decimal(value)
            except InvalidOperation:
                number = None
            if number is None or not number.is_finite():
                errors.append({"field": name, "message": "Input should be a valid decimal"})
            else:
                fields[name] = number
        else:
            fields[name] = value

    if errors:
        raise ValidationError(errors)
    return fields
