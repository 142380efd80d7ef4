import logging
from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)


class FleetInventoryError(Exception):
    """Base class for all fleet inventory domain errors."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(FleetInventoryError):
    """Raised when a vehicle field is missing, malformed or out of range."""

    status_code = 400
    default_message = "Validation error"

    def __init__(self, errors: List[Dict[str, str]], message: Optional[str] = None):
        super().__init__(message)
        self.errors = errors

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls([{"field": field, "message": message}])

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError) -> "ValidationError":
        return cls(format_errors(exc.errors()))


class NotFoundError(FleetInventoryError):
    """Raised when no vehicle exists for the requested id."""

    status_code = 404
    default_message = "Vehicle not found"


class DuplicateLicensePlateError(FleetInventoryError):
    """Raised when a license plate is already registered to another vehicle."""

    status_code = 409

    def __init__(self, license_plate: str):
        super().__init__(f"License plate '{license_plate}' is already registered.")
        self.license_plate = license_plate


class UnsupportedMediaTypeError(FleetInventoryError):
    """Raised when an upload's mime type is outside the allow-list."""

    status_code = 415
    default_message = "Invalid file type. Only JPEG, PNG, GIF, MP4, and WebM files are allowed."


class PayloadTooLargeError(FleetInventoryError):
    """Raised when an upload exceeds the per-file size cap."""

    status_code = 413
    default_message = "File too large."


class InternalError(FleetInventoryError):
    """Unexpected failure; details are logged, never returned."""


def format_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    formatted = []
    for error in errors:
        # Drop the request section prefix FastAPI adds ("body", "query"...)
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        formatted.append({
            "field": ".".join(loc) or "__root__",
            "message": error.get("msg", "Invalid value"),
        })
    return formatted


async def fleet_exception_handler(request: Request, exc: FleetInventoryError):
    content: Dict[str, Any] = {"message": exc.message}
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    if isinstance(exc, InternalError):
        logger.error(f"Internal error on {request.method} {request.url.path}: {exc}")
        content["message"] = InternalError.default_message
    return JSONResponse(status_code=exc.status_code, content=content)


async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "message": ValidationError.default_message,
            "errors": format_errors(exc.errors()),
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"message": InternalError.default_message},
    )
