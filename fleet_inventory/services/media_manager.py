import logging
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional

from starlette.concurrency import run_in_threadpool

from fleet_inventory.core.prometheus_metrics import prometheus_collector
from fleet_inventory.exceptions import NotFoundError, PayloadTooLargeError, UnsupportedMediaTypeError
from fleet_inventory.schemas.vehicle import VehicleOut
from fleet_inventory.services.validators import BusinessRules
from fleet_inventory.services.vehicle_store import VehicleStore

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/uploads"
FILENAME_PREFIX = "media"
_EXTENSION_RE = re.compile(r"^\.[A-Za-z0-9]{1,10}$")


@dataclass
class MediaUpload:
    """One uploaded file as received from the transport layer."""
    content: bytes
    filename: str
    content_type: str


class MediaAttachmentManager:
    """
    Owns the uploaded media files and keeps each vehicle's ``media_files``
    list consistent with what is on disk.

    Files live in one flat directory and are published as
    ``/uploads/<generated name>``. Only ``store`` writes bytes; only
    ``detach`` and ``purge`` remove them.
    """

    def __init__(
        self,
        vehicle_store: VehicleStore,
        upload_dir: Path,
        max_bytes: int = BusinessRules.MAX_UPLOAD_BYTES,
    ):
        self.vehicle_store = vehicle_store
        self.upload_dir = Path(upload_dir)
        self.max_bytes = max_bytes

    def ensure_upload_dir(self) -> None:
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def validate(self, size: int, mime_type: Optional[str]) -> str:
        """Checks type and size, returning the normalized mime type."""
        media_type = BusinessRules.normalize_mime_type(mime_type)
        if media_type not in BusinessRules.ALLOWED_MEDIA_TYPES:
            prometheus_collector.record_upload_rejected("unsupported_media_type")
            raise UnsupportedMediaTypeError()
        if size > self.max_bytes:
            prometheus_collector.record_upload_rejected("payload_too_large")
            raise PayloadTooLargeError(
                f"File too large. Maximum size is {self.max_bytes // (1024 * 1024)} MB."
            )
        return media_type

    def _generate_name(self, original_name: str) -> str:
        extension = PurePosixPath(original_name or "").suffix
        if not _EXTENSION_RE.match(extension):
            extension = ""
        unique_suffix = f"{int(time.time() * 1000)}-{secrets.randbelow(10 ** 9)}"
        return f"{FILENAME_PREFIX}-{unique_suffix}{extension}"

    def store(self, content: bytes, original_name: str, mime_type: str) -> str:
        """
        Validates and writes one upload, returning its public reference.

        Nothing touches the disk when validation fails.
        """
        media_type = self.validate(len(content), mime_type)
        self.ensure_upload_dir()

        while True:
            name = self._generate_name(original_name)
            try:
                # exclusive create: a clash draws a new name instead of overwriting
                with open(self.upload_dir / name, "xb") as fh:
                    fh.write(content)
                break
            except FileExistsError:
                continue

        prometheus_collector.record_media_stored(media_type, len(content))
        logger.info("Media stored", extra={"reference": f"{PUBLIC_PREFIX}/{name}", "media_type": media_type})
        return f"{PUBLIC_PREFIX}/{name}"

    def store_many(self, uploads: Iterable[MediaUpload]) -> List[str]:
        """
        Stores several uploads all-or-nothing.

        Every upload is validated before the first byte is written. If a
        write fails partway, files already written are removed again.
        """
        uploads = list(uploads)
        for upload in uploads:
            self.validate(len(upload.content), upload.content_type)

        references: List[str] = []
        try:
            for upload in uploads:
                references.append(self.store(upload.content, upload.filename, upload.content_type))
        except Exception:
            self.purge(references)
            raise
        return references

    def resolve(self, reference: str) -> Optional[Path]:
        """Maps ``/uploads/<name>`` to its file path; anything else is None."""
        if not isinstance(reference, str) or not reference.startswith(PUBLIC_PREFIX + "/"):
            return None
        name = reference[len(PUBLIC_PREFIX) + 1:]
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            return None
        return self.upload_dir / name

    def _unlink(self, reference: str) -> bool:
        path = self.resolve(reference)
        if path is None:
            logger.warning("Ignoring unmanaged media reference", extra={"reference": reference})
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Failed to delete media file {reference}: {e}")
            return False
        prometheus_collector.record_media_removed()
        return True

    async def attach(self, vehicle_id: str, references: List[str]) -> VehicleOut:
        """
        Appends references to the vehicle's media, keeping upload order.

        Read-modify-write: atomic on the in-memory store, which never
        suspends between get and update. On the SQL store two concurrent
        appends are last-write-wins, and the losing request's files stay on
        disk unreferenced.
        """
        vehicle = await self.vehicle_store.get(vehicle_id)
        if vehicle is None:
            raise NotFoundError()
        if not references:
            return vehicle

        updated = await self.vehicle_store.update(
            vehicle_id, {"media_files": vehicle.media_files + list(references)}
        )
        if updated is None:
            raise NotFoundError()
        return updated

    async def detach(self, vehicle_id: str, reference: str) -> VehicleOut:
        """
        Removes one reference and deletes its file.

        Detaching a reference the vehicle does not hold is a no-op: the
        vehicle comes back unchanged and no file is deleted.
        """
        vehicle = await self.vehicle_store.get(vehicle_id)
        if vehicle is None:
            raise NotFoundError()
        if reference not in vehicle.media_files:
            return vehicle

        remaining = [ref for ref in vehicle.media_files if ref != reference]
        updated = await self.vehicle_store.update(vehicle_id, {"media_files": remaining})
        if updated is None:
            raise NotFoundError()

        # record first, file second; a failed unlink is logged by _unlink
        await run_in_threadpool(self._unlink, reference)
        return updated

    def purge(self, references: Iterable[str]) -> int:
        """Deletes the files behind references; already-missing files are skipped."""
        removed = 0
        for reference in references:
            if self._unlink(reference):
                removed += 1
        return removed
