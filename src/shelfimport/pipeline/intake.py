"""Upload limits and image format checks for new batches."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from shelfimport.config import IntakeSettings
from shelfimport.errors import IntakeError

logger = logging.getLogger(__name__)

MIME_BY_FORMAT = {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp"}
GENERIC_CONTENT_TYPES = {"", "application/octet-stream"}


@dataclass(frozen=True)
class Upload:
    filename: str
    data: bytes
    content_type: str | None = None


@dataclass(frozen=True)
class AcceptedUpload:
    upload: Upload
    image_format: str


def detect_format(data: bytes) -> str | None:
    """Pillow's format name for image bytes, or None when they do not decode."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
            return (img.format or "").upper() or None
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return None


def validate_uploads(uploads: list[Upload], settings: IntakeSettings) -> list[AcceptedUpload]:
    """Check count, size and type of every upload; reject the whole batch on any violation."""
    if not uploads:
        raise IntakeError("No images uploaded", reason="empty")
    if len(uploads) > settings.max_files:
        raise IntakeError(
            f"Too many images: {len(uploads)} (maximum {settings.max_files})",
            reason="too_many_files",
        )

    allowed = {value.lower() for value in settings.allowed_content_types}
    accepted: list[AcceptedUpload] = []
    for upload in uploads:
        if not upload.data:
            raise IntakeError(f"{upload.filename} is empty", reason="empty")
        if len(upload.data) > settings.max_file_bytes:
            raise IntakeError(
                f"{upload.filename} is {len(upload.data)} bytes (maximum {settings.max_file_bytes})",
                reason="too_large",
            )

        declared = (upload.content_type or "").split(";")[0].strip().lower()
        if declared not in GENERIC_CONTENT_TYPES and declared not in allowed:
            raise IntakeError(f"{upload.filename} has unsupported type {declared}", reason="unsupported_type")

        image_format = detect_format(upload.data)
        if image_format is None or MIME_BY_FORMAT.get(image_format) not in allowed:
            raise IntakeError(f"{upload.filename} is not a supported image", reason="unsupported_type")

        accepted.append(AcceptedUpload(upload=upload, image_format=image_format))

    logger.debug("Accepted %d uploads", len(accepted))
    return accepted
