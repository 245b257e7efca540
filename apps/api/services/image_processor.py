"""Per-file image validation, description and persistence."""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass
from typing import List, Optional

from fastapi import UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models.image_description import ImageDescription
from services.ideogram import IdeogramClient, IdeogramError
from services.settings_store import IDEOGRAM_API_KEY, get_setting

logger = logging.getLogger(__name__)

IDEOGRAM_CONFIDENCE = 95
FALLBACK_CONFIDENCE = 85
READ_CHUNK_BYTES = 1024 * 1024


@dataclass
class ImageUpload:
    """An uploaded file read into memory before processing starts.

    Oversized files are not buffered: ``data`` is left empty and ``size``
    records how far reading got before the limit was crossed.
    """

    filename: str
    content_type: str
    data: bytes
    size: int


class ProcessResult(BaseModel):
    success: bool
    index: int
    filename: str
    image_id: Optional[str] = None
    description: Optional[str] = None
    confidence: Optional[int] = None
    source: Optional[str] = None
    error: Optional[str] = None
    charged: bool = False
    remaining_credits: Optional[int] = None
    billable: bool = Field(default=False, exclude=True)


@dataclass
class DescriptionOutcome:
    description: str
    confidence: int
    source: str
    billable: bool


def _display_name(filename: Optional[str]) -> str:
    return os.path.basename(filename or "") or "image"


async def read_upload(file: UploadFile, max_bytes: Optional[int] = None) -> ImageUpload:
    limit = int(max_bytes or settings.MAX_IMAGE_UPLOAD_BYTES)
    chunks: List[bytes] = []
    total_size = 0
    try:
        while True:
            chunk = await file.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            total_size += len(chunk)
            if total_size > limit:
                chunks = []
                break
            chunks.append(chunk)
    finally:
        await file.close()

    return ImageUpload(
        filename=_display_name(file.filename),
        content_type=(file.content_type or "").lower(),
        data=b"".join(chunks),
        size=total_size,
    )


async def read_uploads(files: List[UploadFile]) -> List[ImageUpload]:
    return [await read_upload(file) for file in files]


def validate_image(upload: ImageUpload) -> Optional[str]:
    """Return an error message for files that must not be sent to the API."""
    if not upload.content_type.startswith("image/"):
        return "File must be an image"
    limit = int(settings.MAX_IMAGE_UPLOAD_BYTES)
    if upload.size > limit:
        return f"File size must be less than {limit // (1024 * 1024)}MB"
    if upload.size == 0:
        return "File is empty"
    return None


def fallback_description(upload: ImageUpload) -> str:
    image_format = upload.content_type.split("/", 1)[-1] or "image"
    return (
        f'This appears to be a {image_format} image file named "{upload.filename}". '
        "The image contains visual content that would typically be analyzed by an AI vision model "
        "to provide detailed descriptions of objects, scenes, people, text, and other visual elements "
        "present in the image."
    )


def build_record(user_id: str, upload: ImageUpload, result: ProcessResult) -> ImageDescription:
    record = ImageDescription(
        id=str(uuid.uuid4()),
        user_id=user_id,
        filename=upload.filename,
        description=result.description,
        confidence=result.confidence,
        source=result.source,
        file_size=upload.size,
        mime_type=upload.content_type or None,
    )
    result.image_id = record.id
    return record


class ImageDescriptionService:
    """Turns an :class:`ImageUpload` into a :class:`ProcessResult`.

    Does not touch the database, so several files can be analyzed
    concurrently against one service instance.
    """

    def __init__(self, client: Optional[IdeogramClient], *, allow_fallback: bool = False):
        self.client = client
        self.allow_fallback = allow_fallback

    async def describe(self, upload: ImageUpload) -> DescriptionOutcome:
        if self.client is None:
            error = "Image description service is not available - API key not configured"
        else:
            try:
                text = await self.client.describe(upload.filename, upload.data, upload.content_type)
                return DescriptionOutcome(text, IDEOGRAM_CONFIDENCE, "ideogram", billable=True)
            except IdeogramError as exc:
                logger.warning("Ideogram describe failed for %s: %s", upload.filename, exc)
                error = f"Failed to describe image: {exc}"

        if self.allow_fallback:
            # Fallback text is returned to the user but never charged.
            return DescriptionOutcome(fallback_description(upload), FALLBACK_CONFIDENCE, "fallback", billable=False)
        raise IdeogramError(error)

    async def analyze(self, upload: ImageUpload, index: int) -> ProcessResult:
        error = validate_image(upload)
        if error:
            return ProcessResult(success=False, index=index, filename=upload.filename, error=error)

        try:
            outcome = await self.describe(upload)
        except IdeogramError as exc:
            return ProcessResult(success=False, index=index, filename=upload.filename, error=str(exc))
        except Exception:
            logger.exception("Unexpected error describing %s", upload.filename)
            return ProcessResult(success=False, index=index, filename=upload.filename, error="Processing failed")

        return ProcessResult(
            success=True,
            index=index,
            filename=upload.filename,
            description=outcome.description,
            confidence=outcome.confidence,
            source=outcome.source,
            billable=outcome.billable,
        )

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()

    async def __aenter__(self) -> "ImageDescriptionService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


async def create_description_service(db: AsyncSession) -> ImageDescriptionService:
    """Build a service using the runtime API key (settings table, then env)."""
    api_key = await get_setting(db, IDEOGRAM_API_KEY, IDEOGRAM_API_KEY)
    client = IdeogramClient(api_key) if api_key else None
    return ImageDescriptionService(client, allow_fallback=settings.DESCRIBE_ALLOW_FALLBACK)
