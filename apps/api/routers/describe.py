"""
Image description router: single, bulk JSON and bulk Server-Sent Events.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from routers.rate_limit import rate_limit
from services.bulk import (
    BulkDescriptionProcessor,
    collect_sequential,
    ensure_batch_credits,
    stream_bulk_descriptions,
)
from services.image_processor import ImageUpload, create_description_service, read_uploads

router = APIRouter()
logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def _prepare_batch(files: List[UploadFile], user: User, db: AsyncSession) -> List[ImageUpload]:
    """Check batch size and credits, then buffer the uploads.

    Runs before any external call so an underfunded batch never reaches
    the vision API.
    """
    if not files:
        raise HTTPException(status_code=400, detail="No image files provided")
    max_files = max(int(settings.MAX_BULK_FILES), 1)
    if len(files) > max_files:
        raise HTTPException(
            status_code=400,
            detail=f"Too many files. Maximum {max_files} files allowed per batch.",
        )
    await ensure_batch_credits(user.id, db, len(files))
    return await read_uploads(files)


@router.post("")
async def describe_images(
    image: Optional[UploadFile] = File(default=None),
    images: Optional[List[UploadFile]] = File(default=None),
    _rate_limit: None = Depends(rate_limit("describe", limit=120, window_seconds=3600)),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Describe one ``image`` or several ``images``; only successes are charged."""
    files = [image] if image is not None else list(images or [])
    if not files:
        raise HTTPException(status_code=400, detail="No image file(s) provided")

    uploads = await _prepare_batch(files, user, db)
    single = len(uploads) == 1
    async with await create_description_service(db) as service:
        processor = BulkDescriptionProcessor(user.id, service, db)
        results, summary = await processor.run_batch(
            uploads,
            description=f"Image description for {uploads[0].filename}" if single else "Bulk image description",
        )

    if single:
        result = results[0]
        if not result.success:
            raise HTTPException(status_code=400, detail=result.error or "Failed to process image")
        return {
            "id": result.image_id,
            "description": result.description,
            "confidence": result.confidence,
            "source": result.source,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "credits_remaining": summary["remaining_credits"],
        }

    return {
        "results": [result.model_dump() for result in results],
        "summary": summary,
    }


@router.post("/bulk")
async def describe_bulk_stream(
    images: List[UploadFile] = File(default=[]),
    _rate_limit: None = Depends(rate_limit("describe_bulk", limit=60, window_seconds=3600)),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Sequential SSE stream: one credit is charged right after each success."""
    uploads = await _prepare_batch(images, user, db)
    return StreamingResponse(
        stream_bulk_descriptions(user.id, uploads, mode="sequential"),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/bulk-optimized")
async def describe_bulk_optimized_stream(
    images: List[UploadFile] = File(default=[]),
    _rate_limit: None = Depends(rate_limit("describe_bulk", limit=60, window_seconds=3600)),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Concurrent SSE stream: successes are charged together when the run ends."""
    uploads = await _prepare_batch(images, user, db)
    return StreamingResponse(
        stream_bulk_descriptions(user.id, uploads, mode="concurrent"),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/bulk-with-credits")
async def describe_bulk_with_credits(
    images: List[UploadFile] = File(default=[]),
    _rate_limit: None = Depends(rate_limit("describe_bulk", limit=60, window_seconds=3600)),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Sequential run returned as one JSON document, with early stop on credits."""
    uploads = await _prepare_batch(images, user, db)
    try:
        results, summary = await collect_sequential(user.id, uploads, db)
    except RuntimeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "success": True,
        "results": [result.model_dump() for result in results],
        "summary": summary,
    }
