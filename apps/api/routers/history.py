"""Description history: paginated listing, clearing and plain-text export."""

import math
import re
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy import delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import LIKE_ESCAPE, contains_pattern, get_db
from models.image_description import ImageDescription
from models.user import User
from routers.auth_scope import get_current_user

router = APIRouter()


def _serialize_description(item: ImageDescription) -> dict:
    return {
        "id": item.id,
        "filename": item.filename,
        "description": item.description,
        "confidence": item.confidence,
        "source": item.source,
        "file_size": item.file_size,
        "mime_type": item.mime_type,
        "created_at": item.created_at.isoformat() if item.created_at else None,
    }


def _safe_filename(original_name: str, suffix: str) -> str:
    base = re.sub(r"\.[^/.]+$", "", original_name or "")
    base = re.sub(r"[^a-zA-Z0-9_-]", "_", base) or "image"
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
    return f"{base}_{suffix}_{stamp}.txt"


def _attachment(content: str, filename: str) -> PlainTextResponse:
    return PlainTextResponse(
        content,
        media_type="text/plain; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("")
async def list_history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    search: str = Query(default=""),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    conditions = [ImageDescription.user_id == user.id]
    term = search.strip()
    if term:
        pattern = contains_pattern(term)
        conditions.append(
            or_(
                func.lower(ImageDescription.filename).like(pattern, escape=LIKE_ESCAPE),
                func.lower(ImageDescription.description).like(pattern, escape=LIKE_ESCAPE),
            )
        )

    total_count = int((await db.execute(select(func.count(ImageDescription.id)).where(*conditions))).scalar() or 0)
    result = await db.execute(
        select(ImageDescription)
        .where(*conditions)
        .order_by(ImageDescription.created_at.desc(), ImageDescription.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    total_pages = math.ceil(total_count / limit)
    return {
        "descriptions": [_serialize_description(item) for item in result.scalars().all()],
        "pagination": {
            "current_page": page,
            "total_pages": total_pages,
            "total_count": total_count,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


@router.delete("")
async def clear_history(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(delete(ImageDescription).where(ImageDescription.user_id == user.id))
    await db.commit()
    return {"message": "History cleared successfully", "deleted_count": int(result.rowcount or 0)}


@router.get("/export")
async def export_history(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """All descriptions as one text file, separated by a blank line."""
    result = await db.execute(
        select(ImageDescription.description)
        .where(ImageDescription.user_id == user.id)
        .order_by(ImageDescription.created_at.desc(), ImageDescription.id.desc())
    )
    content = "\n\n".join(result.scalars().all())
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
    return _attachment(content, f"bulk_descriptions_{stamp}.txt")


@router.get("/{description_id}/download")
async def download_description(
    description_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(ImageDescription).where(
            ImageDescription.id == description_id,
            ImageDescription.user_id == user.id,
        )
    )
    item: Optional[ImageDescription] = result.scalar_one_or_none()
    if item is None:
        raise HTTPException(status_code=404, detail="Description not found")
    return _attachment(item.description, _safe_filename(item.filename, "description"))
