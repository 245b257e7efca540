"""Runtime settings stored in the database with config/env fallback."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Iterable, List, Optional

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.setting import Setting
from services.crypto import SecretDecryptionError, decrypt_secret, encrypt_secret, mask_secret

logger = logging.getLogger(__name__)

IDEOGRAM_API_KEY = "IDEOGRAM_API_KEY"


def _fallback_value(key: str, fallback_env_key: Optional[str] = None) -> Optional[str]:
    env_key = fallback_env_key or key
    configured = getattr(settings, env_key, None)
    if isinstance(configured, str) and configured.strip():
        return configured.strip()
    value = os.environ.get(env_key, "").strip()
    return value or None


async def get_setting(
    db: AsyncSession,
    key: str,
    fallback_env_key: Optional[str] = None,
) -> Optional[str]:
    """Return the active value for ``key``, else the config/env value."""
    try:
        result = await db.execute(select(Setting).where(Setting.key == key, Setting.is_active.is_(True)))
        row = result.scalar_one_or_none()
        if row and row.value:
            return decrypt_secret(row.value)
    except (SQLAlchemyError, SecretDecryptionError) as exc:
        logger.warning("Setting lookup for %s failed, using environment fallback: %s", key, exc)
    return _fallback_value(key, fallback_env_key)


async def get_settings(db: AsyncSession, keys: Iterable[str]) -> Dict[str, Optional[str]]:
    return {key: await get_setting(db, key) for key in keys}


async def set_setting(db: AsyncSession, key: str, value: str, category: str = "API") -> Setting:
    """Create or replace a setting; re-activates a disabled row."""
    result = await db.execute(select(Setting).where(Setting.key == key))
    row = result.scalar_one_or_none()
    if row is None:
        row = Setting(key=key, value=encrypt_secret(value), category=category, is_active=True)
        db.add(row)
    else:
        row.value = encrypt_secret(value)
        row.category = category
        row.is_active = True
    await db.commit()
    await db.refresh(row)
    logger.info("setting_upsert key=%s category=%s", key, category)
    return row


async def delete_setting(db: AsyncSession, key: str) -> None:
    result = await db.execute(select(Setting).where(Setting.key == key))
    row = result.scalar_one_or_none()
    if row is None:
        raise HTTPException(status_code=404, detail="Setting not found")
    await db.delete(row)
    await db.commit()
    logger.info("setting_delete key=%s", key)


def serialize_setting(row: Setting) -> Dict[str, Any]:
    try:
        masked = mask_secret(decrypt_secret(row.value))
    except SecretDecryptionError:
        masked = None
    return {
        "id": row.id,
        "key": row.key,
        "value": masked,
        "category": row.category,
        "is_active": bool(row.is_active),
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


async def list_settings(db: AsyncSession) -> List[Dict[str, Any]]:
    result = await db.execute(select(Setting).order_by(Setting.category.asc(), Setting.key.asc()))
    return [serialize_setting(row) for row in result.scalars().all()]
