"""Admin router: users, credit ledger, payment approvals and runtime settings."""

from __future__ import annotations

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import LIKE_ESCAPE, contains_pattern, get_db
from models.user import USER_ROLES, User
from routers.auth_scope import require_admin
from services.credits import adjust_credits, list_transactions, reconcile_balance, set_credit_balance
from services.payments import list_payment_requests, process_payment_request, serialize_payment_request
from services.settings_store import delete_setting, list_settings, serialize_setting, set_setting

router = APIRouter()
logger = logging.getLogger(__name__)


class UserUpdateRequest(BaseModel):
    credits: Optional[int] = Field(default=None, ge=0)
    role: Optional[Literal["USER", "ADMIN"]] = None
    is_active: Optional[bool] = None


class CreditAdjustmentRequest(BaseModel):
    user_id: str
    amount: int
    description: Optional[str] = Field(default=None, max_length=500)


class ProcessPaymentRequest(BaseModel):
    request_id: str
    action: Literal["APPROVED", "REJECTED"]
    admin_notes: Optional[str] = Field(default=None, max_length=2000)


class SettingUpsertRequest(BaseModel):
    key: str = Field(min_length=1, max_length=200)
    value: str = Field(min_length=1)
    category: str = Field(default="API", max_length=100)


def _serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "credits": int(user.credits or 0),
        "is_active": bool(user.is_active),
        "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


async def _load_user(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


# Users

@router.get("/users")
async def list_users(
    search: str = Query(default=""),
    limit: int = Query(default=100, ge=1, le=500),
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(User)
    term = search.strip().lower()
    if term:
        pattern = contains_pattern(term)
        query = query.where(
            or_(
                func.lower(User.email).like(pattern, escape=LIKE_ESCAPE),
                func.lower(User.name).like(pattern, escape=LIKE_ESCAPE),
            )
        )
    result = await db.execute(query.order_by(User.created_at.desc()).limit(limit))
    return {"users": [_serialize_user(user) for user in result.scalars().all()]}


@router.patch("/users/{user_id}")
async def update_user(
    user_id: str,
    request: UserUpdateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Update role/status and, through the ledger, the credit balance."""
    user = await _load_user(db, user_id)
    if request.role is not None and request.role not in USER_ROLES:
        raise HTTPException(status_code=422, detail="Invalid role")

    if request.credits is not None:
        await set_credit_balance(user_id, db, new_balance=request.credits)
    if request.role is not None:
        user.role = request.role
    if request.is_active is not None:
        user.is_active = request.is_active
    await db.commit()
    await db.refresh(user)

    logger.info("admin_user_update admin=%s user=%s fields=%s", admin.id, user_id, request.model_dump(exclude_none=True))
    return {"message": "User updated successfully", "user": _serialize_user(user)}


@router.get("/users/{user_id}/reconcile")
async def reconcile_user(
    user_id: str,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await reconcile_balance(user_id, db)


# Credits

@router.get("/credits")
async def list_credit_transactions(
    user_id: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return {"transactions": await list_transactions(db, limit=limit, user_id=user_id)}


@router.post("/credits")
async def add_credit_adjustment(
    request: CreditAdjustmentRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await adjust_credits(
        request.user_id,
        db,
        delta=request.amount,
        description=request.description or "Admin credit adjustment",
    )
    logger.info("admin_credit_adjustment admin=%s user=%s delta=%s", admin.id, request.user_id, request.amount)
    return {"ok": True, "user_id": request.user_id, **result}


# Payments

@router.get("/payments")
async def list_payments(
    status: Optional[Literal["PENDING", "APPROVED", "REJECTED"]] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return {"payment_requests": await list_payment_requests(db, status=status, limit=limit)}


@router.post("/payments/process")
async def process_payment(
    request: ProcessPaymentRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    payment_request = await process_payment_request(
        request.request_id,
        db,
        admin_id=admin.id,
        action=request.action,
        admin_notes=request.admin_notes,
    )
    return {
        "message": f"Payment request {request.action.lower()} successfully",
        "payment_request": serialize_payment_request(payment_request),
    }


# Settings

@router.get("/settings")
async def get_all_settings(
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return {"settings": await list_settings(db)}


@router.post("/settings")
async def upsert_setting(
    request: SettingUpsertRequest,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    row = await set_setting(db, request.key.strip(), request.value.strip(), request.category)
    return {"message": "Setting updated successfully", "setting": serialize_setting(row)}


@router.delete("/settings")
async def remove_setting(
    key: str = Query(min_length=1),
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await delete_setting(db, key)
    return {"message": "Setting deleted successfully"}
