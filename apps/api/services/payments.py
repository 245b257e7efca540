"""Manual payment requests: PENDING -> APPROVED | REJECTED."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_transaction import PURCHASE
from models.payment_request import (
    PAYMENT_STATUSES,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    PaymentRequest,
)
from models.user import User
from services.credits import add_credits

logger = logging.getLogger(__name__)


def serialize_payment_request(request: PaymentRequest, user: Optional[User] = None) -> Dict[str, Any]:
    payload = {
        "id": request.id,
        "user_id": request.user_id,
        "credits_requested": request.credits_requested,
        "amount": request.amount,
        "payment_method": request.payment_method,
        "transaction_id": request.transaction_id,
        "qr_code_used": request.qr_code_used,
        "status": request.status,
        "admin_notes": request.admin_notes,
        "processed_by": request.processed_by,
        "processed_at": request.processed_at.isoformat() if request.processed_at else None,
        "created_at": request.created_at.isoformat() if request.created_at else None,
    }
    if user is not None:
        payload["user"] = {"id": user.id, "email": user.email, "name": user.name}
    return payload


async def submit_payment_request(
    user_id: str,
    db: AsyncSession,
    *,
    credits_requested: int,
    amount: float,
    transaction_id: str,
    payment_method: str = "QR_CODE",
    qr_code: Optional[str] = None,
) -> PaymentRequest:
    reference = (transaction_id or "").strip()
    if len(reference) < 3:
        raise HTTPException(status_code=422, detail="Invalid transaction ID")

    request = PaymentRequest(
        user_id=user_id,
        credits_requested=int(credits_requested),
        amount=float(amount),
        payment_method=payment_method,
        transaction_id=reference,
        qr_code_used=qr_code or None,
        status=STATUS_PENDING,
    )
    db.add(request)
    await db.commit()
    await db.refresh(request)
    logger.info(
        "payment_request_submitted id=%s user=%s credits=%s amount=%s",
        request.id,
        user_id,
        request.credits_requested,
        request.amount,
    )
    return request


async def list_user_payment_requests(user_id: str, db: AsyncSession) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(PaymentRequest)
        .where(PaymentRequest.user_id == user_id)
        .order_by(PaymentRequest.created_at.desc())
    )
    return [serialize_payment_request(request) for request in result.scalars().all()]


async def list_payment_requests(
    db: AsyncSession,
    *,
    status: Optional[str] = None,
    limit: int = 100,
) -> List[Dict[str, Any]]:
    query = select(PaymentRequest, User).join(User, User.id == PaymentRequest.user_id)
    if status:
        if status not in PAYMENT_STATUSES:
            raise HTTPException(status_code=422, detail=f"status must be one of {', '.join(PAYMENT_STATUSES)}")
        query = query.where(PaymentRequest.status == status)
    result = await db.execute(query.order_by(PaymentRequest.created_at.desc()).limit(max(int(limit), 1)))
    return [serialize_payment_request(request, user) for request, user in result.all()]


async def process_payment_request(
    request_id: str,
    db: AsyncSession,
    *,
    admin_id: str,
    action: str,
    admin_notes: Optional[str] = None,
) -> PaymentRequest:
    """Approve or reject a pending request exactly once.

    The status change is a conditional UPDATE on ``status = PENDING``; when
    approving, the credit grant joins the same transaction.
    """
    if action not in (STATUS_APPROVED, STATUS_REJECTED):
        raise HTTPException(status_code=422, detail="Invalid action. Must be APPROVED or REJECTED")

    result = await db.execute(select(PaymentRequest).where(PaymentRequest.id == request_id))
    request = result.scalar_one_or_none()
    if request is None:
        raise HTTPException(status_code=404, detail="Payment request not found")
    if request.status != STATUS_PENDING:
        raise HTTPException(status_code=409, detail="Payment request has already been processed")

    try:
        transition = await db.execute(
            update(PaymentRequest)
            .where(PaymentRequest.id == request_id, PaymentRequest.status == STATUS_PENDING)
            .values(
                status=action,
                admin_notes=admin_notes or None,
                processed_by=admin_id,
                processed_at=datetime.now(timezone.utc),
            )
        )
        if transition.rowcount == 0:
            raise HTTPException(status_code=409, detail="Payment request has already been processed")

        if action == STATUS_APPROVED:
            await add_credits(
                request.user_id,
                db,
                amount=request.credits_requested,
                transaction_type=PURCHASE,
                description=(
                    f"Credits purchased via {request.payment_method} - "
                    f"Payment Request #{request.id[-8:]}"
                ),
                commit=False,
            )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(request)
    logger.info("payment_request_processed id=%s action=%s admin=%s", request_id, action, admin_id)
    return request
