"""Manual payment submission router."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from routers.rate_limit import rate_limit
from services.payments import submit_payment_request

router = APIRouter()


class PaymentSubmitRequest(BaseModel):
    credits: int = Field(ge=1, le=100000)
    amount: float = Field(gt=0)
    transaction_id: str = Field(min_length=3, max_length=200)
    payment_method: str = Field(default="QR_CODE", max_length=50)
    qr_code: Optional[str] = Field(default=None, max_length=200)


@router.post("/submit")
async def submit_payment(
    request: PaymentSubmitRequest,
    _rate_limit: None = Depends(rate_limit("payment_submit", limit=20, window_seconds=3600)),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Record a payment for admin review. No credits move until approval."""
    min_credits = int(settings.PAYMENT_MIN_CREDITS)
    if request.credits < min_credits:
        raise HTTPException(
            status_code=422,
            detail=f"Invalid credits amount. Minimum {min_credits} credits required.",
        )
    min_amount = float(settings.PAYMENT_MIN_AMOUNT)
    if request.amount < min_amount:
        raise HTTPException(
            status_code=422,
            detail=f"Invalid amount. Minimum {min_amount:g} {settings.PAYMENT_CURRENCY} required.",
        )

    payment_request = await submit_payment_request(
        user.id,
        db,
        credits_requested=request.credits,
        amount=request.amount,
        transaction_id=request.transaction_id,
        payment_method=request.payment_method,
        qr_code=request.qr_code,
    )
    return {
        "success": True,
        "message": "Payment request submitted successfully",
        "request_id": payment_request.id,
        "status": payment_request.status,
    }
