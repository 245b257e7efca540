"""Credit ledger and usage accounting helpers.

Every balance change on ``User.credits`` is paired with a ``CreditTransaction``
row inside the same database transaction, so a user's balance always equals
the sum of their ledger amounts.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_transaction import (
    ADMIN_ADJUSTMENT,
    IMAGE_DESCRIPTION,
    TRANSACTION_TYPES,
    CreditTransaction,
)
from models.user import User

logger = logging.getLogger(__name__)

CREDIT_COST_PER_IMAGE = 1


class InsufficientCreditsError(HTTPException):
    """Raised when a debit would take a balance below zero."""

    def __init__(self, required: int, available: int, message: Optional[str] = None):
        self.required = int(required)
        self.available = int(available)
        noun = "credit" if self.required == 1 else "credits"
        super().__init__(
            status_code=402,
            detail={
                "error": "Insufficient credits",
                "required": self.required,
                "available": self.available,
                "message": message or f"You need at least {self.required} {noun} to continue.",
            },
        )


async def _get_user(user_id: str, db: AsyncSession) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def get_credit_balance(user_id: str, db: AsyncSession) -> int:
    result = await db.execute(select(User.credits).where(User.id == user_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise HTTPException(status_code=404, detail="User not found")
    return int(balance)


async def get_ledger_total(user_id: str, db: AsyncSession) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(CreditTransaction.user_id == user_id)
    )
    return int(result.scalar() or 0)


async def _apply_delta(
    user_id: str,
    db: AsyncSession,
    *,
    delta: int,
    transaction_type: str,
    description: str,
) -> int:
    """Move the balance by ``delta`` and append the matching ledger row.

    Debits are guarded in the UPDATE itself (``credits >= cost``) so two
    concurrent debits cannot overdraw the account. Nothing is committed here.
    """
    if transaction_type not in TRANSACTION_TYPES:
        raise ValueError(f"Unknown credit transaction type: {transaction_type}")

    stmt = update(User).where(User.id == user_id)
    if delta < 0:
        stmt = stmt.where(User.credits >= -delta)
    result = await db.execute(stmt.values(credits=User.credits + delta))

    if result.rowcount == 0:
        available = await get_credit_balance(user_id, db)
        raise InsufficientCreditsError(required=-delta, available=available)

    db.add(
        CreditTransaction(
            user_id=user_id,
            amount=delta,
            type=transaction_type,
            description=description,
        )
    )
    await db.flush()
    return await get_credit_balance(user_id, db)


async def deduct_credits(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    description: Optional[str] = None,
    transaction_type: str = IMAGE_DESCRIPTION,
    commit: bool = True,
) -> Dict[str, Any]:
    """Debit ``amount`` credits, failing with 402 if the balance is too low.

    With ``commit=False`` the caller owns the transaction; otherwise the debit
    is committed, or everything pending on the session is rolled back.
    """
    cost = int(amount)
    if cost <= 0:
        raise HTTPException(status_code=422, detail="amount must be greater than 0")

    try:
        balance_after = await _apply_delta(
            user_id,
            db,
            delta=-cost,
            transaction_type=transaction_type,
            description=description or f"Used {cost} credit(s) for image description",
        )
        if commit:
            await db.commit()
    except Exception:
        if commit:
            await db.rollback()
        raise

    logger.info("credits_debit user=%s amount=%s type=%s balance=%s", user_id, cost, transaction_type, balance_after)
    return {"charged": cost, "balance_after": balance_after}


async def add_credits(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    transaction_type: str,
    description: Optional[str] = None,
    commit: bool = True,
) -> Dict[str, Any]:
    """Credit ``amount`` to the user and record it in the ledger."""
    grant = int(amount)
    if grant <= 0:
        raise HTTPException(status_code=422, detail="amount must be greater than 0")

    await _get_user(user_id, db)
    try:
        balance_after = await _apply_delta(
            user_id,
            db,
            delta=grant,
            transaction_type=transaction_type,
            description=description or f"Added {grant} credit(s)",
        )
        if commit:
            await db.commit()
    except Exception:
        if commit:
            await db.rollback()
        raise

    logger.info("credits_credit user=%s amount=%s type=%s balance=%s", user_id, grant, transaction_type, balance_after)
    return {"added": grant, "balance_after": balance_after}


async def adjust_credits(
    user_id: str,
    db: AsyncSession,
    *,
    delta: int,
    description: Optional[str] = None,
) -> Dict[str, Any]:
    """Apply a signed admin adjustment. Negative deltas cannot overdraw."""
    change = int(delta)
    if change == 0:
        raise HTTPException(status_code=422, detail="amount must not be 0")

    note = description or f"Admin adjustment: {change:+d} credits"
    if change > 0:
        result = await add_credits(user_id, db, amount=change, transaction_type=ADMIN_ADJUSTMENT, description=note)
    else:
        await _get_user(user_id, db)
        result = await deduct_credits(
            user_id, db, amount=-change, transaction_type=ADMIN_ADJUSTMENT, description=note
        )
    return {"delta": change, "balance_after": result["balance_after"]}


async def set_credit_balance(
    user_id: str,
    db: AsyncSession,
    *,
    new_balance: int,
    description: Optional[str] = None,
) -> Dict[str, Any]:
    """Set an absolute balance, recording the difference as an adjustment."""
    target = int(new_balance)
    if target < 0:
        raise HTTPException(status_code=422, detail="credits must not be negative")

    user = await _get_user(user_id, db)
    difference = target - int(user.credits or 0)
    if difference == 0:
        return {"delta": 0, "balance_after": target}
    return await adjust_credits(user_id, db, delta=difference, description=description)


async def reconcile_balance(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    balance = await get_credit_balance(user_id, db)
    ledger_total = await get_ledger_total(user_id, db)
    return {
        "user_id": user_id,
        "balance": balance,
        "ledger_total": ledger_total,
        "consistent": balance == ledger_total,
    }


def serialize_transaction(entry: CreditTransaction, user: Optional[User] = None) -> Dict[str, Any]:
    payload = {
        "id": entry.id,
        "user_id": entry.user_id,
        "amount": entry.amount,
        "type": entry.type,
        "description": entry.description,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
    if user is not None:
        payload["user"] = {"id": user.id, "email": user.email, "name": user.name}
    return payload


async def get_credit_summary(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    user = await _get_user(user_id, db)
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc())
        .limit(30)
    )
    entries = result.scalars().all()
    return {
        "user_id": user.id,
        "email": user.email,
        "name": user.name,
        "credits": int(user.credits or 0),
        "costs": {"image_description": CREDIT_COST_PER_IMAGE},
        "recent_entries": [serialize_transaction(entry) for entry in entries],
    }


async def list_transactions(
    db: AsyncSession,
    *,
    limit: int = 100,
    user_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    query = select(CreditTransaction, User).join(User, User.id == CreditTransaction.user_id)
    if user_id:
        query = query.where(CreditTransaction.user_id == user_id)
    result = await db.execute(query.order_by(CreditTransaction.created_at.desc()).limit(max(int(limit), 1)))
    return [serialize_transaction(entry, user) for entry, user in result.all()]
