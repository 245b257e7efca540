"""Signed-in user's credit balance and payment requests."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from services.credits import get_credit_summary
from services.payments import list_user_payment_requests

router = APIRouter()


@router.get("/credits")
async def credits_summary(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await get_credit_summary(user.id, db)


@router.get("/payment-requests")
async def my_payment_requests(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"payment_requests": await list_user_payment_requests(user.id, db)}
