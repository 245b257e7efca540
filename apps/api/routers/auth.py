"""
Authentication router: email/password accounts and bearer session tokens.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import get_db
from models.credit_transaction import BONUS
from models.user import ROLE_USER, User
from routers.auth_scope import get_current_user
from routers.rate_limit import rate_limit
from services.credits import add_credits
from services.passwords import hash_password, verify_password
from services.session_token import create_session_token

router = APIRouter()
logger = logging.getLogger(__name__)


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=8, max_length=128)
    name: Optional[str] = Field(default=None, max_length=200)


class LoginRequest(BaseModel):
    email: str
    password: str


class SessionResponse(BaseModel):
    user_id: str
    email: str
    role: str
    credits: int
    session_token: str
    token_type: str = "bearer"
    session_expires_at: int


class CurrentUserResponse(BaseModel):
    user_id: str
    email: str
    name: Optional[str] = None
    role: str
    credits: int
    is_active: bool


def _session_response(user: User) -> SessionResponse:
    session = create_session_token(user.id)
    return SessionResponse(
        user_id=user.id,
        email=user.email,
        role=user.role,
        credits=int(user.credits or 0),
        session_token=session["token"],
        session_expires_at=session["expires_at"],
    )


async def _email_taken(db: AsyncSession, email: str) -> bool:
    existing = await db.execute(select(User.id).where(func.lower(User.email) == email))
    return existing.scalar_one_or_none() is not None


@router.post("/register", response_model=SessionResponse)
async def register(
    request: RegisterRequest,
    _rate_limit: None = Depends(rate_limit("auth_register", limit=20, window_seconds=3600)),
    db: AsyncSession = Depends(get_db),
):
    """Create an account; the signup grant is recorded as a BONUS transaction."""
    email = request.email.strip().lower()
    if await _email_taken(db, email):
        raise HTTPException(status_code=409, detail="Email is already registered")

    user = User(
        email=email,
        name=request.name,
        password_hash=hash_password(request.password),
        credits=0,
        role=ROLE_USER,
        is_active=True,
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError:
        # A concurrent signup claimed the address after the lookup above.
        await db.rollback()
        raise HTTPException(status_code=409, detail="Email is already registered")

    bonus = max(int(settings.SIGNUP_BONUS_CREDITS), 0)
    if bonus:
        await add_credits(user.id, db, amount=bonus, transaction_type=BONUS, description="Signup bonus credits")
    else:
        await db.commit()
    await db.refresh(user)
    logger.info("user_registered id=%s", user.id)
    return _session_response(user)


@router.post("/login", response_model=SessionResponse)
async def login(
    request: LoginRequest,
    _rate_limit: None = Depends(rate_limit("auth_login", limit=30, window_seconds=900)),
    db: AsyncSession = Depends(get_db),
):
    email = request.email.strip().lower()
    result = await db.execute(select(User).where(func.lower(User.email) == email))
    user = result.scalar_one_or_none()
    if not user or not verify_password(request.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")

    user.last_login_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(user)
    return _session_response(user)


@router.get("/me", response_model=CurrentUserResponse)
async def me(user: User = Depends(get_current_user)):
    return CurrentUserResponse(
        user_id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        credits=int(user.credits or 0),
        is_active=bool(user.is_active),
    )
