import asyncio
import json
from typing import Dict, List, Optional, Set
from unittest.mock import patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import settings
from database import Base, get_db
from main import app
from models.credit_transaction import BONUS
from models.user import ROLE_USER, User
from routers import rate_limit
from services.credits import add_credits
from services.ideogram import IdeogramClient, IdeogramError
from services.passwords import hash_password
from services.session_token import create_session_token


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "image_description.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def integration_client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    # Streaming responses and readiness checks open their own sessions.
    with patch("services.bulk.async_session_maker", session_maker), patch(
        "routers.health.async_session_maker", session_maker
    ):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client, session_maker

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def create_user(session_maker):
    """Factory for users whose starting balance is granted through the ledger."""

    async def _create(
        email: str = "user@example.com",
        *,
        credits: int = 0,
        role: str = ROLE_USER,
        is_active: bool = True,
        password: Optional[str] = None,
        name: Optional[str] = None,
    ) -> str:
        async with session_maker() as db:
            user = User(
                email=email,
                name=name,
                role=role,
                credits=0,
                is_active=is_active,
                password_hash=hash_password(password) if password else None,
            )
            db.add(user)
            await db.flush()
            user_id = user.id
            if credits:
                await add_credits(user_id, db, amount=credits, transaction_type=BONUS, description="Test grant")
            else:
                await db.commit()
        return user_id

    return _create


@pytest.fixture
def auth_headers():
    def _headers(user_id: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_session_token(user_id)['token']}"}

    return _headers


class FakeIdeogram:
    """Stands in for the remote describe endpoint."""

    def __init__(self):
        self.calls: List[str] = []
        self.fail: Set[str] = set()
        self.delay: float = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    async def describe(self, client, filename, content, content_type):
        self.calls.append(filename)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if filename in self.fail:
                raise IdeogramError("API error (500): upstream unavailable")
            return f"A detailed description of {filename}"
        finally:
            self.in_flight -= 1


@pytest.fixture
def fake_ideogram():
    fake = FakeIdeogram()

    async def _describe(client, filename, content, content_type):
        return await fake.describe(client, filename, content, content_type)

    with patch.object(settings, "IDEOGRAM_API_KEY", "test-ideogram-key"), patch.object(
        IdeogramClient, "describe", _describe
    ):
        yield fake


@pytest.fixture
def parse_sse():
    def _parse(body: str) -> List[dict]:
        return [
            json.loads(frame[len("data: "):])
            for frame in body.split("\n\n")
            if frame.startswith("data: ")
        ]

    return _parse
