"""
Health check endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import settings
from database import async_session_maker, engine
from services.settings_store import IDEOGRAM_API_KEY, get_setting

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Reports database and Redis reachability; Redis only backs rate limits,
    so its loss degrades but does not fail the service.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "redis": "unknown",
    }

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "up"
    except Exception as e:
        health_status["database"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    try:
        r = redis.from_url(settings.REDIS_URL)
        await r.ping()
        await r.aclose()
        health_status["redis"] = "up"
    except Exception as e:
        health_status["redis"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    return health_status


@router.get("/health/ready")
async def readiness_check():
    """Ready once an Ideogram key is available from settings or environment."""
    async with async_session_maker() as db:
        api_key = await get_setting(db, IDEOGRAM_API_KEY)
    if not api_key and not settings.DESCRIBE_ALLOW_FALLBACK:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": [IDEOGRAM_API_KEY]},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
