"""
Canteen Service - Health endpoint
"""
import asyncio

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from redis.exceptions import RedisError

from canteen.core.config import get_settings
from canteen.core.redis_client import get_redis
from canteen.db.database import engine

settings = get_settings()
router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    deps: dict[str, str] = {}
    healthy = True

    # Check database
    try:
        async def _ping_db():
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        await asyncio.wait_for(_ping_db(), timeout=settings.HEALTH_CHECK_TIMEOUT)
        deps["database"] = "ok"
    except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
        deps["database"] = f"error: {str(e)[:100]}"
        healthy = False

    # Redis only carries idempotency replays and change streams; orders still work without it.
    try:
        redis = get_redis()
        await asyncio.wait_for(redis.ping(), timeout=settings.HEALTH_CHECK_TIMEOUT)
        deps["redis"] = "ok"
    except (RedisError, OSError, asyncio.TimeoutError) as e:
        deps["redis"] = f"degraded: {str(e)[:100]}"

    return JSONResponse(
        content={
            "status": "healthy" if healthy else "unhealthy",
            "service": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "dependencies": deps,
        },
        status_code=200 if healthy else 503,
    )
