"""
Health check endpoints.
/health always answers 200 and reports dependency state in the body;
/health/ready answers 503 until the database and Redis are reachable.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from reviewsync.config import settings
from reviewsync.models.database import async_session_factory

router = APIRouter(tags=["health"])


async def _check_database() -> tuple[bool, str | None]:
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            return result.scalar() == 1, None
    except Exception as e:
        return False, str(e)[:200]


async def _check_redis() -> tuple[bool, str | None]:
    from redis.asyncio import Redis

    client = Redis.from_url(settings.REDIS_URL)
    try:
        return bool(await client.ping()), None
    except Exception as e:
        return False, str(e)[:200]
    finally:
        await client.aclose()


@router.get("/health")
async def health_check():
    """Liveness: the API is up; database state is informational."""
    db_ok, db_error = await _check_database()

    response = {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.APP_VERSION,
        "database": "connected" if db_ok else "unreachable",
    }
    if db_error:
        response["database_error"] = db_error
    return response


@router.get("/health/ready")
async def readiness_check():
    """Readiness: database and Redis both reachable."""
    db_ok, _ = await _check_database()
    redis_ok, _ = await _check_redis()
    ready = db_ok and redis_ok
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"ready": ready, "database": db_ok, "redis": redis_ok},
    )
