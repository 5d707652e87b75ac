"""Health, readiness, and version endpoints."""

from fastapi import APIRouter
from sqlalchemy import text

from noorboard.config import get_settings
from noorboard.database import get_session, is_initialized
from noorboard.redis_client import get_redis, redis_enabled

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness check: 200 if the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness() -> dict[str, object]:
    """Readiness check: verifies the leaderboard store and, if configured, Redis."""
    checks: dict[str, object] = {}

    if not is_initialized():
        checks["database"] = "error: not configured"
    else:
        try:
            async for db in get_session():
                result = await db.execute(text("SELECT 1"))
                result.scalar()
            checks["database"] = "ok"
        except Exception as exc:
            checks["database"] = f"error: {exc}"

    if redis_enabled():
        try:
            await get_redis().ping()
            checks["redis"] = "ok"
        except Exception as exc:
            checks["redis"] = f"error: {exc}"
    else:
        checks["redis"] = "disabled"

    all_ok = all(v in ("ok", "disabled") for v in checks.values())
    return {"status": "ready" if all_ok else "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    """Return API version and environment."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
