"""Liveness, readiness and version checks (unauthenticated, not rate limited)."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.config import get_settings
from eduplay.database import get_session
from eduplay.redis_client import get_redis_or_none

router = APIRouter()


async def _check_database(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001
        return f"error: {exc}"
    return "ok"


async def _check_redis() -> str:
    client = get_redis_or_none()
    if client is None:
        return "error: not initialized"
    try:
        await client.ping()
    except Exception as exc:  # noqa: BLE001
        return f"error: {exc}"
    return "ok"


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(db: AsyncSession = Depends(get_session)) -> JSONResponse:  # noqa: B008
    """503 until both the database and Redis answer."""
    checks = {"database": await _check_database(db), "redis": await _check_redis()}
    ready = all(result == "ok" for result in checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "degraded", "checks": checks},
    )


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {"name": "eduplay-api", "version": settings.app_version, "environment": settings.environment}
