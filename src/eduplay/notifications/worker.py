"""Notification maintenance arq worker.

Jobs:
- Nightly cleanup of read notifications past the retention window

Run with: arq eduplay.notifications.worker.WorkerSettings
"""

from __future__ import annotations

import logging
from typing import Any

from arq import cron
from arq.connections import RedisSettings
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.config import get_settings
from eduplay.database import close_db, get_session, init_db
from eduplay.notifications.service import cleanup_old_notifications

logger = logging.getLogger(__name__)


async def _open_session() -> AsyncSession:
    async for session in get_session():
        return session
    raise RuntimeError("Failed to get database session")


async def cleanup_notifications(ctx: dict[str, Any]) -> int:
    """Delete read notifications older than the retention window. Runs daily."""
    days = get_settings().notification_retention_days
    db = await _open_session()
    try:
        deleted = await cleanup_old_notifications(db, days)
        await db.commit()
    finally:
        await db.close()
    logger.info("Notification cleanup deleted %d rows (retention %d days)", deleted, days)
    return deleted


async def startup(ctx: dict[str, Any]) -> None:
    await init_db(get_settings().database_url)
    logger.info("Notification worker started")


async def shutdown(ctx: dict[str, Any]) -> None:
    await close_db()
    logger.info("Notification worker shut down")


class WorkerSettings:
    """arq worker settings for notification maintenance."""

    functions = [cleanup_notifications]
    cron_jobs = [cron(cleanup_notifications, hour={get_settings().notification_cleanup_hour}, minute={0})]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 1
    job_timeout = 300
