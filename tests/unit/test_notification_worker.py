"""Tests for the notification maintenance worker."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.notifications import worker
from eduplay.notifications.service import create_notification, get_notifications


class TestCleanupJob:
    @pytest.mark.asyncio
    async def test_deletes_read_notifications_past_retention(
        self, db_session: AsyncSession, make_user, monkeypatch
    ):
        user = await make_user("Reader")
        user_id = user.id
        stale = await create_notification(db_session, user_id, "level_up", "Old", "Read long ago")
        stale.read = True
        stale.created_at = datetime.now(timezone.utc) - timedelta(days=45)
        await create_notification(db_session, user_id, "level_up", "New", "Still unread")
        await db_session.commit()

        async def _session():
            return db_session

        monkeypatch.setattr(worker, "_open_session", _session)

        assert await worker.cleanup_notifications({}) == 1

        remaining, total = await get_notifications(db_session, user_id)
        assert total == 1
        assert remaining[0].title == "New"

    def test_scheduled_nightly(self):
        (job,) = worker.WorkerSettings.cron_jobs
        assert job.coroutine is worker.cleanup_notifications
        assert job.hour == {2}
        assert job.minute == {0}
