"""API tests for the notification endpoints."""

from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.notifications.service import create_notification


async def _seed(db: AsyncSession, user, count: int) -> list[int]:
    ids = []
    for i in range(count):
        notification = await create_notification(db, user.id, "streak_milestone", f"Streak {i}", "Keep going")
        ids.append(notification.id)
    await db.commit()
    return ids


class TestNotificationsApi:
    @pytest.mark.asyncio
    async def test_read_state_flow(self, client: AsyncClient, db_session: AsyncSession, make_user, headers_for):
        user = await make_user("Reader")
        first, _, third = await _seed(db_session, user, 3)
        headers = headers_for(user)

        resp = await client.get("/api/v1/notifications", params={"perPage": 2}, headers=headers)
        listing = resp.json()["data"]
        assert listing["total"] == 3
        assert listing["perPage"] == 2
        assert [n["id"] for n in listing["notifications"]] == [third, third - 1]

        resp = await client.patch(f"/api/v1/notifications/{first}/read", headers=headers)
        assert resp.status_code == 200

        resp = await client.get("/api/v1/notifications/unread-count", headers=headers)
        assert resp.json()["data"] == {"count": 2}

        resp = await client.get("/api/v1/notifications", params={"unreadOnly": "true"}, headers=headers)
        assert first not in [n["id"] for n in resp.json()["data"]["notifications"]]

        resp = await client.post("/api/v1/notifications/read-all", headers=headers)
        assert resp.json()["data"] == {"updated": 2}

        resp = await client.delete(f"/api/v1/notifications/{first}", headers=headers)
        assert resp.status_code == 200
        resp = await client.get("/api/v1/notifications", headers=headers)
        assert resp.json()["data"]["total"] == 2

    @pytest.mark.asyncio
    async def test_cannot_touch_other_users_notifications(
        self, client: AsyncClient, db_session: AsyncSession, make_user, headers_for
    ):
        owner = await make_user("Owner")
        intruder = await make_user("Intruder")
        (notification_id,) = await _seed(db_session, owner, 1)

        resp = await client.patch(f"/api/v1/notifications/{notification_id}/read", headers=headers_for(intruder))
        assert resp.status_code == 404

        resp = await client.delete(f"/api/v1/notifications/{notification_id}", headers=headers_for(intruder))
        assert resp.status_code == 404

        resp = await client.get("/api/v1/notifications/unread-count", headers=headers_for(owner))
        assert resp.json()["data"] == {"count": 1}

    @pytest.mark.asyncio
    async def test_clear_all(self, client: AsyncClient, db_session: AsyncSession, make_user, headers_for):
        user = await make_user("Reader")
        await _seed(db_session, user, 2)

        resp = await client.delete("/api/v1/notifications/clear-all", headers=headers_for(user))
        assert resp.status_code == 200
        assert resp.json()["data"] == {"deleted": 2}

        resp = await client.get("/api/v1/notifications", headers=headers_for(user))
        assert resp.json()["data"]["total"] == 0


class TestSendNotificationApi:
    @pytest.mark.asyncio
    async def test_admin_sends_to_listed_users(
        self, client: AsyncClient, db_session: AsyncSession, make_user, headers_for
    ):
        admin = await make_user("Admin", role="admin")
        ana = await make_user("Ana")
        ben = await make_user("Ben")
        await db_session.commit()

        resp = await client.post(
            "/api/v1/notifications/send",
            json={"userIds": [str(ana.id)], "type": "system_announcement", "title": "Hi", "message": "Hello"},
            headers=headers_for(admin),
        )
        assert resp.status_code == 201
        assert resp.json()["data"] == {"sent": 1}

        resp = await client.get("/api/v1/notifications/unread-count", headers=headers_for(ana))
        assert resp.json()["data"] == {"count": 1}
        resp = await client.get("/api/v1/notifications/unread-count", headers=headers_for(ben))
        assert resp.json()["data"] == {"count": 0}

    @pytest.mark.asyncio
    async def test_admin_broadcast(self, client: AsyncClient, db_session: AsyncSession, make_user, headers_for):
        admin = await make_user("Admin", role="admin")
        await make_user("Ana")
        await make_user("Ben")
        await db_session.commit()

        resp = await client.post(
            "/api/v1/notifications/send",
            json={"type": "system_announcement", "title": "Season 2", "message": "A new season starts"},
            headers=headers_for(admin),
        )
        assert resp.status_code == 201
        assert resp.json()["data"] == {"sent": 3}

    @pytest.mark.asyncio
    async def test_non_admin_cannot_send(self, client: AsyncClient, db_session: AsyncSession, make_user, headers_for):
        teacher = await make_user("Teacher", role="teacher")
        await db_session.commit()

        resp = await client.post(
            "/api/v1/notifications/send",
            json={"type": "system_announcement", "title": "Hi", "message": "Hello"},
            headers=headers_for(teacher),
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "FORBIDDEN"
