"""Notification creation and delivery service.

Notifications are:
1. Persisted in the database
2. Pushed to the user over Redis pub/sub (``ws:user:<id>``) once committed

Other engines call ``create_notification`` inside their own session so the
notification commits or rolls back with the change that produced it. Pushes
are queued on the session and only released by a successful commit;
``publish_committed`` sends them.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, event, func, inspect, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from eduplay.db.models import Notification, User
from eduplay.errors import NotFoundError, ValidationError, translate_errors
from eduplay.redis_client import get_redis_or_none, publish_json, user_channel

logger = logging.getLogger(__name__)

VALID_TYPES = frozenset({
    "achievement_unlocked",
    "rank_up",
    "friend_request",
    "guild_invitation",
    "mission_completed",
    "level_up",
    "message_received",
    "system_announcement",
    "ml_coins_earned",
    "streak_milestone",
    "exercise_feedback",
})

_QUEUED_PUSHES = "queued_notification_pushes"
_COMMITTED_PUSHES = "committed_notification_pushes"


@event.listens_for(Session, "after_commit")
def _release_queued_pushes(session: Session) -> None:
    queued = session.info.pop(_QUEUED_PUSHES, [])
    # rows added inside a rolled-back transaction or savepoint were expunged
    committed = [n for n in queued if inspect(n).persistent]
    if committed:
        session.info.setdefault(_COMMITTED_PUSHES, []).extend(committed)


async def _push(redis: Any, notification: Notification) -> None:
    payload = {
        "event": "notification",
        "data": {
            "id": notification.id,
            "type": notification.type,
            "title": notification.title,
            "message": notification.message,
            "data": notification.data,
            "timestamp": notification.created_at.isoformat(),
            "read": False,
        },
    }
    try:
        await publish_json(redis, user_channel(notification.user_id), payload)
    except Exception:  # noqa: BLE001
        logger.warning("Failed to push notification %s", notification.id, exc_info=True)


async def publish_committed(db: AsyncSession, redis: Any | None = None) -> int:
    """Push every notification committed through ``db`` since the last call.

    Returns the number of notifications pushed; 0 when Redis is unavailable.
    """
    committed = db.info.pop(_COMMITTED_PUSHES, [])
    redis = redis if redis is not None else get_redis_or_none()
    if redis is None or not committed:
        return 0
    for notification in committed:
        await _push(redis, notification)
    return len(committed)


def _validate_type(type_: str) -> None:
    if type_ not in VALID_TYPES:
        raise ValidationError(f"Invalid notification type: {type_}")


@translate_errors("create notification")
async def create_notification(
    db: AsyncSession,
    user_id: uuid.UUID,
    type_: str,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> Notification:
    """Persist a notification and queue its live push for after commit."""
    _validate_type(type_)

    now = datetime.now(timezone.utc)
    notification = Notification(
        user_id=user_id,
        type=type_,
        title=title,
        message=message,
        data=data or {},
        read=False,
        created_at=now,
        updated_at=now,
    )
    db.add(notification)
    await db.flush()

    db.info.setdefault(_QUEUED_PUSHES, []).append(notification)
    return notification


@translate_errors("send notification")
async def send_notification(
    db: AsyncSession,
    type_: str,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
    user_ids: list[uuid.UUID] | None = None,
) -> int:
    """Send a notification to the given users, or to every active user when none are given.

    Returns the number of notifications created.
    """
    _validate_type(type_)

    query = select(User.id).where(User.is_active.is_(True))
    if user_ids:
        query = query.where(User.id.in_(user_ids))
    recipients = list((await db.execute(query.order_by(User.id))).scalars().all())

    if user_ids:
        missing = set(user_ids) - set(recipients)
        if missing:
            raise NotFoundError(f"User not found: {', '.join(sorted(str(m) for m in missing))}")

    for user_id in recipients:
        await create_notification(db, user_id, type_, title, message, data)

    logger.info("Notification '%s' sent to %d users", title, len(recipients))
    return len(recipients)


@translate_errors("fetch notifications")
async def get_notifications(
    db: AsyncSession,
    user_id: uuid.UUID,
    page: int = 1,
    per_page: int = 20,
    unread_only: bool = False,
) -> tuple[list[Notification], int]:
    """Get user's notifications (paginated, most recent first)."""
    filters = [Notification.user_id == user_id]
    if unread_only:
        filters.append(Notification.read.is_(False))

    total = (
        await db.execute(select(func.count()).select_from(Notification).where(*filters))
    ).scalar_one()

    result = await db.execute(
        select(Notification)
        .where(*filters)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


@translate_errors("count unread notifications")
async def get_unread_count(db: AsyncSession, user_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
    )
    return result.scalar_one()


@translate_errors("mark notification as read")
async def mark_as_read(db: AsyncSession, user_id: uuid.UUID, notification_id: int) -> None:
    """Mark a single notification as read. NotFoundError if it is not the user's."""
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == user_id)
        .values(read=True, updated_at=datetime.now(timezone.utc))
    )
    if result.rowcount == 0:
        raise NotFoundError("Notification not found")
    await db.flush()


@translate_errors("mark notifications as read")
async def mark_all_as_read(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Mark all unread notifications as read. Returns count updated."""
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
        .values(read=True, updated_at=datetime.now(timezone.utc))
    )
    await db.flush()
    return result.rowcount


@translate_errors("delete notification")
async def delete_notification(db: AsyncSession, user_id: uuid.UUID, notification_id: int) -> None:
    result = await db.execute(
        delete(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
    )
    if result.rowcount == 0:
        raise NotFoundError("Notification not found")
    await db.flush()


@translate_errors("clear notifications")
async def clear_all_notifications(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Delete every notification of the user. Returns count deleted."""
    result = await db.execute(delete(Notification).where(Notification.user_id == user_id))
    await db.flush()
    return result.rowcount


@translate_errors("clean up old notifications")
async def cleanup_old_notifications(db: AsyncSession, days_old: int = 30) -> int:
    """Delete read notifications older than ``days_old`` days. Returns count deleted."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=days_old)
    result = await db.execute(
        delete(Notification).where(Notification.read.is_(True), Notification.created_at < cutoff)
    )
    await db.flush()
    logger.info("Cleaned up %d read notifications older than %d days", result.rowcount, days_old)
    return result.rowcount
