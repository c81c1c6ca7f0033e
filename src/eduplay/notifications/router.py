"""Notification API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.auth.dependencies import get_current_user, require_admin
from eduplay.database import get_session
from eduplay.db.models import User
from eduplay.notifications.schemas import (
    ClearAllResponse,
    MarkAllReadResponse,
    NotificationListResponse,
    NotificationResponse,
    SendNotificationRequest,
    SendNotificationResponse,
    UnreadCountResponse,
)
from eduplay.notifications.service import (
    clear_all_notifications,
    delete_notification,
    get_notifications,
    get_unread_count,
    mark_all_as_read,
    mark_as_read,
    send_notification,
)
from eduplay.schemas import ApiResponse, ok

router = APIRouter(prefix="/api/v1", tags=["Notifications"])


@router.get("/notifications", response_model=ApiResponse[NotificationListResponse])
async def list_notifications(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100, alias="perPage"),
    unread_only: bool = Query(False, alias="unreadOnly"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """List the caller's notifications (paginated, newest first)."""
    notifications, total = await get_notifications(db, user.id, page, per_page, unread_only)
    return ok(
        NotificationListResponse(
            notifications=[NotificationResponse.model_validate(n) for n in notifications],
            total=total,
            page=page,
            per_page=per_page,
        )
    )


@router.get("/notifications/unread-count", response_model=ApiResponse[UnreadCountResponse])
async def unread_count(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    count = await get_unread_count(db, user.id)
    return ok(UnreadCountResponse(count=count))


@router.post("/notifications/read-all", response_model=ApiResponse[MarkAllReadResponse])
async def mark_all_read(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    count = await mark_all_as_read(db, user.id)
    await db.commit()
    return ok(MarkAllReadResponse(updated=count), message=f"Marked {count} notifications as read")


@router.delete("/notifications/clear-all", response_model=ApiResponse[ClearAllResponse])
async def clear_all(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    count = await clear_all_notifications(db, user.id)
    await db.commit()
    return ok(ClearAllResponse(deleted=count), message=f"Cleared {count} notifications")


@router.post("/notifications/send", status_code=201, response_model=ApiResponse[SendNotificationResponse])
async def send(
    body: SendNotificationRequest,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    """Send a notification to listed users, or broadcast to every active user."""
    sent = await send_notification(db, body.type, body.title, body.message, body.data, body.user_ids)
    await db.commit()
    return ok(SendNotificationResponse(sent=sent), message=f"Notification sent to {sent} users")


@router.patch("/notifications/{notification_id}/read", response_model=ApiResponse[None])
async def mark_notification_read(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    await mark_as_read(db, user.id, notification_id)
    await db.commit()
    return ok(None, message="Notification marked as read")


@router.delete("/notifications/{notification_id}", response_model=ApiResponse[None])
async def remove_notification(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    await delete_notification(db, user.id, notification_id)
    await db.commit()
    return ok(None, message="Notification deleted")
