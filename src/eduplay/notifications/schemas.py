"""Pydantic schemas for notification endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import Field

from eduplay.schemas import CamelModel


class NotificationResponse(CamelModel):
    id: int
    type: str
    title: str
    message: str
    data: dict[str, Any] = {}
    read: bool
    created_at: datetime


class NotificationListResponse(CamelModel):
    notifications: list[NotificationResponse]
    total: int
    page: int
    per_page: int


class UnreadCountResponse(CamelModel):
    count: int


class MarkAllReadResponse(CamelModel):
    updated: int


class ClearAllResponse(CamelModel):
    deleted: int


class SendNotificationRequest(CamelModel):
    """Omit ``user_ids`` to broadcast to every active user."""

    user_ids: list[uuid.UUID] | None = Field(None, min_length=1, max_length=1000)
    type: str
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1, max_length=1000)
    data: dict[str, Any] | None = None


class SendNotificationResponse(CamelModel):
    sent: int
