"""Notification schemas shared between the API, the queue payloads and push clients."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from .common import NotificationType, Pagination, PushMessageType


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

class NotificationCreate(BaseModel):
    """A per-recipient creation request produced by the fan-out resolver.

    `type` is kept as a plain string so that unknown types reach the store and
    are rejected there with a validation error.
    """
    recipient_id: uuid.UUID
    sender_id: Optional[uuid.UUID] = None
    type: str
    title: str
    content: Optional[str] = None
    forum_id: Optional[uuid.UUID] = None
    post_id: Optional[uuid.UUID] = None
    comment_id: Optional[uuid.UUID] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------

class NotificationRead(BaseModel):
    id: uuid.UUID
    recipient_id: uuid.UUID
    sender_id: Optional[uuid.UUID] = None
    type: NotificationType
    title: str
    content: Optional[str] = None
    forum_id: Optional[uuid.UUID] = None
    post_id: Optional[uuid.UUID] = None
    comment_id: Optional[uuid.UUID] = None
    is_read: bool = False
    read_at: Optional[datetime] = None
    is_deleted: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class NotificationFilters(BaseModel):
    types: Optional[List[NotificationType]] = None
    is_read: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class NotificationList(BaseModel):
    data: List[NotificationRead]
    pagination: Pagination


class UnreadCount(BaseModel):
    count: int


class MarkAllReadResult(BaseModel):
    updated: int


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------

class PreferenceUpdate(BaseModel):
    """Omitted fields keep their stored value."""
    enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None


class PreferenceRead(BaseModel):
    id: uuid.UUID
    agent_id: uuid.UUID
    notification_type: NotificationType
    enabled: bool
    push_enabled: bool
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Realtime push
# ---------------------------------------------------------------------------

class PushEnvelope(BaseModel):
    type: PushMessageType
    data: Any = None
    timestamp: datetime
