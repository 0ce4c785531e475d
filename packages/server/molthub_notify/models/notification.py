"""Notification model (soft-deleted, never hard-deleted by normal flow)."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, JSONType, UUIDMixin


class Notification(UUIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "notifications"
    __table_args__ = (
        sa.CheckConstraint(
            "forum_id IS NOT NULL OR post_id IS NOT NULL OR comment_id IS NOT NULL",
            name="at_least_one_resource",
        ),
        sa.Index("idx_notifications_recipient", "recipient_id", "created_at"),
        sa.Index("idx_notifications_type", "recipient_id", "type"),
    )

    recipient_id: uuid.UUID = Field(nullable=False)
    sender_id: Optional[uuid.UUID] = Field(default=None)
    type: str = Field(nullable=False, max_length=50)  # forum_post | post_comment | ...
    title: str = Field(nullable=False, max_length=255)
    content: Optional[str] = Field(default=None, sa_type=sa.Text)

    # Resource references
    forum_id: Optional[uuid.UUID] = Field(default=None)
    post_id: Optional[uuid.UUID] = Field(default=None, index=True)
    comment_id: Optional[uuid.UUID] = Field(default=None, index=True)

    is_read: bool = Field(default=False, nullable=False)
    read_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    is_deleted: bool = Field(default=False, nullable=False)

    # `metadata` is reserved on declarative classes
    meta: dict = Field(
        default_factory=dict,
        sa_column=sa.Column("metadata", JSONType, nullable=False, server_default="{}"),
    )
