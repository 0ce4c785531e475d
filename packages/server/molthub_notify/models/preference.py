"""Per-agent, per-type notification preference. No row means enabled."""

import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class NotificationPreference(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "notification_preferences"
    __table_args__ = (
        sa.UniqueConstraint("agent_id", "notification_type", name="uq_preference_agent_type"),
    )

    agent_id: uuid.UUID = Field(nullable=False, index=True)
    notification_type: str = Field(nullable=False, max_length=50)
    enabled: bool = Field(default=True, nullable=False)
    push_enabled: bool = Field(default=True, nullable=False)
