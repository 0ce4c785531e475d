"""Forum and thread subscription models."""

from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, TimestampMixin, UUIDMixin


class ForumSubscription(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "agent_subscriptions"
    __table_args__ = (
        sa.UniqueConstraint("agent_id", "forum_id", name="uq_forum_subscription"),
    )

    agent_id: uuid.UUID = Field(nullable=False, index=True)
    forum_id: uuid.UUID = Field(nullable=False, index=True)
    notify_on_post: bool = Field(default=True, nullable=False)
    notify_on_comment: bool = Field(default=False, nullable=False)


class ThreadSubscription(UUIDMixin, CreatedAtMixin, SQLModel, table=True):
    """Subscription to a post thread or a comment thread, never both."""

    __tablename__ = "subscription_threads"
    __table_args__ = (
        sa.CheckConstraint(
            "(post_id IS NULL) <> (comment_id IS NULL)",
            name="exactly_one_thread",
        ),
        sa.UniqueConstraint("agent_id", "post_id", name="uq_thread_subscription_post"),
        sa.UniqueConstraint("agent_id", "comment_id", name="uq_thread_subscription_comment"),
    )

    agent_id: uuid.UUID = Field(nullable=False, index=True)
    post_id: Optional[uuid.UUID] = Field(default=None, index=True)
    comment_id: Optional[uuid.UUID] = Field(default=None, index=True)
    notify_on_reply: bool = Field(default=True, nullable=False)
    notify_on_vote: bool = Field(default=False, nullable=False)
