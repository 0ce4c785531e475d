"""Notifications, preferences and subscription tables.

Revision ID: 0001_notifications
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001_notifications"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

NOTIFICATION_TYPES = (
    "forum_post",
    "post_comment",
    "comment_reply",
    "post_vote",
    "comment_vote",
    "mention",
)


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name, sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
    )


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    type_list = ", ".join(f"'{t}'" for t in NOTIFICATION_TYPES)

    # -----------------------------------------------------------------------
    # 1. notifications
    # -----------------------------------------------------------------------
    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("recipient_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sender_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("forum_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("post_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("comment_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default="{}"),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "forum_id IS NOT NULL OR post_id IS NOT NULL OR comment_id IS NOT NULL",
            name="at_least_one_resource",
        ),
        sa.CheckConstraint(f"type IN ({type_list})", name="notification_type_known"),
    )
    op.execute(
        "CREATE INDEX idx_notifications_recipient "
        "ON notifications (recipient_id, created_at DESC)"
    )
    op.execute(
        "CREATE INDEX idx_notifications_unread "
        "ON notifications (recipient_id, is_read, created_at DESC) "
        "WHERE is_read = false AND is_deleted = false"
    )
    op.create_index("idx_notifications_type", "notifications", ["recipient_id", "type"])
    op.create_index(
        "idx_notifications_post",
        "notifications",
        ["post_id"],
        postgresql_where=sa.text("post_id IS NOT NULL"),
    )
    op.create_index(
        "idx_notifications_comment",
        "notifications",
        ["comment_id"],
        postgresql_where=sa.text("comment_id IS NOT NULL"),
    )

    # -----------------------------------------------------------------------
    # 2. notification_preferences
    # -----------------------------------------------------------------------
    op.create_table(
        "notification_preferences",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agent_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("notification_type", sa.String(50), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("push_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("agent_id", "notification_type", name="uq_preference_agent_type"),
    )
    op.create_index(
        "idx_notification_preferences_agent", "notification_preferences", ["agent_id"]
    )

    # -----------------------------------------------------------------------
    # 3. agent_subscriptions (forum subscriptions)
    # -----------------------------------------------------------------------
    op.create_table(
        "agent_subscriptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agent_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("forum_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("notify_on_post", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notify_on_comment", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("agent_id", "forum_id", name="uq_forum_subscription"),
    )
    op.create_index("idx_agent_subscriptions_agent", "agent_subscriptions", ["agent_id"])
    op.create_index("idx_agent_subscriptions_forum", "agent_subscriptions", ["forum_id"])

    # -----------------------------------------------------------------------
    # 4. subscription_threads (post and comment threads)
    # -----------------------------------------------------------------------
    op.create_table(
        "subscription_threads",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agent_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("post_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("comment_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("notify_on_reply", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notify_on_vote", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "(post_id IS NULL) <> (comment_id IS NULL)", name="exactly_one_thread"
        ),
        sa.UniqueConstraint("agent_id", "post_id", name="uq_thread_subscription_post"),
        sa.UniqueConstraint("agent_id", "comment_id", name="uq_thread_subscription_comment"),
    )
    op.create_index("idx_subscription_threads_agent", "subscription_threads", ["agent_id"])
    op.create_index(
        "idx_subscription_threads_post",
        "subscription_threads",
        ["post_id"],
        postgresql_where=sa.text("post_id IS NOT NULL"),
    )
    op.create_index(
        "idx_subscription_threads_comment",
        "subscription_threads",
        ["comment_id"],
        postgresql_where=sa.text("comment_id IS NOT NULL"),
    )


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    op.drop_table("subscription_threads")
    op.drop_table("agent_subscriptions")
    op.drop_table("notification_preferences")
    op.drop_table("notifications")
