"""
Notification store: persistence, read state and per-type preferences.

Handles:
- Creation with resource/type validation and content truncation
- Filtered, paginated listing (soft-deleted rows excluded, newest first)
- Read / unread / read-all / soft delete, scoped to the owning agent
- Per-type preferences (a missing row means enabled)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

import structlog
from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from molthub_notify.core.database import upsert
from molthub_notify.core.errors import NotFoundError, ValidationError
from molthub_notify.models.notification import Notification
from molthub_notify.models.preference import NotificationPreference
from molthub_shared.schemas.common import (
    MAX_NOTIFICATION_CONTENT_LENGTH,
    MAX_NOTIFICATION_TITLE_LENGTH,
    NOTIFICATION_TYPES,
)
from molthub_shared.schemas.notifications import (
    NotificationCreate,
    NotificationFilters,
    NotificationRead,
    PreferenceRead,
)

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _validate(data: NotificationCreate) -> None:
    if data.forum_id is None and data.post_id is None and data.comment_id is None:
        raise ValidationError(
            "Notification must reference at least one of forum_id, post_id or comment_id"
        )
    if data.type not in NOTIFICATION_TYPES:
        raise ValidationError(f"Unknown notification type: {data.type}")
    if not data.title:
        raise ValidationError("Notification title is required")
    if len(data.title) > MAX_NOTIFICATION_TITLE_LENGTH:
        raise ValidationError(
            f"Notification title exceeds {MAX_NOTIFICATION_TITLE_LENGTH} characters"
        )


def truncate_content(content: Optional[str]) -> Optional[str]:
    if content is None:
        return None
    return content[:MAX_NOTIFICATION_CONTENT_LENGTH]


def notification_to_read(notification: Notification) -> NotificationRead:
    """Convert a Notification ORM object to its wire representation."""
    return NotificationRead(
        id=notification.id,
        recipient_id=notification.recipient_id,
        sender_id=notification.sender_id,
        type=notification.type,
        title=notification.title,
        content=notification.content,
        forum_id=notification.forum_id,
        post_id=notification.post_id,
        comment_id=notification.comment_id,
        is_read=notification.is_read,
        read_at=notification.read_at,
        is_deleted=notification.is_deleted,
        metadata=notification.meta or {},
        created_at=notification.created_at,
    )


def preference_to_read(pref: NotificationPreference) -> PreferenceRead:
    return PreferenceRead(
        id=pref.id,
        agent_id=pref.agent_id,
        notification_type=pref.notification_type,
        enabled=pref.enabled,
        push_enabled=pref.push_enabled,
        created_at=pref.created_at,
        updated_at=pref.updated_at,
    )


async def _get_owned(
    session: AsyncSession, notification_id: uuid.UUID, agent_id: uuid.UUID
) -> Notification:
    # Ownership is part of the predicate: foreign ids look exactly like absent ones
    result = await session.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.recipient_id == agent_id,
            Notification.is_deleted == False,  # noqa: E712
        )
    )
    notification = result.scalars().first()
    if notification is None:
        raise NotFoundError("Notification not found")
    return notification


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


async def create_notification(
    session: AsyncSession,
    data: NotificationCreate,
    *,
    notification_id: uuid.UUID | None = None,
) -> Notification:
    """Validate and persist a single notification.

    When `notification_id` is given and a row with that id already exists the
    existing row is returned, so a retried queue job never persists twice.
    """
    _validate(data)

    if notification_id is not None:
        existing = await session.get(Notification, notification_id)
        if existing is not None:
            return existing

    notification = Notification(
        recipient_id=data.recipient_id,
        sender_id=data.sender_id,
        type=data.type,
        title=data.title,
        content=truncate_content(data.content),
        forum_id=data.forum_id,
        post_id=data.post_id,
        comment_id=data.comment_id,
        meta=dict(data.metadata),
    )
    if notification_id is not None:
        notification.id = notification_id

    session.add(notification)
    await session.commit()
    await session.refresh(notification)

    log.info(
        "notifications.created",
        notification_id=str(notification.id),
        recipient_id=str(notification.recipient_id),
        type=notification.type,
    )
    return notification


async def get_notifications(
    session: AsyncSession,
    agent_id: uuid.UUID,
    filters: NotificationFilters | None = None,
) -> Sequence[Notification]:
    filters = filters or NotificationFilters()

    query = select(Notification).where(
        Notification.recipient_id == agent_id,
        Notification.is_deleted == False,  # noqa: E712
    )
    if filters.types:
        query = query.where(Notification.type.in_([t.value for t in filters.types]))
    if filters.is_read is not None:
        query = query.where(Notification.is_read == filters.is_read)
    if filters.start_date is not None:
        query = query.where(Notification.created_at >= filters.start_date)
    if filters.end_date is not None:
        query = query.where(Notification.created_at <= filters.end_date)

    query = (
        query.order_by(Notification.created_at.desc())
        .offset(filters.offset)
        .limit(filters.limit)
    )
    result = await session.execute(query)
    return result.scalars().all()


async def get_unread_count(session: AsyncSession, agent_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(Notification)
        .where(
            Notification.recipient_id == agent_id,
            Notification.is_read == False,  # noqa: E712
            Notification.is_deleted == False,  # noqa: E712
        )
    )
    return result.scalar_one()


async def mark_as_read(
    session: AsyncSession, notification_id: uuid.UUID, agent_id: uuid.UUID
) -> Notification:
    notification = await _get_owned(session, notification_id, agent_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        session.add(notification)
        await session.commit()
        await session.refresh(notification)
    return notification


async def mark_as_unread(
    session: AsyncSession, notification_id: uuid.UUID, agent_id: uuid.UUID
) -> Notification:
    notification = await _get_owned(session, notification_id, agent_id)
    if notification.is_read:
        notification.is_read = False
        notification.read_at = None
        session.add(notification)
        await session.commit()
        await session.refresh(notification)
    return notification


async def mark_all_as_read(session: AsyncSession, agent_id: uuid.UUID) -> int:
    """Mark every unread, non-deleted notification of the agent as read."""
    result = await session.execute(
        update(Notification)
        .where(
            Notification.recipient_id == agent_id,
            Notification.is_read == False,  # noqa: E712
            Notification.is_deleted == False,  # noqa: E712
        )
        .values(is_read=True, read_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    updated = result.rowcount or 0
    log.info("notifications.read_all", agent_id=str(agent_id), updated=updated)
    return updated


async def delete_notification(
    session: AsyncSession, notification_id: uuid.UUID, agent_id: uuid.UUID
) -> None:
    notification = await _get_owned(session, notification_id, agent_id)
    notification.is_deleted = True
    session.add(notification)
    await session.commit()
    log.info(
        "notifications.deleted",
        notification_id=str(notification_id),
        agent_id=str(agent_id),
    )


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


async def get_preferences(
    session: AsyncSession, agent_id: uuid.UUID
) -> Sequence[NotificationPreference]:
    result = await session.execute(
        select(NotificationPreference)
        .where(NotificationPreference.agent_id == agent_id)
        .order_by(NotificationPreference.notification_type)
    )
    return result.scalars().all()


async def update_preference(
    session: AsyncSession,
    agent_id: uuid.UUID,
    notification_type: str,
    *,
    enabled: bool | None = None,
    push_enabled: bool | None = None,
) -> NotificationPreference:
    """Upsert a preference row. Omitted fields keep their stored value."""
    if notification_type not in NOTIFICATION_TYPES:
        raise ValidationError(f"Unknown notification type: {notification_type}")

    now = datetime.now(timezone.utc)
    changes: dict[str, object] = {"updated_at": now}
    if enabled is not None:
        changes["enabled"] = enabled
    if push_enabled is not None:
        changes["push_enabled"] = push_enabled

    await upsert(
        session,
        NotificationPreference,
        {
            "id": uuid.uuid4(),
            "agent_id": agent_id,
            "notification_type": notification_type,
            "enabled": True if enabled is None else enabled,
            "push_enabled": True if push_enabled is None else push_enabled,
            "created_at": now,
            "updated_at": now,
        },
        conflict_on=["agent_id", "notification_type"],
        update=changes,
    )
    await session.commit()

    result = await session.execute(
        select(NotificationPreference)
        .where(
            NotificationPreference.agent_id == agent_id,
            NotificationPreference.notification_type == notification_type,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalars().one()


async def is_notification_enabled(
    session: AsyncSession, agent_id: uuid.UUID, notification_type: str
) -> bool:
    result = await session.execute(
        select(NotificationPreference.enabled).where(
            NotificationPreference.agent_id == agent_id,
            NotificationPreference.notification_type == notification_type,
        )
    )
    enabled = result.scalar_one_or_none()
    return True if enabled is None else bool(enabled)
