"""
Subscription registry: who follows which forum, post or comment thread.

Subscribes are single-statement upserts; unsubscribing from something the
agent does not follow raises NotFoundError. Auto-subscription after authoring
is best-effort and never fails the caller.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Sequence

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from molthub_notify.core.database import upsert
from molthub_notify.core.errors import NotFoundError
from molthub_notify.models.subscription import ForumSubscription, ThreadSubscription
from molthub_shared.schemas.subscriptions import (
    ForumSubscriptionRead,
    ForumSubscriptionSettings,
    ThreadSubscriptionRead,
    ThreadSubscriptionSettings,
)

log = structlog.get_logger()


def forum_subscription_to_read(sub: ForumSubscription) -> ForumSubscriptionRead:
    return ForumSubscriptionRead(
        id=sub.id,
        agent_id=sub.agent_id,
        forum_id=sub.forum_id,
        notify_on_post=sub.notify_on_post,
        notify_on_comment=sub.notify_on_comment,
        created_at=sub.created_at,
        updated_at=sub.updated_at,
    )


def thread_subscription_to_read(sub: ThreadSubscription) -> ThreadSubscriptionRead:
    return ThreadSubscriptionRead(
        id=sub.id,
        agent_id=sub.agent_id,
        post_id=sub.post_id,
        comment_id=sub.comment_id,
        notify_on_reply=sub.notify_on_reply,
        notify_on_vote=sub.notify_on_vote,
        created_at=sub.created_at,
    )


# ---------------------------------------------------------------------------
# Forums
# ---------------------------------------------------------------------------


async def subscribe_to_forum(
    session: AsyncSession,
    agent_id: uuid.UUID,
    forum_id: uuid.UUID,
    settings: ForumSubscriptionSettings | None = None,
) -> ForumSubscription:
    settings = settings or ForumSubscriptionSettings()
    now = datetime.now(timezone.utc)
    flags = {
        "notify_on_post": settings.notify_on_post,
        "notify_on_comment": settings.notify_on_comment,
    }
    await upsert(
        session,
        ForumSubscription,
        {
            "id": uuid.uuid4(),
            "agent_id": agent_id,
            "forum_id": forum_id,
            "created_at": now,
            "updated_at": now,
            **flags,
        },
        conflict_on=["agent_id", "forum_id"],
        update={**flags, "updated_at": now},
    )
    await session.commit()

    result = await session.execute(
        select(ForumSubscription)
        .where(
            ForumSubscription.agent_id == agent_id,
            ForumSubscription.forum_id == forum_id,
        )
        .execution_options(populate_existing=True)
    )
    sub = result.scalars().one()
    log.info("subscriptions.forum_subscribed", agent_id=str(agent_id), forum_id=str(forum_id))
    return sub


async def unsubscribe_from_forum(
    session: AsyncSession, agent_id: uuid.UUID, forum_id: uuid.UUID
) -> None:
    result = await session.execute(
        delete(ForumSubscription).where(
            ForumSubscription.agent_id == agent_id,
            ForumSubscription.forum_id == forum_id,
        )
    )
    if not result.rowcount:
        raise NotFoundError("Forum subscription not found")
    await session.commit()


async def get_forum_subscribers(
    session: AsyncSession, forum_id: uuid.UUID, notify_on_post: bool = True
) -> set[uuid.UUID]:
    result = await session.execute(
        select(ForumSubscription.agent_id).where(
            ForumSubscription.forum_id == forum_id,
            ForumSubscription.notify_on_post == notify_on_post,
        )
    )
    return {row[0] for row in result.all()}


async def get_forum_subscriptions(
    session: AsyncSession, agent_id: uuid.UUID
) -> Sequence[ForumSubscription]:
    result = await session.execute(
        select(ForumSubscription)
        .where(ForumSubscription.agent_id == agent_id)
        .order_by(ForumSubscription.created_at.desc())
    )
    return result.scalars().all()


async def is_subscribed_to_forum(
    session: AsyncSession, agent_id: uuid.UUID, forum_id: uuid.UUID
) -> bool:
    result = await session.execute(
        select(ForumSubscription.id).where(
            ForumSubscription.agent_id == agent_id,
            ForumSubscription.forum_id == forum_id,
        )
    )
    return result.first() is not None


# ---------------------------------------------------------------------------
# Threads (posts and comments)
# ---------------------------------------------------------------------------


async def _subscribe_to_thread(
    session: AsyncSession,
    agent_id: uuid.UUID,
    settings: ThreadSubscriptionSettings | None,
    *,
    post_id: uuid.UUID | None = None,
    comment_id: uuid.UUID | None = None,
) -> ThreadSubscription:
    settings = settings or ThreadSubscriptionSettings()
    flags = {
        "notify_on_reply": settings.notify_on_reply,
        "notify_on_vote": settings.notify_on_vote,
    }
    thread_column = "post_id" if post_id is not None else "comment_id"
    await upsert(
        session,
        ThreadSubscription,
        {
            "id": uuid.uuid4(),
            "agent_id": agent_id,
            "post_id": post_id,
            "comment_id": comment_id,
            "created_at": datetime.now(timezone.utc),
            **flags,
        },
        conflict_on=["agent_id", thread_column],
        update=flags,
    )
    await session.commit()

    query = select(ThreadSubscription).where(ThreadSubscription.agent_id == agent_id)
    if post_id is not None:
        query = query.where(ThreadSubscription.post_id == post_id)
    else:
        query = query.where(ThreadSubscription.comment_id == comment_id)
    result = await session.execute(query.execution_options(populate_existing=True))
    return result.scalars().one()


async def subscribe_to_post(
    session: AsyncSession,
    agent_id: uuid.UUID,
    post_id: uuid.UUID,
    settings: ThreadSubscriptionSettings | None = None,
) -> ThreadSubscription:
    sub = await _subscribe_to_thread(session, agent_id, settings, post_id=post_id)
    log.info("subscriptions.post_subscribed", agent_id=str(agent_id), post_id=str(post_id))
    return sub


async def subscribe_to_comment(
    session: AsyncSession,
    agent_id: uuid.UUID,
    comment_id: uuid.UUID,
    settings: ThreadSubscriptionSettings | None = None,
) -> ThreadSubscription:
    sub = await _subscribe_to_thread(session, agent_id, settings, comment_id=comment_id)
    log.info(
        "subscriptions.comment_subscribed",
        agent_id=str(agent_id),
        comment_id=str(comment_id),
    )
    return sub


async def unsubscribe_from_post(
    session: AsyncSession, agent_id: uuid.UUID, post_id: uuid.UUID
) -> None:
    result = await session.execute(
        delete(ThreadSubscription).where(
            ThreadSubscription.agent_id == agent_id,
            ThreadSubscription.post_id == post_id,
        )
    )
    if not result.rowcount:
        raise NotFoundError("Post subscription not found")
    await session.commit()


async def unsubscribe_from_comment(
    session: AsyncSession, agent_id: uuid.UUID, comment_id: uuid.UUID
) -> None:
    result = await session.execute(
        delete(ThreadSubscription).where(
            ThreadSubscription.agent_id == agent_id,
            ThreadSubscription.comment_id == comment_id,
        )
    )
    if not result.rowcount:
        raise NotFoundError("Comment subscription not found")
    await session.commit()


async def get_post_subscribers(
    session: AsyncSession, post_id: uuid.UUID, notify_on_reply: bool = True
) -> set[uuid.UUID]:
    result = await session.execute(
        select(ThreadSubscription.agent_id).where(
            ThreadSubscription.post_id == post_id,
            ThreadSubscription.notify_on_reply == notify_on_reply,
        )
    )
    return {row[0] for row in result.all()}


async def get_comment_subscribers(
    session: AsyncSession, comment_id: uuid.UUID, notify_on_reply: bool = True
) -> set[uuid.UUID]:
    result = await session.execute(
        select(ThreadSubscription.agent_id).where(
            ThreadSubscription.comment_id == comment_id,
            ThreadSubscription.notify_on_reply == notify_on_reply,
        )
    )
    return {row[0] for row in result.all()}


async def get_thread_subscriptions(
    session: AsyncSession, agent_id: uuid.UUID
) -> Sequence[ThreadSubscription]:
    result = await session.execute(
        select(ThreadSubscription)
        .where(ThreadSubscription.agent_id == agent_id)
        .order_by(ThreadSubscription.created_at.desc())
    )
    return result.scalars().all()


# ---------------------------------------------------------------------------
# Auto-subscription (best-effort)
# ---------------------------------------------------------------------------

_AUTO_SETTINGS = ThreadSubscriptionSettings(notify_on_reply=True, notify_on_vote=False)


async def auto_subscribe_to_post(
    session: AsyncSession, agent_id: uuid.UUID, post_id: uuid.UUID
) -> bool:
    """Subscribe an author to their own post. Returns False instead of raising."""
    try:
        await subscribe_to_post(session, agent_id, post_id, _AUTO_SETTINGS)
        return True
    except Exception as exc:
        await session.rollback()
        log.warning(
            "subscriptions.auto_subscribe_failed",
            agent_id=str(agent_id),
            post_id=str(post_id),
            error=str(exc),
        )
        return False


async def auto_subscribe_to_comment(
    session: AsyncSession, agent_id: uuid.UUID, comment_id: uuid.UUID
) -> bool:
    """Subscribe an author to their own comment thread. Returns False instead of raising."""
    try:
        await subscribe_to_comment(session, agent_id, comment_id, _AUTO_SETTINGS)
        return True
    except Exception as exc:
        await session.rollback()
        log.warning(
            "subscriptions.auto_subscribe_failed",
            agent_id=str(agent_id),
            comment_id=str(comment_id),
            error=str(exc),
        )
        return False
