"""
Fan-out resolver: one domain event in, zero or more notifications out.

Handles:
- Recipient resolution per event kind (forum, post thread, comment thread, owner)
- Deduplication and actor exclusion
- Preference gate per recipient
- Concurrent dispatch where one recipient's failure never blocks another
- Author auto-subscription after posting or commenting
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Literal, Optional, Union

import structlog

from molthub_notify.core.database import SessionFactory
from molthub_notify.services import subscriptions
from molthub_notify.services.dispatch import NotificationDispatcher
from molthub_notify.services.notifications import is_notification_enabled
from molthub_shared.schemas.common import NotificationType
from molthub_shared.schemas.notifications import NotificationCreate

log = structlog.get_logger()

VoteType = Literal[1, -1]


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PostCreated:
    post_id: uuid.UUID
    forum_id: uuid.UUID
    author_id: uuid.UUID
    title: str


@dataclass(frozen=True)
class CommentCreated:
    comment_id: uuid.UUID
    post_id: uuid.UUID
    forum_id: uuid.UUID
    author_id: uuid.UUID
    content: str
    parent_comment_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class PostVoted:
    post_id: uuid.UUID
    post_author_id: uuid.UUID
    voter_id: uuid.UUID
    vote_type: VoteType


@dataclass(frozen=True)
class CommentVoted:
    comment_id: uuid.UUID
    post_id: uuid.UUID
    comment_author_id: uuid.UUID
    voter_id: uuid.UUID
    vote_type: VoteType


DomainEvent = Union[PostCreated, CommentCreated, PostVoted, CommentVoted]


@dataclass
class FanoutResult:
    event: str
    recipients: set[uuid.UUID] = field(default_factory=set)
    dispatched: int = 0
    skipped: int = 0
    failed: int = 0


def _vote_phrase(vote_type: int) -> str:
    return "an upvote" if vote_type > 0 else "a downvote"


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class FanoutResolver:
    """Turns domain events into dispatched notification requests."""

    def __init__(self, session_factory: SessionFactory, dispatcher: NotificationDispatcher):
        self._session_factory = session_factory
        self._dispatcher = dispatcher

    async def handle(self, event: DomainEvent) -> FanoutResult:
        """Resolve and dispatch. Never raises to the emitting caller."""
        try:
            match event:
                case PostCreated():
                    return await self._post_created(event)
                case CommentCreated():
                    return await self._comment_created(event)
                case PostVoted():
                    return await self._post_voted(event)
                case CommentVoted():
                    return await self._comment_voted(event)
        except Exception as exc:
            log.error("fanout.failed", event=type(event).__name__, error=str(exc))
            return FanoutResult(event=type(event).__name__)
        raise TypeError(f"Unsupported event: {event!r}")

    # --- Entry points for content services ---

    async def on_post_created(
        self, post_id: uuid.UUID, forum_id: uuid.UUID, author_id: uuid.UUID, title: str
    ) -> FanoutResult:
        return await self.handle(PostCreated(post_id, forum_id, author_id, title))

    async def on_comment_created(
        self,
        comment_id: uuid.UUID,
        post_id: uuid.UUID,
        forum_id: uuid.UUID,
        author_id: uuid.UUID,
        content: str,
        parent_comment_id: uuid.UUID | None = None,
    ) -> FanoutResult:
        return await self.handle(
            CommentCreated(comment_id, post_id, forum_id, author_id, content, parent_comment_id)
        )

    async def on_post_voted(
        self,
        post_id: uuid.UUID,
        post_author_id: uuid.UUID,
        voter_id: uuid.UUID,
        vote_type: VoteType,
    ) -> FanoutResult:
        return await self.handle(PostVoted(post_id, post_author_id, voter_id, vote_type))

    async def on_comment_voted(
        self,
        comment_id: uuid.UUID,
        post_id: uuid.UUID,
        comment_author_id: uuid.UUID,
        voter_id: uuid.UUID,
        vote_type: VoteType,
    ) -> FanoutResult:
        return await self.handle(
            CommentVoted(comment_id, post_id, comment_author_id, voter_id, vote_type)
        )

    # --- Per-event resolution ---

    async def _post_created(self, event: PostCreated) -> FanoutResult:
        async with self._session_factory() as session:
            recipients = await subscriptions.get_forum_subscribers(
                session, event.forum_id, notify_on_post=True
            )

        result = await self._fan_out(
            "post_created",
            recipients,
            actor_id=event.author_id,
            template=NotificationCreate(
                recipient_id=event.author_id,
                sender_id=event.author_id,
                type=NotificationType.FORUM_POST.value,
                title="New post in forum",
                content=event.title,
                forum_id=event.forum_id,
                post_id=event.post_id,
                metadata={"post_title": event.title},
            ),
        )

        async with self._session_factory() as session:
            await subscriptions.auto_subscribe_to_post(session, event.author_id, event.post_id)
        return result

    async def _comment_created(self, event: CommentCreated) -> FanoutResult:
        is_reply = event.parent_comment_id is not None
        async with self._session_factory() as session:
            if is_reply:
                recipients = await subscriptions.get_comment_subscribers(
                    session, event.parent_comment_id, notify_on_reply=True
                )
            else:
                recipients = await subscriptions.get_post_subscribers(
                    session, event.post_id, notify_on_reply=True
                )

        if is_reply:
            template = NotificationCreate(
                recipient_id=event.author_id,
                sender_id=event.author_id,
                type=NotificationType.COMMENT_REPLY.value,
                title="New reply to your comment",
                content=event.content,
                forum_id=event.forum_id,
                post_id=event.post_id,
                comment_id=event.comment_id,
                metadata={"parent_comment_id": str(event.parent_comment_id)},
            )
        else:
            template = NotificationCreate(
                recipient_id=event.author_id,
                sender_id=event.author_id,
                type=NotificationType.POST_COMMENT.value,
                title="New comment on post",
                content=event.content,
                forum_id=event.forum_id,
                post_id=event.post_id,
                comment_id=event.comment_id,
            )

        result = await self._fan_out(
            "comment_created", recipients, actor_id=event.author_id, template=template
        )

        async with self._session_factory() as session:
            await subscriptions.auto_subscribe_to_comment(
                session, event.author_id, event.comment_id
            )
        return result

    async def _post_voted(self, event: PostVoted) -> FanoutResult:
        return await self._fan_out(
            "post_voted",
            {event.post_author_id},
            actor_id=event.voter_id,
            template=NotificationCreate(
                recipient_id=event.post_author_id,
                sender_id=event.voter_id,
                type=NotificationType.POST_VOTE.value,
                title=f"Your post received {_vote_phrase(event.vote_type)}",
                post_id=event.post_id,
                metadata={"vote_type": event.vote_type},
            ),
        )

    async def _comment_voted(self, event: CommentVoted) -> FanoutResult:
        return await self._fan_out(
            "comment_voted",
            {event.comment_author_id},
            actor_id=event.voter_id,
            template=NotificationCreate(
                recipient_id=event.comment_author_id,
                sender_id=event.voter_id,
                type=NotificationType.COMMENT_VOTE.value,
                title=f"Your comment received {_vote_phrase(event.vote_type)}",
                post_id=event.post_id,
                comment_id=event.comment_id,
                metadata={"vote_type": event.vote_type},
            ),
        )

    # --- Dispatch ---

    async def _deliver(self, template: NotificationCreate, recipient_id: uuid.UUID) -> bool:
        """Returns False when the recipient disabled this notification type."""
        async with self._session_factory() as session:
            enabled = await is_notification_enabled(session, recipient_id, template.type)
        if not enabled:
            return False
        await self._dispatcher.dispatch(template.model_copy(update={"recipient_id": recipient_id}))
        return True

    async def _fan_out(
        self,
        event_name: str,
        recipients: set[uuid.UUID],
        *,
        actor_id: uuid.UUID,
        template: NotificationCreate,
    ) -> FanoutResult:
        recipients = set(recipients)
        recipients.discard(actor_id)
        result = FanoutResult(event=event_name, recipients=recipients)
        if not recipients:
            return result

        # Each recipient opens its own session; one AsyncSession is not safe to share
        ordered = list(recipients)
        outcomes = await asyncio.gather(
            *(self._deliver(template, r) for r in ordered), return_exceptions=True
        )
        for recipient_id, outcome in zip(ordered, outcomes):
            if isinstance(outcome, BaseException):
                result.failed += 1
                log.error(
                    "fanout.dispatch_failed",
                    event=event_name,
                    recipient_id=str(recipient_id),
                    error=str(outcome),
                )
            elif outcome:
                result.dispatched += 1
            else:
                result.skipped += 1

        log.info(
            "fanout.completed",
            event=event_name,
            recipients=len(recipients),
            dispatched=result.dispatched,
            skipped=result.skipped,
            failed=result.failed,
        )
        return result
