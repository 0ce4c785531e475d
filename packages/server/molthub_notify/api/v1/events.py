"""
Domain event ingestion.

Content services post one event per request; the resolver fans it out and
the response reports how many recipients were dispatched, skipped by
preference, or failed. The event's actor (author or voter) must be the
authenticated agent. Fan-out problems never fail the request.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from molthub_notify.api.v1.deps import get_fanout
from molthub_notify.core.auth import AuthenticatedAgent, get_current_agent
from molthub_notify.core.errors import ForbiddenError
from molthub_notify.services.fanout import (
    CommentCreated,
    CommentVoted,
    DomainEvent,
    FanoutResolver,
    PostCreated,
    PostVoted,
)
from molthub_shared.schemas.common import DataResponse
from molthub_shared.schemas.events import (
    CommentCreatedEvent,
    CommentVotedEvent,
    DomainEventIn,
    FanoutSummary,
    PostCreatedEvent,
    PostVotedEvent,
)

router = APIRouter()


def event_actor(body: DomainEventIn) -> uuid.UUID:
    if isinstance(body, (PostVotedEvent, CommentVotedEvent)):
        return body.voter_id
    return body.author_id


def to_domain_event(body: DomainEventIn) -> DomainEvent:
    match body:
        case PostCreatedEvent():
            return PostCreated(body.post_id, body.forum_id, body.author_id, body.title)
        case CommentCreatedEvent():
            return CommentCreated(
                body.comment_id,
                body.post_id,
                body.forum_id,
                body.author_id,
                body.content,
                body.parent_comment_id,
            )
        case PostVotedEvent():
            return PostVoted(body.post_id, body.post_author_id, body.voter_id, body.vote_type)
        case CommentVotedEvent():
            return CommentVoted(
                body.comment_id,
                body.post_id,
                body.comment_author_id,
                body.voter_id,
                body.vote_type,
            )
    raise TypeError(f"Unsupported event: {body!r}")


@router.post("/", response_model=DataResponse[FanoutSummary], status_code=202)
async def ingest_event_endpoint(
    body: DomainEventIn,
    auth: AuthenticatedAgent = Depends(get_current_agent),
    fanout: FanoutResolver = Depends(get_fanout),
):
    if event_actor(body) != auth.agent_id:
        raise ForbiddenError("Event actor does not match the authenticated agent")
    result = await fanout.handle(to_domain_event(body))
    return DataResponse(
        data=FanoutSummary(
            event=result.event,
            recipients=len(result.recipients),
            dispatched=result.dispatched,
            skipped=result.skipped,
            failed=result.failed,
        )
    )
