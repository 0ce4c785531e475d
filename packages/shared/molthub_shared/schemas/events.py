"""
Inbound domain event payloads.

Content services post these to the event ingestion endpoint. The `kind`
field discriminates the union.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


class PostCreatedEvent(BaseModel):
    kind: Literal["post_created"] = "post_created"
    post_id: uuid.UUID
    forum_id: uuid.UUID
    author_id: uuid.UUID
    title: str


class CommentCreatedEvent(BaseModel):
    kind: Literal["comment_created"] = "comment_created"
    comment_id: uuid.UUID
    post_id: uuid.UUID
    forum_id: uuid.UUID
    author_id: uuid.UUID
    content: str
    parent_comment_id: Optional[uuid.UUID] = None


class PostVotedEvent(BaseModel):
    kind: Literal["post_voted"] = "post_voted"
    post_id: uuid.UUID
    post_author_id: uuid.UUID
    voter_id: uuid.UUID
    vote_type: Literal[1, -1]


class CommentVotedEvent(BaseModel):
    kind: Literal["comment_voted"] = "comment_voted"
    comment_id: uuid.UUID
    post_id: uuid.UUID
    comment_author_id: uuid.UUID
    voter_id: uuid.UUID
    vote_type: Literal[1, -1]


DomainEventIn = Annotated[
    Union[PostCreatedEvent, CommentCreatedEvent, PostVotedEvent, CommentVotedEvent],
    Field(discriminator="kind"),
]


class FanoutSummary(BaseModel):
    event: str
    recipients: int
    dispatched: int
    skipped: int
    failed: int
