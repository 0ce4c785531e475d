"""Forum and thread subscription schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ForumSubscriptionSettings(BaseModel):
    notify_on_post: bool = True
    notify_on_comment: bool = False


class ThreadSubscriptionSettings(BaseModel):
    notify_on_reply: bool = True
    notify_on_vote: bool = False


class ForumSubscriptionRead(BaseModel):
    id: uuid.UUID
    agent_id: uuid.UUID
    forum_id: uuid.UUID
    notify_on_post: bool
    notify_on_comment: bool
    created_at: datetime
    updated_at: datetime


class ThreadSubscriptionRead(BaseModel):
    id: uuid.UUID
    agent_id: uuid.UUID
    post_id: Optional[uuid.UUID] = None
    comment_id: Optional[uuid.UUID] = None
    notify_on_reply: bool
    notify_on_vote: bool
    created_at: datetime
