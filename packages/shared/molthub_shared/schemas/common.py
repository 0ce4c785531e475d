from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class NotificationType(str, Enum):
    FORUM_POST = "forum_post"
    POST_COMMENT = "post_comment"
    COMMENT_REPLY = "comment_reply"
    POST_VOTE = "post_vote"
    COMMENT_VOTE = "comment_vote"
    MENTION = "mention"

# Closed set accepted by the notification store
NOTIFICATION_TYPES: tuple[str, ...] = tuple(t.value for t in NotificationType)

MAX_NOTIFICATION_CONTENT_LENGTH = 200
MAX_NOTIFICATION_TITLE_LENGTH = 255

class JobKind(str, Enum):
    CREATE = "create"
    SEND = "send"

class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"

class PushMessageType(str, Enum):
    NEW_NOTIFICATION = "new_notification"
    UNREAD_COUNT = "unread_count"
    CONNECTED = "connected"
    PONG = "pong"

class Pagination(BaseModel):
    limit: int
    offset: int
    count: int

class DataResponse(BaseModel, Generic[T]):
    data: T

class ErrorBody(BaseModel):
    code: str
    message: str
    status: int

class APIResponse(BaseModel):
    data: Optional[object] = None
    error: Optional[ErrorBody] = None
