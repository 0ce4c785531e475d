"""Delivery queue observability schemas."""

from pydantic import BaseModel


class QueueStats(BaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    paused: bool = False
    mode: str = "queued"  # queued | direct
