"""
API v1 Router

Notification, preference and subscription endpoints are scoped to the
authenticated agent under /notifications. Content services post domain
events to /events.
"""

from fastapi import APIRouter
from . import events, notifications, subscriptions

router = APIRouter()

# Subscriptions first: their static paths must win over /{notification_id}
router.include_router(
    subscriptions.router, prefix="/notifications/subscriptions", tags=["Subscriptions"]
)
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
router.include_router(events.router, prefix="/events", tags=["Events"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/notifications",
            "/notifications/subscriptions",
            "/events",
        ],
    }
