"""
Notification endpoints for the authenticated agent.

- GET  /                    : list with filters and pagination
- GET  /unread/count        : unread badge count
- PUT  /{id}/read, /{id}/unread, /read-all
- DELETE /{id}              : soft delete
- GET  /preferences, PUT /preferences/{type}
- GET  /queue/stats         : delivery queue counters

Read-state changes push a fresh unread count to the agent's live connections.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from molthub_notify.api.v1.deps import get_gateway, get_queue
from molthub_notify.core.auth import AuthenticatedAgent, get_current_agent
from molthub_notify.core.database import get_session
from molthub_notify.core.queue import NotificationQueue
from molthub_notify.core.realtime import RealtimeGateway
from molthub_notify.services.notifications import (
    delete_notification,
    get_notifications,
    get_preferences,
    get_unread_count,
    mark_all_as_read,
    mark_as_read,
    mark_as_unread,
    notification_to_read,
    preference_to_read,
    update_preference,
)
from molthub_shared.schemas.common import DataResponse, NotificationType, Pagination
from molthub_shared.schemas.notifications import (
    MarkAllReadResult,
    NotificationFilters,
    NotificationList,
    NotificationRead,
    PreferenceRead,
    PreferenceUpdate,
    UnreadCount,
)
from molthub_shared.schemas.queue import QueueStats

router = APIRouter()


async def _push_unread_count(
    session: AsyncSession, gateway: RealtimeGateway, agent_id: uuid.UUID
) -> int:
    count = await get_unread_count(session, agent_id)
    await gateway.send_unread_count_update(agent_id, count)
    return count


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@router.get("/", response_model=NotificationList)
async def list_notifications_endpoint(
    types: Optional[List[NotificationType]] = Query(None),
    is_read: Optional[bool] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    auth: AuthenticatedAgent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
):
    """List the agent's notifications, newest first."""
    filters = NotificationFilters(
        types=types,
        is_read=is_read,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    rows = await get_notifications(session, auth.agent_id, filters)
    return NotificationList(
        data=[notification_to_read(n) for n in rows],
        pagination=Pagination(limit=limit, offset=offset, count=len(rows)),
    )


@router.get("/unread/count", response_model=DataResponse[UnreadCount])
async def unread_count_endpoint(
    auth: AuthenticatedAgent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
):
    count = await get_unread_count(session, auth.agent_id)
    return DataResponse(data=UnreadCount(count=count))


@router.put("/read-all", response_model=DataResponse[MarkAllReadResult])
async def mark_all_read_endpoint(
    auth: AuthenticatedAgent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    updated = await mark_all_as_read(session, auth.agent_id)
    await gateway.send_unread_count_update(auth.agent_id, 0)
    return DataResponse(data=MarkAllReadResult(updated=updated))


@router.put("/{notification_id}/read", response_model=DataResponse[NotificationRead])
async def mark_read_endpoint(
    notification_id: uuid.UUID,
    auth: AuthenticatedAgent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    notification = await mark_as_read(session, notification_id, auth.agent_id)
    await _push_unread_count(session, gateway, auth.agent_id)
    return DataResponse(data=notification_to_read(notification))


@router.put("/{notification_id}/unread", response_model=DataResponse[NotificationRead])
async def mark_unread_endpoint(
    notification_id: uuid.UUID,
    auth: AuthenticatedAgent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    notification = await mark_as_unread(session, notification_id, auth.agent_id)
    await _push_unread_count(session, gateway, auth.agent_id)
    return DataResponse(data=notification_to_read(notification))


@router.delete("/{notification_id}", status_code=204)
async def delete_notification_endpoint(
    notification_id: uuid.UUID,
    auth: AuthenticatedAgent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    await delete_notification(session, notification_id, auth.agent_id)
    await _push_unread_count(session, gateway, auth.agent_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


@router.get("/preferences", response_model=DataResponse[List[PreferenceRead]])
async def list_preferences_endpoint(
    auth: AuthenticatedAgent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
):
    prefs = await get_preferences(session, auth.agent_id)
    return DataResponse(data=[preference_to_read(p) for p in prefs])


@router.put("/preferences/{notification_type}", response_model=DataResponse[PreferenceRead])
async def update_preference_endpoint(
    notification_type: NotificationType,
    body: PreferenceUpdate,
    auth: AuthenticatedAgent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
):
    """Upsert one preference. Fields left out of the body are unchanged."""
    pref = await update_preference(
        session,
        auth.agent_id,
        notification_type.value,
        enabled=body.enabled,
        push_enabled=body.push_enabled,
    )
    return DataResponse(data=preference_to_read(pref))


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


@router.get("/queue/stats", response_model=DataResponse[QueueStats])
async def queue_stats_endpoint(
    auth: AuthenticatedAgent = Depends(get_current_agent),
    queue: Optional[NotificationQueue] = Depends(get_queue),
):
    if queue is None:
        return DataResponse(data=QueueStats(mode="direct"))
    return DataResponse(data=await queue.get_stats())
