"""
Subscription endpoints for the authenticated agent.

Forum subscriptions carry post/comment toggles; post and comment thread
subscriptions carry reply/vote toggles. POST is an upsert, DELETE of a
subscription that does not exist is a 404.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from molthub_notify.core.auth import AuthenticatedAgent, get_current_agent
from molthub_notify.core.database import get_session
from molthub_notify.services.subscriptions import (
    forum_subscription_to_read,
    get_forum_subscriptions,
    get_thread_subscriptions,
    subscribe_to_comment,
    subscribe_to_forum,
    subscribe_to_post,
    thread_subscription_to_read,
    unsubscribe_from_comment,
    unsubscribe_from_forum,
    unsubscribe_from_post,
)
from molthub_shared.schemas.common import DataResponse
from molthub_shared.schemas.subscriptions import (
    ForumSubscriptionRead,
    ForumSubscriptionSettings,
    ThreadSubscriptionRead,
    ThreadSubscriptionSettings,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Forums
# ---------------------------------------------------------------------------


@router.get("/forums", response_model=DataResponse[List[ForumSubscriptionRead]])
async def list_forum_subscriptions_endpoint(
    auth: AuthenticatedAgent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
):
    subs = await get_forum_subscriptions(session, auth.agent_id)
    return DataResponse(data=[forum_subscription_to_read(s) for s in subs])


@router.post("/forums/{forum_id}", response_model=DataResponse[ForumSubscriptionRead])
async def subscribe_forum_endpoint(
    forum_id: uuid.UUID,
    settings: Optional[ForumSubscriptionSettings] = Body(None),
    auth: AuthenticatedAgent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
):
    sub = await subscribe_to_forum(session, auth.agent_id, forum_id, settings)
    return DataResponse(data=forum_subscription_to_read(sub))


@router.delete("/forums/{forum_id}", status_code=204)
async def unsubscribe_forum_endpoint(
    forum_id: uuid.UUID,
    auth: AuthenticatedAgent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
):
    await unsubscribe_from_forum(session, auth.agent_id, forum_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Threads
# ---------------------------------------------------------------------------


@router.get("/threads", response_model=DataResponse[List[ThreadSubscriptionRead]])
async def list_thread_subscriptions_endpoint(
    auth: AuthenticatedAgent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
):
    subs = await get_thread_subscriptions(session, auth.agent_id)
    return DataResponse(data=[thread_subscription_to_read(s) for s in subs])


@router.post("/posts/{post_id}", response_model=DataResponse[ThreadSubscriptionRead])
async def subscribe_post_endpoint(
    post_id: uuid.UUID,
    settings: Optional[ThreadSubscriptionSettings] = Body(None),
    auth: AuthenticatedAgent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
):
    sub = await subscribe_to_post(session, auth.agent_id, post_id, settings)
    return DataResponse(data=thread_subscription_to_read(sub))


@router.delete("/posts/{post_id}", status_code=204)
async def unsubscribe_post_endpoint(
    post_id: uuid.UUID,
    auth: AuthenticatedAgent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
):
    await unsubscribe_from_post(session, auth.agent_id, post_id)
    return Response(status_code=204)


@router.post("/comments/{comment_id}", response_model=DataResponse[ThreadSubscriptionRead])
async def subscribe_comment_endpoint(
    comment_id: uuid.UUID,
    settings: Optional[ThreadSubscriptionSettings] = Body(None),
    auth: AuthenticatedAgent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
):
    sub = await subscribe_to_comment(session, auth.agent_id, comment_id, settings)
    return DataResponse(data=thread_subscription_to_read(sub))


@router.delete("/comments/{comment_id}", status_code=204)
async def unsubscribe_comment_endpoint(
    comment_id: uuid.UUID,
    auth: AuthenticatedAgent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
):
    await unsubscribe_from_comment(session, auth.agent_id, comment_id)
    return Response(status_code=204)
