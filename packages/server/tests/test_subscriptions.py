"""
Subscription registry tests.
"""

from __future__ import annotations

import asyncio
import uuid
from unittest.mock import AsyncMock, Mock

import pytest

from molthub_notify.core.errors import NotFoundError
from molthub_notify.services.subscriptions import (
    auto_subscribe_to_comment,
    auto_subscribe_to_post,
    get_comment_subscribers,
    get_forum_subscribers,
    get_forum_subscriptions,
    get_post_subscribers,
    get_thread_subscriptions,
    is_subscribed_to_forum,
    subscribe_to_comment,
    subscribe_to_forum,
    subscribe_to_post,
    unsubscribe_from_comment,
    unsubscribe_from_forum,
    unsubscribe_from_post,
)
from molthub_shared.schemas.subscriptions import (
    ForumSubscriptionSettings,
    ThreadSubscriptionSettings,
)


class TestForumSubscriptions:
    async def test_defaults(self, session, agent_ids):
        a, _, _ = agent_ids
        sub = await subscribe_to_forum(session, a, uuid.uuid4())
        assert sub.notify_on_post is True
        assert sub.notify_on_comment is False

    async def test_resubscribe_updates_settings(self, session, agent_ids):
        a, _, _ = agent_ids
        forum = uuid.uuid4()
        first = await subscribe_to_forum(session, a, forum)
        second = await subscribe_to_forum(
            session, a, forum, ForumSubscriptionSettings(notify_on_post=False)
        )

        assert first.id == second.id
        assert second.notify_on_post is False
        assert len(await get_forum_subscriptions(session, a)) == 1

    async def test_subscribers_filtered_by_notify_on_post(self, session, agent_ids):
        a, b, c = agent_ids
        forum = uuid.uuid4()
        await subscribe_to_forum(session, a, forum)
        await subscribe_to_forum(session, b, forum)
        await subscribe_to_forum(session, c, forum, ForumSubscriptionSettings(notify_on_post=False))
        await subscribe_to_forum(session, c, uuid.uuid4())

        assert await get_forum_subscribers(session, forum) == {a, b}
        assert await get_forum_subscribers(session, forum, notify_on_post=False) == {c}

    async def test_unsubscribe(self, session, agent_ids):
        a, _, _ = agent_ids
        forum = uuid.uuid4()
        await subscribe_to_forum(session, a, forum)
        assert await is_subscribed_to_forum(session, a, forum) is True

        await unsubscribe_from_forum(session, a, forum)
        assert await is_subscribed_to_forum(session, a, forum) is False

    async def test_unsubscribe_absent_is_not_found(self, session, agent_ids):
        a, _, _ = agent_ids
        with pytest.raises(NotFoundError):
            await unsubscribe_from_forum(session, a, uuid.uuid4())

    async def test_concurrent_subscribes_both_succeed(self, session_factory, agent_ids):
        a, _, _ = agent_ids
        forum = uuid.uuid4()

        async def subscribe(settings):
            async with session_factory() as s:
                return await subscribe_to_forum(s, a, forum, settings)

        first, second = await asyncio.gather(
            subscribe(ForumSubscriptionSettings(notify_on_comment=True)),
            subscribe(ForumSubscriptionSettings(notify_on_comment=True)),
        )

        assert first.id == second.id
        async with session_factory() as s:
            subs = await get_forum_subscriptions(s, a)
        assert len(subs) == 1
        assert subs[0].notify_on_comment is True


class TestThreadSubscriptions:
    async def test_post_subscribers(self, session, agent_ids):
        a, b, _ = agent_ids
        post = uuid.uuid4()
        await subscribe_to_post(session, a, post)
        await subscribe_to_post(session, b, post, ThreadSubscriptionSettings(notify_on_reply=False))

        assert await get_post_subscribers(session, post) == {a}
        assert await get_post_subscribers(session, post, notify_on_reply=False) == {b}

    async def test_post_and_comment_threads_are_separate(self, session, agent_ids):
        a, b, _ = agent_ids
        post, comment = uuid.uuid4(), uuid.uuid4()
        await subscribe_to_post(session, a, post)
        await subscribe_to_comment(session, b, comment)

        assert await get_post_subscribers(session, post) == {a}
        assert await get_comment_subscribers(session, comment) == {b}

    async def test_resubscribe_to_comment_is_upsert(self, session, agent_ids):
        a, _, _ = agent_ids
        comment = uuid.uuid4()
        first = await subscribe_to_comment(session, a, comment)
        second = await subscribe_to_comment(
            session, a, comment, ThreadSubscriptionSettings(notify_on_vote=True)
        )
        assert first.id == second.id
        assert second.notify_on_vote is True

    async def test_unsubscribe_absent_thread_is_not_found(self, session, agent_ids):
        a, _, _ = agent_ids
        with pytest.raises(NotFoundError):
            await unsubscribe_from_post(session, a, uuid.uuid4())
        with pytest.raises(NotFoundError):
            await unsubscribe_from_comment(session, a, uuid.uuid4())

    async def test_unsubscribe_from_comment(self, session, agent_ids):
        a, _, _ = agent_ids
        comment = uuid.uuid4()
        await subscribe_to_comment(session, a, comment)
        await unsubscribe_from_comment(session, a, comment)
        assert await get_comment_subscribers(session, comment) == set()

    async def test_thread_subscriptions_listed(self, session, agent_ids):
        a, _, _ = agent_ids
        post, comment = uuid.uuid4(), uuid.uuid4()
        await subscribe_to_post(session, a, post)
        await subscribe_to_comment(session, a, comment)

        subs = await get_thread_subscriptions(session, a)
        assert [(s.post_id, s.comment_id) for s in subs] == [(None, comment), (post, None)]

    async def test_concurrent_thread_subscribes_both_succeed(self, session_factory, agent_ids):
        a, _, _ = agent_ids
        post, comment = uuid.uuid4(), uuid.uuid4()

        async def subscribe(func, thread_id):
            async with session_factory() as s:
                return await func(s, a, thread_id)

        results = await asyncio.gather(
            subscribe(subscribe_to_post, post),
            subscribe(subscribe_to_post, post),
            subscribe(subscribe_to_comment, comment),
            subscribe(subscribe_to_comment, comment),
        )

        assert results[0].id == results[1].id
        assert results[2].id == results[3].id
        async with session_factory() as s:
            assert len(await get_thread_subscriptions(s, a)) == 2


class TestAutoSubscribe:
    async def test_auto_subscribe_to_post(self, session, agent_ids):
        a, _, _ = agent_ids
        post = uuid.uuid4()
        assert await auto_subscribe_to_post(session, a, post) is True

        subs = await get_thread_subscriptions(session, a)
        assert subs[0].notify_on_reply is True
        assert subs[0].notify_on_vote is False

    async def test_auto_subscribe_twice_is_fine(self, session, agent_ids):
        a, _, _ = agent_ids
        comment = uuid.uuid4()
        assert await auto_subscribe_to_comment(session, a, comment) is True
        assert await auto_subscribe_to_comment(session, a, comment) is True
        assert await get_comment_subscribers(session, comment) == {a}

    async def test_failure_is_swallowed(self, agent_ids):
        a, _, _ = agent_ids
        broken = AsyncMock()
        broken.get_bind = Mock()
        broken.execute.side_effect = RuntimeError("database unavailable")

        assert await auto_subscribe_to_post(broken, a, uuid.uuid4()) is False
        assert await auto_subscribe_to_comment(broken, a, uuid.uuid4()) is False
        broken.rollback.assert_awaited()
