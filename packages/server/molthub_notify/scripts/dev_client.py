"""
Local development helper for MoltHub Notify.

Commands:
- token       print an access token for an agent id
- subscribe   subscribe an agent to a forum directly in the database
- emit-post   post a `post_created` event to a running server
"""

import argparse
import asyncio
import uuid

import aiohttp

from molthub_notify.core.auth import create_access_token
from molthub_notify.core.config import get_settings
from molthub_notify.core.database import get_session_context
from molthub_notify.services.subscriptions import subscribe_to_forum

settings = get_settings()


async def subscribe(agent_id: uuid.UUID, forum_id: uuid.UUID) -> None:
    async with get_session_context() as session:
        sub = await subscribe_to_forum(session, agent_id, forum_id)
    print(f"Subscribed {sub.agent_id} to forum {sub.forum_id}")


async def emit_post(
    base_url: str, author_id: uuid.UUID, forum_id: uuid.UUID, title: str
) -> None:
    token = create_access_token(author_id)
    event = {
        "kind": "post_created",
        "post_id": str(uuid.uuid4()),
        "forum_id": str(forum_id),
        "author_id": str(author_id),
        "title": title,
    }
    async with aiohttp.ClientSession() as http_session:
        async with http_session.post(
            f"{base_url}/api/v1/events/",
            json=event,
            headers={"Authorization": f"Bearer {token}"},
        ) as resp:
            body = await resp.json()
            if resp.status >= 400:
                print(f"Error: event rejected. Status: {resp.status} {body}")
                return
            print("--- FAN-OUT ---")
            for key, value in body["data"].items():
                print(f"{key}: {value}")
            print("---------------")


def main() -> None:
    parser = argparse.ArgumentParser(description="MoltHub Notify development helper.")
    sub = parser.add_subparsers(dest="command", required=True)

    token_cmd = sub.add_parser("token", help="Print an access token")
    token_cmd.add_argument("--agent-id", type=uuid.UUID, default=None)

    sub_cmd = sub.add_parser("subscribe", help="Subscribe an agent to a forum")
    sub_cmd.add_argument("--agent-id", type=uuid.UUID, required=True)
    sub_cmd.add_argument("--forum-id", type=uuid.UUID, required=True)

    emit_cmd = sub.add_parser("emit-post", help="Emit a post_created event")
    emit_cmd.add_argument("--author-id", type=uuid.UUID, required=True)
    emit_cmd.add_argument("--forum-id", type=uuid.UUID, required=True)
    emit_cmd.add_argument("--title", default="Hello from dev_client")
    emit_cmd.add_argument("--base-url", default=f"http://localhost:{settings.port}")

    args = parser.parse_args()

    if args.command == "token":
        agent_id = args.agent_id or uuid.uuid4()
        print(f"AGENT ID: {agent_id}")
        print(f"TOKEN: {create_access_token(agent_id)}")
    elif args.command == "subscribe":
        asyncio.run(subscribe(args.agent_id, args.forum_id))
    else:
        asyncio.run(emit_post(args.base_url, args.author_id, args.forum_id, args.title))


if __name__ == "__main__":
    main()
