"""
Authentication for MoltHub Notify.

Access credentials are issued by the platform's auth service as signed JWTs
(`sub` = agent id, `type` = access | refresh). This module verifies them for
HTTP requests and realtime handshakes and can mint them for local tooling.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import APIKeyHeader
from starlette.websockets import WebSocket

from molthub_notify.core.config import get_settings
from molthub_notify.core.errors import AuthenticationError

settings = get_settings()

api_key_header = APIKeyHeader(name="Authorization", auto_error=False)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_access_token(
    agent_id: uuid.UUID,
    *,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed access JWT for an agent."""
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": str(agent_id),
        "type": ACCESS_TOKEN_TYPE,
        "iat": now,
        "exp": exp,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_refresh_token(agent_id: uuid.UUID) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(agent_id),
        "type": REFRESH_TOKEN_TYPE,
        "iat": now,
        "exp": now + timedelta(minutes=settings.jwt_refresh_expire_minutes),
    }
    return jwt.encode(
        payload, settings.jwt_refresh_secret_key, algorithm=settings.jwt_algorithm
    )


def decode_access_token(token: str) -> uuid.UUID:
    """Verify an access JWT and return the agent id.

    Raises AuthenticationError for malformed, expired or non-access tokens.
    """
    try:
        payload = jwt.decode(
            token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm]
        )
    except jwt.PyJWTError:
        raise AuthenticationError("Invalid or expired token")

    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise AuthenticationError("Invalid or expired token")

    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise AuthenticationError("Invalid token subject")


def _strip_bearer(value: str | None) -> str | None:
    if not value:
        return None
    if value.lower().startswith("bearer "):
        value = value[7:]
    return value.strip() or None


def extract_ws_credential(websocket: WebSocket) -> str | None:
    """Pick the handshake credential: auth header, then Authorization, then ?token=."""
    return (
        _strip_bearer(websocket.headers.get("x-auth-token"))
        or _strip_bearer(websocket.headers.get("authorization"))
        or _strip_bearer(websocket.query_params.get("token"))
    )


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

class AuthenticatedAgent:
    """Container for the agent behind a verified access token."""

    def __init__(self, agent_id: uuid.UUID):
        self.agent_id = agent_id


async def get_current_agent(
    request: Request,
    authorization: Optional[str] = Depends(api_key_header),
) -> AuthenticatedAgent:
    """Main authentication dependency: Bearer access token."""
    token = _strip_bearer(authorization)
    if not token:
        raise AuthenticationError("Authentication required")

    auth = AuthenticatedAgent(decode_access_token(token))
    request.state.auth = auth
    return auth
