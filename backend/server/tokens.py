"""
Short-lived real-time auth tokens (HS256 JWT).

Issued by POST /api/v1/auth/ws-token, presented in the client's `auth`
frame, verified by the hub. Expiry is enforced by the JWT library.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from jose import JWTError, jwt

from constants import WS_TOKEN_ALGORITHM, WS_TOKEN_TTL_S


class InvalidTokenError(ValueError):
    """Token is malformed, forged, expired or missing claims."""


@dataclass(frozen=True)
class WsTokenClaims:
    user_id: str
    role: str


def issue_ws_token(
    *,
    secret: str,
    user_id: str,
    role: str = "user",
    ttl_s: int = WS_TOKEN_TTL_S,
    now_s: int | None = None,
) -> str:
    issued = int(time.time()) if now_s is None else now_s
    claims = {
        "userId": user_id,
        "role": role,
        "iat": issued,
        "exp": issued + ttl_s,
    }
    return jwt.encode(claims, secret, algorithm=WS_TOKEN_ALGORITHM)


def verify_ws_token(token: str, *, secret: str) -> WsTokenClaims:
    try:
        claims = jwt.decode(token, secret, algorithms=[WS_TOKEN_ALGORITHM])
    except JWTError as e:
        raise InvalidTokenError(str(e)) from e

    user_id = claims.get("userId")
    if not isinstance(user_id, str) or not user_id:
        raise InvalidTokenError("token has no userId")

    return WsTokenClaims(user_id=user_id, role=str(claims.get("role") or "user"))
