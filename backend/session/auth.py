"""
Authentication context for one real-time session.

The identity itself comes from the auth subsystem (Firebase / SMS OTP),
which is outside this layer. The session only needs to know whether a user
is signed in and which credentials to forward to the REST API.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping


@dataclass(frozen=True)
class SessionAuth:
    user_id: str | None = None
    role: str | None = None
    cookies: Mapping[str, str] = field(default_factory=dict)
    bearer_token: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    def headers(self) -> dict[str, str]:
        """Headers carrying bearer credentials, when present."""
        if self.bearer_token:
            return {"Authorization": f"Bearer {self.bearer_token}"}
        return {}


ANONYMOUS = SessionAuth()
