"""
Session bootstrap.

Builds one RealtimeSession per signed-in user with its production
collaborators. Applications call build_realtime_session() when a session
starts and close() on the result when it ends; nothing is global.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from config import RealtimeConfig
from services.api_client import ApiClient
from session.auth import SessionAuth
from session.manager import RealtimeSession
from session.notices import NoticeSink, log_notice
from session.transport import websockets_transport_factory


@dataclass
class RealtimeBundle:
    """A session together with the REST client it depends on."""

    session: RealtimeSession
    api: ApiClient

    async def close(self) -> None:
        await self.session.close()
        await self.api.aclose()


def build_realtime_session(
    *,
    config: RealtimeConfig,
    auth: SessionAuth,
    notify: NoticeSink = log_notice,
    http_client: httpx.AsyncClient | None = None,
) -> RealtimeBundle:
    api = ApiClient(base_url=config.origin, auth=auth, http_client=http_client)
    session = RealtimeSession(
        config=config,
        auth=auth,
        token_provider=api.fetch_ws_token,
        transport_factory=websockets_transport_factory(origin=config.origin),
        notify=notify,
    )
    return RealtimeBundle(session=session, api=api)
