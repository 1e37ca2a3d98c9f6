# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio

import httpx

from config import RealtimeConfig
from session.auth import SessionAuth
from session.connection_status import ConnectionState
from session.factory import build_realtime_session


def test_bundle_wires_session_and_api():
    async def scenario() -> None:
        http_client = httpx.AsyncClient(
            base_url="https://app.example.com",
            transport=httpx.MockTransport(lambda _r: httpx.Response(200, json={"token": "t"})),
        )
        bundle = build_realtime_session(
            config=RealtimeConfig(origin="https://app.example.com"),
            auth=SessionAuth(user_id="u1", role="user"),
            http_client=http_client,
        )

        assert bundle.session.url == "wss://app.example.com/ws"
        assert bundle.session.state is ConnectionState.CLOSED
        assert await bundle.api.fetch_ws_token() == "t"

        await bundle.close()
        assert bundle.session.state is ConnectionState.CLOSED
        await http_client.aclose()

    asyncio.run(scenario())
