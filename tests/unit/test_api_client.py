# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
from typing import Any, Callable

import httpx
import pytest

import services.api_client as api_mod
from services.api_client import ApiClient, ApiError
from session.auth import SessionAuth


@pytest.fixture(autouse=True)
def captured_logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(api_mod, "log_event", emitted.append)
    return emitted


def make_client(
    handler: Callable[[httpx.Request], httpx.Response],
    auth: SessionAuth | None = None,
) -> ApiClient:
    http_client = httpx.AsyncClient(
        base_url="https://app.example.com",
        transport=httpx.MockTransport(handler),
    )
    return ApiClient(
        base_url="https://app.example.com",
        auth=auth or SessionAuth(user_id="u1", bearer_token="id-token", cookies={"sid": "abc"}),
        http_client=http_client,
    )


# ---------------------------------------------------------------------
# ws token
# ---------------------------------------------------------------------

def test_fetch_ws_token_forwards_credentials():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"token": "ws-tok"})

    token = asyncio.run(make_client(handler).fetch_ws_token())

    assert token == "ws-tok"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/api/v1/auth/ws-token"
    assert request.headers["Authorization"] == "Bearer id-token"
    assert "sid=abc" in request.headers["Cookie"]
    assert json.loads(request.content) == {}


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(401, json={"message": "Unauthorized"}),
        httpx.Response(200, json={"nope": True}),
        httpx.Response(200, text="<html>"),
    ],
)
def test_fetch_ws_token_failure_yields_none(
    response: httpx.Response,
    captured_logs: list[dict[str, Any]],
):
    token = asyncio.run(make_client(lambda _r: response).fetch_ws_token())

    assert token is None
    assert captured_logs[-1]["event_type"] == "WS_TOKEN_FETCH_FAILED"


def test_fetch_ws_token_network_error_yields_none():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    assert asyncio.run(make_client(handler).fetch_ws_token()) is None


# ---------------------------------------------------------------------
# History endpoints
# ---------------------------------------------------------------------

def test_fetch_chat_history_returns_message_dicts():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/chat/o1"
        return httpx.Response(200, json=[{"id": "m1"}, "junk", {"id": "m2"}])

    messages = asyncio.run(make_client(handler).fetch_chat_history("o1"))

    assert messages == [{"id": "m1"}, {"id": "m2"}]


def test_fetch_notifications_raises_on_http_error():
    client = make_client(lambda _r: httpx.Response(500))

    with pytest.raises(ApiError) as excinfo:
        asyncio.run(client.fetch_notifications())

    assert excinfo.value.status_code == 500


def test_non_list_history_is_an_error():
    client = make_client(lambda _r: httpx.Response(200, json={"items": []}))

    with pytest.raises(ApiError):
        asyncio.run(client.fetch_notifications())
