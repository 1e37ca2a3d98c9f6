"""
REST collaborators consumed by the real-time layer.

- POST /api/v1/auth/ws-token   short-lived token for the `auth` frame
- GET  /api/v1/chat/{orderId}  chat history for an order
- GET  /api/v1/notifications   notification history for the user

Credentials come from SessionAuth: cookies and/or a bearer token are
forwarded on every request. The REST API itself lives elsewhere.
"""

from __future__ import annotations

from typing import Any

import httpx

from constants import CHAT_HISTORY_PATH, NOTIFICATIONS_PATH, WS_TOKEN_PATH
from observability.logger import exception_fields, log_event, wall_ms
from session.auth import SessionAuth


class ApiError(RuntimeError):
    """A REST collaborator call failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ApiClient:
    """
    Thin async client over httpx.

    The httpx client may be injected (tests use httpx.MockTransport); when
    it is not, one is created and owned by this instance.
    """

    def __init__(
        self,
        *,
        base_url: str,
        auth: SessionAuth,
        http_client: httpx.AsyncClient | None = None,
        timeout_s: float = 10.0,
    ) -> None:
        self._auth = auth
        self._owns_client = http_client is None
        self._client = http_client if http_client is not None else httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_s,
        )
        self._client.cookies.update(dict(auth.cookies))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def fetch_ws_token(self) -> str | None:
        """
        Obtain a real-time auth token.

        One attempt per call. Any failure is logged and reported as None;
        the session retries only on its next open.
        """
        try:
            payload = await self._request("POST", WS_TOKEN_PATH, json={})
        except ApiError as exc:
            log_event({
                "event_type": "WS_TOKEN_FETCH_FAILED",
                "ts_ms": wall_ms(),
                "status_code": exc.status_code,
                **exception_fields(exc),
            })
            return None

        token = payload.get("token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            log_event({
                "event_type": "WS_TOKEN_FETCH_FAILED",
                "ts_ms": wall_ms(),
                "status_code": 200,
                "message": "response has no token",
            })
            return None
        return token

    async def fetch_chat_history(self, order_id: str) -> list[dict[str, Any]]:
        payload = await self._request("GET", f"{CHAT_HISTORY_PATH}/{order_id}")
        return _as_list(payload, "chat history")

    async def fetch_notifications(self) -> list[dict[str, Any]]:
        payload = await self._request("GET", NOTIFICATIONS_PATH)
        return _as_list(payload, "notifications")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(
                method,
                path,
                headers=self._auth.headers(),
                **kwargs,
            )
        except httpx.HTTPError as exc:
            raise ApiError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            raise ApiError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(
                f"{method} {path} returned invalid JSON",
                status_code=response.status_code,
            ) from exc


def _as_list(payload: Any, what: str) -> list[dict[str, Any]]:
    if not isinstance(payload, list):
        raise ApiError(f"{what} response is not a list")
    return [item for item in payload if isinstance(item, dict)]
