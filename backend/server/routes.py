"""
Route registration for the real-time hub.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Hand sockets to the hub
- Pull dependencies from app.state
"""

from __future__ import annotations

from fastapi import FastAPI, Header, HTTPException, WebSocket

from constants import WS_PATH, WS_TOKEN_PATH
from observability.logger import log_event, wall_ms
from server.hub import RealtimeHub
from server.tokens import issue_ws_token


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    hub: RealtimeHub = app.state.hub

    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/stats")
    async def stats() -> dict[str, int]: # pyright: ignore[reportUnusedFunction]
        return hub.stats()

    @app.post(WS_TOKEN_PATH)
    async def ws_token( # pyright: ignore[reportUnusedFunction]
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, str]:
        # The user id header is set by the auth layer in front of this
        # service. Roles are never taken from the request.
        if not x_user_id:
            raise HTTPException(status_code=401, detail="Authentication required")

        role = app.state.resolve_role(x_user_id)
        token = issue_ws_token(
            secret=app.state.config.jwt_secret,
            user_id=x_user_id,
            role=role,
        )
        log_event({
            "event_type": "WS_TOKEN_ISSUED",
            "ts_ms": wall_ms(),
            "user_id": x_user_id,
            "role": role,
        })
        return {"token": token}

    @app.websocket(WS_PATH)
    async def websocket_endpoint(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await hub.serve(ws)
