"""
FastAPI app factory for the real-time hub.

Responsibilities:
- Create and configure the FastAPI app
- Set up middleware
- Build the process-wide RealtimeHub and close its sockets on shutdown
- Register routes
"""

from contextlib import asynccontextmanager
from functools import partial
from typing import AsyncIterator, Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import RealtimeConfig

from server.hub import RealtimeHub
from server.routes import register_routes
from server.tokens import verify_ws_token


def create_app(
    config: RealtimeConfig | None = None,
    *,
    resolve_role: Callable[[str], str] | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Passing a config lets tests run without environment variables.
    `resolve_role` maps an authenticated user id to the role stamped into
    its ws token; without one every caller is a plain "user".
    """
    if config is None:
        config = RealtimeConfig.load_from_env()

    if not config.jwt_secret:
        raise RuntimeError("SESSION_SECRET environment variable not set")

    # One hub per process
    hub = RealtimeHub(
        verify_token=partial(verify_ws_token, secret=config.jwt_secret),
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await hub.shutdown()

    app = FastAPI(title="FixitQuick Realtime Hub", lifespan=lifespan)

    app.state.config = config
    app.state.hub = hub
    app.state.resolve_role = resolve_role or _default_role

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)

    return app


def _default_role(_user_id: str) -> str:
    return "user"
