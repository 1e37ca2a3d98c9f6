"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No connection logic
- No protocol constants
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    MAX_RECONNECT_ATTEMPTS,
    RECONNECT_BASE_INTERVAL_MS,
    WS_PATH,
)


@dataclass(frozen=True)
class RealtimeConfig:
    """
    Immutable real-time configuration.

    Constructed once at process startup.
    Passed downward to the session, the API client and the hub.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Client connection
    # ------------------------------------------------------------------

    # Origin of the hosting application; scheme and host of the socket
    # URL are derived from it.
    origin: str = "http://localhost:5000"
    ws_path: str = WS_PATH

    auto_reconnect: bool = True
    reconnect_interval_ms: int = RECONNECT_BASE_INTERVAL_MS
    max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS

    # ------------------------------------------------------------------
    # Hub
    # ------------------------------------------------------------------

    jwt_secret: str | None = None
    cors_origins: tuple[str, ...] = ("*",)

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> RealtimeConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        cors = os.environ.get("CORS_ORIGINS", "*")
        return RealtimeConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            origin=os.environ.get("REALTIME_ORIGIN", "http://localhost:5000"),
            ws_path=os.environ.get("REALTIME_WS_PATH", WS_PATH),

            auto_reconnect=os.environ.get("REALTIME_AUTO_RECONNECT", "1") == "1",
            reconnect_interval_ms=int(
                os.environ.get("REALTIME_RECONNECT_INTERVAL_MS", RECONNECT_BASE_INTERVAL_MS)
            ),
            max_reconnect_attempts=int(
                os.environ.get("REALTIME_MAX_RECONNECT_ATTEMPTS", MAX_RECONNECT_ATTEMPTS)
            ),

            jwt_secret=os.environ.get("SESSION_SECRET"),
            cors_origins=tuple(o.strip() for o in cors.split(",") if o.strip()),
        )
