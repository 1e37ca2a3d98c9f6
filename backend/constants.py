"""
BEHAVIOR-AS-CONSTANTS
---------------------
Single source of truth for every timing, capacity and path the real-time
layer depends on.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Endpoints
# =============================================================================

WS_PATH: Final[str] = "/ws"
WS_TOKEN_PATH: Final[str] = "/api/v1/auth/ws-token"
CHAT_HISTORY_PATH: Final[str] = "/api/v1/chat"
NOTIFICATIONS_PATH: Final[str] = "/api/v1/notifications"

# =============================================================================
# Reconnection
# =============================================================================

RECONNECT_BASE_INTERVAL_MS: Final[int] = 3_000
RECONNECT_MAX_DELAY_MS: Final[int] = 30_000
MAX_RECONNECT_ATTEMPTS: Final[int] = 10

NORMAL_CLOSURE_CODE: Final[int] = 1000
ABNORMAL_CLOSURE_CODE: Final[int] = 1006
POLICY_VIOLATION_CODE: Final[int] = 1008
GOING_AWAY_CODE: Final[int] = 1001

# =============================================================================
# Heartbeat / quality
# =============================================================================

HEARTBEAT_INTERVAL_MS: Final[int] = 30_000
HEARTBEAT_CHECK_DELAY_MS: Final[int] = 5_000
PONG_TIMEOUT_MS: Final[int] = 10_000

# =============================================================================
# Outbound backlog
# =============================================================================

OUTBOUND_QUEUE_CAPACITY: Final[int] = 100
OUTBOUND_QUEUE_RETAIN: Final[int] = 50

# =============================================================================
# Chat
# =============================================================================

TYPING_EXPIRE_MS: Final[int] = 10_000
TYPING_AUTO_STOP_MS: Final[int] = 3_000
CHAT_MESSAGE_MAX_CHARS: Final[int] = 4_000
DEFAULT_LOCATION_ACCURACY_M: Final[float] = 10.0

# =============================================================================
# Hub (server side)
# =============================================================================

HUB_AUTH_TIMEOUT_MS: Final[int] = 30_000
HUB_MAX_MESSAGE_BYTES: Final[int] = 16_384
HUB_MAX_MESSAGES_PER_MINUTE: Final[int] = 60
HUB_RATE_WINDOW_MS: Final[int] = 60_000

WS_TOKEN_TTL_S: Final[int] = 300
WS_TOKEN_ALGORITHM: Final[str] = "HS256"

ORDER_STATUSES: Final[frozenset[str]] = frozenset({
    "pending",
    "accepted",
    "in_progress",
    "completed",
    "cancelled",
    "refunded",
})
