"""
Connection status types for the real-time session.

ConnectionState is the raw transport lifecycle, owned by RealtimeSession.
ConnectionQuality is a derived liveness signal maintained by the heartbeat.
They are independent: an OPEN connection may be `poor`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ConnectionState(Enum):
    """Transport lifecycle."""
    CONNECTING = "CONNECTING"   # Transport created, not yet open
    OPEN = "OPEN"               # Live connection
    CLOSING = "CLOSING"         # Close requested, not yet confirmed
    CLOSED = "CLOSED"           # No live connection


class ConnectionQuality(str, Enum):
    """Three-state liveness signal published to consumers."""
    GOOD = "good"
    POOR = "poor"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class ConnectionStats:
    """Snapshot exposed to consumers as `connection_stats`."""
    reconnect_attempts: int
    last_connected: datetime | None
    connection_quality: ConnectionQuality
