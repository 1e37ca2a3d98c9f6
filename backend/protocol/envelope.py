"""
Envelope codec for real-time JSON text frames.

Every frame on the wire is one JSON object:

    {"type": "chat_message", "data": {...}, "timestamp": 1700000000000,
     "messageId": "msg_1700000000000_k3j9x0a1b"}

- `type` is required and must be a non-empty string
- `data` is opaque (any JSON value, missing decodes as None)
- `timestamp` is epoch milliseconds (missing decodes as 0)
- `messageId` is present on outbound application messages only

Usage:

    raw = encode_envelope(Envelope(type="ping", data={"timestamp": now}, timestamp=now))
    env = decode_envelope(raw)          # raises EnvelopeError if malformed
"""

from __future__ import annotations

import json
import random
import string
from dataclasses import dataclass
from enum import Enum
from typing import Any, Final


class EnvelopeError(ValueError):
    """Raised when an inbound frame is not a valid envelope."""


class MessageType(str, Enum):
    """Every message type named by the wire contract."""

    # ------------------------------------------------------------------
    # Outbound control / application
    # ------------------------------------------------------------------
    AUTH = "auth"
    PING = "ping"
    JOIN_ROOM = "join_room"
    LEAVE_ROOM = "leave_room"
    SUBSCRIBE_ORDER = "subscribe_order"
    UNSUBSCRIBE_ORDER = "unsubscribe_order"
    ORDER_STATUS_UPDATE = "order_status_update"
    PROVIDER_LOCATION = "provider_location"

    # Both directions
    CHAT_MESSAGE = "chat_message"
    TYPING_INDICATOR = "typing_indicator"

    # ------------------------------------------------------------------
    # Inbound control (handled by the session, never forwarded)
    # ------------------------------------------------------------------
    CONNECTION_ESTABLISHED = "connection_established"
    AUTH_SUCCESS = "auth_success"
    AUTH_FAILED = "auth_failed"
    PONG = "pong"
    ERROR = "error"

    # ------------------------------------------------------------------
    # Inbound application
    # ------------------------------------------------------------------
    ORDER_STATUS_UPDATED = "order_status_updated"
    PROVIDER_LOCATION_UPDATE = "provider_location_update"
    PROVIDER_ASSIGNED = "provider_assigned"
    NOTIFICATION = "notification"
    NEW_ORDER_NOTIFICATION = "new_order_notification"
    DASHBOARD_METRICS_UPDATE = "dashboard_metrics_update"
    ORDER_METRICS_UPDATE = "order_metrics_update"

    # Hub acknowledgements (forwarded like any application type)
    ROOM_JOINED = "room_joined"
    ROOM_LEFT = "room_left"
    ROOM_ACCESS_DENIED = "room_access_denied"


INBOUND_CONTROL_TYPES: Final[frozenset[str]] = frozenset({
    MessageType.CONNECTION_ESTABLISHED.value,
    MessageType.AUTH_SUCCESS.value,
    MessageType.AUTH_FAILED.value,
    MessageType.PONG.value,
    MessageType.ERROR.value,
})


@dataclass(frozen=True)
class Envelope:
    """Uniform wrapper around every real-time message."""

    type: str
    data: Any
    timestamp: int
    message_id: str | None = None

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {
            "type": self.type,
            "data": self.data,
            "timestamp": self.timestamp,
        }
        if self.message_id is not None:
            wire["messageId"] = self.message_id
        return wire


def encode_envelope(envelope: Envelope) -> str:
    """Serialize an envelope to a compact JSON text frame."""
    return json.dumps(envelope.to_wire(), ensure_ascii=False, separators=(",", ":"))


def decode_envelope(raw: str | bytes) -> Envelope:
    """
    Parse a text frame into an Envelope.

    Raises:
        EnvelopeError: payload is not JSON, not an object, or has no
        usable `type`.
    """
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise EnvelopeError(f"invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise EnvelopeError("frame must be a JSON object")

    msg_type = payload.get("type")
    if not isinstance(msg_type, str) or not msg_type:
        raise EnvelopeError("frame has no type")

    timestamp = payload.get("timestamp", 0)
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        timestamp = 0

    message_id = payload.get("messageId")
    if not isinstance(message_id, str):
        message_id = None

    return Envelope(
        type=msg_type,
        data=payload.get("data"),
        timestamp=int(timestamp),
        message_id=message_id,
    )


_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_message_id(now_ms: int) -> str:
    """Locally unique id for an outbound application message."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"msg_{now_ms}_{suffix}"
