"""
Real-time hub (server side of the wire contract).

Responsibilities:
- Accept sockets, acknowledge with `connection_established`
- Require an `auth` frame within HUB_AUTH_TIMEOUT_MS
- Enforce frame size and per-connection rate limits
- Maintain room membership and broadcast within rooms
- Answer `ping` with `pong`
- Relay chat, typing, order status and provider location to order rooms

Non-responsibilities:
- Persistence (chat history, orders) and order-level authorization
- Push delivery to offline users
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect

from constants import (
    CHAT_MESSAGE_MAX_CHARS,
    GOING_AWAY_CODE,
    HUB_AUTH_TIMEOUT_MS,
    HUB_MAX_MESSAGE_BYTES,
    HUB_MAX_MESSAGES_PER_MINUTE,
    HUB_RATE_WINDOW_MS,
    NORMAL_CLOSURE_CODE,
    ORDER_STATUSES,
    POLICY_VIOLATION_CODE,
)
from features.order_tracking import order_room
from observability.logger import exception_fields, log_event
from protocol.envelope import (
    Envelope,
    EnvelopeError,
    MessageType,
    decode_envelope,
    encode_envelope,
)
from server.tokens import InvalidTokenError, WsTokenClaims


TokenVerifier = Callable[[str], WsTokenClaims]

PROVIDER_ROLES = frozenset({"service_provider", "parts_provider"})


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _new_connection_id() -> str:
    return f"conn_{uuid4().hex[:12]}"


# ------------------------------------------------------------------
# Connection record
# ------------------------------------------------------------------

@dataclass
class HubConnection:
    """Server-side state of one socket."""

    connection_id: str
    websocket: WebSocket
    connected_at_ms: int
    user_id: str | None = None
    role: str | None = None
    rooms: set[str] = field(default_factory=set)
    window_start_ms: int = 0
    window_count: int = 0
    auth_deadline: asyncio.Task[None] | None = None

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None


# ------------------------------------------------------------------
# Hub
# ------------------------------------------------------------------

class RealtimeHub:
    """One hub per process; owns every connection and room."""

    def __init__(
        self,
        *,
        verify_token: TokenVerifier,
        auth_timeout_ms: int = HUB_AUTH_TIMEOUT_MS,
        max_message_bytes: int = HUB_MAX_MESSAGE_BYTES,
        max_messages_per_minute: int = HUB_MAX_MESSAGES_PER_MINUTE,
    ) -> None:
        self._verify_token = verify_token
        self._auth_timeout_ms = auth_timeout_ms
        self._max_message_bytes = max_message_bytes
        self._max_per_window = max_messages_per_minute

        self._connections: dict[str, HubConnection] = {}
        self._rooms: dict[str, set[str]] = {}
        self._user_connections: dict[str, str] = {}

        self._handlers: dict[str, Callable[[HubConnection, Any], Awaitable[None]]] = {
            MessageType.AUTH.value: self._on_auth,
            MessageType.PING.value: self._on_ping,
            MessageType.JOIN_ROOM.value: self._on_join_room,
            MessageType.LEAVE_ROOM.value: self._on_leave_room,
            MessageType.SUBSCRIBE_ORDER.value: self._on_subscribe_order,
            MessageType.UNSUBSCRIBE_ORDER.value: self._on_unsubscribe_order,
            MessageType.CHAT_MESSAGE.value: self._on_chat_message,
            MessageType.TYPING_INDICATOR.value: self._on_typing,
            MessageType.ORDER_STATUS_UPDATE.value: self._on_order_status,
            MessageType.PROVIDER_LOCATION.value: self._on_provider_location,
        }

    # ------------------------------------------------------------------
    # Socket lifecycle
    # ------------------------------------------------------------------

    async def serve(self, websocket: WebSocket) -> None:
        """Run one socket until it disconnects."""
        await websocket.accept()

        conn = HubConnection(
            connection_id=_new_connection_id(),
            websocket=websocket,
            connected_at_ms=_now_ms(),
        )
        self._connections[conn.connection_id] = conn
        self._log("HUB_CONNECTED", conn)

        await self._send(conn, MessageType.CONNECTION_ESTABLISHED.value, {
            "connectionId": conn.connection_id,
            "timestamp": _now_ms(),
            "authRequired": True,
            "authTimeout": self._auth_timeout_ms,
        })
        conn.auth_deadline = asyncio.get_running_loop().create_task(
            self._enforce_auth_deadline(conn)
        )

        try:
            while True:
                raw = await websocket.receive_text()
                await self.handle_frame(conn, raw)
        except WebSocketDisconnect:
            pass
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log("HUB_FATAL_ERROR", conn, **exception_fields(exc))
        finally:
            self._drop(conn)

    async def handle_frame(self, conn: HubConnection, raw: str) -> None:
        if len(raw.encode("utf-8")) > self._max_message_bytes:
            await self._send_error(conn, "Message too large")
            return

        if not await self._within_rate_limit(conn):
            return

        try:
            envelope = decode_envelope(raw)
        except EnvelopeError:
            await self._send_error(conn, "Invalid message format")
            return

        msg_type = envelope.type
        if not conn.authenticated and msg_type not in (
            MessageType.AUTH.value,
            MessageType.PING.value,
        ):
            await self._send_error(conn, "Authentication required")
            return

        handler = self._handlers.get(msg_type)
        if handler is None:
            await self._send(conn, MessageType.ERROR.value, {
                "message": "Unknown message type",
                "type": msg_type,
            })
            return

        await handler(conn, envelope.data if isinstance(envelope.data, dict) else {})

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def broadcast_to_room(
        self,
        room_id: str,
        message_type: str,
        data: Any,
        *,
        exclude: frozenset[str] = frozenset(),
    ) -> int:
        """Send to every connection in the room. Returns the number reached."""
        sent = 0
        for connection_id in list(self._rooms.get(room_id, ())):
            if connection_id in exclude:
                continue
            conn = self._connections.get(connection_id)
            if conn is not None and await self._send(conn, message_type, data):
                sent += 1
        return sent

    async def send_to_user(self, user_id: str, message_type: str, data: Any) -> bool:
        connection_id = self._user_connections.get(user_id)
        conn = self._connections.get(connection_id) if connection_id else None
        if conn is None:
            return False
        return await self._send(conn, message_type, data)

    async def notify_user(self, user_id: str, *, title: str, body: str, **extra: Any) -> bool:
        return await self.send_to_user(user_id, MessageType.NOTIFICATION.value, {
            "title": title,
            "body": body,
            "timestamp": _now_ms(),
            **extra,
        })

    async def notify_new_order(self, order: dict[str, Any], provider_id: str | None = None) -> int:
        data = {
            "orderId": order.get("id"),
            "orderType": order.get("type"),
            "totalAmount": order.get("totalAmount"),
            "scheduledAt": order.get("scheduledAt"),
            "location": order.get("location"),
        }
        if provider_id is not None:
            sent = await self.send_to_user(provider_id, MessageType.NEW_ORDER_NOTIFICATION.value, data)
            return 1 if sent else 0
        return await self.broadcast_to_room("providers", MessageType.NEW_ORDER_NOTIFICATION.value, data)

    def is_user_in_room(self, user_id: str, room_id: str) -> bool:
        connection_id = self._user_connections.get(user_id)
        return connection_id is not None and connection_id in self._rooms.get(room_id, ())

    def stats(self) -> dict[str, int]:
        return {
            "totalConnections": len(self._connections),
            "authenticatedConnections": sum(
                1 for c in self._connections.values() if c.authenticated
            ),
            "totalRooms": len(self._rooms),
            "activeUsers": len(self._user_connections),
        }

    async def shutdown(self) -> None:
        for conn in list(self._connections.values()):
            await self._close(conn, GOING_AWAY_CODE, "Server shutting down")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _on_auth(self, conn: HubConnection, data: dict[str, Any]) -> None:
        token = data.get("token")
        if not isinstance(token, str) or not token:
            await self._send(conn, MessageType.AUTH_FAILED.value, {"message": "Token required"})
            return

        try:
            claims = self._verify_token(token)
        except InvalidTokenError as exc:
            self._log("HUB_AUTH_FAILED", conn, error=str(exc))
            await self._send(conn, MessageType.AUTH_FAILED.value, {
                "message": "Invalid or expired token",
            })
            await self._close(conn, POLICY_VIOLATION_CODE, "Invalid authentication")
            return

        conn.user_id = claims.user_id
        conn.role = claims.role
        if conn.auth_deadline is not None:
            conn.auth_deadline.cancel()
            conn.auth_deadline = None

        # One live connection per user
        previous_id = self._user_connections.get(claims.user_id)
        previous = self._connections.get(previous_id) if previous_id else None
        self._user_connections[claims.user_id] = conn.connection_id
        if previous is not None and previous is not conn:
            await self._close(previous, NORMAL_CLOSURE_CODE, "New connection established")

        await self._send(conn, MessageType.AUTH_SUCCESS.value, {
            "userId": claims.user_id,
            "role": claims.role,
            "timestamp": _now_ms(),
        })

        self._join(conn, f"user:{claims.user_id}")
        if claims.role in PROVIDER_ROLES:
            self._join(conn, "providers")
        if claims.role == "admin":
            self._join(conn, "admin")

        self._log("HUB_AUTHENTICATED", conn)

    async def _on_ping(self, conn: HubConnection, _data: dict[str, Any]) -> None:
        await self._send(conn, MessageType.PONG.value, {"timestamp": _now_ms()})

    async def _on_join_room(self, conn: HubConnection, data: dict[str, Any]) -> None:
        room_id = data.get("roomId")
        if not isinstance(room_id, str) or not room_id:
            await self._send_error(conn, "Room ID required")
            return

        if not self._can_join(conn, room_id):
            await self._send(conn, MessageType.ROOM_ACCESS_DENIED.value, {
                "roomId": room_id,
                "message": "Access denied to this room",
            })
            return

        self._join(conn, room_id)
        await self._send(conn, MessageType.ROOM_JOINED.value, {
            "roomId": room_id,
            "timestamp": _now_ms(),
        })

    async def _on_leave_room(self, conn: HubConnection, data: dict[str, Any]) -> None:
        room_id = data.get("roomId")
        if not isinstance(room_id, str) or not room_id:
            return
        self._leave(conn, room_id)
        await self._send(conn, MessageType.ROOM_LEFT.value, {
            "roomId": room_id,
            "timestamp": _now_ms(),
        })

    async def _on_subscribe_order(self, conn: HubConnection, data: dict[str, Any]) -> None:
        order_id = data.get("orderId")
        if isinstance(order_id, str) and order_id:
            self._join(conn, order_room(order_id))

    async def _on_unsubscribe_order(self, conn: HubConnection, data: dict[str, Any]) -> None:
        order_id = data.get("orderId")
        if isinstance(order_id, str) and order_id:
            self._leave(conn, order_room(order_id))

    async def _on_chat_message(self, conn: HubConnection, data: dict[str, Any]) -> None:
        order_id = data.get("orderId")
        message = data.get("message")
        if not isinstance(order_id, str) or not order_id or not isinstance(message, str):
            await self._send_error(conn, "Invalid message data")
            return
        if not 0 < len(message) <= CHAT_MESSAGE_MAX_CHARS:
            await self._send_error(conn, f"Message must be 1-{CHAT_MESSAGE_MAX_CHARS} characters")
            return

        now = _now_ms()
        await self.broadcast_to_room(order_room(order_id), MessageType.CHAT_MESSAGE.value, {
            "id": f"chat_{uuid4().hex[:12]}",
            "orderId": order_id,
            "senderId": conn.user_id,
            "message": message,
            "messageType": data.get("messageType", "text"),
            "attachments": data.get("attachments", []),
            "timestamp": now,
        })

    async def _on_typing(self, conn: HubConnection, data: dict[str, Any]) -> None:
        order_id = data.get("orderId")
        is_typing = data.get("isTyping")
        if not isinstance(order_id, str) or not order_id or not isinstance(is_typing, bool):
            await self._send_error(conn, "Invalid typing indicator data")
            return

        await self.broadcast_to_room(
            order_room(order_id),
            MessageType.TYPING_INDICATOR.value,
            {
                "orderId": order_id,
                "userId": conn.user_id,
                "isTyping": is_typing,
                "timestamp": _now_ms(),
            },
            exclude=frozenset({conn.connection_id}),
        )

    async def _on_order_status(self, conn: HubConnection, data: dict[str, Any]) -> None:
        order_id = data.get("orderId")
        status = data.get("status")
        if not isinstance(order_id, str) or not order_id or not status:
            await self._send_error(conn, "Order ID and status required")
            return
        if status not in ORDER_STATUSES:
            await self._send_error(conn, "Invalid order status")
            return

        await self.broadcast_to_room(order_room(order_id), MessageType.ORDER_STATUS_UPDATED.value, {
            "orderId": order_id,
            "status": status,
            "notes": data.get("notes"),
            "updatedBy": conn.user_id,
            "timestamp": _now_ms(),
        })

    async def _on_provider_location(self, conn: HubConnection, data: dict[str, Any]) -> None:
        order_id = data.get("orderId")
        latitude = data.get("latitude")
        longitude = data.get("longitude")
        if (
            not isinstance(order_id, str)
            or not order_id
            or not isinstance(latitude, (int, float))
            or not isinstance(longitude, (int, float))
        ):
            await self._send_error(conn, "Invalid location data")
            return
        if conn.role not in PROVIDER_ROLES:
            await self._send_error(conn, "Only providers can share location")
            return

        await self.broadcast_to_room(order_room(order_id), MessageType.PROVIDER_LOCATION_UPDATE.value, {
            "orderId": order_id,
            "providerId": conn.user_id,
            "latitude": latitude,
            "longitude": longitude,
            "accuracy": data.get("accuracy"),
            "timestamp": _now_ms(),
        })

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _can_join(self, conn: HubConnection, room_id: str) -> bool:
        if room_id.startswith("user:"):
            return room_id == f"user:{conn.user_id}"
        if room_id == "admin":
            return conn.role == "admin"
        if room_id == "providers":
            return conn.role in PROVIDER_ROLES or conn.role == "admin"
        return True

    def _join(self, conn: HubConnection, room_id: str) -> None:
        self._rooms.setdefault(room_id, set()).add(conn.connection_id)
        conn.rooms.add(room_id)

    def _leave(self, conn: HubConnection, room_id: str) -> None:
        members = self._rooms.get(room_id)
        if members is not None:
            members.discard(conn.connection_id)
            if not members:
                del self._rooms[room_id]
        conn.rooms.discard(room_id)

    def _drop(self, conn: HubConnection) -> None:
        if conn.auth_deadline is not None:
            conn.auth_deadline.cancel()
            conn.auth_deadline = None
        for room_id in list(conn.rooms):
            self._leave(conn, room_id)
        self._connections.pop(conn.connection_id, None)
        if conn.user_id is not None and self._user_connections.get(conn.user_id) == conn.connection_id:
            del self._user_connections[conn.user_id]
        self._log("HUB_DISCONNECTED", conn)

    async def _within_rate_limit(self, conn: HubConnection) -> bool:
        now = _now_ms()
        if now - conn.window_start_ms > HUB_RATE_WINDOW_MS:
            conn.window_start_ms = now
            conn.window_count = 0

        conn.window_count += 1
        if conn.window_count <= self._max_per_window:
            return True

        await self._send_error(conn, "Rate limit exceeded. Please slow down.")
        if conn.window_count > self._max_per_window * 2:
            await self._close(conn, POLICY_VIOLATION_CODE, "Rate limit violation")
        return False

    async def _enforce_auth_deadline(self, conn: HubConnection) -> None:
        try:
            await asyncio.sleep(self._auth_timeout_ms / 1000.0)
        except asyncio.CancelledError:
            return
        conn.auth_deadline = None
        if not conn.authenticated and conn.connection_id in self._connections:
            self._log("HUB_AUTH_TIMEOUT", conn)
            await self._close(conn, POLICY_VIOLATION_CODE, "Authentication timeout")

    async def _send(self, conn: HubConnection, message_type: str, data: Any) -> bool:
        frame = encode_envelope(Envelope(type=message_type, data=data, timestamp=_now_ms()))
        try:
            await conn.websocket.send_text(frame)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log("HUB_SEND_ERROR", conn, message_type=message_type, **exception_fields(exc))
            return False
        return True

    async def _send_error(self, conn: HubConnection, message: str) -> None:
        await self._send(conn, MessageType.ERROR.value, {"message": message})

    async def _close(self, conn: HubConnection, code: int, reason: str) -> None:
        try:
            await conn.websocket.close(code=code, reason=reason)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log("HUB_CLOSE_ERROR", conn, **exception_fields(exc))

    def _log(self, event_type: str, conn: HubConnection, **fields: Any) -> None:
        log_event({
            "event_type": event_type,
            "ts_ms": _now_ms(),
            "connection_id": conn.connection_id,
            "user_id": conn.user_id,
            **fields,
        })
