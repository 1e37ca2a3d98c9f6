"""
Real-time session (connection manager).

Responsibilities:
- Own exactly one transport per authenticated session
- Build the socket URL from the configured origin
- Authenticate after open (ws token from the REST API -> `auth` frame)
- Reconnect with exponential backoff until the attempt budget is spent
- Queue outbound messages while not ready; flush them in order on open
- Replay room joins on every open (backlog first, then rooms)
- Handle inbound control frames; fan out everything else to subscribers
- Publish is_connected / connection_error / connection_stats

Still NOT responsible for:
- Rendering notices (handed to an injected sink)
- Feature state (order tracking, chat, notifications live in features/)
- Any REST call other than the injected token provider

Every public operation is total: operational conditions (disconnected,
not yet authenticated, transport failure) are reported through return
values and connection_error, never as exceptions.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from config import RealtimeConfig
from constants import NORMAL_CLOSURE_CODE
from observability.logger import exception_fields, log_event, wall_ms
from protocol.envelope import (
    Envelope,
    EnvelopeError,
    MessageType,
    decode_envelope,
    encode_envelope,
    new_message_id,
)
from session.auth import SessionAuth
from session.connection_status import (
    ConnectionQuality,
    ConnectionState,
    ConnectionStats,
)
from session.fanout import EventRegistry, Listener, Unsubscribe
from session.heartbeat import HeartbeatMonitor
from session.notices import Notice, NoticeKind, NoticeSink, log_notice
from session.outbound_queue import OutboundQueue
from session.retry import budget_exhausted, reconnect_delay_ms, should_reconnect
from session.rooms import RoomRegistry
from session.scheduler import AsyncioScheduler, Scheduler, TimerHandle
from session.transport import (
    Transport,
    TransportFactory,
    TransportHandlers,
    TransportUnavailableError,
    build_ws_url,
)


TokenProvider = Callable[[], Awaitable[str | None]]

ERR_UNSUPPORTED = "WebSocket not supported"
ERR_CREATE_FAILED = "Failed to create WebSocket connection"
ERR_TRANSPORT = "Connection error occurred"
ERR_AUTH = "Authentication failed"
ERR_SERVER = "Server error"
ERR_EXHAUSTED = "Unable to connect to server"


class RealtimeSession:
    """
    One instance per authenticated user session.

    Lifecycle:
        session = RealtimeSession(config=..., auth=..., token_provider=...,
                                  transport_factory=...)
        session.start()           # on sign-in
        ...
        await session.close()     # on sign-out

    or `async with RealtimeSession(...) as session:`.
    """

    def __init__(
        self,
        *,
        config: RealtimeConfig,
        auth: SessionAuth,
        token_provider: TokenProvider,
        transport_factory: TransportFactory | None,
        scheduler: Scheduler | None = None,
        notify: NoticeSink = log_notice,
    ) -> None:
        self._config = config
        self._auth = auth
        self._token_provider = token_provider
        self._transport_factory = transport_factory
        self._scheduler: Scheduler = scheduler if scheduler is not None else AsyncioScheduler()
        self._notify_sink = notify

        self._url = build_ws_url(config.origin, config.ws_path)

        # Transport ownership; _generation invalidates handlers of
        # transports this session has let go of
        self._transport: Transport | None = None
        self._generation = 0
        self._state = ConnectionState.CLOSED

        # Handshake: True once auth + backlog flush + rejoin have run
        self._ready = False
        self._server_authenticated = False
        self._open_task: asyncio.Task[None] | None = None

        # Reconnect bookkeeping
        self._reconnect_attempts = 0
        self._reconnect_timer: TimerHandle | None = None
        self._failure_notified = False

        # Published status
        self._connection_error: str | None = None
        self._quality = ConnectionQuality.DISCONNECTED
        self._last_connected: datetime | None = None

        self._queue = OutboundQueue()
        self._rooms = RoomRegistry()
        self._events = EventRegistry()
        self._heartbeat = HeartbeatMonitor(
            scheduler=self._scheduler,
            send_ping=self._send_ping,
            set_quality=self._set_quality,
        )

    # ------------------------------------------------------------------
    # Published state
    # ------------------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def auth(self) -> SessionAuth:
        return self._auth

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def is_ready(self) -> bool:
        """Open and past the post-open handshake; sends go straight out."""
        return self._ready and self.is_connected

    @property
    def server_authenticated(self) -> bool:
        return self._server_authenticated

    @property
    def connection_error(self) -> str | None:
        return self._connection_error

    @property
    def connection_stats(self) -> ConnectionStats:
        return ConnectionStats(
            reconnect_attempts=self._reconnect_attempts,
            last_connected=self._last_connected,
            connection_quality=self._quality,
        )

    @property
    def pending_messages(self) -> int:
        return len(self._queue)

    @property
    def rooms(self) -> tuple[str, ...]:
        return self._rooms.snapshot()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Session start: open the connection."""
        self.connect()

    async def close(self) -> None:
        """Session end: disconnect and release every timer, task and listener."""
        self.disconnect()
        self._events.clear()
        self._queue.clear()
        self._scheduler.cancel_all()

    async def __aenter__(self) -> RealtimeSession:
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """
        Open the connection if it is not already open or opening.

        Authentication is required; without a signed-in user this is a no-op.
        """
        if not self._auth.is_authenticated:
            self._log("WS_CONNECT_SKIPPED", reason="not_authenticated")
            return

        if self._transport is not None and self._state in (
            ConnectionState.OPEN,
            ConnectionState.CONNECTING,
        ):
            self._log("WS_CONNECT_SKIPPED", reason=self._state.value.lower())
            return

        self._cancel_reconnect_timer()

        if self._transport_factory is None:
            self._fail_connect(ERR_UNSUPPORTED, reason="transport_unavailable")
            return

        self._generation += 1
        generation = self._generation
        handlers = TransportHandlers(
            on_open=self._guarded(generation, "open", self._handle_open),
            on_close=self._guarded(generation, "close", self._handle_close),
            on_error=self._guarded(generation, "error", self._handle_error),
            on_message=self._guarded(generation, "message", self._handle_message),
        )

        self._log("WS_CONNECTING", url=self._url, attempt=self._reconnect_attempts)

        try:
            transport = self._transport_factory(self._url, handlers)
        except TransportUnavailableError as exc:
            self._fail_connect(ERR_UNSUPPORTED, reason="transport_unavailable", exc=exc)
            return
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._fail_connect(ERR_CREATE_FAILED, reason="create_failed", exc=exc)
            return

        self._transport = transport
        self._state = ConnectionState.CONNECTING

        try:
            transport.start()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._transport = None
            self._generation += 1
            self._fail_connect(ERR_CREATE_FAILED, reason="start_failed", exc=exc)

    def disconnect(self) -> None:
        """Client-initiated close. No reconnect follows. Idempotent."""
        self._cancel_reconnect_timer()
        self._heartbeat.stop()
        self._cancel_open_task()

        transport = self._transport
        self._transport = None
        # Events from the released transport are ignored from here on
        self._generation += 1

        if transport is not None:
            self._state = ConnectionState.CLOSING
            try:
                transport.close(NORMAL_CLOSURE_CODE, "Client disconnecting")
            except Exception as exc:  # pylint: disable=broad-exception-caught
                self._log("WS_CLOSE_ERROR", **exception_fields(exc))
            self._log("WS_DISCONNECTED", reason="client")

        self._state = ConnectionState.CLOSED
        self._ready = False
        self._server_authenticated = False
        self._quality = ConnectionQuality.DISCONNECTED

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    def send_message(self, message_type: str, data: Any) -> bool:
        """
        Send an application message.

        Returns:
            True if transmitted now
            False if deferred to the outbound backlog
        """
        if not self.is_ready:
            self._enqueue(message_type, data)
            return False

        now = wall_ms()
        envelope = Envelope(
            type=message_type,
            data=data,
            timestamp=now,
            message_id=new_message_id(now),
        )
        if self._transmit(envelope):
            return True

        self._enqueue(message_type, data)
        return False

    def subscribe(self, event_type: str, callback: Listener) -> Unsubscribe:
        return self._events.subscribe(event_type, callback)

    def join_room(self, room_id: str) -> None:
        """
        Record intent to be in `room_id` and tell the server when ready.

        While not ready only membership changes; the join is replayed on open.
        """
        self._rooms.add(room_id)
        if self.is_ready:
            self.send_message(MessageType.JOIN_ROOM.value, {"roomId": room_id})

    def leave_room(self, room_id: str) -> None:
        was_member = self._rooms.discard(room_id)
        if was_member and self.is_ready:
            self.send_message(MessageType.LEAVE_ROOM.value, {"roomId": room_id})

    # ------------------------------------------------------------------
    # Transport handlers
    # ------------------------------------------------------------------

    def _handle_open(self) -> None:
        self._state = ConnectionState.OPEN
        self._connection_error = None
        self._reconnect_attempts = 0
        self._failure_notified = False
        self._last_connected = datetime.now(timezone.utc)
        self._quality = ConnectionQuality.GOOD

        self._log("WS_OPEN", url=self._url)

        self._heartbeat.start()
        self._notify(Notice(
            kind=NoticeKind.CONNECTED,
            title="Connected",
            description="Real-time updates are active",
        ))
        self._open_task = self._scheduler.spawn(self._complete_open(self._generation))

    async def _complete_open(self, generation: int) -> None:
        """Authenticate, then flush the backlog, then rejoin rooms."""
        if not await self._authenticate(generation):
            return
        if generation != self._generation or not self.is_connected:
            return

        self._ready = True
        self._flush_backlog()
        self._rejoin_rooms()

    def _handle_close(self, code: int, reason: str) -> None:
        self._transport = None
        self._state = ConnectionState.CLOSED
        self._ready = False
        self._server_authenticated = False
        self._quality = ConnectionQuality.DISCONNECTED
        self._heartbeat.stop()
        self._cancel_open_task()

        self._log("WS_CLOSED", code=code, reason=reason)
        self._schedule_reconnect()

    def _handle_error(self, exc: BaseException) -> None:
        self._connection_error = ERR_TRANSPORT
        if self._state is ConnectionState.OPEN:
            self._quality = ConnectionQuality.POOR
        self._log("WS_ERROR", **exception_fields(exc))

    def _handle_message(self, raw: str) -> None:
        try:
            envelope = decode_envelope(raw)
        except EnvelopeError as exc:
            self._log("WS_PARSE_ERROR", error=str(exc), size=len(raw))
            return

        msg_type = envelope.type

        if msg_type == MessageType.CONNECTION_ESTABLISHED.value:
            self._log("WS_SERVER_ACK")
        elif msg_type == MessageType.AUTH_SUCCESS.value:
            self._server_authenticated = True
            self._log("WS_AUTH_SUCCESS")
        elif msg_type == MessageType.AUTH_FAILED.value:
            self._server_authenticated = False
            self._connection_error = ERR_AUTH
            self._log("WS_AUTH_FAILED", source="server")
        elif msg_type == MessageType.PONG.value:
            self._heartbeat.record_pong()
        elif msg_type == MessageType.ERROR.value:
            message = None
            if isinstance(envelope.data, dict):
                message = envelope.data.get("message")
            self._connection_error = message or ERR_SERVER
            self._log("WS_SERVER_ERROR", error=self._connection_error)
        else:
            self._events.dispatch(msg_type, envelope.data)

    # ------------------------------------------------------------------
    # Internal: handshake / backlog / rooms
    # ------------------------------------------------------------------

    async def _authenticate(self, generation: int) -> bool:
        try:
            token = await self._token_provider()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log("WS_TOKEN_ERROR", **exception_fields(exc))
            token = None

        if generation != self._generation:
            return False

        if not token:
            self._connection_error = ERR_AUTH
            self._log("WS_AUTH_FAILED", source="token")
            return False

        sent = self._transmit(Envelope(
            type=MessageType.AUTH.value,
            data={"token": token},
            timestamp=wall_ms(),
        ))
        if not sent:
            self._connection_error = ERR_AUTH
            self._log("WS_AUTH_FAILED", source="send")
        return sent

    def _flush_backlog(self) -> None:
        entries = self._queue.drain()
        for envelope in entries:
            self.send_message(envelope.type, envelope.data)
        if entries:
            self._log("WS_QUEUE_FLUSHED", count=len(entries), requeued=len(self._queue))

    def _rejoin_rooms(self) -> None:
        for room_id in self._rooms:
            self.send_message(MessageType.JOIN_ROOM.value, {"roomId": room_id})

    def _enqueue(self, message_type: str, data: Any) -> None:
        evicted = self._queue.enqueue(
            Envelope(type=message_type, data=data, timestamp=wall_ms())
        )
        self._log(
            "WS_MESSAGE_QUEUED",
            message_type=message_type,
            queued=len(self._queue),
            evicted=evicted,
        )

    def _transmit(self, envelope: Envelope) -> bool:
        transport = self._transport
        if transport is None or not transport.is_open:
            return False
        try:
            return transport.send(encode_envelope(envelope))
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log("WS_SEND_ERROR", message_type=envelope.type, **exception_fields(exc))
            return False

    def _send_ping(self, _now_ms: int) -> bool:
        if not self.is_connected:
            return False
        return self._transmit(Envelope(
            type=MessageType.PING.value,
            data={"timestamp": wall_ms()},
            timestamp=wall_ms(),
        ))

    def _set_quality(self, quality: ConnectionQuality) -> None:
        if not self.is_connected:
            self._quality = ConnectionQuality.DISCONNECTED
            return
        self._quality = quality

    # ------------------------------------------------------------------
    # Internal: reconnect
    # ------------------------------------------------------------------

    def _schedule_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            return

        attempt = self._reconnect_attempts
        max_attempts = self._config.max_reconnect_attempts

        if should_reconnect(
            attempt=attempt,
            max_attempts=max_attempts,
            auto_reconnect=self._config.auto_reconnect,
        ):
            delay = reconnect_delay_ms(attempt, base_ms=self._config.reconnect_interval_ms)
            if attempt == 0:
                self._notify(Notice(
                    kind=NoticeKind.CONNECTION_LOST,
                    title="Connection Lost",
                    description="Attempting to reconnect...",
                    destructive=True,
                ))
            self._reconnect_attempts = attempt + 1
            self._log(
                "WS_RECONNECT_SCHEDULED",
                delay_ms=delay,
                attempt=self._reconnect_attempts,
                max_attempts=max_attempts,
            )
            self._reconnect_timer = self._scheduler.call_later(delay, self._reconnect_due)
            return

        if (
            self._config.auto_reconnect
            and budget_exhausted(attempt=attempt, max_attempts=max_attempts)
            and not self._failure_notified
        ):
            self._failure_notified = True
            self._connection_error = ERR_EXHAUSTED
            self._log("WS_RECONNECT_EXHAUSTED", attempts=attempt)
            self._notify(Notice(
                kind=NoticeKind.CONNECTION_FAILED,
                title="Connection Failed",
                description="Unable to connect to server. Please refresh the page.",
                destructive=True,
                duration_ms=10_000,
            ))

    def _reconnect_due(self) -> None:
        self._reconnect_timer = None
        self.connect()

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _cancel_open_task(self) -> None:
        if self._open_task is not None:
            if not self._open_task.done():
                self._open_task.cancel()
            self._open_task = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fail_connect(
        self,
        error: str,
        *,
        reason: str,
        exc: BaseException | None = None,
    ) -> None:
        self._state = ConnectionState.CLOSED
        self._quality = ConnectionQuality.DISCONNECTED
        self._connection_error = error
        fields = exception_fields(exc) if exc is not None else {}
        self._log("WS_CONNECT_FAILED", reason=reason, **fields)

    def _guarded(self, generation: int, name: str, handler: Callable[..., None]) -> Callable[..., None]:
        """Wrap a transport handler: drop stale events, contain exceptions."""

        def wrapper(*args: Any) -> None:
            if generation != self._generation:
                return
            try:
                handler(*args)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                self._log("WS_HANDLER_ERROR", handler=name, **exception_fields(exc))

        return wrapper

    def _notify(self, notice: Notice) -> None:
        try:
            self._notify_sink(notice)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log("NOTICE_SINK_ERROR", kind=notice.kind.value, **exception_fields(exc))

    def _log(self, event_type: str, **fields: Any) -> None:
        log_event({
            "event_type": event_type,
            "ts_ms": wall_ms(),
            "user_id": self._auth.user_id,
            "state": self._state.value,
            **fields,
        })
