"""
Real-time transport.

A Transport is one physical connection attempt. It reports its lifecycle
through four handlers supplied at construction:

    on_open()                  connection established
    on_message(raw)            one inbound text frame
    on_error(exc)              transient error (does not imply close)
    on_close(code, reason)     connection gone; fired exactly once

RealtimeSession is the only owner of a Transport. Nothing else holds one.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Protocol
from urllib.parse import urlsplit, urlunsplit

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from constants import ABNORMAL_CLOSURE_CODE, NORMAL_CLOSURE_CODE, WS_PATH
from observability.logger import exception_fields, log_event, wall_ms


class TransportUnavailableError(RuntimeError):
    """No transport implementation is available in this runtime."""


@dataclass(frozen=True)
class TransportHandlers:
    on_open: Callable[[], None]
    on_close: Callable[[int, str], None]
    on_error: Callable[[BaseException], None]
    on_message: Callable[[str], None]


class Transport(Protocol):
    """Contract RealtimeSession relies on."""

    @property
    def is_open(self) -> bool: ...

    def start(self) -> None: ...

    def send(self, text: str) -> bool: ...

    def close(self, code: int = NORMAL_CLOSURE_CODE, reason: str = "") -> None: ...


TransportFactory = Callable[[str, TransportHandlers], Transport]


# ---------------------------------------------------------------------
# URL construction
# ---------------------------------------------------------------------

_SCHEME_MAP = {"http": "ws", "https": "wss", "ws": "ws", "wss": "wss"}


def build_ws_url(origin: str, path: str = WS_PATH) -> str:
    """
    Derive the socket URL from the hosting origin.

    Secure origins map to wss, plain ones to ws; host and port are kept.
    Raises ValueError for an origin without a supported scheme or host.
    """
    parts = urlsplit(origin)
    scheme = _SCHEME_MAP.get(parts.scheme.lower())
    if scheme is None or not parts.netloc:
        raise ValueError(f"unsupported origin: {origin!r}")

    if not path.startswith("/"):
        path = "/" + path
    return urlunsplit((scheme, parts.netloc, path, "", ""))


# ---------------------------------------------------------------------
# websockets implementation
# ---------------------------------------------------------------------

class WebsocketsTransport:
    """
    Transport over the `websockets` asyncio client.

    - start() spawns a reader task that connects and pumps inbound frames
    - send() is fire-and-forget; a single writer task preserves send order
    - close() performs a client-initiated close; on_close still fires once
    """

    def __init__(
        self,
        *,
        url: str,
        handlers: TransportHandlers,
        origin: str | None = None,
        open_timeout_s: float = 10.0,
    ) -> None:
        self._url = url
        self._handlers = handlers
        self._origin = origin
        self._open_timeout_s = open_timeout_s

        self._ws: ClientConnection | None = None
        self._reader: asyncio.Task[None] | None = None
        self._writer: asyncio.Task[None] | None = None
        self._closer: asyncio.Task[None] | None = None
        self._outgoing: asyncio.Queue[str] = asyncio.Queue()
        self._open = False
        self._closed_fired = False
        self._close_requested: tuple[int, str] | None = None

    # ------------------------------------------------------------------
    # Transport API
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._open

    def start(self) -> None:
        if self._reader is not None:
            return
        self._reader = asyncio.get_running_loop().create_task(self._run())

    def send(self, text: str) -> bool:
        if not self._open:
            return False
        self._outgoing.put_nowait(text)
        return True

    def close(self, code: int = NORMAL_CLOSURE_CODE, reason: str = "") -> None:
        if self._close_requested is not None:
            return
        self._close_requested = (code, reason)
        self._open = False

        if self._ws is None:
            # Still connecting: abandon the attempt
            if self._reader is not None:
                self._reader.cancel()
            self._fire_close(code, reason)
            return

        self._closer = asyncio.get_running_loop().create_task(self._ws.close(code, reason))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            ws = await connect(
                self._url,
                origin=self._origin,  # type: ignore[arg-type]
                open_timeout=self._open_timeout_s,
                # Liveness is handled by the application-level heartbeat
                ping_interval=None,
            )
        except asyncio.CancelledError:
            return
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._handlers.on_error(exc)
            self._fire_close(ABNORMAL_CLOSURE_CODE, str(exc))
            return

        self._ws = ws
        if self._close_requested is not None:
            code, reason = self._close_requested
            await ws.close(code, reason)
            return

        self._open = True
        self._writer = asyncio.get_running_loop().create_task(self._write_loop(ws))
        self._handlers.on_open()

        try:
            async for raw in ws:
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="replace")
                self._handlers.on_message(raw)
        except ConnectionClosed:
            pass
        except asyncio.CancelledError:
            pass
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._handlers.on_error(exc)
        finally:
            self._open = False
            if self._writer is not None:
                self._writer.cancel()
            code = ws.close_code if ws.close_code is not None else ABNORMAL_CLOSURE_CODE
            self._fire_close(code, ws.close_reason or "")

    async def _write_loop(self, ws: ClientConnection) -> None:
        while True:
            text = await self._outgoing.get()
            try:
                await ws.send(text)
            except ConnectionClosed:
                return
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "WS_SEND_ERROR",
                    "ts_ms": wall_ms(),
                    **exception_fields(exc),
                })

    def _fire_close(self, code: int, reason: str) -> None:
        if self._closed_fired:
            return
        self._closed_fired = True
        self._handlers.on_close(code, reason)


def websockets_transport_factory(origin: str | None = None) -> TransportFactory:
    """Factory producing WebsocketsTransport instances for RealtimeSession."""

    def factory(url: str, handlers: TransportHandlers) -> Transport:
        return WebsocketsTransport(url=url, handlers=handlers, origin=origin)

    return factory
