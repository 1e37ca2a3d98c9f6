"""
Heartbeat and connection-quality monitor.

While running:
- every HEARTBEAT_INTERVAL_MS a ping is sent through the session
- HEARTBEAT_CHECK_DELAY_MS after each ping, quality is downgraded to POOR
  if no pong has been seen for more than PONG_TIMEOUT_MS
- a pong updates the last-pong time and restores GOOD

The monitor owns no transport. It only calls the two functions it is given
and never runs once stopped.
"""

from __future__ import annotations

from typing import Callable

from constants import (
    HEARTBEAT_CHECK_DELAY_MS,
    HEARTBEAT_INTERVAL_MS,
    PONG_TIMEOUT_MS,
)
from observability.logger import log_event, wall_ms
from session.connection_status import ConnectionQuality
from session.scheduler import Scheduler, TimerHandle


SendPing = Callable[[int], bool]
SetQuality = Callable[[ConnectionQuality], None]


class HeartbeatMonitor:
    """Periodic liveness probe for one open connection."""

    def __init__(
        self,
        *,
        scheduler: Scheduler,
        send_ping: SendPing,
        set_quality: SetQuality,
        interval_ms: int = HEARTBEAT_INTERVAL_MS,
        check_delay_ms: int = HEARTBEAT_CHECK_DELAY_MS,
        pong_timeout_ms: int = PONG_TIMEOUT_MS,
    ) -> None:
        self._scheduler = scheduler
        self._send_ping = send_ping
        self._set_quality = set_quality
        self._interval_ms = interval_ms
        self._check_delay_ms = check_delay_ms
        self._pong_timeout_ms = pong_timeout_ms

        self._interval: TimerHandle | None = None
        self._checks: list[TimerHandle] = []
        self.last_ping_ms: int | None = None
        self.last_pong_ms: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._interval is not None

    def start(self) -> None:
        """Begin probing. Restarting an active monitor resets it."""
        self.stop()
        # Opening the connection counts as proof of life
        self.last_pong_ms = self._scheduler.now_ms()
        self._interval = self._scheduler.call_every(self._interval_ms, self._tick)

    def stop(self) -> None:
        """Cancel the interval and every pending follow-up check."""
        if self._interval is not None:
            self._interval.cancel()
            self._interval = None
        for check in self._checks:
            check.cancel()
        self._checks.clear()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def record_pong(self) -> None:
        self.last_pong_ms = self._scheduler.now_ms()
        self._set_quality(ConnectionQuality.GOOD)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _tick(self) -> None:
        if not self.running:
            return

        now = self._scheduler.now_ms()
        if not self._send_ping(now):
            return

        self.last_ping_ms = now
        check: TimerHandle | None = None

        def _check() -> None:
            if check in self._checks:
                self._checks.remove(check)
            self._check_pong()

        check = self._scheduler.call_later(self._check_delay_ms, _check)
        self._checks.append(check)

    def _check_pong(self) -> None:
        if not self.running:
            return

        since_pong = self._scheduler.now_ms() - self.last_pong_ms
        if since_pong > self._pong_timeout_ms:
            log_event({
                "event_type": "HEARTBEAT_POOR",
                "ts_ms": wall_ms(),
                "since_pong_ms": since_pong,
            })
            self._set_quality(ConnectionQuality.POOR)
