# pylint: disable=missing-module-docstring,missing-function-docstring

from typing import Any

import pytest

import session.heartbeat as heartbeat_mod
from session.connection_status import ConnectionQuality
from session.heartbeat import HeartbeatMonitor

from fakes import FakeScheduler


class Probe:
    def __init__(self, *, delivers: bool = True) -> None:
        self.delivers = delivers
        self.pings: list[int] = []
        self.qualities: list[ConnectionQuality] = []

    def send_ping(self, now_ms: int) -> bool:
        if self.delivers:
            self.pings.append(now_ms)
        return self.delivers

    def set_quality(self, quality: ConnectionQuality) -> None:
        self.qualities.append(quality)


def make_monitor(probe: Probe, scheduler: FakeScheduler) -> HeartbeatMonitor:
    return HeartbeatMonitor(
        scheduler=scheduler,
        send_ping=probe.send_ping,
        set_quality=probe.set_quality,
    )


@pytest.fixture(autouse=True)
def quiet_logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(heartbeat_mod, "log_event", emitted.append)
    return emitted


# ---------------------------------------------------------------------
# Ping cadence
# ---------------------------------------------------------------------

def test_pings_every_interval():
    scheduler = FakeScheduler()
    probe = Probe()
    monitor = make_monitor(probe, scheduler)

    monitor.start()
    scheduler.advance(29_999)
    assert probe.pings == []

    scheduler.advance(1)
    scheduler.advance(30_000)
    assert len(probe.pings) == 2


def test_stop_cancels_interval_and_pending_check():
    scheduler = FakeScheduler()
    probe = Probe()
    monitor = make_monitor(probe, scheduler)

    monitor.start()
    scheduler.advance(30_000)
    monitor.stop()
    scheduler.advance(120_000)

    assert len(probe.pings) == 1
    assert probe.qualities == []
    assert not monitor.running
    assert scheduler.active_timers() == []


# ---------------------------------------------------------------------
# Quality
# ---------------------------------------------------------------------

def test_missing_pong_downgrades_to_poor(quiet_logs: list[dict[str, Any]]):
    scheduler = FakeScheduler()
    probe = Probe()
    monitor = make_monitor(probe, scheduler)

    monitor.start()
    # Ping at t+30s, check at t+35s: 35s since the last sign of life
    scheduler.advance(35_000)

    assert probe.qualities == [ConnectionQuality.POOR]
    assert quiet_logs[-1]["event_type"] == "HEARTBEAT_POOR"


def test_timely_pong_keeps_good():
    scheduler = FakeScheduler()
    probe = Probe()
    monitor = make_monitor(probe, scheduler)

    monitor.start()
    scheduler.advance(30_000)
    scheduler.advance(100)
    monitor.record_pong()
    scheduler.advance(4_900)

    assert probe.qualities == [ConnectionQuality.GOOD]


def test_pong_after_poor_restores_good():
    scheduler = FakeScheduler()
    probe = Probe()
    monitor = make_monitor(probe, scheduler)

    monitor.start()
    scheduler.advance(35_000)
    monitor.record_pong()

    assert probe.qualities == [ConnectionQuality.POOR, ConnectionQuality.GOOD]
    assert monitor.last_pong_ms == scheduler.now_ms()


def test_undelivered_ping_schedules_no_check():
    scheduler = FakeScheduler()
    probe = Probe(delivers=False)
    monitor = make_monitor(probe, scheduler)

    monitor.start()
    scheduler.advance(36_000)

    assert probe.qualities == []
    assert monitor.last_ping_ms is None
