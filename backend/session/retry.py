"""
Reconnect policy helpers.

Pure functions: no timers, no async, no side effects. RealtimeSession owns
the attempt counter and asks these helpers what to do with it.
"""
from __future__ import annotations

from constants import RECONNECT_MAX_DELAY_MS


def reconnect_delay_ms(
    attempt: int,
    *,
    base_ms: int,
    cap_ms: int = RECONNECT_MAX_DELAY_MS,
) -> int:
    """
    Delay before reconnect attempt N (0-based).

    Exponential backoff with a ceiling: min(base * 2**N, cap).
    """
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    # Avoid building huge ints once the cap is certainly reached
    if attempt >= 32:
        return cap_ms
    return min(base_ms * (2 ** attempt), cap_ms)


def should_reconnect(
    *,
    attempt: int,
    max_attempts: int,
    auto_reconnect: bool,
) -> bool:
    """
    True if another automatic reconnect may be scheduled.

    attempt = number of reconnects already scheduled since the last OPEN
    """
    return auto_reconnect and attempt < max_attempts


def budget_exhausted(*, attempt: int, max_attempts: int) -> bool:
    """True once every allowed reconnect has been used."""
    return attempt >= max_attempts
