"""
Bounded backlog of envelopes attempted while disconnected.

Rules:
- FIFO: drain() returns entries in enqueue order
- Capacity OUTBOUND_QUEUE_CAPACITY; when an enqueue exceeds it, only the
  most recent OUTBOUND_QUEUE_RETAIN entries are kept (oldest evicted first)
- Overflow is lossy by policy, never an error
- Deterministic, synchronous behavior
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from typing import Deque

from protocol.envelope import Envelope
from constants import OUTBOUND_QUEUE_CAPACITY, OUTBOUND_QUEUE_RETAIN


@dataclass
class EvictionCounters:
    """Eviction counters for observability."""
    overflow_events: int = 0
    evicted: int = 0


class OutboundQueue:
    """FIFO backlog with recency-preserving overflow."""

    def __init__(
        self,
        *,
        capacity: int = OUTBOUND_QUEUE_CAPACITY,
        retain: int = OUTBOUND_QUEUE_RETAIN,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        if not 0 < retain <= capacity:
            raise ValueError("retain must be in (0, capacity]")

        self._capacity = capacity
        self._retain = retain
        self._entries: Deque[Envelope] = deque()
        self.evictions = EvictionCounters()

    # -------------------------
    # Core queue operations
    # -------------------------

    def enqueue(self, envelope: Envelope) -> int:
        """
        Append an envelope.

        Returns:
            Number of entries evicted by this call (0 when within capacity)
        """
        self._entries.append(envelope)

        if len(self._entries) <= self._capacity:
            return 0

        evicted = len(self._entries) - self._retain
        for _ in range(evicted):
            self._entries.popleft()

        self.evictions.overflow_events += 1
        self.evictions.evicted += evicted
        return evicted

    def drain(self) -> list[Envelope]:
        """Remove and return every entry, oldest first."""
        entries = list(self._entries)
        self._entries.clear()
        return entries

    def clear(self) -> None:
        """Drop all entries without counting them as evictions."""
        self._entries.clear()

    # -------------------------
    # Introspection helpers
    # -------------------------

    def __len__(self) -> int:
        return len(self._entries)

    def is_empty(self) -> bool:
        return not self._entries

    def peek(self) -> Envelope | None:
        return self._entries[0] if self._entries else None

    def snapshot(self) -> dict[str, int]:
        return {
            "queued": len(self._entries),
            "overflow_events": self.evictions.overflow_events,
            "evicted": self.evictions.evicted,
        }
