"""
Room membership intent.

The registry records which rooms the client *wants* to be in. It is not
cleared on disconnect; RealtimeSession replays a join for every member each
time the connection opens.
"""

from __future__ import annotations

from typing import Iterator


class RoomRegistry:
    """Insertion-ordered set of room ids."""

    def __init__(self) -> None:
        # dict keeps insertion order, so rejoin order is join order
        self._rooms: dict[str, None] = {}

    def add(self, room_id: str) -> bool:
        """Add a room. Returns False if it was already present."""
        if room_id in self._rooms:
            return False
        self._rooms[room_id] = None
        return True

    def discard(self, room_id: str) -> bool:
        """Remove a room. Returns False if it was not present."""
        if room_id not in self._rooms:
            return False
        del self._rooms[room_id]
        return True

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._rooms))

    def __len__(self) -> int:
        return len(self._rooms)

    def snapshot(self) -> tuple[str, ...]:
        return tuple(self._rooms)
