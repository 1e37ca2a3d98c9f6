"""
User-facing notices (toasts) raised by the real-time layer.

The layer never renders anything. It hands Notice values to a sink supplied
by the application; the default sink only logs them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from observability.logger import log_event, wall_ms


class NoticeKind(str, Enum):
    CONNECTED = "connected"
    CONNECTION_LOST = "connection_lost"
    CONNECTION_FAILED = "connection_failed"
    ORDER_UPDATED = "order_updated"
    PROVIDER_ASSIGNED = "provider_assigned"
    NEW_MESSAGE = "new_message"
    NOTIFICATION = "notification"
    NEW_ORDER = "new_order"


@dataclass(frozen=True)
class Notice:
    kind: NoticeKind
    title: str
    description: str
    destructive: bool = False
    duration_ms: int = 3000


NoticeSink = Callable[[Notice], None]


def log_notice(notice: Notice) -> None:
    """Default sink: record the notice as a log event."""
    log_event({
        "event_type": "NOTICE",
        "ts_ms": wall_ms(),
        "kind": notice.kind.value,
        "title": notice.title,
        "description": notice.description,
    })
