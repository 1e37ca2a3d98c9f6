"""
Push-style notifications and live dashboard metrics.

Both subscribe to global (not room-scoped) message types and keep purely
additive local state.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TYPE_CHECKING

from features.cache import Invalidate, noop_invalidate
from observability.logger import exception_fields, log_event, wall_ms
from protocol.envelope import MessageType
from services.api_client import ApiError
from session.fanout import Unsubscribe
from session.notices import Notice, NoticeKind, NoticeSink, log_notice

if TYPE_CHECKING:
    from session.manager import RealtimeSession


NotificationLoader = Callable[[], Awaitable[list[dict[str, Any]]]]

# Cache prefixes refreshed on a metrics snapshot, per user role
ROLE_CACHE_KEYS: dict[str, tuple[str, ...]] = {
    "admin": ("/api/v1/admin",),
    "service_provider": ("/api/v1/providers",),
    "parts_provider": ("/api/v1/parts-provider",),
}


# ---------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------

class Notifications:
    """Newest-first notification list with an unread counter."""

    def __init__(
        self,
        *,
        session: RealtimeSession,
        load_history: NotificationLoader | None = None,
        notify: NoticeSink = log_notice,
        invalidate: Invalidate = noop_invalidate,
    ) -> None:
        self._session = session
        self._load_history = load_history
        self._notify = notify
        self._invalidate = invalidate
        self._unsubscribers: list[Unsubscribe] = []

        self.notifications: list[dict[str, Any]] = []

    @property
    def mounted(self) -> bool:
        return bool(self._unsubscribers)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.get("isRead"))

    async def mount(self) -> None:
        if self.mounted:
            return

        self._unsubscribers = [
            self._session.subscribe(MessageType.NOTIFICATION.value, self._on_notification),
            self._session.subscribe(MessageType.NEW_ORDER_NOTIFICATION.value, self._on_new_order),
        ]

        if self._load_history is None:
            return

        try:
            history = await self._load_history()
        except ApiError as exc:
            log_event({
                "event_type": "NOTIFICATIONS_LOAD_FAILED",
                "ts_ms": wall_ms(),
                **exception_fields(exc),
            })
            return

        if self.mounted:
            # Pushed items received during the load are newer than history
            live_ids = {n.get("id") for n in self.notifications if n.get("id") is not None}
            older = [n for n in history if n.get("id") not in live_ids]
            self.notifications = self.notifications + older

    def unmount(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def mark_as_read(self, notification_id: str) -> None:
        self.notifications = [
            {**n, "isRead": True} if n.get("id") == notification_id else n
            for n in self.notifications
        ]

    def mark_all_as_read(self) -> None:
        self.notifications = [{**n, "isRead": True} for n in self.notifications]

    def clear(self) -> None:
        self.notifications = []

    def _on_notification(self, data: Any) -> None:
        if not isinstance(data, dict):
            return

        self.notifications.insert(0, data)
        self._notify(Notice(
            kind=NoticeKind.NOTIFICATION,
            title=str(data.get("title", "")),
            description=str(data.get("body", "")),
            duration_ms=5000,
        ))

    def _on_new_order(self, data: Any) -> None:
        if not isinstance(data, dict):
            return

        self._notify(Notice(
            kind=NoticeKind.NEW_ORDER,
            title="New Order Available",
            description=f"{data.get('orderType')} order for ₹{data.get('totalAmount')}",
            duration_ms=8000,
        ))
        self._invalidate(("/api/v1/providers",))


# ---------------------------------------------------------------------
# Live metrics
# ---------------------------------------------------------------------

class LiveMetrics:
    """Latest dashboard metrics snapshot."""

    def __init__(
        self,
        *,
        session: RealtimeSession,
        user_role: str | None = None,
        invalidate: Invalidate = noop_invalidate,
    ) -> None:
        self._session = session
        self._user_role = user_role
        self._invalidate = invalidate
        self._unsubscribers: list[Unsubscribe] = []

        self.metrics: dict[str, Any] | None = None
        self.last_updated: datetime | None = None

    @property
    def mounted(self) -> bool:
        return bool(self._unsubscribers)

    def mount(self) -> None:
        if self.mounted:
            return
        self._unsubscribers = [
            self._session.subscribe(MessageType.DASHBOARD_METRICS_UPDATE.value, self._on_snapshot),
            self._session.subscribe(MessageType.ORDER_METRICS_UPDATE.value, self._on_delta),
        ]

    def unmount(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _on_snapshot(self, data: Any) -> None:
        if not isinstance(data, dict):
            return

        self.metrics = dict(data)
        self.last_updated = datetime.now(timezone.utc)
        cache_key = ROLE_CACHE_KEYS.get(self._user_role or "")
        if cache_key is not None:
            self._invalidate(cache_key)

    def _on_delta(self, data: Any) -> None:
        if not isinstance(data, dict):
            return

        self.metrics = {**(self.metrics or {}), **data}
        self.last_updated = datetime.now(timezone.utc)
