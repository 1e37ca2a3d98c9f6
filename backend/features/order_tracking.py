"""
Live order tracking.

Per order:
- joins room `order:<orderId>` and sends `subscribe_order`
- listens for `order_status_updated`, `provider_location_update`,
  `provider_assigned` (only payloads for this order)
- exposes `update_order_status` and `share_location` as outbound actions

unmount() undoes all of it synchronously.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

from constants import DEFAULT_LOCATION_ACCURACY_M
from features.cache import Invalidate, noop_invalidate
from protocol.envelope import MessageType
from session.fanout import Unsubscribe
from session.notices import Notice, NoticeKind, NoticeSink, log_notice

if TYPE_CHECKING:
    from session.manager import RealtimeSession


def order_room(order_id: str) -> str:
    return f"order:{order_id}"


@dataclass(frozen=True)
class ProviderLocation:
    latitude: float
    longitude: float
    accuracy: float | None
    timestamp: Any
    provider_name: str | None


class OrderTracking:
    """Status and provider-location state for one order."""

    def __init__(
        self,
        *,
        session: RealtimeSession,
        order_id: str,
        notify: NoticeSink = log_notice,
        invalidate: Invalidate = noop_invalidate,
    ) -> None:
        self._session = session
        self._order_id = order_id
        self._notify = notify
        self._invalidate = invalidate
        self._unsubscribers: list[Unsubscribe] = []

        self.order_status: str | None = None
        self.provider_location: ProviderLocation | None = None
        self.provider_name: str | None = None

    @property
    def order_id(self) -> str:
        return self._order_id

    @property
    def mounted(self) -> bool:
        return bool(self._unsubscribers)

    @property
    def is_connected(self) -> bool:
        return self._session.is_connected

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def mount(self) -> None:
        if self.mounted:
            return

        self._session.join_room(order_room(self._order_id))
        self._unsubscribers = [
            self._session.subscribe(MessageType.ORDER_STATUS_UPDATED.value, self._on_status),
            self._session.subscribe(MessageType.PROVIDER_LOCATION_UPDATE.value, self._on_location),
            self._session.subscribe(MessageType.PROVIDER_ASSIGNED.value, self._on_assigned),
        ]
        self._session.send_message(
            MessageType.SUBSCRIBE_ORDER.value, {"orderId": self._order_id}
        )

    def unmount(self) -> None:
        if not self.mounted:
            return

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._session.leave_room(order_room(self._order_id))
        self._session.send_message(
            MessageType.UNSUBSCRIBE_ORDER.value, {"orderId": self._order_id}
        )

    # ------------------------------------------------------------------
    # Outbound actions
    # ------------------------------------------------------------------

    def update_order_status(self, status: str, notes: str | None = None) -> bool:
        data: dict[str, Any] = {"orderId": self._order_id, "status": status}
        if notes is not None:
            data["notes"] = notes
        return self._session.send_message(MessageType.ORDER_STATUS_UPDATE.value, data)

    def share_location(
        self,
        latitude: float,
        longitude: float,
        accuracy: float | None = None,
    ) -> bool:
        return self._session.send_message(MessageType.PROVIDER_LOCATION.value, {
            "orderId": self._order_id,
            "latitude": latitude,
            "longitude": longitude,
            "accuracy": accuracy if accuracy else DEFAULT_LOCATION_ACCURACY_M,
        })

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _is_mine(self, data: Any) -> bool:
        return isinstance(data, dict) and data.get("orderId") == self._order_id

    def _on_status(self, data: Any) -> None:
        if not self._is_mine(data):
            return

        self.order_status = data.get("status")
        self._invalidate(("/api/v1/orders", self._order_id))
        self._invalidate(("/api/v1/orders",))
        self._notify(Notice(
            kind=NoticeKind.ORDER_UPDATED,
            title="Order Updated",
            description=f"Your order status: {self.order_status}",
        ))

    def _on_location(self, data: Any) -> None:
        if not self._is_mine(data):
            return

        self.provider_location = ProviderLocation(
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            accuracy=data.get("accuracy"),
            timestamp=data.get("timestamp"),
            provider_name=data.get("providerName"),
        )

    def _on_assigned(self, data: Any) -> None:
        if not self._is_mine(data):
            return

        self.provider_name = data.get("providerName")
        self._invalidate(("/api/v1/orders", self._order_id))
        self._notify(Notice(
            kind=NoticeKind.PROVIDER_ASSIGNED,
            title="Provider Assigned",
            description=f"{self.provider_name} has been assigned to your order",
            duration_ms=5000,
        ))
