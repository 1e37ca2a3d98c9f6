"""
Per-order chat.

- History is loaded once from the REST API on mount
- Live `chat_message` and `typing_indicator` events for the order room are
  merged on top
- unread_count counts messages from other users until mark_as_read()
- A remote "is typing" entry expires after TYPING_EXPIRE_MS unless it is
  refreshed or explicitly stopped
- Our own "is typing" signal is withdrawn automatically after
  TYPING_AUTO_STOP_MS without a new keystroke

All timers are owned by the chat and cancelled on unmount().
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Sequence, TYPE_CHECKING

from constants import TYPING_AUTO_STOP_MS, TYPING_EXPIRE_MS
from features.order_tracking import order_room
from observability.logger import exception_fields, log_event, wall_ms
from protocol.envelope import MessageType
from services.api_client import ApiError
from session.fanout import Unsubscribe
from session.notices import Notice, NoticeKind, NoticeSink, log_notice
from session.scheduler import TimerHandle

if TYPE_CHECKING:
    from session.manager import RealtimeSession


HistoryLoader = Callable[[str], Awaitable[list[dict[str, Any]]]]

MESSAGE_TYPES = ("text", "image", "location")


class OrderChat:
    """Chat state for one order as seen by `current_user_id`."""

    def __init__(
        self,
        *,
        session: RealtimeSession,
        order_id: str,
        current_user_id: str | None,
        load_history: HistoryLoader | None = None,
        notify: NoticeSink = log_notice,
    ) -> None:
        self._session = session
        self._scheduler = session.scheduler
        self._order_id = order_id
        self._user_id = current_user_id
        self._load_history = load_history
        self._notify = notify

        self._unsubscribers: list[Unsubscribe] = []
        self._typing: dict[str, str] = {}  # user id -> display name
        self._typing_expiry: dict[str, TimerHandle] = {}
        self._typing_stop: TimerHandle | None = None

        self.messages: list[dict[str, Any]] = []
        self.unread_count = 0

    # ------------------------------------------------------------------
    # Published state
    # ------------------------------------------------------------------

    @property
    def mounted(self) -> bool:
        return bool(self._unsubscribers)

    @property
    def is_connected(self) -> bool:
        return self._session.is_connected

    @property
    def typing_user_ids(self) -> frozenset[str]:
        return frozenset(self._typing)

    @property
    def typing_users(self) -> list[str]:
        """Display names of users currently typing."""
        return list(self._typing.values())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def mount(self) -> None:
        if self.mounted:
            return

        self._session.join_room(order_room(self._order_id))
        self._unsubscribers = [
            self._session.subscribe(MessageType.CHAT_MESSAGE.value, self._on_message),
            self._session.subscribe(MessageType.TYPING_INDICATOR.value, self._on_typing),
        ]

        if self._load_history is None:
            return

        try:
            history = await self._load_history(self._order_id)
        except ApiError as exc:
            log_event({
                "event_type": "CHAT_HISTORY_FAILED",
                "ts_ms": wall_ms(),
                "order_id": self._order_id,
                **exception_fields(exc),
            })
            return

        if not self.mounted:
            return

        # Live messages that arrived during the load stay after history
        history_ids = {m.get("id") for m in history if m.get("id") is not None}
        live = [m for m in self.messages if m.get("id") not in history_ids]
        self.messages = list(history) + live

    def unmount(self) -> None:
        if not self.mounted:
            return

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._session.leave_room(order_room(self._order_id))

        if self._typing_stop is not None:
            self._typing_stop.cancel()
            self._typing_stop = None
        for handle in self._typing_expiry.values():
            handle.cancel()
        self._typing_expiry.clear()
        self._typing.clear()

    # ------------------------------------------------------------------
    # Outbound actions
    # ------------------------------------------------------------------

    def send_chat_message(
        self,
        message: str,
        message_type: str = "text",
        attachments: Sequence[str] = (),
    ) -> bool:
        text = message.strip()
        if not text:
            return False
        if message_type not in MESSAGE_TYPES:
            raise ValueError(f"unknown message type: {message_type!r}")

        sent = self._session.send_message(MessageType.CHAT_MESSAGE.value, {
            "orderId": self._order_id,
            "message": text,
            "messageType": message_type,
            "attachments": list(attachments),
        })
        if sent:
            self.send_typing_indicator(False)
        return sent

    def send_typing_indicator(self, is_typing: bool) -> bool:
        if self._typing_stop is not None:
            self._typing_stop.cancel()
            self._typing_stop = None

        sent = self._session.send_message(MessageType.TYPING_INDICATOR.value, {
            "orderId": self._order_id,
            "isTyping": is_typing,
        })

        if is_typing and sent:
            self._typing_stop = self._scheduler.call_later(
                TYPING_AUTO_STOP_MS, self._auto_stop_typing
            )
        return sent

    def mark_as_read(self) -> None:
        self.unread_count = 0

    def clear_chat(self) -> None:
        self.messages = []
        self.unread_count = 0

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _on_message(self, data: Any) -> None:
        if not isinstance(data, dict) or data.get("orderId") != self._order_id:
            return

        self.messages.append({
            **data,
            "id": data.get("id") or f"msg_{wall_ms()}",
            "createdAt": data.get("timestamp"),
        })

        if data.get("senderId") != self._user_id:
            self.unread_count += 1
            self._notify(Notice(
                kind=NoticeKind.NEW_MESSAGE,
                title="New Message",
                description=f"{data.get('senderName')}: {data.get('message')}",
                duration_ms=4000,
            ))

    def _on_typing(self, data: Any) -> None:
        if not isinstance(data, dict) or data.get("orderId") != self._order_id:
            return

        user_id = data.get("userId")
        if not user_id or user_id == self._user_id:
            return

        previous = self._typing_expiry.pop(user_id, None)
        if previous is not None:
            previous.cancel()

        if not data.get("isTyping"):
            self._typing.pop(user_id, None)
            return

        self._typing[user_id] = data.get("userName") or user_id
        self._typing_expiry[user_id] = self._scheduler.call_later(
            TYPING_EXPIRE_MS, lambda: self._expire_typing(user_id)
        )

    def _expire_typing(self, user_id: str) -> None:
        self._typing_expiry.pop(user_id, None)
        self._typing.pop(user_id, None)

    def _auto_stop_typing(self) -> None:
        self._typing_stop = None
        self._session.send_message(MessageType.TYPING_INDICATOR.value, {
            "orderId": self._order_id,
            "isTyping": False,
        })
