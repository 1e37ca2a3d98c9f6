# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Any

import pytest

import features.order_chat as chat_mod
import session.manager as manager_mod
from features.order_chat import OrderChat
from services.api_client import ApiError
from session.notices import Notice, NoticeKind

from fakes import make_harness


@pytest.fixture(autouse=True)
def quiet_logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(manager_mod, "log_event", lambda _e: None)
    monkeypatch.setattr(chat_mod, "log_event", emitted.append)
    return emitted


def make_chat(h: Any, **kwargs: Any) -> tuple[OrderChat, list[Notice]]:
    notices: list[Notice] = []
    chat = OrderChat(
        session=h.session,
        order_id="o1",
        current_user_id="u1",
        notify=notices.append,
        **kwargs,
    )
    return chat, notices


# ---------------------------------------------------------------------
# Typing indicators
# ---------------------------------------------------------------------

def test_remote_typing_expires_after_ten_seconds():
    async def scenario() -> None:
        h = make_harness()
        t = await h.open()
        chat, _ = make_chat(h)
        await chat.mount()

        t.server_send("typing_indicator", {"orderId": "o1", "userId": "u2", "isTyping": True})
        assert "u2" in chat.typing_user_ids

        h.scheduler.advance(9_999)
        assert "u2" in chat.typing_user_ids

        h.scheduler.advance(1)
        assert "u2" not in chat.typing_user_ids

    asyncio.run(scenario())


def test_refreshed_typing_restarts_expiry():
    async def scenario() -> None:
        h = make_harness()
        t = await h.open()
        chat, _ = make_chat(h)
        await chat.mount()

        typing = {"orderId": "o1", "userId": "u2", "userName": "Asha", "isTyping": True}
        t.server_send("typing_indicator", typing)
        h.scheduler.advance(8_000)
        t.server_send("typing_indicator", typing)
        h.scheduler.advance(8_000)

        assert chat.typing_users == ["Asha"]

        h.scheduler.advance(2_000)
        assert chat.typing_users == []

    asyncio.run(scenario())


def test_stop_event_removes_immediately_and_own_events_ignored():
    async def scenario() -> None:
        h = make_harness()
        t = await h.open()
        chat, _ = make_chat(h)
        await chat.mount()

        t.server_send("typing_indicator", {"orderId": "o1", "userId": "u2", "isTyping": True})
        t.server_send("typing_indicator", {"orderId": "o1", "userId": "u2", "isTyping": False})
        t.server_send("typing_indicator", {"orderId": "o1", "userId": "u1", "isTyping": True})
        t.server_send("typing_indicator", {"orderId": "o9", "userId": "u3", "isTyping": True})

        assert chat.typing_user_ids == frozenset()

    asyncio.run(scenario())


def test_own_typing_auto_stops():
    async def scenario() -> None:
        h = make_harness()
        t = await h.open()
        chat, _ = make_chat(h)

        assert chat.send_typing_indicator(True) is True
        h.scheduler.advance(3_000)

        typing = [f["data"]["isTyping"] for f in t.frames() if f["type"] == "typing_indicator"]
        assert typing == [True, False]

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------

def test_incoming_message_from_other_user_counts_unread():
    async def scenario() -> None:
        h = make_harness()
        t = await h.open()
        chat, notices = make_chat(h)
        await chat.mount()

        t.server_send("chat_message", {
            "id": "m1",
            "orderId": "o1",
            "senderId": "u2",
            "senderName": "Asha",
            "message": "On my way",
            "timestamp": "2026-01-01T00:00:00Z",
        })
        t.server_send("chat_message", {"id": "m2", "orderId": "o1", "senderId": "u1", "message": "ok"})
        t.server_send("chat_message", {"id": "m3", "orderId": "o2", "senderId": "u2", "message": "x"})

        assert [m["id"] for m in chat.messages] == ["m1", "m2"]
        assert chat.messages[0]["createdAt"] == "2026-01-01T00:00:00Z"
        assert chat.unread_count == 1
        assert [n.kind for n in notices] == [NoticeKind.NEW_MESSAGE]
        assert notices[0].description == "Asha: On my way"

        chat.mark_as_read()
        assert chat.unread_count == 0

        chat.clear_chat()
        assert chat.messages == []

    asyncio.run(scenario())


def test_send_chat_message_validates_and_clears_typing():
    async def scenario() -> None:
        h = make_harness()
        t = await h.open()
        chat, _ = make_chat(h)

        assert chat.send_chat_message("   ") is False
        with pytest.raises(ValueError):
            chat.send_chat_message("hi", message_type="video")

        assert chat.send_chat_message(" hi ") is True

        message, typing = t.frames()[-2:]
        assert message["type"] == "chat_message"
        assert message["data"] == {
            "orderId": "o1",
            "message": "hi",
            "messageType": "text",
            "attachments": [],
        }
        assert typing["type"] == "typing_indicator"
        assert typing["data"]["isTyping"] is False

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# History
# ---------------------------------------------------------------------

def test_history_precedes_live_messages_received_during_load():
    async def scenario() -> None:
        h = make_harness()
        t = await h.open()
        gate = asyncio.Event()

        async def load_history(order_id: str) -> list[dict[str, Any]]:
            assert order_id == "o1"
            await gate.wait()
            return [{"id": "h1", "message": "old"}, {"id": "live", "message": "dup"}]

        chat, _ = make_chat(h, load_history=load_history)
        mounting = asyncio.create_task(chat.mount())
        await asyncio.sleep(0)

        t.server_send("chat_message", {"id": "live", "orderId": "o1", "senderId": "u2", "message": "dup"})
        t.server_send("chat_message", {"id": "new", "orderId": "o1", "senderId": "u2", "message": "new"})
        gate.set()
        await mounting

        assert [m["id"] for m in chat.messages] == ["h1", "live", "new"]

    asyncio.run(scenario())


def test_history_failure_is_logged_and_chat_stays_live(quiet_logs: list[dict[str, Any]]):
    async def scenario() -> OrderChat:
        h = make_harness()
        t = await h.open()

        async def load_history(_order_id: str) -> list[dict[str, Any]]:
            raise ApiError("boom", status_code=500)

        chat, _ = make_chat(h, load_history=load_history)
        await chat.mount()
        t.server_send("chat_message", {"id": "m1", "orderId": "o1", "senderId": "u2", "message": "hi"})
        return chat

    chat = asyncio.run(scenario())

    assert [m["id"] for m in chat.messages] == ["m1"]
    assert quiet_logs[0]["event_type"] == "CHAT_HISTORY_FAILED"


def test_unmount_cancels_typing_timers_and_leaves_room():
    async def scenario() -> None:
        h = make_harness()
        t = await h.open()
        chat, _ = make_chat(h)
        await chat.mount()
        t.server_send("typing_indicator", {"orderId": "o1", "userId": "u2", "isTyping": True})
        chat.send_typing_indicator(True)

        chat.unmount()

        assert chat.typing_user_ids == frozenset()
        assert h.session.rooms == ()
        # Only the heartbeat interval remains scheduled
        assert len(h.scheduler.active_timers()) == 1

    asyncio.run(scenario())
