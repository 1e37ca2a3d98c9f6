# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring
# pylint: disable=protected-access

import asyncio
from typing import Any

import pytest
from websockets.asyncio.server import ServerConnection, serve

import session.transport as transport_mod
from session.transport import TransportHandlers, WebsocketsTransport


@pytest.fixture(autouse=True)
def quiet_logs(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(transport_mod, "log_event", lambda _e: None)


class Recorder:
    """Collects transport callbacks in arrival order."""

    def __init__(self) -> None:
        self.events: list[tuple[Any, ...]] = []
        self.messages: list[str] = []
        self.opened = asyncio.Event()
        self.closed = asyncio.Event()

    def handlers(self) -> TransportHandlers:
        return TransportHandlers(
            on_open=self._on_open,
            on_close=self._on_close,
            on_error=self._on_error,
            on_message=self.messages.append,
        )

    def closes(self) -> list[tuple[Any, ...]]:
        return [e for e in self.events if e[0] == "close"]

    def _on_open(self) -> None:
        self.events.append(("open",))
        self.opened.set()

    def _on_close(self, code: int, reason: str) -> None:
        self.events.append(("close", code, reason))
        self.closed.set()

    def _on_error(self, exc: BaseException) -> None:
        self.events.append(("error", type(exc).__name__))


async def echo(ws: ServerConnection) -> None:
    async for message in ws:
        await ws.send(message)


def url_for(server: Any) -> str:
    port = server.sockets[0].getsockname()[1]
    return f"ws://127.0.0.1:{port}/ws"


async def wait_for(predicate: Any, timeout_s: float = 5.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout_s)


# ---------------------------------------------------------------------
# Open / send / close
# ---------------------------------------------------------------------

def test_send_before_open_is_rejected():
    async def scenario() -> bool:
        recorder = Recorder()
        transport = WebsocketsTransport(url="ws://127.0.0.1:1/ws", handlers=recorder.handlers())
        return transport.send("hello")

    assert asyncio.run(scenario()) is False


def test_frames_are_written_in_send_order():
    async def scenario() -> Recorder:
        recorder = Recorder()
        async with serve(echo, "127.0.0.1", 0) as server:
            transport = WebsocketsTransport(url=url_for(server), handlers=recorder.handlers())
            transport.start()
            await asyncio.wait_for(recorder.opened.wait(), 5)

            assert transport.is_open
            for text in ("a", "b", "c", "d"):
                assert transport.send(text) is True
            await wait_for(lambda: len(recorder.messages) == 4)

            transport.close(1000, "bye")
            await asyncio.wait_for(recorder.closed.wait(), 5)
        return recorder

    recorder = asyncio.run(scenario())

    assert recorder.messages == ["a", "b", "c", "d"]
    assert recorder.events[0] == ("open",)


def test_client_close_fires_on_close_exactly_once():
    async def scenario() -> tuple[Recorder, WebsocketsTransport]:
        recorder = Recorder()
        async with serve(echo, "127.0.0.1", 0) as server:
            transport = WebsocketsTransport(url=url_for(server), handlers=recorder.handlers())
            transport.start()
            await asyncio.wait_for(recorder.opened.wait(), 5)

            transport.close(1000, "bye")
            transport.close(1000, "again")
            assert transport._closer is not None
            await asyncio.wait_for(recorder.closed.wait(), 5)
            await transport._closer
            await asyncio.sleep(0.05)
        return recorder, transport

    recorder, transport = asyncio.run(scenario())

    assert len(recorder.closes()) == 1
    assert recorder.closes()[0][1] == 1000
    assert not transport.is_open
    assert transport.send("late") is False


def test_server_close_reports_code_and_reason():
    async def kick(ws: ServerConnection) -> None:
        await ws.close(4001, "kicked")

    async def scenario() -> Recorder:
        recorder = Recorder()
        async with serve(kick, "127.0.0.1", 0) as server:
            transport = WebsocketsTransport(url=url_for(server), handlers=recorder.handlers())
            transport.start()
            await asyncio.wait_for(recorder.closed.wait(), 5)
            await asyncio.sleep(0.05)
        return recorder

    recorder = asyncio.run(scenario())

    assert recorder.closes() == [("close", 4001, "kicked")]


# ---------------------------------------------------------------------
# Failed and abandoned connects
# ---------------------------------------------------------------------

def test_connect_failure_fires_error_then_abnormal_close():
    async def scenario() -> Recorder:
        async with serve(echo, "127.0.0.1", 0) as server:
            url = url_for(server)
        # Server is gone; nothing listens on the port any more

        recorder = Recorder()
        transport = WebsocketsTransport(url=url, handlers=recorder.handlers())
        transport.start()
        await asyncio.wait_for(recorder.closed.wait(), 5)
        await asyncio.sleep(0.05)
        return recorder

    recorder = asyncio.run(scenario())

    assert [e[0] for e in recorder.events] == ["error", "close"]
    assert recorder.closes()[0][1] == 1006


def test_close_while_connecting_abandons_attempt():
    async def scenario() -> Recorder:
        recorder = Recorder()
        async with serve(echo, "127.0.0.1", 0) as server:
            transport = WebsocketsTransport(url=url_for(server), handlers=recorder.handlers())
            transport.start()
            transport.close(1000, "unmount")

            assert recorder.closed.is_set()
            await asyncio.sleep(0.1)
        return recorder

    recorder = asyncio.run(scenario())

    assert recorder.events == [("close", 1000, "unmount")]
