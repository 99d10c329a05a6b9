"""
tests/unit/test_async_cdp_session.py

Unit tests for AsyncCDPSession reply matching, event dispatch and connection loss.
"""

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from greasebox.cdp.async_cdp_session import AsyncCDPSession
from greasebox.utils.exceptions import CDPError, PageClosedError


class FakeWebSocket:
    """Records sent frames; yields whatever is fed into `incoming` until None."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def send(self, text: str) -> None:
        self.sent.append(json.loads(text))

    async def close(self) -> None:
        self.closed = True

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        while True:
            item = await self.incoming.get()
            if item is None:
                return
            yield item if isinstance(item, str) else json.dumps(item)


@pytest.fixture
def ws() -> FakeWebSocket:
    return FakeWebSocket()


@pytest.fixture
def session(ws: FakeWebSocket) -> AsyncCDPSession:
    session = AsyncCDPSession("ws://127.0.0.1:9222/devtools/browser/abc", command_timeout=1)
    session._ws = ws
    return session


class TestCommands:

    @pytest.mark.asyncio
    async def test_reply_is_matched_by_id(self, session: AsyncCDPSession, ws: FakeWebSocket) -> None:
        task = asyncio.create_task(session.send_and_wait("Runtime.evaluate", {"expression": "1"}, session_id="s1"))
        await asyncio.sleep(0)

        assert ws.sent == [{"id": 1, "method": "Runtime.evaluate", "params": {"expression": "1"}, "sessionId": "s1"}]
        session._handle_message({"id": 1, "result": {"result": {"value": 1}}})
        assert await task == {"result": {"value": 1}}

    @pytest.mark.asyncio
    async def test_error_reply_raises_cdp_error(self, session: AsyncCDPSession) -> None:
        task = asyncio.create_task(session.send_and_wait("Page.navigate", {"url": "bad"}))
        await asyncio.sleep(0)

        session._handle_message({"id": 1, "error": {"code": -32000, "message": "Cannot navigate to invalid URL"}})
        with pytest.raises(CDPError, match="Cannot navigate to invalid URL") as exc_info:
            await task
        assert exc_info.value.method == "Page.navigate"

    @pytest.mark.asyncio
    async def test_missing_reply_times_out(self, session: AsyncCDPSession) -> None:
        with pytest.raises(TimeoutError, match="Page.enable"):
            await session.send_and_wait("Page.enable", timeout=0.01)
        assert session._pending == {}

    @pytest.mark.asyncio
    async def test_send_returns_increasing_ids_without_session(self, session: AsyncCDPSession, ws: FakeWebSocket) -> None:
        assert await session.send("Target.setDiscoverTargets", {"discover": True}) == 1
        assert await session.send("Page.bringToFront") == 2
        assert "sessionId" not in ws.sent[0]

    @pytest.mark.asyncio
    async def test_send_on_closed_connection_raises(self, session: AsyncCDPSession) -> None:
        session._mark_connection_lost("gone")
        with pytest.raises(PageClosedError):
            await session.send("Page.enable")


class TestEvents:

    def test_handlers_receive_params_and_session(self, session: AsyncCDPSession) -> None:
        seen: list[tuple[dict, str | None]] = []
        session.on("Page.loadEventFired", lambda params, session_id: seen.append((params, session_id)))

        session._handle_message({"method": "Page.loadEventFired", "params": {"timestamp": 5}, "sessionId": "s1"})
        session._handle_message({"method": "Page.frameNavigated", "params": {}})

        assert seen == [({"timestamp": 5}, "s1")]

    def test_failing_handler_does_not_stop_others(self, session: AsyncCDPSession) -> None:
        calls: list[str] = []

        def broken(params: dict, session_id: str | None) -> None:
            raise RuntimeError("boom")

        session.on("Runtime.bindingCalled", broken)
        session.on("Runtime.bindingCalled", lambda params, session_id: calls.append(params["name"]))
        session._handle_message({"method": "Runtime.bindingCalled", "params": {"name": "b"}})

        assert calls == ["b"]

    def test_off_removes_handler(self, session: AsyncCDPSession) -> None:
        handler = MagicMock()
        session.on("Inspector.detached", handler)
        session.off("Inspector.detached", handler)
        session.off("Inspector.detached", handler)
        session._handle_message({"method": "Inspector.detached", "params": {}})
        handler.assert_not_called()


class TestConnection:

    @pytest.mark.asyncio
    async def test_reader_dispatches_and_reports_disconnect(self, ws: FakeWebSocket) -> None:
        session = AsyncCDPSession("ws://127.0.0.1:9222/devtools/browser/abc", command_timeout=5)
        events: list[dict] = []
        disconnected = MagicMock()
        session.on("Target.targetDestroyed", lambda params, session_id: events.append(params))
        session.on_disconnect(disconnected)

        with patch("greasebox.cdp.async_cdp_session.connect", AsyncMock(return_value=ws)):
            await session.connect()
        assert session.is_connected

        pending = asyncio.create_task(session.send_and_wait("Page.enable"))
        await asyncio.sleep(0)
        await ws.incoming.put("not json")
        await ws.incoming.put({"method": "Target.targetDestroyed", "params": {"targetId": "t1"}})
        await ws.incoming.put(None)

        with pytest.raises(PageClosedError, match="Page.enable"):
            await pending
        assert events == [{"targetId": "t1"}]
        assert not session.is_connected
        disconnected.assert_called_once()

        await session.close()
        assert ws.closed
        disconnected.assert_called_once()
