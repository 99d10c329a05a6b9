"""
greasebox/cdp/async_cdp_session.py

Asynchronous CDP websocket session.

One browser-level websocket carries every target through flattened sessions:
commands addressed to a target carry its `sessionId`, and so do its events.

Contains:
- AsyncCDPSession: send / send_and_wait / event handlers over one websocket
- CDPEventHandler: Callback signature for CDP events
"""

from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from collections.abc import Callable
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection, connect

from greasebox.config import Config
from greasebox.utils.exceptions import CDPError, PageClosedError
from greasebox.utils.logger import get_logger

logger = get_logger(name=__name__)


CDPEventHandler = Callable[[dict[str, Any], str | None], None]


class AsyncCDPSession:
    """
    Manages one CDP websocket connection.

    Replies are matched to commands by message id; events are dispatched to handlers
    registered with `on()`, in registration order, from a single reader task.
    Handlers must not block: anything that waits on further CDP replies has to be
    scheduled as its own task.
    """

    # Magic methods ________________________________________________________________________________

    def __init__(self, ws_url: str, command_timeout: float | None = None) -> None:
        """
        Initialize the session (call `connect()` before use).

        Args:
            ws_url: Browser-level CDP websocket URL.
            command_timeout: Default timeout for send_and_wait (seconds).
        """
        self.ws_url = ws_url
        self.command_timeout = command_timeout or Config.CDP_COMMAND_TIMEOUT
        self.page_session_id: str | None = None

        self._ws: ClientConnection | None = None
        self._seq = 0
        self._pending: dict[int, tuple[str, asyncio.Future]] = {}
        self._handlers: defaultdict[str, list[CDPEventHandler]] = defaultdict(list)
        self._disconnect_callbacks: list[Callable[[], None]] = []
        self._reader_task: asyncio.Task | None = None
        self._connection_lost = False

    # Connection ___________________________________________________________________________________

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._connection_lost

    async def connect(self) -> None:
        """Open the websocket and start the reader task."""
        self._ws = await connect(self.ws_url, max_size=None, ping_interval=None, ping_timeout=None)
        self._connection_lost = False
        self._reader_task = asyncio.create_task(self._reader(), name="cdp-reader")
        logger.debug("Connected to %s", self.ws_url)

    async def close(self) -> None:
        """Close the websocket and fail any outstanding command."""
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        if self._ws is not None:
            await self._ws.close()
        self._mark_connection_lost("session closed")

    def on_disconnect(self, callback: Callable[[], None]) -> None:
        """Register a callback invoked once when the websocket goes away."""
        self._disconnect_callbacks.append(callback)

    # Commands _____________________________________________________________________________________

    async def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> int:
        """
        Send a CDP command without waiting for the reply.

        Args:
            method: CDP method, e.g. "Page.navigate".
            params: Command parameters.
            session_id: Target session to address (None for the browser itself).

        Returns:
            The command's message id.
        """
        cmd_id = self._next_id()
        await self._transmit(cmd_id, method, params, session_id)
        return cmd_id

    async def send_and_wait(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Send a CDP command and wait for its reply.

        Returns:
            The reply's `result` object.

        Raises:
            CDPError: The browser answered with an error.
            PageClosedError: The connection went away before the reply.
            TimeoutError: No reply within the timeout.
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        # register before sending: the reply can arrive before the send completes
        cmd_id = self._next_id()
        self._pending[cmd_id] = (method, future)
        try:
            await self._transmit(cmd_id, method, params, session_id)
            return await asyncio.wait_for(future, timeout or self.command_timeout)
        except asyncio.TimeoutError as e:
            raise TimeoutError(f"CDP command {method} timed out") from e
        finally:
            self._pending.pop(cmd_id, None)

    # Events _______________________________________________________________________________________

    def on(self, method: str, handler: CDPEventHandler) -> None:
        """Register a handler for a CDP event method (called with params and sessionId)."""
        self._handlers[method].append(handler)

    def off(self, method: str, handler: CDPEventHandler) -> None:
        try:
            self._handlers[method].remove(handler)
        except ValueError:
            pass

    # Private methods ______________________________________________________________________________

    def _next_id(self) -> int:
        self._seq += 1
        return self._seq

    async def _transmit(
        self,
        cmd_id: int,
        method: str,
        params: dict[str, Any] | None,
        session_id: str | None,
    ) -> None:
        if not self.is_connected:
            raise PageClosedError("WebSocket connection is closed")
        message: dict[str, Any] = {"id": cmd_id, "method": method, "params": params or {}}
        if session_id is not None:
            message["sessionId"] = session_id
        try:
            await self._ws.send(json.dumps(message))
        except (websockets.ConnectionClosed, OSError) as e:
            self._mark_connection_lost(str(e))
            raise PageClosedError(f"WebSocket connection lost: {e}") from e

    async def _reader(self) -> None:
        try:
            async for raw_message in self._ws:
                try:
                    message = json.loads(raw_message)
                except json.JSONDecodeError:
                    logger.warning("Dropping non-JSON CDP message")
                    continue
                self._handle_message(message)
        except websockets.ConnectionClosed as e:
            logger.info("CDP websocket closed: %s", e)
        finally:
            self._mark_connection_lost("websocket closed")

    def _handle_message(self, message: dict[str, Any]) -> None:
        if "id" in message:
            entry = self._pending.get(message["id"])
            if entry is None:
                return
            method, future = entry
            if future.done():
                return
            if "error" in message:
                future.set_exception(CDPError(method, message["error"]))
            else:
                future.set_result(message.get("result", {}))
            return

        method = message.get("method")
        if not method:
            return
        params = message.get("params", {})
        session_id = message.get("sessionId")
        for handler in list(self._handlers.get(method, ())):
            try:
                handler(params, session_id)
            except Exception:
                logger.exception("Handler for CDP event %s failed", method)

    def _mark_connection_lost(self, reason: str) -> None:
        if self._connection_lost:
            return
        self._connection_lost = True
        for method, future in self._pending.values():
            if not future.done():
                future.set_exception(PageClosedError(f"{method}: {reason}"))
        for callback in self._disconnect_callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Disconnect callback failed")
