"""
greasebox/cdp/cdp_page.py

AbstractPage implementation backed by a Chrome tab over CDP.

Contains:
- CDPPage: One tab (optionally in a fresh incognito browser context), attached through
  a flattened session on the browser websocket
"""

from __future__ import annotations

import asyncio
from typing import Any

from greasebox.cdp.abstract_page import AbstractPage, BindingHandler, PageEvent
from greasebox.cdp.async_cdp_session import AsyncCDPSession
from greasebox.cdp.connection import get_browser_websocket_url
from greasebox.config import Config
from greasebox.utils.exceptions import (
    CDPError,
    NavigationError,
    PageClosedError,
    PageScriptError,
    StartupError,
)
from greasebox.utils.logger import get_logger

logger = get_logger(name=__name__)


def _remote_object_text(remote_object: dict[str, Any]) -> str:
    if "value" in remote_object:
        return str(remote_object["value"])
    return remote_object.get("description") or remote_object.get("unserializableValue") or ""


class CDPPage(AbstractPage):
    """
    A Chrome tab driven over CDP.

    Usage:
        page = await CDPPage.create("http://127.0.0.1:9222")
        await page.add_init_script("console.log('hi')")
        await page.navigate("https://example.com")
        await page.close()
    """

    # Magic methods ________________________________________________________________________________

    def __init__(self, session: AsyncCDPSession, target_id: str, browser_context_id: str | None) -> None:
        super().__init__()
        self.session = session
        self.target_id = target_id
        self.browser_context_id = browser_context_id
        self._bindings: dict[str, BindingHandler] = {}
        self._closed = False
        self._load_waiters: list[asyncio.Future] = []

    # Constructors _________________________________________________________________________________

    @classmethod
    async def create(
        cls,
        remote_debugging_address: str | None = None,
        incognito: bool = True,
    ) -> "CDPPage":
        """
        Connect to Chrome and open a blank tab ready for instrumentation.

        Args:
            remote_debugging_address: Chrome debugging address (default: Config).
            incognito: Open the tab in a fresh browser context that is disposed on close.

        Returns:
            A CDPPage with Page, Runtime and target discovery enabled.

        Raises:
            StartupError: Chrome is unreachable or the tab could not be created.
        """
        ws_url = get_browser_websocket_url(remote_debugging_address or Config.REMOTE_DEBUGGING_ADDRESS)
        session = AsyncCDPSession(ws_url)
        try:
            await session.connect()
        except OSError as e:
            raise StartupError(f"Cannot connect to {ws_url}: {e}") from e

        try:
            browser_context_id: str | None = None
            if incognito:
                reply = await session.send_and_wait("Target.createBrowserContext", {"disposeOnDetach": True})
                browser_context_id = reply["browserContextId"]

            params: dict[str, Any] = {"url": "about:blank"}
            if browser_context_id:
                params["browserContextId"] = browser_context_id
            reply = await session.send_and_wait("Target.createTarget", params)
            target_id = reply["targetId"]

            reply = await session.send_and_wait("Target.attachToTarget", {"targetId": target_id, "flatten": True})
            session.page_session_id = reply["sessionId"]
        except (CDPError, PageClosedError, TimeoutError, KeyError) as e:
            await session.close()
            raise StartupError(f"Could not create a page: {e}") from e

        page = cls(session, target_id, browser_context_id)
        await page._setup()
        logger.info("Opened tab %s%s", target_id, " (incognito)" if browser_context_id else "")
        return page

    async def _setup(self) -> None:
        session = self.session
        session.on("Page.domContentEventFired", self._on_dom_content_event_fired)
        session.on("Page.loadEventFired", self._on_load_event_fired)
        session.on("Runtime.consoleAPICalled", self._on_console_api_called)
        session.on("Runtime.exceptionThrown", self._on_exception_thrown)
        session.on("Runtime.bindingCalled", self._on_binding_called)
        session.on("Runtime.executionContextDestroyed", self._on_execution_context_destroyed)
        session.on("Runtime.executionContextsCleared", self._on_execution_contexts_cleared)
        session.on("Target.detachedFromTarget", self._on_detached_from_target)
        session.on("Target.targetDestroyed", self._on_target_destroyed)
        session.on("Inspector.detached", self._on_inspector_detached)
        session.on_disconnect(self._mark_closed)

        await session.send_and_wait("Target.setDiscoverTargets", {"discover": True})
        await self._send("Page.enable")
        await self._send("Runtime.enable")

    # Properties ___________________________________________________________________________________

    @property
    def is_closed(self) -> bool:
        return self._closed

    # Commands _____________________________________________________________________________________

    async def add_init_script(self, source: str) -> str:
        reply = await self._send("Page.addScriptToEvaluateOnNewDocument", {"source": source})
        return reply.get("identifier", "")

    async def evaluate(
        self,
        expression: str,
        *,
        context_id: int | None = None,
        await_promise: bool = False,
        return_by_value: bool = True,
    ) -> Any:
        params: dict[str, Any] = {
            "expression": expression,
            "returnByValue": return_by_value,
            "awaitPromise": await_promise,
        }
        if context_id is not None:
            params["contextId"] = context_id
        reply = await self._send("Runtime.evaluate", params)

        details = reply.get("exceptionDetails")
        if details:
            exception = details.get("exception") or {}
            text = exception.get("description") or details.get("text") or "Uncaught exception"
            raise PageScriptError(text, details)

        if not return_by_value:
            return None
        return reply.get("result", {}).get("value")

    async def add_binding(self, name: str, handler: BindingHandler) -> None:
        self._bindings[name] = handler
        await self._send("Runtime.addBinding", {"name": name})

    async def navigate(self, url: str, *, timeout: float | None = None) -> None:
        timeout = timeout if timeout is not None else Config.NAVIGATION_TIMEOUT
        load_future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._load_waiters.append(load_future)
        try:
            reply = await self._send("Page.navigate", {"url": url})
            if reply.get("errorText"):
                raise NavigationError(f"Navigation to {url} failed: {reply['errorText']}")
            try:
                await asyncio.wait_for(load_future, timeout)
            except asyncio.TimeoutError:
                logger.warning("Timed out after %.1fs waiting for the load event of %s", timeout, url)
        finally:
            if load_future in self._load_waiters:
                self._load_waiters.remove(load_future)
            if load_future.done() and not load_future.cancelled():
                load_future.exception()  # retrieved; the caller already has the error
            else:
                load_future.cancel()

    async def open_tab(self, url: str, *, active: bool = True) -> str:
        params: dict[str, Any] = {"url": url, "background": not active}
        if self.browser_context_id:
            params["browserContextId"] = self.browser_context_id
        reply = await self.session.send_and_wait("Target.createTarget", params)
        target_id = reply["targetId"]
        if not active:
            await self.bring_to_front()
        logger.info("Opened %s tab %s for %s", "foreground" if active else "background", target_id, url)
        return target_id

    async def bring_to_front(self) -> None:
        await self._send("Page.bringToFront")

    async def enable_request_logging(self) -> None:
        """Log every network request the page issues."""
        self.session.on("Network.requestWillBeSent", self._on_request_will_be_sent)
        await self._send("Network.enable")

    async def close(self) -> None:
        if self.session.is_connected:
            try:
                if not self._closed:
                    await self.session.send_and_wait("Target.closeTarget", {"targetId": self.target_id})
                if self.browser_context_id:
                    await self.session.send_and_wait(
                        "Target.disposeBrowserContext", {"browserContextId": self.browser_context_id}
                    )
            except (CDPError, PageClosedError, TimeoutError) as e:
                logger.debug("Error while closing tab %s: %s", self.target_id, e)
        self._mark_closed()
        await self.session.close()

    # Private methods ______________________________________________________________________________

    async def _send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        if self._closed:
            raise PageClosedError(f"Page is closed; cannot send {method}")
        return await self.session.send_and_wait(method, params, session_id=self.session.page_session_id)

    def _is_own_event(self, session_id: str | None) -> bool:
        return session_id is not None and session_id == self.session.page_session_id

    def _mark_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        for waiter in self._load_waiters:
            if not waiter.done():
                waiter.set_exception(PageClosedError("Page closed during navigation"))
        self.emit(PageEvent.CLOSED, {"target_id": self.target_id})

    # CDP event handlers ___________________________________________________________________________

    def _on_dom_content_event_fired(self, params: dict[str, Any], session_id: str | None) -> None:
        if self._is_own_event(session_id):
            self.emit(PageEvent.DOM_CONTENT_LOADED, params)

    def _on_load_event_fired(self, params: dict[str, Any], session_id: str | None) -> None:
        if not self._is_own_event(session_id):
            return
        for waiter in self._load_waiters:
            if not waiter.done():
                waiter.set_result(params)
        self.emit(PageEvent.LOAD, params)

    def _on_console_api_called(self, params: dict[str, Any], session_id: str | None) -> None:
        if not self._is_own_event(session_id):
            return
        text = " ".join(_remote_object_text(arg) for arg in params.get("args", []))
        self.emit(PageEvent.CONSOLE, {"type": params.get("type", "log"), "text": text})

    def _on_exception_thrown(self, params: dict[str, Any], session_id: str | None) -> None:
        if not self._is_own_event(session_id):
            return
        details = params.get("exceptionDetails", {})
        exception = details.get("exception") or {}
        text = exception.get("description") or details.get("text") or "Uncaught exception"
        self.emit(PageEvent.PAGE_ERROR, {"text": text, "url": details.get("url")})

    def _on_binding_called(self, params: dict[str, Any], session_id: str | None) -> None:
        if not self._is_own_event(session_id):
            return
        handler = self._bindings.get(params.get("name", ""))
        if handler is None:
            return
        handler(params.get("payload", ""), params.get("executionContextId"))

    def _on_execution_context_destroyed(self, params: dict[str, Any], session_id: str | None) -> None:
        if self._is_own_event(session_id):
            self.emit(PageEvent.CONTEXT_DESTROYED, {"context_id": params.get("executionContextId")})

    def _on_execution_contexts_cleared(self, params: dict[str, Any], session_id: str | None) -> None:
        if self._is_own_event(session_id):
            self.emit(PageEvent.CONTEXTS_CLEARED, {})

    def _on_detached_from_target(self, params: dict[str, Any], session_id: str | None) -> None:
        if params.get("sessionId") == self.session.page_session_id:
            logger.info("Detached from tab %s", self.target_id)
            self._mark_closed()

    def _on_target_destroyed(self, params: dict[str, Any], session_id: str | None) -> None:
        if params.get("targetId") == self.target_id:
            logger.info("Tab %s was closed", self.target_id)
            self._mark_closed()

    def _on_inspector_detached(self, params: dict[str, Any], session_id: str | None) -> None:
        if self._is_own_event(session_id):
            logger.info("Inspector detached from tab %s: %s", self.target_id, params.get("reason"))
            self._mark_closed()

    def _on_request_will_be_sent(self, params: dict[str, Any], session_id: str | None) -> None:
        if not self._is_own_event(session_id):
            return
        request = params.get("request", {})
        logger.info("[Network] Request: %s %s %s", params.get("type", "Other"), request.get("method", ""), request.get("url", ""))
