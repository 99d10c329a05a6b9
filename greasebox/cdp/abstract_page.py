"""
greasebox/cdp/abstract_page.py

Abstract base class for the page-lifecycle collaborator.

The injection scheduler and the request bridge only talk to a page through this
interface: they consume its lifecycle events and use its commands (evaluate, init
scripts, bindings, navigation, tabs). CDPPage is the Chrome implementation.
"""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

from greasebox.utils.logger import get_logger

logger = get_logger(name=__name__)


class PageEvent(StrEnum):
    """
    Lifecycle events a page emits.

    CONTEXT_DESTROYED carries {"context_id": int}; CONTEXTS_CLEARED means every
    execution context of the page is gone.
    """
    DOM_CONTENT_LOADED = "dom_content_loaded"
    LOAD = "load"
    CLOSED = "closed"
    CONSOLE = "console"
    PAGE_ERROR = "page_error"
    CONTEXT_DESTROYED = "context_destroyed"
    CONTEXTS_CLEARED = "contexts_cleared"


PageEventListener = Callable[[dict[str, Any]], Awaitable[None] | None]
BindingHandler = Callable[[str, int | None], None]


class AbstractPage(ABC):
    """
    A single remote-controlled browser page.

    Listeners may be plain functions or coroutine functions. Coroutine listeners are
    scheduled as tasks, so a listener that talks back to the page never blocks the
    delivery of further events.
    """

    # Magic methods ________________________________________________________________________________

    def __init__(self) -> None:
        self._listeners: defaultdict[PageEvent, list[PageEventListener]] = defaultdict(list)
        self._listener_tasks: set[asyncio.Task] = set()
        self._closed_emitted = False

    # Event subscription ___________________________________________________________________________

    def on(self, event: PageEvent, listener: PageEventListener) -> None:
        """Subscribe a listener to a lifecycle event."""
        self._listeners[event].append(listener)

    def off(self, event: PageEvent, listener: PageEventListener) -> None:
        """Remove a previously subscribed listener (no-op if absent)."""
        try:
            self._listeners[event].remove(listener)
        except ValueError:
            pass

    def emit(self, event: PageEvent, data: dict[str, Any] | None = None) -> None:
        """
        Deliver an event to its listeners, in subscription order.

        CLOSED is delivered at most once per page.

        Args:
            event: The lifecycle event.
            data: Event payload.
        """
        if event is PageEvent.CLOSED:
            if self._closed_emitted:
                return
            self._closed_emitted = True

        payload = data or {}
        for listener in list(self._listeners[event]):
            try:
                result = listener(payload)
            except Exception:
                logger.exception("Listener for page event %s failed", event.value)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._listener_tasks.add(task)
                task.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async listener for page event failed: %s", exc, exc_info=exc)

    async def drain_listeners(self) -> None:
        """Wait until every listener task scheduled so far has finished."""
        while self._listener_tasks:
            await asyncio.gather(*list(self._listener_tasks), return_exceptions=True)

    # Abstract methods _____________________________________________________________________________

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        """Whether the page is gone."""

    @abstractmethod
    async def add_init_script(self, source: str) -> str:
        """
        Register code to run in every new document before any page script.

        Args:
            source: JavaScript source.

        Returns:
            Identifier of the registered script.
        """

    @abstractmethod
    async def evaluate(
        self,
        expression: str,
        *,
        context_id: int | None = None,
        await_promise: bool = False,
        return_by_value: bool = True,
    ) -> Any:
        """
        Evaluate an expression in the page.

        Args:
            expression: JavaScript expression or script.
            context_id: Execution context to evaluate in (default: the page's main context).
            await_promise: Wait for a returned promise to settle.
            return_by_value: Return the JSON value of the result.

        Returns:
            The result value (None when not returned by value).

        Raises:
            PageScriptError: The evaluated code threw.
            PageClosedError: The page is gone.
        """

    @abstractmethod
    async def add_binding(self, name: str, handler: BindingHandler) -> None:
        """
        Expose a callable `window[name](payload: string)` whose calls reach `handler`.

        Args:
            name: Global function name in the page.
            handler: Called with (payload, execution_context_id) for every call.
        """

    @abstractmethod
    async def navigate(self, url: str, *, timeout: float | None = None) -> None:
        """
        Navigate the page and wait for the load event (or the timeout).

        Raises:
            NavigationError: The browser reported the navigation as failed.
        """

    @abstractmethod
    async def open_tab(self, url: str, *, active: bool = True) -> str:
        """
        Open a URL in a new tab of the same browser context.

        Returns:
            Identifier of the new tab.
        """

    @abstractmethod
    async def bring_to_front(self) -> None:
        """Activate this page's tab."""

    @abstractmethod
    async def close(self) -> None:
        """Close the page and release its resources."""
