"""
greasebox/bridge/protocol.py

Host side of the page-to-host request bridge.

The page runtime calls a binding with a JSON call `{id, kind, ...}`; the host answers by
evaluating `window.__greasebox.receive(id, event, data)` in the calling execution context.

Rules enforced here:
- ids are scoped to one execution context; every live context (main frame, iframes)
  has its own scope, and a scope is retired without delivery only when the page
  reports its context destroyed
- within a scope an id at or below the highest id seen is stale and ignored
- every request gets at most one terminal event; later events are dropped
- once the page is closed, nothing is delivered and pending work is cancelled

Contains:
- RequestBridge: Dispatches validated calls to a closed handler table
- BridgeRequest: One in-flight request
- ContextScope: Pending requests and highest id of one execution context
- single_event(): Adapt `async fn(call) -> value` into a handler answering result / error
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from greasebox.cdp.abstract_page import AbstractPage, PageEvent
from greasebox.data_models.bridge import BRIDGE_CALL_ADAPTER, BridgeCall, BridgeCallKind, BridgeEventKind
from greasebox.utils.exceptions import GreaseboxError, PageClosedError
from greasebox.utils.logger import get_logger

logger = get_logger(name=__name__)


BINDING_NAME = "__greaseboxBridge"
RECEIVER = "window.__greasebox.receive"


@dataclass
class BridgeRequest:
    """A call received from the page, alive until its terminal event."""
    id: int
    call: BridgeCall
    context_id: int | None
    retired: bool = False
    task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def kind(self) -> BridgeCallKind:
        return BridgeCallKind(self.call.kind)


@dataclass
class ContextScope:
    """Identifier scope of one execution context."""
    context_id: int | None
    highest_id: int = 0
    pending: dict[int, BridgeRequest] = field(default_factory=dict)


BridgeHandler = Callable[[BridgeRequest, "RequestBridge"], Awaitable[None]]


def single_event(operation: Callable[[Any], Awaitable[Any]]) -> BridgeHandler:
    """
    Wrap a one-shot operation as a bridge handler.

    The operation's return value is delivered as `result` ({"value": ...}); a raised
    exception is delivered as `error` ({"error": message}).
    """
    async def handler(request: BridgeRequest, bridge: RequestBridge) -> None:
        try:
            value = await operation(request.call)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Bridge %s request %d failed: %s", request.kind.value, request.id, e)
            await bridge.emit(request, BridgeEventKind.ERROR, {"error": str(e) or type(e).__name__})
            return
        await bridge.emit(request, BridgeEventKind.RESULT, {"value": value})

    handler.__name__ = getattr(operation, "__name__", "handler")
    return handler


class RequestBridge:
    """
    Routes page calls to handlers and delivers their events back to the page.

    Usage:
        bridge = RequestBridge(page, operations.handler_table())
        await bridge.install()
        ...
        await bridge.close()
    """

    # Magic methods ________________________________________________________________________________

    def __init__(self, page: AbstractPage, handlers: Mapping[BridgeCallKind, BridgeHandler]) -> None:
        """
        Initialize the bridge.

        Args:
            page: Page whose binding calls this bridge serves.
            handlers: One handler per BridgeCallKind.

        Raises:
            ValueError: The handler table does not cover every call kind.
        """
        missing = [kind.value for kind in BridgeCallKind if kind not in handlers]
        if missing:
            raise ValueError(f"No bridge handler for: {', '.join(missing)}")

        self._page = page
        self._handlers: dict[BridgeCallKind, BridgeHandler] = dict(handlers)
        self._scopes: dict[int | None, ContextScope] = {}
        self._closed = False
        self._orphan_tasks: set[asyncio.Task] = set()

    # Public methods _______________________________________________________________________________

    @property
    def pending_ids(self) -> list[tuple[int | None, int]]:
        """(context id, request id) of requests that have not received their terminal event."""
        return sorted(
            ((scope.context_id, request_id) for scope in self._scopes.values() for request_id in scope.pending),
            key=lambda key: (key[0] if key[0] is not None else -1, key[1]),
        )

    @property
    def context_ids(self) -> list[int | None]:
        """Execution contexts that currently have a scope."""
        return list(self._scopes)

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def install(self) -> None:
        """Expose the binding in the page and follow its lifecycle."""
        self._page.on(PageEvent.CLOSED, self._on_page_closed)
        self._page.on(PageEvent.CONTEXT_DESTROYED, self._on_context_destroyed)
        self._page.on(PageEvent.CONTEXTS_CLEARED, self._on_contexts_cleared)
        await self._page.add_binding(BINDING_NAME, self.handle_payload)
        logger.debug("Request bridge installed as window.%s", BINDING_NAME)

    def get(self, request_id: int, context_id: int | None = None) -> BridgeRequest | None:
        """The pending request with this id in the given context's scope, if any."""
        scope = self._scopes.get(context_id)
        return scope.pending.get(request_id) if scope else None

    def retire_context(self, context_id: int | None) -> int:
        """
        Drop a context's scope and cancel its pending requests without delivery.

        Returns:
            How many requests were still pending.
        """
        scope = self._scopes.pop(context_id, None)
        if scope is None:
            return 0
        count = len(scope.pending)
        self._retire(scope)
        if count:
            logger.info(
                "Execution context %s destroyed; failing closed %d pending bridge request(s)", context_id, count
            )
        return count

    def handle_payload(self, payload: str, context_id: int | None = None) -> BridgeRequest | None:
        """
        Accept one call from the page.

        Args:
            payload: JSON text sent through the binding.
            context_id: Execution context the call came from.

        Returns:
            The started BridgeRequest, or None if the call was dropped.
        """
        if self._closed:
            logger.debug("Bridge closed; ignoring call from page")
            return None

        try:
            raw = json.loads(payload)
        except (json.JSONDecodeError, TypeError) as e:
            logger.error("Received malformed bridge payload: %s", e)
            return None
        if not isinstance(raw, dict):
            logger.error("Bridge payload is not an object: %r", raw)
            return None

        raw_id = raw.get("id")
        if not isinstance(raw_id, int) or isinstance(raw_id, bool) or raw_id < 1:
            logger.error("Bridge call without a valid id: %r", raw_id)
            return None

        scope = self._scopes.get(context_id)
        if scope is None:
            scope = self._scopes[context_id] = ContextScope(context_id)
        if raw_id <= scope.highest_id:
            logger.warning("Ignoring stale or duplicate bridge request id %d in context %s", raw_id, context_id)
            return None
        scope.highest_id = raw_id

        try:
            call = BRIDGE_CALL_ADAPTER.validate_python(raw)
        except ValidationError as e:
            logger.error("Invalid bridge call %d (%s): %s", raw_id, raw.get("kind"), e)
            self._spawn_error(raw_id, context_id, f"Invalid {raw.get('kind', 'unknown')} call")
            return None

        request = BridgeRequest(id=raw_id, call=call, context_id=context_id)
        scope.pending[raw_id] = request
        request.task = asyncio.create_task(self._run(request), name=f"bridge-{call.kind}-{raw_id}")
        logger.debug("Bridge request %d (%s) started", raw_id, call.kind)
        return request

    async def emit(self, request: BridgeRequest, kind: BridgeEventKind, data: Any = None) -> bool:
        """
        Deliver an event for a request to the page.

        A terminal event retires the request before delivery, so no second terminal
        event can ever follow it.

        Returns:
            True if the event was handed to the page.
        """
        if request.retired:
            logger.debug("Dropping late %s event for retired request %d", kind.value, request.id)
            return False
        if kind.is_terminal:
            request.retired = True
            scope = self._scopes.get(request.context_id)
            if scope is not None and scope.pending.get(request.id) is request:
                del scope.pending[request.id]

        return await self._deliver(request.id, request.context_id, kind, data)

    async def close(self) -> None:
        """Stop accepting calls and cancel all pending work."""
        self._closed = True
        tasks = self._retire_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("Request bridge closed")

    # Private methods ______________________________________________________________________________

    @staticmethod
    def _retire(scope: ContextScope) -> list[asyncio.Task]:
        tasks: list[asyncio.Task] = []
        for request in list(scope.pending.values()):
            request.retired = True
            if request.task is not None and not request.task.done():
                request.task.cancel()
                tasks.append(request.task)
        scope.pending.clear()
        return tasks

    def _retire_all(self) -> list[asyncio.Task]:
        tasks: list[asyncio.Task] = []
        for scope in self._scopes.values():
            tasks.extend(self._retire(scope))
        self._scopes.clear()
        return tasks

    async def _deliver(
        self,
        request_id: int,
        context_id: int | None,
        kind: BridgeEventKind,
        data: Any,
    ) -> bool:
        if self._closed or self._page.is_closed:
            logger.debug("Page gone; dropping %s event for request %d", kind.value, request_id)
            return False

        expression = f"{RECEIVER}({request_id}, {json.dumps(kind.value)}, {json.dumps(data, default=str)})"
        try:
            await self._page.evaluate(expression, context_id=context_id)
        except PageClosedError:
            logger.debug("Page closed while delivering %s for request %d", kind.value, request_id)
            return False
        except (GreaseboxError, TimeoutError) as e:
            logger.warning("Could not deliver %s for request %d: %s", kind.value, request_id, e)
            return False
        return True

    def _spawn_error(self, request_id: int, context_id: int | None, message: str) -> None:
        # answers a call that failed validation so the page callback still settles
        task = asyncio.create_task(
            self._deliver(request_id, context_id, BridgeEventKind.ERROR, {"error": message})
        )
        self._orphan_tasks.add(task)
        task.add_done_callback(self._orphan_tasks.discard)

    async def _run(self, request: BridgeRequest) -> None:
        handler = self._handlers[request.kind]
        try:
            await handler(request, self)
        except asyncio.CancelledError:
            logger.debug("Bridge request %d cancelled", request.id)
            raise
        except Exception as e:
            logger.exception("Bridge handler for %s failed", request.kind.value)
            await self.emit(request, BridgeEventKind.ERROR, {"error": str(e) or type(e).__name__})
            return

        if not request.retired:
            logger.warning("Handler for request %d finished without a terminal event", request.id)
            await self.emit(request, BridgeEventKind.ERROR, {"error": "No response from host"})

    def _on_page_closed(self, _event: dict[str, Any]) -> None:
        if self._closed:
            return
        self._closed = True
        count = len(self.pending_ids)
        self._retire_all()
        if count:
            logger.info("Page closed; cancelled %d pending bridge request(s)", count)

    def _on_context_destroyed(self, event: dict[str, Any]) -> None:
        self.retire_context(event.get("context_id"))

    def _on_contexts_cleared(self, _event: dict[str, Any]) -> None:
        for context_id in self.context_ids:
            self.retire_context(context_id)
