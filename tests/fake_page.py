"""
tests/fake_page.py

In-memory page used by the scheduler and bridge tests.
"""

import json
import re
from collections.abc import Callable
from typing import Any

from greasebox.bridge.protocol import RECEIVER
from greasebox.cdp.abstract_page import AbstractPage, BindingHandler, PageEvent
from greasebox.utils.exceptions import PageClosedError


_RECEIVE_RE = re.compile(
    r"^" + re.escape(RECEIVER) + r"\((?P<id>\d+), \"(?P<kind>\w+)\", (?P<data>.*)\)$",
    re.DOTALL,
)


class FakePage(AbstractPage):
    """
    In-memory AbstractPage that records every command.

    `evaluate_hook` decides what an evaluation returns (or raises); by default it returns None.
    """

    def __init__(self) -> None:
        super().__init__()
        self.init_scripts: list[str] = []
        self.evaluations: list[dict[str, Any]] = []
        self.bindings: dict[str, BindingHandler] = {}
        self.navigations: list[str] = []
        self.opened_tabs: list[tuple[str, bool]] = []
        self.evaluate_hook: Callable[[str], Any] | None = None
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def add_init_script(self, source: str) -> str:
        if self._closed:
            raise PageClosedError("closed")
        self.init_scripts.append(source)
        return str(len(self.init_scripts))

    async def evaluate(
        self,
        expression: str,
        *,
        context_id: int | None = None,
        await_promise: bool = False,
        return_by_value: bool = True,
    ) -> Any:
        if self._closed:
            raise PageClosedError("closed")
        self.evaluations.append({"expression": expression, "context_id": context_id})
        if self.evaluate_hook is not None:
            return self.evaluate_hook(expression)
        return None

    async def add_binding(self, name: str, handler: BindingHandler) -> None:
        self.bindings[name] = handler

    async def navigate(self, url: str, *, timeout: float | None = None) -> None:
        if self._closed:
            raise PageClosedError("closed")
        self.navigations.append(url)

    async def open_tab(self, url: str, *, active: bool = True) -> str:
        self.opened_tabs.append((url, active))
        return f"tab-{len(self.opened_tabs)}"

    async def bring_to_front(self) -> None:
        return None

    async def close(self) -> None:
        self.close_page()

    # Test helpers _________________________________________________________________________________

    def close_page(self) -> None:
        self._closed = True
        self.emit(PageEvent.CLOSED, {})

    def call_binding(self, name: str, payload: dict[str, Any] | str, context_id: int | None = 1) -> None:
        text = payload if isinstance(payload, str) else json.dumps(payload)
        self.bindings[name](text, context_id)

    def received_events(self) -> list[tuple[int, str, Any]]:
        """(id, kind, data) for every receive() delivered to the page, in order."""
        events = []
        for evaluation in self.evaluations:
            match = _RECEIVE_RE.match(evaluation["expression"])
            if match:
                events.append((int(match.group("id")), match.group("kind"), json.loads(match.group("data"))))
        return events

    def evaluated_scripts(self) -> list[str]:
        """Expressions that are not bridge deliveries."""
        return [e["expression"] for e in self.evaluations if not _RECEIVE_RE.match(e["expression"])]


