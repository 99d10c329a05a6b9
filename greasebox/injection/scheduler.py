"""
greasebox/injection/scheduler.py

Run-at injection scheduling for one page and one navigation.

Phases, in order:
- document-start: registered as init scripts before navigation (`arm()`), so they run
  before any page script of the new document
- document-end: evaluated when DOMContentLoaded fires
- document-idle: evaluated when load fires, and never before document-end is done

Each phase is delivered at most once. Inside a phase scripts run in plan order; one
script throwing marks it failed-silently and the rest of the phase still runs. If the
page closes, remaining scripts stay pending and no further delivery is attempted.
"""

import asyncio
from typing import Any

from greasebox.cdp.abstract_page import AbstractPage, PageEvent
from greasebox.data_models.userscript import InjectionPlan, RunAt, ScriptDeliveryState, ScriptRecord
from greasebox.injection.script_wrapper import wrap_script
from greasebox.utils.exceptions import GreaseboxError, PageClosedError, SchedulingError
from greasebox.utils.logger import get_logger

logger = get_logger(name=__name__)


_PREVIOUS_PHASE: dict[RunAt, RunAt] = {
    RunAt.DOCUMENT_END: RunAt.DOCUMENT_START,
    RunAt.DOCUMENT_IDLE: RunAt.DOCUMENT_END,
}


class InjectionScheduler:
    """
    Delivers an InjectionPlan into a page at the right lifecycle moments.

    Usage:
        scheduler = InjectionScheduler(page, plan, page_runtime=load_page_runtime())
        await scheduler.arm()
        await scheduler.navigate()
        ...
        scheduler.summary()
    """

    # Magic methods ________________________________________________________________________________

    def __init__(self, page: AbstractPage, plan: InjectionPlan, page_runtime: str | None = None) -> None:
        """
        Initialize the scheduler.

        Args:
            page: Page to inject into.
            plan: Scripts to deliver, per phase.
            page_runtime: GM_* runtime source registered ahead of every script (optional).
        """
        self.page = page
        self.plan = plan
        self.page_runtime = page_runtime

        self._states: dict[str, ScriptDeliveryState] = {
            record.path: ScriptDeliveryState.PENDING for record in plan.all_scripts
        }
        self._phase_done: dict[RunAt, asyncio.Event] = {phase: asyncio.Event() for phase in RunAt}
        self._phases_started: set[RunAt] = set()
        self._armed = False
        self._navigation_started = False
        self._abandoned = False

    # Properties ___________________________________________________________________________________

    @property
    def is_armed(self) -> bool:
        return self._armed

    @property
    def is_abandoned(self) -> bool:
        return self._abandoned

    # Public methods _______________________________________________________________________________

    def state_of(self, record: ScriptRecord) -> ScriptDeliveryState:
        """Delivery state of a planned record."""
        try:
            return self._states[record.path]
        except KeyError:
            raise KeyError(f"{record.name!r} is not part of this plan") from None

    def summary(self) -> dict[str, list[str]]:
        """Script names grouped by delivery state."""
        grouped: dict[str, list[str]] = {state.value: [] for state in ScriptDeliveryState}
        for record in self.plan.all_scripts:
            grouped[self._states[record.path].value].append(record.name)
        return grouped

    async def arm(self) -> None:
        """
        Subscribe to page lifecycle events and register document-start scripts.

        Raises:
            SchedulingError: Navigation already started, or arm() was already called.
        """
        if self._navigation_started:
            raise SchedulingError("document-start scripts must be registered before navigation starts")
        if self._armed:
            raise SchedulingError("scheduler is already armed")

        self.page.on(PageEvent.DOM_CONTENT_LOADED, self._on_dom_content_loaded)
        self.page.on(PageEvent.LOAD, self._on_load)
        self.page.on(PageEvent.CLOSED, self._on_closed)

        if self.page_runtime:
            try:
                await self.page.add_init_script(self.page_runtime)
                logger.info("Registered GM polyfill for injection at document start")
            except PageClosedError:
                self._abandon("page closed while registering the GM polyfill")
                return
            except GreaseboxError as e:
                logger.error("Failed to register GM polyfill: %s", e)

        self._phases_started.add(RunAt.DOCUMENT_START)
        for record in self.plan.document_start:
            try:
                await self.page.add_init_script(wrap_script(record))
            except PageClosedError:
                self._abandon("page closed while registering document-start scripts")
                return
            except GreaseboxError as e:
                self._states[record.path] = ScriptDeliveryState.FAILED_SILENTLY
                logger.error("Failed to register script %r: %s", record.name, e)
                continue
            self._states[record.path] = ScriptDeliveryState.DELIVERED
            logger.info("Registered %r for injection at document-start", record.name)

        self._phase_done[RunAt.DOCUMENT_START].set()
        self._armed = True

    async def navigate(self, url: str | None = None, timeout: float | None = None) -> None:
        """
        Navigate the page to the plan's URL (or `url`).

        Raises:
            SchedulingError: arm() has not completed.
            NavigationError: The browser reported the navigation as failed.
        """
        if not self._armed:
            raise SchedulingError("arm() must complete before navigation")
        self._navigation_started = True
        target = url or self.plan.url
        logger.info("Navigating to: %s", target)
        await self.page.navigate(target, timeout=timeout)

    async def wait_until_idle(self, timeout: float | None = None) -> bool:
        """
        Wait until the document-idle phase has been delivered.

        Returns:
            True if it was delivered, False on timeout or page closure.
        """
        try:
            await asyncio.wait_for(self._phase_done[RunAt.DOCUMENT_IDLE].wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return not self._abandoned

    # Private methods ______________________________________________________________________________

    def _on_dom_content_loaded(self, _event: dict[str, Any]):
        return self._deliver_phase(RunAt.DOCUMENT_END)

    def _on_load(self, _event: dict[str, Any]):
        return self._deliver_phase(RunAt.DOCUMENT_IDLE)

    def _on_closed(self, _event: dict[str, Any]) -> None:
        self._abandon("page closed")

    def _abandon(self, reason: str) -> None:
        if self._abandoned:
            return
        self._abandoned = True
        pending = [r.name for r in self.plan.all_scripts if self._states[r.path] is ScriptDeliveryState.PENDING]
        if pending:
            logger.warning("Injection abandoned (%s); %d script(s) never ran: %s", reason, len(pending), ", ".join(pending))
        else:
            logger.debug("Injection abandoned (%s)", reason)
        # wake anything waiting on a phase
        for event in self._phase_done.values():
            event.set()

    async def _deliver_phase(self, phase: RunAt) -> None:
        if not self._navigation_started:
            logger.debug("Ignoring %s before navigation started", phase.value)
            return
        if phase in self._phases_started:
            logger.debug("Phase %s already delivered; ignoring repeated lifecycle event", phase.value)
            return
        self._phases_started.add(phase)

        await self._phase_done[_PREVIOUS_PHASE[phase]].wait()

        records = self.plan.for_phase(phase)
        if records:
            logger.info("Page reached %s, injecting %d script(s)", phase.value, len(records))

        for record in records:
            if self._abandoned or self.page.is_closed:
                self._abandon("page closed")
                break
            try:
                await self.page.evaluate(wrap_script(record), return_by_value=False)
            except PageClosedError:
                self._abandon(f"page closed during {phase.value}")
                break
            except (GreaseboxError, TimeoutError) as e:
                self._states[record.path] = ScriptDeliveryState.FAILED_SILENTLY
                logger.error("Error injecting script %r at %s: %s", record.name, phase.value, e)
                continue
            self._states[record.path] = ScriptDeliveryState.DELIVERED
            logger.info("Injected %r at %s", record.name, phase.value)

        self._phase_done[phase].set()
