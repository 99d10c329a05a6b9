"""
greasebox/runner.py

Ties a run together: storage, catalog, page, bridge and scheduler.

Contains:
- UserscriptRunner: One navigation of one page with matching userscripts injected
- RunSummary: What was planned and what was delivered
"""

import asyncio
import json
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, Field

from greasebox.bridge.operations import HostOperations
from greasebox.bridge.protocol import RequestBridge
from greasebox.bridge.storage import StorageStore
from greasebox.bridge.xhr import XmlHttpRequestRunner
from greasebox.cdp.abstract_page import AbstractPage, PageEvent
from greasebox.cdp.cdp_page import CDPPage
from greasebox.config import Config
from greasebox.data_models.userscript import RunAt
from greasebox.injection.scheduler import InjectionScheduler
from greasebox.injection.script_wrapper import load_page_runtime
from greasebox.userscripts.catalog import ScriptCatalog
from greasebox.utils.exceptions import GreaseboxError, NavigationError, PageClosedError, PageScriptError
from greasebox.utils.logger import get_logger

logger = get_logger(name=__name__)
page_logger = get_logger(name="greasebox.page")


MENU_COMMAND_DELAY_SECONDS = 1.5
IDLE_WAIT_SECONDS = 10.0
_CONSOLE_LEVELS = {
    "error": "error",
    "assert": "error",
    "warning": "warning",
    "info": "info",
    "debug": "debug",
}


class RunSummary(BaseModel):
    """Outcome of a run."""
    url: str
    scripts_loaded: int = 0
    planned: dict[str, list[str]] = Field(default_factory=dict, description="run-at phase -> script names")
    delivery: dict[str, list[str]] = Field(default_factory=dict, description="delivery state -> script names")
    navigation_error: str | None = None
    menu_command_ok: bool | None = None


def _log_console_message(event: dict[str, Any]) -> None:
    text = event.get("text", "")
    # noisy download notice from the browser itself
    if "Download is starting" in text and "Save as" in text:
        return
    level = _CONSOLE_LEVELS.get(event.get("type", "log"), "info")
    getattr(page_logger, level)("[Browser Console] %s", text)


def _log_page_error(event: dict[str, Any]) -> None:
    page_logger.error("Unhandled page error: %s", event.get("text"))


class UserscriptRunner:
    """
    Runs matching userscripts against one URL in a remote Chrome.

    Usage:
        runner = UserscriptRunner(target_url="https://example.com", scripts_dir="./userscripts")
        summary = asyncio.run(runner.run())
    """

    # Magic methods ________________________________________________________________________________

    def __init__(
        self,
        target_url: str | None = None,
        scripts_dir: str | Path | None = None,
        storage_path: str | Path | None = None,
        remote_debugging_address: str | None = None,
        polyfill_path: str | Path | None = None,
        observe_seconds: float | None = None,
        navigation_timeout: float | None = None,
        menu_command: str | None = None,
        intercept_network: bool = False,
        incognito: bool = True,
    ) -> None:
        self.target_url = target_url or Config.TARGET_URL
        self.scripts_dir = Path(scripts_dir or Config.USERSCRIPTS_DIR)
        self.storage_path = Path(storage_path or Config.GM_STORAGE_PATH)
        self.remote_debugging_address = remote_debugging_address or Config.REMOTE_DEBUGGING_ADDRESS
        self.polyfill_path = polyfill_path
        self.observe_seconds = Config.OBSERVE_SECONDS if observe_seconds is None else observe_seconds
        self.navigation_timeout = Config.NAVIGATION_TIMEOUT if navigation_timeout is None else navigation_timeout
        self.menu_command = menu_command
        self.intercept_network = intercept_network
        self.incognito = incognito

    # Public methods _______________________________________________________________________________

    def load_catalog(self) -> ScriptCatalog:
        logger.info("Loading userscripts from: %s", self.scripts_dir)
        return ScriptCatalog.load_from_directory(self.scripts_dir)

    async def run(self) -> RunSummary:
        """
        Execute the run.

        Storage is flushed and the page closed on every exit path, including
        cancellation (Ctrl+C).

        Raises:
            StartupError: Chrome could not be reached or no page could be created.
        """
        storage = StorageStore.load(self.storage_path)
        catalog = self.load_catalog()
        plan = catalog.plan_for(self.target_url)
        summary = RunSummary(
            url=self.target_url,
            scripts_loaded=len(catalog),
            planned={phase.value: [r.name for r in plan.for_phase(phase)] for phase in RunAt},
        )

        page = await CDPPage.create(self.remote_debugging_address, incognito=self.incognito)
        scheduler: InjectionScheduler | None = None
        try:
            page.on(PageEvent.CONSOLE, _log_console_message)
            page.on(PageEvent.PAGE_ERROR, _log_page_error)
            if self.intercept_network:
                logger.info("[Network] Request logging enabled")
                await page.enable_request_logging()

            async with httpx.AsyncClient(follow_redirects=True) as http_client:
                operations = HostOperations(storage=storage, page=page, xhr=XmlHttpRequestRunner(http_client))
                bridge = RequestBridge(page, operations.handler_table())
                await bridge.install()

                scheduler = InjectionScheduler(page, plan, page_runtime=load_page_runtime(self.polyfill_path))
                await scheduler.arm()
                try:
                    await scheduler.navigate(timeout=self.navigation_timeout)
                except NavigationError as e:
                    logger.error("%s", e)
                    summary.navigation_error = str(e)
                except PageClosedError:
                    logger.warning("Page closed during navigation.")

                if summary.navigation_error is None and not page.is_closed:
                    if not await scheduler.wait_until_idle(timeout=IDLE_WAIT_SECONDS):
                        logger.warning("document-idle scripts were not delivered within %.0fs", IDLE_WAIT_SECONDS)
                    if self.menu_command:
                        await asyncio.sleep(MENU_COMMAND_DELAY_SECONDS)
                        summary.menu_command_ok = await self.run_menu_command(page, self.menu_command)
                    await self._observe(page)

                await bridge.close()
        finally:
            storage.flush()
            if scheduler is not None:
                summary.delivery = scheduler.summary()
            await page.close()
            logger.info("Browser tab closed.")

        return summary

    async def run_menu_command(self, page: AbstractPage, caption: str) -> bool:
        """
        Invoke a menu command registered by a script via GM_registerMenuCommand.

        Returns:
            True if the command ran without throwing.
        """
        logger.info("Attempting to execute menu command: %r", caption)
        try:
            await page.evaluate(
                f"window.__greasebox.menuCommands.invoke({json.dumps(caption)})",
                await_promise=True,
            )
        except PageScriptError as e:
            logger.error("Error executing menu command %r: %s", caption, e)
            return False
        except (GreaseboxError, TimeoutError) as e:
            logger.error("Could not execute menu command %r: %s", caption, e)
            return False
        logger.info("Successfully executed menu command: %r", caption)
        return True

    # Private methods ______________________________________________________________________________

    async def _observe(self, page: AbstractPage) -> None:
        if self.observe_seconds <= 0:
            return
        closed = asyncio.Event()
        page.on(PageEvent.CLOSED, lambda _event: closed.set())
        if page.is_closed:
            return
        logger.info("Observing page for %.0f seconds (Ctrl+C to stop)...", self.observe_seconds)
        try:
            await asyncio.wait_for(closed.wait(), self.observe_seconds)
            logger.info("Page was closed.")
        except asyncio.TimeoutError:
            logger.info("Observation window elapsed.")
