"""
greasebox/bridge/operations.py

The privileged operations behind the GM_* APIs, and the handler table that binds
every BridgeCallKind to one of them.
"""

import json
from typing import Any

from greasebox.bridge.protocol import BridgeHandler, BridgeRequest, RequestBridge, single_event
from greasebox.bridge.storage import StorageStore
from greasebox.bridge.xhr import XmlHttpRequestRunner
from greasebox.cdp.abstract_page import AbstractPage
from greasebox.data_models.bridge import (
    BridgeCallKind,
    BridgeEventKind,
    DeleteValueCall,
    GetValueCall,
    ListValuesCall,
    NotificationCall,
    OpenInTabCall,
    SetClipboardCall,
    SetValueCall,
    XmlHttpRequestAbortCall,
)
from greasebox.utils.logger import get_logger

logger = get_logger(name=__name__)


class HostOperations:
    """
    Host-side implementations of the bridge call kinds.

    Usage:
        operations = HostOperations(storage=store, page=page, xhr=runner)
        bridge = RequestBridge(page, operations.handler_table())
    """

    def __init__(self, storage: StorageStore, page: AbstractPage, xhr: XmlHttpRequestRunner) -> None:
        self.storage = storage
        self.page = page
        self.xhr = xhr

    def handler_table(self) -> dict[BridgeCallKind, BridgeHandler]:
        """One handler per call kind."""
        return {
            BridgeCallKind.SET_VALUE: single_event(self.set_value),
            BridgeCallKind.GET_VALUE: single_event(self.get_value),
            BridgeCallKind.DELETE_VALUE: single_event(self.delete_value),
            BridgeCallKind.LIST_VALUES: single_event(self.list_values),
            BridgeCallKind.XMLHTTP_REQUEST: self.xhr.handle,
            BridgeCallKind.XMLHTTP_REQUEST_ABORT: self.abort_xmlhttp_request,
            BridgeCallKind.OPEN_IN_TAB: single_event(self.open_in_tab),
            BridgeCallKind.SET_CLIPBOARD: single_event(self.set_clipboard),
            BridgeCallKind.NOTIFICATION: single_event(self.notification),
        }

    # Storage ______________________________________________________________________________________

    async def set_value(self, call: SetValueCall) -> None:
        logger.debug("[Bridge] GM_setValue: %s", call.key)
        self.storage.set(call.key, call.value)

    async def get_value(self, call: GetValueCall) -> Any:
        value = self.storage.get(call.key, call.default)
        logger.debug("[Bridge] GM_getValue: %s -> %r", call.key, value)
        return value

    async def delete_value(self, call: DeleteValueCall) -> None:
        logger.debug("[Bridge] GM_deleteValue: %s", call.key)
        self.storage.delete(call.key)

    async def list_values(self, call: ListValuesCall) -> list[str]:
        return self.storage.keys()

    # Network ______________________________________________________________________________________

    async def abort_xmlhttp_request(self, request: BridgeRequest, bridge: RequestBridge) -> None:
        """Abort only an exchange started by the same execution context."""
        call: XmlHttpRequestAbortCall = request.call  # type: ignore[assignment]
        aborted = self.xhr.abort(call.target_id, request.context_id)
        await bridge.emit(request, BridgeEventKind.RESULT, {"value": {"aborted": aborted}})

    # Browser ______________________________________________________________________________________

    async def open_in_tab(self, call: OpenInTabCall) -> dict[str, str]:
        logger.info("[Bridge] GM_openInTab: %s (active: %s)", call.url, call.active)
        target_id = await self.page.open_tab(call.url, active=call.active)
        return {"targetId": target_id}

    async def set_clipboard(self, call: SetClipboardCall) -> None:
        logger.info("[Bridge] GM_setClipboard (%s, %d chars)", call.type, len(call.data))
        if call.type.split("/")[0].lower() != "text":
            logger.warning("GM_setClipboard type %r is not supported; writing as text", call.type)
        await self.page.evaluate(
            f"navigator.clipboard.writeText({json.dumps(call.data)})",
            await_promise=True,
        )

    async def notification(self, call: NotificationCall) -> dict[str, bool]:
        logger.info("[Bridge] GM_notification: Title=%r, Text=%r", call.title, call.text)
        return {"displayed": False}
