"""
greasebox/bridge/xhr.py

Host-side GM_xmlhttpRequest: cross-origin HTTP performed outside the page.

Each request is one XhrExchange. It moves issued -> in_flight -> exactly one final
state, and the page sees exactly one terminal event (load / error / timeout / abort).
Timeout and abort both cancel the HTTP task; whichever fires first wins, and a
response that has already arrived is never overridden.

Contains:
- XmlHttpRequestRunner: Bridge handler for xmlhttp_request calls plus abort()
- resolve_response_type(): Which representation the body is handed back in
"""

from __future__ import annotations

import asyncio
import base64
import json
from dataclasses import dataclass, field
from typing import Any

import httpx

from greasebox.bridge.protocol import BridgeRequest, RequestBridge
from greasebox.data_models.bridge import (
    BridgeEventKind,
    XhrResponse,
    XhrState,
    XmlHttpRequestCall,
    XmlHttpRequestDetails,
)
from greasebox.utils.logger import get_logger

logger = get_logger(name=__name__)


RESPONSE_TYPES = ("text", "json", "blob", "arraybuffer")
BINARY_RESPONSE_TYPES = ("blob", "arraybuffer")


class BodyReadError(Exception):
    """The response arrived but its body could not be materialized as requested."""


@dataclass
class XhrExchange:
    """One host-side HTTP exchange."""
    request_id: int
    context_id: int | None
    details: XmlHttpRequestDetails
    state: XhrState = XhrState.ISSUED
    task: asyncio.Task | None = field(default=None, repr=False)
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)


# Private functions _______________________________________________________________________________

def resolve_response_type(requested: str | None, content_type: str) -> str:
    """
    Decide how a response body is handed back.

    Args:
        requested: responseType from the request details.
        content_type: Effective content type (overrideMimeType or the response header).

    Returns:
        The explicit type if it is one of text/json/blob/arraybuffer, else "json"
        when the content type mentions json, else "text".
    """
    if requested:
        requested = requested.lower()
        if requested in RESPONSE_TYPES:
            return requested
    if "json" in (content_type or "").lower():
        return "json"
    return "text"


def _request_content(data: Any) -> str | None:
    if data is None:
        return None
    if isinstance(data, str):
        return data
    return json.dumps(data)


def _raw_headers(headers: httpx.Headers) -> str:
    return "".join(f"{name}: {value}\r\n" for name, value in headers.multi_items())


def _read_body(response: httpx.Response, response_type: str) -> Any:
    try:
        if response_type == "json":
            return response.json()
        if response_type in BINARY_RESPONSE_TYPES:
            return base64.b64encode(response.content).decode("ascii")
        return response.text
    except (ValueError, UnicodeDecodeError) as e:
        raise BodyReadError(f"Error processing response body as {response_type}: {e}") from e


def _failure(details: XmlHttpRequestDetails, status_text: str, error: str) -> dict[str, Any]:
    return XhrResponse(
        status=0,
        status_text=status_text,
        final_url=details.url,
        error=error,
    ).to_event_data()


class XmlHttpRequestRunner:
    """
    Performs GM_xmlhttpRequest calls with a shared httpx.AsyncClient.

    Usage:
        async with httpx.AsyncClient(follow_redirects=True) as client:
            runner = XmlHttpRequestRunner(client)
            handlers[BridgeCallKind.XMLHTTP_REQUEST] = runner.handle
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client
        # keyed by (execution context, request id); every frame numbers its own requests
        self._exchanges: dict[tuple[int | None, int], XhrExchange] = {}

    # Public methods _______________________________________________________________________________

    def state_of(self, request_id: int, context_id: int | None = None) -> XhrState | None:
        """State of a live exchange (None once it is finished and forgotten)."""
        exchange = self._exchanges.get((context_id, request_id))
        return exchange.state if exchange else None

    def abort(self, request_id: int, context_id: int | None = None) -> bool:
        """
        Abort an in-flight exchange started from the given execution context.

        Returns:
            True if the exchange was still in flight and is now aborted.
        """
        exchange = self._exchanges.get((context_id, request_id))
        if exchange is None or not self._interruptible(exchange):
            logger.debug("Abort for request %d in context %s ignored (not in flight)", request_id, context_id)
            return False
        exchange.state = XhrState.ABORTED
        exchange.task.cancel()
        logger.info("[Bridge] XHR %d aborted", request_id)
        return True

    async def handle(self, request: BridgeRequest, bridge: RequestBridge) -> None:
        """Bridge handler for `xmlhttp_request` calls."""
        call: XmlHttpRequestCall = request.call  # type: ignore[assignment]
        details = call.details
        key = (request.context_id, request.id)
        exchange = XhrExchange(request_id=request.id, context_id=request.context_id, details=details)
        self._exchanges[key] = exchange

        exchange.task = asyncio.create_task(self._perform(details), name=f"xhr-{request.id}")
        exchange.state = XhrState.IN_FLIGHT
        if details.timeout and details.timeout > 0:
            exchange.timer = asyncio.get_running_loop().call_later(
                details.timeout / 1000.0, self._expire, exchange
            )
        logger.info("[Bridge] XHR %d: %s %s", request.id, details.method.upper(), details.url)

        try:
            await bridge.emit(
                request,
                BridgeEventKind.LOADSTART,
                XhrResponse(ready_state=1, final_url=details.url).to_event_data(),
            )
            try:
                response = await exchange.task
            except asyncio.CancelledError:
                if exchange.state is XhrState.TIMED_OUT:
                    await bridge.emit(
                        request,
                        BridgeEventKind.TIMEOUT,
                        _failure(details, "Timeout", f"Request timed out after {details.timeout:g}ms"),
                    )
                elif exchange.state is XhrState.ABORTED:
                    await bridge.emit(request, BridgeEventKind.ABORT, _failure(details, "Aborted", "Request aborted"))
                else:
                    raise
            except (httpx.HTTPError, httpx.InvalidURL, BodyReadError, ValueError) as e:
                exchange.state = XhrState.ERRORED
                logger.error("[Bridge] XHR %d failed: %s", request.id, e)
                await bridge.emit(request, BridgeEventKind.ERROR, _failure(details, "Network Error", str(e)))
            else:
                exchange.state = XhrState.COMPLETED
                await bridge.emit(request, BridgeEventKind.LOAD, response.to_event_data())
        finally:
            if exchange.timer is not None:
                exchange.timer.cancel()
            if exchange.task is not None and not exchange.task.done():
                exchange.task.cancel()
            if self._exchanges.get(key) is exchange:
                del self._exchanges[key]

    # Private methods ______________________________________________________________________________

    @staticmethod
    def _interruptible(exchange: XhrExchange) -> bool:
        return (
            not exchange.state.is_final
            and exchange.task is not None
            and not exchange.task.done()
        )

    def _expire(self, exchange: XhrExchange) -> None:
        if not self._interruptible(exchange):
            return
        exchange.state = XhrState.TIMED_OUT
        exchange.task.cancel()
        logger.warning("[Bridge] XHR %d timed out: %s", exchange.request_id, exchange.details.url)

    async def _perform(self, details: XmlHttpRequestDetails) -> XhrResponse:
        headers = {str(name): str(value) for name, value in details.headers.items()}
        auth = httpx.BasicAuth(details.user, details.password or "") if details.user else None

        response = await self._client.request(
            details.method.upper(),
            details.url,
            headers=headers,
            content=_request_content(details.data),
            auth=auth,
        )

        content_type = details.override_mime_type or response.headers.get("content-type", "")
        response_type = resolve_response_type(details.response_type, content_type)
        body = _read_body(response, response_type)

        return XhrResponse(
            status=response.status_code,
            status_text=response.reason_phrase,
            final_url=str(response.url),
            response_headers=_raw_headers(response.headers),
            response_type=response_type,
            content_type=content_type,
            response=body,
        )
