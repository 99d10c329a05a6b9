"""
greasebox/data_models/bridge.py

Data models for the page-to-host request bridge.

Contains:
- BridgeCallKind: Closed set of privileged operations a page may request
- BridgeEventKind: Events the host sends back (terminal and non-terminal)
- BridgeCall: Discriminated union of per-kind call models (parse with BRIDGE_CALL_ADAPTER)
- XmlHttpRequestDetails / XhrResponse: GM_xmlhttpRequest request and response shapes
- XhrState: Lifecycle of one host-side HTTP exchange
"""

from enum import StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class BridgeCallKind(StrEnum):
    """Operations the page runtime can ask the host to perform."""
    SET_VALUE = "set_value"
    GET_VALUE = "get_value"
    DELETE_VALUE = "delete_value"
    LIST_VALUES = "list_values"
    XMLHTTP_REQUEST = "xmlhttp_request"
    XMLHTTP_REQUEST_ABORT = "xmlhttp_request_abort"
    OPEN_IN_TAB = "open_in_tab"
    SET_CLIPBOARD = "set_clipboard"
    NOTIFICATION = "notification"


class BridgeEventKind(StrEnum):
    """
    Events delivered to the page for a request.

    `loadstart` is the only non-terminal kind; every other kind retires the request.
    """
    RESULT = "result"
    ERROR = "error"
    LOADSTART = "loadstart"
    LOAD = "load"
    ABORT = "abort"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self is not BridgeEventKind.LOADSTART


class XhrState(StrEnum):
    """
    States of one GM_xmlhttpRequest exchange.

    issued -> in-flight -> exactly one of completed / errored / timed-out / aborted.
    """
    ISSUED = "issued"
    IN_FLIGHT = "in-flight"
    COMPLETED = "completed"
    ERRORED = "errored"
    TIMED_OUT = "timed-out"
    ABORTED = "aborted"

    @property
    def is_final(self) -> bool:
        return self not in (XhrState.ISSUED, XhrState.IN_FLIGHT)


# Calls ___________________________________________________________________________________________

class _BridgeCallBase(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    id: int = Field(ge=1, description="Request identifier, strictly increasing within a page context")


class SetValueCall(_BridgeCallBase):
    kind: Literal["set_value"] = "set_value"
    key: str = Field(min_length=1)
    value: Any = None


class GetValueCall(_BridgeCallBase):
    kind: Literal["get_value"] = "get_value"
    key: str = Field(min_length=1)
    default: Any = None


class DeleteValueCall(_BridgeCallBase):
    kind: Literal["delete_value"] = "delete_value"
    key: str = Field(min_length=1)


class ListValuesCall(_BridgeCallBase):
    kind: Literal["list_values"] = "list_values"


class XmlHttpRequestDetails(BaseModel):
    """The serializable part of a GM_xmlhttpRequest details object."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    method: str = "GET"
    url: str = Field(min_length=1)
    headers: dict[str, Any] = Field(default_factory=dict)
    data: Any = None
    timeout: float | None = Field(default=None, description="Timeout in milliseconds; 0 or absent means none")
    response_type: str | None = Field(default=None, alias="responseType")
    override_mime_type: str | None = Field(default=None, alias="overrideMimeType")
    user: str | None = None
    password: str | None = None


class XmlHttpRequestCall(_BridgeCallBase):
    kind: Literal["xmlhttp_request"] = "xmlhttp_request"
    details: XmlHttpRequestDetails


class XmlHttpRequestAbortCall(_BridgeCallBase):
    kind: Literal["xmlhttp_request_abort"] = "xmlhttp_request_abort"
    target_id: int = Field(alias="targetId", description="Identifier of the request to abort")


class OpenInTabCall(_BridgeCallBase):
    kind: Literal["open_in_tab"] = "open_in_tab"
    url: str = Field(min_length=1)
    active: bool = True


class SetClipboardCall(_BridgeCallBase):
    kind: Literal["set_clipboard"] = "set_clipboard"
    data: str = ""
    type: str = "text"


class NotificationCall(_BridgeCallBase):
    kind: Literal["notification"] = "notification"
    text: str = ""
    title: str | None = None
    image: str | None = None
    timeout: float | None = None


BridgeCall = Annotated[
    Union[
        SetValueCall,
        GetValueCall,
        DeleteValueCall,
        ListValuesCall,
        XmlHttpRequestCall,
        XmlHttpRequestAbortCall,
        OpenInTabCall,
        SetClipboardCall,
        NotificationCall,
    ],
    Field(discriminator="kind"),
]

BRIDGE_CALL_ADAPTER: TypeAdapter[BridgeCall] = TypeAdapter(BridgeCall)


# Responses _______________________________________________________________________________________

class XhrResponse(BaseModel):
    """
    Response object handed to GM_xmlhttpRequest callbacks.

    Binary bodies (`arraybuffer`, `blob`) travel base64-encoded in `response`
    and are decoded by the page runtime.
    """
    model_config = ConfigDict(populate_by_name=True)

    status: int = 0
    status_text: str = Field(default="", serialization_alias="statusText")
    final_url: str = Field(default="", serialization_alias="finalUrl")
    response_headers: str = Field(default="", serialization_alias="responseHeaders")
    response_type: str = Field(default="text", serialization_alias="responseType")
    content_type: str = Field(default="", serialization_alias="contentType")
    response: Any = None
    ready_state: int = Field(default=4, serialization_alias="readyState")
    error: str | None = None

    def to_event_data(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
