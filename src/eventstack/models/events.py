"""
Event data models.

- log: standalone log event, written on its own
- request / response: phase events folded into a request's lifecycle
- tail: terminal event, completes a request
- internalError: side event, folded into the lifecycle and written on its own
- RequestRecord: composite of one request's envelope and lifecycle

Defaults are declared on the models so every event is built from fresh
values; no template object is shared between requests.
"""

import json
import socket
import time
import traceback
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

RECEIVED_TAG = "received"


class EventKind(str, Enum):
    """Event kinds; the values are the document ``kind`` field."""

    LOG = "log"
    REQUEST = "request"
    RESPONSE = "response"
    TAIL = "tail"
    INTERNAL_ERROR = "internalError"


def now_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class EventBase(BaseModel):
    """Envelope shared by every event: a kind and a timestamp."""

    kind: str = Field(description="Event kind")
    timestamp: int = Field(default_factory=now_millis, description="Epoch milliseconds")

    @field_validator("timestamp", mode="before")
    def default_timestamp(cls, v: Any) -> Any:
        """Stamp events that arrive without a timestamp."""
        return now_millis() if v is None else v


class LogEvent(EventBase):
    """Standalone log event emitted by the host."""

    kind: str = Field(default=EventKind.LOG.value, description="Event kind")
    server: str = Field(
        default_factory=socket.gethostname,
        description="Host name of the emitting server"
    )
    tags: List[str] = Field(default_factory=list, description="Subscriber, plugin, level tags")
    data: Any = Field(default_factory=dict, description="Log message or structured payload")


class RequestEvent(EventBase):
    """Phase event emitted during a request's lifecycle (received, handler, ...)."""

    kind: str = Field(default=EventKind.REQUEST.value, description="Event kind")
    request_id: str = Field(description="Correlation id of the owning request")
    tags: List[str] = Field(default_factory=list, description="Phase tags, e.g. ['http', 'received']")
    data: Dict[str, Any] = Field(default_factory=dict, description="Phase payload")

    @field_validator("data", mode="before")
    def wrap_scalar_data(cls, v: Any) -> Any:
        """
        Coerce the payload to an object.

        Lifecycle entries need an object-typed ``data`` so the document
        store keeps a single mapping for it; a bare scalar becomes
        ``{"value": scalar}``.
        """
        if v is None:
            return {}
        if isinstance(v, Mapping):
            return dict(v)
        return {"value": v}


class ResponseData(BaseModel):
    """Response phase payload."""

    # 400 until the host reports the real status
    status_code: int = Field(default=400, description="HTTP status code sent to the client")
    response_time: int = Field(default=-1, description="Milliseconds from received to response")


class ResponseEvent(EventBase):
    """Phase event emitted after the response has been sent."""

    kind: str = Field(default=EventKind.RESPONSE.value, description="Event kind")
    request_id: str = Field(description="Correlation id of the owning request")
    data: ResponseData = Field(default_factory=ResponseData)


class TailEvent(EventBase):
    """Terminal event; the request has completed its full lifecycle."""

    kind: str = Field(default=EventKind.TAIL.value, description="Event kind")
    request_id: str = Field(description="Correlation id of the owning request")


class ErrorInfo(BaseModel):
    """Serializable description of an internal server error."""

    type: Optional[str] = Field(default=None, description="Exception class name")
    message: Optional[str] = Field(default=None, description="Exception message")
    stack: Optional[str] = Field(default=None, description="Formatted traceback")

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorInfo":
        """Capture an exception's type, message and traceback."""
        return cls(
            type=type(exc).__name__,
            message=str(exc),
            stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        )


class InternalErrorEvent(EventBase):
    """Side event for a 500 response; written to its own document as well."""

    kind: str = Field(default=EventKind.INTERNAL_ERROR.value, description="Event kind")
    request_id: str = Field(description="Correlation id of the owning request")
    error: ErrorInfo = Field(default_factory=ErrorInfo)


LifecycleEvent = Union[RequestEvent, ResponseEvent, TailEvent, InternalErrorEvent]


class RequestHeaders(BaseModel):
    """Subset of request headers kept on the composite."""

    host: Optional[str] = None
    connection: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None


class RemoteInfo(BaseModel):
    """Where the request came from and when it was received."""

    received: Optional[int] = Field(default=None, description="Epoch milliseconds the request arrived")
    remote_address: Optional[str] = None
    remote_port: Optional[int] = None
    referrer: Optional[str] = None
    host: Optional[str] = None


class ServerInfo(BaseModel):
    """The server that handled the request."""

    host: Optional[str] = None
    port: Optional[int] = None
    protocol: Optional[str] = None
    uri: Optional[str] = None


class RequestRecord(EventBase):
    """
    Composite record for one correlated HTTP request.

    The envelope is frozen at creation; only the lifecycle list grows.
    ``timestamp`` is the time the record was opened.
    """

    kind: str = Field(default=EventKind.REQUEST.value, description="Event kind")
    id: str = Field(description="Correlation id")
    path: Optional[str] = None
    query: Dict[str, Any] = Field(default_factory=dict)
    method: Optional[str] = None
    http_version: Optional[str] = None
    headers: RequestHeaders = Field(default_factory=RequestHeaders)
    is_route_auth_required: Optional[bool] = None
    is_request_authenticated: Optional[bool] = None
    remote_info: RemoteInfo = Field(default_factory=RemoteInfo)
    server_info: ServerInfo = Field(default_factory=ServerInfo)
    lifecycle: List[LifecycleEvent] = Field(
        default_factory=list,
        description="Sub-events in arrival order"
    )

    model_config = ConfigDict(frozen=True)


class RequestInfo(BaseModel):
    """
    Host-side view of an HTTP request.

    This is what the host hands to the event logger with each
    notification; the composite envelope is derived from it.
    """

    id: str = Field(min_length=1, max_length=128, description="Correlation id")
    path: Optional[str] = None
    query: Dict[str, Any] = Field(default_factory=dict)
    method: Optional[str] = None
    http_version: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    route_auth: Optional[bool] = Field(default=None, description="Route requires authentication")
    authenticated: Optional[bool] = Field(default=None, description="Request is authenticated")
    info: RemoteInfo = Field(default_factory=RemoteInfo)
    server_info: ServerInfo = Field(default_factory=ServerInfo)
    status_code: Optional[int] = Field(default=None, description="Response status, once known")

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    def envelope(self) -> Dict[str, Any]:
        """Static envelope fields captured once when the request is received."""
        return {
            "path": self.path,
            "query": dict(self.query),
            "method": self.method,
            "http_version": self.http_version,
            "headers": RequestHeaders(
                host=self.header("host"),
                connection=self.header("connection"),
                user_agent=self.header("user-agent"),
                referrer=self.header("referer") or self.header("referrer"),
            ),
            "is_route_auth_required": self.route_auth,
            "is_request_authenticated": self.authenticated,
            "remote_info": self.info.model_copy(),
            "server_info": self.server_info.model_copy(),
        }


Record = Union[LogEvent, RequestEvent, ResponseEvent, TailEvent, InternalErrorEvent, RequestRecord]


def to_document(record: Any) -> Optional[Dict[str, Any]]:
    """Plain nested-dict form of a record, the shape policies are matched against."""
    if record is None:
        return None
    if isinstance(record, BaseModel):
        return record.model_dump()
    if isinstance(record, Mapping):
        return dict(record)
    raise TypeError(f"Cannot build a document from {type(record).__name__}")


def safe_dumps(value: Any) -> str:
    """JSON-encode anything, falling back to str() for unknown types."""
    return json.dumps(value, default=str)
