"""
Pydantic data models package.

Contains all data validation models for:
- Lifecycle events and composite request records
- Filter policy
- API requests and responses
"""

from .events import (
    ErrorInfo,
    EventKind,
    InternalErrorEvent,
    LogEvent,
    RequestEvent,
    RequestInfo,
    RequestRecord,
    ResponseEvent,
    TailEvent,
)
from .notifications import (
    AcceptedResponse,
    CorrelationsResponse,
    ErrorResponse,
    FlushResponse,
    InternalErrorNotification,
    LogNotification,
    RequestNotification,
    ResponseNotification,
    TailNotification,
)
from .policy import Policy, load_policy

__all__ = [
    # Event models
    "ErrorInfo",
    "EventKind",
    "InternalErrorEvent",
    "LogEvent",
    "RequestEvent",
    "RequestInfo",
    "RequestRecord",
    "ResponseEvent",
    "TailEvent",
    
    # API models
    "AcceptedResponse",
    "CorrelationsResponse",
    "ErrorResponse",
    "FlushResponse",
    "InternalErrorNotification",
    "LogNotification",
    "RequestNotification",
    "ResponseNotification",
    "TailNotification",
    
    # Policy
    "Policy",
    "load_policy",
]
