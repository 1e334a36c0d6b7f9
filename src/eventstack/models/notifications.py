"""
API request and response models.

Remote hosts deliver the five lifecycle notifications as JSON bodies:
- log: a standalone log event
- request: a phase event for a request (initiating when tagged "received")
- response: the response has been sent
- tail: the request lifecycle is complete
- internal-error: a 500 error occurred while handling the request
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .events import ErrorInfo, RequestInfo


class LogNotification(BaseModel):
    """Standalone log event body."""
    
    timestamp: Optional[int] = Field(default=None, description="Epoch milliseconds; defaults to now")
    server: Optional[str] = Field(default=None, max_length=255, description="Emitting host name")
    tags: List[str] = Field(default_factory=list, description="Event tags")
    data: Any = Field(default=None, description="Log message or structured payload")


class PhaseNotification(BaseModel):
    """The phase event part of a request notification."""
    
    timestamp: Optional[int] = Field(default=None, description="Epoch milliseconds; defaults to now")
    tags: List[str] = Field(default_factory=list, description="Phase tags, e.g. ['http', 'received']")
    data: Any = Field(default=None, description="Phase payload (scalars are wrapped)")


class RequestNotification(BaseModel):
    """Request phase notification body."""
    
    request: RequestInfo
    event: PhaseNotification = Field(default_factory=PhaseNotification)
    tags: Optional[List[str]] = Field(
        default=None,
        description="Lifecycle tags; defaults to the event's own tags"
    )


class ResponseNotification(BaseModel):
    """Response notification body; ``request.status_code`` carries the status."""
    
    request: RequestInfo


class TailNotification(BaseModel):
    """Tail notification body."""
    
    request: RequestInfo


class InternalErrorNotification(BaseModel):
    """Internal error notification body."""
    
    request: RequestInfo
    error: ErrorInfo = Field(default_factory=ErrorInfo)


class AcceptedResponse(BaseModel):
    """
    Response from the notification endpoints.
    
    202 Accepted; processing is fire-and-forget.
    """
    
    message: str = Field(description="Response message")
    request_id: str = Field(description="Unique identifier of this API call")
    timestamp: datetime = Field(description="Processing timestamp")


class FlushResponse(BaseModel):
    """Response from the manual flush endpoint."""
    
    entries_flushed: int = Field(description="Records written by this drain")
    pending: int = Field(description="Records still waiting in the buffer")


class CorrelationsResponse(BaseModel):
    """Requests currently waiting for their tail."""
    
    open: int = Field(description="Number of open correlations")
    ids: List[str] = Field(description="Open correlation ids")


class ErrorResponse(BaseModel):
    """
    Standard error response model.
    """
    
    error: str = Field(description="Error code")
    message: str = Field(description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Additional error details"
    )
