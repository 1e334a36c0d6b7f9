"""
Event notification API endpoints.

Remote hosts deliver request lifecycle notifications here:
- POST /v1/events/log
- POST /v1/events/request
- POST /v1/events/response
- POST /v1/events/tail
- POST /v1/events/internal-error

Every endpoint acknowledges with 202; filtering, correlation and the
bulk write happen after the response.
"""

import uuid
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, Request

from ..core.event_logger import EventLogger
from ..core.exceptions import ServiceUnavailableError
from ..models.notifications import (
    AcceptedResponse,
    ErrorResponse,
    InternalErrorNotification,
    LogNotification,
    RequestNotification,
    ResponseNotification,
    TailNotification,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/events")

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid notification"},
    503: {"model": ErrorResponse, "description": "Event pipeline not initialized"},
}


def get_event_logger(request: Request) -> EventLogger:
    """Dependency to get the event logger from app state."""
    event_logger = getattr(request.app.state, "event_logger", None)
    if event_logger is None:
        raise ServiceUnavailableError()
    return event_logger


def _accepted(message: str) -> AcceptedResponse:
    return AcceptedResponse(
        message=message,
        request_id=str(uuid.uuid4()),
        timestamp=datetime.now(timezone.utc),
    )


@router.post(
    "/log",
    response_model=AcceptedResponse,
    status_code=202,
    responses=ERROR_RESPONSES,
    summary="Standalone log event",
)
async def post_log(
    notification: LogNotification,
    event_logger: EventLogger = Depends(get_event_logger),
) -> AcceptedResponse:
    """Accept a log event; it is buffered if the policy admits it."""
    event_logger.on_log(notification.model_dump())
    return _accepted("Log event accepted")


@router.post(
    "/request",
    response_model=AcceptedResponse,
    status_code=202,
    responses=ERROR_RESPONSES,
    summary="Request phase event",
    description="""
    Fold a phase event into the request's composite record.

    A phase tagged `received` opens the record and captures the request
    envelope (path, method, headers, remote info). Later phases for the
    same `request.id` are appended to its lifecycle.
    """,
)
async def post_request(
    notification: RequestNotification,
    event_logger: EventLogger = Depends(get_event_logger),
) -> AcceptedResponse:
    """Accept a request phase event."""
    logger.debug(
        "Request phase notification",
        request_id=notification.request.id,
        tags=notification.tags or notification.event.tags,
    )
    event_logger.on_request(
        notification.request,
        notification.event.model_dump(),
        tags=notification.tags,
    )
    return _accepted("Request event accepted")


@router.post(
    "/response",
    response_model=AcceptedResponse,
    status_code=202,
    responses=ERROR_RESPONSES,
    summary="Response sent",
)
async def post_response(
    notification: ResponseNotification,
    event_logger: EventLogger = Depends(get_event_logger),
) -> AcceptedResponse:
    """Record that the response was sent, with its status and timing."""
    event_logger.on_response(notification.request)
    return _accepted("Response event accepted")


@router.post(
    "/tail",
    response_model=AcceptedResponse,
    status_code=202,
    responses=ERROR_RESPONSES,
    summary="Request completed",
    description="""
    Complete the request's composite record.

    The record is queued for the next bulk write when it passes the
    policy, otherwise it is discarded.
    """,
)
async def post_tail(
    notification: TailNotification,
    event_logger: EventLogger = Depends(get_event_logger),
) -> AcceptedResponse:
    event_logger.on_tail(notification.request)
    return _accepted("Tail event accepted")


@router.post(
    "/internal-error",
    response_model=AcceptedResponse,
    status_code=202,
    responses=ERROR_RESPONSES,
    summary="Internal server error",
)
async def post_internal_error(
    notification: InternalErrorNotification,
    event_logger: EventLogger = Depends(get_event_logger),
) -> AcceptedResponse:
    """Record a 500 error inline in the request record and on its own."""
    event_logger.on_internal_error(notification.request, notification.error)
    return _accepted("Internal error event accepted")
