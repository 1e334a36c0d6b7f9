"""
Admin API endpoints for EventStack.

Provides manual flush and a view of open request correlations.
"""

import structlog
from fastapi import APIRouter, Depends

from ..core.event_logger import EventLogger
from ..models.notifications import CorrelationsResponse, FlushResponse
from .events import get_event_logger

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin")


@router.post("/flush", response_model=FlushResponse)
async def flush_buffer(
    event_logger: EventLogger = Depends(get_event_logger),
) -> FlushResponse:
    """
    Drain the pending buffer to Elasticsearch now.

    Useful for testing or before a planned shutdown.
    """
    logger.info("Manual flush requested", pending=event_logger.scheduler.pending)

    entries_flushed = await event_logger.scheduler.drain()

    logger.info("Manual flush completed", entries_flushed=entries_flushed)
    return FlushResponse(
        entries_flushed=entries_flushed,
        pending=event_logger.scheduler.pending,
    )


@router.get("/correlations", response_model=CorrelationsResponse)
async def list_correlations(
    event_logger: EventLogger = Depends(get_event_logger),
) -> CorrelationsResponse:
    """Requests that were received but have not reached their tail yet."""
    ids = event_logger.aggregator.open_ids
    return CorrelationsResponse(open=len(ids), ids=ids)
