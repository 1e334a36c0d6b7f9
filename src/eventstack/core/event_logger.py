"""
Event logger: the host-facing entry points.

Wires the policy evaluator, correlation aggregator and flush scheduler
together and exposes one fire-and-forget handler per host notification:

1. on_log - standalone log events
2. on_request - request phase events ("received" opens the record)
3. on_response - the response has been sent
4. on_tail - the request lifecycle is complete (triggers emission)
5. on_internal_error - a 500 error occurred
"""

from typing import Any, Iterable, Mapping, Optional, Union

import structlog

from ..config import Settings
from ..models.events import (
    RECEIVED_TAG,
    ErrorInfo,
    InternalErrorEvent,
    LogEvent,
    RequestEvent,
    RequestInfo,
    ResponseData,
    ResponseEvent,
    TailEvent,
    now_millis,
)
from .aggregator import CorrelationAggregator
from .metrics import MetricsCollector
from .policy import PolicyEvaluator
from .scheduler import FlushScheduler
from .sink import BulkSink

logger = structlog.get_logger(__name__)


class EventLogger:
    """
    Turns host notifications into buffered Elasticsearch documents.

    Only the tail handler can emit a request record; log and internal
    error events go straight to the flush buffer.
    """

    def __init__(
        self,
        settings: Settings,
        sink: BulkSink,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.settings = settings
        self.metrics = metrics

        # Policy errors surface here, before any event is accepted
        self.policy = settings.policy.to_policy()
        self.evaluator = PolicyEvaluator(self.policy)

        self.scheduler = FlushScheduler(
            sink=sink,
            index=settings.sink.index,
            flush_interval_millis=settings.buffer.flush_interval_millis,
            idle_flush_multiplier=settings.buffer.idle_flush_multiplier,
            metrics=metrics,
        )
        self.aggregator = CorrelationAggregator(
            evaluator=self.evaluator,
            emit=self.scheduler.enqueue,
            metrics=metrics,
        )
        self.scheduler.on_flushed = self.aggregator.purge_many

        logger.info("Event logger initialized", index=settings.sink.index)

    async def start(self) -> None:
        """Start the flush scheduler."""
        await self.scheduler.start()

    async def stop(self) -> None:
        """Stop the flush scheduler, draining anything still pending."""
        await self.scheduler.stop()
        if self.aggregator.open_count:
            logger.warning(
                "Shutting down with requests still waiting for tail",
                open_correlations=self.aggregator.open_count,
            )

    def on_log(self, event: Mapping[str, Any]) -> None:
        """
        Handle a standalone log event.

        The event is buffered when the policy admits it and no exclusion
        matches it.
        """
        log_event = LogEvent.model_validate(_without_none(event))
        self._record_received(log_event.kind)

        if self.evaluator.should_exclude(log_event):
            if self.metrics:
                self.metrics.record_excluded(log_event.kind)
            return
        if not self.evaluator.should_admit(log_event):
            return

        if self.metrics:
            self.metrics.record_admitted(log_event.kind)
        self.scheduler.enqueue(log_event)

    def on_request(
        self,
        request: RequestInfo,
        event: Mapping[str, Any],
        tags: Optional[Iterable[str]] = None,
    ) -> None:
        """
        Handle a request phase event.

        Known phase tags: "received" (first event, opens the record),
        "handler" (data.msec holds handler time), plus anything the
        application logs against the request.

        Args:
            request: The host request the event belongs to
            event: Phase event fields (tags, data, timestamp)
            tags: Lifecycle tags; defaults to the event's own tags
        """
        request_event = RequestEvent.model_validate(
            {**_without_none(event), "request_id": request.id}
        )
        self._record_received(request_event.kind)

        lifecycle_tags = set(tags) if tags is not None else set(request_event.tags)
        if RECEIVED_TAG in lifecycle_tags:
            envelope = {**request.envelope(), "timestamp": now_millis()}
            self.aggregator.on_initiate(request.id, envelope, request_event)
        else:
            self.aggregator.on_phase(request.id, request_event)

    def on_response(self, request: RequestInfo) -> None:
        """
        Handle the response having been sent.

        Response time is measured from the request's received timestamp;
        without one it is negative.
        """
        now = now_millis()
        received = request.info.received
        response_time = now - received if received else -1

        data = ResponseData(response_time=response_time)
        if request.status_code is not None:
            data = ResponseData(status_code=request.status_code, response_time=response_time)

        response_event = ResponseEvent(request_id=request.id, timestamp=now, data=data)
        self._record_received(response_event.kind)
        self.aggregator.on_phase(request.id, response_event)

    def on_tail(self, request: RequestInfo) -> None:
        """Handle the end of a request's lifecycle; may emit its record."""
        tail_event = TailEvent(request_id=request.id)
        self._record_received(tail_event.kind)
        self.aggregator.on_terminal(request.id, tail_event)

    def on_internal_error(
        self,
        request: RequestInfo,
        err: Union[BaseException, ErrorInfo, Mapping[str, Any]],
    ) -> None:
        """Handle an internal server error raised while serving a request."""
        if isinstance(err, BaseException):
            error = ErrorInfo.from_exception(err)
        elif isinstance(err, ErrorInfo):
            error = err
        else:
            error = ErrorInfo.model_validate(dict(err))

        error_event = InternalErrorEvent(request_id=request.id, error=error)
        self._record_received(error_event.kind)
        self.aggregator.on_side_event(request.id, error_event)

    def _record_received(self, kind: str) -> None:
        if self.metrics:
            self.metrics.record_received(kind)


def _without_none(event: Mapping[str, Any]) -> dict:
    """Drop unset fields so model defaults apply."""
    return {key: value for key, value in dict(event).items() if value is not None}
