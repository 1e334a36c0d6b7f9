"""
Request correlation aggregator.

Tracks in-flight requests by correlation id and folds their lifecycle
events into one composite RequestRecord:

    absent -> open -> emitted | purged

A record is opened by a "received" phase event, grows with every later
event for the same id and is emitted exactly once, when its tail event
arrives. Emitted records stay in the map until the flush that wrote
them acknowledges them; purged records are dropped immediately.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import structlog

from ..models.events import (
    InternalErrorEvent,
    LifecycleEvent,
    Record,
    RequestEvent,
    RequestRecord,
    TailEvent,
)
from .metrics import MetricsCollector
from .policy import PolicyEvaluator

logger = structlog.get_logger(__name__)


class CorrelationState(str, Enum):
    """State of one correlation id."""

    ABSENT = "absent"
    OPEN = "open"
    EMITTED = "emitted"
    PURGED = "purged"


@dataclass
class _Entry:
    record: RequestRecord
    state: CorrelationState


class CorrelationAggregator:
    """
    Live map from correlation id to the composite being built.

    Every event is checked for exclusion before admission: an excluded
    sub-event drops the whole composite, not just that entry.
    """

    def __init__(
        self,
        evaluator: PolicyEvaluator,
        emit: Callable[[Record], None],
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.evaluator = evaluator
        self.emit = emit
        self.metrics = metrics
        self._entries: Dict[str, _Entry] = {}
        self._open_count = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries

    def state(self, request_id: str) -> CorrelationState:
        """Current state of a correlation id."""
        entry = self._entries.get(request_id)
        return entry.state if entry else CorrelationState.ABSENT

    def get(self, request_id: str) -> Optional[RequestRecord]:
        """The record held for a correlation id, open or awaiting flush."""
        entry = self._entries.get(request_id)
        return entry.record if entry else None

    @property
    def open_count(self) -> int:
        """Number of requests still waiting for their tail."""
        return self._open_count

    @property
    def open_ids(self) -> List[str]:
        """Ids of requests still waiting for their tail."""
        return [
            request_id
            for request_id, entry in self._entries.items()
            if entry.state is CorrelationState.OPEN
        ]

    def on_initiate(
        self,
        request_id: str,
        envelope: Mapping[str, Any],
        event: RequestEvent,
    ) -> None:
        """
        Open a record for a received request and fold the received event.

        Receiving the same id again does not replace the open record;
        the event is still folded into its lifecycle.
        """
        state = self.state(request_id)
        if state is CorrelationState.ABSENT:
            record = RequestRecord(**{**envelope, "id": request_id, "lifecycle": []})
            self._entries[request_id] = _Entry(record=record, state=CorrelationState.OPEN)
            self._open_count += 1
            logger.debug(
                "Opened request correlation",
                request_id=request_id,
                open_correlations=len(self._entries),
            )
            self._update_gauge()
        elif state is CorrelationState.OPEN:
            logger.debug("Request already open, folding event", request_id=request_id)

        self.on_phase(request_id, event)

    def on_phase(self, request_id: str, event: LifecycleEvent) -> None:
        """Fold a request or response phase event into an open record."""
        entry = self._open_entry(request_id)
        if entry is None:
            self._report_unknown(request_id, event.kind)
            return

        if self.evaluator.should_exclude(event):
            self._record_excluded(event.kind)
            self.purge(request_id, reason="excluded_phase")
            return

        if self.evaluator.should_admit(event):
            self._append(entry, event)

    def on_terminal(self, request_id: str, event: TailEvent) -> None:
        """
        Complete an open record.

        The tail event is checked on its own, then the whole composite is
        checked again: fields such as the final status code only become
        meaningful in combination.
        """
        entry = self._open_entry(request_id)
        if entry is None:
            self._report_unknown(request_id, event.kind)
            return

        if self.evaluator.should_exclude(event):
            self._record_excluded(event.kind)
            self.purge(request_id, reason="excluded_terminal")
            return

        if self.evaluator.should_admit(event):
            self._append(entry, event)

        record = entry.record
        if self.evaluator.should_admit(record) and not self.evaluator.should_exclude(record):
            entry.state = CorrelationState.EMITTED
            self._open_count -= 1
            logger.debug(
                "Request completed, queueing for flush",
                request_id=request_id,
                lifecycle_length=len(record.lifecycle),
            )
            if self.metrics:
                self.metrics.record_admitted(record.kind)
                self.metrics.record_emitted()
            self._update_gauge()
            self.emit(record)
        else:
            self.purge(request_id, reason="rejected_composite")

    def on_side_event(self, request_id: str, event: InternalErrorEvent) -> None:
        """
        Handle an out-of-band event such as an internal error.

        An admitted side event is written twice: inline in the record's
        lifecycle and as its own document. Its exclusion purges the record
        but does not stop the standalone write.
        """
        if not self.evaluator.should_admit(event):
            logger.debug("Side event not admitted", request_id=request_id, kind=event.kind)
            return

        entry = self._open_entry(request_id)
        if entry is not None:
            self._append(entry, event)
        else:
            self._report_unknown(request_id, event.kind)

        self.emit(event)

        if self.evaluator.should_exclude(event):
            self._record_excluded(event.kind)
            self.purge(request_id, reason="excluded_side_event")

    def purge(self, request_id: str, reason: str = "requested") -> None:
        """Remove one correlation id; unknown ids are ignored."""
        self.purge_many([request_id], reason=reason)

    def purge_many(self, request_ids: Iterable[str], reason: str = "flushed") -> None:
        """
        Remove correlation ids from the live map.

        Args:
            request_ids: Ids to remove; unknown ids are ignored
            reason: Why they are removed (metrics label)
        """
        ids = list(request_ids)
        if not ids:
            return

        logger.debug(
            "Purging requests from correlation map",
            count=len(ids),
            map_size=len(self._entries),
            reason=reason,
        )

        purged = 0
        for request_id in ids:
            entry = self._entries.pop(request_id, None)
            if entry is None:
                continue
            purged += 1
            if entry.state is CorrelationState.OPEN:
                self._open_count -= 1
            logger.debug(
                "Request correlation closed",
                request_id=request_id,
                from_state=entry.state.value,
                to_state=(
                    CorrelationState.PURGED.value
                    if entry.state is CorrelationState.OPEN
                    else entry.state.value
                ),
            )

        if self.metrics and purged:
            self.metrics.record_purge(reason, purged)
        self._update_gauge()

        logger.debug(
            "Requests waiting for tail",
            open_correlations=self._open_count,
        )

    def _open_entry(self, request_id: str) -> Optional[_Entry]:
        entry = self._entries.get(request_id)
        if entry is None or entry.state is not CorrelationState.OPEN:
            return None
        return entry

    def _append(self, entry: _Entry, event: LifecycleEvent) -> None:
        entry.record.lifecycle.append(event)
        if self.metrics:
            self.metrics.record_admitted(event.kind)

    def _report_unknown(self, request_id: str, kind: str) -> None:
        logger.warning(
            "Event for unknown request id, most likely discarded earlier by an exclusion",
            request_id=request_id,
            kind=kind,
            state=self.state(request_id).value,
        )
        if self.metrics:
            self.metrics.record_unknown_correlation(kind)

    def _record_excluded(self, kind: str) -> None:
        if self.metrics:
            self.metrics.record_excluded(kind)

    def _update_gauge(self) -> None:
        if self.metrics:
            self.metrics.update_correlations(self._open_count)
