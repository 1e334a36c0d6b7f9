"""
Buffered flush scheduler.

Records are appended to a pending buffer and written to the sink in
throttled drains:
- at most one drain per flush interval, always on the trailing edge
- an idle drain after a quiet period so nothing is stranded
- flushed request ids are handed back for purging from the correlation map
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import structlog

from ..models.events import RequestRecord, Record, safe_dumps, to_document
from .metrics import MetricsCollector
from .sink import BulkEntry, BulkSink

logger = structlog.get_logger(__name__)


class FlushScheduler:
    """
    Owns the pending buffer and drives drains to the sink.

    Must be used from the event loop it was started on; enqueue never
    blocks and the drain runs as a task on that loop.
    """

    def __init__(
        self,
        sink: BulkSink,
        index: str,
        flush_interval_millis: int = 1000,
        idle_flush_multiplier: int = 5,
        on_flushed: Optional[Callable[[List[str]], None]] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.sink = sink
        self.index = index
        self.flush_interval = flush_interval_millis / 1000.0
        self.idle_interval = self.flush_interval * idle_flush_multiplier
        self.on_flushed = on_flushed
        self.metrics = metrics

        self._buffer: List[Record] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._drain_handle: Optional[asyncio.TimerHandle] = None
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set["asyncio.Task[int]"] = set()
        self._running = False

        logger.info(
            "Flush scheduler initialized",
            index=index,
            flush_interval_millis=flush_interval_millis,
            idle_flush_millis=int(self.idle_interval * 1000),
        )

    @property
    def pending(self) -> int:
        """Number of records waiting for the next drain."""
        return len(self._buffer)

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Bind the scheduler to the running event loop."""
        if self._running:
            return

        self._loop = asyncio.get_running_loop()
        self._running = True

        logger.info("Flush scheduler started")

    async def stop(self) -> None:
        """Cancel timers, wait for in-flight drains and drain what is left."""
        if not self._running:
            return

        self._running = False
        self._cancel_drain_timer()
        self._cancel_idle_timer()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        await self.drain()

        logger.info("Flush scheduler stopped")

    def enqueue(self, record: Record) -> None:
        """
        Append a record to the pending buffer and schedule a drain.

        Enqueues within one flush interval collapse into a single drain.
        """
        self._buffer.append(record)
        if self.metrics:
            self.metrics.update_pending(len(self._buffer))
        self._schedule_drain()

    async def drain(self) -> int:
        """
        Write everything pending to the sink.

        The buffer is swapped out first so records enqueued while the
        sink call is in flight go to the next drain. Flushed request ids
        are purged whether or not the write succeeded.

        Returns:
            Number of records handed to the sink
        """
        self._cancel_idle_timer()
        # Whatever was pending goes out now; the next enqueue re-arms the throttle
        self._cancel_drain_timer()

        logger.debug("Checking pending buffer")
        batch, self._buffer = self._buffer, []
        if self.metrics:
            self.metrics.update_pending(0)

        if not batch:
            logger.debug("No records pending, scheduler going idle")
            return 0

        logger.debug("Preparing records for flush", records_count=len(batch))
        entries, flushed_ids = self._prepare_batch(batch)

        started = time.perf_counter()
        try:
            result = await self.sink.bulk(entries)
            duration = time.perf_counter() - started

            if result.errors:
                logger.warning(
                    "Bulk write completed with item errors",
                    items=result.items,
                    took_ms=result.took_ms,
                    failed_items=safe_dumps(result.failed_items),
                )
            else:
                logger.info(
                    "Flushed records to sink",
                    items=result.items,
                    took_ms=result.took_ms,
                )
            if self.metrics:
                self.metrics.record_sink_request(
                    "partial" if result.errors else "success", duration
                )

        except Exception as e:
            logger.error(
                "Bulk write failed",
                error=str(e),
                error_type=type(e).__name__,
                details=safe_dumps(getattr(e, "details", None)),
                entries=[entry.source for entry in entries],
                exc_info=True,
            )
            if self.metrics:
                self.metrics.record_sink_request("failure", time.perf_counter() - started)

        finally:
            if flushed_ids and self.on_flushed:
                self.on_flushed(flushed_ids)

        if self.metrics:
            self.metrics.record_drain(len(entries))

        self._arm_idle_timer()
        return len(entries)

    def _prepare_batch(self, batch: List[Record]) -> Tuple[List[BulkEntry], List[str]]:
        """Serialize records to bulk entries and collect composite ids."""
        entries: List[BulkEntry] = []
        flushed_ids: List[str] = []

        for record in batch:
            document = to_document(record) or {}
            kind = str(document.get("kind", "unknown"))
            entries.append(BulkEntry(index=self.index, kind=kind, source=safe_dumps(document)))
            if isinstance(record, RequestRecord):
                flushed_ids.append(record.id)

        return entries, flushed_ids

    def _get_loop(self) -> Optional[asyncio.AbstractEventLoop]:
        # A stopped scheduler schedules nothing further
        if self._loop is not None:
            return self._loop if self._running else None
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None

    def _schedule_drain(self) -> None:
        if self._drain_handle is not None:
            return

        loop = self._get_loop()
        if loop is None:
            logger.debug("No event loop available, records wait for the next drain")
            return

        self._drain_handle = loop.call_later(self.flush_interval, self._on_drain_timer)

    def _on_drain_timer(self) -> None:
        self._drain_handle = None
        self._spawn_drain()

    def _arm_idle_timer(self) -> None:
        loop = self._get_loop()
        if loop is None:
            return

        self._cancel_idle_timer()
        logger.debug(
            "Scheduling idle-time flush",
            delay_millis=int(self.idle_interval * 1000),
        )
        self._idle_handle = loop.call_later(self.idle_interval, self._on_idle_timer)

    def _on_idle_timer(self) -> None:
        self._idle_handle = None
        logger.debug("Running idle-time flush")
        self._spawn_drain()

    def _spawn_drain(self) -> None:
        loop = self._get_loop()
        if loop is None:
            return

        task = loop.create_task(self.drain())
        self._tasks.add(task)
        task.add_done_callback(self._on_drain_done)

    def _on_drain_done(self, task: "asyncio.Task[int]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Drain task failed",
                error=str(error),
                error_type=type(error).__name__,
                exc_info=error,
            )

    def _cancel_drain_timer(self) -> None:
        if self._drain_handle is not None:
            self._drain_handle.cancel()
            self._drain_handle = None

    def _cancel_idle_timer(self) -> None:
        if self._idle_handle is not None:
            logger.debug("Clearing idle-time flush")
            self._idle_handle.cancel()
            self._idle_handle = None

    def describe(self) -> Dict[str, Any]:
        """Snapshot for admin and health endpoints."""
        return {
            "running": self._running,
            "pending": len(self._buffer),
            "drain_scheduled": self._drain_handle is not None,
            "idle_flush_scheduled": self._idle_handle is not None,
            "drains_in_flight": len(self._tasks),
        }
