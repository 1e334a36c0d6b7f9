"""
Tests for buffered, throttled draining to the sink.
"""

import asyncio
import json
from typing import List

import pytest
from prometheus_client import CollectorRegistry
from structlog.testing import capture_logs

from eventstack.core.metrics import MetricsCollector
from eventstack.core.scheduler import FlushScheduler
from eventstack.models.events import LogEvent, RequestRecord, TailEvent


def make_scheduler(sink, interval_millis: int = 1000, **kwargs) -> FlushScheduler:
    return FlushScheduler(sink=sink, index="logs", flush_interval_millis=interval_millis, **kwargs)


class TestDrain:
    """Test draining the pending buffer."""

    @pytest.mark.asyncio
    async def test_enqueued_records_drain_in_one_call(self, recording_sink) -> None:
        scheduler = make_scheduler(recording_sink)
        await scheduler.start()

        for i in range(5):
            scheduler.enqueue(LogEvent(data={"n": i}))

        assert await scheduler.drain() == 5
        assert len(recording_sink.calls) == 1
        assert len(recording_sink.calls[0]) == 5

        assert await scheduler.drain() == 0
        assert len(recording_sink.calls) == 1

        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_entries_keep_order_index_and_kind(self, recording_sink) -> None:
        scheduler = make_scheduler(recording_sink)
        await scheduler.start()

        scheduler.enqueue(LogEvent(data="first"))
        scheduler.enqueue(RequestRecord(id="r1", path="/orders"))
        await scheduler.drain()

        entries = recording_sink.calls[0]
        assert [entry.kind for entry in entries] == ["log", "request"]
        assert {entry.index for entry in entries} == {"logs"}
        assert json.loads(entries[0].source)["data"] == "first"
        assert json.loads(entries[1].source)["id"] == "r1"

        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_flushed_request_ids_are_reported(self, recording_sink) -> None:
        flushed: List[List[str]] = []
        scheduler = make_scheduler(recording_sink, on_flushed=flushed.append)
        await scheduler.start()

        scheduler.enqueue(RequestRecord(id="r1"))
        scheduler.enqueue(TailEvent(request_id="r2"))
        scheduler.enqueue(RequestRecord(id="r3"))
        await scheduler.drain()

        assert flushed == [["r1", "r3"]]

        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_failed_write_still_reports_ids(self, sink_factory) -> None:
        """Test a sink failure is logged and the batch is not retried."""
        sink = sink_factory(fail=True)
        flushed: List[List[str]] = []
        registry = CollectorRegistry()
        scheduler = make_scheduler(
            sink, on_flushed=flushed.append, metrics=MetricsCollector(registry)
        )
        await scheduler.start()

        scheduler.enqueue(RequestRecord(id="r1"))
        with capture_logs() as logs:
            assert await scheduler.drain() == 1

        assert flushed == [["r1"]]
        assert scheduler.pending == 0
        errors = [entry for entry in logs if entry["log_level"] == "error"]
        assert errors[0]["event"] == "Bulk write failed"
        assert errors[0]["error_type"] == "SinkWriteError"
        assert '"id": "r1"' in errors[0]["entries"][0]
        assert registry.get_sample_value(
            "sink_requests_total", {"outcome": "failure"}
        ) == 1.0

        await scheduler.stop()
        assert len(sink.calls) == 1

    @pytest.mark.asyncio
    async def test_drain_without_start(self, recording_sink) -> None:
        scheduler = make_scheduler(recording_sink)

        scheduler.enqueue(LogEvent())

        assert await scheduler.drain() == 1


class TestTimers:
    """Test the throttle and idle timers."""

    @pytest.mark.asyncio
    async def test_enqueues_within_interval_collapse(self, recording_sink) -> None:
        scheduler = make_scheduler(recording_sink, interval_millis=20)
        await scheduler.start()

        scheduler.enqueue(LogEvent())
        scheduler.enqueue(LogEvent())
        scheduler.enqueue(LogEvent())
        assert recording_sink.calls == []

        await asyncio.sleep(0.08)

        assert len(recording_sink.calls) == 1
        assert len(recording_sink.calls[0]) == 3

        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_drain_is_on_trailing_edge(self, recording_sink) -> None:
        scheduler = make_scheduler(recording_sink, interval_millis=200)
        await scheduler.start()

        scheduler.enqueue(LogEvent())
        await asyncio.sleep(0.02)

        assert recording_sink.calls == []
        assert scheduler.describe()["drain_scheduled"] is True

        await scheduler.stop()
        assert len(recording_sink.calls) == 1

    @pytest.mark.asyncio
    async def test_idle_flush_armed_after_non_empty_drain(self, recording_sink) -> None:
        scheduler = make_scheduler(recording_sink, interval_millis=20, idle_flush_multiplier=5)
        await scheduler.start()

        assert await scheduler.drain() == 0
        assert scheduler.describe()["idle_flush_scheduled"] is False

        # Throttled drain at 20ms arms the idle drain for 100ms later
        scheduler.enqueue(LogEvent())
        await asyncio.sleep(0.05)
        assert len(recording_sink.calls) == 1
        assert scheduler.describe()["idle_flush_scheduled"] is True

        with capture_logs() as logs:
            await asyncio.sleep(0.15)

        events = [entry["event"] for entry in logs]
        assert "Running idle-time flush" in events
        assert scheduler.describe()["idle_flush_scheduled"] is False
        assert len(recording_sink.calls) == 1

        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_drains_keep_interval_while_records_arrive(self, recording_sink) -> None:
        """Test steady traffic drains every interval and never more often."""
        scheduler = make_scheduler(recording_sink, interval_millis=50, idle_flush_multiplier=1)
        await scheduler.start()

        for i in range(40):
            scheduler.enqueue(LogEvent(data={"n": i}))
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.15)

        assert scheduler.pending == 0
        assert sum(len(call) for call in recording_sink.calls) == 40
        assert len(recording_sink.calls) >= 4

        times = recording_sink.call_times
        gaps = [later - earlier for earlier, later in zip(times, times[1:])]
        assert min(gaps) >= 0.045

        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_idle_flush_writes_pending_records(self, recording_sink) -> None:
        scheduler = make_scheduler(recording_sink, interval_millis=200, idle_flush_multiplier=2)
        await scheduler.start()

        # Throttled drain at 200ms arms the idle drain for 600ms
        scheduler.enqueue(LogEvent(data="first"))
        await asyncio.sleep(0.3)
        assert len(recording_sink.calls) == 1

        # Enqueued at 500ms, the throttle alone would wait until 700ms
        await asyncio.sleep(0.2)
        scheduler.enqueue(LogEvent(data="second"))
        with capture_logs() as logs:
            await asyncio.sleep(0.15)

        assert "Running idle-time flush" in [entry["event"] for entry in logs]
        assert len(recording_sink.calls) == 2
        assert json.loads(recording_sink.calls[1][0].source)["data"] == "second"
        assert scheduler.describe()["drain_scheduled"] is False

        scheduler.enqueue(LogEvent(data="third"))
        await asyncio.sleep(0.3)

        assert len(recording_sink.calls) == 3
        assert recording_sink.call_times[2] - recording_sink.call_times[1] >= 0.18

        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_failed_drain_task_is_logged(self, recording_sink) -> None:
        def fail_purge(request_ids: List[str]) -> None:
            raise RuntimeError("purge failed")

        scheduler = make_scheduler(recording_sink, interval_millis=20, on_flushed=fail_purge)
        await scheduler.start()

        with capture_logs() as logs:
            scheduler.enqueue(RequestRecord(id="r1"))
            await asyncio.sleep(0.08)

        errors = [entry for entry in logs if entry["log_level"] == "error"]
        assert errors[0]["event"] == "Drain task failed"
        assert errors[0]["error_type"] == "RuntimeError"
        assert errors[0]["error"] == "purge failed"
        assert scheduler.describe()["drains_in_flight"] == 0

        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_drains_pending_and_schedules_nothing(self, recording_sink) -> None:
        scheduler = make_scheduler(recording_sink)
        await scheduler.start()

        scheduler.enqueue(LogEvent())
        await scheduler.stop()

        assert len(recording_sink.calls) == 1
        assert scheduler.is_running is False

        scheduler.enqueue(LogEvent())
        assert scheduler.describe()["drain_scheduled"] is False
        assert scheduler.pending == 1
