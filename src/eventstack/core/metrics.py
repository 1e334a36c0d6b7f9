"""
Prometheus metrics collection.

Stateless services with in-memory metrics.
Covers event intake, policy decisions, correlation state and flushing.
"""

import time
from typing import Optional

import structlog
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram, Info

from .. import __version__

logger = structlog.get_logger(__name__)


class MetricsCollector:
    """
    Centralized metrics collection for EventStack.

    Keep metrics simple,
    use in-memory counters, let Prometheus handle storage.
    Each collector registers into its own registry when one is given,
    so several apps (or tests) can live in one process.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else REGISTRY

        # Service info
        self.service_info = Info(
            "eventstack_service",
            "EventStack service information",
            registry=self.registry,
        )
        self.service_info.info({
            "version": __version__,
            "service": "eventstack",
        })

        # Intake metrics
        self.events_received_total = Counter(
            "events_received_total",
            "Total lifecycle events received from the host",
            ["kind"],
            registry=self.registry,
        )

        self.events_admitted_total = Counter(
            "events_admitted_total",
            "Total events retained by the policy",
            ["kind"],
            registry=self.registry,
        )

        self.events_excluded_total = Counter(
            "events_excluded_total",
            "Total events vetoed by an exclusion rule",
            ["kind"],
            registry=self.registry,
        )

        # Correlation metrics
        self.open_correlations = Gauge(
            "open_correlations",
            "Requests currently waiting for their tail event",
            registry=self.registry,
        )

        self.composites_emitted_total = Counter(
            "composites_emitted_total",
            "Total completed request records handed to the flush buffer",
            registry=self.registry,
        )

        self.composites_purged_total = Counter(
            "composites_purged_total",
            "Total request records removed from the correlation map",
            ["reason"],
            registry=self.registry,
        )

        self.unknown_correlations_total = Counter(
            "unknown_correlations_total",
            "Total events for a request id that is not open",
            ["kind"],
            registry=self.registry,
        )

        # Flush metrics
        self.pending_records = Gauge(
            "pending_records",
            "Records waiting in the flush buffer",
            registry=self.registry,
        )

        self.drains_total = Counter(
            "buffer_drains_total",
            "Total non-empty buffer drains",
            registry=self.registry,
        )

        self.drained_records = Histogram(
            "buffer_drained_records",
            "Number of records per drain",
            buckets=[1, 5, 10, 25, 50, 100, 250, 500, 1000],
            registry=self.registry,
        )

        # Sink metrics
        self.sink_requests_total = Counter(
            "sink_requests_total",
            "Total bulk requests to Elasticsearch",
            ["outcome"],
            registry=self.registry,
        )

        self.sink_request_duration = Histogram(
            "sink_request_duration_seconds",
            "Elasticsearch bulk request duration in seconds",
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=self.registry,
        )

        # System metrics
        self.uptime_seconds = Gauge(
            "uptime_seconds",
            "Service uptime in seconds",
            registry=self.registry,
        )

        # Track start time for uptime calculation
        self._start_time = time.time()

    def record_received(self, kind: str) -> None:
        """Record an event arriving from the host."""
        self.events_received_total.labels(kind=kind).inc()

    def record_admitted(self, kind: str) -> None:
        """Record an event retained by the policy."""
        self.events_admitted_total.labels(kind=kind).inc()

    def record_excluded(self, kind: str) -> None:
        """Record an event vetoed by an exclusion."""
        self.events_excluded_total.labels(kind=kind).inc()

    def record_emitted(self) -> None:
        """Record a completed request record."""
        self.composites_emitted_total.inc()

    def record_purge(self, reason: str, count: int = 1) -> None:
        """Record request records leaving the correlation map."""
        self.composites_purged_total.labels(reason=reason).inc(count)

    def record_unknown_correlation(self, kind: str) -> None:
        """Record an event for a request id that is not open."""
        self.unknown_correlations_total.labels(kind=kind).inc()

    def update_correlations(self, open_count: int) -> None:
        """Update the open correlation gauge."""
        self.open_correlations.set(open_count)

    def update_pending(self, pending_count: int) -> None:
        """Update the flush buffer gauge."""
        self.pending_records.set(pending_count)

    def record_drain(self, records_count: int) -> None:
        """Record a non-empty drain."""
        self.drains_total.inc()
        self.drained_records.observe(records_count)

    def record_sink_request(self, outcome: str, duration_seconds: float) -> None:
        """Record an Elasticsearch bulk request."""
        self.sink_requests_total.labels(outcome=outcome).inc()
        self.sink_request_duration.observe(duration_seconds)

    def update_system_metrics(self) -> None:
        """Update system-level metrics."""
        self.uptime_seconds.set(time.time() - self._start_time)
