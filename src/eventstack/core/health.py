"""
Health checker implementation for monitoring service dependencies.

Performs health checks for:
- Elasticsearch reachability
- Flush scheduler status
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from .scheduler import FlushScheduler
from .sink import BulkSink

logger = structlog.get_logger(__name__)


@dataclass
class HealthCheck:
    """Individual health check result."""
    name: str
    status: str  # "healthy", "unhealthy"
    message: str
    details: Dict[str, Any]
    last_check: float


@dataclass
class HealthStatus:
    """Overall health status."""
    is_healthy: bool
    checks: Dict[str, HealthCheck]
    failed_checks: List[str]
    timestamp: float


class HealthChecker:
    """
    Health checker for EventStack dependencies.

    Monitors:
    - Sink connectivity (Elasticsearch answers its base URL)
    - Flush scheduler (running, pending buffer size)
    """

    def __init__(self, sink: BulkSink, scheduler: Optional[FlushScheduler] = None):
        self.sink = sink
        self.scheduler = scheduler

        logger.info("Health Checker initialized")

    async def check_all(self) -> HealthStatus:
        """Perform all health checks and return overall status."""
        checks = {}
        failed_checks = []

        check_results = await asyncio.gather(
            self._check_sink(),
            asyncio.to_thread(self._check_scheduler),
            return_exceptions=True
        )

        check_names = ["sink", "scheduler"]
        for name, result in zip(check_names, check_results):
            if isinstance(result, Exception):
                checks[name] = HealthCheck(
                    name=name,
                    status="unhealthy",
                    message=f"Check failed: {str(result)}",
                    details={"error": str(result), "error_type": type(result).__name__},
                    last_check=time.time()
                )
                failed_checks.append(name)
            elif isinstance(result, HealthCheck):
                checks[name] = result
                if result.status != "healthy":
                    failed_checks.append(name)

        return HealthStatus(
            is_healthy=len(failed_checks) == 0,
            checks=checks,
            failed_checks=failed_checks,
            timestamp=time.time()
        )

    async def _check_sink(self) -> HealthCheck:
        """Check the document store is reachable."""
        started = time.time()
        reachable = await self.sink.ping()
        details = {"response_time_ms": int((time.time() - started) * 1000)}

        if reachable:
            return HealthCheck(
                name="sink",
                status="healthy",
                message="Elasticsearch is reachable",
                details=details,
                last_check=time.time()
            )

        logger.warning("Sink connectivity check failed")
        return HealthCheck(
            name="sink",
            status="unhealthy",
            message="Cannot reach Elasticsearch",
            details=details,
            last_check=time.time()
        )

    def _check_scheduler(self) -> HealthCheck:
        """Check the flush scheduler is running."""
        if not self.scheduler:
            return HealthCheck(
                name="scheduler",
                status="unhealthy",
                message="Flush scheduler not available",
                details={},
                last_check=time.time()
            )

        details = self.scheduler.describe()
        if self.scheduler.is_running:
            return HealthCheck(
                name="scheduler",
                status="healthy",
                message="Flush scheduler is running",
                details=details,
                last_check=time.time()
            )

        return HealthCheck(
            name="scheduler",
            status="unhealthy",
            message="Flush scheduler is stopped",
            details=details,
            last_check=time.time()
        )
