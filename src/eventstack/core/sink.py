"""
Bulk sink for writing records to Elasticsearch.

Features:
- One NDJSON _bulk request per drain
- Result summary (items, took, partial errors) for diagnostics
- Readiness ping

Retry and backoff are left to Elasticsearch clients upstream; a failed
request surfaces as SinkWriteError and the batch is not re-buffered.
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import aiohttp
import structlog

from ..config import SinkSettings
from .exceptions import SinkWriteError

logger = structlog.get_logger(__name__)


@dataclass
class BulkEntry:
    """One record of a bulk batch."""
    index: str
    kind: str
    source: str


@dataclass
class BulkResult:
    """Result of a bulk write."""
    items: int
    took_ms: int
    errors: bool
    failed_items: Optional[List[Dict[str, Any]]] = None


@runtime_checkable
class BulkSink(Protocol):
    """
    Port for the document store.

    Adapters implementing this protocol receive each drained batch.
    """

    async def start(self) -> None:
        """Open connections."""
        ...

    async def stop(self) -> None:
        """Close connections."""
        ...

    async def bulk(self, entries: Sequence[BulkEntry]) -> BulkResult:
        """Write a batch; raise SinkWriteError on failure."""
        ...

    async def ping(self) -> bool:
        """Return True when the store is reachable."""
        ...


class ElasticsearchSink:
    """
    Async bulk writer for Elasticsearch.

    Handles:
    - NDJSON body building
    - Bulk response parsing
    - Session lifecycle
    """

    def __init__(self, settings: SinkSettings) -> None:
        self.settings = settings
        self.session: Optional[aiohttp.ClientSession] = None

        logger.info("Elasticsearch sink initialized", bulk_url=settings.bulk_url)

    async def start(self) -> None:
        """Open the HTTP session."""
        if self.session:
            return

        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.settings.timeout_seconds)
        )

        logger.info("Elasticsearch sink started")

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None

        logger.info("Elasticsearch sink stopped")

    async def bulk(self, entries: Sequence[BulkEntry]) -> BulkResult:
        """
        Write entries with one _bulk request.

        Args:
            entries: Batch entries in buffer order

        Returns:
            BulkResult summarizing the Elasticsearch response

        Raises:
            SinkWriteError: if the sink is not started, the request fails
                or Elasticsearch answers with an error status
        """
        if not self.session:
            raise SinkWriteError("Elasticsearch sink not started")

        body = self.build_body(entries)
        headers = {
            "Content-Type": "application/x-ndjson",
            "User-Agent": "eventstack-sink/1.0"
        }

        started = time.perf_counter()
        try:
            async with self.session.post(
                self.settings.bulk_url,
                data=body,
                headers=headers
            ) as response:
                if response.status >= 300:
                    error_text = await response.text()
                    raise SinkWriteError(
                        f"Elasticsearch returned status {response.status}",
                        details={"status": response.status, "body": error_text},
                    )
                payload = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise SinkWriteError(
                f"Bulk request failed: {e}",
                details={"url": self.settings.bulk_url, "error_type": type(e).__name__},
            ) from e

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        return self.parse_result(payload, elapsed_ms)

    async def ping(self) -> bool:
        """Check Elasticsearch answers on its base URL."""
        if not self.session:
            return False

        try:
            async with self.session.get(self.settings.base_url) as response:
                return response.status == 200
        except aiohttp.ClientError as e:
            logger.warning("Elasticsearch ping failed", error=str(e))
            return False

    @staticmethod
    def build_body(entries: Sequence[BulkEntry]) -> str:
        """
        Convert entries to the _bulk NDJSON format.

        Elasticsearch expects an action line followed by the source line:
            {"index": {"_index": "logs"}}
            {"kind": "request", ...}
        and a trailing newline.
        """
        lines = []
        for entry in entries:
            lines.append(json.dumps({"index": {"_index": entry.index}}))
            lines.append(entry.source)
        return "\n".join(lines) + "\n"

    @staticmethod
    def parse_result(payload: Any, elapsed_ms: int) -> BulkResult:
        """Summarize a _bulk response body."""
        if not isinstance(payload, dict):
            return BulkResult(items=0, took_ms=elapsed_ms, errors=True)

        items = payload.get("items") or []
        failed = [
            action
            for item in items
            for action in item.values()
            if isinstance(action, dict) and action.get("error")
        ]
        return BulkResult(
            items=len(items),
            took_ms=int(payload.get("took", elapsed_ms)),
            errors=bool(payload.get("errors")),
            failed_items=failed or None,
        )
