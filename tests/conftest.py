"""
Pytest configuration and shared fixtures.

Contains a recording bulk sink, settings builders and a FastAPI test
client wired to them.
"""

import time
from typing import Any, Dict, Generator, List, Optional, Sequence
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from eventstack.config import BufferSettings, CaptureSettings, PolicySettings, Settings, SinkSettings
from eventstack.core.exceptions import SinkWriteError
from eventstack.core.sink import BulkEntry, BulkResult
from eventstack.models.events import RemoteInfo, RequestInfo, ServerInfo


class RecordingSink:
    """In-memory BulkSink that records every batch it receives."""

    def __init__(self, fail: bool = False, reachable: bool = True) -> None:
        self.fail = fail
        self.reachable = reachable
        self.calls: List[List[BulkEntry]] = []
        self.call_times: List[float] = []
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def bulk(self, entries: Sequence[BulkEntry]) -> BulkResult:
        self.calls.append(list(entries))
        self.call_times.append(time.monotonic())
        if self.fail:
            raise SinkWriteError("Elasticsearch returned status 503", details={"status": 503})
        return BulkResult(items=len(entries), took_ms=1, errors=False)

    async def ping(self) -> bool:
        return self.reachable

    @property
    def entries(self) -> List[BulkEntry]:
        """All entries across calls, in write order."""
        return [entry for call in self.calls for entry in call]


def make_settings(
    policy: Optional[Dict[str, Any]] = None,
    flush_interval_millis: int = 1000,
    capture: bool = False,
) -> Settings:
    """Settings with the given policy, independent of config files."""
    return Settings(
        log_level="DEBUG",
        sink=SinkSettings(base_url="http://es.test:9200", index="logs"),
        buffer=BufferSettings(flush_interval_millis=flush_interval_millis),
        policy=PolicySettings(**(policy or {})),
        capture=CaptureSettings(enabled=capture),
    )


def make_request_info(request_id: str = "r1", **overrides: Any) -> RequestInfo:
    """A request as a host would describe it."""
    data: Dict[str, Any] = {
        "id": request_id,
        "path": "/api/orders",
        "query": {"page": "2"},
        "method": "get",
        "http_version": "1.1",
        "headers": {
            "Host": "shop.example.com",
            "Connection": "keep-alive",
            "User-Agent": "curl/8.4.0",
            "Referer": "https://shop.example.com/",
        },
        "route_auth": True,
        "authenticated": False,
        "info": RemoteInfo(
            received=1_700_000_000_000,
            remote_address="10.0.0.7",
            remote_port=53122,
            host="shop.example.com",
        ),
        "server_info": ServerInfo(
            host="api-1",
            port=8000,
            protocol="http",
            uri="http://api-1:8000",
        ),
    }
    data.update(overrides)
    return RequestInfo(**data)


@pytest.fixture
def recording_sink() -> RecordingSink:
    """Sink that records batches instead of calling Elasticsearch."""
    return RecordingSink()


@pytest.fixture
def request_info() -> RequestInfo:
    """Sample request description."""
    return make_request_info()


@pytest.fixture
def request_payload() -> Dict[str, Any]:
    """Sample request description as a JSON body fragment."""
    return {
        "id": "r1",
        "path": "/api/orders",
        "method": "post",
        "headers": {"host": "shop.example.com", "user-agent": "curl/8.4.0"},
        "info": {"received": 1_700_000_000_000, "remote_address": "10.0.0.7"},
    }


@pytest.fixture
def test_settings() -> Settings:
    """Settings that admit everything."""
    return make_settings(policy={"allow_all": True})


@pytest.fixture
def test_client(test_settings: Settings, recording_sink: RecordingSink) -> Generator[TestClient, None, None]:
    """FastAPI test client running the full lifespan against the recording sink."""
    from eventstack.main import create_app

    # Keep structlog unconfigured so capture_logs works across tests
    with patch("eventstack.main.configure_logging"):
        app = create_app(settings=test_settings, sink=recording_sink)

    with TestClient(app) as client:
        yield client


@pytest.fixture
def settings_factory():
    """Build settings for a given policy."""
    return make_settings


@pytest.fixture
def request_factory():
    """Build request descriptions with overrides."""
    return make_request_info


@pytest.fixture
def sink_factory():
    """Build recording sinks, optionally failing or unreachable."""
    return RecordingSink
