"""
Integration tests for capturing this service's own HTTP requests.
"""

import json
from typing import Generator
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def capture_client(settings_factory, recording_sink) -> Generator[TestClient, None, None]:
    """Client for an app that captures its own requests."""
    from eventstack.main import create_app

    with patch("eventstack.main.configure_logging"):
        app = create_app(
            settings=settings_factory({"allow_all": True}, capture=True),
            sink=recording_sink,
        )

    @app.get("/boom")
    async def boom() -> None:
        raise RuntimeError("handler exploded")

    with TestClient(app, raise_server_exceptions=False) as client:
        yield client


def flushed_documents(client: TestClient, sink) -> list:
    client.post("/v1/admin/flush")
    return [json.loads(entry.source) for entry in sink.entries]


class TestEventCapture:
    """Test request capture middleware."""

    def test_request_is_captured(self, capture_client: TestClient, recording_sink) -> None:
        response = capture_client.get(
            "/?debug=1",
            headers={"X-Request-ID": "own-1", "User-Agent": "pytest"},
        )

        assert response.status_code == 200
        assert response.headers["X-Request-ID"] == "own-1"

        documents = flushed_documents(capture_client, recording_sink)
        record = documents[0]
        assert record["id"] == "own-1"
        assert record["path"] == "/"
        assert record["method"] == "get"
        assert record["query"] == {"debug": "1"}
        assert record["headers"]["user_agent"] == "pytest"
        assert [event["kind"] for event in record["lifecycle"]] == [
            "request", "request", "response", "tail"
        ]
        assert record["lifecycle"][2]["data"]["status_code"] == 200

    def test_excluded_paths_are_not_captured(self, capture_client: TestClient, recording_sink) -> None:
        capture_client.get("/healthz")
        capture_client.get("/metrics")

        assert capture_client.get("/v1/admin/correlations").json()["open"] == 1

        documents = flushed_documents(capture_client, recording_sink)
        assert [document["path"] for document in documents] == ["/v1/admin/correlations"]

    def test_unhandled_exception_is_captured(self, capture_client: TestClient, recording_sink) -> None:
        response = capture_client.get("/boom", headers={"X-Request-ID": "boom-1"})

        assert response.status_code == 500

        documents = flushed_documents(capture_client, recording_sink)
        kinds = [document["kind"] for document in documents]
        assert kinds == ["internalError", "request"]

        error, record = documents
        assert error["request_id"] == "boom-1"
        assert error["error"]["type"] == "RuntimeError"
        assert record["lifecycle"][1]["kind"] == "internalError"
        assert record["lifecycle"][-2]["data"]["status_code"] == 500
