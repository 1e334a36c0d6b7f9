"""
Tests for the Elasticsearch bulk sink.

HTTP tests run against an in-process aiohttp server standing in for
Elasticsearch.
"""

import json
from typing import Any, Dict, List

import pytest
from aiohttp import web
from aiohttp import test_utils

from eventstack.config import SinkSettings
from eventstack.core.exceptions import SinkWriteError
from eventstack.core.sink import BulkEntry, BulkSink, ElasticsearchSink


def entries() -> List[BulkEntry]:
    return [
        BulkEntry(index="logs", kind="log", source=json.dumps({"kind": "log", "data": "hi"})),
        BulkEntry(index="logs", kind="request", source=json.dumps({"kind": "request", "id": "r1"})),
    ]


def fake_elasticsearch(status: int = 200, payload: Dict[str, Any] = None):
    """aiohttp app answering _bulk and / like Elasticsearch."""
    received: List[Dict[str, Any]] = []

    async def bulk(request: web.Request) -> web.Response:
        received.append({
            "content_type": request.headers.get("Content-Type"),
            "body": await request.text(),
        })
        if status >= 300:
            return web.Response(status=status, text="cluster_block_exception")
        return web.json_response(payload or {"took": 7, "errors": False, "items": [{}, {}]})

    async def root(request: web.Request) -> web.Response:
        return web.json_response({"tagline": "You Know, for Search"}, status=status)

    app = web.Application()
    app.router.add_post("/_bulk", bulk)
    app.router.add_get("/", root)
    return app, received


class TestBulkBody:
    """Test NDJSON body building and response parsing."""

    def test_action_line_before_each_source(self) -> None:
        body = ElasticsearchSink.build_body(entries())

        lines = body.split("\n")
        assert body.endswith("\n")
        assert json.loads(lines[0]) == {"index": {"_index": "logs"}}
        assert json.loads(lines[1]) == {"kind": "log", "data": "hi"}
        assert json.loads(lines[2]) == {"index": {"_index": "logs"}}
        assert json.loads(lines[3])["id"] == "r1"
        assert lines[4] == ""

    def test_parse_successful_result(self) -> None:
        result = ElasticsearchSink.parse_result(
            {"took": 12, "errors": False, "items": [{"index": {"status": 201}}]}, 30
        )

        assert result.items == 1
        assert result.took_ms == 12
        assert result.errors is False
        assert result.failed_items is None

    def test_parse_partial_failure(self) -> None:
        payload = {
            "errors": True,
            "items": [
                {"index": {"status": 201}},
                {"index": {"status": 400, "error": {"type": "mapper_parsing_exception"}}},
            ],
        }

        result = ElasticsearchSink.parse_result(payload, 30)

        assert result.items == 2
        assert result.took_ms == 30
        assert result.errors is True
        assert result.failed_items[0]["error"]["type"] == "mapper_parsing_exception"

    def test_parse_unexpected_body(self) -> None:
        result = ElasticsearchSink.parse_result("oops", 5)

        assert result.errors is True
        assert result.items == 0


class TestElasticsearchSink:
    """Test bulk writes over HTTP."""

    def test_implements_bulk_sink(self) -> None:
        assert isinstance(ElasticsearchSink(SinkSettings()), BulkSink)

    @pytest.mark.asyncio
    async def test_bulk_posts_ndjson(self) -> None:
        app, received = fake_elasticsearch()
        async with test_utils.TestServer(app) as server:
            sink = ElasticsearchSink(SinkSettings(base_url=str(server.make_url("/"))))
            await sink.start()
            try:
                result = await sink.bulk(entries())
            finally:
                await sink.stop()

        assert result.items == 2
        assert result.took_ms == 7
        assert received[0]["content_type"] == "application/x-ndjson"
        assert received[0]["body"] == ElasticsearchSink.build_body(entries())

    @pytest.mark.asyncio
    async def test_error_status_raises(self) -> None:
        app, _ = fake_elasticsearch(status=503)
        async with test_utils.TestServer(app) as server:
            sink = ElasticsearchSink(SinkSettings(base_url=str(server.make_url("/"))))
            await sink.start()
            try:
                with pytest.raises(SinkWriteError) as exc_info:
                    await sink.bulk(entries())
            finally:
                await sink.stop()

        assert exc_info.value.details["status"] == 503
        assert "cluster_block_exception" in exc_info.value.details["body"]

    @pytest.mark.asyncio
    async def test_unreachable_host_raises(self) -> None:
        sink = ElasticsearchSink(SinkSettings(base_url="http://127.0.0.1:1", timeout_seconds=2))
        await sink.start()
        try:
            with pytest.raises(SinkWriteError):
                await sink.bulk(entries())
            assert await sink.ping() is False
        finally:
            await sink.stop()

    @pytest.mark.asyncio
    async def test_bulk_before_start_raises(self) -> None:
        sink = ElasticsearchSink(SinkSettings())

        with pytest.raises(SinkWriteError):
            await sink.bulk(entries())
        assert await sink.ping() is False

    @pytest.mark.asyncio
    async def test_ping(self) -> None:
        app, _ = fake_elasticsearch()
        async with test_utils.TestServer(app) as server:
            sink = ElasticsearchSink(SinkSettings(base_url=str(server.make_url("/"))))
            await sink.start()
            try:
                assert await sink.ping() is True
            finally:
                await sink.stop()
