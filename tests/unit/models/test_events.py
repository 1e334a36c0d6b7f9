"""
Tests for event model defaults and request envelopes.
"""

import socket

import pytest

from eventstack.models.events import (
    ErrorInfo,
    LogEvent,
    RequestEvent,
    RequestInfo,
    RequestRecord,
    ResponseEvent,
    now_millis,
    to_document,
)


class TestEventDefaults:
    """Test construction-time defaults."""

    def test_log_event_defaults(self) -> None:
        before = now_millis()
        event = LogEvent()

        assert event.kind == "log"
        assert event.server == socket.gethostname()
        assert event.tags == []
        assert event.data == {}
        assert event.timestamp >= before

    def test_defaults_are_not_shared(self) -> None:
        first, second = LogEvent(), LogEvent()
        first.tags.append("error")

        assert second.tags == []

    def test_missing_timestamp_is_stamped(self) -> None:
        assert LogEvent(timestamp=None).timestamp > 0
        assert LogEvent(timestamp=1234).timestamp == 1234

    def test_response_defaults(self) -> None:
        event = ResponseEvent(request_id="r1")

        assert event.data.status_code == 400
        assert event.data.response_time == -1

    def test_composite_envelope_is_frozen(self) -> None:
        record = RequestRecord(id="r1", path="/a")

        with pytest.raises(Exception):
            record.path = "/b"

    def test_composite_lifecycle_grows(self) -> None:
        record = RequestRecord(id="r1")
        record.lifecycle.append(RequestEvent(request_id="r1"))

        assert len(to_document(record)["lifecycle"]) == 1


class TestPayloadWrapping:
    """Test scalar payloads on phase events."""

    @pytest.mark.parametrize("value", ["text", 42, 1.5, True])
    def test_scalar_is_wrapped(self, value) -> None:
        assert RequestEvent(request_id="r1", data=value).data == {"value": value}

    def test_missing_payload_is_empty(self) -> None:
        assert RequestEvent(request_id="r1", data=None).data == {}

    def test_mapping_is_kept(self) -> None:
        assert RequestEvent(request_id="r1", data={"msec": 3}).data == {"msec": 3}


class TestRequestInfo:
    """Test host request descriptions."""

    def test_header_lookup_ignores_case(self, request_info: RequestInfo) -> None:
        assert request_info.header("user-agent") == "curl/8.4.0"
        assert request_info.header("X-Missing") is None

    def test_envelope(self, request_info: RequestInfo) -> None:
        record = RequestRecord(id=request_info.id, **request_info.envelope())

        assert record.method == "get"
        assert record.query == {"page": "2"}
        assert record.headers.host == "shop.example.com"
        assert record.headers.connection == "keep-alive"
        assert record.headers.referrer == "https://shop.example.com/"
        assert record.is_route_auth_required is True
        assert record.is_request_authenticated is False
        assert record.remote_info.remote_address == "10.0.0.7"
        assert record.server_info.uri == "http://api-1:8000"

    def test_id_is_required(self) -> None:
        with pytest.raises(Exception):
            RequestInfo(id="")


class TestDocuments:
    """Test the document form used for matching and writing."""

    def test_mapping_passthrough(self) -> None:
        assert to_document({"kind": "log"}) == {"kind": "log"}

    def test_none(self) -> None:
        assert to_document(None) is None

    def test_error_info_from_exception(self) -> None:
        try:
            raise KeyError("sku")
        except KeyError as e:
            info = ErrorInfo.from_exception(e)

        assert info.type == "KeyError"
        assert info.message == "'sku'"
        assert "Traceback" in info.stack
