"""
Capture of the service's own HTTP requests.

Each request handled by this app is reported to the event logger as
received -> handler -> response -> tail, plus internalError when the
handler raises. Enabled with ``capture.enabled``.

Usage:
    app.add_middleware(EventCaptureMiddleware, exclude_paths=["/metrics"])
"""

import time
import uuid
from typing import Callable, Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from ..core.event_logger import EventLogger
from ..models.events import RemoteInfo, RequestInfo, ServerInfo, now_millis

REQUEST_ID_HEADER = "X-Request-ID"


class EventCaptureMiddleware(BaseHTTPMiddleware):
    """
    Reports request lifecycles to the app's event logger.

    The correlation id is taken from the X-Request-ID header or generated,
    and echoed back on the response.
    """

    def __init__(self, app: ASGIApp, exclude_paths: Optional[Iterable[str]] = None) -> None:
        super().__init__(app)
        self.exclude_paths = tuple(exclude_paths or ())

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        event_logger: Optional[EventLogger] = getattr(request.app.state, "event_logger", None)
        if event_logger is None or request.url.path.startswith(self.exclude_paths):
            return await call_next(request)

        info = build_request_info(request)
        event_logger.on_request(
            info,
            {"tags": ["http", "received"], "data": {"id": info.id}},
        )

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            event_logger.on_internal_error(info, exc)
            self._finish(event_logger, info, 500, started)
            raise

        self._finish(event_logger, info, response.status_code, started)
        response.headers[REQUEST_ID_HEADER] = info.id
        return response

    @staticmethod
    def _finish(
        event_logger: EventLogger,
        info: RequestInfo,
        status_code: int,
        started: float,
    ) -> None:
        handler_msec = round((time.perf_counter() - started) * 1000, 3)
        event_logger.on_request(
            info,
            {"tags": ["handler"], "data": {"msec": handler_msec}},
        )

        completed = info.model_copy(update={"status_code": status_code})
        event_logger.on_response(completed)
        event_logger.on_tail(completed)


def build_request_info(request: Request) -> RequestInfo:
    """Describe a Starlette request the way remote hosts do."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    client = request.client
    url = request.url

    return RequestInfo(
        id=request_id[:128],
        path=url.path,
        query=dict(request.query_params),
        method=request.method.lower(),
        http_version=request.scope.get("http_version"),
        headers=dict(request.headers),
        info=RemoteInfo(
            received=now_millis(),
            remote_address=client.host if client else None,
            remote_port=client.port if client else None,
            referrer=request.headers.get("referer"),
            host=request.headers.get("host"),
        ),
        server_info=ServerInfo(
            host=url.hostname,
            port=url.port,
            protocol=url.scheme,
            uri=f"{url.scheme}://{url.netloc}",
        ),
    )
