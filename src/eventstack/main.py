"""
Main FastAPI application entry point.

This module sets up the FastAPI app with middleware, routes, exception
handlers and the lifespan that starts and drains the event pipeline.
"""

import logging
import os
import platform
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import CollectorRegistry

from . import __version__
from .api import (
    EventCaptureMiddleware,
    admin_router,
    events_router,
    healthz_router,
    metrics_router,
)
from .config import Settings, get_settings
from .core.event_logger import EventLogger
from .core.exceptions import EventStackException
from .core.health import HealthChecker
from .core.metrics import MetricsCollector
from .core.sink import BulkSink, ElasticsearchSink


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging for the application."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )

    # Silence the verbose watchfiles logger
    logging.getLogger("watchfiles").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _host_info() -> Dict[str, Any]:
    """Host OS details logged once at startup."""
    info: Dict[str, Any] = {
        "hostname": platform.node(),
        "platform": platform.platform(),
        "python": platform.python_version(),
        "cpus": os.cpu_count(),
    }
    if hasattr(os, "getloadavg"):
        info["load_average"] = [round(load, 2) for load in os.getloadavg()]
    return info


def create_lifespan_handler(settings: Settings, sink: Optional[BulkSink] = None) -> Any:
    """Create a lifespan handler with access to settings."""
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        FastAPI lifespan context manager.

        Starts the sink and flush scheduler; on shutdown drains what is
        still buffered before closing the sink.
        """
        logger = structlog.get_logger(__name__)
        logger.info("Starting EventStack service", version=app.version)
        logger.info(
            "Event logger options",
            sink=settings.sink.model_dump(),
            buffer=settings.buffer.model_dump(),
            policy=settings.policy.model_dump(),
            capture=settings.capture.model_dump(),
        )
        logger.info("Host information", **_host_info())

        metrics_collector = MetricsCollector(CollectorRegistry())
        app.state.metrics = metrics_collector

        event_sink = sink if sink is not None else ElasticsearchSink(settings.sink)
        app.state.sink = event_sink
        await event_sink.start()

        event_logger = EventLogger(settings, event_sink, metrics=metrics_collector)
        app.state.event_logger = event_logger
        await event_logger.start()

        app.state.health_checker = HealthChecker(event_sink, event_logger.scheduler)

        try:
            logger.info("EventStack service started successfully")
            yield
        finally:
            logger.info("Shutting down EventStack service")

            await event_logger.stop()
            await event_sink.stop()
            app.state.event_logger = None

            logger.info("EventStack service shutdown complete")

    return lifespan


async def eventstack_exception_handler(request: Request, exc: EventStackException) -> JSONResponse:
    """Handle custom EventStack exceptions."""
    logger = structlog.get_logger(__name__)
    logger.error(
        "EventStack exception occurred",
        error=str(exc),
        status_code=exc.status_code,
        path=request.url.path,
        method=request.method,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": str(exc),
            "details": exc.details,
        },
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render body validation failures as 400 validation_error."""
    logger = structlog.get_logger(__name__)
    logger.warning(
        "Invalid notification body",
        path=request.url.path,
        errors=len(exc.errors()),
    )

    return JSONResponse(
        status_code=400,
        content={
            "error": "validation_error",
            "message": "Request body failed validation",
            "details": {"errors": [
                {"loc": ".".join(str(part) for part in error["loc"]), "msg": error["msg"]}
                for error in exc.errors()
            ]},
        },
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = structlog.get_logger(__name__)
    logger.error(
        "Unexpected exception occurred",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
        },
    )


def create_app(settings: Optional[Settings] = None, sink: Optional[BulkSink] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to run with; loaded from config.yaml and the
            environment when omitted
        sink: Bulk sink to write to; an ElasticsearchSink when omitted

    Raises:
        ConfigurationError: if the settings or the policy are malformed
    """
    if settings is None:
        settings = get_settings()

    configure_logging(settings.log_level)

    # Fail before serving anything if the policy is malformed
    settings.policy.to_policy()

    app = FastAPI(
        title="EventStack",
        description="Request lifecycle events → Elasticsearch",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=create_lifespan_handler(settings, sink),
    )
    app.state.settings = settings

    if settings.capture.enabled:
        app.add_middleware(
            EventCaptureMiddleware,
            exclude_paths=settings.capture.exclude_paths,
        )

    app.add_exception_handler(EventStackException, eventstack_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(events_router, prefix="/v1", tags=["events"])
    app.include_router(admin_router, prefix="/v1", tags=["admin"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(healthz_router, tags=["health"])

    @app.get("/", include_in_schema=False)
    async def root() -> Dict[str, str]:
        """Root endpoint with service information."""
        return {
            "service": "EventStack",
            "version": app.version,
            "description": "Request lifecycle events → Elasticsearch",
            "docs": "/docs",
        }

    return app
