"""
API endpoints package.

Contains FastAPI routers for all service endpoints:
- /v1/events/* - Request lifecycle notifications
- /v1/admin/flush, /v1/admin/correlations - Manual drain and open requests
- /metrics - Prometheus metrics
- /healthz, /readyz - Health checks
"""
from .admin import router as admin_router
from .events import router as events_router
from .healthz import router as healthz_router
from .metrics import router as metrics_router
from .middleware import EventCaptureMiddleware

__all__ = [
    "EventCaptureMiddleware",
    "admin_router",
    "events_router",
    "healthz_router",
    "metrics_router",
]
