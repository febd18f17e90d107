"""API routers."""

from gridcell.routers.health import router as health_router
from gridcell.routers.metrics import router as metrics_router

__all__ = [
    "health_router",
    "metrics_router",
]
