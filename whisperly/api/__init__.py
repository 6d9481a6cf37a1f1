from __future__ import annotations

from .routes_health import router as health_router
from .routes_metrics import router as metrics_router
from .routes_overlay import router as overlay_router

__all__ = [
    "health_router",
    "metrics_router",
    "overlay_router",
]
