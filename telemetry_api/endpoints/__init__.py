"""Módulo de endpoints HTTP.

Contiene los endpoints del API de telemetría organizados por función.
"""

from .cache_status import router as cache_status_router
from .health import router as health_router
from .metrics import router as metrics_router
from .units import router as units_router

__all__ = [
    "cache_status_router",
    "health_router",
    "metrics_router",
    "units_router",
]
