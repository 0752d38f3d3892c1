"""Lectura de métricas persistidas por el collector."""

from .service import MetricsReadService

__all__ = ["MetricsReadService"]
