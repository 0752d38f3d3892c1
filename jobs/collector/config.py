"""Collector runner configuration."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CollectorJobConfig:
    """Configuración del runner del collector."""
    poll_interval_seconds: float
    cleanup_interval_seconds: float
    retention_days: int
    once: bool
