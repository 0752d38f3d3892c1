"""Servicio de lectura de series de métricas.

Capa delgada sobre MetricSeriesStore: normaliza ventanas y límites
recibidos del caller y arma las estadísticas globales.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from ..core.domain.sample import Sample, Summary
from ..storage.metric_store import MetricSeriesStore

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(hours=24)
DEFAULT_LIMIT = MetricSeriesStore.DEFAULT_QUERY_LIMIT

# Cotas superiores: más allá de esto el cálculo de ``now - window`` desborda
MAX_WINDOW = timedelta(days=3650)
MAX_LIMIT = 100_000


def window_from_hours(hours: Optional[int]) -> Optional[timedelta]:
    """Convierte el parámetro ``hours`` del request en una ventana acotada.

    None o <= 0 devuelven None (el servicio aplica el default).
    """
    if hours is None or hours <= 0:
        return None
    max_hours = int(MAX_WINDOW.total_seconds() // 3600)
    return timedelta(hours=min(int(hours), max_hours))


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MetricsReadService:
    """Camino de lectura: get_metrics / get_summary / get_stats."""

    def __init__(self, store: MetricSeriesStore, clock: Optional[Callable[[], datetime]] = None):
        self._store = store
        self._clock = clock or _utc_now

    @staticmethod
    def _normalize_window(window: Optional[timedelta]) -> timedelta:
        # Ventana nula o negativa => default de 24h
        if window is None or window.total_seconds() <= 0:
            return DEFAULT_WINDOW
        return min(window, MAX_WINDOW)

    @staticmethod
    def _normalize_limit(limit: Optional[int]) -> int:
        if limit is None or limit <= 0:
            return DEFAULT_LIMIT
        return min(int(limit), MAX_LIMIT)

    def get_metrics(
        self,
        unit_id: str,
        window: Optional[timedelta] = None,
        limit: Optional[int] = None,
    ) -> List[Sample]:
        """Muestras de la ventana, de la más vieja a la más nueva."""
        now = self._clock()
        since = now - self._normalize_window(window)
        samples = self._store.query(unit_id, since, limit=self._normalize_limit(limit), until=now)
        logger.debug("METRICS_READ unit_id=%s points=%d", unit_id, len(samples))
        return samples

    def get_summary(self, unit_id: str, window: Optional[timedelta] = None) -> Summary:
        return self._store.summarize(unit_id, self._normalize_window(window), now=self._clock())

    def get_stats(self) -> dict:
        """Estadísticas globales del almacén."""
        latest = self._store.latest_all()
        newest = max((s.timestamp for s in latest.values()), default=None)
        return {
            "enabled": True,
            "total_metrics": self._store.count(),
            "units_tracked": len(latest),
            "latest_sample_at": newest.isoformat() if newest else None,
        }
