"""Persistencia: series temporales y snapshot cache."""

from .metric_store import MetricSeriesStore
from .snapshot_cache import SnapshotCache

__all__ = ["MetricSeriesStore", "SnapshotCache"]
