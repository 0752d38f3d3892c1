"""Fixtures compartidas: almacenes sobre SQLite temporal y unidades de prueba."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from common.db import get_engine
from telemetry_api.core.domain.unit_state import UnitState
from telemetry_api.resilience.cache_status import CacheStatus
from telemetry_api.storage.metric_store import MetricSeriesStore
from telemetry_api.storage.snapshot_cache import SnapshotCache

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_unit(unit_id="100", status="running", cpu=0.25, **overrides) -> UnitState:
    """UnitState de prueba con valores razonables."""
    fields = dict(
        unit_id=str(unit_id),
        status=status,
        name=f"ct-{unit_id}",
        uptime=3600,
        cpu_fraction=cpu,
        mem_used=512 * 1024 * 1024,
        mem_total=1024 * 1024 * 1024,
        disk_used=2 * 1024 ** 3,
        disk_total=8 * 1024 ** 3,
    )
    fields.update(overrides)
    return UnitState(**fields)


@pytest.fixture
def metrics_engine(tmp_path):
    engine = get_engine(f"sqlite:///{(tmp_path / 'analytics.db').as_posix()}")
    yield engine
    engine.dispose()


@pytest.fixture
def cache_engine(tmp_path):
    engine = get_engine(f"sqlite:///{(tmp_path / 'cache.db').as_posix()}")
    yield engine
    engine.dispose()


@pytest.fixture
def metric_store(metrics_engine) -> MetricSeriesStore:
    store = MetricSeriesStore(metrics_engine, prune_batch_size=2)
    store.init_schema()
    return store


@pytest.fixture
def snapshot_cache(cache_engine) -> SnapshotCache:
    cache = SnapshotCache(cache_engine)
    cache.init_schema()
    return cache


@pytest.fixture
def cache_status() -> CacheStatus:
    return CacheStatus()


@pytest.fixture
def control_plane():
    """Mock del control-plane: por defecto sin unidades."""
    cp = MagicMock()
    cp.list_units = MagicMock(return_value=[])
    cp.list_templates = MagicMock(return_value=[])
    return cp
