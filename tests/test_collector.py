"""Tests del Collector.

Cubre:
1. Pasada de recolección: un lote, timestamp compartido, contadores de red en cero
2. Listado fallido => pasada abandonada sin escrituras
3. Sin solapamiento: una pasada pedida durante otra se omite
4. collect_for_unit concurrente con una pasada programada
5. Ciclo de vida start/stop y barrido de retención
"""

import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from conftest import NOW, make_unit
from telemetry_api.collector import Collector
from telemetry_api.resilience.errors import StorageError, TransientUpstreamError


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def collector(control_plane, metric_store):
    return Collector(control_plane, metric_store, poll_interval=3600, cleanup_interval=3600, clock=lambda: NOW)


# =============================================================================
# PASADA DE RECOLECCIÓN
# =============================================================================

class TestCollectPass:

    def test_writes_one_sample_per_unit(self, collector, control_plane, metric_store):
        control_plane.list_units.return_value = [make_unit("100"), make_unit("200", status="stopped")]

        written = collector.collect_once()

        assert written == 2
        latest = metric_store.latest_all()
        assert set(latest) == {"100", "200"}
        assert latest["100"].timestamp == latest["200"].timestamp == NOW
        assert latest["100"].net_in_bytes_per_interval == 0
        assert latest["100"].net_out_bytes_per_interval == 0

    def test_cpu_fraction_is_not_scaled(self, collector, control_plane, metric_store):
        control_plane.list_units.return_value = [make_unit("100", cpu=0.42)]

        collector.collect_once()

        assert metric_store.latest("100").cpu_fraction == pytest.approx(0.42)

    def test_failed_listing_writes_nothing(self, collector, control_plane, metric_store):
        control_plane.list_units.side_effect = TransientUpstreamError("down")

        assert collector.collect_once() == 0
        assert metric_store.count() == 0
        assert collector.get_stats()["passes_failed"] == 1

    def test_empty_listing_is_noop(self, collector, control_plane, metric_store):
        control_plane.list_units.return_value = []

        assert collector.collect_once() == 0
        assert metric_store.count() == 0
        assert collector.get_stats()["passes_failed"] == 0

    def test_storage_error_is_logged_not_raised(self, control_plane):
        store = MagicMock()
        store.append.side_effect = StorageError("locked")
        control_plane.list_units.return_value = [make_unit("100")]
        collector = Collector(control_plane, store, clock=lambda: NOW)

        assert collector.collect_once() == 0
        assert collector.get_stats()["passes_failed"] == 1

    def test_listing_is_not_retried_within_pass(self, collector, control_plane):
        control_plane.list_units.side_effect = TransientUpstreamError("down")

        collector.collect_once()

        assert control_plane.list_units.call_count == 1


# =============================================================================
# CONCURRENCIA
# =============================================================================

class TestConcurrency:

    def test_overlapping_pass_is_skipped(self, collector, control_plane):
        entered = threading.Event()
        release = threading.Event()

        def slow_listing():
            entered.set()
            release.wait(5)
            return [make_unit("100")]

        control_plane.list_units.side_effect = slow_listing

        worker = threading.Thread(target=collector.collect_once)
        worker.start()
        assert entered.wait(5)

        assert collector.collect_once() is None

        release.set()
        worker.join(5)
        stats = collector.get_stats()
        assert stats["passes_skipped"] == 1
        assert stats["passes_run"] == 1
        assert control_plane.list_units.call_count == 1

    def test_collect_for_unit_during_scheduled_pass(self, control_plane, metric_store):
        entered = threading.Event()
        release = threading.Event()

        def slow_listing():
            entered.set()
            release.wait(5)
            return [make_unit("100")]

        control_plane.list_units.side_effect = slow_listing
        control_plane.get_unit.return_value = make_unit("200", cpu=0.9)
        ticks = iter([NOW, NOW + timedelta(seconds=1)])
        collector = Collector(control_plane, metric_store, clock=lambda: next(ticks))

        worker = threading.Thread(target=collector.collect_once)
        worker.start()
        assert entered.wait(5)

        sample = collector.collect_for_unit("200")
        release.set()
        worker.join(5)

        assert sample.unit_id == "200"
        latest = metric_store.latest_all()
        assert set(latest) == {"100", "200"}
        assert latest["200"].cpu_fraction == pytest.approx(0.9)

    def test_collect_for_unit_propagates_errors(self, collector, control_plane, metric_store):
        control_plane.get_unit.side_effect = TransientUpstreamError("down")

        with pytest.raises(TransientUpstreamError):
            collector.collect_for_unit("100")

        assert metric_store.count() == 0


# =============================================================================
# CICLO DE VIDA
# =============================================================================

class TestLifecycle:

    def test_start_runs_immediate_pass_and_stop_halts(self, collector, control_plane):
        called = threading.Event()
        control_plane.list_units.side_effect = lambda: called.set() or []

        collector.start()
        assert called.wait(5)
        collector.stop()

        assert collector.running is False
        calls = control_plane.list_units.call_count
        time.sleep(0.05)
        assert control_plane.list_units.call_count == calls

    def test_start_is_idempotent(self, collector, control_plane):
        collector.start()
        collector.start()
        assert _wait_until(lambda: control_plane.list_units.call_count >= 1)
        collector.stop()

        assert control_plane.list_units.call_count == 1

    def test_stop_is_idempotent(self, collector):
        collector.stop()
        collector.start()
        collector.stop()
        collector.stop()

        assert collector.running is False

    def test_repeats_on_interval(self, control_plane, metric_store):
        collector = Collector(control_plane, metric_store, poll_interval=0.01, cleanup_interval=3600)

        collector.start()
        assert _wait_until(lambda: control_plane.list_units.call_count >= 3)
        collector.stop()

    def test_start_runs_cleanup_immediately(self, collector, metric_store):
        metric_store.append([make_unit("100").to_sample(NOW - timedelta(days=45))])

        collector.start()
        assert _wait_until(lambda: collector.get_stats()["cleanups_run"] >= 1)
        collector.stop()

        assert metric_store.count() == 0
        assert collector.get_stats()["last_cleanup_deleted"] == 1


class TestCleanup:

    def test_cleanup_once_uses_retention(self, collector, metric_store):
        metric_store.append([
            make_unit("100").to_sample(NOW - timedelta(days=31)),
            make_unit("100").to_sample(NOW - timedelta(days=1)),
        ])

        assert collector.cleanup_once(30) == 1
        assert metric_store.count() == 1

    def test_cleanup_failure_is_logged(self, control_plane):
        store = MagicMock()
        store.prune.side_effect = StorageError("locked")
        collector = Collector(control_plane, store, clock=lambda: NOW)

        assert collector.cleanup_once() is None
        assert collector.get_stats()["cleanups_failed"] == 1


# =============================================================================
# ERRORES INESPERADOS EN LOS CICLOS
# =============================================================================

class TestCycleSurvivesUnexpectedErrors:
    """Un error fuera de la taxonomía no detiene los ciclos de fondo."""

    def test_collect_cycle_keeps_ticking_after_append_crash(self, control_plane):
        store = MagicMock()
        store.append.side_effect = [TypeError("bad row")] + [1] * 1000
        store.prune.return_value = 0
        control_plane.list_units.return_value = [make_unit("100")]
        collector = Collector(control_plane, store, poll_interval=0.01, cleanup_interval=3600, clock=lambda: NOW)

        collector.start()
        try:
            assert _wait_until(lambda: control_plane.list_units.call_count > 2)
        finally:
            collector.stop()

        stats = collector.get_stats()
        assert stats["passes_failed"] == 1
        assert stats["samples_written"] >= 1

    def test_cleanup_cycle_keeps_ticking_after_prune_crash(self, control_plane):
        store = MagicMock()
        store.prune.side_effect = [RuntimeError("driver went away")] + [0] * 1000
        collector = Collector(control_plane, store, cleanup_interval=0.01, clock=lambda: NOW)

        collector.run_cleanup()
        try:
            assert _wait_until(lambda: store.prune.call_count > 2)
        finally:
            collector.stop()

        stats = collector.get_stats()
        assert stats["cleanups_failed"] == 1
        assert stats["last_cleanup_deleted"] == 0
