"""Tests del ResilientRequestGateway.

Cubre:
1. Lectura exitosa refresca el cache y marca fresh
2. Fallo transitorio con snapshot => valor cacheado, degraded una sola vez
3. Fallo transitorio sin snapshot => error upstream original
4. Fallo fatal => sin fallback
5. Escrituras nunca caen al cache; delete deja tombstone
"""

from unittest.mock import MagicMock

import pytest

from conftest import make_unit
from telemetry_api.gateway import ResilientRequestGateway
from telemetry_api.resilience.errors import FatalUpstreamError, StorageError, TransientUpstreamError
from telemetry_api.resilience.retry import RetryConfig, RetryExecutor


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def gateway(control_plane, snapshot_cache, cache_status, sleeps):
    retry = RetryExecutor(RetryConfig(max_retries=3, base_delay=1.0), sleep=sleeps.append)
    return ResilientRequestGateway(control_plane, snapshot_cache, cache_status, retry)


@pytest.fixture
def status_events(cache_status):
    events = []
    cache_status.subscribe(events.append)
    return events


def _down(status_code=503):
    return TransientUpstreamError("control-plane down", status_code=status_code)


# =============================================================================
# LECTURAS
# =============================================================================

class TestReadSuccess:

    def test_get_unit_refreshes_cache(self, gateway, control_plane, snapshot_cache, cache_status):
        control_plane.get_unit.return_value = make_unit("100", cpu=0.4)

        result = gateway.get_unit("100")

        assert result.cached is False
        assert result.value.cpu_fraction == 0.4
        assert snapshot_cache.get("100").cpu_fraction == 0.4
        assert cache_status.snapshot().last_fresh_at is not None

    def test_list_units_reconciles_cache(self, gateway, control_plane, snapshot_cache):
        snapshot_cache.put_many([make_unit("100"), make_unit("200")])
        control_plane.list_units.return_value = [make_unit("100")]

        result = gateway.list_units()

        assert [u.unit_id for u in result.value] == ["100"]
        assert [u.unit_id for u in snapshot_cache.get_all()] == ["100"]

    def test_transient_then_success_waits_d_2d(self, gateway, control_plane, sleeps):
        control_plane.get_unit.side_effect = [_down(), _down(), make_unit("100")]

        result = gateway.get_unit("100")

        assert result.cached is False
        assert control_plane.get_unit.call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_cache_write_failure_still_returns_fresh_value(self, control_plane, cache_status):
        cache = MagicMock()
        cache.put.side_effect = StorageError("disk full")
        control_plane.get_unit.return_value = make_unit("100")
        gw = ResilientRequestGateway(control_plane, cache, cache_status, RetryExecutor(sleep=lambda _: None))

        result = gw.get_unit("100")

        assert result.cached is False
        assert result.value.unit_id == "100"


class TestReadFallback:

    def test_serves_cached_unit_and_degrades_once(
        self, gateway, control_plane, snapshot_cache, cache_status, status_events
    ):
        snapshot_cache.put("100", make_unit("100", cpu=0.7))
        control_plane.get_unit.side_effect = _down()

        first = gateway.get_unit("100")
        second = gateway.get_unit("100")

        assert first.cached is True and second.cached is True
        assert first.value.cpu_fraction == 0.7
        assert cache_status.degraded is True
        assert status_events == [True]

    def test_recovery_marks_fresh_once(self, gateway, control_plane, snapshot_cache, status_events):
        snapshot_cache.put("100", make_unit("100"))
        control_plane.get_unit.side_effect = _down()
        gateway.get_unit("100")

        control_plane.get_unit.side_effect = None
        control_plane.get_unit.return_value = make_unit("100")
        gateway.get_unit("100")
        gateway.get_unit("100")

        assert status_events == [True, False]

    def test_cache_miss_raises_original_error(self, gateway, control_plane, cache_status):
        original = _down(504)
        control_plane.get_unit.side_effect = original

        with pytest.raises(TransientUpstreamError) as exc_info:
            gateway.get_unit("100")

        assert exc_info.value is original
        assert cache_status.degraded is False

    def test_fatal_error_has_no_fallback(self, gateway, control_plane, snapshot_cache, sleeps):
        snapshot_cache.put("100", make_unit("100"))
        control_plane.get_unit.side_effect = FatalUpstreamError("not found", status_code=404)

        with pytest.raises(FatalUpstreamError):
            gateway.get_unit("100")

        assert control_plane.get_unit.call_count == 1
        assert sleeps == []

    def test_list_units_fallback_omits_tombstones(self, gateway, control_plane, snapshot_cache):
        snapshot_cache.put_many([make_unit("100"), make_unit("200")])
        snapshot_cache.mark_deleted("200")
        control_plane.list_units.side_effect = _down()

        result = gateway.list_units()

        assert result.cached is True
        assert [u.unit_id for u in result.value] == ["100"]

    def test_list_units_fallback_all_deleted_is_empty_hit(self, gateway, control_plane, snapshot_cache):
        snapshot_cache.put("100", make_unit("100"))
        snapshot_cache.mark_deleted("100")
        control_plane.list_units.side_effect = _down()

        result = gateway.list_units()

        assert result.cached is True
        assert result.value == []

    def test_list_units_never_populated_is_miss(self, gateway, control_plane):
        control_plane.list_units.side_effect = _down()

        with pytest.raises(TransientUpstreamError):
            gateway.list_units()

    def test_templates_fallback(self, gateway, control_plane):
        templates = [{"volid": "local:vztmpl/alpine.tar.xz", "content": "vztmpl"}]
        control_plane.list_templates.return_value = templates
        gateway.list_templates()

        control_plane.list_templates.side_effect = _down()
        result = gateway.list_templates()

        assert result.cached is True
        assert result.value == templates


# =============================================================================
# ESCRITURAS
# =============================================================================

class TestWrites:

    def test_write_failure_never_falls_back(self, gateway, control_plane, snapshot_cache, cache_status):
        snapshot_cache.put("100", make_unit("100"))
        control_plane.start_unit.side_effect = _down()

        with pytest.raises(TransientUpstreamError):
            gateway.start_unit("100")

        assert cache_status.degraded is False

    def test_delete_tombstones_unit(self, gateway, control_plane, snapshot_cache):
        snapshot_cache.put_many([make_unit("100"), make_unit("200")])
        control_plane.delete_unit.return_value = None

        result = gateway.delete_unit("100")

        assert result.cached is False
        control_plane.delete_unit.assert_called_once_with("100")
        # Con el upstream caído, la unidad borrada no reaparece
        control_plane.list_units.side_effect = _down()
        assert [u.unit_id for u in gateway.list_units().value] == ["200"]

    def test_failed_delete_keeps_cache_entry(self, gateway, control_plane, snapshot_cache):
        snapshot_cache.put("100", make_unit("100"))
        control_plane.delete_unit.side_effect = FatalUpstreamError("forbidden", status_code=403)

        with pytest.raises(FatalUpstreamError):
            gateway.delete_unit("100")

        assert snapshot_cache.get("100") is not None

    def test_successful_write_marks_fresh(self, gateway, control_plane, snapshot_cache, cache_status):
        snapshot_cache.put("100", make_unit("100"))
        control_plane.get_unit.side_effect = _down()
        gateway.get_unit("100")
        assert cache_status.degraded is True

        gateway.reboot_unit("100")

        assert cache_status.degraded is False
        control_plane.reboot_unit.assert_called_once_with("100")

    def test_create_passes_params(self, gateway, control_plane):
        control_plane.create_unit.return_value = "UPID:pve:0001"

        result = gateway.create_unit({"vmid": 150, "hostname": "web"})

        assert result.value == "UPID:pve:0001"
        control_plane.create_unit.assert_called_once_with({"vmid": 150, "hostname": "web"})
