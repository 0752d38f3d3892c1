"""ResilientRequestGateway: punto de entrada para llamadas al control-plane.

Envuelve cada llamada con la política de retry y, en lecturas, con el
fallback al snapshot cache:

- Lectura OK       -> refresca SnapshotCache, CacheStatus = fresh
- Lectura FAILED   -> transitorio: snapshot si existe (CacheStatus = degraded),
                      si no, el error upstream original. Fatal: error tal cual.
- Escritura FAILED -> error tal cual. Nunca se sirve una escritura desde cache.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from .controlplane.gateway import ControlPlaneGateway
from .core.domain.unit_state import UnitState
from .resilience.cache_status import CacheStatus
from .prometheus import GATEWAY_REQUESTS
from .resilience.errors import CacheMissError, StorageError, TransientUpstreamError, UpstreamError
from .resilience.retry import RetryExecutor
from .storage.snapshot_cache import SnapshotCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

TEMPLATES_COLLECTION = "templates"


@dataclass(frozen=True)
class GatewayResult(Generic[T]):
    """Valor retornado al caller y si proviene del cache."""
    value: T
    cached: bool = False


class ResilientRequestGateway:
    """Acceso resiliente al control-plane.

    Puede invocarse concurrentemente desde muchos callers; las esperas
    de retry solo suspenden al request que las produce.
    """

    def __init__(
        self,
        upstream: ControlPlaneGateway,
        cache: SnapshotCache,
        cache_status: CacheStatus,
        retry: Optional[RetryExecutor] = None,
    ):
        self._upstream = upstream
        self._cache = cache
        self._status = cache_status
        self._retry = retry or RetryExecutor()

    @property
    def cache_status(self) -> CacheStatus:
        return self._status

    @property
    def retry_stats(self) -> dict:
        return self._retry.stats

    # ------------------------------------------------------------------
    # Lecturas
    # ------------------------------------------------------------------

    def list_units(self) -> GatewayResult[List[UnitState]]:
        def refresh(units: List[UnitState]) -> None:
            self._cache.put_many(units)
            self._cache.reconcile(u.unit_id for u in units)

        def fallback() -> List[UnitState]:
            if not self._cache.has_entries():
                raise CacheMissError("units")
            return self._cache.get_all()

        return self._read("list_units", self._upstream.list_units, refresh, fallback)

    def get_unit(self, unit_id: str) -> GatewayResult[UnitState]:
        unit_id = str(unit_id)

        def fallback() -> UnitState:
            state = self._cache.get(unit_id)
            if state is None:
                raise CacheMissError(f"unit:{unit_id}")
            return state

        return self._read(
            f"get_unit:{unit_id}",
            lambda: self._upstream.get_unit(unit_id),
            lambda state: self._cache.put(unit_id, state),
            fallback,
        )

    def list_templates(self) -> GatewayResult[List[Dict[str, Any]]]:
        def fallback() -> List[Dict[str, Any]]:
            cached = self._cache.get_collection(TEMPLATES_COLLECTION)
            if cached is None:
                raise CacheMissError(TEMPLATES_COLLECTION)
            return cached

        return self._read(
            "list_templates",
            self._upstream.list_templates,
            lambda templates: self._cache.put_collection(TEMPLATES_COLLECTION, templates),
            fallback,
        )

    def _read(
        self,
        operation: str,
        call: Callable[[], T],
        refresh: Callable[[T], None],
        fallback: Callable[[], T],
    ) -> GatewayResult[T]:
        try:
            value = self._retry.execute(call, operation=operation)
        except TransientUpstreamError as err:
            try:
                cached = fallback()
            except CacheMissError as miss:
                logger.warning("CACHE_MISS op=%s key=%s upstream_err=%s", operation, miss.key, err)
                GATEWAY_REQUESTS.labels(kind="read", result="failed").inc()
                raise err
            except StorageError:
                logger.exception("CACHE_READ_FAILED op=%s", operation)
                GATEWAY_REQUESTS.labels(kind="read", result="failed").inc()
                raise err

            self._status.mark_degraded()
            GATEWAY_REQUESTS.labels(kind="read", result="cached").inc()
            logger.info("SERVING_FROM_CACHE op=%s upstream_err=%s", operation, err)
            return GatewayResult(cached, cached=True)
        except UpstreamError:
            GATEWAY_REQUESTS.labels(kind="read", result="failed").inc()
            raise

        try:
            refresh(value)
        except StorageError as e:
            # El valor fresco se entrega igual; solo se pierde el snapshot.
            logger.error("CACHE_REFRESH_FAILED op=%s err=%s", operation, e)

        self._status.mark_fresh()
        GATEWAY_REQUESTS.labels(kind="read", result="fresh").inc()
        return GatewayResult(value, cached=False)

    # ------------------------------------------------------------------
    # Escrituras
    # ------------------------------------------------------------------

    def start_unit(self, unit_id: str) -> GatewayResult[None]:
        return self._write(f"start_unit:{unit_id}", lambda: self._upstream.start_unit(str(unit_id)))

    def stop_unit(self, unit_id: str) -> GatewayResult[None]:
        return self._write(f"stop_unit:{unit_id}", lambda: self._upstream.stop_unit(str(unit_id)))

    def reboot_unit(self, unit_id: str) -> GatewayResult[None]:
        return self._write(f"reboot_unit:{unit_id}", lambda: self._upstream.reboot_unit(str(unit_id)))

    def create_unit(self, params: Dict[str, Any]) -> GatewayResult[Any]:
        return self._write("create_unit", lambda: self._upstream.create_unit(params))

    def delete_unit(self, unit_id: str) -> GatewayResult[None]:
        unit_id = str(unit_id)
        result = self._write(f"delete_unit:{unit_id}", lambda: self._upstream.delete_unit(unit_id))
        try:
            self._cache.mark_deleted(unit_id)
        except StorageError as e:
            logger.error("CACHE_TOMBSTONE_FAILED unit_id=%s err=%s", unit_id, e)
        return result

    def _write(self, operation: str, call: Callable[[], T]) -> GatewayResult[T]:
        try:
            value = self._retry.execute(call, operation=operation)
        except UpstreamError:
            GATEWAY_REQUESTS.labels(kind="write", result="failed").inc()
            raise

        GATEWAY_REQUESTS.labels(kind="write", result="fresh").inc()
        self._status.mark_fresh()
        return GatewayResult(value, cached=False)
