"""Collector: polling periódico del control-plane hacia el MetricSeriesStore.

Características:
- Una pasada inmediata al arrancar y luego cada ``poll_interval`` segundos
- Una sola llamada masiva ``list_units()`` por pasada; si falla, la pasada
  se abandona sin escrituras parciales
- Todas las muestras de una pasada comparten timestamp y se escriben en un
  único lote
- Barrido de retención en un ciclo independiente (diario por defecto)
- Como máximo una pasada de cada ciclo en vuelo: una pasada pedida
  mientras la anterior corre se omite y se cuenta
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from .controlplane.gateway import ControlPlaneGateway
from .core.domain.sample import Sample, truncate_to_second
from .prometheus import CLEANUP_DELETED, COLLECTOR_PASSES, COLLECTOR_SAMPLES_WRITTEN
from .resilience.errors import StorageError
from .storage.metric_store import MetricSeriesStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Collector:
    """Tarea de fondo singleton que persiste muestras de todas las unidades."""

    DEFAULT_POLL_INTERVAL = 30.0  # segundos
    DEFAULT_CLEANUP_INTERVAL = 86400.0  # segundos (diario)
    DEFAULT_RETENTION_DAYS = 30
    STOP_JOIN_TIMEOUT = 30.0

    def __init__(
        self,
        control_plane: ControlPlaneGateway,
        store: MetricSeriesStore,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        clock: Optional[Clock] = None,
    ):
        """Inicializa el collector.

        Args:
            control_plane: Cliente del control-plane (sin retry: una pasada
                fallida simplemente espera al siguiente tick)
            store: Almacén de series temporales
            poll_interval: Segundos entre pasadas de recolección
            cleanup_interval: Segundos entre barridos de retención
            retention_days: Ventana de retención en días
            clock: Reloj inyectable para el timestamp de las muestras
        """
        self._control_plane = control_plane
        self._store = store
        self._poll_interval = float(poll_interval)
        self._cleanup_interval = float(cleanup_interval)
        self._retention_days = int(retention_days)
        self._clock = clock or _utc_now

        self._stop_event = threading.Event()
        self._collect_slot = threading.Lock()
        self._cleanup_slot = threading.Lock()
        self._threads_lock = threading.Lock()
        self._collect_thread: Optional[threading.Thread] = None
        self._cleanup_thread: Optional[threading.Thread] = None

        # Métricas
        self._stats_lock = threading.Lock()
        self._passes_run = 0
        self._passes_skipped = 0
        self._passes_failed = 0
        self._samples_written = 0
        self._last_pass_ms: Optional[float] = None
        self._last_pass_at: Optional[datetime] = None
        self._cleanups_run = 0
        self._cleanups_skipped = 0
        self._cleanups_failed = 0
        self._last_cleanup_deleted: Optional[int] = None

    @property
    def running(self) -> bool:
        with self._threads_lock:
            return self._collect_thread is not None and self._collect_thread.is_alive()

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Arranca el ciclo de recolección y el de limpieza."""
        with self._threads_lock:
            if self._collect_thread is not None and self._collect_thread.is_alive():
                return

            self._stop_event.clear()
            self._collect_thread = threading.Thread(
                target=self._collect_loop, name="telemetry-collector", daemon=True
            )
            self._collect_thread.start()

        logger.info(
            "[COLLECTOR] Started poll_interval=%.1fs retention_days=%d",
            self._poll_interval, self._retention_days,
        )
        self.run_cleanup(self._retention_days)

    def run_cleanup(self, retention_days: Optional[int] = None) -> None:
        """Arranca el ciclo de retención: un barrido ya y luego uno por intervalo."""
        if retention_days is not None:
            self._retention_days = int(retention_days)

        with self._threads_lock:
            if self._cleanup_thread is not None and self._cleanup_thread.is_alive():
                return

            self._cleanup_thread = threading.Thread(
                target=self._cleanup_loop, name="telemetry-cleanup", daemon=True
            )
            self._cleanup_thread.start()

        logger.info(
            "[COLLECTOR] Cleanup cycle started interval=%.0fs retention_days=%d",
            self._cleanup_interval, self._retention_days,
        )

    def stop(self) -> None:
        """Cancela ambos ciclos. Las pasadas en vuelo terminan. Idempotente."""
        self._stop_event.set()

        with self._threads_lock:
            threads = [t for t in (self._collect_thread, self._cleanup_thread) if t is not None]
            self._collect_thread = None
            self._cleanup_thread = None

        for thread in threads:
            if thread is not threading.current_thread():
                thread.join(timeout=self.STOP_JOIN_TIMEOUT)

        if threads:
            stats = self.get_stats()
            logger.info(
                "[COLLECTOR] Stopped passes=%d skipped=%d failed=%d samples=%d",
                stats["passes_run"], stats["passes_skipped"],
                stats["passes_failed"], stats["samples_written"],
            )

    def _collect_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.collect_once()
            except Exception:
                # Un error inesperado no debe matar el ciclo: se espera al siguiente tick
                with self._stats_lock:
                    self._passes_run += 1
                    self._passes_failed += 1
                COLLECTOR_PASSES.labels(result="failed").inc()
                logger.exception("COLLECT_PASS_CRASHED")
            if self._stop_event.wait(self._poll_interval):
                break

    def _cleanup_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.cleanup_once()
            except Exception:
                with self._stats_lock:
                    self._cleanups_run += 1
                    self._cleanups_failed += 1
                logger.exception("CLEANUP_CRASHED retention_days=%d", self._retention_days)
            if self._stop_event.wait(self._cleanup_interval):
                break

    # ------------------------------------------------------------------
    # Recolección
    # ------------------------------------------------------------------

    def collect_once(self) -> Optional[int]:
        """Ejecuta una pasada de recolección.

        Returns:
            Muestras escritas, o None si la pasada se omitió porque otra
            seguía en curso
        """
        if not self._collect_slot.acquire(blocking=False):
            with self._stats_lock:
                self._passes_skipped += 1
            COLLECTOR_PASSES.labels(result="skipped").inc()
            logger.warning("COLLECT_SKIPPED reason=previous_pass_in_flight")
            return None

        try:
            return self._collect_pass()
        finally:
            self._collect_slot.release()

    def _collect_pass(self) -> int:
        started = time.monotonic()

        try:
            units = self._control_plane.list_units()
        except Exception as e:
            with self._stats_lock:
                self._passes_run += 1
                self._passes_failed += 1
            COLLECTOR_PASSES.labels(result="failed").inc()
            logger.error("COLLECT_LIST_FAILED err=%s", e)
            return 0

        if not units:
            with self._stats_lock:
                self._passes_run += 1
            COLLECTOR_PASSES.labels(result="ok").inc()
            logger.debug("COLLECT_PASS units=0")
            return 0

        timestamp = truncate_to_second(self._clock())
        samples = [unit.to_sample(timestamp) for unit in units]

        try:
            written = self._store.append(samples)
        except StorageError as e:
            with self._stats_lock:
                self._passes_run += 1
                self._passes_failed += 1
            COLLECTOR_PASSES.labels(result="failed").inc()
            logger.error("COLLECT_STORE_FAILED units=%d err=%s", len(samples), e)
            return 0

        elapsed_ms = (time.monotonic() - started) * 1000
        with self._stats_lock:
            self._passes_run += 1
            self._samples_written += written
            self._last_pass_ms = elapsed_ms
            self._last_pass_at = timestamp
        COLLECTOR_PASSES.labels(result="ok").inc()
        COLLECTOR_SAMPLES_WRITTEN.inc(written)

        logger.info("COLLECT_PASS units=%d written=%d ms=%.1f", len(units), written, elapsed_ms)
        return written

    def collect_for_unit(self, unit_id: str) -> Sample:
        """Recolecta y persiste una sola unidad, a demanda.

        No usa el slot del ciclo programado: puede correr en paralelo con
        una pasada. Los errores se propagan al caller.
        """
        state = self._control_plane.get_unit(str(unit_id))
        sample = state.to_sample(self._clock())
        self._store.append([sample])

        with self._stats_lock:
            self._samples_written += 1
        COLLECTOR_SAMPLES_WRITTEN.inc()

        logger.debug("COLLECT_UNIT unit_id=%s ts=%s", sample.unit_id, sample.timestamp.isoformat())
        return sample

    # ------------------------------------------------------------------
    # Retención
    # ------------------------------------------------------------------

    def cleanup_once(self, retention_days: Optional[int] = None) -> Optional[int]:
        """Ejecuta un barrido de retención.

        Returns:
            Filas eliminadas, o None si se omitió o falló
        """
        days = self._retention_days if retention_days is None else int(retention_days)

        if not self._cleanup_slot.acquire(blocking=False):
            with self._stats_lock:
                self._cleanups_skipped += 1
            logger.warning("CLEANUP_SKIPPED reason=previous_sweep_in_flight")
            return None

        try:
            deleted = self._store.prune(days, now=self._clock())
        except StorageError as e:
            with self._stats_lock:
                self._cleanups_run += 1
                self._cleanups_failed += 1
            logger.error("CLEANUP_FAILED retention_days=%d err=%s", days, e)
            return None
        finally:
            self._cleanup_slot.release()

        with self._stats_lock:
            self._cleanups_run += 1
            self._last_cleanup_deleted = deleted
        CLEANUP_DELETED.inc(deleted)

        logger.info("CLEANUP_DONE retention_days=%d deleted=%d", days, deleted)
        return deleted

    def get_stats(self) -> dict:
        """Retorna estadísticas del collector."""
        with self._stats_lock:
            return {
                "running": self.running,
                "poll_interval": self._poll_interval,
                "cleanup_interval": self._cleanup_interval,
                "retention_days": self._retention_days,
                "passes_run": self._passes_run,
                "passes_skipped": self._passes_skipped,
                "passes_failed": self._passes_failed,
                "samples_written": self._samples_written,
                "last_pass_ms": self._last_pass_ms,
                "last_pass_at": self._last_pass_at.isoformat() if self._last_pass_at else None,
                "cleanups_run": self._cleanups_run,
                "cleanups_skipped": self._cleanups_skipped,
                "cleanups_failed": self._cleanups_failed,
                "last_cleanup_deleted": self._last_cleanup_deleted,
            }
