"""Almacén de series temporales de muestras por unidad.

Características:
- Append por lotes todo-o-nada (una transacción por lote)
- Deduplicación por (unit_id, ts): la última escritura gana
- Consultas siempre ordenadas de la más vieja a la más nueva
- Prune por lotes cortos para no bloquear la ingesta
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..core.domain.sample import Sample, Summary, from_epoch_seconds, to_epoch_seconds
from ..resilience.errors import StorageError

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS metrics (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        unit_id TEXT NOT NULL,
        ts INTEGER NOT NULL,
        status TEXT NOT NULL,
        uptime INTEGER,
        cpu_fraction REAL,
        mem_used INTEGER,
        mem_total INTEGER,
        disk_used INTEGER,
        disk_total INTEGER,
        net_in INTEGER,
        net_out INTEGER,
        UNIQUE(unit_id, ts)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_metrics_ts ON metrics(ts)",
    "CREATE INDEX IF NOT EXISTS idx_metrics_unit_ts ON metrics(unit_id, ts)",
)

_COLUMNS = (
    "unit_id, ts, status, uptime, cpu_fraction, mem_used, mem_total, "
    "disk_used, disk_total, net_in, net_out"
)

_UPSERT = text(
    f"""
    INSERT INTO metrics ({_COLUMNS})
    VALUES (:unit_id, :ts, :status, :uptime, :cpu_fraction, :mem_used, :mem_total,
            :disk_used, :disk_total, :net_in, :net_out)
    ON CONFLICT(unit_id, ts) DO UPDATE SET
        status = excluded.status,
        uptime = excluded.uptime,
        cpu_fraction = excluded.cpu_fraction,
        mem_used = excluded.mem_used,
        mem_total = excluded.mem_total,
        disk_used = excluded.disk_used,
        disk_total = excluded.disk_total,
        net_in = excluded.net_in,
        net_out = excluded.net_out
    """
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MetricSeriesStore:
    """Almacén durable de Samples con política de retención."""

    DEFAULT_QUERY_LIMIT = 1000
    DEFAULT_PRUNE_BATCH_SIZE = 5000
    EXPORT_LIMIT = 10_000

    def __init__(self, engine: Engine, prune_batch_size: int = DEFAULT_PRUNE_BATCH_SIZE):
        self._engine = engine
        self._prune_batch_size = max(1, int(prune_batch_size))

    def init_schema(self) -> None:
        """Crea tabla e índices. Idempotente."""
        try:
            with self._engine.begin() as conn:
                for statement in _SCHEMA:
                    conn.execute(text(statement))
        except SQLAlchemyError as e:
            raise StorageError(f"failed to create metrics schema: {e}") from e
        logger.info("[METRICS] Schema OK")

    def append(self, samples: Iterable[Sample]) -> int:
        """Inserta un lote de muestras en una sola transacción.

        Dentro del lote, colisiones de (unit_id, ts) se deduplican y gana
        la última. Si algo falla no se commitea nada.

        Returns:
            Número de filas escritas (tras deduplicar)

        Raises:
            StorageError: si la escritura falla
        """
        rows_by_key: Dict[tuple, dict] = {}
        for sample in samples:
            rows_by_key[sample.key] = sample.to_row()

        if not rows_by_key:
            return 0

        rows = list(rows_by_key.values())
        try:
            with self._engine.begin() as conn:
                conn.execute(_UPSERT, rows)
        except SQLAlchemyError as e:
            logger.error("METRICS_APPEND_FAILED rows=%d err=%s", len(rows), e)
            raise StorageError(f"failed to append {len(rows)} samples: {e}") from e

        logger.debug("METRICS_APPEND rows=%d", len(rows))
        return len(rows)

    def query(
        self,
        unit_id: str,
        since: datetime,
        limit: int = DEFAULT_QUERY_LIMIT,
        until: Optional[datetime] = None,
    ) -> List[Sample]:
        """Muestras de una unidad desde ``since``.

        Devuelve las ``limit`` más recientes, SIEMPRE ordenadas de la más
        vieja a la más nueva (orden de gráfico). Sin datos => lista vacía.
        """
        params = {
            "unit_id": str(unit_id),
            "since": to_epoch_seconds(since),
            "until": to_epoch_seconds(until) if until is not None else None,
            "limit": max(0, int(limit)),
        }
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(
                    text(
                        f"""
                        SELECT {_COLUMNS} FROM (
                            SELECT {_COLUMNS}
                            FROM metrics
                            WHERE unit_id = :unit_id
                              AND ts >= :since
                              AND (:until IS NULL OR ts <= :until)
                            ORDER BY ts DESC
                            LIMIT :limit
                        ) AS recent
                        ORDER BY ts ASC
                        """
                    ),
                    params,
                ).fetchall()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to query samples for unit {unit_id}: {e}") from e

        return [Sample.from_row(row) for row in rows]

    def summarize(
        self,
        unit_id: str,
        window: timedelta,
        now: Optional[datetime] = None,
    ) -> Summary:
        """Agregados calculados sobre las muestras de la ventana.

        Tolera cero muestras: retorna Summary.empty().
        """
        end = now or _utc_now()
        start = end - window
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    text(
                        """
                        SELECT
                            MIN(ts) AS start_ts,
                            MAX(ts) AS end_ts,
                            AVG(cpu_fraction) AS avg_cpu,
                            MAX(cpu_fraction) AS max_cpu,
                            AVG(CASE WHEN mem_total > 0
                                THEN CAST(mem_used AS REAL) / mem_total * 100 END) AS avg_mem_pct,
                            MAX(mem_used) AS max_mem_used,
                            AVG(CASE WHEN disk_total > 0
                                THEN CAST(disk_used AS REAL) / disk_total * 100 END) AS avg_disk_pct,
                            COALESCE(SUM(net_in), 0) AS total_net_in,
                            COALESCE(SUM(net_out), 0) AS total_net_out,
                            COUNT(*) AS data_points
                        FROM metrics
                        WHERE unit_id = :unit_id AND ts BETWEEN :start AND :end
                        """
                    ),
                    {
                        "unit_id": str(unit_id),
                        "start": to_epoch_seconds(start),
                        "end": to_epoch_seconds(end),
                    },
                ).one()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to summarize unit {unit_id}: {e}") from e

        if not row.data_points:
            return Summary.empty(str(unit_id))

        return Summary(
            unit_id=str(unit_id),
            start_time=from_epoch_seconds(row.start_ts),
            end_time=from_epoch_seconds(row.end_ts),
            avg_cpu_fraction=float(row.avg_cpu) if row.avg_cpu is not None else None,
            max_cpu_fraction=float(row.max_cpu) if row.max_cpu is not None else None,
            avg_mem_usage_pct=float(row.avg_mem_pct) if row.avg_mem_pct is not None else None,
            max_mem_used_bytes=int(row.max_mem_used) if row.max_mem_used is not None else None,
            avg_disk_usage_pct=float(row.avg_disk_pct) if row.avg_disk_pct is not None else None,
            total_net_in_bytes=int(row.total_net_in),
            total_net_out_bytes=int(row.total_net_out),
            data_points=int(row.data_points),
        )

    def prune(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """Elimina muestras con antigüedad >= ventana de retención.

        Borra en lotes de ``prune_batch_size`` filas, cada uno en su propia
        transacción corta, para que ``append`` concurrente espere como
        máximo un lote.

        Returns:
            Cantidad de filas eliminadas
        """
        cutoff = (now or _utc_now()) - timedelta(days=retention_days)
        cutoff_ts = to_epoch_seconds(cutoff)
        total_deleted = 0

        while True:
            try:
                with self._engine.begin() as conn:
                    result = conn.execute(
                        text(
                            """
                            DELETE FROM metrics
                            WHERE id IN (
                                SELECT id FROM metrics
                                WHERE ts <= :cutoff
                                LIMIT :batch_size
                            )
                            """
                        ),
                        {"cutoff": cutoff_ts, "batch_size": self._prune_batch_size},
                    )
                    deleted = result.rowcount or 0
            except SQLAlchemyError as e:
                raise StorageError(
                    f"failed to prune samples older than {retention_days} days "
                    f"(deleted {total_deleted} before failure): {e}"
                ) from e

            total_deleted += deleted
            if deleted < self._prune_batch_size:
                break

        if total_deleted > 0:
            logger.info(
                "METRICS_PRUNE deleted=%d retention_days=%d cutoff=%s",
                total_deleted, retention_days, cutoff.isoformat(),
            )
        return total_deleted

    def latest(self, unit_id: str) -> Optional[Sample]:
        """Última muestra de una unidad, o None."""
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    text(
                        f"""
                        SELECT {_COLUMNS} FROM metrics
                        WHERE unit_id = :unit_id
                        ORDER BY ts DESC
                        LIMIT 1
                        """
                    ),
                    {"unit_id": str(unit_id)},
                ).fetchone()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to read latest sample for unit {unit_id}: {e}") from e

        return Sample.from_row(row) if row else None

    def latest_all(self) -> Dict[str, Sample]:
        """Última muestra de cada unidad conocida."""
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(
                    text(
                        """
                        SELECT m.unit_id, m.ts, m.status, m.uptime, m.cpu_fraction,
                               m.mem_used, m.mem_total, m.disk_used, m.disk_total,
                               m.net_in, m.net_out
                        FROM metrics m
                        INNER JOIN (
                            SELECT unit_id, MAX(ts) AS max_ts
                            FROM metrics
                            GROUP BY unit_id
                        ) latest ON m.unit_id = latest.unit_id AND m.ts = latest.max_ts
                        """
                    )
                ).fetchall()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to read latest samples: {e}") from e

        return {str(row.unit_id): Sample.from_row(row) for row in rows}

    def count(self, unit_id: Optional[str] = None) -> int:
        """Cantidad de muestras almacenadas (total o por unidad)."""
        try:
            with self._engine.connect() as conn:
                if unit_id is None:
                    value = conn.execute(text("SELECT COUNT(*) FROM metrics")).scalar()
                else:
                    value = conn.execute(
                        text("SELECT COUNT(*) FROM metrics WHERE unit_id = :unit_id"),
                        {"unit_id": str(unit_id)},
                    ).scalar()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to count samples: {e}") from e

        return int(value or 0)

    def export_json(self, unit_id: str, since: datetime, until: Optional[datetime] = None) -> str:
        """Exporta las muestras de una unidad como JSON (máx. 10k filas)."""
        samples = self.query(unit_id, since, limit=self.EXPORT_LIMIT, until=until)
        return json.dumps([s.to_dict() for s in samples], indent=2)
