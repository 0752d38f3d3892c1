"""Snapshot cache: último estado conocido por unidad.

FUENTE ÚNICA DE VERDAD para el "mejor estado conocido" cuando el
control-plane no responde.

Reglas:
- Una fila por unit_id, sobrescrita en cada lectura exitosa.
- Nunca expira sola.
- Solo se retira con un tombstone explícito (deleted_at), nunca por
  ausencia silenciosa. Un put posterior del mismo id lo revive.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Iterable, List, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..core.domain.unit_state import UnitState
from ..resilience.errors import StorageError

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS unit_snapshots (
        unit_id TEXT PRIMARY KEY,
        data TEXT NOT NULL,
        updated_at INTEGER NOT NULL,
        deleted_at INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS collection_snapshots (
        name TEXT PRIMARY KEY,
        data TEXT NOT NULL,
        updated_at INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_unit_snapshots_updated ON unit_snapshots(updated_at)",
)

_UPSERT_UNIT = text(
    """
    INSERT INTO unit_snapshots (unit_id, data, updated_at, deleted_at)
    VALUES (:unit_id, :data, :updated_at, NULL)
    ON CONFLICT(unit_id) DO UPDATE SET
        data = excluded.data,
        updated_at = excluded.updated_at,
        deleted_at = NULL
    """
)


def _now_ts() -> int:
    return int(time.time())


class SnapshotCache:
    """Cache durable de último estado conocido por unidad."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def init_schema(self) -> None:
        try:
            with self._engine.begin() as conn:
                for statement in _SCHEMA:
                    conn.execute(text(statement))
        except SQLAlchemyError as e:
            raise StorageError(f"failed to create snapshot schema: {e}") from e
        logger.info("[CACHE] Schema OK")

    def put(self, unit_id: str, state: UnitState) -> None:
        """Sobrescribe el snapshot de una unidad (y limpia su tombstone)."""
        self.put_many([state] if state.unit_id == str(unit_id) else [_rekey(state, unit_id)])

    def put_many(self, states: Iterable[UnitState]) -> int:
        """Sobrescribe varios snapshots en una sola transacción."""
        now = _now_ts()
        rows = [
            {"unit_id": s.unit_id, "data": json.dumps(s.to_dict()), "updated_at": now}
            for s in states
        ]
        if not rows:
            return 0
        try:
            with self._engine.begin() as conn:
                conn.execute(_UPSERT_UNIT, rows)
        except SQLAlchemyError as e:
            raise StorageError(f"failed to cache {len(rows)} unit snapshots: {e}") from e
        return len(rows)

    def get(self, unit_id: str) -> Optional[UnitState]:
        """Último estado guardado o None. Nunca sintetiza datos."""
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    text(
                        """
                        SELECT data FROM unit_snapshots
                        WHERE unit_id = :unit_id AND deleted_at IS NULL
                        """
                    ),
                    {"unit_id": str(unit_id)},
                ).fetchone()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to read snapshot for unit {unit_id}: {e}") from e

        if not row:
            return None
        return _decode(row.data)

    def get_all(self) -> List[UnitState]:
        """Todos los snapshots vigentes (sin tombstones), ordenados por id."""
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(
                    text(
                        """
                        SELECT unit_id, data FROM unit_snapshots
                        WHERE deleted_at IS NULL
                        ORDER BY unit_id
                        """
                    )
                ).fetchall()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to read unit snapshots: {e}") from e

        states: List[UnitState] = []
        for row in rows:
            state = _decode(row.data)
            if state is not None:
                states.append(state)
        return states

    def mark_deleted(self, unit_id: str) -> bool:
        """Tombstone de una unidad borrada upstream.

        El snapshot sigue existiendo físicamente pero get()/get_all() lo
        omiten aunque el upstream esté caído.

        Returns:
            True si había una entrada para marcar
        """
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    text(
                        """
                        UPDATE unit_snapshots
                        SET deleted_at = :now
                        WHERE unit_id = :unit_id AND deleted_at IS NULL
                        """
                    ),
                    {"unit_id": str(unit_id), "now": _now_ts()},
                )
                marked = (result.rowcount or 0) > 0
        except SQLAlchemyError as e:
            raise StorageError(f"failed to tombstone unit {unit_id}: {e}") from e

        if marked:
            logger.info("CACHE_TOMBSTONE unit_id=%s", unit_id)
        return marked

    def reconcile(self, present_ids: Iterable[str]) -> int:
        """Marca como borradas las unidades que un listado completo ya no trae.

        Solo debe llamarse con el resultado de un listado exitoso y
        autoritativo del control-plane.
        """
        ids = sorted({str(i) for i in present_ids})
        params: dict = {"now": _now_ts()}
        if ids:
            statement = text(
                """
                UPDATE unit_snapshots
                SET deleted_at = :now
                WHERE deleted_at IS NULL AND unit_id NOT IN :ids
                """
            ).bindparams(bindparam("ids", expanding=True))
            params["ids"] = ids
        else:
            statement = text(
                "UPDATE unit_snapshots SET deleted_at = :now WHERE deleted_at IS NULL"
            )

        try:
            with self._engine.begin() as conn:
                result = conn.execute(statement, params)
                marked = result.rowcount or 0
        except SQLAlchemyError as e:
            raise StorageError(f"failed to reconcile unit snapshots: {e}") from e

        if marked:
            logger.info("CACHE_RECONCILE tombstoned=%d", marked)
        return marked

    def has_entries(self) -> bool:
        """True si alguna vez se guardó un snapshot (incluye tombstones)."""
        try:
            with self._engine.connect() as conn:
                row = conn.execute(text("SELECT 1 FROM unit_snapshots LIMIT 1")).fetchone()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to inspect unit snapshots: {e}") from e
        return row is not None

    def put_collection(self, name: str, value: Any) -> None:
        """Guarda el último valor conocido de una lectura no-unidad (p.ej. templates)."""
        try:
            with self._engine.begin() as conn:
                conn.execute(
                    text(
                        """
                        INSERT INTO collection_snapshots (name, data, updated_at)
                        VALUES (:name, :data, :updated_at)
                        ON CONFLICT(name) DO UPDATE SET
                            data = excluded.data,
                            updated_at = excluded.updated_at
                        """
                    ),
                    {"name": name, "data": json.dumps(value), "updated_at": _now_ts()},
                )
        except (SQLAlchemyError, TypeError, ValueError) as e:
            raise StorageError(f"failed to cache collection '{name}': {e}") from e

    def get_collection(self, name: str) -> Optional[Any]:
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    text("SELECT data FROM collection_snapshots WHERE name = :name"),
                    {"name": name},
                ).fetchone()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to read collection '{name}': {e}") from e

        if not row:
            return None
        return json.loads(row.data)

    def cache_age_seconds(self) -> Optional[int]:
        """Segundos desde la última actualización de cualquier unidad."""
        try:
            with self._engine.connect() as conn:
                last = conn.execute(text("SELECT MAX(updated_at) FROM unit_snapshots")).scalar()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to read cache age: {e}") from e

        if last is None:
            return None
        return max(0, _now_ts() - int(last))

    def clear(self) -> None:
        """Vacía todo el cache (solo dev/test)."""
        logger.warning("Clearing snapshot cache - all cached state will be lost!")
        try:
            with self._engine.begin() as conn:
                conn.execute(text("DELETE FROM unit_snapshots"))
                conn.execute(text("DELETE FROM collection_snapshots"))
        except SQLAlchemyError as e:
            raise StorageError(f"failed to clear snapshot cache: {e}") from e


def _rekey(state: UnitState, unit_id: str) -> UnitState:
    data = state.to_dict()
    data["unit_id"] = str(unit_id)
    return UnitState.from_dict(data)


def _decode(raw: str) -> Optional[UnitState]:
    try:
        return UnitState.from_dict(json.loads(raw))
    except (ValueError, KeyError, TypeError) as e:
        logger.error("CACHE_DECODE_FAILED err=%s", e)
        return None
