"""Modelo de dominio para muestras de telemetría por unidad."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class UnitStatus(str, Enum):
    """Estado de ejecución de una unidad."""
    RUNNING = "running"
    STOPPED = "stopped"

    @classmethod
    def normalize(cls, raw: Optional[str]) -> "UnitStatus":
        # Cualquier estado distinto de "running" se guarda como detenido.
        if raw is not None and str(raw).strip().lower() == cls.RUNNING.value:
            return cls.RUNNING
        return cls.STOPPED


def to_epoch_seconds(ts: datetime) -> int:
    """Convierte un datetime a segundos epoch (resolución de segundo)."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return int(ts.timestamp())


def from_epoch_seconds(value: int) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def truncate_to_second(ts: datetime) -> datetime:
    return from_epoch_seconds(to_epoch_seconds(ts))


@dataclass(frozen=True)
class Sample:
    """Una medición de una unidad en un instante.

    Inmutable: se crea en cada pasada del collector y solo la elimina
    el barrido de retención.
    """
    unit_id: str
    timestamp: datetime
    status: UnitStatus
    uptime_seconds: int = 0
    cpu_fraction: float = 0.0
    mem_used_bytes: int = 0
    mem_total_bytes: int = 0
    disk_used_bytes: int = 0
    disk_total_bytes: int = 0
    net_in_bytes_per_interval: int = 0
    net_out_bytes_per_interval: int = 0

    @property
    def key(self) -> tuple[str, int]:
        """Clave única (unit_id, ts) usada para deduplicar."""
        return self.unit_id, to_epoch_seconds(self.timestamp)

    def to_row(self) -> dict:
        return {
            "unit_id": self.unit_id,
            "ts": to_epoch_seconds(self.timestamp),
            "status": self.status.value,
            "uptime": int(self.uptime_seconds),
            "cpu_fraction": float(self.cpu_fraction),
            "mem_used": int(self.mem_used_bytes),
            "mem_total": int(self.mem_total_bytes),
            "disk_used": int(self.disk_used_bytes),
            "disk_total": int(self.disk_total_bytes),
            "net_in": int(self.net_in_bytes_per_interval),
            "net_out": int(self.net_out_bytes_per_interval),
        }

    @classmethod
    def from_row(cls, row) -> "Sample":
        return cls(
            unit_id=str(row.unit_id),
            timestamp=from_epoch_seconds(row.ts),
            status=UnitStatus.normalize(row.status),
            uptime_seconds=int(row.uptime or 0),
            cpu_fraction=float(row.cpu_fraction or 0.0),
            mem_used_bytes=int(row.mem_used or 0),
            mem_total_bytes=int(row.mem_total or 0),
            disk_used_bytes=int(row.disk_used or 0),
            disk_total_bytes=int(row.disk_total or 0),
            net_in_bytes_per_interval=int(row.net_in or 0),
            net_out_bytes_per_interval=int(row.net_out or 0),
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["status"] = self.status.value
        return data


@dataclass(frozen=True)
class Summary:
    """Agregados de una ventana de muestras.

    Con cero muestras los promedios/máximos quedan en None y los
    totales en 0.
    """
    unit_id: str
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    avg_cpu_fraction: Optional[float]
    max_cpu_fraction: Optional[float]
    avg_mem_usage_pct: Optional[float]
    max_mem_used_bytes: Optional[int]
    avg_disk_usage_pct: Optional[float]
    total_net_in_bytes: int
    total_net_out_bytes: int
    data_points: int

    @classmethod
    def empty(cls, unit_id: str) -> "Summary":
        return cls(
            unit_id=unit_id,
            start_time=None,
            end_time=None,
            avg_cpu_fraction=None,
            max_cpu_fraction=None,
            avg_mem_usage_pct=None,
            max_mem_used_bytes=None,
            avg_disk_usage_pct=None,
            total_net_in_bytes=0,
            total_net_out_bytes=0,
            data_points=0,
        )
