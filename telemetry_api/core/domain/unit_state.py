"""Vista transitoria del estado de una unidad según el control-plane."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from .sample import Sample, UnitStatus, truncate_to_second


@dataclass(frozen=True)
class UnitState:
    """Estado puntual de una unidad administrada.

    El control-plane es dueño de este dato; aquí solo es input transitorio
    para el collector y para el snapshot cache.
    """
    unit_id: str
    status: str
    name: str = ""
    uptime: int = 0
    cpu_fraction: float = 0.0
    mem_used: int = 0
    mem_total: int = 0
    disk_used: int = 0
    disk_total: int = 0
    node: Optional[str] = None
    template: Optional[str] = None
    ip_address: Optional[str] = None

    def to_sample(self, timestamp: datetime) -> Sample:
        """Construye una Sample con los campos de uso embebidos.

        Los contadores de red quedan en cero: el listado masivo no los
        incluye y no se hace una llamada de detalle por unidad.
        """
        return Sample(
            unit_id=self.unit_id,
            timestamp=truncate_to_second(timestamp),
            status=UnitStatus.normalize(self.status),
            uptime_seconds=int(self.uptime or 0),
            cpu_fraction=float(self.cpu_fraction or 0.0),
            mem_used_bytes=int(self.mem_used or 0),
            mem_total_bytes=int(self.mem_total or 0),
            disk_used_bytes=int(self.disk_used or 0),
            disk_total_bytes=int(self.disk_total or 0),
            net_in_bytes_per_interval=0,
            net_out_bytes_per_interval=0,
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UnitState":
        return cls(
            unit_id=str(data["unit_id"]),
            status=str(data.get("status") or UnitStatus.STOPPED.value),
            name=str(data.get("name") or ""),
            uptime=int(data.get("uptime") or 0),
            cpu_fraction=float(data.get("cpu_fraction") or 0.0),
            mem_used=int(data.get("mem_used") or 0),
            mem_total=int(data.get("mem_total") or 0),
            disk_used=int(data.get("disk_used") or 0),
            disk_total=int(data.get("disk_total") or 0),
            node=data.get("node"),
            template=data.get("template"),
            ip_address=data.get("ip_address"),
        )
