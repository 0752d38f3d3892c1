from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SampleOut(BaseModel):
    unit_id: str
    timestamp: datetime
    status: str
    uptime_seconds: int = 0
    # Fracción 0..1, sin escalar
    cpu_fraction: float = 0.0
    mem_used_bytes: int = 0
    mem_total_bytes: int = 0
    disk_used_bytes: int = 0
    disk_total_bytes: int = 0
    net_in_bytes_per_interval: int = 0
    net_out_bytes_per_interval: int = 0


class SummaryOut(BaseModel):
    unit_id: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    avg_cpu_fraction: Optional[float] = None
    max_cpu_fraction: Optional[float] = None
    avg_mem_usage_pct: Optional[float] = None
    max_mem_used_bytes: Optional[int] = None
    avg_disk_usage_pct: Optional[float] = None
    total_net_in_bytes: int = 0
    total_net_out_bytes: int = 0
    data_points: int = 0


class AnalyticsStatsOut(BaseModel):
    enabled: bool = True
    total_metrics: int = 0
    units_tracked: int = 0
    latest_sample_at: Optional[str] = None
    collector: Optional[Dict[str, Any]] = None


class UnitOut(BaseModel):
    unit_id: str
    name: str = ""
    status: str
    uptime: int = 0
    cpu_fraction: float = 0.0
    mem_used: int = 0
    mem_total: int = 0
    disk_used: int = 0
    disk_total: int = 0
    node: Optional[str] = None
    template: Optional[str] = None
    ip_address: Optional[str] = None


class UnitCreateIn(BaseModel):
    # Parámetros de creación tal como los espera el control-plane
    params: Dict[str, Any] = Field(default_factory=dict)


class ActionResult(BaseModel):
    unit_id: Optional[str] = None
    action: str
    status: str = "ok"
    result: Optional[Any] = None


class CacheStatusOut(BaseModel):
    degraded: bool
    last_fresh_at: Optional[datetime] = None
    cache_age_seconds: Optional[int] = None


class TemplatesOut(BaseModel):
    templates: List[Dict[str, Any]] = Field(default_factory=list)
