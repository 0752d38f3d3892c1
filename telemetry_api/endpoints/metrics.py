"""Endpoints de analytics: series, resumen y estadísticas globales.

Se leen del almacén local; nunca tocan al control-plane.
"""

from dataclasses import asdict
from typing import List

from fastapi import APIRouter, Depends, Query

from ..auth import require_api_key
from ..metrics.service import window_from_hours
from ..schemas import AnalyticsStatsOut, SampleOut, SummaryOut
from ..services import ServiceContainer
from .deps import get_services

router = APIRouter(tags=["analytics"], dependencies=[Depends(require_api_key)])


@router.get("/units/{unit_id}/metrics", response_model=List[SampleOut])
def get_unit_metrics(
    unit_id: str,
    hours: int = Query(default=24),
    limit: int = Query(default=1000),
    services: ServiceContainer = Depends(get_services),
):
    # Valores <= 0 caen en los defaults (24h / 1000); los excesivos se acotan
    samples = services.metrics.get_metrics(unit_id, window_from_hours(hours), limit)
    return [SampleOut(**s.to_dict()) for s in samples]


@router.get("/units/{unit_id}/metrics/summary", response_model=SummaryOut)
def get_unit_metrics_summary(
    unit_id: str,
    hours: int = Query(default=24),
    services: ServiceContainer = Depends(get_services),
):
    summary = services.metrics.get_summary(unit_id, window_from_hours(hours))
    return SummaryOut(**asdict(summary))


@router.get("/analytics/stats", response_model=AnalyticsStatsOut)
def get_analytics_stats(services: ServiceContainer = Depends(get_services)):
    stats = services.metrics.get_stats()
    return AnalyticsStatsOut(**stats, collector=services.collector.get_stats())
