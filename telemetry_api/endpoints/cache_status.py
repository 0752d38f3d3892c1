"""Estado del cache de snapshots (sirviendo datos frescos o degradados)."""

from fastapi import APIRouter, Depends, Response

from ..schemas import CacheStatusOut
from ..services import ServiceContainer
from .deps import CACHE_STATUS_HEADER, get_services

router = APIRouter(tags=["cache"])


@router.get("/cache/status", response_model=CacheStatusOut)
def cache_status(response: Response, services: ServiceContainer = Depends(get_services)):
    snapshot = services.cache_status.snapshot()
    response.headers[CACHE_STATUS_HEADER] = "HIT" if snapshot.degraded else "MISS"
    return CacheStatusOut(
        degraded=snapshot.degraded,
        last_fresh_at=snapshot.last_fresh_at,
        cache_age_seconds=services.snapshot_cache.cache_age_seconds(),
    )
