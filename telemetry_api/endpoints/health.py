"""Health and readiness endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from ..prometheus import render_latest
from ..resilience.errors import StorageError
from ..services import ServiceContainer
from .deps import get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    """Liveness probe: always returns ok if process is running."""
    return {"status": "ok"}


@router.get("/ready")
def ready(services: ServiceContainer = Depends(get_services)):
    """Readiness probe: verifica que los almacenes locales respondan.

    No consulta al control-plane: el servicio sigue listo en modo
    degradado mientras pueda servir desde cache.
    """
    try:
        services.metric_store.count()
        services.snapshot_cache.has_entries()
    except StorageError:
        logger.exception("Readiness check failed")
        raise HTTPException(status_code=503, detail="not ready")

    return {
        "status": "ready",
        "degraded": services.cache_status.degraded,
        "collector_running": services.collector.running,
    }


@router.get("/metrics")
def metrics():
    """Exposición Prometheus de contadores del collector y del gateway."""
    payload, content_type = render_latest()
    return Response(content=payload, media_type=content_type)
