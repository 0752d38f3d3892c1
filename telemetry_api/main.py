from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from common.config import get_settings

from .endpoints import cache_status_router, health_router, metrics_router, units_router
from .endpoints.deps import CACHE_STATUS_HEADER
from .resilience.errors import FatalUpstreamError, StorageError, TransientUpstreamError
from .services import ServiceContainer, build_services

logger = logging.getLogger(__name__)


def _fatal_status(exc: FatalUpstreamError) -> int:
    # 4xx del upstream se propagan tal cual; cualquier otro fatal es 502
    if exc.status_code is not None and 400 <= exc.status_code < 500:
        return exc.status_code
    return 502


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": message},
        headers={CACHE_STATUS_HEADER: "MISS"},
    )


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """Crea la app FastAPI.

    Args:
        services: Servicios ya construidos (tests). Si es None se construyen
            desde el entorno al arrancar y se cierran al apagar.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        if owned:
            settings = get_settings()
            logging.basicConfig(
                level=getattr(logging, settings.log_level, logging.INFO),
                format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            )
            container = build_services(settings)
        else:
            container = services
        app.state.services = container
        container.start()
        logger.info("[APP] Telemetry API started")
        try:
            yield
        finally:
            if owned:
                container.close()
            else:
                container.collector.stop()
            logger.info("[APP] Telemetry API stopped")

    app = FastAPI(title="Unit Telemetry Service", version="0.1.0", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    @app.middleware("http")
    async def cache_status_header(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault(CACHE_STATUS_HEADER, "MISS")
        return response

    @app.exception_handler(FatalUpstreamError)
    async def fatal_upstream_handler(request: Request, exc: FatalUpstreamError):
        logger.warning("HTTP_UPSTREAM_FATAL path=%s status=%s err=%s", request.url.path, exc.status_code, exc)
        return _error_response(_fatal_status(exc), str(exc))

    @app.exception_handler(TransientUpstreamError)
    async def transient_upstream_handler(request: Request, exc: TransientUpstreamError):
        logger.warning("HTTP_UPSTREAM_UNAVAILABLE path=%s err=%s", request.url.path, exc)
        return _error_response(503, "control-plane unavailable and no cached data")

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error("HTTP_STORAGE_ERROR path=%s err=%s", request.url.path, exc)
        # No se exponen detalles del almacén al cliente
        return _error_response(500, "storage error")

    app.include_router(health_router)
    app.include_router(cache_status_router)
    app.include_router(units_router)
    app.include_router(metrics_router)

    return app


app = create_app()
