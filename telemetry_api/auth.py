"""Autenticación por API Key para el API de telemetría.

La key esperada vive en el ServiceContainer (``Settings.api_key``), así
que la app y sus tests comparten una sola fuente de configuración.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Header, HTTPException, Request

logger = logging.getLogger(__name__)


def require_api_key(
    request: Request,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> None:
    """Valida el header X-API-Key contra la key configurada.

    Sin key configurada el acceso queda abierto (modo dev), salvo en
    producción, donde responde 500 por mala configuración.
    """
    services = request.app.state.services

    if not services.api_key:
        if services.production:
            logger.error("AUTH_MISCONFIGURED reason=api_key_unset environment=production")
            raise HTTPException(status_code=500, detail="Server misconfiguration: API key not set")
        return

    if not x_api_key:
        raise HTTPException(status_code=401, detail="API key required")

    if not hmac.compare_digest(x_api_key.encode(), services.api_key.encode()):
        logger.warning("AUTH_REJECTED path=%s", request.url.path)
        raise HTTPException(status_code=401, detail="Invalid API key")
