from __future__ import annotations

from fastapi import Request, Response

from ..gateway import GatewayResult
from ..services import ServiceContainer

CACHE_STATUS_HEADER = "X-Cache-Status"


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def stamp_cache_header(response: Response, result: GatewayResult) -> None:
    response.headers[CACHE_STATUS_HEADER] = "HIT" if result.cached else "MISS"
