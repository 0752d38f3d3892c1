"""Endpoints de unidades: pass-through al control-plane vía gateway resiliente.

Las lecturas pueden servirse desde el snapshot cache (X-Cache-Status: HIT);
las escrituras nunca.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Response

from ..auth import require_api_key
from ..schemas import ActionResult, TemplatesOut, UnitCreateIn, UnitOut
from ..services import ServiceContainer
from .deps import get_services, stamp_cache_header

logger = logging.getLogger(__name__)

router = APIRouter(tags=["units"], dependencies=[Depends(require_api_key)])


def _record_after_action(services: ServiceContainer, unit_id: str, action: str) -> None:
    # Best-effort: la acción ya se aplicó, una muestra fallida no cambia la respuesta
    try:
        services.collector.collect_for_unit(unit_id)
    except Exception as e:
        logger.warning("COLLECT_AFTER_ACTION_FAILED unit_id=%s action=%s err=%s", unit_id, action, e)


@router.get("/units", response_model=List[UnitOut])
def list_units(response: Response, services: ServiceContainer = Depends(get_services)):
    result = services.gateway.list_units()
    stamp_cache_header(response, result)
    return [UnitOut(**unit.to_dict()) for unit in result.value]


@router.post("/units", response_model=ActionResult)
def create_unit(
    body: UnitCreateIn,
    response: Response,
    services: ServiceContainer = Depends(get_services),
):
    result = services.gateway.create_unit(body.params)
    stamp_cache_header(response, result)
    return ActionResult(action="create", result=result.value)


@router.get("/units/{unit_id}", response_model=UnitOut)
def get_unit(unit_id: str, response: Response, services: ServiceContainer = Depends(get_services)):
    result = services.gateway.get_unit(unit_id)
    stamp_cache_header(response, result)
    return UnitOut(**result.value.to_dict())


@router.post("/units/{unit_id}/start", response_model=ActionResult)
def start_unit(unit_id: str, response: Response, services: ServiceContainer = Depends(get_services)):
    stamp_cache_header(response, services.gateway.start_unit(unit_id))
    _record_after_action(services, unit_id, "start")
    return ActionResult(unit_id=unit_id, action="start")


@router.post("/units/{unit_id}/stop", response_model=ActionResult)
def stop_unit(unit_id: str, response: Response, services: ServiceContainer = Depends(get_services)):
    stamp_cache_header(response, services.gateway.stop_unit(unit_id))
    _record_after_action(services, unit_id, "stop")
    return ActionResult(unit_id=unit_id, action="stop")


@router.post("/units/{unit_id}/reboot", response_model=ActionResult)
def reboot_unit(unit_id: str, response: Response, services: ServiceContainer = Depends(get_services)):
    stamp_cache_header(response, services.gateway.reboot_unit(unit_id))
    _record_after_action(services, unit_id, "reboot")
    return ActionResult(unit_id=unit_id, action="reboot")


@router.delete("/units/{unit_id}", response_model=ActionResult)
def delete_unit(unit_id: str, response: Response, services: ServiceContainer = Depends(get_services)):
    stamp_cache_header(response, services.gateway.delete_unit(unit_id))
    return ActionResult(unit_id=unit_id, action="delete")


@router.get("/templates", response_model=TemplatesOut)
def list_templates(response: Response, services: ServiceContainer = Depends(get_services)):
    result = services.gateway.list_templates()
    stamp_cache_header(response, result)
    return TemplatesOut(templates=result.value)
