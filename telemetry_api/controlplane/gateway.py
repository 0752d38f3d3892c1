"""Contrato del cliente de control-plane consumido por el núcleo."""

from __future__ import annotations

from typing import Any, Dict, List, Protocol

from ..core.domain.unit_state import UnitState


class ControlPlaneGateway(Protocol):
    """Cliente capaz de listar unidades y su uso de recursos.

    El núcleo lo trata como una dependencia poco confiable: puede fallar
    entera o por llamada, y puede ser lenta.
    """

    def list_units(self) -> List[UnitState]:
        ...

    def get_unit(self, unit_id: str) -> UnitState:
        ...

    def start_unit(self, unit_id: str) -> None:
        ...

    def stop_unit(self, unit_id: str) -> None:
        ...

    def reboot_unit(self, unit_id: str) -> None:
        ...

    def delete_unit(self, unit_id: str) -> None:
        ...

    def create_unit(self, params: Dict[str, Any]) -> Any:
        ...

    def list_templates(self) -> List[Dict[str, Any]]:
        ...
