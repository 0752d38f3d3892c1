"""Cliente HTTP del control-plane basado en requests.

Cada llamada lleva un timeout fijo, independiente del backoff de retry,
para que un transporte colgado no bloquee un ciclo de polling. Los
errores se traducen a la taxonomía de resilience.errors; este cliente
NO reintenta: eso es responsabilidad del ResilientRequestGateway.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from ..core.domain.unit_state import UnitState
from ..resilience.errors import (
    FatalUpstreamError,
    TransientUpstreamError,
    error_for_status,
)

logger = logging.getLogger(__name__)

TEMPLATE_STORAGES = ("local", "local-lvm")


def normalize_base_url(host: str) -> str:
    """Normaliza host o URL completa a la raíz del API."""
    host = host.rstrip("/")
    if host.startswith("http://") or host.startswith("https://"):
        return f"{host}/api2/json"
    return f"https://{host}:8006/api2/json"


def _unit_from_payload(data: Dict[str, Any], unit_id: Optional[str] = None) -> UnitState:
    vmid = unit_id if unit_id is not None else data.get("vmid")
    if vmid is None:
        raise FatalUpstreamError("control-plane unit payload without vmid")
    return UnitState(
        unit_id=str(vmid),
        status=str(data.get("status") or "stopped"),
        name=str(data.get("name") or ""),
        uptime=int(data.get("uptime") or 0),
        cpu_fraction=float(data.get("cpu") or 0.0),
        mem_used=int(data.get("mem") or 0),
        mem_total=int(data.get("maxmem") or 0),
        disk_used=int(data.get("disk") or 0),
        disk_total=int(data.get("maxdisk") or 0),
        node=data.get("node"),
        template=data.get("template"),
    )


class ControlPlaneClient:
    """Cliente del API del control-plane para un único nodo."""

    def __init__(
        self,
        host: str,
        node: str,
        token_id: str = "",
        token_secret: str = "",
        insecure: bool = False,
        timeout_seconds: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = normalize_base_url(host)
        self.node = node
        self.timeout_seconds = timeout_seconds

        self._session = session or requests.Session()
        self._session.verify = not insecure
        if token_id:
            self._session.headers["Authorization"] = f"PVEAPIToken={token_id}={token_secret}"

    def close(self) -> None:
        self._session.close()

    def _request(self, method: str, path: str, data: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug("CONTROLPLANE_REQUEST method=%s path=%s", method, path)

        try:
            response = self._session.request(method, url, data=data, timeout=self.timeout_seconds)
        except requests.Timeout as e:
            raise TransientUpstreamError(f"control-plane timeout on {method} {path}: {e}") from e
        except requests.ConnectionError as e:
            raise TransientUpstreamError(f"control-plane unreachable on {method} {path}: {e}") from e
        except requests.RequestException as e:
            raise FatalUpstreamError(f"control-plane request failed on {method} {path}: {e}") from e

        if not response.ok:
            logger.warning(
                "CONTROLPLANE_ERROR method=%s path=%s status=%d",
                method, path, response.status_code,
            )
            raise error_for_status(response.status_code, response.text or "")

        if not response.content:
            return None
        try:
            return response.json().get("data")
        except ValueError as e:
            raise FatalUpstreamError(f"control-plane returned invalid JSON for {path}: {e}") from e

    def list_units(self) -> List[UnitState]:
        data = self._request("GET", f"/nodes/{self.node}/lxc") or []
        units = [_unit_from_payload(item) for item in data]
        logger.debug("CONTROLPLANE_LIST units=%d", len(units))
        return units

    def get_unit(self, unit_id: str) -> UnitState:
        data = self._request("GET", f"/nodes/{self.node}/lxc/{unit_id}/status/current") or {}
        return _unit_from_payload(data, unit_id=str(unit_id))

    def start_unit(self, unit_id: str) -> None:
        self._request("POST", f"/nodes/{self.node}/lxc/{unit_id}/status/start")

    def stop_unit(self, unit_id: str) -> None:
        self._request("POST", f"/nodes/{self.node}/lxc/{unit_id}/status/stop")

    def reboot_unit(self, unit_id: str) -> None:
        self._request("POST", f"/nodes/{self.node}/lxc/{unit_id}/status/reboot")

    def delete_unit(self, unit_id: str) -> None:
        self._request("DELETE", f"/nodes/{self.node}/lxc/{unit_id}")

    def create_unit(self, params: Dict[str, Any]) -> Any:
        # El API espera application/x-www-form-urlencoded
        return self._request("POST", f"/nodes/{self.node}/lxc", data=params)

    def list_templates(self) -> List[Dict[str, Any]]:
        """Templates de contenedor en los storages conocidos.

        Un storage que falla se omite; si fallan todos, se propaga el
        último error.
        """
        templates: List[Dict[str, Any]] = []
        last_error: Optional[Exception] = None
        succeeded = 0

        for storage in TEMPLATE_STORAGES:
            try:
                items = self._request("GET", f"/nodes/{self.node}/storage/{storage}/content") or []
            except (TransientUpstreamError, FatalUpstreamError) as e:
                logger.warning("CONTROLPLANE_TEMPLATES storage=%s err=%s", storage, e)
                last_error = e
                continue
            succeeded += 1
            templates.extend(item for item in items if item.get("content") == "vztmpl")

        if succeeded == 0 and last_error is not None:
            raise last_error
        return templates
