"""Acceso al control-plane externo."""

from .client import ControlPlaneClient
from .gateway import ControlPlaneGateway

__all__ = ["ControlPlaneClient", "ControlPlaneGateway"]
