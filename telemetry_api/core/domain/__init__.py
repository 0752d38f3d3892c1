"""Domain layer - Modelos de telemetría."""

from .sample import Sample, Summary, UnitStatus
from .unit_state import UnitState

__all__ = ["Sample", "Summary", "UnitStatus", "UnitState"]
