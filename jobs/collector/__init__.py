"""Runner standalone del collector de telemetría.

Modules:
- config: CollectorJobConfig dataclass
- cli: CLI entry point (main)
"""

from .config import CollectorJobConfig
from .cli import main, run

__all__ = ["CollectorJobConfig", "main", "run"]
