from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _default_data_dir() -> Path:
    return Path(os.getenv("TELEMETRY_DATA_DIR", "/var/lib/unit-telemetry"))


def _default_env_file() -> str:
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / ".env")


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return float(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    controlplane_url: str
    controlplane_node: str
    controlplane_token_id: str
    controlplane_token_secret: str
    controlplane_insecure: bool
    controlplane_timeout_seconds: float

    metrics_db_url: str
    cache_db_url: str

    poll_interval_seconds: float
    cleanup_interval_seconds: float
    retention_days: int
    prune_batch_size: int
    collector_enabled: bool

    retry_max_retries: int
    retry_base_delay_seconds: float
    retry_max_delay_seconds: Optional[float]

    log_level: str

    api_key: Optional[str]
    environment: str


def get_settings() -> Settings:
    # Carga el .env (si existe) sin pisar variables reales del entorno.
    env_file = os.getenv("TELEMETRY_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    data_dir = _default_data_dir()

    return Settings(
        controlplane_url=os.getenv("CONTROLPLANE_URL", "https://127.0.0.1:8006"),
        controlplane_node=os.getenv("CONTROLPLANE_NODE", "pve"),
        controlplane_token_id=os.getenv("CONTROLPLANE_TOKEN_ID", ""),
        controlplane_token_secret=os.getenv("CONTROLPLANE_TOKEN_SECRET", ""),
        controlplane_insecure=_env_bool("CONTROLPLANE_INSECURE", False),
        controlplane_timeout_seconds=float(os.getenv("CONTROLPLANE_TIMEOUT_SECONDS", "10")),
        metrics_db_url=os.getenv("METRICS_DB_URL", f"sqlite:///{(data_dir / 'analytics.db').as_posix()}"),
        cache_db_url=os.getenv("CACHE_DB_URL", f"sqlite:///{(data_dir / 'cache.db').as_posix()}"),
        poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", "30")),
        cleanup_interval_seconds=float(os.getenv("CLEANUP_INTERVAL_SECONDS", "86400")),
        retention_days=int(os.getenv("RETENTION_DAYS", "30")),
        prune_batch_size=int(os.getenv("PRUNE_BATCH_SIZE", "5000")),
        collector_enabled=_env_bool("COLLECTOR_ENABLED", True),
        retry_max_retries=int(os.getenv("RETRY_MAX_RETRIES", "3")),
        retry_base_delay_seconds=float(os.getenv("RETRY_BASE_DELAY_SECONDS", "1.0")),
        retry_max_delay_seconds=_env_float("RETRY_MAX_DELAY_SECONDS"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        api_key=os.getenv("TELEMETRY_API_KEY") or None,
        environment=os.getenv("ENVIRONMENT", "development").strip().lower(),
    )
