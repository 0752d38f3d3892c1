"""Construcción y ciclo de vida de los servicios del proceso.

Todas las dependencias (stores, CacheStatus, gateway, collector) se
crean una vez aquí y se inyectan; no hay singletons globales ocultos.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from common.config import Settings, get_settings
from common.db import get_engine

from .collector import Collector
from .controlplane.client import ControlPlaneClient
from .controlplane.gateway import ControlPlaneGateway
from .gateway import ResilientRequestGateway
from .metrics.service import MetricsReadService
from .prometheus import CACHE_DEGRADED
from .resilience.cache_status import CacheStatus
from .resilience.retry import RetryConfig, RetryExecutor
from .storage.metric_store import MetricSeriesStore
from .storage.snapshot_cache import SnapshotCache

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    metric_store: MetricSeriesStore
    snapshot_cache: SnapshotCache
    cache_status: CacheStatus
    control_plane: ControlPlaneGateway
    gateway: ResilientRequestGateway
    collector: Collector
    metrics: MetricsReadService
    collector_enabled: bool = True
    api_key: Optional[str] = None
    production: bool = False

    def start(self) -> None:
        if self.collector_enabled:
            self.collector.start()
        else:
            logger.info("[SERVICES] Collector disabled (COLLECTOR_ENABLED=false)")
        if not self.api_key and not self.production:
            logger.warning("[SECURITY WARNING] TELEMETRY_API_KEY not set - allowing unauthenticated access (DEV ONLY)")

    def close(self) -> None:
        self.collector.stop()
        close = getattr(self.control_plane, "close", None)
        if callable(close):
            close()


def build_services(
    settings: Optional[Settings] = None,
    control_plane: Optional[ControlPlaneGateway] = None,
) -> ServiceContainer:
    """Arma el grafo de servicios a partir de la configuración.

    Args:
        settings: Configuración; si es None se lee del entorno
        control_plane: Cliente alternativo (tests); por defecto el HTTP
    """
    settings = settings or get_settings()

    metric_store = MetricSeriesStore(
        get_engine(settings.metrics_db_url),
        prune_batch_size=settings.prune_batch_size,
    )
    metric_store.init_schema()

    snapshot_cache = SnapshotCache(get_engine(settings.cache_db_url))
    snapshot_cache.init_schema()

    if control_plane is None:
        control_plane = ControlPlaneClient(
            host=settings.controlplane_url,
            node=settings.controlplane_node,
            token_id=settings.controlplane_token_id,
            token_secret=settings.controlplane_token_secret,
            insecure=settings.controlplane_insecure,
            timeout_seconds=settings.controlplane_timeout_seconds,
        )

    cache_status = CacheStatus()
    cache_status.subscribe(lambda degraded: CACHE_DEGRADED.set(1 if degraded else 0))
    retry = RetryExecutor(
        RetryConfig(
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
        )
    )

    gateway = ResilientRequestGateway(control_plane, snapshot_cache, cache_status, retry)
    collector = Collector(
        control_plane,
        metric_store,
        poll_interval=settings.poll_interval_seconds,
        cleanup_interval=settings.cleanup_interval_seconds,
        retention_days=settings.retention_days,
    )

    logger.info(
        "[SERVICES] Built node=%s poll_interval=%.0fs retention_days=%d",
        settings.controlplane_node, settings.poll_interval_seconds, settings.retention_days,
    )

    return ServiceContainer(
        metric_store=metric_store,
        snapshot_cache=snapshot_cache,
        cache_status=cache_status,
        control_plane=control_plane,
        gateway=gateway,
        collector=collector,
        metrics=MetricsReadService(metric_store),
        collector_enabled=settings.collector_enabled,
        api_key=settings.api_key,
        production=settings.environment == "production",
    )
