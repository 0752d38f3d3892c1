"""Métricas Prometheus del collector y del gateway resiliente."""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

COLLECTOR_PASSES = Counter(
    "telemetry_collector_passes_total",
    "Collection passes by result",
    ["result"],  # ok, failed, skipped
)
COLLECTOR_SAMPLES_WRITTEN = Counter(
    "telemetry_collector_samples_written_total",
    "Samples persisted by the collector",
)
CLEANUP_DELETED = Counter(
    "telemetry_cleanup_deleted_total",
    "Samples removed by the retention sweep",
)
GATEWAY_REQUESTS = Counter(
    "telemetry_gateway_requests_total",
    "Control-plane calls through the resilient gateway",
    ["kind", "result"],  # kind: read|write; result: fresh|cached|failed
)
CACHE_DEGRADED = Gauge(
    "telemetry_cache_degraded",
    "1 while reads are being served from the snapshot cache",
)


def render_latest() -> tuple[bytes, str]:
    """Payload de exposición y su content-type."""
    return generate_latest(), CONTENT_TYPE_LATEST
