"""CLI entry point for the telemetry collector."""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from dataclasses import replace
from typing import List, Optional

from common.config import get_settings
from telemetry_api.services import ServiceContainer, build_services

from .config import CollectorJobConfig

logger = logging.getLogger(__name__)


def run(services: ServiceContainer, cfg: CollectorJobConfig, stop_event: Optional[threading.Event] = None) -> None:
    """Ejecuta el collector hasta que se pida parar.

    Con ``cfg.once`` hace una sola pasada de recolección más un barrido
    de retención y retorna.
    """
    collector = services.collector

    if cfg.once:
        written = collector.collect_once()
        deleted = collector.cleanup_once(cfg.retention_days)
        logger.info("Pasada única completada: written=%s deleted=%s", written, deleted)
        return

    stop_event = stop_event or threading.Event()
    collector.start()
    try:
        stop_event.wait()
    finally:
        collector.stop()


def main(argv: Optional[List[str]] = None) -> None:
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    p = argparse.ArgumentParser(description="Unit telemetry collector (polling + retention)")
    p.add_argument("--interval", type=float, default=settings.poll_interval_seconds,
                   help="seconds between collection passes")
    p.add_argument("--cleanup-interval", type=float, default=settings.cleanup_interval_seconds,
                   help="seconds between retention sweeps")
    p.add_argument("--retention-days", type=int, default=settings.retention_days)
    p.add_argument("--once", action="store_true", help="run a single pass + sweep and exit")
    args = p.parse_args(argv)

    cfg = CollectorJobConfig(
        poll_interval_seconds=args.interval,
        cleanup_interval_seconds=args.cleanup_interval,
        retention_days=args.retention_days,
        once=bool(args.once),
    )

    settings = replace(
        settings,
        poll_interval_seconds=cfg.poll_interval_seconds,
        cleanup_interval_seconds=cfg.cleanup_interval_seconds,
        retention_days=cfg.retention_days,
    )

    logger.info("Collector runner started")
    logger.info(
        "Config: interval=%.1fs cleanup_interval=%.0fs retention_days=%d once=%s",
        cfg.poll_interval_seconds, cfg.cleanup_interval_seconds, cfg.retention_days, cfg.once,
    )

    services = build_services(settings)
    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        logger.info("Señal %d recibida, deteniendo collector...", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        run(services, cfg, stop_event)
    finally:
        services.close()


if __name__ == "__main__":
    main()
