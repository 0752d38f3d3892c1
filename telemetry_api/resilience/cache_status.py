"""Estado global "sirviendo desde cache" con suscriptores.

Objeto explícito con alcance de proceso: se construye una vez y se
inyecta en el gateway y en la capa HTTP. Solo el ResilientRequestGateway
lo muta; cualquiera puede leerlo o suscribirse.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

CacheStatusListener = Callable[[bool], None]


@dataclass(frozen=True)
class CacheStatusSnapshot:
    """Valor consistente de CacheStatus en un instante."""
    degraded: bool
    last_fresh_at: Optional[datetime]

    def to_dict(self) -> dict:
        return {
            "degraded": self.degraded,
            "last_fresh_at": self.last_fresh_at.isoformat() if self.last_fresh_at else None,
        }


class CacheStatus:
    """Flag degraded/fresh con notificación de transiciones.

    Las notificaciones solo se emiten cuando el valor cambia y siempre
    entregan el valor actual. Las transiciones se serializan, de modo
    que los suscriptores ven los cambios en orden.
    """

    def __init__(self) -> None:
        self._degraded = False
        self._last_fresh_at: Optional[datetime] = None
        self._listeners: List[CacheStatusListener] = []
        self._lock = threading.Lock()
        self._transition_lock = threading.RLock()

    @property
    def degraded(self) -> bool:
        with self._lock:
            return self._degraded

    def snapshot(self) -> CacheStatusSnapshot:
        with self._lock:
            return CacheStatusSnapshot(self._degraded, self._last_fresh_at)

    def subscribe(self, listener: CacheStatusListener) -> Callable[[], None]:
        """Registra un listener. Retorna la función para desuscribirse."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def mark_fresh(self) -> None:
        """Confirma datos frescos del upstream."""
        self._transition(False)

    def mark_degraded(self) -> None:
        """Se está sirviendo desde cache."""
        self._transition(True)

    def _transition(self, degraded: bool) -> None:
        with self._transition_lock:
            with self._lock:
                if not degraded:
                    self._last_fresh_at = datetime.now(timezone.utc)
                if self._degraded == degraded:
                    return
                self._degraded = degraded
                listeners = list(self._listeners)

            logger.warning(
                "CACHE_STATUS %s -> %s",
                "fresh" if degraded else "degraded",
                "degraded" if degraded else "fresh",
            )
            for listener in listeners:
                try:
                    listener(degraded)
                except Exception:
                    logger.exception("CACHE_STATUS listener failed")
