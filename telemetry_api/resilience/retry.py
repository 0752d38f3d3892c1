"""Retry con backoff exponencial para llamadas al control-plane.

Centraliza la política de reintentos como una máquina de estados:
cada intento produce un resultado etiquetado ``Done | Retry | Failed``.

    ATTEMPT -> éxito                                 -> Done
    ATTEMPT -> transitorio, quedan intentos          -> Retry (WAIT) -> ATTEMPT
    ATTEMPT -> transitorio, intentos agotados        -> Failed(último error)
    ATTEMPT -> no reintentable                       -> Failed(error)
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar, Union

from .errors import TransientUpstreamError, UpstreamError, classify_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuración para retry con backoff."""

    max_retries: int = 3  # 3 reintentos => 4 intentos en total
    base_delay: float = 1.0  # segundos
    max_delay: Optional[float] = None  # tope opcional en segundos
    exponential_base: float = 2.0
    jitter: bool = False

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def calculate_delay(self, retry_index: int) -> float:
        """Calcula el delay antes del reintento ``retry_index`` (0-indexed).

        Args:
            retry_index: 0 para el primer reintento, 1 para el segundo...

        Returns:
            Delay en segundos: base_delay * 2^retry_index, acotado por
            max_delay solo si está configurado
        """
        delay = self.base_delay * (self.exponential_base ** retry_index)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)

        if self.jitter:
            # Jitter de ±25%
            jitter_range = delay * 0.25
            delay += random.uniform(-jitter_range, jitter_range)

        return max(0.0, delay)


@dataclass(frozen=True)
class RetryAttempt:
    """Estado efímero de un intento."""
    attempt: int  # 0-indexed
    next_delay: Optional[float]
    retryable: bool


@dataclass(frozen=True)
class Done(Generic[T]):
    value: T
    attempt: RetryAttempt


@dataclass(frozen=True)
class Retry:
    error: TransientUpstreamError
    attempt: RetryAttempt

    @property
    def delay(self) -> float:
        return self.attempt.next_delay or 0.0


@dataclass(frozen=True)
class Failed:
    error: UpstreamError
    attempt: RetryAttempt


Outcome = Union[Done, Retry, Failed]


class RetryExecutor:
    """Ejecutor de llamadas upstream con retry.

    El ``sleep`` inyectable solo suspende al thread que llama; el collector
    y otros callers no se bloquean.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._config = config or RetryConfig()
        self._sleep = sleep
        self._lock = threading.Lock()
        self._total_attempts = 0
        self._total_retries = 0
        self._total_failures = 0

    @property
    def config(self) -> RetryConfig:
        return self._config

    @property
    def stats(self) -> dict:
        """Estadísticas del ejecutor."""
        with self._lock:
            return {
                "total_attempts": self._total_attempts,
                "total_retries": self._total_retries,
                "total_failures": self._total_failures,
            }

    def step(self, attempt: int, func: Callable[[], T]) -> Outcome:
        """Ejecuta un intento y clasifica el resultado."""
        with self._lock:
            self._total_attempts += 1

        try:
            value = func()
        except Exception as exc:
            error = classify_error(exc)
            if error is not exc:
                error.__cause__ = exc

            if not isinstance(error, TransientUpstreamError):
                return Failed(error, RetryAttempt(attempt, None, retryable=False))

            if attempt + 1 >= self._config.max_attempts:
                return Failed(error, RetryAttempt(attempt, None, retryable=True))

            delay = self._config.calculate_delay(attempt)
            return Retry(error, RetryAttempt(attempt, delay, retryable=True))

        return Done(value, RetryAttempt(attempt, None, retryable=False))

    def execute(self, func: Callable[[], T], *, operation: str = "call") -> T:
        """Ejecuta ``func`` aplicando la política de retry.

        Raises:
            TransientUpstreamError: si se agotan los intentos
            FatalUpstreamError: ante un error no reintentable
        """
        attempt = 0
        while True:
            outcome = self.step(attempt, func)

            if isinstance(outcome, Done):
                return outcome.value

            if isinstance(outcome, Retry):
                with self._lock:
                    self._total_retries += 1
                logger.warning(
                    "RETRY op=%s attempt=%d/%d delay=%.2fs err=%s",
                    operation, attempt + 1, self._config.max_attempts,
                    outcome.delay, outcome.error,
                )
                self._sleep(outcome.delay)
                attempt += 1
                continue

            with self._lock:
                self._total_failures += 1
            if outcome.attempt.retryable:
                logger.error(
                    "RETRY_EXHAUSTED op=%s attempts=%d err=%s",
                    operation, attempt + 1, outcome.error,
                )
            else:
                logger.warning(
                    "UPSTREAM_FATAL op=%s status=%s err=%s",
                    operation, outcome.error.status_code, outcome.error,
                )
            raise outcome.error
