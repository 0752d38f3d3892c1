"""Componentes de resiliencia: errores, retry y estado de cache."""

from .cache_status import CacheStatus, CacheStatusSnapshot
from .errors import (
    CacheMissError,
    FatalUpstreamError,
    StorageError,
    TransientUpstreamError,
    UpstreamError,
    classify_error,
)
from .retry import Done, Failed, Retry, RetryAttempt, RetryConfig, RetryExecutor

__all__ = [
    "CacheStatus",
    "CacheStatusSnapshot",
    "CacheMissError",
    "FatalUpstreamError",
    "StorageError",
    "TransientUpstreamError",
    "UpstreamError",
    "classify_error",
    "Done",
    "Failed",
    "Retry",
    "RetryAttempt",
    "RetryConfig",
    "RetryExecutor",
]
