"""Taxonomía de errores del núcleo de telemetría.

- TransientUpstreamError: se reintenta; en lecturas, luego fallback a cache.
- FatalUpstreamError: not-found/forbidden/bad-request. Sin retry ni fallback.
- StorageError: fallo de persistencia. Se loguea, nunca tumba el proceso.
- CacheMissError: se intentó fallback y no había snapshot. Al caller le
  llega el error upstream original.
"""

from __future__ import annotations

from typing import Optional

import requests

# Códigos upstream que indican un fallo transitorio.
# 408 request-timeout, 429 rate-limited, y toda la clase 5xx.
TRANSIENT_STATUS_CODES = frozenset({408, 429})


class UpstreamError(Exception):
    """Error en una llamada al control-plane."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class TransientUpstreamError(UpstreamError):
    """Fallo transitorio (transporte, timeout, 408/429/5xx)."""


class FatalUpstreamError(UpstreamError):
    """Fallo no reintentable (404, 403, 400...)."""


class StorageError(Exception):
    """Fallo al persistir o leer del almacén local."""


class CacheMissError(Exception):
    """Fallback a cache sin snapshot disponible."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"No cached snapshot for '{key}'")


def is_transient_status(status_code: int) -> bool:
    return status_code in TRANSIENT_STATUS_CODES or 500 <= status_code <= 599


def error_for_status(status_code: int, body: str = "") -> UpstreamError:
    """Construye el error tipado para una respuesta HTTP no-2xx."""
    message = f"control-plane API error (status {status_code}): {body[:200]}"
    if is_transient_status(status_code):
        return TransientUpstreamError(message, status_code=status_code)
    return FatalUpstreamError(message, status_code=status_code)


def classify_error(exc: BaseException) -> UpstreamError:
    """Normaliza cualquier excepción de una llamada upstream.

    Errores de transporte de requests (conexión, timeout) son transitorios.
    Cualquier otra excepción desconocida se trata como fatal.
    """
    if isinstance(exc, UpstreamError):
        return exc
    if isinstance(exc, (requests.Timeout, requests.ConnectionError, TimeoutError, ConnectionError)):
        return TransientUpstreamError(f"transport failure: {exc}")
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return error_for_status(exc.response.status_code, exc.response.text or "")
    return FatalUpstreamError(f"{type(exc).__name__}: {exc}")
