from __future__ import annotations

from pathlib import Path
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url


logger = logging.getLogger(__name__)

# Segundos que SQLite espera un lock de escritura antes de fallar.
SQLITE_BUSY_TIMEOUT_SECONDS = 30


def _ensure_sqlite_dir(url: str) -> None:
    parsed = make_url(url)
    database = parsed.database
    if not database or database == ":memory:":
        return
    Path(database).parent.mkdir(parents=True, exist_ok=True)


def get_engine(url: str) -> Engine:
    """Crea un engine SQLAlchemy para el almacén indicado.

    Para SQLite se crea el directorio de la BD si no existe y se habilita
    el acceso desde múltiples threads (collector + requests).
    """
    connect_args: dict = {}
    if url.startswith("sqlite"):
        _ensure_sqlite_dir(url)
        connect_args = {
            "check_same_thread": False,
            "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
        }

    safe_url = make_url(url).render_as_string(hide_password=True)
    logger.info("[DB] Crear engine url=%s", safe_url)

    engine = create_engine(url, pool_pre_ping=True, future=True, connect_args=connect_args)

    # Test de conexión: deja constancia en logs si el almacén es accesible
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("[DB] Test de conexión OK url=%s", safe_url)
    except Exception:
        logger.exception("[DB] Test de conexión FALLÓ url=%s", safe_url)

    return engine
