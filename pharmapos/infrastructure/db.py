from __future__ import annotations

import sqlite3
from pathlib import Path

from pharmapos.bootstrap.settings import resolve_db_path

DEFAULT_BUSY_TIMEOUT_MS = 30000


def _pragmas(busy_timeout_ms: int) -> tuple[str, ...]:
    return (
        "PRAGMA journal_mode=WAL",
        "PRAGMA synchronous=NORMAL",
        f"PRAGMA busy_timeout={int(busy_timeout_ms)}",
    )


def get_connection(db_path: Path | None = None, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> sqlite3.Connection:
    """Conexión al fichero local del terminal; se comparte entre hilos a través de ``LocalDatabase``."""
    path = db_path or resolve_db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(path, timeout=busy_timeout_ms / 1000, check_same_thread=False)
    connection.row_factory = sqlite3.Row
    for pragma in _pragmas(busy_timeout_ms):
        connection.execute(pragma)
    return connection
