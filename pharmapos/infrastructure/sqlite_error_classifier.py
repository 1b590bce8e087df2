from __future__ import annotations

import sqlite3

from pharmapos.core.errors import PersistenceError, StorageFullError

_FULL_MARKERS = ("database or disk is full",)


def is_locked_error(error: Exception) -> bool:
    return isinstance(error, sqlite3.OperationalError) and "locked" in str(error).lower()


def is_storage_full_error(error: Exception) -> bool:
    if not isinstance(error, sqlite3.Error):
        return False
    if getattr(error, "sqlite_errorname", None) == "SQLITE_FULL":
        return True
    text = str(error).lower()
    return any(marker in text for marker in _FULL_MARKERS)


def map_sqlite_error(error: sqlite3.Error, context: str) -> PersistenceError:
    if is_storage_full_error(error):
        return StorageFullError(f"Almacenamiento local lleno ({context}).")
    return PersistenceError(f"Error de base de datos local en {context}: {error}")
