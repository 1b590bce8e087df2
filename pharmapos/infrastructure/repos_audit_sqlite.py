from __future__ import annotations

import logging
import sqlite3

from pharmapos.domain.models import AuditLogEntry
from pharmapos.domain.ports import AuditLogPort
from pharmapos.infrastructure.sqlite_uow import LocalDatabase

logger = logging.getLogger(__name__)

MAX_AUDIT_ENTRIES = 1000


class SQLiteAuditLog(AuditLogPort):
    """Registro de acciones de usuario, acotado a las últimas ``max_entries`` entradas.

    Es puramente observacional: ningún fallo de lectura o escritura se propaga al
    flujo principal de venta.
    """

    def __init__(self, database: LocalDatabase, max_entries: int = MAX_AUDIT_ENTRIES) -> None:
        self._database = database
        self._max_entries = max_entries

    def add(self, entry: AuditLogEntry) -> None:
        try:
            with self._database.transaction() as connection:
                connection.execute(
                    """
                    INSERT INTO audit_log (id, user_id, username, action, entity_type, entity_id, details, timestamp)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.id,
                        entry.user_id,
                        entry.username,
                        entry.action,
                        entry.entity_type,
                        entry.entity_id,
                        entry.details,
                        entry.timestamp,
                    ),
                )
                connection.execute(
                    """
                    DELETE FROM audit_log
                    WHERE seq NOT IN (SELECT seq FROM audit_log ORDER BY seq DESC LIMIT ?)
                    """,
                    (self._max_entries,),
                )
        except sqlite3.Error:
            logger.exception("No se pudo guardar la entrada de auditoría %s", entry.id)

    def get_all(self) -> list[AuditLogEntry]:
        try:
            rows = self._database.fetch_all(
                """
                SELECT id, user_id, username, action, entity_type, entity_id, details, timestamp
                FROM audit_log
                ORDER BY seq ASC
                """
            )
            return [
                AuditLogEntry(
                    id=row["id"],
                    user_id=row["user_id"],
                    username=row["username"],
                    action=row["action"],
                    entity_type=row["entity_type"],
                    entity_id=row["entity_id"],
                    details=row["details"],
                    timestamp=row["timestamp"],
                )
                for row in rows
            ]
        except (sqlite3.Error, KeyError, IndexError):
            logger.warning("No se pudo leer el log de auditoría; se devuelve vacío", exc_info=True)
            return []

    def clear(self) -> None:
        try:
            with self._database.transaction() as connection:
                connection.execute("DELETE FROM audit_log")
        except sqlite3.Error:
            logger.exception("No se pudo vaciar el log de auditoría")
