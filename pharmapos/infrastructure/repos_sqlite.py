from __future__ import annotations

import json
import logging
import sqlite3
import time
from contextlib import AbstractContextManager
from typing import Callable, Iterable, Sequence, TypeVar

from pharmapos.domain.models import EntityType, QueueAction, QueuedAction, Record
from pharmapos.domain.ports import CollectionStorePort, MutationQueuePort
from pharmapos.infrastructure.sqlite_error_classifier import is_locked_error, map_sqlite_error
from pharmapos.infrastructure.sqlite_uow import LocalDatabase

logger = logging.getLogger(__name__)

_LOCKED_RETRY_BACKOFF_SECONDS = (0.05, 0.15, 0.3)
_T = TypeVar("_T")


def _run_with_locked_retry(operation: Callable[[], _T], *, context: str) -> _T:
    for attempt, delay_seconds in enumerate(_LOCKED_RETRY_BACKOFF_SECONDS, start=1):
        try:
            return operation()
        except sqlite3.OperationalError as error:
            if not is_locked_error(error):
                raise
            logger.warning(
                "SQLite locked in %s (attempt=%s/%s); retrying in %.0fms",
                context,
                attempt,
                len(_LOCKED_RETRY_BACKOFF_SECONDS),
                delay_seconds * 1000,
            )
            time.sleep(delay_seconds)

    return operation()


def _guarded(operation: Callable[[], _T], *, context: str) -> _T:
    try:
        return _run_with_locked_retry(operation, context=context)
    except sqlite3.Error as error:
        raise map_sqlite_error(error, context) from error


def _execute_with_validation(cursor: sqlite3.Cursor, sql: str, params: Iterable[object], context: str) -> None:
    expected = sql.count("?")
    params_list = list(params)
    if expected != len(params_list):
        raise ValueError(
            f"SQL param mismatch for {context}: expected {expected} placeholders, got {len(params_list)} parameters."
        )
    cursor.execute(sql, tuple(params_list))


def _dump(record: Record) -> str:
    return json.dumps(record, ensure_ascii=False, sort_keys=True, default=str)


def _optional_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class SQLiteCollectionStore(CollectionStorePort):
    """Snapshot local de una colección (medicines, sales...) guardado como JSON por id."""

    def __init__(self, database: LocalDatabase, entity_type: EntityType) -> None:
        self._database = database
        self.entity_type = entity_type
        self._collection = entity_type.collection

    def atomic(self) -> AbstractContextManager[sqlite3.Connection]:
        """Bloque leer-modificar-guardar que no se intercala con escrituras de otros hilos."""
        return self._database.transaction()

    def get_all(self) -> list[Record]:
        def _read() -> list[Record]:
            rows = self._database.fetch_all(
                "SELECT payload_json FROM records WHERE collection = ? ORDER BY position ASC",
                (self._collection,),
            )
            return [json.loads(row["payload_json"]) for row in rows]

        return _guarded(_read, context=f"{self._collection}.get_all")

    def get_by_id(self, record_id: str) -> Record | None:
        def _read() -> Record | None:
            row = self._database.fetch_one(
                "SELECT payload_json FROM records WHERE collection = ? AND id = ?",
                (self._collection, str(record_id)),
            )
            return json.loads(row["payload_json"]) if row else None

        return _guarded(_read, context=f"{self._collection}.get_by_id")

    def save(self, records: Sequence[Record]) -> None:
        """Reemplaza el snapshot completo; si un id se repite gana la última aparición."""
        deduplicated: dict[str, Record] = {}
        for record in records:
            deduplicated[self._require_id(record)] = record

        def _write() -> None:
            with self._database.transaction() as connection:
                cursor = connection.cursor()
                cursor.execute("DELETE FROM records WHERE collection = ?", (self._collection,))
                for position, (record_id, record) in enumerate(deduplicated.items()):
                    self._insert(cursor, record_id, position, record)

        _guarded(_write, context=f"{self._collection}.save")

    def upsert(self, record: Record) -> None:
        record_id = self._require_id(record)

        def _write() -> None:
            with self._database.transaction() as connection:
                cursor = connection.cursor()
                cursor.execute(
                    "SELECT position FROM records WHERE collection = ? AND id = ?",
                    (self._collection, record_id),
                )
                row = cursor.fetchone()
                if row is not None:
                    _execute_with_validation(
                        cursor,
                        """
                        UPDATE records
                        SET payload_json = ?, created_at = ?, updated_at = ?
                        WHERE collection = ? AND id = ?
                        """,
                        (
                            _dump(record),
                            _optional_text(record.get("createdAt")),
                            _optional_text(record.get("updatedAt")),
                            self._collection,
                            record_id,
                        ),
                        "records.update",
                    )
                    return
                cursor.execute(
                    "SELECT COALESCE(MAX(position), -1) + 1 AS next_position FROM records WHERE collection = ?",
                    (self._collection,),
                )
                self._insert(cursor, record_id, int(cursor.fetchone()["next_position"]), record)

        _guarded(_write, context=f"{self._collection}.upsert")

    def delete(self, record_id: str) -> None:
        def _write() -> None:
            with self._database.transaction() as connection:
                connection.execute(
                    "DELETE FROM records WHERE collection = ? AND id = ?",
                    (self._collection, str(record_id)),
                )

        _guarded(_write, context=f"{self._collection}.delete")

    def _insert(self, cursor: sqlite3.Cursor, record_id: str, position: int, record: Record) -> None:
        _execute_with_validation(
            cursor,
            """
            INSERT INTO records (collection, id, position, payload_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                self._collection,
                record_id,
                position,
                _dump(record),
                _optional_text(record.get("createdAt")),
                _optional_text(record.get("updatedAt")),
            ),
            "records.insert",
        )

    def _require_id(self, record: Record) -> str:
        record_id = _optional_text(record.get("id"))
        if record_id is None:
            raise ValueError(f"Registro sin id en la colección {self._collection}.")
        return record_id


class SQLiteMutationQueue(MutationQueuePort):
    """Cola duradera de acciones pendientes; el orden de replay es el de inserción."""

    def __init__(self, database: LocalDatabase) -> None:
        self._database = database

    def enqueue(self, action: QueuedAction) -> None:
        def _write() -> None:
            with self._database.transaction() as connection:
                _execute_with_validation(
                    connection.cursor(),
                    """
                    INSERT INTO mutation_queue (id, entity_type, action, data_json, created_at, attempts, last_error)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        action.id,
                        action.type.value,
                        action.action.value,
                        _dump(action.data),
                        action.created_at,
                        action.attempts,
                        action.last_error,
                    ),
                    "mutation_queue.enqueue",
                )

        _guarded(_write, context="mutation_queue.enqueue")
        logger.debug("Acción encolada id=%s tipo=%s accion=%s", action.id, action.type.value, action.action.value)

    def dequeue_all(self) -> list[QueuedAction]:
        def _read() -> list[QueuedAction]:
            rows = self._database.fetch_all(
                """
                SELECT id, entity_type, action, data_json, created_at, attempts, last_error
                FROM mutation_queue
                ORDER BY seq ASC
                """
            )
            return [self._row_to_action(row) for row in rows]

        return _guarded(_read, context="mutation_queue.dequeue_all")

    def remove(self, action_id: str) -> None:
        def _write() -> None:
            with self._database.transaction() as connection:
                connection.execute("DELETE FROM mutation_queue WHERE id = ?", (str(action_id),))

        _guarded(_write, context="mutation_queue.remove")

    def record_failure(self, action_id: str, error: str) -> None:
        def _write() -> None:
            with self._database.transaction() as connection:
                connection.execute(
                    "UPDATE mutation_queue SET attempts = attempts + 1, last_error = ? WHERE id = ?",
                    (error, str(action_id)),
                )

        _guarded(_write, context="mutation_queue.record_failure")

    def count(self) -> int:
        def _read() -> int:
            row = self._database.fetch_one("SELECT COUNT(*) AS total FROM mutation_queue")
            return int(row["total"] if row else 0)

        return _guarded(_read, context="mutation_queue.count")

    @staticmethod
    def _row_to_action(row: sqlite3.Row) -> QueuedAction:
        return QueuedAction(
            id=row["id"],
            type=EntityType.parse(row["entity_type"]),
            action=QueueAction.parse(row["action"]),
            data=json.loads(row["data_json"] or "{}"),
            created_at=row["created_at"],
            attempts=int(row["attempts"] or 0),
            last_error=row["last_error"],
        )


def build_collection_stores(database: LocalDatabase) -> dict[EntityType, SQLiteCollectionStore]:
    return {entity_type: SQLiteCollectionStore(database, entity_type) for entity_type in EntityType}
