from __future__ import annotations

import contextlib
import sqlite3
import threading
from collections.abc import Iterator, Sequence


class LocalDatabase:
    """Conexión SQLite del terminal compartida por la UI y la sincronización.

    Las escrituras pasan por ``transaction()``: un RLock serializa los hilos y las
    transacciones anidadas se convierten en SAVEPOINT. Un bloque leer-fusionar-guardar
    hecho dentro de ``transaction()`` no se intercala con escrituras de otro hilo.
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        connection.row_factory = sqlite3.Row
        self.connection = connection
        self._lock = threading.RLock()
        self._depth = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._depth += 1
            savepoint = f"uow_{self._depth}"
            nested = self.connection.in_transaction
            self.connection.execute(f"SAVEPOINT {savepoint}" if nested else "BEGIN")
            try:
                yield self.connection
            except Exception:
                if nested:
                    self.connection.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                    self.connection.execute(f"RELEASE SAVEPOINT {savepoint}")
                else:
                    self.connection.rollback()
                raise
            else:
                if nested:
                    self.connection.execute(f"RELEASE SAVEPOINT {savepoint}")
                else:
                    self.connection.commit()
            finally:
                self._depth -= 1

    def fetch_all(self, sql: str, params: Sequence[object] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.connection.execute(sql, tuple(params)).fetchall()

    def fetch_one(self, sql: str, params: Sequence[object] = ()) -> sqlite3.Row | None:
        with self._lock:
            return self.connection.execute(sql, tuple(params)).fetchone()

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self.connection.close()
                self._closed = True
