from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import datetime, timezone
import hashlib
import logging
from pathlib import Path
import re
import sqlite3

from pharmapos.bootstrap.logging import configure_logging
from pharmapos.bootstrap.settings import resolve_db_path, resolve_log_dir
from pharmapos.core.errors import PersistenceError
from pharmapos.infrastructure.db import get_connection

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "migrations"
_UP_FILE = re.compile(r"^(?P<version>\d{3,})_(?P<name>[a-z0-9_]+)\.up\.sql$")

_HISTORY_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    checksum TEXT NOT NULL,
    applied_at TEXT NOT NULL
)
"""


class MigrationError(PersistenceError):
    pass


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    up_path: Path
    down_path: Path

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.up_path.read_bytes()).hexdigest()


def discover_migrations(directory: Path = MIGRATIONS_DIR) -> list[Migration]:
    """Pares ``NNN_nombre.up.sql`` / ``NNN_nombre.down.sql`` ordenados por versión."""
    found: dict[int, Migration] = {}
    for up_path in sorted(directory.glob("*.up.sql")):
        match = _UP_FILE.match(up_path.name)
        if match is None:
            raise MigrationError(f"Nombre de migración no válido: {up_path.name}")
        version = int(match["version"])
        down_path = up_path.with_name(up_path.name.replace(".up.sql", ".down.sql"))
        if not down_path.exists():
            raise MigrationError(f"Falta {down_path.name} para {up_path.name}")
        if version in found:
            raise MigrationError(f"Versión de migración duplicada: {version}")
        found[version] = Migration(version, match["name"], up_path, down_path)
    return [found[version] for version in sorted(found)]


class MigrationRunner:
    """Aplica y revierte el esquema local.

    Cada migración se ejecuta como un único script ``BEGIN ... COMMIT`` junto con su
    apunte en ``schema_migrations``; si falla una sentencia no queda nada a medias.
    Una migración ya aplicada cuyo fichero ha cambiado detiene el arranque.
    """

    def __init__(self, connection: sqlite3.Connection, migrations_dir: Path = MIGRATIONS_DIR) -> None:
        self.connection = connection
        self.migrations = discover_migrations(migrations_dir)
        self.connection.execute(_HISTORY_DDL)
        self.connection.commit()

    def applied(self) -> dict[int, str]:
        rows = self.connection.execute("SELECT version, checksum FROM schema_migrations").fetchall()
        return {int(row[0]): str(row[1]) for row in rows}

    def apply_all(self) -> list[int]:
        applied = self.applied()
        pending: list[Migration] = []
        for migration in self.migrations:
            if migration.version not in applied:
                pending.append(migration)
            elif applied[migration.version] != migration.checksum:
                raise MigrationError(
                    f"La migración {migration.version:03d}_{migration.name} cambió después de aplicarse"
                )
        for migration in pending:
            applied_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            self._run_script(
                migration.up_path.read_text(encoding="utf-8"),
                "INSERT INTO schema_migrations (version, name, checksum, applied_at) "
                f"VALUES ({migration.version}, '{migration.name}', '{migration.checksum}', '{applied_at}');\n"
                f"PRAGMA user_version = {migration.version};",
            )
            logger.info("Migración aplicada %03d %s", migration.version, migration.name)
        return [migration.version for migration in pending]

    def rollback(self, steps: int = 1) -> list[int]:
        by_version = {migration.version: migration for migration in self.migrations}
        targets = sorted(self.applied(), reverse=True)[: max(0, steps)]
        for version in targets:
            migration = by_version.get(version)
            if migration is None:
                raise MigrationError(f"No hay fichero down para la versión aplicada {version}")
            remaining = [applied for applied in self.applied() if applied != version]
            self._run_script(
                migration.down_path.read_text(encoding="utf-8"),
                f"DELETE FROM schema_migrations WHERE version = {version};\n"
                f"PRAGMA user_version = {max(remaining, default=0)};",
            )
            logger.info("Migración revertida %03d %s", migration.version, migration.name)
        return targets

    def status(self) -> list[dict[str, object]]:
        applied = self.applied()
        return [
            {"version": migration.version, "name": migration.name, "applied": migration.version in applied}
            for migration in self.migrations
        ]

    def _run_script(self, body: str, bookkeeping: str) -> None:
        try:
            self.connection.executescript(f"BEGIN;\n{body}\n{bookkeeping}\nCOMMIT;")
        except sqlite3.Error as exc:
            if self.connection.in_transaction:
                self.connection.rollback()
            raise MigrationError(f"Migración fallida: {exc}") from exc


def run_migrations(connection: sqlite3.Connection) -> list[int]:
    return MigrationRunner(connection).apply_all()


def build_cli() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pharmapos-migrations", description="Esquema SQLite local de PharmaPOS")
    parser.add_argument("command", choices=["up", "down", "status"])
    parser.add_argument("--db", type=Path, default=None, help="Ruta al archivo SQLite")
    parser.add_argument("--steps", type=int, default=1, help="Migraciones a revertir con 'down'")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_cli().parse_args(argv)
    configure_logging(resolve_log_dir())

    connection = get_connection(args.db or resolve_db_path())
    try:
        runner = MigrationRunner(connection)
        if args.command == "up":
            versions = runner.apply_all()
        elif args.command == "down":
            versions = runner.rollback(args.steps)
        else:
            versions = [int(item["version"]) for item in runner.status() if item["applied"]]
        logger.info("Migraciones %s", args.command, extra={"extra": {"command": args.command, "versions": versions}})
    finally:
        connection.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
