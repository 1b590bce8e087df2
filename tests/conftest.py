from __future__ import annotations

import sqlite3
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pharmapos.application.connectivity import ConnectivityState
from pharmapos.domain.models import EntityType, RemoteConfig
from pharmapos.infrastructure.local_config import RemoteConfigStore
from pharmapos.infrastructure.migrations import run_migrations
from pharmapos.infrastructure.repos_audit_sqlite import SQLiteAuditLog
from pharmapos.infrastructure.repos_sqlite import SQLiteCollectionStore, SQLiteMutationQueue, build_collection_stores
from pharmapos.infrastructure.sqlite_uow import LocalDatabase


@pytest.fixture
def database() -> LocalDatabase:
    db = LocalDatabase(sqlite3.connect(":memory:", check_same_thread=False))
    run_migrations(db.connection)
    yield db
    db.close()


@pytest.fixture
def connection(database: LocalDatabase) -> sqlite3.Connection:
    return database.connection


@pytest.fixture
def stores(database: LocalDatabase) -> dict[EntityType, SQLiteCollectionStore]:
    return build_collection_stores(database)


@pytest.fixture
def mutation_queue(database: LocalDatabase) -> SQLiteMutationQueue:
    return SQLiteMutationQueue(database)


@pytest.fixture
def audit_log(database: LocalDatabase) -> SQLiteAuditLog:
    return SQLiteAuditLog(database)


@pytest.fixture
def connectivity() -> ConnectivityState:
    return ConnectivityState()


@pytest.fixture
def configured_store(tmp_path: Path) -> RemoteConfigStore:
    credentials = tmp_path / "credentials.json"
    credentials.write_text("{}", encoding="utf-8")
    store = RemoteConfigStore(tmp_path / "appdata")
    store.save(RemoteConfig(spreadsheet_id="sheet-123", credentials_path=str(credentials)))
    return store


@pytest.fixture(autouse=True)
def _isolated_log_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PHARMAPOS_LOG_DIR", str(tmp_path / "logs"))
