from __future__ import annotations

from dataclasses import dataclass
import logging
import sqlite3
from typing import Callable

from pharmapos.application.audit_service import AuditTrail
from pharmapos.application.connectivity import ConnectivityState
from pharmapos.application.reconciliation_engine import ReconciliationEngine
from pharmapos.application.record_mutations import RecordMutationService
from pharmapos.application.sync_runner import SyncRunner
from pharmapos.domain.models import EntityType
from pharmapos.domain.ports import CurrentUserProvider, RemoteGatewayPort
from pharmapos.infrastructure.db import get_connection
from pharmapos.infrastructure.local_config import RemoteConfigStore
from pharmapos.infrastructure.migrations import run_migrations
from pharmapos.infrastructure.repos_audit_sqlite import SQLiteAuditLog
from pharmapos.infrastructure.repos_sqlite import SQLiteCollectionStore, SQLiteMutationQueue, build_collection_stores
from pharmapos.infrastructure.sheets_client import SheetsClient
from pharmapos.infrastructure.sheets_gateway_gspread import SheetsRemoteGateway
from pharmapos.infrastructure.sheets_repository import SheetsRepository
from pharmapos.infrastructure.sqlite_uow import LocalDatabase

logger = logging.getLogger(__name__)


@dataclass
class AppContainer:
    database: LocalDatabase
    stores: dict[EntityType, SQLiteCollectionStore]
    queue: SQLiteMutationQueue
    audit_log: SQLiteAuditLog
    audit_trail: AuditTrail
    config_store: RemoteConfigStore
    gateway: RemoteGatewayPort
    connectivity: ConnectivityState
    engine: ReconciliationEngine
    mutations: RecordMutationService
    sync_runner: SyncRunner

    def close(self, timeout: float | None = None) -> bool:
        """Cierra la base local cuando ninguna sincronización la está usando.

        Un intento abandonado por timeout sigue vivo en su hilo; hasta que suelta el
        motor la conexión se mantiene abierta. Devuelve ``False`` si se agota ``timeout``.
        """
        if not self.engine.wait_until_idle(timeout):
            logger.warning("Sincronización aún en curso; la base local queda abierta")
            return False
        self.database.close()
        return True


ConnectionFactory = Callable[[], sqlite3.Connection]


def build_container(
    connection_factory: ConnectionFactory = get_connection,
    *,
    config_store: RemoteConfigStore | None = None,
    gateway: RemoteGatewayPort | None = None,
    current_user: CurrentUserProvider | None = None,
) -> AppContainer:
    database = LocalDatabase(connection_factory())
    run_migrations(database.connection)

    stores = build_collection_stores(database)
    queue = SQLiteMutationQueue(database)
    audit_log = SQLiteAuditLog(database)
    audit_trail = AuditTrail(audit_log, current_user) if current_user else AuditTrail(audit_log)

    config_store = config_store or RemoteConfigStore()
    if gateway is None:
        gateway = SheetsRemoteGateway(config_store, SheetsClient(), SheetsRepository())
    connectivity = ConnectivityState()
    engine = ReconciliationEngine(stores, queue, gateway, connectivity)

    return AppContainer(
        database=database,
        stores=stores,
        queue=queue,
        audit_log=audit_log,
        audit_trail=audit_trail,
        config_store=config_store,
        gateway=gateway,
        connectivity=connectivity,
        engine=engine,
        mutations=RecordMutationService(stores, queue, audit_trail, engine, gateway, connectivity),
        sync_runner=SyncRunner(engine),
    )
