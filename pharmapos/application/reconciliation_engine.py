from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import contextvars
import logging
import threading
from typing import Iterable, Mapping

from pharmapos.application.merge_policy import merge_records
from pharmapos.core.errors import ValidationError
from pharmapos.core.metrics import measure_time, metrics_registry
from pharmapos.core.observability import OperationContext
from pharmapos.core.operational_logging import log_operational_error
from pharmapos.domain.models import EntityType, QueueAction, QueuedAction, Record
from pharmapos.domain.ports import CollectionStorePort, ConnectivityStatePort, MutationQueuePort, RemoteGatewayPort
from pharmapos.domain.sync_models import (
    CollectionMergeSummary,
    FullSyncReport,
    QueueActionOutcome,
    QueueReplayReport,
)
from pharmapos.domain.time_utils import now_iso

logger = logging.getLogger(__name__)

_FETCH_WORKERS = len(EntityType)


class ReconciliationEngine:
    """Reconcilia el almacén local con el remoto.

    ``process_queue`` reenvía las mutaciones pendientes en orden de llegada y solo
    las retira de la cola cuando el remoto confirma. ``full_sync`` descarga las
    cuatro colecciones en paralelo, fusiona con last-writer-wins por ``updatedAt``,
    persiste el resultado y después vacía la cola. Dos ``full_sync`` nunca se
    solapan.
    """

    def __init__(
        self,
        stores: Mapping[EntityType, CollectionStorePort],
        queue: MutationQueuePort,
        gateway: RemoteGatewayPort,
        connectivity: ConnectivityStatePort,
        *,
        max_workers: int = _FETCH_WORKERS,
    ) -> None:
        missing = [entity_type.value for entity_type in EntityType if entity_type not in stores]
        if missing:
            raise ValueError(f"Faltan almacenes locales para: {', '.join(missing)}")
        self._stores = dict(stores)
        self._queue = queue
        self._gateway = gateway
        self._connectivity = connectivity
        self._max_workers = max(1, max_workers)
        self._sync_lock = threading.Lock()
        self._replay_lock = threading.Lock()

    @staticmethod
    def merge_data(local: Iterable[Record], remote: Iterable[Record]) -> list[Record]:
        return merge_records(local, remote).records

    def process_queue(self) -> QueueReplayReport:
        if not self._gateway.is_configured():
            logger.debug("Remoto sin configurar: la cola se conserva sin reenviar")
            return QueueReplayReport(skipped=True)
        with self._replay_lock:
            pending = self._queue.dequeue_all()
            if not pending:
                metrics_registry.set_gauge("queue_pending", 0)
                return QueueReplayReport()
            logger.info("Reenviando %s acciones pendientes", len(pending))
            outcomes = self._replay_in_order(pending)
        report = QueueReplayReport(outcomes=outcomes)
        metrics_registry.set_gauge("queue_pending", report.failed)
        logger.info(
            "Cola procesada: ok=%s fallidas=%s",
            report.succeeded,
            report.failed,
        )
        return report

    def full_sync(self) -> FullSyncReport:
        with self._sync_lock:
            if not self._gateway.is_configured():
                logger.info("Sincronización omitida: Google Sheets no está configurado")
                return FullSyncReport.skipped(now_iso())
            with OperationContext("full_sync") as operation:
                logger.info("Sincronización completa iniciada", extra={"correlation_id": operation.correlation_id})
                return self._run_full_sync()

    def push_collection(self, entity_type: EntityType | str) -> int:
        entity_type = EntityType.parse(entity_type)
        if not self._gateway.is_configured():
            logger.info("Subida de %s omitida: remoto sin configurar", entity_type.collection)
            return 0
        records = self._stores[entity_type].get_all()
        self._gateway.upsert(entity_type.collection, records)
        logger.info("Subidos %s registros de %s", len(records), entity_type.collection)
        return len(records)

    def push_all(self) -> dict[str, int]:
        return {entity_type.collection: self.push_collection(entity_type) for entity_type in EntityType}

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Espera a que terminen la sincronización y el reenvío en curso."""
        wait = -1 if timeout is None else max(0.0, timeout)
        for lock in (self._sync_lock, self._replay_lock):
            if not lock.acquire(timeout=wait):
                return False
            lock.release()
        return True

    @measure_time("latency.full_sync_ms")
    def _run_full_sync(self) -> FullSyncReport:
        started_at = now_iso()
        try:
            remote = self._fetch_remote_collections()
            summaries = tuple(self._merge_collection(entity_type, remote[entity_type]) for entity_type in EntityType)
            queue_report = self.process_queue()
        except Exception as exc:
            self._connectivity.set_offline(True)
            log_operational_error(
                logger,
                "Sync failed: reconciliación completa abortada",
                exc=exc,
                extra={"operation": "full_sync", "started_at": started_at},
            )
            raise
        finished_at = now_iso()
        self._connectivity.set_offline(False)
        self._connectivity.mark_synced(finished_at)
        metrics_registry.increment("syncs_executed")
        logger.info("Sincronización completa terminada; pendientes en cola=%s", queue_report.failed)
        return FullSyncReport(
            status="OK",
            started_at=started_at,
            finished_at=finished_at,
            collections=summaries,
            queue=queue_report,
        )

    def _fetch_remote_collections(self) -> dict[EntityType, list[Record]]:
        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="pharmapos-fetch") as executor:
            futures = {
                entity_type: executor.submit(
                    contextvars.copy_context().run,
                    self._gateway.fetch_all,
                    entity_type.collection,
                )
                for entity_type in EntityType
            }
            return {entity_type: future.result() for entity_type, future in futures.items()}

    def _merge_collection(self, entity_type: EntityType, remote: list[Record]) -> CollectionMergeSummary:
        store = self._stores[entity_type]
        with store.atomic():
            local = store.get_all()
            outcome = merge_records(local, remote)
            store.save(outcome.records)
        return CollectionMergeSummary(
            collection=entity_type.collection,
            local_count=len(local),
            remote_count=len(remote),
            merged_count=len(outcome.records),
            local_wins=outcome.local_wins,
            local_only=outcome.local_only,
        )

    def _replay_in_order(self, pending: list[QueuedAction]) -> tuple[QueueActionOutcome, ...]:
        # Una acción fallida retiene en cola las posteriores del mismo registro.
        blocked: set[tuple[EntityType, str]] = set()
        outcomes: list[QueueActionOutcome] = []
        for action in pending:
            key = (action.type, action.record_id)
            if action.record_id and key in blocked:
                metrics_registry.increment("queue_actions_deferred")
                logger.warning(
                    "Acción %s retenida: %s %s tiene una acción anterior sin confirmar",
                    action.id,
                    action.type.value,
                    action.record_id,
                )
                outcomes.append(
                    self._outcome(action, succeeded=False, error="pendiente de una acción anterior fallida del mismo registro")
                )
                continue
            outcome = self._replay_action(action)
            if not outcome.succeeded:
                blocked.add(key)
            outcomes.append(outcome)
        return tuple(outcomes)

    def _replay_action(self, action: QueuedAction) -> QueueActionOutcome:
        try:
            self._dispatch(action)
        except Exception as exc:  # noqa: BLE001
            error = str(exc).strip() or type(exc).__name__
            self._queue.record_failure(action.id, error)
            metrics_registry.increment("queue_actions_failed")
            log_operational_error(
                logger,
                "Sync failed: no se pudo reenviar una acción de la cola",
                exc=exc,
                extra={
                    "operation": "process_queue",
                    "action_id": action.id,
                    "entity_type": action.type.value,
                    "action": action.action.value,
                    "attempts": action.attempts + 1,
                },
            )
            return self._outcome(action, succeeded=False, error=error)
        self._queue.remove(action.id)
        metrics_registry.increment("queue_actions_succeeded")
        return self._outcome(action, succeeded=True)

    def _dispatch(self, action: QueuedAction) -> None:
        collection = action.type.collection
        if action.action is QueueAction.CREATE:
            self._gateway.insert(collection, action.data)
            return
        record_id = action.record_id
        if not record_id:
            raise ValidationError(f"La acción {action.id} no lleva id de registro.")
        if action.action is QueueAction.UPDATE:
            self._gateway.update(collection, record_id, action.data)
        else:
            self._gateway.delete(collection, record_id)

    @staticmethod
    def _outcome(action: QueuedAction, *, succeeded: bool, error: str | None = None) -> QueueActionOutcome:
        return QueueActionOutcome(
            action_id=action.id,
            entity_type=action.type.value,
            action=action.action.value,
            record_id=action.record_id,
            succeeded=succeeded,
            error=error,
        )
