from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Mapping

from pharmapos.application.audit_service import AuditTrail
from pharmapos.application.reconciliation_engine import ReconciliationEngine
from pharmapos.core.errors import ValidationError
from pharmapos.core.operational_logging import log_operational_error
from pharmapos.domain.models import EntityType, QueueAction, QueuedAction, Record
from pharmapos.domain.ports import CollectionStorePort, ConnectivityStatePort, MutationQueuePort, RemoteGatewayPort
from pharmapos.domain.time_utils import now_iso

logger = logging.getLogger(__name__)


class RecordMutationService:
    """Punto de entrada de la UI para crear, editar y borrar registros.

    Cada mutación se escribe primero en local y en la cola; si hay conexión se
    intenta reenviar enseguida, pero la acción no sale de la cola hasta que el
    remoto la confirma.
    """

    def __init__(
        self,
        stores: Mapping[EntityType, CollectionStorePort],
        queue: MutationQueuePort,
        audit_trail: AuditTrail,
        engine: ReconciliationEngine,
        gateway: RemoteGatewayPort,
        connectivity: ConnectivityStatePort,
    ) -> None:
        self._stores = dict(stores)
        self._queue = queue
        self._audit_trail = audit_trail
        self._engine = engine
        self._gateway = gateway
        self._connectivity = connectivity

    def create(self, entity_type: EntityType | str, data: Mapping[str, Any]) -> Record:
        entity_type = EntityType.parse(entity_type)
        record: Record = dict(data)
        record["id"] = str(record.get("id") or uuid.uuid4())
        record.setdefault("createdAt", now_iso())
        store = self._store(entity_type)
        with store.atomic():
            if store.get_by_id(record["id"]) is not None:
                raise ValidationError(f"Ya existe {entity_type.value} con id {record['id']}.")
            store.upsert(record)
            self._enqueue(entity_type, QueueAction.CREATE, record)
        self._audit_trail.record("CREATE", entity_type.value, record["id"], _details(record))
        self._replay_if_online()
        return record

    def update(self, entity_type: EntityType | str, record_id: str, changes: Mapping[str, Any]) -> Record:
        entity_type = EntityType.parse(entity_type)
        store = self._store(entity_type)
        with store.atomic():
            current = store.get_by_id(record_id)
            if current is None:
                raise ValidationError(f"No existe {entity_type.value} con id {record_id}.")
            record: Record = {**current, **dict(changes), "id": record_id, "updatedAt": now_iso()}
            store.upsert(record)
            self._enqueue(entity_type, QueueAction.UPDATE, record)
        self._audit_trail.record("UPDATE", entity_type.value, record_id, _details(dict(changes)))
        self._replay_if_online()
        return record

    def delete(self, entity_type: EntityType | str, record_id: str) -> None:
        entity_type = EntityType.parse(entity_type)
        store = self._store(entity_type)
        with store.atomic():
            store.delete(record_id)
            self._enqueue(entity_type, QueueAction.DELETE, {"id": record_id})
        self._audit_trail.record("DELETE", entity_type.value, record_id)
        self._replay_if_online()

    def _store(self, entity_type: EntityType) -> CollectionStorePort:
        return self._stores[entity_type]

    def _enqueue(self, entity_type: EntityType, action: QueueAction, data: Record) -> None:
        self._queue.enqueue(
            QueuedAction(
                id=str(uuid.uuid4()),
                type=entity_type,
                action=action,
                data=dict(data),
                created_at=now_iso(),
            )
        )

    def _replay_if_online(self) -> None:
        if self._connectivity.is_offline or not self._gateway.is_configured():
            return
        try:
            self._engine.process_queue()
        except Exception as exc:  # noqa: BLE001
            log_operational_error(
                logger,
                "Reenvío inmediato fallido; la acción queda en cola",
                exc=exc,
                extra={"operation": "process_queue_inline"},
            )


def _details(data: Mapping[str, Any]) -> str:
    return json.dumps(dict(data), ensure_ascii=False, sort_keys=True, default=str)
