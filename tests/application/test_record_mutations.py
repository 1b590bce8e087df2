from __future__ import annotations

import pytest

from pharmapos.application.audit_service import AuditTrail
from pharmapos.application.reconciliation_engine import ReconciliationEngine
from pharmapos.application.record_mutations import RecordMutationService
from pharmapos.core.errors import RemoteOperationFailedError, ValidationError
from pharmapos.domain.models import EntityType, QueueAction


class _RemoteFake:
    def __init__(self, *, configured: bool = True, failing: bool = False) -> None:
        self.configured = configured
        self.failing = failing
        self.calls: list[tuple] = []

    def is_configured(self) -> bool:
        return self.configured

    def _call(self, *call) -> None:
        if self.failing:
            raise RemoteOperationFailedError("sin red")
        self.calls.append(call)

    def insert(self, collection: str, record: dict) -> None:
        self._call("insert", collection, record["id"])

    def update(self, collection: str, record_id: str, record: dict) -> None:
        self._call("update", collection, record_id)

    def delete(self, collection: str, record_id: str) -> None:
        self._call("delete", collection, record_id)

    def upsert(self, collection: str, records) -> None:
        self._call("upsert", collection, len(records))

    def fetch_all(self, collection: str) -> list[dict]:
        return []


def _service(stores, mutation_queue, audit_log, connectivity, remote) -> RecordMutationService:
    engine = ReconciliationEngine(stores, mutation_queue, remote, connectivity)
    return RecordMutationService(stores, mutation_queue, AuditTrail(audit_log), engine, remote, connectivity)


def test_create_offline_guarda_encola_y_audita(stores, mutation_queue, audit_log, connectivity) -> None:
    remote = _RemoteFake()
    connectivity.set_offline(True)
    service = _service(stores, mutation_queue, audit_log, connectivity, remote)

    record = service.create("medicine", {"name": "Paracetamol", "stock": 12})

    assert record["id"]
    assert record["createdAt"].endswith("Z")
    assert stores[EntityType.MEDICINE].get_by_id(record["id"]) == record
    pending = mutation_queue.dequeue_all()
    assert [(action.type, action.action, action.record_id) for action in pending] == [
        (EntityType.MEDICINE, QueueAction.CREATE, record["id"])
    ]
    assert [entry.action for entry in audit_log.get_all()] == ["CREATE"]
    assert remote.calls == []


def test_create_online_reenvia_y_vacia_la_cola(stores, mutation_queue, audit_log, connectivity) -> None:
    remote = _RemoteFake()
    service = _service(stores, mutation_queue, audit_log, connectivity, remote)

    record = service.create(EntityType.SALE, {"id": "s1", "total": 25})

    assert remote.calls == [("insert", "sales", "s1")]
    assert mutation_queue.count() == 0
    assert record["id"] == "s1"


def test_create_online_con_fallo_remoto_no_falla_la_accion(stores, mutation_queue, audit_log, connectivity) -> None:
    remote = _RemoteFake(failing=True)
    service = _service(stores, mutation_queue, audit_log, connectivity, remote)

    record = service.create("refund", {"amount": 5})

    assert stores[EntityType.REFUND].get_by_id(record["id"]) is not None
    pending = mutation_queue.dequeue_all()
    assert len(pending) == 1
    assert pending[0].attempts == 1


def test_create_sin_configurar_no_intenta_reenviar(stores, mutation_queue, audit_log, connectivity) -> None:
    remote = _RemoteFake(configured=False)
    service = _service(stores, mutation_queue, audit_log, connectivity, remote)

    service.create("expense", {"concept": "luz"})

    assert remote.calls == []
    assert mutation_queue.count() == 1


def test_update_fusiona_cambios_y_sella_updated_at(stores, mutation_queue, audit_log, connectivity) -> None:
    connectivity.set_offline(True)
    service = _service(stores, mutation_queue, audit_log, connectivity, _RemoteFake())
    created = service.create("medicine", {"id": "m1", "name": "Ibuprofeno", "stock": 3})

    updated = service.update("medicine", "m1", {"stock": 2})

    assert updated["name"] == "Ibuprofeno"
    assert updated["stock"] == 2
    assert updated["createdAt"] == created["createdAt"]
    assert updated["updatedAt"].endswith("Z")
    assert stores[EntityType.MEDICINE].get_by_id("m1") == updated
    actions = [action.action for action in mutation_queue.dequeue_all()]
    assert actions == [QueueAction.CREATE, QueueAction.UPDATE]
    assert [entry.action for entry in audit_log.get_all()] == ["CREATE", "UPDATE"]


def test_update_de_id_desconocido_lanza_validation_error(stores, mutation_queue, audit_log, connectivity) -> None:
    service = _service(stores, mutation_queue, audit_log, connectivity, _RemoteFake())

    with pytest.raises(ValidationError):
        service.update("sale", "no-existe", {"total": 1})

    assert mutation_queue.count() == 0


def test_delete_borra_local_y_encola_solo_el_id(stores, mutation_queue, audit_log, connectivity) -> None:
    connectivity.set_offline(True)
    service = _service(stores, mutation_queue, audit_log, connectivity, _RemoteFake())
    service.create("sale", {"id": "s1", "total": 9})

    service.delete("sale", "s1")

    assert stores[EntityType.SALE].get_by_id("s1") is None
    last = mutation_queue.dequeue_all()[-1]
    assert last.action is QueueAction.DELETE
    assert last.data == {"id": "s1"}
    assert audit_log.get_all()[-1].action == "DELETE"


def test_tipo_de_entidad_desconocido(stores, mutation_queue, audit_log, connectivity) -> None:
    service = _service(stores, mutation_queue, audit_log, connectivity, _RemoteFake())

    with pytest.raises(ValidationError):
        service.create("customer", {"name": "x"})


def test_create_con_id_existente_lanza_validation_error(stores, mutation_queue, audit_log, connectivity) -> None:
    connectivity.set_offline(True)
    service = _service(stores, mutation_queue, audit_log, connectivity, _RemoteFake())
    original = service.create("medicine", {"id": "m1", "name": "Ibuprofeno", "stock": 3})

    with pytest.raises(ValidationError, match="m1"):
        service.create("medicine", {"id": "m1", "name": "Duplicado", "stock": 0})

    assert stores[EntityType.MEDICINE].get_by_id("m1") == original
    assert [action.action for action in mutation_queue.dequeue_all()] == [QueueAction.CREATE]
    assert [entry.action for entry in audit_log.get_all()] == ["CREATE"]
