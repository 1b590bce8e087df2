from __future__ import annotations

import threading
import time
from typing import Any

import pytest

from pharmapos.application.audit_service import AuditTrail
from pharmapos.application.connectivity import ConnectivityState
from pharmapos.application.reconciliation_engine import ReconciliationEngine
from pharmapos.application.record_mutations import RecordMutationService
from pharmapos.core.errors import RemoteOperationFailedError
from pharmapos.core.metrics import MetricsRegistry
from pharmapos.domain.models import EntityType, QueueAction, QueuedAction
from pharmapos.infrastructure.repos_sqlite import SQLiteCollectionStore


class _RemoteFake:
    def __init__(self, data: dict[str, list[dict]] | None = None, *, configured: bool = True) -> None:
        self.data = {collection: list(records) for collection, records in (data or {}).items()}
        self.configured = configured
        self.calls: list[tuple] = []
        self.fail_fetch: set[str] = set()
        self._lock = threading.Lock()

    def is_configured(self) -> bool:
        return self.configured

    def fetch_all(self, collection: str) -> list[dict]:
        with self._lock:
            self.calls.append(("fetch_all", collection))
        if collection in self.fail_fetch:
            raise RemoteOperationFailedError(f"fetch {collection} caído")
        return list(self.data.get(collection, []))

    def insert(self, collection: str, record: dict) -> None:
        self.calls.append(("insert", collection, record["id"]))
        self.data.setdefault(collection, []).append(record)

    def update(self, collection: str, record_id: str, record: dict) -> None:
        self.calls.append(("update", collection, record_id))

    def delete(self, collection: str, record_id: str) -> None:
        self.calls.append(("delete", collection, record_id))

    def upsert(self, collection: str, records) -> None:
        self.calls.append(("upsert", collection, len(records)))


@pytest.fixture
def fresh_metrics(monkeypatch) -> MetricsRegistry:
    registry = MetricsRegistry()
    monkeypatch.setattr("pharmapos.application.reconciliation_engine.metrics_registry", registry)
    monkeypatch.setattr("pharmapos.core.metrics.metrics_registry", registry)
    return registry


def test_full_sync_fusiona_guarda_y_reenvia_la_cola(stores, mutation_queue, connectivity, fresh_metrics) -> None:
    remote = _RemoteFake(
        {
            "medicines": [
                {"id": "m1", "name": "remoto", "updatedAt": "2024-03-01T00:00:00Z"},
                {"id": "m2", "name": "solo remoto"},
            ],
            "sales": [{"id": "s1", "total": 10}],
        }
    )
    stores[EntityType.MEDICINE].save(
        [
            {"id": "m1", "name": "local", "updatedAt": "2024-03-05T00:00:00Z"},
            {"id": "m3", "name": "solo local"},
        ]
    )
    mutation_queue.enqueue(
        QueuedAction(
            id="q1",
            type=EntityType.MEDICINE,
            action=QueueAction.CREATE,
            data={"id": "m3", "name": "solo local"},
            created_at="2024-03-05T00:00:00Z",
        )
    )
    connectivity.set_offline(True)
    engine = ReconciliationEngine(stores, mutation_queue, remote, connectivity)

    report = engine.full_sync()

    medicines = {record["id"]: record for record in stores[EntityType.MEDICINE].get_all()}
    assert medicines["m1"]["name"] == "local"
    assert medicines["m2"]["name"] == "solo remoto"
    assert medicines["m3"]["name"] == "solo local"
    assert stores[EntityType.SALE].get_all() == [{"id": "s1", "total": 10}]
    assert mutation_queue.count() == 0
    fetches = [call for call in remote.calls if call[0] == "fetch_all"]
    assert sorted(call[1] for call in fetches) == ["expenses", "medicines", "refunds", "sales"]
    assert remote.calls.index(("insert", "medicines", "m3")) > max(remote.calls.index(call) for call in fetches)
    assert report.status == "OK"
    assert report.queue.succeeded == 1
    summary = {item.collection: item for item in report.collections}
    assert summary["medicines"].merged_count == 3
    assert summary["medicines"].local_wins == 1
    assert summary["medicines"].local_only == 1
    assert connectivity.is_offline is False
    assert connectivity.last_sync_at == report.finished_at
    assert fresh_metrics.counter("syncs_executed") == 1
    assert fresh_metrics.snapshot()["timings_ms"]["latency.full_sync_ms"]["count"] == 1


def test_full_sync_sin_configurar_no_hace_llamadas_ni_cambia_estado(stores, mutation_queue, connectivity) -> None:
    remote = _RemoteFake({"sales": [{"id": "s1"}]}, configured=False)
    stores[EntityType.SALE].save([{"id": "local"}])
    connectivity.set_offline(True)

    report = ReconciliationEngine(stores, mutation_queue, remote, connectivity).full_sync()

    assert report.was_skipped
    assert remote.calls == []
    assert stores[EntityType.SALE].get_all() == [{"id": "local"}]
    assert connectivity.is_offline is True
    assert connectivity.last_sync_at is None


def test_full_sync_aborta_si_falla_cualquier_fetch(stores, mutation_queue, connectivity) -> None:
    remote = _RemoteFake({"medicines": [{"id": "m-remoto"}]})
    remote.fail_fetch = {"refunds"}
    stores[EntityType.MEDICINE].save([{"id": "m-local"}])
    mutation_queue.enqueue(
        QueuedAction(
            id="q1",
            type=EntityType.MEDICINE,
            action=QueueAction.CREATE,
            data={"id": "m-local"},
            created_at="2024-03-05T00:00:00Z",
        )
    )

    with pytest.raises(RemoteOperationFailedError, match="refunds"):
        ReconciliationEngine(stores, mutation_queue, remote, connectivity).full_sync()

    assert stores[EntityType.MEDICINE].get_all() == [{"id": "m-local"}]
    assert mutation_queue.count() == 1
    assert not any(call[0] == "insert" for call in remote.calls)
    assert connectivity.is_offline is True


def test_full_sync_marca_offline_si_falla_la_persistencia(stores, mutation_queue, connectivity) -> None:
    remote = _RemoteFake({"sales": [{"id": "s1"}]})

    def _explota(_records) -> None:
        raise RuntimeError("disco roto")

    stores[EntityType.SALE].save = _explota  # type: ignore[method-assign]

    with pytest.raises(RuntimeError, match="disco roto"):
        ReconciliationEngine(stores, mutation_queue, remote, connectivity).full_sync()

    assert connectivity.is_offline is True


def test_full_sync_vuelve_online_tras_un_fallo_previo(stores, mutation_queue, connectivity) -> None:
    remote = _RemoteFake()
    remote.fail_fetch = {"sales"}
    engine = ReconciliationEngine(stores, mutation_queue, remote, connectivity)

    with pytest.raises(RemoteOperationFailedError):
        engine.full_sync()
    assert connectivity.is_offline is True

    remote.fail_fetch = set()
    engine.full_sync()

    assert connectivity.is_offline is False


def test_full_sync_es_single_flight(stores, mutation_queue, connectivity) -> None:
    active = 0
    max_active = 0
    guard = threading.Lock()

    class _SlowRemote(_RemoteFake):
        def fetch_all(self, collection: str) -> list[dict]:
            nonlocal active, max_active
            if collection == "medicines":
                with guard:
                    active += 1
                    max_active = max(max_active, active)
                time.sleep(0.05)
                with guard:
                    active -= 1
            return super().fetch_all(collection)

    engine = ReconciliationEngine(stores, mutation_queue, _SlowRemote(), connectivity)
    errors: list[BaseException] = []

    def _run() -> None:
        try:
            engine.full_sync()
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=_run) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert max_active == 1


def test_alta_concurrente_durante_la_fusion_no_se_pierde(database, stores, mutation_queue, audit_log, connectivity) -> None:
    remote = _RemoteFake({"sales": [{"id": "s-remoto", "total": 1}]})
    offline = ConnectivityState()
    offline.set_offline(True)
    writer_state: dict[str, Any] = {}

    class _StoreConCajaConcurrente(SQLiteCollectionStore):
        def get_all(self) -> list[dict]:
            records = super().get_all()
            if "writer" not in writer_state:
                writer = threading.Thread(target=lambda: mutations.create("sale", {"id": "s-caja", "total": 7}))
                writer_state["writer"] = writer
                writer.start()
                writer.join(0.2)
                writer_state["blocked"] = writer.is_alive()
            return records

    sales = _StoreConCajaConcurrente(database, EntityType.SALE)
    all_stores = {**stores, EntityType.SALE: sales}
    engine = ReconciliationEngine(all_stores, mutation_queue, remote, connectivity)
    mutations = RecordMutationService(all_stores, mutation_queue, AuditTrail(audit_log), engine, remote, offline)

    engine.full_sync()
    writer_state["writer"].join(2)

    assert writer_state["blocked"] is True
    assert {record["id"] for record in sales.get_all()} == {"s-remoto", "s-caja"}
    pending = [action.record_id for action in mutation_queue.dequeue_all()]
    assert pending == ["s-caja"] or ("insert", "sales", "s-caja") in remote.calls
