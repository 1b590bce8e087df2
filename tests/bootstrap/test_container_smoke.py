from __future__ import annotations

import sqlite3
import threading

from pharmapos.bootstrap.container import build_container
from pharmapos.domain.models import CurrentUser, EntityType
from pharmapos.infrastructure.local_config import RemoteConfigStore
from pharmapos.infrastructure.sheets_gateway_gspread import SheetsRemoteGateway


def _memory_connection() -> sqlite3.Connection:
    return sqlite3.connect(":memory:", check_same_thread=False)


def test_build_container_cablea_el_nucleo_sin_configuracion_remota(tmp_path) -> None:
    container = build_container(
        _memory_connection,
        config_store=RemoteConfigStore(tmp_path / "appdata"),
        current_user=lambda: CurrentUser(id="u1", username="caja-1"),
    )
    try:
        assert isinstance(container.gateway, SheetsRemoteGateway)
        assert not container.gateway.is_configured()
        assert set(container.stores) == set(EntityType)

        record = container.mutations.create("sale", {"total": 12})
        report = container.engine.full_sync()

        assert report.was_skipped
        assert container.queue.count() == 1
        assert container.stores[EntityType.SALE].get_by_id(record["id"]) == record
        assert container.audit_trail.recent(1)[0].username == "caja-1"
        assert container.connectivity.is_offline is False
    finally:
        container.close()

    assert container.database.closed


class _BlockingRemote:
    def __init__(self) -> None:
        self.entered = threading.Event()
        self.release = threading.Event()

    def is_configured(self) -> bool:
        return True

    def fetch_all(self, collection: str) -> list[dict]:
        self.entered.set()
        self.release.wait(5)
        return []

    def insert(self, collection: str, record: dict) -> None:
        pass

    def update(self, collection: str, record_id: str, record: dict) -> None:
        pass

    def delete(self, collection: str, record_id: str) -> None:
        pass

    def upsert(self, collection: str, records) -> None:
        pass


def test_close_espera_a_la_sincronizacion_en_curso(tmp_path) -> None:
    remote = _BlockingRemote()
    container = build_container(
        _memory_connection,
        config_store=RemoteConfigStore(tmp_path / "appdata"),
        gateway=remote,
    )
    errors: list[BaseException] = []

    def _sync() -> None:
        try:
            container.engine.full_sync()
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    worker = threading.Thread(target=_sync)
    worker.start()
    assert remote.entered.wait(2)

    assert container.close(timeout=0.05) is False
    assert not container.database.closed

    closer = threading.Thread(target=container.close)
    closer.start()
    closer.join(0.1)
    assert closer.is_alive()

    remote.release.set()
    worker.join(2)
    closer.join(2)

    assert errors == []
    assert container.database.closed
    assert container.connectivity.last_sync_at is not None
