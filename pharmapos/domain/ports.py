from __future__ import annotations

from contextlib import AbstractContextManager
from pathlib import Path
from typing import Any, Callable, Protocol, Sequence

from pharmapos.domain.models import AuditLogEntry, EntityType, QueuedAction, Record, RemoteConfig


class CollectionStorePort(Protocol):
    entity_type: EntityType

    def atomic(self) -> AbstractContextManager[Any]:
        ...

    def get_all(self) -> list[Record]:
        ...

    def save(self, records: Sequence[Record]) -> None:
        ...

    def get_by_id(self, record_id: str) -> Record | None:
        ...

    def upsert(self, record: Record) -> None:
        ...

    def delete(self, record_id: str) -> None:
        ...


class MutationQueuePort(Protocol):
    def enqueue(self, action: QueuedAction) -> None:
        ...

    def dequeue_all(self) -> list[QueuedAction]:
        ...

    def remove(self, action_id: str) -> None:
        ...

    def record_failure(self, action_id: str, error: str) -> None:
        ...

    def count(self) -> int:
        ...


class AuditLogPort(Protocol):
    def add(self, entry: AuditLogEntry) -> None:
        ...

    def get_all(self) -> list[AuditLogEntry]:
        ...

    def clear(self) -> None:
        ...


class RemoteGatewayPort(Protocol):
    def upsert(self, collection: str, records: Sequence[Record]) -> None:
        ...

    def fetch_all(self, collection: str) -> list[Record]:
        ...

    def insert(self, collection: str, record: Record) -> None:
        ...

    def update(self, collection: str, record_id: str, record: Record) -> None:
        ...

    def delete(self, collection: str, record_id: str) -> None:
        ...

    def is_configured(self) -> bool:
        ...


class ConnectivityStatePort(Protocol):
    @property
    def is_offline(self) -> bool:
        ...

    def set_offline(self, offline: bool) -> None:
        ...

    def mark_synced(self, at: str) -> None:
        ...


class RemoteConfigStorePort(Protocol):
    def load(self) -> RemoteConfig | None:
        ...

    def save(self, config: RemoteConfig) -> RemoteConfig:
        ...

    def credentials_path(self) -> Path:
        ...


class SheetsClientPort(Protocol):
    def open_spreadsheet(self, credentials_path: Path, spreadsheet_id: str) -> Any:
        ...

    def get_worksheet(self, name: str) -> Any:
        ...

    def read_all_values(self, worksheet_name: str) -> list[list[str]]:
        ...

    def append_rows(self, worksheet_name: str, rows: list[list[Any]]) -> None:
        ...

    def batch_update(self, worksheet_name: str, data: list[dict[str, Any]]) -> None:
        ...

    def delete_rows(self, worksheet_name: str, row_index: int) -> None:
        ...

    def invalidate(self, worksheet_name: str) -> None:
        ...


class SheetsRepositoryPort(Protocol):
    def ensure_schema(self, spreadsheet: Any, schema: dict[str, list[str]]) -> list[str]:
        ...


CurrentUserProvider = Callable[[], Any]
