from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Sequence, TypeVar

from gspread.utils import rowcol_to_a1

from pharmapos.core.errors import NotConfiguredError, ValidationError
from pharmapos.domain.models import Record
from pharmapos.domain.ports import RemoteConfigStorePort, RemoteGatewayPort, SheetsClientPort, SheetsRepositoryPort
from pharmapos.infrastructure.local_config import is_remote_configured
from pharmapos.infrastructure.sheets_gateway_puros import (
    RECORD_HEADERS,
    SHEETS_SCHEMA,
    index_rows_by_id,
    map_gateway_error,
    normalize_cell,
    record_to_row,
    rows_to_records,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _row_range(row_number: int, total_columns: int) -> str:
    return f"{rowcol_to_a1(row_number, 1)}:{rowcol_to_a1(row_number, total_columns)}"


class SheetsRemoteGateway(RemoteGatewayPort):
    """Almacén remoto sobre Google Sheets: una worksheet por colección, una fila por id.

    ``insert`` se comporta como upsert por id para que reenviar una acción de la
    cola (entrega al menos una vez) nunca duplique filas.
    """

    def __init__(
        self,
        config_store: RemoteConfigStorePort,
        client: SheetsClientPort,
        repository: SheetsRepositoryPort,
    ) -> None:
        self._config_store = config_store
        self._client = client
        self._repository = repository
        self._open_lock = threading.Lock()
        self._opened_spreadsheet_id: str | None = None

    def is_configured(self) -> bool:
        return is_remote_configured(self._config_store.load())

    def fetch_all(self, collection: str) -> list[Record]:
        def _operation() -> list[Record]:
            values = self._fresh_values(collection)
            return rows_to_records(values)

        return self._call(f"fetch_all({collection})", _operation)

    def upsert(self, collection: str, records: Sequence[Record]) -> None:
        if not records:
            return

        def _operation() -> None:
            values = self._fresh_values(collection)
            headers = list(values[0]) if values else list(RECORD_HEADERS)
            index = index_rows_by_id(values)
            updates: list[dict[str, Any]] = []
            new_rows: dict[str, list[str]] = {}
            for record in records:
                record_id = self._require_id(record, collection)
                row_number = index.get(record_id)
                if row_number is None:
                    new_rows[record_id] = record_to_row(record, headers)
                    continue
                updates.append(
                    {
                        "range": _row_range(row_number, len(headers)),
                        "values": [record_to_row(record, headers, values[row_number - 1])],
                    }
                )
            self._client.batch_update(collection, updates)
            self._client.append_rows(collection, list(new_rows.values()))
            logger.info(
                "Upsert remoto en %s: actualizadas=%s nuevas=%s",
                collection,
                len(updates),
                len(new_rows),
            )

        self._call(f"upsert({collection})", _operation)

    def insert(self, collection: str, record: Record) -> None:
        self.upsert(collection, [record])

    def update(self, collection: str, record_id: str, record: Record) -> None:
        payload = {**record, "id": record_id}

        def _operation() -> None:
            values = self._fresh_values(collection)
            row_number = index_rows_by_id(values).get(normalize_cell(record_id))
            if row_number is None:
                logger.info("Update remoto sin fila para id=%s en %s; no hay nada que actualizar", record_id, collection)
                return
            headers = list(values[0])
            self._client.batch_update(
                collection,
                [
                    {
                        "range": _row_range(row_number, len(headers)),
                        "values": [record_to_row(payload, headers, values[row_number - 1])],
                    }
                ],
            )

        self._call(f"update({collection})", _operation)

    def delete(self, collection: str, record_id: str) -> None:
        def _operation() -> None:
            values = self._fresh_values(collection)
            row_number = index_rows_by_id(values).get(normalize_cell(record_id))
            if row_number is None:
                logger.info("Delete remoto de id=%s en %s: la fila ya no existe", record_id, collection)
                return
            self._client.delete_rows(collection, row_number)

        self._call(f"delete({collection})", _operation)

    def _fresh_values(self, collection: str) -> list[list[str]]:
        self._ensure_open()
        self._client.invalidate(collection)
        return self._client.read_all_values(collection)

    def _ensure_open(self) -> None:
        config = self._config_store.load()
        if config is None or not is_remote_configured(config):
            raise NotConfiguredError("Google Sheets no está configurado (falta spreadsheet o credenciales).")
        with self._open_lock:
            if self._opened_spreadsheet_id == config.spreadsheet_id:
                return
            spreadsheet = self._client.open_spreadsheet(Path(config.credentials_path), config.spreadsheet_id)
            self._repository.ensure_schema(spreadsheet, SHEETS_SCHEMA)
            self._opened_spreadsheet_id = config.spreadsheet_id

    @staticmethod
    def _require_id(record: Record, collection: str) -> str:
        record_id = normalize_cell(record.get("id"))
        if not record_id:
            raise ValidationError(f"Registro sin id para la colección {collection}.")
        return record_id

    @staticmethod
    def _call(operation_name: str, operation: Callable[[], T]) -> T:
        try:
            return operation()
        except Exception as exc:  # noqa: BLE001
            mapped = map_gateway_error(exc)
            if mapped is exc:
                raise
            logger.debug("Error remoto en %s mapeado a %s", operation_name, type(mapped).__name__)
            raise mapped from exc
