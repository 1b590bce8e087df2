from __future__ import annotations

import json
import logging
from typing import Any, Sequence

from pharmapos.core.errors import NotConfiguredError, RemoteOperationFailedError
from pharmapos.domain.models import EntityType, Record

logger = logging.getLogger(__name__)

RECORD_HEADERS = ["id", "createdAt", "updatedAt", "payload"]
SHEETS_SCHEMA: dict[str, list[str]] = {entity_type.collection: list(RECORD_HEADERS) for entity_type in EntityType}


def normalize_cell(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def record_to_row(
    record: Record,
    headers: Sequence[Any] = RECORD_HEADERS,
    fallback: Sequence[Any] | None = None,
) -> list[str]:
    """Valores de la fila en el orden de ``headers``; columnas ajenas conservan ``fallback``."""
    known = {
        "id": normalize_cell(record.get("id")),
        "createdAt": normalize_cell(record.get("createdAt")),
        "updatedAt": normalize_cell(record.get("updatedAt")),
        "payload": json.dumps(record, ensure_ascii=False, sort_keys=True, default=str),
    }
    existing = list(fallback or [])
    values: list[str] = []
    for idx, header in enumerate(headers):
        name = normalize_cell(header)
        if name in known:
            values.append(known[name])
        else:
            values.append(normalize_cell(existing[idx]) if idx < len(existing) else "")
    return values


def row_to_record(headers: Sequence[Any], row: Sequence[Any]) -> Record | None:
    """Reconstruye un registro desde una fila; ``payload`` manda sobre las columnas sueltas."""
    cells = {normalize_cell(header): normalize_cell(row[idx]) if idx < len(row) else "" for idx, header in enumerate(headers)}
    record_id = cells.get("id", "")
    if not record_id:
        return None
    record: Record = {}
    raw_payload = cells.get("payload", "")
    if raw_payload:
        try:
            decoded = json.loads(raw_payload)
        except json.JSONDecodeError:
            logger.warning("Payload ilegible en fila remota id=%s; se usan las columnas base", record_id)
        else:
            if isinstance(decoded, dict):
                record = decoded
    record["id"] = record_id
    if "createdAt" not in record and cells.get("createdAt"):
        record["createdAt"] = cells["createdAt"]
    if "updatedAt" not in record and cells.get("updatedAt"):
        record["updatedAt"] = cells["updatedAt"]
    return record


def rows_to_records(values: list[list[Any]]) -> list[Record]:
    if not values:
        return []
    headers = values[0]
    records: dict[str, Record] = {}
    for row in values[1:]:
        record = row_to_record(headers, row)
        if record is not None:
            records[record["id"]] = record
    return list(records.values())


def index_rows_by_id(values: list[list[Any]]) -> dict[str, int]:
    """Mapa id -> número de fila (1-based, la cabecera es la fila 1)."""
    if not values:
        return {}
    headers = [normalize_cell(header) for header in values[0]]
    if "id" not in headers:
        return {}
    id_col = headers.index("id")
    index: dict[str, int] = {}
    for row_number, row in enumerate(values[1:], start=2):
        record_id = normalize_cell(row[id_col]) if id_col < len(row) else ""
        if record_id and record_id not in index:
            index[record_id] = row_number
    return index


def map_gateway_error(exc: Exception) -> Exception:
    if isinstance(exc, (RemoteOperationFailedError, NotConfiguredError)):
        return exc
    message = str(exc).strip() or exc.__class__.__name__
    return RemoteOperationFailedError(f"Error de sincronización con Google Sheets: {message}")
