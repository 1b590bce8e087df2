from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, TypeVar

import gspread
from google.auth.exceptions import DefaultCredentialsError

from pharmapos.core.operational_logging import log_operational_error
from pharmapos.domain.ports import SheetsClientPort
from pharmapos.domain.sheets_errors import SheetsPermissionError, SheetsRateLimitError
from pharmapos.infrastructure.sheets_client_puros import RateLimitRetry
from pharmapos.infrastructure.sheets_errors import map_gspread_exception

logger = logging.getLogger(__name__)

# Los registros viajan como JSON; Sheets no debe convertirlos en fechas o números.
_VALUE_INPUT_OPTION = "RAW"
_CONNECT_ERRORS = (
    gspread.exceptions.GSpreadException,
    json.JSONDecodeError,
    DefaultCredentialsError,
    OSError,
)

T = TypeVar("T")


class SheetsClient(SheetsClientPort):
    """Acceso gspread a las hojas de una sola hoja de cálculo.

    Guarda en memoria los worksheets abiertos y la última lectura de cada uno; toda
    escritura invalida la lectura de su hoja. ``full_sync`` lee las colecciones desde
    varios hilos, así que ambas cachés van bajo un lock.
    """

    def __init__(self, sleeper: Callable[[float], None] = time.sleep, retry: RateLimitRetry | None = None) -> None:
        self._sleeper = sleeper
        self._retry = retry or RateLimitRetry()
        self._lock = threading.RLock()
        self._spreadsheet: gspread.Spreadsheet | None = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._values: dict[str, list[list[str]]] = {}

    def open_spreadsheet(self, credentials_path: Path, spreadsheet_id: str) -> gspread.Spreadsheet:
        logger.info("Abriendo hoja %s con %s", spreadsheet_id, Path(credentials_path).name)
        try:
            account = gspread.service_account(filename=str(credentials_path))
            spreadsheet = self._call(
                "open_spreadsheet",
                lambda: account.open_by_key(spreadsheet_id),
                spreadsheet_id=spreadsheet_id,
            )
        except _CONNECT_ERRORS as exc:
            error = map_gspread_exception(exc)
            if isinstance(error, SheetsPermissionError):
                self._report_permission_error(error, spreadsheet_id)
            raise error from exc
        with self._lock:
            self._spreadsheet = spreadsheet
            self._worksheets.clear()
            self._values.clear()
        return spreadsheet

    def get_worksheet(self, name: str) -> gspread.Worksheet:
        with self._lock:
            worksheet = self._worksheets.get(name)
            spreadsheet = self._spreadsheet
        if worksheet is not None:
            return worksheet
        if spreadsheet is None:
            raise RuntimeError("Spreadsheet no inicializado. Llama a open_spreadsheet primero.")
        worksheet = self._call("worksheet", lambda: spreadsheet.worksheet(name), worksheet=name)
        with self._lock:
            self._worksheets[name] = worksheet
        return worksheet

    def read_all_values(self, worksheet_name: str) -> list[list[str]]:
        with self._lock:
            values = self._values.get(worksheet_name)
        if values is None:
            worksheet = self.get_worksheet(worksheet_name)
            values = self._call("get_all_values", worksheet.get_all_values, worksheet=worksheet_name)
            with self._lock:
                self._values[worksheet_name] = values
        return values

    def invalidate(self, worksheet_name: str) -> None:
        with self._lock:
            self._values.pop(worksheet_name, None)

    def append_rows(self, worksheet_name: str, rows: list[list[Any]]) -> None:
        if rows:
            self._write(
                worksheet_name,
                "append_rows",
                lambda worksheet: worksheet.append_rows(rows, value_input_option=_VALUE_INPUT_OPTION),
            )

    def batch_update(self, worksheet_name: str, data: list[dict[str, Any]]) -> None:
        if data:
            self._write(
                worksheet_name,
                "batch_update",
                lambda worksheet: worksheet.batch_update(data, value_input_option=_VALUE_INPUT_OPTION),
            )

    def delete_rows(self, worksheet_name: str, row_index: int) -> None:
        self._write(worksheet_name, "delete_rows", lambda worksheet: worksheet.delete_rows(row_index))

    def _write(self, worksheet_name: str, action: str, operation: Callable[[gspread.Worksheet], Any]) -> None:
        worksheet = self.get_worksheet(worksheet_name)
        try:
            self._call(action, lambda: operation(worksheet), worksheet=worksheet_name)
        finally:
            self.invalidate(worksheet_name)

    def _call(
        self,
        action: str,
        operation: Callable[[], T],
        *,
        worksheet: str | None = None,
        spreadsheet_id: str | None = None,
    ) -> T:
        attempt = 1
        while True:
            try:
                return operation()
            except gspread.exceptions.APIError as exc:
                error = map_gspread_exception(exc)
                error.worksheet = worksheet  # type: ignore[attr-defined]
                if isinstance(error, SheetsRateLimitError) and self._retry.allows_retry(attempt):
                    delay = self._retry.backoff_seconds(attempt)
                    logger.warning(
                        "Cuota de Google Sheets agotada en %s(%s); intento %s/%s, espera %.1fs",
                        action,
                        worksheet or "-",
                        attempt,
                        self._retry.max_attempts,
                        delay,
                    )
                    self._sleeper(delay)
                    attempt += 1
                    continue
                if isinstance(error, SheetsRateLimitError):
                    logger.error("Cuota de Google Sheets agotada en %s tras %s intentos", action, attempt)
                elif isinstance(error, SheetsPermissionError):
                    self._report_permission_error(error, spreadsheet_id or getattr(self._spreadsheet, "id", None))
                raise error from exc

    @staticmethod
    def _report_permission_error(error: SheetsPermissionError, spreadsheet_id: str | None) -> None:
        log_operational_error(
            logger,
            "Sync failed: permisos insuficientes en Google Sheets",
            exc=error,
            extra={
                "operation": "sheets_permission_check",
                "spreadsheet_id": spreadsheet_id,
                "worksheet": error.worksheet,
            },
        )
