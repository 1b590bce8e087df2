from __future__ import annotations

import logging

import gspread

from pharmapos.domain.ports import SheetsRepositoryPort

logger = logging.getLogger(__name__)

_HEADER_ROW = "1:1"
_INITIAL_ROWS = 1000


class SheetsRepository(SheetsRepositoryPort):
    """Prepara una worksheet por colección con, al menos, las columnas esperadas.

    Nunca reordena ni borra columnas: las que un usuario haya añadido a mano se
    conservan y las que faltan se añaden al final de la cabecera.
    """

    def ensure_schema(self, spreadsheet: gspread.Spreadsheet, schema: dict[str, list[str]]) -> list[str]:
        changes: list[str] = []
        for collection, columns in schema.items():
            worksheet, created = self._open_or_add(spreadsheet, collection, len(columns))
            if created:
                changes.append(f"{collection}: hoja creada")
            change = self._complete_header(worksheet, collection, columns)
            if change:
                changes.append(change)
        if changes:
            logger.info("Esquema remoto ajustado: %s", "; ".join(changes))
        return changes

    @staticmethod
    def _open_or_add(
        spreadsheet: gspread.Spreadsheet, collection: str, column_count: int
    ) -> tuple[gspread.Worksheet, bool]:
        try:
            return spreadsheet.worksheet(collection), False
        except gspread.WorksheetNotFound:
            return spreadsheet.add_worksheet(title=collection, rows=_INITIAL_ROWS, cols=column_count), True

    @staticmethod
    def _complete_header(worksheet: gspread.Worksheet, collection: str, columns: list[str]) -> str | None:
        header = [cell for cell in worksheet.row_values(1) if cell]
        missing = [column for column in columns if column not in header]
        if not missing:
            return None
        worksheet.update(range_name=_HEADER_ROW, values=[header + missing])
        if not header:
            return f"{collection}: cabecera escrita"
        return f"{collection}: columnas añadidas {', '.join(missing)}"
