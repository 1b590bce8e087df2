from __future__ import annotations

import json
from typing import Callable, Optional

import gspread
from google.auth.exceptions import DefaultCredentialsError

from pharmapos.core.errors import RemoteOperationFailedError
from pharmapos.domain.sheets_errors import (
    SheetsApiDisabledError,
    SheetsConfigError,
    SheetsCredentialsError,
    SheetsNotFoundError,
    SheetsPermissionError,
    SheetsRateLimitError,
)

_QUOTA_STATUSES = frozenset({429, 500, 503})
_QUOTA_MARKERS = (
    "[429]",
    "resource_exhausted",
    "rate_limit_exceeded",
    "quota exceeded",
    "requests per minute per user",
)

ApiRule = tuple[Callable[[str, Optional[int]], bool], type[RemoteOperationFailedError]]


def _quota_exhausted(text: str, status: int | None) -> bool:
    return status in _QUOTA_STATUSES or any(marker in text for marker in _QUOTA_MARKERS)


def _api_disabled(text: str, _status: int | None) -> bool:
    return "google sheets api has not been used" in text or "it is disabled" in text


def _not_found(text: str, status: int | None) -> bool:
    return status == 404 or "[404]" in text or "requested entity was not found" in text


def _forbidden(text: str, status: int | None) -> bool:
    return status == 403 or "[403]" in text or "permission_denied" in text


# El orden importa: un 403 por API deshabilitada no es un problema de permisos.
_API_RULES: tuple[ApiRule, ...] = (
    (_quota_exhausted, SheetsRateLimitError),
    (_api_disabled, SheetsApiDisabledError),
    (_not_found, SheetsNotFoundError),
    (_forbidden, SheetsPermissionError),
)


def _status_and_text(error: gspread.exceptions.APIError) -> tuple[int | None, str]:
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    text = str(getattr(response, "text", "") or error)
    return status, text.strip().lower()


def is_rate_limited_api_error(error: Exception) -> bool:
    if not isinstance(error, gspread.exceptions.APIError):
        return False
    status, text = _status_and_text(error)
    return _quota_exhausted(text, status)


def classify_api_error(text_lower: str, status_code: int | None) -> RemoteOperationFailedError:
    for matches, error_type in _API_RULES:
        if matches(text_lower, status_code):
            return error_type()
    return SheetsConfigError(text_lower or None)


def map_gspread_exception(error: Exception) -> RemoteOperationFailedError:
    """Traduce errores de gspread, google-auth y del fichero de credenciales a la taxonomía propia."""
    if isinstance(error, RemoteOperationFailedError):
        return error
    if isinstance(error, gspread.exceptions.APIError):
        status, text = _status_and_text(error)
        return classify_api_error(text, status)
    if isinstance(error, gspread.exceptions.WorksheetNotFound):
        return SheetsNotFoundError(f"No existe la worksheet {error}.", worksheet=str(error) or None)
    if isinstance(error, FileNotFoundError):
        location = f" en {error.filename}" if error.filename else ""
        return SheetsCredentialsError(f"No se encuentra credentials.json{location}.")
    if isinstance(error, (json.JSONDecodeError, DefaultCredentialsError)):
        return SheetsCredentialsError()
    return RemoteOperationFailedError(f"Error de Google Sheets: {error}")
