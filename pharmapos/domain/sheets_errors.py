from __future__ import annotations

from pharmapos.core.errors import RemoteOperationFailedError, TransientExternalError


class _SheetsFailure:
    """Mensaje por defecto legible para el usuario y hoja afectada, si se conoce."""

    default_message = "Error de Google Sheets."

    def __init__(self, message: str | None = None, *, worksheet: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.worksheet = worksheet


class SheetsConfigError(_SheetsFailure, RemoteOperationFailedError):
    default_message = "La configuración de Google Sheets no es válida."


class SheetsApiDisabledError(SheetsConfigError):
    default_message = "La API de Google Sheets no está habilitada en el proyecto de Google Cloud."


class SheetsPermissionError(SheetsConfigError):
    default_message = "La hoja no está compartida con la cuenta de servicio."


class SheetsNotFoundError(SheetsConfigError):
    default_message = "El Spreadsheet ID no es válido o la hoja no existe."


class SheetsCredentialsError(SheetsConfigError):
    default_message = "El credentials.json no es válido. Revisa el contenido del archivo."


class SheetsRateLimitError(_SheetsFailure, TransientExternalError):
    default_message = "Límite de Google Sheets alcanzado. Espera 1 minuto y reintenta."
