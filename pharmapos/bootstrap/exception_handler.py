from __future__ import annotations

import json
import logging
import sys
import traceback
import uuid
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType

from pharmapos.bootstrap.logging import CRASH_LOG_NAME
from pharmapos.bootstrap.settings import resolve_log_dir
from pharmapos.core.observability import current_operation, generate_correlation_id, get_correlation_id

CRASH_LOGGER = "pharmapos.crash"


def new_incident_id() -> str:
    return f"INC-{uuid.uuid4().hex[:12].upper()}"


def report_crash(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_traceback: TracebackType | None,
    *,
    log_dir: Path | None = None,
    logger: logging.Logger | None = None,
) -> str:
    """Deja constancia de un error no controlado y devuelve su id de incidente.

    Si el logging aún no está configurado (fallo durante el arranque), el incidente
    se escribe directamente en ``crash.log``.
    """
    incident_id = new_incident_id()
    details = {
        "incident_id": incident_id,
        "correlation_id": get_correlation_id() or generate_correlation_id(),
        "operation": current_operation(),
    }
    crash_logger = logger or logging.getLogger(CRASH_LOGGER)
    if crash_logger.hasHandlers():
        crash_logger.critical(
            "Excepción no controlada (%s)",
            incident_id,
            exc_info=(exc_type, exc_value, exc_traceback),
            extra={"correlation_id": details["correlation_id"], "extra": details},
        )
    else:
        _append_crash_file(log_dir or resolve_log_dir(), details, exc_type, exc_value, exc_traceback)
    return incident_id


def _append_crash_file(
    log_dir: Path,
    details: dict[str, str | None],
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_traceback: TracebackType | None,
) -> None:
    event = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "CRITICAL",
        "logger": CRASH_LOGGER,
        "message": f"Excepción no controlada ({details['incident_id']})",
        **details,
        "exc_info": "".join(traceback.format_exception(exc_type, exc_value, exc_traceback)),
    }
    log_dir.mkdir(parents=True, exist_ok=True)
    with (log_dir / CRASH_LOG_NAME).open("a", encoding="utf-8") as crash_file:
        crash_file.write(json.dumps(event, ensure_ascii=False) + "\n")


def install_exception_hook(log_dir: Path) -> None:
    def _hook(exc_type: type[BaseException], exc_value: BaseException, exc_traceback: TracebackType | None) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        incident_id = report_crash(exc_type, exc_value, exc_traceback, log_dir=log_dir)
        sys.stderr.write(f"Error inesperado. ID de incidente: {incident_id}\n")

    sys.excepthook = _hook
