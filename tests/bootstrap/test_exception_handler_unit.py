from __future__ import annotations

import json
import logging
import sys

from pharmapos.bootstrap import exception_handler
from pharmapos.bootstrap.logging import CRASH_LOG_NAME
from pharmapos.core.observability import OperationContext


def _raise(exc: BaseException):
    try:
        raise exc
    except BaseException as caught:  # noqa: BLE001
        return type(caught), caught, caught.__traceback__


def test_new_incident_id_formato() -> None:
    incident_id = exception_handler.new_incident_id()

    assert incident_id.startswith("INC-")
    assert len(incident_id) == 16


def test_report_crash_loguea_critical_con_incidente_y_operacion(caplog) -> None:
    with caplog.at_level(logging.CRITICAL, logger=exception_handler.CRASH_LOGGER):
        with OperationContext("full_sync") as operation:
            incident_id = exception_handler.report_crash(*_raise(ValueError("fallo esperado")))

    record = caplog.records[-1]
    assert record.levelno == logging.CRITICAL
    assert record.exc_info[0] is ValueError
    assert record.extra["incident_id"] == incident_id
    assert record.extra["correlation_id"] == operation.correlation_id
    assert record.extra["operation"] == "full_sync"


def test_report_crash_sin_logging_configurado_escribe_crash_log(tmp_path) -> None:
    silent = logging.getLogger("tests.arranque_sin_handlers")
    silent.propagate = False

    incident_id = exception_handler.report_crash(*_raise(RuntimeError("explota")), log_dir=tmp_path, logger=silent)

    event = json.loads((tmp_path / CRASH_LOG_NAME).read_text(encoding="utf-8").splitlines()[-1])
    assert event["incident_id"] == incident_id
    assert event["level"] == "CRITICAL"
    assert event["correlation_id"]
    assert "RuntimeError: explota" in event["exc_info"]


def test_install_exception_hook_reporta_y_muestra_incidente(monkeypatch, tmp_path, capsys) -> None:
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    reported: list[type[BaseException]] = []
    monkeypatch.setattr(
        exception_handler,
        "report_crash",
        lambda exc_type, *_args, **_kwargs: reported.append(exc_type) or "INC-HOOK",
    )

    exception_handler.install_exception_hook(tmp_path)
    sys.excepthook(*_raise(KeyError("x")))

    assert reported == [KeyError]
    assert "INC-HOOK" in capsys.readouterr().err
