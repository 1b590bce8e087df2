from __future__ import annotations

import sys

from pharmapos.bootstrap.exception_handler import report_crash
from pharmapos.entrypoints.main import main


try:
    raise SystemExit(main())
except SystemExit:
    raise
except Exception as exc:  # noqa: BLE001
    incident_id = report_crash(type(exc), exc, exc.__traceback__)
    sys.stderr.write(f"Error inesperado. ID de incidente: {incident_id}\n")
    raise SystemExit(2)
