from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Iterator

APP_DIR_NAME = "PharmaPOS"
REPO_ROOT = Path(__file__).resolve().parents[2]


def _log_dir_candidates() -> Iterator[Path]:
    configured = os.environ.get("PHARMAPOS_LOG_DIR")
    if configured:
        yield Path(configured)
    yield REPO_ROOT / "logs"
    yield Path(tempfile.gettempdir()) / APP_DIR_NAME / "logs"


def _writable(directory: Path) -> bool:
    try:
        directory.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryFile(dir=directory):
            pass
    except OSError:
        return False
    return True


def resolve_log_dir() -> Path:
    """Primera carpeta de logs escribible: ``PHARMAPOS_LOG_DIR``, ``logs/`` del repo o el temporal."""
    for candidate in _log_dir_candidates():
        if _writable(candidate):
            return candidate
    return REPO_ROOT


def resolve_db_path() -> Path:
    configured = os.environ.get("PHARMAPOS_DB_PATH")
    return Path(configured) if configured else REPO_ROOT / "logs" / "runtime" / "pharmapos.db"
