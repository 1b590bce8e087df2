from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
from logging.handlers import RotatingFileHandler
import os
from pathlib import Path
from typing import Any, Callable

from pharmapos.core.observability import current_trace

DEFAULT_LOG_MAX_BYTES = 1_048_576
DEFAULT_LOG_BACKUP_COUNT = 10
MAIN_LOG_NAME = "pharmapos.log"
SYNC_EVENTS_LOG_NAME = "sync_events.jsonl"
OPERATIONAL_ERROR_LOG_NAME = "operational_error.log"
CRASH_LOG_NAME = "crash.log"

SYNC_EVENTS_LOGGER = "pharmapos.sync.events"

RecordPredicate = Callable[[logging.LogRecord], bool]


@dataclass(frozen=True)
class LogChannel:
    """Un fichero de log rotativo y qué registros acepta."""

    file_name: str
    level: int
    accepts: RecordPredicate


def _is_sync_event(record: logging.LogRecord) -> bool:
    return record.name == SYNC_EVENTS_LOGGER or record.name.startswith(f"{SYNC_EVENTS_LOGGER}.")


def _is_operational_error(record: logging.LogRecord) -> bool:
    return record.levelno == logging.ERROR


def _is_crash(record: logging.LogRecord) -> bool:
    return record.levelno >= logging.CRITICAL


def default_channels(level: int = logging.INFO) -> tuple[LogChannel, ...]:
    # Los eventos del runner solo van a su canal.
    return (
        LogChannel(MAIN_LOG_NAME, level, lambda record: not _is_sync_event(record)),
        LogChannel(SYNC_EVENTS_LOG_NAME, logging.INFO, _is_sync_event),
        LogChannel(OPERATIONAL_ERROR_LOG_NAME, logging.ERROR, _is_operational_error),
        LogChannel(CRASH_LOG_NAME, logging.CRITICAL, _is_crash),
    )


class JsonLinesFormatter(logging.Formatter):
    """Un evento JSON por línea con correlation_id y operación en curso."""

    def format(self, record: logging.LogRecord) -> str:
        trace = current_trace()
        event: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or (trace.correlation_id if trace else None),
            "operation": trace.operation if trace else None,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict) and extra:
            event["extra"] = extra
        if record.exc_info:
            event["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(event, ensure_ascii=False, default=str)


def _max_bytes_from_env() -> int:
    raw_value = os.getenv("PHARMAPOS_LOG_MAX_BYTES", "")
    return int(raw_value) if raw_value.strip().isdigit() else DEFAULT_LOG_MAX_BYTES


def _build_handler(log_dir: Path, channel: LogChannel, *, max_bytes: int, backup_count: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        log_dir / channel.file_name,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(channel.level)
    handler.addFilter(channel.accepts)
    handler.setFormatter(JsonLinesFormatter())
    return handler


def configure_logging(
    log_dir: Path,
    *,
    max_bytes: int | None = None,
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
    level: int = logging.INFO,
    channels: tuple[LogChannel, ...] | None = None,
) -> list[RotatingFileHandler]:
    """Sustituye los handlers raíz por un fichero JSONL rotativo por canal."""
    log_dir.mkdir(parents=True, exist_ok=True)
    resolved_max_bytes = max_bytes or _max_bytes_from_env()

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(level)

    handlers = [
        _build_handler(log_dir, channel, max_bytes=resolved_max_bytes, backup_count=backup_count)
        for channel in channels or default_channels(level)
    ]
    for handler in handlers:
        root_logger.addHandler(handler)
    return handlers

