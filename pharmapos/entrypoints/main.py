from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable

from pharmapos.application.sync_runner import RetryPolicy, SyncOptions
from pharmapos.bootstrap.container import AppContainer, build_container
from pharmapos.bootstrap.exception_handler import install_exception_hook
from pharmapos.bootstrap.logging import configure_logging
from pharmapos.bootstrap.settings import resolve_log_dir
from pharmapos.infrastructure.db import get_connection

ContainerFactory = Callable[[Path | None], AppContainer]

logger = logging.getLogger("pharmapos.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pharmapos", description="Reconciliación offline de PharmaPOS")
    parser.add_argument("--db", type=Path, default=None, help="Ruta al archivo SQLite")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Sincronización completa con reintentos")
    sync_parser.add_argument("--attempts", type=int, default=3, help="Intentos máximos")
    sync_parser.add_argument("--timeout", type=float, default=60.0, help="Timeout por intento en segundos")

    subparsers.add_parser("process-queue", help="Reenvía solo la cola de mutaciones pendientes")

    push_parser = subparsers.add_parser("push", help="Sube el snapshot local completo al remoto")
    push_parser.add_argument("--collection", default=None, help="medicine, sale, refund o expense")

    subparsers.add_parser("status", help="Estado de la cola y de la conexión")

    audit_parser = subparsers.add_parser("audit", help="Últimas entradas de auditoría")
    audit_parser.add_argument("--limit", type=int, default=50, help="Número de entradas a mostrar")
    return parser


def _default_container(db_path: Path | None) -> AppContainer:
    return build_container(lambda: get_connection(db_path))


def _write_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")


def main(argv: list[str] | None = None, *, container_factory: ContainerFactory = _default_container) -> int:
    args = _build_parser().parse_args(argv)
    log_dir = resolve_log_dir()
    configure_logging(log_dir)
    install_exception_hook(log_dir)

    container = container_factory(args.db)
    try:
        return _dispatch(args, container)
    finally:
        container.close()


def _dispatch(args: argparse.Namespace, container: AppContainer) -> int:
    if args.command == "sync":
        options = SyncOptions(
            operation="full_sync",
            timeout_seconds=args.timeout,
            retry_policy=RetryPolicy(max_attempts=max(1, args.attempts)),
        )
        report = container.sync_runner.run(options)
        _write_json(report.to_dict())
        return 0 if report.succeeded else 1

    if args.command == "process-queue":
        queue_report = container.engine.process_queue()
        _write_json(queue_report.to_dict())
        return 0 if queue_report.failed == 0 else 1

    if args.command == "push":
        if args.collection:
            pushed = {args.collection: container.engine.push_collection(args.collection)}
        else:
            pushed = container.engine.push_all()
        _write_json({"pushed": pushed})
        return 0

    if args.command == "status":
        _write_json(
            {
                "configured": container.gateway.is_configured(),
                "offline": container.connectivity.is_offline,
                "pending_actions": container.queue.count(),
                "last_sync_at": container.connectivity.last_sync_at,
            }
        )
        return 0

    for entry in container.audit_trail.recent(args.limit):
        _write_json(entry.to_dict())
    logger.info("Auditoría consultada", extra={"extra": {"limit": args.limit}})
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
