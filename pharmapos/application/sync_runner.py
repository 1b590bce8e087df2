from __future__ import annotations

import contextvars
from dataclasses import dataclass, field
import logging
import threading
import time
from typing import Any, Callable, Iterator, Literal, Protocol, cast

from pharmapos.core.errors import TransientExternalError
from pharmapos.core.observability import OperationContext
from pharmapos.domain.sync_models import FullSyncReport, QueueReplayReport

logger = logging.getLogger(__name__)
events_logger = logging.getLogger("pharmapos.sync.events")

SyncOperation = Literal["full_sync", "process_queue"]
SyncResult = FullSyncReport | QueueReplayReport

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (TransientExternalError, TimeoutError, ConnectionError)


class SyncEngine(Protocol):
    def full_sync(self) -> FullSyncReport:
        ...

    def process_queue(self) -> QueueReplayReport:
        ...


class SyncCancelledError(Exception):
    """La sincronización se canceló antes de terminar."""


class CancellationToken:
    """Cancelación cooperativa; ``sleep`` se despierta en cuanto alguien cancela."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def sleep(self, seconds: float) -> bool:
        return self._event.wait(max(0.0, seconds))


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_backoff_seconds: float = 0.5
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 30.0

    def backoffs(self) -> Iterator[float]:
        """Esperas entre intentos: una menos que ``max_attempts``."""
        delay = self.initial_backoff_seconds
        for _ in range(max(0, self.max_attempts - 1)):
            yield min(delay, self.max_backoff_seconds)
            delay *= self.backoff_multiplier


@dataclass(frozen=True)
class SyncOptions:
    operation: SyncOperation = "full_sync"
    timeout_seconds: float = 60.0
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    cancellation_token: CancellationToken | None = None


@dataclass(frozen=True)
class SyncRunReport:
    operation: SyncOperation
    succeeded: bool
    attempts: int
    errors: list[str]
    duration_seconds: float
    result: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "succeeded": self.succeeded,
            "attempts": self.attempts,
            "errors": list(self.errors),
            "duration_seconds": round(self.duration_seconds, 3),
            "result": self.result,
        }


class _Attempt:
    """Un intento en su propio hilo; si vence el timeout el hilo sigue hasta que el motor termine."""

    def __init__(self, target: Callable[[], SyncResult], name: str) -> None:
        self._done = threading.Event()
        self._result: SyncResult | None = None
        self._error: BaseException | None = None
        context = contextvars.copy_context()
        self._thread = threading.Thread(target=context.run, args=(self._run, target), name=name, daemon=True)

    def _run(self, target: Callable[[], SyncResult]) -> None:
        try:
            self._result = target()
        except BaseException as exc:  # noqa: BLE001
            self._error = exc
        finally:
            self._done.set()

    def result(self, timeout_seconds: float) -> SyncResult:
        self._thread.start()
        if not self._done.wait(timeout_seconds):
            raise TimeoutError(f"La sincronización no respondió en {timeout_seconds} segundos")
        if self._error is not None:
            raise self._error
        return cast(SyncResult, self._result)


class SyncRunner:
    """Lanza ``full_sync`` o ``process_queue`` con reintentos, timeout por intento y cancelación.

    Solo se reintentan los fallos transitorios (cuota de Sheets, red, timeout); un
    error de configuración o de permisos falla a la primera. Cada paso se emite como
    evento en el logger ``pharmapos.sync.events``.
    """

    def __init__(
        self,
        engine: SyncEngine,
        *,
        sleeper: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._engine = engine
        self._sleeper = sleeper
        self._clock = clock

    def run(self, options: SyncOptions) -> SyncRunReport:
        with OperationContext(f"runner.{options.operation}"):
            return self._run(options)

    def _run(self, options: SyncOptions) -> SyncRunReport:
        started = self._clock()
        token = options.cancellation_token
        errors: list[str] = []
        backoffs = options.retry_policy.backoffs()
        attempt = 0

        self._emit("sync_started", operation=options.operation, max_attempts=options.retry_policy.max_attempts)
        while True:
            self._check_cancelled(token)
            attempt += 1
            try:
                result = self._attempt(options, attempt)
            except Exception as exc:  # noqa: BLE001
                errors.append(str(exc) or type(exc).__name__)
                self._emit("sync_attempt_failed", attempt=attempt, error=errors[-1], error_type=type(exc).__name__)
                backoff = next(backoffs, None) if isinstance(exc, RETRYABLE_ERRORS) else None
                if backoff is None:
                    break
                self._emit("sync_retry_scheduled", attempt=attempt, backoff_seconds=backoff)
                self._wait(backoff, token)
                continue

            report = SyncRunReport(
                operation=options.operation,
                succeeded=True,
                attempts=attempt,
                errors=errors,
                duration_seconds=self._clock() - started,
                result=result.to_dict(),
            )
            self._emit("sync_succeeded", attempts=attempt, duration_seconds=report.duration_seconds)
            return report

        duration = self._clock() - started
        self._emit("sync_failed", attempts=attempt, errors=errors, duration_seconds=duration)
        logger.warning("Sincronización %s fallida tras %s intentos", options.operation, attempt)
        return SyncRunReport(
            operation=options.operation,
            succeeded=False,
            attempts=attempt,
            errors=errors,
            duration_seconds=duration,
        )

    def _attempt(self, options: SyncOptions, attempt: int) -> SyncResult:
        self._emit("sync_attempt_started", attempt=attempt, timeout_seconds=options.timeout_seconds)
        target = self._engine.process_queue if options.operation == "process_queue" else self._engine.full_sync
        return _Attempt(target, name=f"pharmapos-sync-{attempt}").result(options.timeout_seconds)

    def _wait(self, seconds: float, token: CancellationToken | None) -> None:
        if token is None:
            self._sleeper(seconds)
            return
        if token.sleep(seconds):
            self._check_cancelled(token)

    def _check_cancelled(self, token: CancellationToken | None) -> None:
        if token is not None and token.is_cancelled():
            self._emit("sync_cancelled")
            raise SyncCancelledError("Sincronización cancelada por el usuario")

    @staticmethod
    def _emit(event: str, **payload: object) -> None:
        events_logger.info(event, extra={"extra": {"event": event, **payload}})
