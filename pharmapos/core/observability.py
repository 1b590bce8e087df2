from __future__ import annotations

from contextvars import ContextVar, Token
from dataclasses import dataclass
import uuid


@dataclass(frozen=True)
class Trace:
    correlation_id: str
    operations: tuple[str, ...] = ()

    @property
    def operation(self) -> str | None:
        return "/".join(self.operations) or None


_TRACE: ContextVar[Trace | None] = ContextVar("pharmapos_trace", default=None)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def current_trace() -> Trace | None:
    return _TRACE.get()


def get_correlation_id() -> str | None:
    trace = _TRACE.get()
    return trace.correlation_id if trace else None


def current_operation() -> str | None:
    trace = _TRACE.get()
    return trace.operation if trace else None


def bind_correlation_id(correlation_id: str) -> Token[Trace | None]:
    """Fija un correlation_id sin abrir operación (p. ej. al registrar un crash)."""
    trace = _TRACE.get()
    operations = trace.operations if trace else ()
    return _TRACE.set(Trace(correlation_id, operations))


class OperationContext:
    """Abre una operación trazable.

    Dentro de otra operación se reutiliza su correlation_id y el nombre se añade a
    la ruta (``runner.full_sync/full_sync``), de modo que los reintentos del runner
    y el trabajo del motor comparten el mismo id en los logs.
    """

    def __init__(self, operation_name: str) -> None:
        self.operation_name = operation_name
        self.correlation_id = ""
        self._token: Token[Trace | None] | None = None

    def __enter__(self) -> "OperationContext":
        parent = _TRACE.get()
        if parent is None:
            trace = Trace(generate_correlation_id(), (self.operation_name,))
        else:
            trace = Trace(parent.correlation_id, parent.operations + (self.operation_name,))
        self.correlation_id = trace.correlation_id
        self._token = _TRACE.set(trace)
        return self

    def __exit__(self, exc_type: object, exc: object, exc_tb: object) -> None:
        if self._token is not None:
            _TRACE.reset(self._token)
            self._token = None
