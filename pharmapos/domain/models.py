from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pharmapos.core.errors import ValidationError

Record = dict[str, Any]


class EntityType(str, Enum):
    MEDICINE = "medicine"
    SALE = "sale"
    REFUND = "refund"
    EXPENSE = "expense"

    @property
    def collection(self) -> str:
        return _COLLECTIONS[self]

    @classmethod
    def parse(cls, value: "EntityType | str") -> "EntityType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValidationError(f"Tipo de entidad desconocido: {value!r}") from exc


_COLLECTIONS = {
    EntityType.MEDICINE: "medicines",
    EntityType.SALE: "sales",
    EntityType.REFUND: "refunds",
    EntityType.EXPENSE: "expenses",
}


class QueueAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: "QueueAction | str") -> "QueueAction":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValidationError(f"Acción de cola desconocida: {value!r}") from exc


@dataclass(frozen=True)
class QueuedAction:
    """Mutación pendiente de confirmar por el almacén remoto.

    Solo sale de la cola cuando el remoto confirma la operación; mientras tanto
    sobrevive a reinicios. ``attempts`` y ``last_error`` son diagnóstico y nunca
    provocan que la acción se descarte.
    """

    id: str
    type: EntityType
    action: QueueAction
    data: Record
    created_at: str
    attempts: int = 0
    last_error: str | None = None

    @property
    def record_id(self) -> str:
        return str(self.data.get("id", ""))


@dataclass(frozen=True)
class AuditLogEntry:
    id: str
    user_id: str
    username: str
    action: str
    entity_type: str
    entity_id: str
    details: str
    timestamp: str

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "username": self.username,
            "action": self.action,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "details": self.details,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class CurrentUser:
    id: str = "unknown"
    username: str = "System"


@dataclass(frozen=True)
class RemoteConfig:
    spreadsheet_id: str
    credentials_path: str
    device_id: str = ""
