from __future__ import annotations

import logging
import uuid

from pharmapos.domain.models import AuditLogEntry, CurrentUser
from pharmapos.domain.ports import AuditLogPort, CurrentUserProvider
from pharmapos.domain.time_utils import now_iso

logger = logging.getLogger(__name__)


def _default_user() -> CurrentUser:
    return CurrentUser()


class AuditTrail:
    def __init__(self, audit_log: AuditLogPort, current_user: CurrentUserProvider = _default_user) -> None:
        self._audit_log = audit_log
        self._current_user = current_user

    def record(self, action: str, entity_type: str, entity_id: str, details: str = "") -> AuditLogEntry:
        user = self._current_user() or CurrentUser()
        entry = AuditLogEntry(
            id=str(uuid.uuid4()),
            user_id=str(getattr(user, "id", None) or "unknown"),
            username=str(getattr(user, "username", None) or "System"),
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
            timestamp=now_iso(),
        )
        self._audit_log.add(entry)
        logger.debug("Auditoría: %s %s/%s", action, entity_type, entity_id)
        return entry

    def recent(self, limit: int | None = None) -> list[AuditLogEntry]:
        entries = self._audit_log.get_all()
        if limit is None or limit <= 0:
            return entries
        return entries[-limit:]
