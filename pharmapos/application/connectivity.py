from __future__ import annotations

import logging
import threading
from typing import Callable

from pharmapos.domain.ports import ConnectivityStatePort

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivityState(ConnectivityStatePort):
    """Estado online/offline compartido entre el motor de reconciliación y la UI.

    Solo el motor escribe; el resto observa con ``is_offline`` o ``subscribe``.
    """

    def __init__(self, offline: bool = False) -> None:
        self._lock = threading.Lock()
        self._offline = offline
        self._last_sync_at: str | None = None
        self._listeners: list[ConnectivityListener] = []

    @property
    def is_offline(self) -> bool:
        with self._lock:
            return self._offline

    @property
    def last_sync_at(self) -> str | None:
        with self._lock:
            return self._last_sync_at

    def set_offline(self, offline: bool) -> None:
        with self._lock:
            changed = self._offline != offline
            self._offline = offline
            listeners = list(self._listeners)
        if not changed:
            return
        logger.info("Conectividad: %s", "offline" if offline else "online")
        for listener in listeners:
            try:
                listener(offline)
            except Exception:  # pragma: no cover - un observador roto no debe romper la sincronización
                logger.exception("Fallo en un observador de conectividad")

    def mark_synced(self, at: str) -> None:
        with self._lock:
            self._last_sync_at = at

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe
