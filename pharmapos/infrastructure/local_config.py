from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any

from pharmapos.bootstrap.settings import APP_DIR_NAME
from pharmapos.domain.models import RemoteConfig
from pharmapos.domain.ports import RemoteConfigStorePort

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "remote.json"


def resolve_appdata_dir() -> Path:
    local_appdata = os.environ.get("LOCALAPPDATA")
    root = Path(local_appdata) if local_appdata else Path.home() / ".local" / "share"
    return root / APP_DIR_NAME


class RemoteConfigStore(RemoteConfigStorePort):
    """Conexión del terminal con su hoja de cálculo: id, credenciales e id de caja.

    El ``device_id`` identifica la caja en el remoto y se genera una sola vez; un
    fichero ilegible equivale a "sin configurar" y nunca bloquea las ventas.
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        self._base_dir = base_dir or resolve_appdata_dir()
        self._path = self._base_dir / CONFIG_FILE_NAME

    def load(self) -> RemoteConfig | None:
        payload = self._read()
        if payload is None:
            return None
        if not payload.get("device_id"):
            payload["device_id"] = _new_device_id()
            self._write(payload)
        if not payload.get("spreadsheet_id") and not payload.get("credentials_path"):
            return None
        return RemoteConfig(
            spreadsheet_id=payload.get("spreadsheet_id", ""),
            credentials_path=payload.get("credentials_path", ""),
            device_id=payload["device_id"],
        )

    def save(self, config: RemoteConfig) -> RemoteConfig:
        saved = RemoteConfig(
            spreadsheet_id=config.spreadsheet_id.strip(),
            credentials_path=config.credentials_path.strip(),
            device_id=config.device_id or _new_device_id(),
        )
        self._write(
            {
                "spreadsheet_id": saved.spreadsheet_id,
                "credentials_path": saved.credentials_path,
                "device_id": saved.device_id,
            }
        )
        logger.info("Configuración remota guardada para la caja %s", saved.device_id)
        return saved

    def credentials_path(self) -> Path:
        return self._base_dir / "secrets" / "credentials.json"

    def _read(self) -> dict[str, str] | None:
        try:
            raw: Any = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError):
            logger.warning("No se pudo leer %s; el remoto queda sin configurar", self._path, exc_info=True)
            return None
        if not isinstance(raw, dict):
            logger.warning("%s no contiene un objeto JSON", self._path)
            return None
        return {key: str(raw.get(key) or "").strip() for key in ("spreadsheet_id", "credentials_path", "device_id")}

    def _write(self, payload: dict[str, str]) -> None:
        self._base_dir.mkdir(parents=True, exist_ok=True)
        descriptor, tmp_name = tempfile.mkstemp(dir=self._base_dir, prefix=".remote-", suffix=".tmp")
        try:
            with os.fdopen(descriptor, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self._path)
        finally:
            Path(tmp_name).unlink(missing_ok=True)


def _new_device_id() -> str:
    return str(uuid.uuid4())


def is_remote_configured(config: RemoteConfig | None) -> bool:
    if config is None or not config.spreadsheet_id or not config.credentials_path:
        return False
    return Path(config.credentials_path).is_file()
