from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any

from gdp_cloud.bootstrap.settings import resolve_appdata_dir
from gdp_cloud.domain.models import SyncConfig
from gdp_cloud.domain.ports import SyncConfigStorePort

logger = logging.getLogger(__name__)

_ENV_OVERRIDES = {
    "GDP_PA_ENDPOINT": "pa_endpoint",
    "GDP_FL_ENDPOINT": "fl_endpoint",
    "GDP_PA_SHEET_ID": "pa_sheet_id",
    "GDP_FL_SHEET_ID": "fl_sheet_id",
    "GDP_EMPLOYEES_SHEET_ID": "employees_sheet_id",
    "GDP_BACKEND": "backend",
    "GDP_CREDENTIALS_PATH": "credentials_path",
}
_FLOAT_FIELDS = ("retry_delay_seconds", "debounce_seconds", "request_timeout_seconds")
_VALID_BACKENDS = ("apps_script", "gspread")


class SyncConfigStore(SyncConfigStorePort):
    """Lee y guarda `config.json` con endpoints, planillas y el id del cliente.

    Las variables `GDP_*` del entorno pisan lo guardado en disco. El
    `client_id` se genera una única vez y se persiste.
    """

    def __init__(self, base_dir: Path | None = None, *, environ: dict[str, str] | None = None) -> None:
        self._base_dir = base_dir or resolve_appdata_dir()
        self._config_path = self._base_dir / "config.json"
        self._environ = os.environ if environ is None else environ

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(self) -> SyncConfig | None:
        payload = self._read_payload()
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = self._environ.get(env_name, "").strip()
            if value:
                payload[field_name] = value

        client_id = str(payload.get("client_id", "")).strip()
        if not client_id:
            client_id = self._generate_client_id()
            stored = self._read_payload()
            stored["client_id"] = client_id
            self._write_payload(stored)

        if not any(str(payload.get(name, "")).strip() for name in ("pa_endpoint", "fl_endpoint", "credentials_path")):
            return None
        return self._to_config(payload, client_id)

    def save(self, config: SyncConfig) -> SyncConfig:
        payload: dict[str, Any] = {
            "pa_endpoint": config.pa_endpoint,
            "fl_endpoint": config.fl_endpoint,
            "pa_sheet_id": config.pa_sheet_id,
            "fl_sheet_id": config.fl_sheet_id,
            "employees_sheet_id": config.employees_sheet_id,
            "client_id": config.client_id or self._generate_client_id(),
            "backend": config.backend,
            "credentials_path": config.credentials_path,
            "retry_delay_seconds": config.retry_delay_seconds,
            "retry_max_attempts": config.retry_max_attempts,
            "debounce_seconds": config.debounce_seconds,
            "request_timeout_seconds": config.request_timeout_seconds,
        }
        self._write_payload(payload)
        return self._to_config(payload, payload["client_id"])

    def _read_payload(self) -> dict[str, Any]:
        if not self._config_path.exists():
            return {}
        try:
            payload = json.loads(self._config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.exception("No se pudo leer config.json: %s", exc)
            return {}
        return payload if isinstance(payload, dict) else {}

    def _write_payload(self, payload: dict[str, Any]) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        self._config_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    @staticmethod
    def _to_config(payload: dict[str, Any], client_id: str) -> SyncConfig:
        backend = str(payload.get("backend") or "apps_script").strip()
        if backend not in _VALID_BACKENDS:
            logger.warning("Backend desconocido %r, se usa apps_script", backend)
            backend = "apps_script"

        numbers: dict[str, float] = {}
        for name in _FLOAT_FIELDS:
            raw = payload.get(name)
            if raw in (None, ""):
                continue
            try:
                numbers[name] = float(raw)
            except (TypeError, ValueError):
                logger.warning("Valor inválido para %s: %r", name, raw)

        max_attempts = payload.get("retry_max_attempts")
        try:
            max_attempts = int(max_attempts) if max_attempts not in (None, "") else None
        except (TypeError, ValueError):
            max_attempts = None

        return SyncConfig(
            pa_endpoint=str(payload.get("pa_endpoint", "")).strip(),
            fl_endpoint=str(payload.get("fl_endpoint", "")).strip(),
            pa_sheet_id=str(payload.get("pa_sheet_id", "")).strip(),
            fl_sheet_id=str(payload.get("fl_sheet_id", "")).strip(),
            employees_sheet_id=str(payload.get("employees_sheet_id", "")).strip(),
            client_id=client_id,
            backend=backend,  # type: ignore[arg-type]
            credentials_path=str(payload.get("credentials_path", "")).strip(),
            retry_max_attempts=max_attempts,
            **numbers,
        )

    @staticmethod
    def _generate_client_id() -> str:
        return str(uuid.uuid4())
