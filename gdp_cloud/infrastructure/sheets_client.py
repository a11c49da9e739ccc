from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, TypeVar

import gspread
from google.auth.exceptions import DefaultCredentialsError

from gdp_cloud.bootstrap.logging import log_operational_error
from gdp_cloud.core.observability import get_correlation_id
from gdp_cloud.domain.sheets_errors import SheetsPermissionError, SheetsRateLimitError
from gdp_cloud.infrastructure.sheets_errors import map_gspread_exception

logger = logging.getLogger(__name__)

_MAX_RETRIES = 5
_BASE_BACKOFF_SECONDS = 1
HEADER_ROWS = 1

T = TypeVar("T")


def backoff_seconds(attempt: int, base_seconds: float = _BASE_BACKOFF_SECONDS) -> float:
    return base_seconds * (2 ** (attempt - 1))


class SheetsClient:
    """Acceso síncrono a la primera hoja de cada planilla, con reintento ante rate limit."""

    def __init__(
        self,
        credentials_path: Path,
        *,
        client_factory: Callable[[str], Any] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._credentials_path = credentials_path
        self._client_factory = client_factory or (lambda filename: gspread.service_account(filename=filename))
        self._sleep = sleep
        self._client: Any | None = None
        self._worksheets: dict[str, Any] = {}
        self.read_calls = 0
        self.write_calls = 0

    def _gspread(self) -> Any:
        if self._client is None:
            logger.info("Conectando a Google Sheets con credenciales: %s", self._credentials_path.name)
            try:
                self._client = self._client_factory(str(self._credentials_path))
            except (
                gspread.exceptions.GSpreadException,
                FileNotFoundError,
                json.JSONDecodeError,
                DefaultCredentialsError,
                OSError,
            ) as exc:
                raise map_gspread_exception(exc) from exc
        return self._client

    def worksheet(self, spreadsheet_id: str) -> Any:
        if spreadsheet_id in self._worksheets:
            return self._worksheets[spreadsheet_id]
        client = self._gspread()
        spreadsheet = self._with_rate_limit_retry(
            "open_by_key",
            lambda: client.open_by_key(spreadsheet_id),
            spreadsheet_id=spreadsheet_id,
        )
        worksheet = self._with_rate_limit_retry(
            "get_worksheet(0)", lambda: spreadsheet.get_worksheet(0), spreadsheet_id=spreadsheet_id
        )
        self._worksheets[spreadsheet_id] = worksheet
        return worksheet

    def read_data_rows(self, spreadsheet_id: str) -> list[list[str]]:
        worksheet = self.worksheet(spreadsheet_id)
        values = self._with_rate_limit_retry(
            "worksheet.get_all_values", worksheet.get_all_values, spreadsheet_id=spreadsheet_id
        )
        self.read_calls += 1
        return [list(row) for row in values[HEADER_ROWS:]]

    def replace_data_rows(self, spreadsheet_id: str, rows: list[list[Any]]) -> None:
        """Reemplaza todo bajo la cabecera; la fila 1 no se toca."""
        worksheet = self.worksheet(spreadsheet_id)
        first_data_row = HEADER_ROWS + 1
        self._with_rate_limit_retry(
            "worksheet.batch_clear",
            lambda: worksheet.batch_clear([f"A{first_data_row}:ZZ"]),
            spreadsheet_id=spreadsheet_id,
        )
        if rows:
            self._with_rate_limit_retry(
                "worksheet.update",
                lambda: worksheet.update(rows, f"A{first_data_row}", value_input_option="USER_ENTERED"),
                spreadsheet_id=spreadsheet_id,
            )
        self.write_calls += 1

    def _with_rate_limit_retry(
        self,
        operation_name: str,
        operation: Callable[[], T],
        *,
        spreadsheet_id: str | None = None,
    ) -> T:
        for attempt in range(1, _MAX_RETRIES + 1):
            try:
                return operation()
            except gspread.exceptions.APIError as exc:
                mapped_error = map_gspread_exception(exc, spreadsheet_id=spreadsheet_id)
                if not isinstance(mapped_error, SheetsRateLimitError):
                    if isinstance(mapped_error, SheetsPermissionError):
                        self._log_permission_error(mapped_error)
                    raise mapped_error from exc
                if attempt >= _MAX_RETRIES:
                    logger.error(
                        "Google Sheets rate limit persistente en %s tras %s intentos.",
                        operation_name,
                        attempt,
                    )
                    raise mapped_error from exc
                wait = backoff_seconds(attempt)
                logger.warning(
                    "Rate limit en Google Sheets (%s). intento=%s/%s backoff=%.3fs",
                    operation_name,
                    attempt,
                    _MAX_RETRIES,
                    wait,
                )
                self._sleep(wait)
        raise RuntimeError("No se pudo completar la operación de Google Sheets.")

    @staticmethod
    def _log_permission_error(error: SheetsPermissionError) -> None:
        log_operational_error(
            logger,
            "Sync failed: permisos insuficientes en Google Sheets",
            exc=error,
            extra={
                "correlation_id": get_correlation_id(),
                "operation": "sheets_permission_check",
                "spreadsheet_id": error.spreadsheet_id,
            },
        )
