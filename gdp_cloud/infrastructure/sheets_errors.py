from __future__ import annotations

import json

import gspread
from google.auth.exceptions import DefaultCredentialsError

from gdp_cloud.domain.sheets_errors import (
    SheetsApiDisabledError,
    SheetsConfigError,
    SheetsCredentialsError,
    SheetsNotFoundError,
    SheetsPermissionError,
    SheetsRateLimitError,
)

_TRANSIENT_STATUS = frozenset({429, 500, 503})
_RATE_LIMIT_TOKENS = (
    "[429]",
    "resource_exhausted",
    "rate_limit_exceeded",
    "quota exceeded",
    "read requests per minute per user",
)

# Se evalúan en orden; la primera regla que calza decide el tipo de error.
_CONFIG_RULES: tuple[tuple[type[SheetsConfigError], frozenset[int], tuple[str, ...], str], ...] = (
    (
        SheetsApiDisabledError,
        frozenset(),
        ("google sheets api has not been used", "it is disabled"),
        "La API de Google Sheets no está habilitada en el proyecto de la cuenta de servicio.",
    ),
    (
        SheetsNotFoundError,
        frozenset({404}),
        ("[404]", "requested entity was not found"),
        "El ID de planilla no es válido o la planilla fue eliminada.",
    ),
    (
        SheetsPermissionError,
        frozenset({403}),
        ("[403]", "permission_denied"),
        "La planilla no está compartida con la cuenta de servicio.",
    ),
)


def response_status(ex: Exception) -> int | None:
    return getattr(getattr(ex, "response", None), "status_code", None)


def _response_text(ex: gspread.exceptions.APIError) -> str:
    text = getattr(getattr(ex, "response", None), "text", "")
    return (text or str(ex)).strip().lower()


def is_rate_limited(text_lower: str, status_code: int | None) -> bool:
    return status_code in _TRANSIENT_STATUS or any(token in text_lower for token in _RATE_LIMIT_TOKENS)


def classify_api_error(text_lower: str, status_code: int | None) -> SheetsConfigError | SheetsRateLimitError:
    if is_rate_limited(text_lower, status_code):
        return SheetsRateLimitError("Límite de Google Sheets alcanzado. Se reintentará más tarde.")
    for error_type, statuses, tokens, message in _CONFIG_RULES:
        if status_code in statuses or any(token in text_lower for token in tokens):
            return error_type(message)
    return SheetsConfigError(text_lower or "Error desconocido de Google Sheets.")


def map_gspread_exception(
    ex: Exception, *, spreadsheet_id: str | None = None
) -> SheetsConfigError | SheetsRateLimitError:
    """Traduce errores de gspread/google-auth a errores de planilla con su contexto."""
    if isinstance(ex, SheetsRateLimitError | SheetsConfigError):
        mapped = ex
    elif isinstance(ex, gspread.exceptions.APIError):
        mapped = classify_api_error(_response_text(ex), response_status(ex))
    elif isinstance(ex, FileNotFoundError):
        path = getattr(ex, "filename", None)
        mapped = SheetsCredentialsError(
            f"No se encuentra el archivo de credenciales en {path}." if path else "No se encuentra credentials.json."
        )
    elif isinstance(ex, json.JSONDecodeError | DefaultCredentialsError):
        mapped = SheetsCredentialsError("El archivo de credenciales no es un credentials.json válido.")
    else:
        mapped = SheetsConfigError(str(ex))
    return mapped.bind(spreadsheet_id=spreadsheet_id)
