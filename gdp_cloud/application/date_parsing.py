from __future__ import annotations

import math
import re
from datetime import date, datetime
from numbers import Real
from typing import Any

MONTHS: dict[str, str] = {
    "enero": "01",
    "febrero": "02",
    "marzo": "03",
    "abril": "04",
    "mayo": "05",
    "junio": "06",
    "julio": "07",
    "agosto": "08",
    "septiembre": "09",
    "setiembre": "09",
    "octubre": "10",
    "noviembre": "11",
    "diciembre": "12",
}

_MONTH_NAMES = (
    "enero",
    "febrero",
    "marzo",
    "abril",
    "mayo",
    "junio",
    "julio",
    "agosto",
    "septiembre",
    "octubre",
    "noviembre",
    "diciembre",
)
_WEEKDAY_NAMES = ("lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo")

_ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
_NUMERIC_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")
_LONG_DATE = re.compile(r"(\d{1,2})\s+de\s+(\w+)\s+de\s+(\d{4})", re.IGNORECASE)
_LEADING_NUMBER = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_YEAR = re.compile(r"^\d{4}$")


def parse_date_from_sheet(value: Any) -> str:
    """Convierte una fecha de la planilla a ISO `YYYY-MM-DD`.

    Formatos aceptados: ISO (con hora opcional), `DD/MM/YYYY`, `DD-MM-YYYY` y
    la forma larga de la planilla (`martes, 06 de enero de 2026`). Cualquier
    otro valor devuelve cadena vacía; nunca lanza.
    """
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    raw = str(value).strip()
    if not raw:
        return ""

    if _ISO_PREFIX.match(raw):
        return raw.split("T", 1)[0][:10]

    numeric = _NUMERIC_DATE.match(raw)
    if numeric:
        day, month, year = numeric.groups()
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"

    long_form = _LONG_DATE.search(raw)
    if long_form:
        day, month_name, year = long_form.groups()
        month = MONTHS.get(month_name.lower())
        if month is None:
            return ""
        return f"{year}-{month}-{day.zfill(2)}"

    return ""


def normalize_number_value(value: Any, fallback: float) -> float:
    if isinstance(value, bool):
        return fallback
    if isinstance(value, Real):
        number = float(value)
        return fallback if math.isnan(number) else value
    text = str(value if value is not None else "").replace(",", ".", 1)
    match = _LEADING_NUMBER.match(text)
    if not match:
        return fallback
    return float(match.group(0))


def normalize_periodo_value(value: Any, today: date | None = None) -> str:
    trimmed = str(value if value is not None else "").strip()
    if _YEAR.match(trimmed):
        return trimmed
    return str((today or date.today()).year)


def is_valid_date_range(value: str, min_year: int = 2020, max_year: int = 2030) -> bool:
    if not value:
        return False
    year_match = re.match(r"^(\d{4})", value)
    if year_match:
        return min_year <= int(year_match.group(1)) <= max_year
    return False


def format_long_date(iso_value: str) -> str:
    if not iso_value:
        return ""
    try:
        parsed = datetime.strptime(iso_value[:10], "%Y-%m-%d")
    except ValueError:
        return ""
    weekday = _WEEKDAY_NAMES[parsed.weekday()]
    return f"{weekday}, {parsed.day:02d} de {_MONTH_NAMES[parsed.month - 1]} de {parsed.year}"


def today_iso(today: date | None = None) -> str:
    return (today or date.today()).isoformat()
