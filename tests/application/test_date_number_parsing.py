from __future__ import annotations

from datetime import date, datetime

import pytest

from gdp_cloud.application.date_parsing import (
    format_long_date,
    is_valid_date_range,
    normalize_number_value,
    normalize_periodo_value,
    parse_date_from_sheet,
    today_iso,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2026-01-06", "2026-01-06"),
        ("2026-01-06T03:00:00.000Z", "2026-01-06"),
        ("6/1/2026", "2026-01-06"),
        ("06-01-2026", "2026-01-06"),
        ("martes, 06 de enero de 2026", "2026-01-06"),
        ("6 de Septiembre de 2025", "2025-09-06"),
        ("6 de setiembre de 2025", "2025-09-06"),
        (date(2026, 1, 6), "2026-01-06"),
        (datetime(2026, 1, 6, 18, 45), "2026-01-06"),
    ],
)
def test_parse_date_from_sheet_formatos_aceptados(raw, expected: str) -> None:
    assert parse_date_from_sheet(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "   ", "hola", "6 de brumario de 2025", "31/31", "2026/01/06"])
def test_parse_date_from_sheet_invalidos_devuelven_vacio(raw) -> None:
    assert parse_date_from_sheet(raw) == ""


def test_normalize_number_value_coma_decimal_y_prefijo() -> None:
    assert normalize_number_value("3,5", 0) == 3.5
    assert normalize_number_value("12 días", 0) == 12.0
    assert normalize_number_value(" -2.5", 0) == -2.5
    assert normalize_number_value("1,234,5", 0) == 1.234


def test_normalize_number_value_fallback() -> None:
    assert normalize_number_value("abc", 9) == 9
    assert normalize_number_value("", 9) == 9
    assert normalize_number_value(None, 9) == 9
    assert normalize_number_value(True, 9) == 9
    assert normalize_number_value(float("nan"), 9) == 9
    assert normalize_number_value(7, 0) == 7


def test_normalize_periodo_value() -> None:
    today = date(2026, 5, 1)

    assert normalize_periodo_value("2025", today) == "2025"
    assert normalize_periodo_value(" 2024 ", today) == "2024"
    assert normalize_periodo_value("abc", today) == "2026"
    assert normalize_periodo_value(None, today) == "2026"


def test_is_valid_date_range() -> None:
    assert is_valid_date_range("2026-01-01")
    assert not is_valid_date_range("2019-12-31")
    assert not is_valid_date_range("2031-01-01")
    assert not is_valid_date_range("")
    assert not is_valid_date_range("ayer")


def test_format_long_date_en_castellano() -> None:
    assert format_long_date("2026-01-06") == "martes, 06 de enero de 2026"
    assert format_long_date("2025-09-14") == "domingo, 14 de septiembre de 2025"
    assert format_long_date("malo") == ""
    assert format_long_date("") == ""


def test_long_date_vuelve_a_parsearse() -> None:
    assert parse_date_from_sheet(format_long_date("2026-12-31")) == "2026-12-31"


def test_today_iso() -> None:
    assert today_iso(date(2026, 1, 6)) == "2026-01-06"
