from __future__ import annotations

import re
import time
from datetime import date
from typing import Any, Iterable, Sequence

from gdp_cloud.application.date_parsing import (
    format_long_date,
    normalize_number_value,
    normalize_periodo_value,
    parse_date_from_sheet,
    today_iso,
)
from gdp_cloud.domain.models import ParseResult, Partition, PermitRecord, SyncPayload

JORNADA_VALUES = ("Jornada mañana", "Jornada tarde", "Jornada completa")
DEFAULT_JORNADA = "Jornada completa"
DEFAULT_MATERIA = "Decreto Exento"
WARNINGS_PREVIEW_LIMIT = 20

_CORRELATIVE_WITH_YEAR = re.compile(r"^\d{1,4}\s*/\s*\d{4}$")
_CORRELATIVE_PLAIN = re.compile(r"^\d{1,4}$")
_CORRELATIVE_IN_ACTO = re.compile(r"(\d{1,4})\s*/\s*(\d{4})")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")

# Columnas de la hoja PA.
PA_NUMERO, PA_SOLICITUD, PA_MATERIA, PA_ACTO, PA_FUNCIONARIO, PA_RUT = range(6)
PA_PERIODO, PA_CANTIDAD, PA_INICIO, PA_JORNADA, PA_HABER, PA_DECRETO = range(6, 12)
PA_SALDO, PA_RA, PA_EMITE = range(12, 15)

# Columnas de la hoja FL.
FL_NUMERO, FL_ACTO, FL_SOLICITUD, FL_MATERIA, FL_FUNCIONARIO, FL_RUT, FL_CANTIDAD = range(7)
FL_PERIODO1, FL_DISP_P1, FL_SOLIC_P1, FL_FINAL_P1 = range(7, 11)
FL_PERIODO2, FL_DISP_P2, FL_SOLIC_P2, FL_FINAL_P2 = range(11, 15)
FL_INICIO, FL_TERMINO, FL_EMISION, FL_RA, FL_EMITE, FL_OBSERVACIONES = range(15, 21)


def _cell(row: Sequence[Any], index: int, default: str = "") -> str:
    if index >= len(row):
        return default
    value = row[index]
    if value is None or value == "" or value is False:
        return default
    return str(value)


def _now_ms() -> int:
    return int(time.time() * 1000)


def normalize_solicitud_type(value: str) -> Partition | None:
    upper = str(value or "").strip().upper()
    if upper == "FL":
        return Partition.FL
    if upper == "PA":
        return Partition.PA
    return None


def resolve_solicitud_type(*values: str) -> Partition:
    for value in values:
        normalized = normalize_solicitud_type(value)
        if normalized is not None:
            return normalized
    return Partition.PA


def looks_like_correlative(value: str) -> bool:
    trimmed = str(value or "").strip()
    if not trimmed:
        return False
    return bool(_CORRELATIVE_WITH_YEAR.match(trimmed) or _CORRELATIVE_PLAIN.match(trimmed))


def resolve_acto_materia(materia_cell: str, acto_cell: str) -> tuple[str, str]:
    """Devuelve `(acto, materia)` aunque la planilla tenga las columnas cruzadas.

    Hojas antiguas guardaban el correlativo en la columna de materia o el tipo
    de solicitud en la columna de acto; se usa la celda que parece correlativo.
    """
    materia = str(materia_cell or "").strip()
    acto = str(acto_cell or "").strip()
    materia_is_correlative = looks_like_correlative(materia)
    acto_is_correlative = looks_like_correlative(acto)
    acto_is_type = normalize_solicitud_type(acto) is not None
    materia_is_type = normalize_solicitud_type(materia) is not None

    if materia_is_correlative and not acto_is_correlative:
        return materia, DEFAULT_MATERIA if acto_is_type else (acto or DEFAULT_MATERIA)
    if acto_is_correlative and not materia_is_correlative:
        return acto, DEFAULT_MATERIA if materia_is_type else (materia or DEFAULT_MATERIA)
    if materia_is_correlative and acto_is_correlative:
        return materia, DEFAULT_MATERIA
    if acto_is_type and not materia_is_type:
        return materia or acto, materia or DEFAULT_MATERIA
    if materia_is_type and not acto_is_type:
        return acto or materia, acto or DEFAULT_MATERIA
    return materia or acto, acto or materia or DEFAULT_MATERIA


def normalize_jornada(value: str) -> str:
    cleaned = re.sub(r"[()]", "", str(value or "")).strip()
    if not cleaned:
        return DEFAULT_JORNADA
    lower = cleaned.lower()
    if "manana" in lower or "mañana" in lower:
        return "Jornada mañana"
    if "tarde" in lower:
        return "Jornada tarde"
    if "completa" in lower:
        return "Jornada completa"
    return cleaned


def parse_acto_number(acto: str) -> int | None:
    match = _LEADING_INT.match(str(acto or "").split("/", 1)[0])
    return int(match.group(1)) if match else None


def parse_acto_number_from_row(row: Sequence[Any]) -> int | None:
    for index in (PA_MATERIA, PA_ACTO, PA_SOLICITUD):
        candidate = parse_acto_number(_cell(row, index))
        if candidate is not None:
            return candidate
    return None


def should_reverse_rows(rows: Sequence[Sequence[Any]]) -> bool:
    """Indica si la hoja viene en orden descendente y debe invertirse."""
    if len(rows) < 2:
        return False
    first, last = rows[0], rows[-1]
    first_date = parse_date_from_sheet(_cell(first, PA_DECRETO))
    last_date = parse_date_from_sheet(_cell(last, PA_DECRETO))
    if first_date and last_date:
        return first_date > last_date
    first_acto = parse_acto_number_from_row(first)
    last_acto = parse_acto_number_from_row(last)
    if first_acto is not None and last_acto is not None:
        return first_acto > last_acto
    return False


def _with_name(rows: Iterable[Sequence[Any]], name_column: int) -> list[Sequence[Any]]:
    return [row for row in rows if row and _cell(row, name_column)]


def _record_id(partition: Partition, index: int, now_ms: int) -> str:
    # Posición en la hoja ya ordenada; el N° de la planilla puede repetirse.
    return f"{partition.value}-{index}-{now_ms}"


def parse_pa_records(
    rows: Iterable[Sequence[Any]],
    now_ms: int | None = None,
    today: date | None = None,
) -> ParseResult:
    warnings: list[str] = []
    raw_rows = _with_name(rows, PA_FUNCIONARIO)
    ordered = list(reversed(raw_rows)) if should_reverse_rows(raw_rows) else raw_rows
    total = len(ordered)
    stamp = _now_ms() if now_ms is None else now_ms
    records: list[PermitRecord] = []

    for index, row in enumerate(ordered):
        label = f"[PA] Fila {index + 2}"
        materia_cell = _cell(row, PA_MATERIA)
        acto_cell = _cell(row, PA_ACTO)
        solicitud_cell = _cell(row, PA_SOLICITUD)
        fecha_inicio_raw = _cell(row, PA_INICIO)
        fecha_decreto_raw = _cell(row, PA_DECRETO)
        jornada_raw = _cell(row, PA_JORNADA)

        fecha_inicio = parse_date_from_sheet(fecha_inicio_raw)
        fecha_decreto = parse_date_from_sheet(fecha_decreto_raw)
        acto, materia = resolve_acto_materia(materia_cell, acto_cell)
        jornada = normalize_jornada(jornada_raw)

        if not any(normalize_solicitud_type(cell) for cell in (solicitud_cell, materia_cell, acto_cell)):
            warnings.append(f"{label}: tipo de solicitud inválido")
        if fecha_inicio_raw and not fecha_inicio:
            warnings.append(f"{label}: Fecha de inicio inválida ({fecha_inicio_raw})")
        if fecha_decreto_raw and not fecha_decreto:
            warnings.append(f"{label}: Fecha inválida ({fecha_decreto_raw})")
        if jornada_raw and jornada not in JORNADA_VALUES:
            warnings.append(f"{label}: Tipo de jornada inválido ({jornada_raw})")

        records.append(
            PermitRecord(
                id=_record_id(Partition.PA, index, stamp),
                solicitud_type=Partition.PA,
                acto=acto,
                materia=materia,
                funcionario=_cell(row, PA_FUNCIONARIO).strip(),
                rut=_cell(row, PA_RUT).strip(),
                periodo=normalize_periodo_value(_cell(row, PA_PERIODO), today),
                cantidad_dias=normalize_number_value(_cell(row, PA_CANTIDAD), 0),
                fecha_inicio=fecha_inicio,
                tipo_jornada=jornada if jornada in JORNADA_VALUES else DEFAULT_JORNADA,
                dias_haber=normalize_number_value(_cell(row, PA_HABER), 0),
                fecha_decreto=fecha_decreto,
                ra=_cell(row, PA_RA, "MGA"),
                emite=_cell(row, PA_EMITE, "mga"),
                created_at=stamp - (total - 1 - index) * 1000,
            )
        )

    return ParseResult(records=tuple(records), warnings=tuple(warnings))


def parse_fl_records(
    rows: Iterable[Sequence[Any]],
    now_ms: int | None = None,
    today: date | None = None,
) -> ParseResult:
    """Convierte filas de la hoja FL en registros con saldos por período.

    Si la fila trae montos del segundo período sin `periodo2`, se descartan
    (quedan en cero) y se emite una advertencia.
    """
    warnings: list[str] = []
    raw_rows = _with_name(rows, FL_FUNCIONARIO)
    total = len(raw_rows)
    stamp = _now_ms() if now_ms is None else now_ms
    year = str((today or date.today()).year)
    records: list[PermitRecord] = []

    for index, row in enumerate(raw_rows):
        label = f"[FL] Fila {index + 2}"
        acto = _cell(row, FL_ACTO).strip()
        fecha_inicio_raw = _cell(row, FL_INICIO)
        fecha_termino_raw = _cell(row, FL_TERMINO)
        fecha_inicio = parse_date_from_sheet(fecha_inicio_raw)
        fecha_emision_raw = _cell(row, FL_EMISION)
        fecha_termino = parse_date_from_sheet(fecha_termino_raw)
        fecha_decreto = parse_date_from_sheet(fecha_emision_raw)
        periodo2 = _cell(row, FL_PERIODO2).strip()

        disponible_p1 = normalize_number_value(_cell(row, FL_DISP_P1), 0)
        disponible_p2 = normalize_number_value(_cell(row, FL_DISP_P2), 0)
        solicitado_p2 = normalize_number_value(_cell(row, FL_SOLIC_P2), 0)
        final_p2 = normalize_number_value(_cell(row, FL_FINAL_P2), 0)

        if fecha_inicio_raw and not fecha_inicio:
            warnings.append(f"{label}: Fecha de inicio inválida ({fecha_inicio_raw})")
        if fecha_termino_raw and not fecha_termino:
            warnings.append(f"{label}: Fecha de término inválida ({fecha_termino_raw})")
        if fecha_emision_raw and not fecha_decreto:
            warnings.append(f"{label}: Fecha de emisión inválida ({fecha_emision_raw})")
        if not acto:
            warnings.append(f"{label}: N° Acto Adm. vacío")
        if not periodo2 and any((disponible_p2, solicitado_p2, final_p2)):
            warnings.append(f"{label}: saldos del segundo período sin período 2 (se ignoran)")
            disponible_p2 = solicitado_p2 = final_p2 = 0.0

        records.append(
            PermitRecord(
                id=_record_id(Partition.FL, index, stamp),
                solicitud_type=Partition.FL,
                acto=acto,
                materia=DEFAULT_MATERIA,
                funcionario=_cell(row, FL_FUNCIONARIO).strip(),
                rut=_cell(row, FL_RUT).strip(),
                periodo=year,
                cantidad_dias=normalize_number_value(_cell(row, FL_CANTIDAD), 0),
                fecha_inicio=fecha_inicio,
                fecha_termino=fecha_termino,
                tipo_jornada=DEFAULT_JORNADA,
                dias_haber=disponible_p1 + disponible_p2,
                fecha_decreto=fecha_decreto,
                ra=_cell(row, FL_RA, "MGA").strip(),
                emite=_cell(row, FL_EMITE, "mga").strip(),
                observaciones=_cell(row, FL_OBSERVACIONES).strip(),
                periodo1=_cell(row, FL_PERIODO1).strip(),
                saldo_disponible_p1=disponible_p1,
                solicitado_p1=normalize_number_value(_cell(row, FL_SOLIC_P1), 0),
                saldo_final_p1=normalize_number_value(_cell(row, FL_FINAL_P1), 0),
                periodo2=periodo2,
                saldo_disponible_p2=disponible_p2,
                solicitado_p2=solicitado_p2,
                saldo_final_p2=final_p2,
                created_at=stamp - (total - 1 - index) * 1000,
            )
        )

    return ParseResult(records=tuple(records), warnings=tuple(warnings))


def parse_partition(partition: Partition, rows: Iterable[Sequence[Any]], now_ms: int | None = None) -> ParseResult:
    if partition == Partition.FL:
        return parse_fl_records(rows, now_ms=now_ms)
    return parse_pa_records(rows, now_ms=now_ms)


def prepare_pa_rows(records: Iterable[PermitRecord], today: date | None = None) -> SyncPayload:
    warnings: list[str] = []
    rows: list[list[Any]] = []
    pa_records = [record for record in records if record.solicitud_type == Partition.PA]

    for index, record in enumerate(pa_records):
        label = f"[PA] Registro {index + 1}"
        funcionario = (record.funcionario or "").strip()
        rut = (record.rut or "").strip()
        acto = (record.acto or "").strip()
        cantidad = normalize_number_value(record.cantidad_dias, 0)
        haber = normalize_number_value(record.dias_haber, 0)
        fecha_decreto = parse_date_from_sheet(record.fecha_decreto) or today_iso(today)
        jornada = normalize_jornada(record.tipo_jornada)

        if not funcionario:
            warnings.append(f"{label}: Funcionario vacío")
        if not rut:
            warnings.append(f"{label}: RUT vacío")
        if not acto:
            warnings.append(f"{label}: N° Acto Adm. vacío")

        rows.append(
            [
                index + 1,
                "PA",
                acto,
                DEFAULT_MATERIA,
                funcionario,
                rut,
                normalize_periodo_value(record.periodo, today),
                cantidad,
                parse_date_from_sheet(record.fecha_inicio),
                jornada if jornada in JORNADA_VALUES else DEFAULT_JORNADA,
                haber,
                format_long_date(fecha_decreto),
                haber - cantidad,
                record.ra or "MGA",
                record.emite or "mga",
            ]
        )

    return SyncPayload(rows=rows, warnings=tuple(warnings))


def prepare_fl_rows(records: Iterable[PermitRecord], today: date | None = None) -> SyncPayload:
    warnings: list[str] = []
    rows: list[list[Any]] = []
    fl_records = [record for record in records if record.solicitud_type == Partition.FL]

    for index, record in enumerate(fl_records):
        label = f"[FL] Registro {index + 1}"
        funcionario = (record.funcionario or "").strip()
        acto = (record.acto or "").strip()
        fecha_inicio = parse_date_from_sheet(record.fecha_inicio)
        fecha_termino = parse_date_from_sheet(record.fecha_termino)
        fecha_decreto = parse_date_from_sheet(record.fecha_decreto) or today_iso(today)

        if not funcionario:
            warnings.append(f"{label}: Funcionario vacío")
        if not acto:
            warnings.append(f"{label}: N° Acto Adm. vacío")
        if not fecha_inicio:
            warnings.append(f"{label}: Fecha de inicio vacía")
        if not fecha_termino:
            warnings.append(f"{label}: Fecha de término vacía")

        has_p2 = record.has_second_period()
        rows.append(
            [
                index + 1,
                acto,
                "FL",
                DEFAULT_MATERIA,
                funcionario,
                (record.rut or "").strip(),
                normalize_number_value(record.cantidad_dias, 0),
                record.periodo1 or "",
                record.saldo_disponible_p1 or 0,
                record.solicitado_p1 or 0,
                record.saldo_final_p1 or 0,
                record.periodo2 or "",
                (record.saldo_disponible_p2 or 0) if has_p2 else 0,
                (record.solicitado_p2 or 0) if has_p2 else 0,
                (record.saldo_final_p2 or 0) if has_p2 else 0,
                format_long_date(fecha_inicio),
                format_long_date(fecha_termino),
                format_long_date(fecha_decreto),
                record.ra or "MGA",
                record.emite or "mga",
                record.observaciones or "",
            ]
        )

    return SyncPayload(rows=rows, warnings=tuple(warnings))


def prepare_partition_rows(partition: Partition, records: Iterable[PermitRecord]) -> SyncPayload:
    if partition == Partition.FL:
        return prepare_fl_rows(records)
    return prepare_pa_rows(records)


def parse_correlative_from_acto(acto: str, periodo: str, year: int) -> int | None:
    normalized = str(acto or "").strip()
    if not normalized:
        return None
    match = _CORRELATIVE_IN_ACTO.search(normalized)
    if match and int(match.group(2)) == year:
        return int(match.group(1))
    if _CORRELATIVE_PLAIN.match(normalized) and str(periodo).strip() == str(year):
        return int(normalized)
    return None


def calculate_next_correlatives(records: Iterable[PermitRecord], year: int) -> dict[Partition, str]:
    highest = {Partition.PA: 0, Partition.FL: 0}
    for record in records:
        if record.solicitud_type not in highest:
            continue
        candidate = parse_correlative_from_acto(record.acto, record.periodo, year)
        if candidate is not None and candidate > highest[record.solicitud_type]:
            highest[record.solicitud_type] = candidate
    return {partition: f"{value + 1:03d}/{year}" for partition, value in highest.items()}


def warnings_preview(warnings: Sequence[str], limit: int = WARNINGS_PREVIEW_LIMIT) -> list[str]:
    preview = list(warnings[:limit])
    hidden = len(warnings) - len(preview)
    if hidden > 0:
        preview.append(f"... y {hidden} advertencias más")
    return preview
