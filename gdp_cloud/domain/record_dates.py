from __future__ import annotations

from datetime import datetime
from functools import cmp_to_key
from typing import Callable, Iterable, Literal

from gdp_cloud.domain.models import PermitRecord

RecordDateField = Literal["fecha_decreto", "fecha_inicio"]
RecordComparator = Callable[[PermitRecord, PermitRecord], float]


def _date_value_ms(value: str | None) -> int | None:
    if not value:
        return None
    try:
        parsed = datetime.strptime(value[:10], "%Y-%m-%d").replace(hour=12)
    except ValueError:
        return None
    return int(parsed.timestamp() * 1000)


def record_date_value(record: PermitRecord, prefer: RecordDateField = "fecha_decreto") -> int:
    primary = record.fecha_decreto if prefer == "fecha_decreto" else record.fecha_inicio
    fallback = record.fecha_inicio if prefer == "fecha_decreto" else record.fecha_decreto
    for candidate in (primary, fallback):
        value = _date_value_ms(candidate)
        if value is not None:
            return value
    return record.created_at or 0


def compare_records_by_date_desc(left: PermitRecord, right: PermitRecord) -> int:
    return record_date_value(right) - record_date_value(left)


def sort_records(records: Iterable[PermitRecord], comparator: RecordComparator) -> list[PermitRecord]:
    # sorted() es estable: registros con la misma fecha conservan su orden de llegada.
    return sorted(records, key=cmp_to_key(comparator))
