from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal

from gdp_cloud.domain.identity import canonicalize_rut, format_rut_for_storage, normalize_identity_name
from gdp_cloud.domain.models import Employee, PermitRecord

ConflictSource = Literal["employees", "records"]


@dataclass(frozen=True)
class IdentityConflict:
    canonical_rut: str
    incoming_name: str
    existing_name: str
    source: ConflictSource


def find_employee_by_rut(
    employees: Iterable[Employee],
    rut: str,
    ignore_rut: str | None = None,
) -> Employee | None:
    target = canonicalize_rut(rut)
    if target is None:
        return None
    ignored = canonicalize_rut(ignore_rut)
    for employee in employees:
        employee_rut = canonicalize_rut(employee.rut)
        if employee_rut != target:
            continue
        if ignored and employee_rut == ignored:
            continue
        return employee
    return None


def find_conflict(
    rut: str,
    incoming_name: str,
    employees: Iterable[Employee],
    records: Iterable[PermitRecord],
    *,
    ignore_employee_rut: str | None = None,
    ignore_employee_name: str | None = None,
    ignore_record_id: str | None = None,
) -> IdentityConflict | None:
    """Detecta un RUT asociado a otro nombre en personal o en el historial.

    La base de personal tiene prioridad sobre el historial de decretos. Dos
    nombres que solo difieren en tildes, mayúsculas o espacios se consideran
    la misma persona.
    """
    target_rut = canonicalize_rut(rut)
    target_name = normalize_identity_name(incoming_name)
    if target_rut is None or not target_name:
        return None

    ignored_rut = canonicalize_rut(ignore_employee_rut)
    ignored_name = normalize_identity_name(ignore_employee_name)

    for employee in employees:
        employee_rut = canonicalize_rut(employee.rut)
        if employee_rut != target_rut:
            continue
        employee_name = normalize_identity_name(employee.nombre)
        if ignored_rut and employee_rut == ignored_rut and (not ignored_name or employee_name == ignored_name):
            continue
        if employee_name and employee_name != target_name:
            return IdentityConflict(target_rut, incoming_name, employee.nombre, "employees")

    for record in records:
        if ignore_record_id and record.id == ignore_record_id:
            continue
        if canonicalize_rut(record.rut) != target_rut:
            continue
        record_name = normalize_identity_name(record.funcionario)
        if record_name and record_name != target_name:
            return IdentityConflict(target_rut, incoming_name, record.funcionario, "records")

    return None


def build_conflict_message(conflict: IdentityConflict) -> str:
    source_label = "la base de personal" if conflict.source == "employees" else "el historial de decretos"
    return (
        f'El RUT {format_rut_for_storage(conflict.canonical_rut)} ya está asociado a '
        f'"{conflict.existing_name}" en {source_label}.'
    )
