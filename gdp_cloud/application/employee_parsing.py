from __future__ import annotations

from typing import Any, Iterable, Sequence

from gdp_cloud.domain.identity import canonicalize_rut, format_rut_for_storage, validate_checksum
from gdp_cloud.domain.models import Employee

# Columnas de la hoja de personal: N°, Nombres, Primer Apellido, Segundo Apellido, RUT, Departamento.
COL_NOMBRES, COL_PRIMER_APELLIDO, COL_SEGUNDO_APELLIDO, COL_RUT, COL_DEPARTAMENTO = range(1, 6)


def _cell(row: Sequence[Any], index: int) -> str:
    if index >= len(row) or row[index] is None:
        return ""
    return str(row[index]).strip()


def normalize_employee(employee: Employee) -> Employee | None:
    """Nombre en mayúsculas y RUT en formato de almacenamiento; None si el RUT no es válido."""
    nombre = (employee.nombre or "").strip().upper()
    rut = format_rut_for_storage(employee.rut)
    if not nombre or not rut or not validate_checksum(rut):
        return None
    return Employee(nombre=nombre, rut=rut, departamento=(employee.departamento or "").strip())


def dedupe_employees_by_rut(employees: Iterable[Employee]) -> list[Employee]:
    seen: dict[str, Employee] = {}
    for employee in employees:
        canonical = canonicalize_rut(employee.rut)
        if canonical is None or canonical in seen:
            continue
        seen[canonical] = employee
    return list(seen.values())


def sort_employees(employees: Iterable[Employee]) -> list[Employee]:
    return sorted(employees, key=lambda employee: employee.nombre)


def parse_employee_rows(rows: Iterable[Sequence[Any]]) -> list[Employee]:
    """Filas de la hoja de personal a funcionarios válidos, únicos y ordenados por nombre."""
    parsed: list[Employee] = []
    for row in rows:
        if not row or not _cell(row, COL_NOMBRES):
            continue
        nombre = " ".join(
            part
            for part in (
                _cell(row, COL_NOMBRES),
                _cell(row, COL_PRIMER_APELLIDO),
                _cell(row, COL_SEGUNDO_APELLIDO),
            )
            if part
        )
        normalized = normalize_employee(
            Employee(nombre=nombre, rut=_cell(row, COL_RUT), departamento=_cell(row, COL_DEPARTAMENTO))
        )
        if normalized is not None:
            parsed.append(normalized)
    return sort_employees(dedupe_employees_by_rut(parsed))


def split_full_name(nombre: str) -> tuple[str, str, str]:
    parts = nombre.split(" ")
    if len(parts) >= 4:
        return " ".join(parts[:2]), parts[2], " ".join(parts[3:])
    if len(parts) == 3:
        return parts[0], parts[1], parts[2]
    if len(parts) == 2:
        return parts[0], parts[1], ""
    return nombre, "", ""


def prepare_employee_rows(employees: Iterable[Employee]) -> list[list[Any]]:
    normalized = dedupe_employees_by_rut(
        employee for employee in map(normalize_employee, employees) if employee is not None
    )
    rows: list[list[Any]] = []
    for index, employee in enumerate(normalized):
        nombres, primer_apellido, segundo_apellido = split_full_name(employee.nombre)
        rows.append([index + 1, nombres, primer_apellido, segundo_apellido, employee.rut, employee.departamento])
    return rows
