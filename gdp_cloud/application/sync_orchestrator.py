from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass

from gdp_cloud.application.background import BackgroundTasks
from gdp_cloud.application.connectivity import ConnectivityMonitor
from gdp_cloud.application.employees_sync import EmployeesSync
from gdp_cloud.application.record_parsing import calculate_next_correlatives
from gdp_cloud.application.records_sync import RecordsSync
from gdp_cloud.core.errors import IdentityConflictError, InvalidRecordError, InvalidRutError
from gdp_cloud.domain.conflicts import build_conflict_message, find_conflict
from gdp_cloud.domain.identity import format_rut_for_storage, validate_checksum
from gdp_cloud.domain.models import Employee, FetchOutcome, Partition, PermitRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefreshResult:
    records: FetchOutcome
    employees_ok: bool


class SyncOrchestrator:
    """Fachada pública: valida identidad y delega en los sincronizadores.

    Las validaciones (RUT mal formado, dígito verificador, conflicto de
    nombre) se lanzan antes de cualquier mutación o llamada de red.
    """

    def __init__(
        self,
        records: RecordsSync,
        employees: EmployeesSync,
        connectivity: ConnectivityMonitor,
        tasks: BackgroundTasks,
    ) -> None:
        self.records_sync = records
        self.employees_sync = employees
        self.connectivity = connectivity
        self._tasks = tasks

    @property
    def records(self) -> tuple[PermitRecord, ...]:
        return self.records_sync.records

    @property
    def employees(self) -> tuple[Employee, ...]:
        return self.employees_sync.employees

    def start(self) -> None:
        self.records_sync.start()
        self.employees_sync.start()

    async def close(self) -> None:
        await self.records_sync.close()
        await self.employees_sync.close()
        await self._tasks.cancel_all()

    async def wait_idle(self) -> None:
        await self._tasks.wait_idle()

    def set_online(self, online: bool) -> None:
        self.connectivity.set_online(online)

    async def refresh(self) -> RefreshResult:
        employees_ok = await self.employees_sync.fetch_from_cloud()
        outcome = await self.records_sync.fetch_from_cloud()
        return RefreshResult(records=outcome, employees_ok=employees_ok)

    def validate_identity(
        self,
        rut: str,
        nombre: str,
        *,
        ignore_record_id: str | None = None,
        ignore_employee_rut: str | None = None,
        ignore_employee_name: str | None = None,
    ) -> str:
        """Devuelve el RUT en formato de almacenamiento o lanza el error de validación."""
        if not validate_checksum(rut):
            raise InvalidRutError(f"RUT inválido: {rut}")
        conflict = find_conflict(
            rut,
            nombre,
            self.employees,
            self.records,
            ignore_employee_rut=ignore_employee_rut,
            ignore_employee_name=ignore_employee_name,
            ignore_record_id=ignore_record_id,
        )
        if conflict is not None:
            raise IdentityConflictError(build_conflict_message(conflict), conflict=conflict)
        return format_rut_for_storage(rut)

    def _prepare_record(self, record: PermitRecord, *, ignore_record_id: str | None = None) -> PermitRecord:
        if not record.funcionario.strip():
            raise InvalidRecordError("El decreto debe indicar un funcionario.")
        if not record.second_period_is_consistent():
            raise InvalidRecordError("El segundo período va completo (período 2 y sus tres saldos) o vacío.")
        rut = self.validate_identity(record.rut, record.funcionario, ignore_record_id=ignore_record_id)
        return record.with_changes(rut=rut, funcionario=record.funcionario.strip())

    async def create_record(self, record: PermitRecord) -> bool:
        prepared = self._prepare_record(record)
        prepared = prepared.with_changes(
            id=prepared.id or f"{prepared.solicitud_type.value}-{uuid.uuid4()}",
            created_at=prepared.created_at or int(time.time() * 1000),
        )
        logger.info("Creando decreto %s (%s)", prepared.acto, prepared.solicitud_type.value)
        return await self.records_sync.apply_mutation(lambda current: (prepared, *current))

    async def update_record(self, record: PermitRecord) -> bool:
        if not any(current.id == record.id for current in self.records):
            raise InvalidRecordError(f"No existe el decreto {record.id}")
        prepared = self._prepare_record(record, ignore_record_id=record.id)
        return await self.records_sync.apply_mutation(
            lambda current: [prepared if item.id == prepared.id else item for item in current]
        )

    async def delete_record(self, record_id: str) -> bool:
        if not any(current.id == record_id for current in self.records):
            raise InvalidRecordError(f"No existe el decreto {record_id}")
        return await self.records_sync.apply_mutation(
            lambda current: [item for item in current if item.id != record_id]
        )

    async def undo(self) -> bool:
        return await self.records_sync.undo()

    def next_correlatives(self, year: int) -> dict[Partition, str]:
        return calculate_next_correlatives(self.records, year)
