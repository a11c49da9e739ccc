from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Iterable

from gdp_cloud.application.background import BackgroundTasks
from gdp_cloud.application.connectivity import ConnectivityMonitor
from gdp_cloud.application.employee_parsing import (
    dedupe_employees_by_rut,
    normalize_employee,
    parse_employee_rows,
    prepare_employee_rows,
    sort_employees,
)
from gdp_cloud.application.realtime import DEFAULT_DEBOUNCE_SECONDS, DebouncedRefresh, SyncEventBus
from gdp_cloud.application.retry_scheduler import TimerSlot
from gdp_cloud.core.errors import (
    AppError,
    DuplicateIdentityError,
    InvalidRecordError,
    InvalidRutError,
    PersistenceError,
)
from gdp_cloud.core.metrics import metrics_registry
from gdp_cloud.core.observability import OperationContext
from gdp_cloud.domain.identity import canonicalize_rut
from gdp_cloud.domain.models import Employee, ModuleSyncStatus, Partition
from gdp_cloud.domain.ports import BackupStorePort, CallLater, RemoteGatewayPort

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EmployeesSync:
    """Base de personal sincronizada con la hoja de funcionarios.

    Las altas, ediciones y bajas se validan antes de tocar la red; un RUT
    inválido o repetido se rechaza con excepción y el estado no cambia.
    """

    def __init__(
        self,
        gateway: RemoteGatewayPort,
        backup: BackupStorePort,
        connectivity: ConnectivityMonitor,
        tasks: BackgroundTasks,
        call_later: CallLater,
        *,
        event_bus: SyncEventBus | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        on_success: Callable[[], None] | None = None,
        on_error: Callable[[str], None] | None = None,
        actor_email: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._gateway = gateway
        self._backup = backup
        self._connectivity = connectivity
        self._tasks = tasks
        self._bus = event_bus
        self._on_success = on_success
        self._on_error = on_error
        self._actor_email = actor_email
        self._clock = clock
        self._refresh = DebouncedRefresh(
            TimerSlot(call_later), self.fetch_from_cloud, tasks, debounce_seconds, name="employees"
        )

        self.employees: tuple[Employee, ...] = ()
        self.status = ModuleSyncStatus()
        self.sync_error = False
        self.last_sync: datetime | None = None

        self._fetch_task: asyncio.Task | None = None
        self._fetch_generation = 0
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def is_syncing(self) -> bool:
        return self.status.status == "syncing"

    def start(self) -> None:
        if self._bus is not None:
            self._unsubscribers.append(self._bus.subscribe("employees", self._refresh.notify))

    async def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._refresh.cancel()
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()

    async def fetch_from_cloud(self) -> bool:
        if not self._connectivity.online:
            return await self._fallback_to_backup("Sin conexión a internet")

        self._fetch_generation += 1
        generation = self._fetch_generation
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()

        with OperationContext("fetch_employees"):
            self.status = self.status.syncing()
            self.sync_error = False
            task = asyncio.ensure_future(self._gateway.fetch(Partition.EMPLOYEES))
            self._fetch_task = task
            try:
                response = await task
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise
                logger.debug("Fetch de funcionarios %s reemplazado", generation)
                return False
            except AppError as exc:
                logger.error("Error al recuperar empleados de la nube: %s", exc)
                return await self._fail_fetch(str(exc))

            if generation != self._fetch_generation:
                return False
            if not response.success or response.data is None:
                return await self._fail_fetch(response.error_message())

            employees = parse_employee_rows(response.data)
            self.employees = tuple(employees)
            now = self._clock()
            self.status = self.status.succeeded(now)
            self.last_sync = now
            await self._save_backup(self.employees)
            metrics_registry.incrementar("sync.employees.fetch.ok")
            logger.info("Fetch completado: %s empleados", len(employees))
            self._notify_success()
            return True

    async def _fail_fetch(self, message: str) -> bool:
        self.status = self.status.failed(message)
        self.sync_error = True
        metrics_registry.incrementar("sync.employees.fetch.error")
        return await self._fallback_to_backup("Error al conectar con la nube de empleados")

    async def _fallback_to_backup(self, message: str) -> bool:
        try:
            backup_employees = await asyncio.to_thread(self._backup.get_employees)
        except PersistenceError as exc:
            logger.warning("Error al recuperar backup local de empleados: %s", exc)
            self._notify_error(message)
            return False
        if not backup_employees:
            self._notify_error(message)
            return False
        self.employees = tuple(backup_employees)
        self._notify_error("Modo offline: usando backup local de funcionarios")
        return False

    async def sync_to_cloud(self, employees: Iterable[Employee]) -> bool:
        if not self._connectivity.online:
            self._notify_error("Sin conexión a internet")
            return False

        normalized = dedupe_employees_by_rut(
            employee for employee in map(normalize_employee, employees) if employee is not None
        )
        with OperationContext("sync_employees"):
            self.status = self.status.syncing()
            self.sync_error = False
            try:
                response = await self._gateway.push(Partition.EMPLOYEES, prepare_employee_rows(normalized))
                if not response.success:
                    message = response.error_message()
                    logger.error("Error sincronizando empleados: %s", message)
                    return self._fail_push(message)
            except AppError as exc:
                logger.error("Error sincronizando empleados: %s", exc)
                return self._fail_push(str(exc))

            now = self._clock()
            self.status = self.status.succeeded(now)
            self.last_sync = now
            metrics_registry.incrementar("sync.employees.push.ok")
            self._publish(len(normalized))
            self._notify_success()
            return True

    def _fail_push(self, message: str) -> bool:
        self.status = self.status.failed(message)
        self.sync_error = True
        metrics_registry.incrementar("sync.employees.push.error")
        self._notify_error("Error al sincronizar empleados con la nube")
        return False

    def _publish(self, total: int) -> None:
        if self._bus is None:
            return
        try:
            self._bus.publish("employees", "sync_to_cloud", actor_email=self._actor_email, metadata={"total": total})
        except AppError as exc:
            logger.warning("No se pudo publicar evento realtime de funcionarios: %s", exc)

    # Mutaciones

    async def add_employee(self, employee: Employee) -> bool:
        normalized = normalize_employee(employee)
        if normalized is None:
            raise InvalidRutError("No se pudo guardar: RUT inválido para funcionario.")
        target = canonicalize_rut(normalized.rut)
        if any(canonicalize_rut(current.rut) == target for current in self.employees):
            raise DuplicateIdentityError("No se pudo guardar: ya existe un funcionario con ese RUT.")
        return await self._replace_and_push(sort_employees([*self.employees, normalized]))

    async def update_employee(self, old_rut: str, employee: Employee) -> bool:
        normalized = normalize_employee(employee)
        if normalized is None:
            raise InvalidRutError("No se pudo actualizar: RUT inválido para funcionario.")
        old_canonical = canonicalize_rut(old_rut)
        new_canonical = canonicalize_rut(normalized.rut)
        if not any(canonicalize_rut(current.rut) == old_canonical for current in self.employees):
            raise InvalidRecordError("No se pudo actualizar: el funcionario no existe.")
        for current in self.employees:
            current_canonical = canonicalize_rut(current.rut)
            if current_canonical and current_canonical != old_canonical and current_canonical == new_canonical:
                raise DuplicateIdentityError("No se pudo actualizar: ya existe otro funcionario con ese RUT.")
        updated = [normalized if canonicalize_rut(current.rut) == old_canonical else current for current in self.employees]
        return await self._replace_and_push(sort_employees(updated))

    async def delete_employee(self, rut: str) -> bool:
        target = canonicalize_rut(rut)
        remaining = [current for current in self.employees if canonicalize_rut(current.rut) != target]
        return await self._replace_and_push(remaining)

    async def _replace_and_push(self, employees: list[Employee]) -> bool:
        self.employees = tuple(employees)
        self._tasks.spawn(self._save_backup(self.employees), name="backup-employees")
        return await self.sync_to_cloud(self.employees)

    async def _save_backup(self, employees: tuple[Employee, ...]) -> None:
        try:
            await asyncio.to_thread(self._backup.save_employees, employees)
        except PersistenceError as exc:
            logger.warning("Error al guardar backup de empleados: %s", exc)

    def _notify_success(self) -> None:
        if self._on_success is not None:
            self._on_success()

    def _notify_error(self, message: str) -> None:
        if self._on_error is not None:
            self._on_error(message)
