from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable

from gdp_cloud.application.background import BackgroundTasks
from gdp_cloud.application.connectivity import ConnectivityMonitor
from gdp_cloud.application.realtime import DEFAULT_DEBOUNCE_SECONDS, DebouncedRefresh, SyncEventBus
from gdp_cloud.application.record_parsing import parse_partition, prepare_partition_rows, warnings_preview
from gdp_cloud.application.retry_scheduler import RetryPolicy, RetryScheduler, TimerSlot
from gdp_cloud.application.undo import UndoManager
from gdp_cloud.core.errors import AppError, PersistenceError
from gdp_cloud.core.metrics import medir_tiempo_async, metrics_registry
from gdp_cloud.core.observability import OperationContext, log_event
from gdp_cloud.domain.models import (
    RECORD_PARTITIONS,
    FetchOutcome,
    ModuleSyncStatus,
    ParseResult,
    Partition,
    PermitRecord,
)
from gdp_cloud.domain.ports import BackupStorePort, CallLater, RemoteGatewayPort
from gdp_cloud.domain.record_dates import RecordComparator, compare_records_by_date_desc, sort_records

logger = logging.getLogger(__name__)

RecordsMutation = Callable[[tuple[PermitRecord, ...]], Iterable[PermitRecord]]


@dataclass(frozen=True)
class _PartitionFetch:
    partition: Partition
    parsed: ParseResult | None = None
    error: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _backup_label(moment: datetime | None) -> str:
    return moment.astimezone().strftime("%H:%M:%S") if moment else "fecha desconocida"


class RecordsSync:
    """Sincroniza los decretos PA y FL contra los endpoints remotos.

    Es el único dueño del conjunto de registros en memoria: toda mutación
    pasa por `apply_mutation`, que guarda el snapshot de deshacer, actualiza
    el backup local sin esperar y empuja el resultado a la nube.
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
        retry_policy: RetryPolicy | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        comparator: RecordComparator = compare_records_by_date_desc,
        undo_manager: UndoManager | None = None,
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
        self._comparator = comparator
        self._undo = undo_manager or UndoManager()
        self._on_success = on_success
        self._on_error = on_error
        self._actor_email = actor_email
        self._clock = clock

        self._retry = RetryScheduler(retry_policy or RetryPolicy(), TimerSlot(call_later), self._retry_pending_push)
        self._refresh = DebouncedRefresh(
            TimerSlot(call_later), self.fetch_from_cloud, tasks, debounce_seconds, name="records"
        )

        self.records: tuple[PermitRecord, ...] = ()
        self.module_sync: dict[Partition, ModuleSyncStatus] = {
            partition: ModuleSyncStatus() for partition in RECORD_PARTITIONS
        }
        self.is_syncing = False
        self.sync_error = False
        self.last_sync: datetime | None = None
        self.sync_warnings: list[str] = []

        self._pending_data: tuple[PermitRecord, ...] | None = None
        self._fetch_task: asyncio.Task[list[_PartitionFetch]] | None = None
        self._fetch_generation = 0
        self._push_generation = 0
        self._partition_push: dict[Partition, int] = {}
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def pending_sync(self) -> bool:
        return self._pending_data is not None

    @property
    def is_retry_scheduled(self) -> bool:
        return self._retry.is_scheduled

    @property
    def retry_attempts(self) -> int:
        return self._retry.attempts

    @property
    def can_undo(self) -> bool:
        return self._undo.can_undo

    @property
    def undo_depth(self) -> int:
        return self._undo.depth

    def start(self) -> None:
        self._unsubscribers.append(self._connectivity.listen(self._on_connectivity_change))
        if self._bus is not None:
            self._unsubscribers.append(self._bus.subscribe("records", self._refresh.notify))

    async def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._retry.cancel()
        self._refresh.cancel()
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()

    # Fetch

    @medir_tiempo_async("sync.fetch")
    async def fetch_from_cloud(self) -> FetchOutcome:
        """Descarga PA y FL en paralelo; el fetch emitido más tarde gana.

        Un fetch nuevo cancela el que siga en vuelo, cuyo resultado se
        descarta (`superseded`). Si falla una sola partición se conservan
        sus registros previos; si fallan todas se recurre al backup local.
        """
        self._fetch_generation += 1
        generation = self._fetch_generation
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()

        if not self._connectivity.online:
            self.is_syncing = False
            self.sync_error = True
            for partition in RECORD_PARTITIONS:
                if self.module_sync[partition].status == "syncing":
                    self.module_sync[partition] = self.module_sync[partition].failed("Sin conexión a internet")
            return await self._fallback_to_backup("Sin conexión a internet", RECORD_PARTITIONS)

        with OperationContext("fetch_from_cloud"):
            self.is_syncing = True
            self.sync_error = False
            for partition in RECORD_PARTITIONS:
                self.module_sync[partition] = self.module_sync[partition].syncing()
            logger.info("Iniciando fetch desde la nube...")

            task = asyncio.ensure_future(self._fetch_partitions(RECORD_PARTITIONS))
            self._fetch_task = task
            try:
                results = await task
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise
                logger.debug("Fetch %s reemplazado por uno más reciente", generation)
                return FetchOutcome(status="superseded")
            finally:
                if generation == self._fetch_generation:
                    self.is_syncing = False

            if generation != self._fetch_generation:
                logger.debug("Fetch %s descartado: llegó después de uno más reciente", generation)
                return FetchOutcome(status="superseded")

            return await self._apply_fetch_results(results)

    async def fetch_module_from_cloud(self, partition: Partition) -> bool:
        if not self._connectivity.online:
            self.sync_error = True
            return False

        with OperationContext(f"fetch_module_{partition.value}"):
            self.module_sync[partition] = self.module_sync[partition].syncing()
            (result,) = await self._fetch_partitions((partition,))
            if result.parsed is None:
                self.module_sync[partition] = self.module_sync[partition].failed(
                    result.error or f"Error de sincronización {partition.value}"
                )
                self.sync_error = True
                return False

            kept = [record for record in self.records if record.solicitud_type != partition]
            self.records = tuple(sort_records([*kept, *result.parsed.records], self._comparator))
            now = self._clock()
            self.module_sync[partition] = self.module_sync[partition].succeeded(now)
            self.last_sync = now
            self.sync_error = False
            await self._save_backup(self.records)
            return True

    async def _fetch_partitions(self, partitions: Iterable[Partition]) -> list[_PartitionFetch]:
        return list(await asyncio.gather(*(self._fetch_partition(partition) for partition in partitions)))

    async def _fetch_partition(self, partition: Partition) -> _PartitionFetch:
        try:
            response = await self._gateway.fetch(partition)
        except AppError as exc:
            logger.warning("Fetch %s falló: %s", partition.value, exc, extra={"particion": partition.value})
            return _PartitionFetch(partition, error=str(exc))
        if not response.success or response.data is None:
            return _PartitionFetch(partition, error=response.error_message())
        parsed = parse_partition(partition, response.data)
        logger.debug("Procesados %s registros %s", len(parsed.records), partition.value)
        return _PartitionFetch(partition, parsed=parsed)

    async def _apply_fetch_results(self, results: list[_PartitionFetch]) -> FetchOutcome:
        failed = tuple(result.partition for result in results if result.parsed is None)
        if len(failed) == len(results):
            for result in results:
                self.module_sync[result.partition] = self.module_sync[result.partition].failed(
                    result.error or f"Falló la carga de {result.partition.value}"
                )
            self.sync_error = True
            metrics_registry.incrementar("sync.fetch.error")
            return await self._fallback_to_backup("Error al conectar con la nube", failed)

        now = self._clock()
        merged: list[PermitRecord] = []
        warnings: list[str] = []
        for result in results:
            if result.parsed is not None:
                merged.extend(result.parsed.records)
                warnings.extend(result.parsed.warnings)
                self.module_sync[result.partition] = self.module_sync[result.partition].succeeded(now)
            else:
                merged.extend(record for record in self.records if record.solicitud_type == result.partition)
                warnings.append(f"[{result.partition.value}] {result.error}")
                self.module_sync[result.partition] = self.module_sync[result.partition].failed(result.error or "")

        self.records = tuple(sort_records(merged, self._comparator))
        self.sync_warnings = warnings_preview(warnings)
        self.last_sync = now
        self.sync_error = bool(failed)
        await self._save_backup(self.records)

        status = "partial" if failed else "ok"
        metrics_registry.incrementar(f"sync.fetch.{status}")
        log_event(
            logger,
            "fetch_completed",
            {"records": len(self.records), "warnings": len(warnings), "failed": [p.value for p in failed]},
        )
        if failed:
            self._notify_error(f"Error al cargar {', '.join(p.value for p in failed)} desde la nube")
        else:
            self._notify_success()
        return FetchOutcome(
            status=status,
            records=self.records,
            warnings=tuple(warnings),
            failed_partitions=failed,
        )

    async def _fallback_to_backup(self, message: str, failed: tuple[Partition, ...]) -> FetchOutcome:
        try:
            backup_records = await asyncio.to_thread(self._backup.get_records)
            last_backup = await asyncio.to_thread(self._backup.get_last_backup_time)
        except PersistenceError as exc:
            logger.warning("Error al cargar backup local: %s", exc)
            self._notify_error(message)
            return FetchOutcome(status="unavailable", failed_partitions=failed)

        if not backup_records:
            self._notify_error(message)
            return FetchOutcome(status="unavailable", failed_partitions=failed)

        self.records = tuple(backup_records)
        logger.info("Recuperados %s registros desde backup local", len(backup_records))
        metrics_registry.incrementar("sync.fetch.degraded")
        self._notify_error(f"Modo offline: usando backup local ({_backup_label(last_backup)})")
        return FetchOutcome(
            status="degraded",
            records=self.records,
            failed_partitions=failed,
            last_backup_at=last_backup,
        )

    # Push

    @medir_tiempo_async("sync.push")
    async def sync_to_cloud(self, records: Iterable[PermitRecord]) -> bool:
        """Empuja el conjunto completo; éxito solo si toda partición con datos responde bien.

        Cada push lleva un número de generación. Si termina después de que
        se emitiera otro más reciente, su resultado se devuelve pero no toca
        el pendiente ni el reintento; solo informa el estado de las
        particiones que ningún push posterior volvió a tomar.
        """
        snapshot = tuple(records)
        self._push_generation += 1
        generation = self._push_generation
        self._pending_data = snapshot
        self._retry.cancel()

        if not self._connectivity.online:
            self.sync_error = True
            self._retry.on_failure(online=False)
            self._tasks.spawn(self._save_pending(snapshot), name="backup-pending-push")
            self._notify_error("Sin conexión a internet")
            return False

        with OperationContext("sync_to_cloud"):
            self.is_syncing = True
            self.sync_error = False
            try:
                return await self._push_snapshot(snapshot, generation)
            finally:
                if generation == self._push_generation:
                    self.is_syncing = False

    async def _push_snapshot(self, snapshot: tuple[PermitRecord, ...], generation: int) -> bool:
        payloads = {partition: prepare_partition_rows(partition, snapshot) for partition in RECORD_PARTITIONS}
        warnings = [warning for payload in payloads.values() for warning in payload.warnings]
        self.sync_warnings = warnings_preview(warnings)

        active = {partition: payload.rows for partition, payload in payloads.items() if payload.rows}
        if not active:
            self.last_sync = self._clock()
            self._mark_push_succeeded()
            return True

        for partition in active:
            self.module_sync[partition] = self.module_sync[partition].syncing()
            self._partition_push[partition] = generation
            logger.debug("Sincronizando %s registros %s", len(active[partition]), partition.value)

        errors = await asyncio.gather(*(self._push_partition(p, rows) for p, rows in active.items()))
        now = self._clock()
        failures = {partition: error for partition, error in zip(active, errors) if error is not None}
        for partition in active:
            # Un push más nuevo sobre la misma partición es quien informa su estado.
            if self._partition_push.get(partition) != generation:
                continue
            if partition in failures:
                self.module_sync[partition] = self.module_sync[partition].failed(
                    f"Error al sincronizar {partition.value}: {failures[partition]}"
                )
            else:
                self.module_sync[partition] = self.module_sync[partition].succeeded(now)

        if generation != self._push_generation:
            metrics_registry.incrementar("sync.push.superseded")
            logger.info(
                "Push %s terminó después de uno más reciente; no toca el pendiente ni el reintento",
                generation,
                extra={"extra": {"fallidas": [p.value for p in failures]}},
            )
            return not failures

        if failures:
            self.sync_error = True
            metrics_registry.incrementar("sync.push.error")
            detail = ", ".join(failures.values())
            logger.error("Error sincronizando: %s", detail)
            self._notify_error("Error al sincronizar con la nube")
            online = self._connectivity.online
            self._retry.on_failure(online=online)
            if not online:
                self._tasks.spawn(self._save_pending(snapshot), name="backup-pending-push")
            return False

        self.last_sync = now
        self._mark_push_succeeded()
        metrics_registry.incrementar("sync.push.ok")
        log_event(
            logger,
            "push_completed",
            {partition.value: len(rows) for partition, rows in active.items()},
        )
        self._publish_push_event(snapshot, active)
        self._notify_success()
        return True

    async def _push_partition(self, partition: Partition, rows: list[list[object]]) -> str | None:
        try:
            response = await self._gateway.push(partition, rows)
        except AppError as exc:
            logger.warning("Push %s falló: %s", partition.value, exc, extra={"particion": partition.value})
            return str(exc)
        if not response.success:
            return response.error_message()
        return None

    def _mark_push_succeeded(self) -> None:
        self._pending_data = None
        self._retry.on_success()
        self._tasks.spawn(self._clear_pending(), name="backup-clear-pending")

    def _publish_push_event(self, snapshot: tuple[PermitRecord, ...], active: dict[Partition, list]) -> None:
        if self._bus is None:
            return
        try:
            self._bus.publish(
                "records",
                "sync_to_cloud",
                actor_email=self._actor_email,
                metadata={
                    "total": len(snapshot),
                    "pa": len(active.get(Partition.PA, ())),
                    "fl": len(active.get(Partition.FL, ())),
                },
            )
        except AppError as exc:
            logger.warning("No se pudo publicar evento realtime de decretos: %s", exc)

    def _retry_pending_push(self) -> None:
        if self._pending_data is None:
            return
        self._tasks.spawn(self.sync_to_cloud(self._pending_data), name="retry-push")

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            self._retry.on_connectivity_restored()

    async def resume_pending_from_backup(self) -> bool:
        """Reintenta un push que quedó pendiente en una sesión anterior."""
        try:
            pending = await asyncio.to_thread(self._backup.get_pending_push)
        except PersistenceError as exc:
            logger.warning("No se pudo leer push pendiente: %s", exc)
            return False
        if pending is None:
            return False
        logger.info("Reanudando push pendiente con %s registros", len(pending))
        return await self.sync_to_cloud(pending)

    # Mutaciones

    async def apply_mutation(self, mutate: RecordsMutation) -> bool:
        previous = self.records
        updated = tuple(mutate(previous))
        self._undo.record(previous)
        self._replace_records(updated)
        return await self.sync_to_cloud(updated)

    async def undo(self) -> bool:
        snapshot = self._undo.pop()
        if snapshot is None:
            return False
        logger.info("Deshaciendo último cambio (%s registros)", len(snapshot))
        self._replace_records(snapshot)
        return await self.sync_to_cloud(snapshot)

    def _replace_records(self, records: tuple[PermitRecord, ...]) -> None:
        self.records = records
        self._tasks.spawn(self._save_backup(records), name="backup-records")

    # Backup

    async def _save_backup(self, records: tuple[PermitRecord, ...]) -> None:
        try:
            await asyncio.to_thread(self._backup.save_records, records)
            logger.debug("Backup local actualizado")
        except PersistenceError as exc:
            logger.warning("Error al guardar backup local: %s", exc)

    async def _save_pending(self, records: tuple[PermitRecord, ...]) -> None:
        try:
            await asyncio.to_thread(self._backup.save_pending_push, records)
        except PersistenceError as exc:
            logger.warning("Error al guardar push pendiente: %s", exc)

    async def _clear_pending(self) -> None:
        try:
            await asyncio.to_thread(self._backup.clear_pending_push)
        except PersistenceError as exc:
            logger.warning("Error al limpiar push pendiente: %s", exc)

    def _notify_success(self) -> None:
        if self._on_success is not None:
            self._on_success()

    def _notify_error(self, message: str) -> None:
        if self._on_error is not None:
            self._on_error(message)
