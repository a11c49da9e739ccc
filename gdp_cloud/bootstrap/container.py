from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from gdp_cloud.application.background import BackgroundTasks
from gdp_cloud.application.connectivity import ConnectivityMonitor
from gdp_cloud.application.employees_sync import EmployeesSync
from gdp_cloud.application.realtime import SyncEventBus
from gdp_cloud.application.records_sync import RecordsSync
from gdp_cloud.application.retry_scheduler import RetryPolicy
from gdp_cloud.application.sync_orchestrator import SyncOrchestrator
from gdp_cloud.bootstrap.settings import resolve_backup_path
from gdp_cloud.domain.models import SyncConfig
from gdp_cloud.domain.ports import EventLogPort, RemoteGatewayPort
from gdp_cloud.infrastructure.connectivity_probe import SocketConnectivityProbe
from gdp_cloud.infrastructure.http_gateway import AppsScriptGateway
from gdp_cloud.infrastructure.local_backup import SQLiteBackupStore
from gdp_cloud.infrastructure.realtime_log import InMemorySyncEventLog
from gdp_cloud.infrastructure.sheets_client import SheetsClient
from gdp_cloud.infrastructure.sheets_gateway_gspread import GspreadSheetsGateway


@dataclass
class SyncContainer:
    config: SyncConfig
    orchestrator: SyncOrchestrator
    backup: SQLiteBackupStore
    gateway: RemoteGatewayPort
    event_bus: SyncEventBus
    connectivity: ConnectivityMonitor

    async def aclose(self) -> None:
        await self.orchestrator.close()
        closer = getattr(self.gateway, "aclose", None)
        if closer is not None:
            await closer()
        self.backup.close()


def build_gateway(config: SyncConfig) -> RemoteGatewayPort:
    if config.backend == "gspread":
        return GspreadSheetsGateway(config, SheetsClient(Path(config.credentials_path)))
    return AppsScriptGateway(config)


def build_container(
    config: SyncConfig,
    *,
    backup_path: Path | None = None,
    gateway: RemoteGatewayPort | None = None,
    event_log: EventLogPort | None = None,
    actor_email: str | None = None,
    **callbacks: Any,
) -> SyncContainer:
    """Arma el orquestador con sus adaptadores. Debe llamarse con un loop en marcha."""
    loop = asyncio.get_running_loop()
    backup = SQLiteBackupStore(backup_path or resolve_backup_path())
    resolved_gateway = gateway or build_gateway(config)
    connectivity = ConnectivityMonitor(online=True, probe=SocketConnectivityProbe())
    event_bus = SyncEventBus(event_log or InMemorySyncEventLog(), config.client_id)
    tasks = BackgroundTasks()

    records = RecordsSync(
        resolved_gateway,
        backup,
        connectivity,
        tasks,
        loop.call_later,
        event_bus=event_bus,
        retry_policy=RetryPolicy(config.retry_delay_seconds, config.retry_max_attempts),
        debounce_seconds=config.debounce_seconds,
        on_success=callbacks.get("on_records_success"),
        on_error=callbacks.get("on_records_error"),
        actor_email=actor_email,
    )
    employees = EmployeesSync(
        resolved_gateway,
        backup,
        connectivity,
        tasks,
        loop.call_later,
        event_bus=event_bus,
        debounce_seconds=config.debounce_seconds,
        on_success=callbacks.get("on_employees_success"),
        on_error=callbacks.get("on_employees_error"),
        actor_email=actor_email,
    )
    orchestrator = SyncOrchestrator(records, employees, connectivity, tasks)
    return SyncContainer(
        config=config,
        orchestrator=orchestrator,
        backup=backup,
        gateway=resolved_gateway,
        event_bus=event_bus,
        connectivity=connectivity,
    )
