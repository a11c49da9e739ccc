from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Iterable, Protocol

from gdp_cloud.domain.models import Employee, Partition, PermitRecord, RemoteResponse, SyncConfig, SyncEvent


class RemoteGatewayPort(Protocol):
    async def fetch(self, partition: Partition) -> RemoteResponse:
        ...

    async def push(self, partition: Partition, rows: list[list[Any]]) -> RemoteResponse:
        ...


class BackupStorePort(Protocol):
    def save_records(self, records: Iterable[PermitRecord]) -> None:
        ...

    def get_records(self) -> list[PermitRecord]:
        ...

    def save_employees(self, employees: Iterable[Employee]) -> None:
        ...

    def get_employees(self) -> list[Employee]:
        ...

    def get_last_backup_time(self) -> datetime | None:
        ...

    def save_pending_push(self, records: Iterable[PermitRecord]) -> None:
        ...

    def get_pending_push(self) -> list[PermitRecord] | None:
        ...

    def clear_pending_push(self) -> None:
        ...


class EventLogPort(Protocol):
    def append(self, event: SyncEvent) -> SyncEvent:
        ...

    def listen(self, listener: Callable[[SyncEvent], None]) -> Callable[[], None]:
        ...


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


CallLater = Callable[[float, Callable[[], None]], TimerHandle]


class SyncConfigStorePort(Protocol):
    def load(self) -> SyncConfig | None:
        ...

    def save(self, config: SyncConfig) -> SyncConfig:
        ...


class ConnectivityProbePort(Protocol):
    def check(self, *, timeout_seconds: float = 3.0) -> bool:
        ...
