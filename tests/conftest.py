from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from gdp_cloud.application.background import BackgroundTasks
from gdp_cloud.application.connectivity import ConnectivityMonitor
from gdp_cloud.application.employees_sync import EmployeesSync
from gdp_cloud.application.realtime import SyncEventBus
from gdp_cloud.application.records_sync import RecordsSync
from gdp_cloud.application.retry_scheduler import RetryPolicy
from gdp_cloud.application.sync_orchestrator import SyncOrchestrator
from gdp_cloud.domain.models import SyncConfig
from gdp_cloud.infrastructure.realtime_log import InMemorySyncEventLog
from tests.fakes import FakeGateway, InMemoryBackup, ManualClock


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def backup() -> InMemoryBackup:
    return InMemoryBackup()


@pytest.fixture
def connectivity() -> ConnectivityMonitor:
    return ConnectivityMonitor(online=True)


@pytest.fixture
def tasks() -> BackgroundTasks:
    return BackgroundTasks()


@pytest.fixture
def event_log() -> InMemorySyncEventLog:
    return InMemorySyncEventLog()


@pytest.fixture
def event_bus(event_log: InMemorySyncEventLog) -> SyncEventBus:
    return SyncEventBus(event_log, "cliente-local")


@pytest.fixture
def errors() -> list[str]:
    return []


@pytest.fixture
def records_sync(gateway, backup, connectivity, tasks, clock, event_bus, errors) -> RecordsSync:
    return RecordsSync(
        gateway,
        backup,
        connectivity,
        tasks,
        clock.call_later,
        event_bus=event_bus,
        retry_policy=RetryPolicy(delay_seconds=5.0),
        on_error=errors.append,
    )


@pytest.fixture
def employees_sync(gateway, backup, connectivity, tasks, clock, event_bus, errors) -> EmployeesSync:
    return EmployeesSync(
        gateway,
        backup,
        connectivity,
        tasks,
        clock.call_later,
        event_bus=event_bus,
        on_error=errors.append,
    )


@pytest.fixture
def orchestrator(records_sync, employees_sync, connectivity, tasks) -> SyncOrchestrator:
    return SyncOrchestrator(records_sync, employees_sync, connectivity, tasks)


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(
        pa_endpoint="https://script.example/pa/exec",
        fl_endpoint="https://script.example/fl/exec",
        pa_sheet_id="sheet-pa",
        fl_sheet_id="sheet-fl",
        employees_sheet_id="sheet-personal",
        client_id="cliente-test",
    )


@pytest.fixture
def restore_root_logger():
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level
    yield root_logger
    for handler in list(root_logger.handlers):
        if handler not in handlers:
            root_logger.removeHandler(handler)
            handler.close()
    root_logger.setLevel(level)
