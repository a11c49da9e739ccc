from __future__ import annotations

from datetime import datetime, timezone

import pytest

from gdp_cloud.core.errors import PersistenceError
from gdp_cloud.domain.models import Employee
from gdp_cloud.infrastructure.db import SCHEMA_VERSION, open_backup_database
from gdp_cloud.infrastructure.local_backup import KEY_RECORDS, SQLiteBackupStore
from tests.fakes import fl_record, pa_record

_NOW = datetime(2026, 2, 3, 10, 15, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    backup = SQLiteBackupStore(tmp_path / "backup" / "gdp.db", clock=lambda: _NOW)
    yield backup
    backup.close()


def test_backup_vacio(store) -> None:
    assert store.get_records() == []
    assert store.get_employees() == []
    assert store.get_last_backup_time() is None
    assert store.get_pending_push() is None


def test_guardar_y_leer_registros_marca_ultimo_backup(store) -> None:
    records = [pa_record(), fl_record()]

    store.save_records(records)

    assert store.get_records() == records
    assert store.get_last_backup_time() == _NOW


def test_guardar_reemplaza_completo(store) -> None:
    store.save_records([pa_record("PA-1"), pa_record("PA-2")])
    store.save_records([fl_record()])

    assert store.get_records() == [fl_record()]


def test_funcionarios_no_tocan_el_ultimo_backup(store) -> None:
    employees = [Employee(nombre="JUAN PEREZ", rut="12.345.678-5", departamento="Salud")]

    store.save_employees(employees)

    assert store.get_employees() == employees
    assert store.get_last_backup_time() is None


def test_push_pendiente(store) -> None:
    store.save_pending_push([pa_record()])
    assert store.get_pending_push() == [pa_record()]

    store.clear_pending_push()
    assert store.get_pending_push() is None


def test_persiste_entre_instancias(tmp_path) -> None:
    path = tmp_path / "gdp.db"
    first = SQLiteBackupStore(path)
    first.save_records([fl_record()])
    first.close()

    second = SQLiteBackupStore(path)
    try:
        assert second.get_records() == [fl_record()]
    finally:
        second.close()


def test_stats(store) -> None:
    store.save_records([pa_record(), fl_record()])
    store.save_pending_push([pa_record()])

    assert store.stats() == {
        "records": 2,
        "employees": 0,
        "last_backup": _NOW.isoformat(),
        "pending_push": True,
    }


def test_json_corrupto_es_error_de_persistencia(tmp_path) -> None:
    path = tmp_path / "gdp.db"
    store = SQLiteBackupStore(path)
    store.save_records([pa_record()])
    connection = open_backup_database(path)
    with connection:
        connection.execute("UPDATE backup_blobs SET payload_json = ? WHERE key = ?", ("{roto", KEY_RECORDS))
    connection.close()

    try:
        with pytest.raises(PersistenceError, match="corrupto"):
            store.get_records()
    finally:
        store.close()


def test_ruta_invalida_es_error_de_persistencia(tmp_path) -> None:
    blocker = tmp_path / "archivo.txt"
    blocker.write_text("x", encoding="utf-8")
    store = SQLiteBackupStore(blocker / "gdp.db")

    with pytest.raises(PersistenceError, match="No se pudo abrir"):
        store.save_records([pa_record()])


def test_conexion_en_modo_wal(tmp_path) -> None:
    connection = open_backup_database(tmp_path / "wal.db")
    try:
        assert connection.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
    finally:
        connection.close()


def test_esquema_versionado_es_idempotente(tmp_path) -> None:
    path = tmp_path / "gdp.db"
    open_backup_database(path).close()
    connection = open_backup_database(path)
    try:
        assert connection.execute("PRAGMA user_version").fetchone()[0] == SCHEMA_VERSION
        tables = [row[0] for row in connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'")]
        assert tables == ["backup_blobs"]
    finally:
        connection.close()
