from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from gdp_cloud.core.errors import PersistenceError
from gdp_cloud.domain.models import Employee, PermitRecord
from gdp_cloud.domain.ports import BackupStorePort
from gdp_cloud.infrastructure.db import open_backup_database

logger = logging.getLogger(__name__)

KEY_RECORDS = "records"
KEY_EMPLOYEES = "employees"
KEY_LAST_BACKUP = "last_backup"
KEY_PENDING_PUSH = "pending_push"


class SQLiteBackupStore(BackupStorePort):
    """Copia local de registros y funcionarios para trabajar sin red.

    Cada clave se sobrescribe completa en cada guardado; nunca se parchea.
    """

    def __init__(self, db_path: Path, *, clock=lambda: datetime.now(timezone.utc)) -> None:
        self._db_path = db_path
        self._clock = clock
        self._lock = threading.Lock()
        self._connection: sqlite3.Connection | None = None

    def _conn(self) -> sqlite3.Connection:
        if self._connection is None:
            try:
                self._connection = open_backup_database(self._db_path)
            except (sqlite3.Error, OSError) as exc:
                raise PersistenceError(f"No se pudo abrir el backup local: {exc}") from exc
            logger.info("Backup local inicializado en %s", self._db_path)
        return self._connection

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    def _write(self, entries: dict[str, Any]) -> None:
        saved_at = self._clock().isoformat()
        with self._lock:
            connection = self._conn()
            try:
                with connection:
                    connection.executemany(
                        "INSERT OR REPLACE INTO backup_blobs (key, payload_json, saved_at) VALUES (?, ?, ?)",
                        [(key, json.dumps(value, ensure_ascii=False), saved_at) for key, value in entries.items()],
                    )
            except sqlite3.Error as exc:
                raise PersistenceError(f"No se pudo guardar el backup local: {exc}") from exc

    def _read(self, key: str) -> Any | None:
        with self._lock:
            connection = self._conn()
            try:
                row = connection.execute("SELECT payload_json FROM backup_blobs WHERE key = ?", (key,)).fetchone()
            except sqlite3.Error as exc:
                raise PersistenceError(f"No se pudo leer el backup local: {exc}") from exc
        if row is None:
            return None
        try:
            return json.loads(row["payload_json"])
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Backup local corrupto en '{key}'") from exc

    def _delete(self, key: str) -> None:
        with self._lock:
            connection = self._conn()
            try:
                with connection:
                    connection.execute("DELETE FROM backup_blobs WHERE key = ?", (key,))
            except sqlite3.Error as exc:
                raise PersistenceError(f"No se pudo limpiar el backup local: {exc}") from exc

    def save_records(self, records: Iterable[PermitRecord]) -> None:
        payload = [record.to_dict() for record in records]
        self._write({KEY_RECORDS: payload, KEY_LAST_BACKUP: self._clock().isoformat()})
        logger.debug("Backup: %s registros guardados", len(payload))

    def get_records(self) -> list[PermitRecord]:
        payload = self._read(KEY_RECORDS) or []
        return [PermitRecord.from_dict(item) for item in payload]

    def save_employees(self, employees: Iterable[Employee]) -> None:
        payload = [employee.to_dict() for employee in employees]
        self._write({KEY_EMPLOYEES: payload})
        logger.debug("Backup: %s funcionarios guardados", len(payload))

    def get_employees(self) -> list[Employee]:
        payload = self._read(KEY_EMPLOYEES) or []
        return [Employee.from_dict(item) for item in payload]

    def get_last_backup_time(self) -> datetime | None:
        value = self._read(KEY_LAST_BACKUP)
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except (TypeError, ValueError):
            logger.warning("Marca de último backup ilegible: %r", value)
            return None

    def save_pending_push(self, records: Iterable[PermitRecord]) -> None:
        self._write({KEY_PENDING_PUSH: [record.to_dict() for record in records]})

    def get_pending_push(self) -> list[PermitRecord] | None:
        payload = self._read(KEY_PENDING_PUSH)
        if payload is None:
            return None
        return [PermitRecord.from_dict(item) for item in payload]

    def clear_pending_push(self) -> None:
        self._delete(KEY_PENDING_PUSH)

    def stats(self) -> dict[str, Any]:
        last_backup = self.get_last_backup_time()
        return {
            "records": len(self._read(KEY_RECORDS) or []),
            "employees": len(self._read(KEY_EMPLOYEES) or []),
            "last_backup": last_backup.isoformat() if last_backup else None,
            "pending_push": self._read(KEY_PENDING_PUSH) is not None,
        }
