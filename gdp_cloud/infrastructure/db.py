from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

DB_FILENAME = "gdp_cloud_backup.db"
DEFAULT_BUSY_TIMEOUT_MS = 30000

# Cada entrada lleva la base de la versión i a la i+1 (`PRAGMA user_version`).
_BACKUP_MIGRATIONS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS backup_blobs (
        key TEXT PRIMARY KEY,
        payload_json TEXT NOT NULL,
        saved_at TEXT NOT NULL
    )
    """,
)
SCHEMA_VERSION = len(_BACKUP_MIGRATIONS)


def migrate_backup_schema(connection: sqlite3.Connection) -> int:
    current = connection.execute("PRAGMA user_version").fetchone()[0]
    for version in range(current, SCHEMA_VERSION):
        with connection:
            connection.execute(_BACKUP_MIGRATIONS[version])
            connection.execute(f"PRAGMA user_version={version + 1}")
        logger.info("Backup local migrado a la versión %s", version + 1)
    return max(current, SCHEMA_VERSION)


def open_backup_database(db_path: Path, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> sqlite3.Connection:
    """Abre la base del backup en modo WAL, creando carpeta y esquema si faltan.

    La conexión se comparte entre el loop y los hilos de `asyncio.to_thread`;
    quien la use debe serializar el acceso.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(db_path, check_same_thread=False, timeout=max(1.0, busy_timeout_ms / 1000))
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA journal_mode=WAL")
    connection.execute("PRAGMA synchronous=NORMAL")
    connection.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
    migrate_backup_schema(connection)
    return connection
