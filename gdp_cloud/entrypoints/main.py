from __future__ import annotations

import argparse
import asyncio
import faulthandler
import json
import logging
import sys
from pathlib import Path

from gdp_cloud.bootstrap.container import build_container
from gdp_cloud.bootstrap.logging import configure_logging, install_exception_hook
from gdp_cloud.bootstrap.settings import resolve_backup_path, resolve_log_dir
from gdp_cloud.domain.identity import format_rut_for_display, format_rut_for_storage, validate_checksum
from gdp_cloud.infrastructure.local_backup import SQLiteBackupStore
from gdp_cloud.infrastructure.local_config import SyncConfigStore

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_UNEXPECTED = 2
EXIT_NOT_CONFIGURED = 3


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gdp-cloud", description="Sincronización de permisos con Google Sheets")
    parser.add_argument("--selfcheck", action="store_true", help="Valida configuración y backup sin tocar la red")
    subparsers = parser.add_subparsers(dest="command")

    fetch = subparsers.add_parser("fetch", help="Descarga funcionarios y registros y muestra un resumen")
    fetch.add_argument("--offline", action="store_true", help="Usa solo el backup local")

    rut = subparsers.add_parser("rut", help="Valida y normaliza un RUT")
    rut.add_argument("value")

    subparsers.add_parser("backup-stats", help="Muestra el contenido del backup local")
    return parser


def _write_json(payload: dict) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False) + "\n")


def _run_rut(value: str) -> int:
    valid = validate_checksum(value)
    _write_json(
        {
            "valido": valid,
            "almacenamiento": format_rut_for_storage(value) if valid else None,
            "visualizacion": format_rut_for_display(value) if valid else None,
        }
    )
    return EXIT_OK if valid else EXIT_FAILED


def _run_backup_stats(backup_path: Path) -> int:
    store = SQLiteBackupStore(backup_path)
    try:
        _write_json(store.stats())
    finally:
        store.close()
    return EXIT_OK


async def _run_fetch(store: SyncConfigStore, *, offline: bool) -> int:
    logger = logging.getLogger(__name__)
    config = store.load()
    if config is None:
        logger.error("Sin configuración de sync en %s", store.config_path)
        return EXIT_NOT_CONFIGURED

    container = build_container(config)
    try:
        if offline:
            container.connectivity.set_online(False)
        else:
            await container.connectivity.refresh()
        result = await container.orchestrator.refresh()
        await container.orchestrator.wait_idle()
    finally:
        await container.aclose()

    outcome = result.records
    _write_json(
        {
            "estado": outcome.status,
            "registros": len(outcome.records),
            "funcionarios": len(container.orchestrator.employees),
            "funcionarios_ok": result.employees_ok,
            "particiones_fallidas": [partition.value for partition in outcome.failed_partitions],
            "advertencias": list(outcome.warnings),
            "ultimo_backup": outcome.last_backup_at.isoformat() if outcome.last_backup_at else None,
        }
    )
    return EXIT_OK if outcome.status in ("ok", "partial", "degraded") else EXIT_FAILED


def _run_selfcheck(store: SyncConfigStore, backup_path: Path) -> int:
    logger = logging.getLogger(__name__)
    errors = 0
    config = store.load()
    if config is None:
        logger.error("Falta config.json o está incompleto: %s", store.config_path)
        errors += 1
    elif config.backend == "gspread" and not Path(config.credentials_path).exists():
        logger.error("No se encontró el archivo de credenciales: %s", config.credentials_path)
        errors += 1
    else:
        logger.info("Configuración cargada. backend=%s", config.backend)

    backup = SQLiteBackupStore(backup_path)
    try:
        logger.info("Backup local OK: %s", backup.stats())
    except Exception as exc:  # noqa: BLE001
        logger.exception("No se pudo abrir el backup local: %s", exc)
        errors += 1
    finally:
        backup.close()

    if errors:
        logger.error("Selfcheck falló con %s error(es)", errors)
        return EXIT_FAILED
    logger.info("Selfcheck OK.")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    log_dir = resolve_log_dir()
    configure_logging(log_dir)
    install_exception_hook(log_dir)
    faulthandler.enable()

    logger = logging.getLogger(__name__)
    logger.info("Log dir: %s", log_dir)
    logger.info("Python: %s", sys.version)

    store = SyncConfigStore()
    backup_path = resolve_backup_path()

    if args.selfcheck:
        return _run_selfcheck(store, backup_path)
    if args.command == "rut":
        return _run_rut(args.value)
    if args.command == "backup-stats":
        return _run_backup_stats(backup_path)
    if args.command == "fetch":
        return asyncio.run(_run_fetch(store, offline=args.offline))
    parser.print_help()
    return EXIT_OK
