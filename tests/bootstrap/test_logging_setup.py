from __future__ import annotations

import json
import logging
import re
import sys

from gdp_cloud.bootstrap.exception_handler import (
    construir_reporte,
    generar_id_incidente,
    manejar_excepcion_global,
    mensaje_para_usuario,
)
from gdp_cloud.bootstrap.logging import (
    CRASH_LOG_NAME,
    DEFAULT_LOG_MAX_BYTES,
    ERROR_OPERATIVO_LOG_NAME,
    MAIN_LOG_NAME,
    configure_logging,
    install_exception_hook,
    log_operational_error,
    write_crash_log,
)
from gdp_cloud.bootstrap.settings import resolve_appdata_dir, resolve_backup_path, resolve_log_dir
from gdp_cloud.core.observability import OperationContext, reset_correlation_id, set_correlation_id


def _flush() -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()


def _events(path) -> list[dict]:
    _flush()
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


def test_configure_logging_separa_archivos_por_nivel(tmp_path, restore_root_logger) -> None:
    configure_logging(tmp_path, max_bytes=100_000)
    logger = logging.getLogger("gdp_cloud.prueba")

    token = set_correlation_id("corr-123")
    try:
        logger.info("Sincronizando %s", "PA")
        logger.error("Fallo al subir FL")
    finally:
        reset_correlation_id(token)

    main_events = _events(tmp_path / MAIN_LOG_NAME)
    assert [event["mensaje"] for event in main_events] == ["Sincronizando PA", "Fallo al subir FL"]
    assert main_events[0]["correlation_id"] == "corr-123"
    assert main_events[0]["logger"] == "gdp_cloud.prueba"
    assert main_events[0]["funcion"] == "test_configure_logging_separa_archivos_por_nivel"

    error_events = _events(tmp_path / ERROR_OPERATIVO_LOG_NAME)
    assert [event["level"] for event in error_events] == ["ERROR"]
    assert _events(tmp_path / CRASH_LOG_NAME) == []


def test_configure_logging_reemplaza_handlers_previos(tmp_path, restore_root_logger) -> None:
    configure_logging(tmp_path / "a")
    configure_logging(tmp_path / "b")

    assert len(logging.getLogger().handlers) == 3


def test_log_operational_error_incluye_extra_y_traza(tmp_path, restore_root_logger) -> None:
    configure_logging(tmp_path)
    logger = logging.getLogger("gdp_cloud.prueba")

    try:
        raise ValueError("hoja bloqueada")
    except ValueError as exc:
        log_operational_error(logger, "Sync failed", exc=exc, extra={"operation": "push"})

    (event,) = _events(tmp_path / ERROR_OPERATIVO_LOG_NAME)
    assert event["mensaje"] == "Sync failed"
    assert event["extra"] == {"operation": "push"}
    assert "ValueError: hoja bloqueada" in event["exc_info"]


def test_crash_log_y_hook_global(tmp_path, restore_root_logger, monkeypatch) -> None:
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    configure_logging(tmp_path)
    install_exception_hook(tmp_path)

    try:
        raise RuntimeError("explotó")
    except RuntimeError as exc:
        assert write_crash_log(type(exc), exc, exc.__traceback__, tmp_path) == tmp_path / CRASH_LOG_NAME
        sys.excepthook(type(exc), exc, exc.__traceback__)

    crash_events = _events(tmp_path / CRASH_LOG_NAME)
    assert len(crash_events) == 2
    assert all(event["level"] == "CRITICAL" for event in crash_events)
    assert "python" in crash_events[0]["extra"]
    assert _events(tmp_path / ERROR_OPERATIVO_LOG_NAME) == []


def test_manejar_excepcion_global_devuelve_incidente(caplog) -> None:
    try:
        raise KeyError("x")
    except KeyError as exc:
        with caplog.at_level(logging.CRITICAL):
            incident_id = manejar_excepcion_global(type(exc), exc, exc.__traceback__)

    assert re.fullmatch(r"INC-[0-9A-F]{12}", incident_id)
    (record,) = [r for r in caplog.records if r.name == "gdp_cloud.global_exception"]
    assert record.incident_id == incident_id
    assert record.correlation_id


def test_ids_de_incidente_unicos() -> None:
    assert generar_id_incidente() != generar_id_incidente()


def test_resolucion_de_directorios(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("GDP_DATA_DIR", str(tmp_path / "datos"))
    monkeypatch.setenv("GDP_LOG_DIR", str(tmp_path / "logs"))

    assert resolve_appdata_dir() == tmp_path / "datos"
    assert resolve_backup_path() == tmp_path / "datos" / "backup" / "gdp_cloud_backup.db"
    assert resolve_log_dir() == tmp_path / "logs"
    assert (tmp_path / "logs").is_dir()
    assert list((tmp_path / "logs").iterdir()) == []


def test_log_dir_por_defecto_bajo_appdata(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("GDP_LOG_DIR", raising=False)
    monkeypatch.setenv("GDP_DATA_DIR", str(tmp_path))

    assert resolve_log_dir() == tmp_path / "logs"


def test_campos_de_contexto_de_sync(tmp_path, restore_root_logger, monkeypatch) -> None:
    monkeypatch.setenv("GDP_LOG_MAX_BYTES", "-5")
    configure_logging(tmp_path)

    logging.getLogger("gdp_cloud.prueba").warning("Push FL falló", extra={"particion": "FL"})

    (event,) = _events(tmp_path / MAIN_LOG_NAME)
    assert event["particion"] == "FL"
    assert "operacion" not in event
    assert logging.getLogger().handlers[0].maxBytes == DEFAULT_LOG_MAX_BYTES


def test_reporte_de_incidente_incluye_operacion_en_curso() -> None:
    with OperationContext("sync_to_cloud") as context:
        report = construir_reporte(RuntimeError, RuntimeError("hoja bloqueada"))

    assert report.operacion == "sync_to_cloud"
    assert report.correlation_id == context.correlation_id
    assert (report.error_type, report.error_message) == ("RuntimeError", "hoja bloqueada")
    assert mensaje_para_usuario(report.incident_id) == f"Error inesperado. ID de incidente: {report.incident_id}"


def test_log_dentro_de_operacion_marca_operacion(tmp_path, restore_root_logger) -> None:
    configure_logging(tmp_path)

    with OperationContext("fetch_from_cloud"):
        logging.getLogger("gdp_cloud.prueba").info("Iniciando fetch")

    (event,) = _events(tmp_path / MAIN_LOG_NAME)
    assert event["operacion"] == "fetch_from_cloud"
