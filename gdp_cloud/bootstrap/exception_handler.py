from __future__ import annotations

import json
import logging
import traceback
import uuid
from dataclasses import asdict, dataclass
from types import TracebackType

from gdp_cloud.bootstrap.logging import CRASH_LOG_NAME
from gdp_cloud.bootstrap.settings import resolve_log_dir
from gdp_cloud.core.observability import (
    generate_correlation_id,
    get_correlation_id,
    get_operation_name,
    set_correlation_id,
)

logger = logging.getLogger("gdp_cloud.global_exception")


@dataclass(frozen=True)
class IncidentReport:
    incident_id: str
    correlation_id: str
    operacion: str | None
    error_type: str
    error_message: str


def generar_id_incidente() -> str:
    return f"INC-{uuid.uuid4().hex[:12].upper()}"


def construir_reporte(exc_type: type[BaseException], exc_value: BaseException) -> IncidentReport:
    """Arma el incidente con la operación de sync en curso, si había una."""
    correlation_id = get_correlation_id()
    if not correlation_id:
        correlation_id = generate_correlation_id()
        set_correlation_id(correlation_id)
    return IncidentReport(
        incident_id=generar_id_incidente(),
        correlation_id=correlation_id,
        operacion=get_operation_name(),
        error_type=exc_type.__name__,
        error_message=str(exc_value),
    )


def mensaje_para_usuario(incident_id: str) -> str:
    return f"Error inesperado. ID de incidente: {incident_id}"


def _append_crash_fallback(report: IncidentReport, stacktrace: str) -> None:
    # Solo se usa si el logging está roto; escribe directo al crash.log.
    crash_file = resolve_log_dir() / CRASH_LOG_NAME
    with crash_file.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps({**asdict(report), "stacktrace": stacktrace}, ensure_ascii=False) + "\n")


def manejar_excepcion_global(
    exc_type: type[BaseException], exc_value: BaseException, exc_traceback: TracebackType | None
) -> str:
    """Registra una excepción no controlada del CLI y devuelve su id de incidente."""
    report = construir_reporte(exc_type, exc_value)
    try:
        logger.critical(
            "Excepción no controlada. incident_id=%s operacion=%s",
            report.incident_id,
            report.operacion or "-",
            exc_info=(exc_type, exc_value, exc_traceback),
            extra={"incident_id": report.incident_id, "correlation_id": report.correlation_id},
        )
    except Exception:  # noqa: BLE001
        stacktrace = "".join(traceback.format_exception(exc_type, exc_value, exc_traceback))
        _append_crash_fallback(report, stacktrace)
    return report.incident_id
