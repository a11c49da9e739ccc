from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, NamedTuple

from gdp_cloud.core.observability import get_correlation_id, get_operation_name

DEFAULT_LOG_MAX_BYTES = 1_048_576
DEFAULT_LOG_BACKUP_COUNT = 10
MAIN_LOG_NAME = "sincronizacion.log"
ERROR_OPERATIVO_LOG_NAME = "error_operativo.log"
CRASH_LOG_NAME = "crash.log"

# Atributos de contexto que los módulos de sync pasan por `extra=`.
_CONTEXT_FIELDS = ("particion", "operacion", "incident_id")


class _LogFile(NamedTuple):
    name: str
    min_level: int | None
    max_level: int


_LOG_FILES = (
    _LogFile(MAIN_LOG_NAME, None, logging.CRITICAL),
    _LogFile(ERROR_OPERATIVO_LOG_NAME, logging.ERROR, logging.ERROR),
    _LogFile(CRASH_LOG_NAME, logging.CRITICAL, logging.CRITICAL),
)


class SyncJsonFormatter(logging.Formatter):
    """Un evento JSON por línea, con el correlation_id de la operación de sync."""

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "funcion": record.funcName,
            "mensaje": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
        }
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                event[name] = value
        operation = get_operation_name()
        if operation is not None:
            event.setdefault("operacion", operation)

        details = getattr(record, "extra", None)
        if isinstance(details, dict) and details:
            event["extra"] = details
        if record.exc_info:
            event["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(event, ensure_ascii=False, default=str)


class LevelRangeFilter(logging.Filter):
    def __init__(self, min_level: int, max_level: int) -> None:
        super().__init__()
        self._min_level = min_level
        self._max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return self._min_level <= record.levelno <= self._max_level


def log_max_bytes_from_env(default: int = DEFAULT_LOG_MAX_BYTES) -> int:
    """Tamaño de rotación desde `GDP_LOG_MAX_BYTES`; valores no positivos se ignoran."""
    try:
        value = int(os.environ.get("GDP_LOG_MAX_BYTES", ""))
    except ValueError:
        return default
    return value if value > 0 else default


def configure_logging(
    log_dir: Path,
    *,
    max_bytes: int | None = None,
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
    level: int = logging.INFO,
) -> None:
    """Reemplaza los handlers raíz por los tres archivos JSONL rotativos del sync."""
    log_dir.mkdir(parents=True, exist_ok=True)
    rotate_at = max_bytes or log_max_bytes_from_env()

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(level)

    formatter = SyncJsonFormatter()
    for log_file in _LOG_FILES:
        handler = RotatingFileHandler(
            log_dir / log_file.name,
            maxBytes=rotate_at,
            backupCount=backup_count,
            encoding="utf-8",
        )
        min_level = level if log_file.min_level is None else log_file.min_level
        handler.setLevel(min_level)
        handler.addFilter(LevelRangeFilter(min_level, log_file.max_level))
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)


def log_operational_error(
    logger: logging.Logger,
    message: str,
    *,
    exc: BaseException | None = None,
    extra: dict[str, Any] | None = None,
) -> None:
    """Error de sync que debe quedar en `error_operativo.log` con su contexto."""
    exc_info = (type(exc), exc, exc.__traceback__) if exc is not None else False
    logger.error(message, exc_info=exc_info, extra={"extra": extra} if extra else None)


def write_crash_log(exc_type: type[BaseException], exc: BaseException, tb: Any, log_dir: Path) -> Path:
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.getLogger("gdp_cloud.crash").critical(
        "Excepción no controlada en %s",
        Path(sys.argv[0]).name if sys.argv and sys.argv[0] else "gdp-cloud",
        exc_info=(exc_type, exc, tb),
        extra={"extra": {"python": sys.version, "argv": list(sys.argv), "cwd": str(Path.cwd())}},
    )
    return log_dir / CRASH_LOG_NAME


def install_exception_hook(log_dir: Path) -> None:
    def _hook(exc_type, exc, tb) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc, tb)
            return
        try:
            write_crash_log(exc_type, exc, tb, log_dir)
        except OSError:
            sys.__excepthook__(exc_type, exc, tb)

    sys.excepthook = _hook
