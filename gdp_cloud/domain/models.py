from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional


class Partition(str, Enum):
    """Partición remota sincronizada de forma independiente."""

    PA = "PA"
    FL = "FL"
    EMPLOYEES = "EMPLOYEES"


RECORD_PARTITIONS: tuple[Partition, Partition] = (Partition.PA, Partition.FL)

SyncStatus = Literal["idle", "syncing", "error"]
SyncEventScope = Literal["records", "employees", "admin"]

_FL_SECOND_PERIOD_AMOUNTS = ("saldo_disponible_p2", "solicitado_p2", "saldo_final_p2")
_FL_ONLY_FIELDS = (
    "periodo1",
    "saldo_disponible_p1",
    "solicitado_p1",
    "saldo_final_p1",
    "periodo2",
    *_FL_SECOND_PERIOD_AMOUNTS,
)


@dataclass(frozen=True)
class PermitRecord:
    """Decreto de permiso administrativo (PA) o feriado legal (FL).

    La partición decide qué saldos tienen sentido: un PA solo usa
    `dias_haber` y `cantidad_dias`; un FL además lleva saldos por período.
    En FL el segundo período es todo-o-nada: sin `periodo2` todos los montos
    P2 quedan en cero.
    """

    id: str
    solicitud_type: Partition
    acto: str
    funcionario: str
    rut: str
    periodo: str
    cantidad_dias: float
    fecha_inicio: str
    tipo_jornada: str
    dias_haber: float
    fecha_decreto: str
    created_at: int
    materia: str = "Decreto Exento"
    decreto: str = ""
    departamento: str = ""
    ra: str = "MGA"
    emite: str = "mga"
    observaciones: str = ""
    fecha_termino: str = ""
    periodo1: Optional[str] = None
    saldo_disponible_p1: Optional[float] = None
    solicitado_p1: Optional[float] = None
    saldo_final_p1: Optional[float] = None
    periodo2: Optional[str] = None
    saldo_disponible_p2: Optional[float] = None
    solicitado_p2: Optional[float] = None
    saldo_final_p2: Optional[float] = None

    @property
    def partition(self) -> Partition:
        return self.solicitud_type

    def has_second_period(self) -> bool:
        return bool(self.periodo2 and self.periodo2.strip())

    def second_period_is_consistent(self) -> bool:
        """Con `periodo2` los tres montos P2 están presentes; sin él, todos en cero."""
        if self.solicitud_type != Partition.FL:
            return True
        amounts = [getattr(self, name) for name in _FL_SECOND_PERIOD_AMOUNTS]
        if self.has_second_period():
            return all(amount is not None for amount in amounts)
        return not any(amounts)

    def saldo_final(self, fallback: float | None = None) -> float | None:
        if self.solicitud_type == Partition.FL:
            if self.has_second_period():
                saldo = self.saldo_final_p2 if self.saldo_final_p2 is not None else self.saldo_final_p1
            else:
                saldo = self.saldo_final_p1 if self.saldo_final_p1 is not None else self.saldo_final_p2
            return fallback if saldo is None else saldo
        return self.dias_haber - self.cantidad_dias

    def with_changes(self, **changes: Any) -> "PermitRecord":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["solicitud_type"] = self.solicitud_type.value
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "PermitRecord":
        known = {item.name for item in fields(cls)}
        data = {key: value for key, value in payload.items() if key in known}
        data["solicitud_type"] = Partition(str(data.get("solicitud_type", "PA")))
        if data["solicitud_type"] == Partition.PA:
            for name in _FL_ONLY_FIELDS:
                data.pop(name, None)
        return cls(**data)


@dataclass(frozen=True)
class Employee:
    nombre: str
    rut: str
    departamento: str = ""

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Employee":
        return cls(
            nombre=str(payload.get("nombre", "")),
            rut=str(payload.get("rut", "")),
            departamento=str(payload.get("departamento") or ""),
        )


@dataclass(frozen=True)
class ModuleSyncStatus:
    status: SyncStatus = "idle"
    last_success: datetime | None = None
    last_error: str | None = None

    def syncing(self) -> "ModuleSyncStatus":
        return replace(self, status="syncing", last_error=None)

    def succeeded(self, at: datetime) -> "ModuleSyncStatus":
        return ModuleSyncStatus(status="idle", last_success=at, last_error=None)

    def failed(self, message: str) -> "ModuleSyncStatus":
        return replace(self, status="error", last_error=message)


@dataclass(frozen=True)
class SyncEvent:
    scope: SyncEventScope
    action: str
    origin_client_id: str
    created_at: datetime
    actor_email: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: int = 0


@dataclass(frozen=True)
class RemoteResponse:
    """Forma común de respuesta de los endpoints (`{success, data, error}`)."""

    success: bool
    data: list[list[Any]] | None = None
    error: str | None = None
    validation_errors: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: Any) -> "RemoteResponse":
        if not isinstance(payload, dict):
            return cls(success=False, error="Respuesta remota con formato inesperado")
        data = payload.get("data")
        errors = payload.get("validationErrors") or ()
        return cls(
            success=bool(payload.get("success")),
            data=data if isinstance(data, list) else None,
            error=str(payload["error"]) if payload.get("error") else None,
            validation_errors=tuple(str(item) for item in errors) if isinstance(errors, list) else (),
        )

    def error_message(self) -> str:
        if self.error:
            return self.error
        if self.validation_errors:
            return ", ".join(self.validation_errors)
        return "Error desconocido"


@dataclass(frozen=True)
class ParseResult:
    records: tuple[PermitRecord, ...]
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class SyncPayload:
    rows: list[list[Any]]
    warnings: tuple[str, ...] = ()


FetchStatus = Literal["ok", "partial", "degraded", "unavailable", "superseded"]


@dataclass(frozen=True)
class FetchOutcome:
    """Resultado de un fetch completo.

    `degraded` indica que los datos vienen del backup local (posiblemente
    obsoletos); `superseded` que un fetch más reciente descartó este.
    """

    status: FetchStatus
    records: tuple[PermitRecord, ...] = ()
    warnings: tuple[str, ...] = ()
    failed_partitions: tuple[Partition, ...] = ()
    last_backup_at: datetime | None = None

    @property
    def stale(self) -> bool:
        return self.status == "degraded"


@dataclass(frozen=True)
class SyncConfig:
    pa_endpoint: str
    fl_endpoint: str
    pa_sheet_id: str
    fl_sheet_id: str
    employees_sheet_id: str
    client_id: str
    backend: Literal["apps_script", "gspread"] = "apps_script"
    credentials_path: str = ""
    retry_delay_seconds: float = 5.0
    retry_max_attempts: int | None = None
    debounce_seconds: float = 0.9
    request_timeout_seconds: float = 30.0
