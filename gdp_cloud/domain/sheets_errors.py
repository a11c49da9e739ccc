from __future__ import annotations

from gdp_cloud.core.errors import InfraError, TransientExternalError
from gdp_cloud.domain.models import Partition

_SHEET_LABELS = {
    Partition.PA: "permisos administrativos",
    Partition.FL: "feriados legales",
    Partition.EMPLOYEES: "funcionarios",
}


class _SheetContext:
    """Planilla y partición en la que ocurrió el error, si se conocen."""

    partition: Partition | None = None
    spreadsheet_id: str | None = None

    def bind(self, *, partition: Partition | None = None, spreadsheet_id: str | None = None):
        if partition is not None:
            self.partition = partition
        if spreadsheet_id is not None:
            self.spreadsheet_id = spreadsheet_id
        return self

    def user_message(self) -> str:
        if self.partition is None:
            return str(self)
        return f"Planilla de {_SHEET_LABELS[self.partition]} ({self.partition.value}): {self}"


class SheetsConfigError(_SheetContext, InfraError):
    """La planilla no se puede usar así; reintentar no sirve hasta corregirla."""


class SheetsApiDisabledError(SheetsConfigError):
    pass


class SheetsPermissionError(SheetsConfigError):
    pass


class SheetsNotFoundError(SheetsConfigError):
    pass


class SheetsCredentialsError(SheetsConfigError):
    pass


class SheetsRateLimitError(_SheetContext, TransientExternalError):
    pass
