from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from gdp_cloud.domain.models import Partition, RemoteResponse, SyncConfig
from gdp_cloud.domain.ports import RemoteGatewayPort
from gdp_cloud.domain.sheets_errors import SheetsConfigError, SheetsRateLimitError
from gdp_cloud.infrastructure.sheets_client import SheetsClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GspreadSheetsGateway(RemoteGatewayPort):
    """Lee y escribe las planillas directamente con una cuenta de servicio.

    Las llamadas de gspread son bloqueantes: se ejecutan en un hilo para no
    frenar el loop. Los errores de configuración vuelven como respuesta
    fallida; el rate limit persistente se eleva como error transitorio.
    Ambos llevan la partición en la que ocurrieron.
    """

    def __init__(self, config: SyncConfig, client: SheetsClient) -> None:
        self._config = config
        self._client = client

    def _sheet_id(self, partition: Partition) -> str:
        return {
            Partition.PA: self._config.pa_sheet_id,
            Partition.FL: self._config.fl_sheet_id,
            Partition.EMPLOYEES: self._config.employees_sheet_id,
        }[partition]

    async def fetch(self, partition: Partition) -> RemoteResponse:
        return await self._call(
            partition,
            "leer",
            lambda: asyncio.to_thread(self._client.read_data_rows, self._sheet_id(partition)),
            lambda rows: RemoteResponse(success=True, data=rows),
        )

    async def push(self, partition: Partition, rows: list[list[Any]]) -> RemoteResponse:
        return await self._call(
            partition,
            "escribir",
            lambda: asyncio.to_thread(self._client.replace_data_rows, self._sheet_id(partition), rows),
            lambda _result: RemoteResponse(success=True),
        )

    async def _call(
        self,
        partition: Partition,
        verb: str,
        operation: Callable[[], Awaitable[T]],
        to_response: Callable[[T], RemoteResponse],
    ) -> RemoteResponse:
        try:
            result = await operation()
        except SheetsRateLimitError as exc:
            exc.bind(partition=partition)
            raise
        except SheetsConfigError as exc:
            message = exc.bind(partition=partition).user_message()
            logger.error("No se pudo %s en Google Sheets: %s", verb, message, extra={"particion": partition.value})
            return RemoteResponse(success=False, error=message)
        return to_response(result)
