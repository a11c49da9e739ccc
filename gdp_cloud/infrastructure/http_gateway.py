from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from gdp_cloud.core.errors import RemotePayloadError, RemoteTransportError
from gdp_cloud.domain.models import Partition, RemoteResponse, SyncConfig
from gdp_cloud.domain.ports import RemoteGatewayPort

logger = logging.getLogger(__name__)

# Apps Script rechaza el preflight CORS de application/json; se envía como texto plano.
_PUSH_HEADERS = {"Content-Type": "text/plain;charset=utf-8"}


class AppsScriptGateway(RemoteGatewayPort):
    """Cliente de los Web Apps de Apps Script que exponen cada hoja.

    Los códigos HTTP distintos de 2xx se devuelven como respuesta fallida;
    los errores de red, timeouts y redirecciones en bucle se elevan como `RemoteTransportError`.
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.request_timeout_seconds, connect=10.0),
            follow_redirects=True,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _target(self, partition: Partition) -> tuple[str, str]:
        if partition == Partition.PA:
            return self._config.pa_endpoint, self._config.pa_sheet_id
        if partition == Partition.FL:
            return self._config.fl_endpoint, self._config.fl_sheet_id
        return self._config.pa_endpoint, self._config.employees_sheet_id

    async def fetch(self, partition: Partition) -> RemoteResponse:
        endpoint, sheet_id = self._target(partition)
        params = {"sheetId": sheet_id}
        if partition == Partition.EMPLOYEES:
            params["type"] = "employees"
        response = await self._send("GET", endpoint, partition, params=params)
        return self._decode(response, partition)

    async def push(self, partition: Partition, rows: list[list[Any]]) -> RemoteResponse:
        endpoint, sheet_id = self._target(partition)
        body: dict[str, Any] = {"sheetId": sheet_id, "data": rows}
        if partition == Partition.EMPLOYEES:
            body["type"] = "employees"
        else:
            body["validateRecords"] = True
        response = await self._send(
            "POST",
            endpoint,
            partition,
            content=json.dumps(body, ensure_ascii=False, default=str),
            headers=_PUSH_HEADERS,
        )
        return self._decode(response, partition)

    async def _send(self, method: str, url: str, partition: Partition, **kwargs: Any) -> httpx.Response:
        if not url:
            raise RemoteTransportError(f"Endpoint no configurado para {partition.value}")
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning(
                "Timeout en %s %s",
                method,
                partition.value,
                extra={"particion": partition.value},
            )
            raise RemoteTransportError(f"Tiempo de espera agotado ({partition.value})") from exc
        except httpx.RequestError as exc:
            # Red caída, redirecciones infinitas o cuerpo ilegible: todo es transitorio.
            logger.warning(
                "Fallo de red en %s %s: %s", method, partition.value, exc, extra={"particion": partition.value}
            )
            raise RemoteTransportError(f"Error de red ({partition.value}): {exc}") from exc

    @staticmethod
    def _decode(response: httpx.Response, partition: Partition) -> RemoteResponse:
        if not response.is_success:
            return RemoteResponse(success=False, error=f"HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise RemotePayloadError(f"Respuesta no JSON desde {partition.value}") from exc
        return RemoteResponse.from_payload(payload)
