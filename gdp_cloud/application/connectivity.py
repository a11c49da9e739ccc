from __future__ import annotations

import asyncio
import logging
from typing import Callable

from gdp_cloud.domain.ports import ConnectivityProbePort

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Estado online/offline compartido por los sincronizadores.

    Los oyentes solo se notifican en los cambios de estado, nunca en
    asignaciones repetidas del mismo valor.
    """

    def __init__(self, online: bool = True, probe: ConnectivityProbePort | None = None) -> None:
        self._online = online
        self._probe = probe
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def online(self) -> bool:
        return self._online

    def set_online(self, value: bool) -> None:
        if value == self._online:
            return
        self._online = value
        logger.info("Conectividad: %s", "online" if value else "offline")
        for listener in list(self._listeners):
            listener(value)

    def listen(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def refresh(self, timeout_seconds: float = 3.0) -> bool:
        if self._probe is None:
            return self._online
        reachable = await asyncio.to_thread(self._probe.check, timeout_seconds=timeout_seconds)
        self.set_online(reachable)
        return reachable
