from __future__ import annotations

import logging
import socket
from typing import Sequence

from gdp_cloud.domain.ports import ConnectivityProbePort

logger = logging.getLogger(__name__)

DEFAULT_TARGETS: tuple[tuple[str, int], ...] = (("8.8.8.8", 53), ("script.google.com", 443))


class SocketConnectivityProbe(ConnectivityProbePort):
    """Considera que hay red si alguno de los destinos acepta una conexión TCP."""

    def __init__(self, targets: Sequence[tuple[str, int]] = DEFAULT_TARGETS) -> None:
        self._targets = tuple(targets)

    def check(self, *, timeout_seconds: float = 3.0) -> bool:
        for host, port in self._targets:
            try:
                socket.create_connection((host, port), timeout=timeout_seconds).close()
                return True
            except OSError:
                logger.debug("Sin respuesta de %s:%s", host, port)
        return False
