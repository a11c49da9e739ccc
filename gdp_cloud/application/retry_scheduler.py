from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from gdp_cloud.core.metrics import metrics_registry
from gdp_cloud.domain.ports import CallLater, TimerHandle

logger = logging.getLogger(__name__)


class TimerSlot:
    """Un único temporizador pendiente: armar reemplaza, nunca acumula."""

    def __init__(self, call_later: CallLater) -> None:
        self._call_later = call_later
        self._handle: TimerHandle | None = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self, delay_seconds: float, callback: Callable[[], None]) -> None:
        self.cancel()

        def _fire() -> None:
            self._handle = None
            callback()

        self._handle = self._call_later(delay_seconds, _fire)

    def arm_if_idle(self, delay_seconds: float, callback: Callable[[], None]) -> bool:
        if self.armed:
            return False
        self.arm(delay_seconds, callback)
        return True

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


@dataclass(frozen=True)
class RetryPolicy:
    delay_seconds: float = 5.0
    max_attempts: int | None = None

    def allows(self, attempt: int) -> bool:
        return self.max_attempts is None or attempt <= self.max_attempts


class RetryScheduler:
    """Agenda el reintento de un push fallido.

    Con conexión arma exactamente un reintento; sin conexión deja el push
    como pendiente hasta que vuelva la red. La vuelta de conexión solo
    dispara el reintento en el flanco offline -> online.
    """

    def __init__(self, policy: RetryPolicy, timer_slot: TimerSlot, retry: Callable[[], None]) -> None:
        self._policy = policy
        self._timer = timer_slot
        self._retry = retry
        self._attempts = 0
        self.pending = False

    @property
    def is_scheduled(self) -> bool:
        return self._timer.armed

    @property
    def attempts(self) -> int:
        return self._attempts

    def on_failure(self, online: bool) -> bool:
        if not online:
            self.pending = True
            logger.info("Push pendiente hasta recuperar conexión")
            return False
        self._attempts += 1
        if not self._policy.allows(self._attempts):
            logger.warning("Reintentos agotados tras %s intentos", self._attempts - 1)
            return False
        self._timer.arm(self._policy.delay_seconds, self._fire)
        metrics_registry.incrementar("sync.retry.armed")
        logger.info("Reintento de push programado en %.1fs (intento %s)", self._policy.delay_seconds, self._attempts)
        return True

    def on_success(self) -> None:
        self._attempts = 0
        self.pending = False
        self._timer.cancel()

    def on_connectivity_restored(self) -> bool:
        if not self.pending:
            return False
        self.pending = False
        logger.info("Conexión recuperada: reanudando push pendiente")
        self._retry()
        return True

    def cancel(self) -> None:
        self._timer.cancel()

    def _fire(self) -> None:
        self._retry()
