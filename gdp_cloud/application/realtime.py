from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from gdp_cloud.application.background import BackgroundTasks
from gdp_cloud.application.retry_scheduler import TimerSlot
from gdp_cloud.domain.models import SyncEvent, SyncEventScope
from gdp_cloud.domain.ports import EventLogPort

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.9


def _normalize_email(email: str | None) -> str | None:
    normalized = (email or "").strip().lower()
    return normalized or None


class SyncEventBus:
    """Publica y escucha eventos de cambio en el log compartido entre clientes."""

    def __init__(self, event_log: EventLogPort, client_id: str) -> None:
        self._log = event_log
        self.client_id = client_id

    def publish(
        self,
        scope: SyncEventScope,
        action: str,
        actor_email: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SyncEvent:
        event = SyncEvent(
            scope=scope,
            action=action,
            origin_client_id=self.client_id,
            created_at=datetime.now(timezone.utc),
            actor_email=_normalize_email(actor_email),
            metadata=dict(metadata or {}),
        )
        stored = self._log.append(event)
        logger.debug("Evento publicado: %s/%s id=%s", scope, action, stored.id)
        return stored

    def subscribe(
        self,
        scope: SyncEventScope | None,
        on_event: Callable[[SyncEvent], None],
        *,
        ignore_own_events: bool = True,
    ) -> Callable[[], None]:
        def _listener(event: SyncEvent) -> None:
            if scope is not None and event.scope != scope:
                return
            if ignore_own_events and event.origin_client_id == self.client_id:
                return
            on_event(event)

        return self._log.listen(_listener)


class DebouncedRefresh:
    """Colapsa ráfagas de eventos en un único refresh diferido.

    Mientras el temporizador está armado los eventos se ignoran. Un refresh
    en curso nunca se reinicia: los eventos que llegan durante él dejan
    agendado un único refresh adicional para cuando termine.
    """

    def __init__(
        self,
        timer_slot: TimerSlot,
        refresh: Callable[[], Awaitable[Any]],
        tasks: BackgroundTasks,
        window_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        name: str = "refresh",
    ) -> None:
        self._timer = timer_slot
        self._refresh = refresh
        self._tasks = tasks
        self._window = window_seconds
        self._name = name
        self._in_flight = False
        self._follow_up = False

    @property
    def pending(self) -> bool:
        return self._timer.armed or self._follow_up

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def notify(self, _event: SyncEvent | None = None) -> None:
        if self._in_flight:
            self._follow_up = True
            return
        self._timer.arm_if_idle(self._window, self._fire)

    def cancel(self) -> None:
        self._timer.cancel()
        self._follow_up = False

    def _fire(self) -> None:
        self._tasks.spawn(self._run(), name=f"debounced-{self._name}")

    async def _run(self) -> None:
        self._in_flight = True
        try:
            logger.debug("Refresh diferido (%s) en curso", self._name)
            await self._refresh()
        finally:
            self._in_flight = False
            if self._follow_up:
                self._follow_up = False
                self._timer.arm_if_idle(self._window, self._fire)
