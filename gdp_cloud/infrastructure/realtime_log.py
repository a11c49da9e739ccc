from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import replace
from typing import Callable

from gdp_cloud.domain.models import SyncEvent
from gdp_cloud.domain.ports import EventLogPort

logger = logging.getLogger(__name__)


class InMemorySyncEventLog(EventLogPort):
    """Registro append-only de eventos de sync dentro del proceso.

    Cada evento recibe un id secuencial; los listeners se llaman en orden de
    suscripción y un listener que falla no impide notificar al resto.
    """

    def __init__(self) -> None:
        self._sequence = itertools.count(1)
        self._events: list[SyncEvent] = []
        self._listeners: list[Callable[[SyncEvent], None]] = []
        self._lock = threading.Lock()

    @property
    def events(self) -> tuple[SyncEvent, ...]:
        with self._lock:
            return tuple(self._events)

    def append(self, event: SyncEvent) -> SyncEvent:
        with self._lock:
            stored = replace(event, id=next(self._sequence))
            self._events.append(stored)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(stored)
            except Exception:  # noqa: BLE001
                logger.exception("Listener de eventos de sync falló para %s/%s", stored.scope, stored.action)
        return stored

    def listen(self, listener: Callable[[SyncEvent], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe
