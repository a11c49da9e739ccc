from __future__ import annotations

from collections import deque
from typing import Iterable

from gdp_cloud.domain.models import PermitRecord

MAX_UNDO_DEPTH = 10

UndoSnapshot = tuple[PermitRecord, ...]


class UndoManager:
    """Pila acotada de copias completas del conjunto de registros."""

    def __init__(self, max_depth: int = MAX_UNDO_DEPTH) -> None:
        self._stack: deque[UndoSnapshot] = deque(maxlen=max_depth)

    @property
    def can_undo(self) -> bool:
        return bool(self._stack)

    @property
    def depth(self) -> int:
        return len(self._stack)

    def record(self, snapshot: Iterable[PermitRecord]) -> None:
        self._stack.append(tuple(snapshot))

    def pop(self) -> UndoSnapshot | None:
        if not self._stack:
            return None
        return self._stack.pop()

    def clear(self) -> None:
        self._stack.clear()
