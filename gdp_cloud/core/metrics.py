from __future__ import annotations

from collections import Counter
from functools import wraps
from threading import Lock
from time import perf_counter
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")

# Cuántas mediciones se conservan por métrica; las más viejas se descartan.
_MAX_SAMPLES = 200


class MetricsRegistry:
    """Contadores y tiempos en memoria de las operaciones de sync (`sync.push.ok`, ...)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: Counter[str] = Counter()
        self._timings: dict[str, list[float]] = {}

    def contador(self, nombre: str) -> int:
        with self._lock:
            return self._counters[nombre]

    def incrementar(self, nombre: str, valor: int = 1) -> None:
        with self._lock:
            self._counters[nombre] += valor

    def registrar_tiempo(self, nombre: str, milisegundos: float) -> None:
        with self._lock:
            samples = self._timings.setdefault(nombre, [])
            samples.append(milisegundos)
            del samples[:-_MAX_SAMPLES]

    def reiniciar(self) -> None:
        with self._lock:
            self._counters.clear()
            self._timings.clear()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            counters = dict(self._counters)
            timings = {name: list(values) for name, values in self._timings.items() if values}
        return {
            "counters": counters,
            "timings_ms": {
                name: {
                    "count": len(values),
                    "last": values[-1],
                    "avg": sum(values) / len(values),
                    "max": max(values),
                }
                for name, values in timings.items()
            },
        }


metrics_registry = MetricsRegistry()


def medir_tiempo_async(
    nombre_metrica: str,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Mide la duración de una corrutina, incluida la espera de red.

    Si la corrutina lanza, además suma `<nombre>.excepciones`.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            inicio = perf_counter()
            try:
                return await func(*args, **kwargs)
            except Exception:
                metrics_registry.incrementar(f"{nombre_metrica}.excepciones")
                raise
            finally:
                metrics_registry.registrar_tiempo(nombre_metrica, (perf_counter() - inicio) * 1000)

        return wrapper

    return decorator
