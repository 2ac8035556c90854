"""Contenedores de estado publicados por cada componente.

Solo el componente propietario llama a ``set``/``publish``; el resto de la
aplicación lee ``value`` o se suscribe. Las suscripciones asíncronas reciben
cada elemento en orden FIFO, sin fusionar valores intermedios; si el
consumidor deja de leer, al llegar a ``maxsize`` pendientes se descarta el
más antiguo.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()

DEFAULT_BACKLOG = 1000


class Subscription(Generic[T]):
    def __init__(
        self,
        channel: "EventChannel[T]",
        loop: asyncio.AbstractEventLoop,
        maxsize: int = DEFAULT_BACKLOG,
    ) -> None:
        if maxsize < 1:
            raise ValueError("maxsize debe ser al menos 1")
        self._channel = channel
        self._loop = loop
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize()

    def _deliver(self, item: object) -> bool:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._enqueue(item)
            return True
        try:
            self._loop.call_soon_threadsafe(self._enqueue, item)
        except RuntimeError:
            # The consumer's loop is gone; nobody will read this queue again.
            return False
        return True

    def _enqueue(self, item: object) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            if self.dropped == 1:
                logger.warning(
                    "Suscripción saturada en '%s': se descartan los elementos más antiguos",
                    self._channel.name,
                )
        self._queue.put_nowait(item)

    async def get(self) -> T:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        return await self.get()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._channel._detach(self)
        self._deliver(_CLOSED)

    def __enter__(self) -> "Subscription[T]":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class EventChannel(Generic[T]):
    """Difusión de eventos a callbacks síncronos y suscripciones asíncronas."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._lock = threading.Lock()
        self._listeners: list[Callable[[T], None]] = []
        self._subscriptions: list[Subscription[T]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def watch(self, maxsize: int = DEFAULT_BACKLOG) -> Subscription[T]:
        subscription: Subscription[T] = Subscription(self, asyncio.get_running_loop(), maxsize)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def publish(self, item: T) -> None:
        with self._lock:
            listeners = list(self._listeners)
            subscriptions = list(self._subscriptions)
        self._fan_out(item, listeners, subscriptions)

    def _fan_out(
        self,
        item: T,
        listeners: list[Callable[[T], None]],
        subscriptions: list[Subscription[T]],
    ) -> None:
        for subscription in subscriptions:
            if not subscription._deliver(item):
                self._detach(subscription)
        for listener in listeners:
            try:
                listener(item)
            except Exception:
                logger.exception("Listener de '%s' falló", self.name or "canal")

    def _detach(self, subscription: Subscription[T]) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)


class StateCell(EventChannel[T]):
    """Valor actual de solo lectura para consumidores, con notificación de cambios."""

    def __init__(self, initial: T, name: str = "") -> None:
        super().__init__(name)
        self._value = initial

    @property
    def value(self) -> T:
        with self._lock:
            return self._value

    def set(self, value: T) -> None:
        with self._lock:
            self._value = value
            listeners = list(self._listeners)
            subscriptions = list(self._subscriptions)
        self._fan_out(value, listeners, subscriptions)

    def publish(self, item: T) -> None:
        self.set(item)

    def watch(self, include_current: bool = True, maxsize: int = DEFAULT_BACKLOG) -> Subscription[T]:
        subscription: Subscription[T] = Subscription(self, asyncio.get_running_loop(), maxsize)
        with self._lock:
            if include_current:
                subscription._deliver(self._value)
            self._subscriptions.append(subscription)
        return subscription
