"""One-shot side-effect delivery to the presentation layer."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable

from .logger import get_logger
from .models import SideEffect


EffectListener = Callable[[SideEffect], None]

logger = get_logger("whisperly.effects")

_CLOSED = object()


def offer_latest(queue: asyncio.Queue, item: object) -> bool:
    """Push into a bounded queue, dropping the oldest entry when full.

    Returns True when an entry had to be dropped.
    """
    try:
        queue.put_nowait(item)
        return False
    except asyncio.QueueFull:
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
        queue.put_nowait(item)
        return True


class SideEffectChannel:
    """Fire-and-forget queue of side effects.

    Effects are handed to whoever is subscribed at emission time and are
    never replayed: an effect emitted with no subscriber is dropped. Each
    subscriber buffers at most ``buffer_size`` effects; a subscriber that
    falls further behind loses its oldest ones.
    """

    def __init__(self, *, buffer_size: int = 64) -> None:
        self._buffer_size = max(1, buffer_size)
        self._queues: set[asyncio.Queue] = set()
        self._listeners: list[EffectListener] = []
        self._closed = False

    def emit(self, effect: SideEffect) -> None:
        if self._closed:
            return
        for listener in list(self._listeners):
            try:
                listener(effect)
            except Exception:  # pragma: no cover - listener bug
                logger.exception("Side-effect listener failed for %r", effect)
        for queue in list(self._queues):
            if offer_latest(queue, effect):
                logger.warning("Slow side-effect subscriber: dropped oldest effect")

    def add_listener(self, listener: EffectListener) -> Callable[[], None]:
        """Register a synchronous listener; returns a function removing it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def subscribe(self) -> AsyncIterator[SideEffect]:
        """Return a live iterator of effects emitted from now on."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._buffer_size)
        self._queues.add(queue)
        return self._drain(queue)

    async def _drain(self, queue: asyncio.Queue) -> AsyncIterator[SideEffect]:
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            self._queues.discard(queue)

    def close(self) -> None:
        """Terminate every live subscription."""
        self._closed = True
        for queue in list(self._queues):
            offer_latest(queue, _CLOSED)

    @property
    def subscriber_count(self) -> int:
        return len(self._queues) + len(self._listeners)

