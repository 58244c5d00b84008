"""Per-call event channel."""
import asyncio
import logging
from typing import AsyncIterator, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class EventChannel(Generic[T]):
    """Ordered single-consumer queue of events for one call.

    Events published before a consumer starts iterating are buffered, so a
    subscriber attached late never misses anything. Closing the channel ends
    iteration once buffered events are drained; later publishes are dropped.
    """

    def __init__(self, name: str = "channel"):
        self.name = name
        self._queue: "asyncio.Queue[object]" = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: T) -> bool:
        """Queue an event. Returns False if the channel is closed."""
        if self._closed:
            logger.debug(f"[CHANNEL] {self.name} closed, dropping {event!r}")
            return False
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        """Stop accepting events. Safe to call more than once."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def drain_nowait(self) -> List[T]:
        """Return all currently buffered events without waiting."""
        events: List[T] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            self._queue.task_done()
            if item is _CLOSED:
                # keep the close marker for any active iterator
                self._queue.put_nowait(_CLOSED)
                break
            events.append(item)  # type: ignore[arg-type]
        return events

    async def join(self) -> None:
        """Wait until the consumer has finished handling every published event."""
        await self._queue.join()

    async def __aiter__(self) -> AsyncIterator[T]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                self._queue.task_done()
                return
            try:
                yield item  # type: ignore[misc]
            finally:
                # the consumer is back for the next event, so this one is handled
                self._queue.task_done()
