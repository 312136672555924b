from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable

from loguru import logger

from researcher.models.events import EventType, PipelineEvent

EventHandler = Callable[[PipelineEvent], None]

_CLOSED = object()


class EventChannel:
    """Pull-based view of an EventBus backed by an asyncio.Queue.

    Events arrive in emission order. Iteration ends after `close()`.
    """

    def __init__(self, bus: "EventBus"):
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        bus.subscribe(self._queue.put_nowait)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus.unsubscribe(self._queue.put_nowait)
        self._queue.put_nowait(_CLOSED)

    def drain(self) -> list[PipelineEvent]:
        """Return every event queued so far without waiting."""
        events: list[PipelineEvent] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            events.append(item)
        return events

    async def __aiter__(self) -> AsyncIterator[PipelineEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


class EventBus:
    """Named lifecycle events with subscribe/unsubscribe.

    Delivery is synchronous and in emission order. A failing handler is
    logged and skipped so observers can never break a research run.
    """

    def __init__(self) -> None:
        self._subscribers: list[tuple[EventHandler, EventType | None]] = []

    def subscribe(
        self,
        handler: EventHandler,
        event_type: EventType | None = None,
    ) -> Callable[[], None]:
        entry = (handler, event_type)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def unsubscribe(self, handler: EventHandler) -> None:
        self._subscribers = [entry for entry in self._subscribers if entry[0] != handler]

    def emit(self, event: PipelineEvent) -> None:
        for handler, event_type in list(self._subscribers):
            if event_type is not None and event_type != event.event:
                continue
            try:
                handler(event)
            except Exception as exc:
                logger.warning(f"Event handler failed for {event.event.value}: {exc}")

    def channel(self) -> EventChannel:
        return EventChannel(self)
