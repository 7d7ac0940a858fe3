"""Outbound event queue. The core appends; a separate consumer task drains into sinks."""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from ensemble.models import Event, EventKind

logger = logging.getLogger(__name__)

EventSink = Callable[[Event], None]


class LoggingSink:
    """Writes system events at INFO and everything else at DEBUG."""

    def __call__(self, event: Event) -> None:
        level = logging.INFO if event.kind is EventKind.SYSTEM else logging.DEBUG
        message = event.payload.get("message") or event.payload.get("content", "")
        logger.log(level, "[%s] %.200s", event.kind.value, message)


class EventCollector:
    """Keeps every event in memory; used for transcripts and tests."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def of_kind(self, kind: EventKind) -> list[Event]:
        return [e for e in self.events if e.kind is kind]


class EventQueue:
    """Fire-and-forget event channel.

    emit() never blocks and never raises; when the queue is full the event is
    dropped and counted. A sink that raises is logged and skipped.
    """

    def __init__(self, sinks: list[EventSink] | None = None, maxsize: int = 1000) -> None:
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
        self._sinks: list[EventSink] = list(sinks or [])
        self._consumer: asyncio.Task | None = None
        self.dropped = 0

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def emit(self, kind: EventKind, payload: dict[str, Any], metadata: dict[str, Any] | None = None) -> None:
        event = Event(kind=kind, payload=payload, metadata=metadata or {}, created_at=time.time())
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("Event queue full, dropped %s event", kind.value)

    def _deliver(self, event: Event) -> None:
        for sink in self._sinks:
            try:
                sink(event)
            except Exception as exc:
                logger.warning("Event sink %r failed: %s", sink, exc)

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            self._deliver(event)
            self._queue.task_done()

    def start(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume())

    def drain_nowait(self) -> None:
        while not self._queue.empty():
            event = self._queue.get_nowait()
            self._deliver(event)
            self._queue.task_done()

    async def aclose(self) -> None:
        """Deliver everything still queued, then stop the consumer."""
        if self._consumer is not None:
            await self._queue.join()
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        self.drain_nowait()
