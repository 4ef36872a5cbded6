"""Progress sinks for deep research runs.

The research controller only ever calls ``emit``; where the events end up
(an SSE response, a CLI printer, a test list) is decided by whoever builds
the emitter.
"""
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable

from app.models.events import SSEEvent


class CallerDisconnected(RuntimeError):
    """Raised by ``emit`` once the consumer of the stream has gone away."""


class ProgressEmitter:
    """One-way event sink. Events are delivered in emission order."""

    def emit(self, event: SSEEvent) -> None:
        raise NotImplementedError


class CollectingEmitter(ProgressEmitter):
    """Keeps every event in memory, optionally echoing to a callback."""

    def __init__(self, on_event: Callable[[SSEEvent], None] | None = None):
        self.events: list[SSEEvent] = []
        self._on_event = on_event

    def emit(self, event: SSEEvent) -> None:
        self.events.append(event)
        if self._on_event is not None:
            self._on_event(event)


class QueueProgressEmitter(ProgressEmitter):
    """Bridges a running research task to an async event consumer.

    ``emit`` is synchronous and never blocks (unbounded queue), so the order
    events are emitted in is the order the consumer sees them.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[SSEEvent | None] = asyncio.Queue()
        self._closed = False
        self._disconnected = False

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    def emit(self, event: SSEEvent) -> None:
        if self._disconnected:
            raise CallerDisconnected("progress consumer disconnected")
        if self._closed:
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        """Signal that no more events will be produced."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    def disconnect(self) -> None:
        """Mark the consumer as gone; later emits raise CallerDisconnected."""
        self._disconnected = True
        self.close()

    async def events(self) -> AsyncIterator[SSEEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
