"""
Single-producer event channel for one chat turn.

The model loop is the only writer and the transport the only reader. The queue
holds one event, so every `write` waits for the reader to take the previous
one (backpressure). Closing the channel ends iteration for the reader; writes
after close raise `ChannelClosed`.
"""

from __future__ import annotations

import asyncio
from typing import List, Protocol

from curling_chat.chat.types import StreamEvent


class ChannelClosed(Exception):
    pass


class StreamWriter(Protocol):
    async def write(self, event: StreamEvent) -> None: ...


_CLOSED = object()


class EventChannel:
    def __init__(self, maxsize: int = 1) -> None:
        self._queue: "asyncio.Queue[object]" = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, event: StreamEvent) -> None:
        if self._closed:
            raise ChannelClosed("channel is closed")
        await self._queue.put(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Never block the producer on close: drop into the queue when there is room,
        # otherwise the reader sees the flag once it drains the pending event.
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass

    def __aiter__(self) -> "EventChannel":
        return self

    async def __anext__(self) -> StreamEvent:
        while True:
            if self._closed and self._queue.empty():
                raise StopAsyncIteration
            item = await self._queue.get()
            if item is _CLOSED:
                raise StopAsyncIteration
            return item  # type: ignore[return-value]


class ListWriter:
    """Collects events in memory. Used where no transport is attached."""

    def __init__(self) -> None:
        self.events: List[StreamEvent] = []

    async def write(self, event: StreamEvent) -> None:
        self.events.append(event)
