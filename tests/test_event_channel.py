from __future__ import annotations

import asyncio

import pytest

from curling_chat.chat.channel import ChannelClosed, EventChannel
from curling_chat.chat.types import StreamEvent


def _ev(i: int) -> StreamEvent:
    return StreamEvent(type="text-delta", message_id="m", delta=str(i))


@pytest.mark.asyncio
async def test_writer_waits_for_reader() -> None:
    ch = EventChannel()
    await ch.write(_ev(1))
    blocked = asyncio.create_task(ch.write(_ev(2)))
    await asyncio.sleep(0)
    assert not blocked.done()

    first = await ch.__anext__()
    assert first.delta == "1"
    await asyncio.wait_for(blocked, timeout=1)


@pytest.mark.asyncio
async def test_close_ends_iteration_after_draining() -> None:
    ch = EventChannel()

    async def produce() -> None:
        for i in range(3):
            await ch.write(_ev(i))
        ch.close()

    task = asyncio.create_task(produce())
    got = [e.delta async for e in ch]
    await task
    assert got == ["0", "1", "2"]


@pytest.mark.asyncio
async def test_write_after_close_raises() -> None:
    ch = EventChannel()
    ch.close()
    with pytest.raises(ChannelClosed):
        await ch.write(_ev(0))
    assert [e async for e in ch] == []
