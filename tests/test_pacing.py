import asyncio
import time

import pytest

from groupchat.streaming.pacing import TypingPaceBuffer


async def _collect(buffer):
    return [c async for c in buffer.drain()]


@pytest.mark.asyncio
async def test_drain_yields_one_char_at_a_time():
    buffer = TypingPaceBuffer(char_delay=0)
    buffer.feed("hello")
    buffer.close()

    assert await _collect(buffer) == list("hello")
    assert buffer.pending == 0


@pytest.mark.asyncio
async def test_drain_waits_for_more_input():
    buffer = TypingPaceBuffer(char_delay=0)
    task = asyncio.create_task(_collect(buffer))

    buffer.feed("ab")
    await asyncio.sleep(0.01)
    assert not task.done()

    buffer.feed("c")
    buffer.close()
    assert await asyncio.wait_for(task, 1.0) == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_drain_paces_output():
    buffer = TypingPaceBuffer(char_delay=0.02)
    buffer.feed("abcd")
    buffer.close()

    start = time.monotonic()
    await _collect(buffer)

    assert time.monotonic() - start >= 0.07


@pytest.mark.asyncio
async def test_abort_drops_backlog():
    buffer = TypingPaceBuffer(char_delay=0.05)
    buffer.feed("a long answer")
    seen = []

    async def consume():
        async for c in buffer.drain():
            seen.append(c)

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.02)
    buffer.abort()
    await asyncio.wait_for(task, 1.0)

    assert 0 < len(seen) < len("a long answer")
    assert buffer.aborted
    assert buffer.pending == 0


@pytest.mark.asyncio
async def test_abort_wakes_idle_drain():
    buffer = TypingPaceBuffer(char_delay=0)
    task = asyncio.create_task(_collect(buffer))
    await asyncio.sleep(0.01)

    buffer.abort()

    assert await asyncio.wait_for(task, 1.0) == []


@pytest.mark.asyncio
async def test_feed_after_close_is_ignored():
    buffer = TypingPaceBuffer(char_delay=0)
    buffer.feed("x")
    buffer.close()
    buffer.feed("y")

    assert buffer.closed
    assert await _collect(buffer) == ["x"]
