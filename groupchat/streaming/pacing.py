from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncGenerator


class TypingPaceBuffer:
    """Re-times incoming text to a fixed per-character cadence.

    ``feed`` may be called in bursts from the network reader; ``drain`` hands
    characters to the consumer one at a time, ``char_delay`` seconds apart,
    until the buffer is closed and empty or aborted.
    """

    def __init__(self, char_delay: float = 0.03) -> None:
        self.char_delay = char_delay
        self._chars: deque[str] = deque()
        self._closed = False
        self._aborted = False
        self._wakeup = asyncio.Event()

    @property
    def pending(self) -> int:
        return len(self._chars)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def aborted(self) -> bool:
        return self._aborted

    def feed(self, text: str) -> None:
        if self._closed or not text:
            return
        self._chars.extend(text)
        self._wakeup.set()

    def close(self) -> None:
        """No more input; ``drain`` finishes once the backlog is empty."""
        self._closed = True
        self._wakeup.set()

    def abort(self) -> None:
        """Stop draining immediately and drop the undisplayed backlog."""
        self._aborted = True
        self._closed = True
        self._chars.clear()
        self._wakeup.set()

    async def drain(self) -> AsyncGenerator[str, None]:
        while not self._aborted:
            if self._chars:
                yield self._chars.popleft()
                await asyncio.sleep(self.char_delay)
                continue
            if self._closed:
                return
            self._wakeup.clear()
            await self._wakeup.wait()
