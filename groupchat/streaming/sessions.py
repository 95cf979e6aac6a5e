from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from .client import CompletionClient, CompletionError
from .pacing import TypingPaceBuffer

log = logging.getLogger("groupchat")

NO_RESPONSE_PLACEHOLDER = "[model did not respond]"
TIMEOUT_PLACEHOLDER = "[request timed out]"

_DEFAULT_REQUEST_TIMEOUT = 10.0
_DEFAULT_CHAR_DELAY = 0.03


class StreamSessionError(Exception):
    """Raised when a second live stream is opened for the same agent."""


class StreamOutcome(Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"
    TIMED_OUT = "timed_out"
    ERRORED = "errored"


@dataclass
class StreamResult:
    agent_id: str
    text: str
    outcome: StreamOutcome
    placeholder: bool = False  # text is synthesized, not model output
    error: str | None = field(default=None)
    latency_ms: float = 0.0

    @property
    def needs_retry(self) -> bool:
        return self.outcome is StreamOutcome.ERRORED or (
            self.placeholder and self.outcome is not StreamOutcome.ABORTED
        )


@dataclass
class StreamSession:
    agent_id: str
    cancel: asyncio.Event
    started_at: float
    buffer: TypingPaceBuffer
    reader: asyncio.Task | None = None


class StreamSessionManager:
    """Runs at most one cancellable, typing-paced completion stream per agent.

    ``client`` is anything with an async-generator
    ``stream_completion(model, messages)`` method; ``CompletionClient`` is the
    HTTP implementation.
    """

    def __init__(
        self,
        client: Any | None = None,
        *,
        request_timeout: float = _DEFAULT_REQUEST_TIMEOUT,
        char_delay: float = _DEFAULT_CHAR_DELAY,
    ) -> None:
        self.client = client or CompletionClient()
        self.request_timeout = request_timeout
        self.char_delay = char_delay
        self._sessions: dict[str, StreamSession] = {}

    @classmethod
    def from_settings(cls, settings: dict[str, Any], client: Any | None = None) -> StreamSessionManager:
        if client is None:
            client = CompletionClient(settings.get("completion.endpoint"))
        return cls(
            client,
            request_timeout=float(settings.get("stream.request_timeout", _DEFAULT_REQUEST_TIMEOUT)),
            char_delay=float(settings.get("stream.char_delay", _DEFAULT_CHAR_DELAY)),
        )

    def has_active_streams(self) -> bool:
        return bool(self._sessions)

    def active_agents(self) -> list[str]:
        return list(self._sessions)

    def stop_stream(self, agent_id: str) -> None:
        session = self._sessions.pop(agent_id, None)
        if session is not None:
            self._abort(session)

    def stop_all_streams(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            self._abort(session)

    @staticmethod
    def _abort(session: StreamSession) -> None:
        log.info("[%s] stream aborted", session.agent_id)
        session.cancel.set()
        session.buffer.abort()
        if session.reader is not None and not session.reader.done():
            session.reader.cancel()

    async def stream(
        self, agent_id: str, messages: list[dict[str, str]],
    ) -> AsyncGenerator[str | StreamResult, None]:
        """Yield paced text chunks, then a final StreamResult."""
        if agent_id in self._sessions:
            raise StreamSessionError(f"Agent '{agent_id}' already has a live stream")

        start = time.monotonic()
        buffer = TypingPaceBuffer(self.char_delay)
        session = StreamSession(
            agent_id=agent_id,
            cancel=asyncio.Event(),
            started_at=start,
            buffer=buffer,
        )
        self._sessions[agent_id] = session

        collected: list[str] = []
        failure: dict[str, Any] = {"timed_out": False, "error": None}

        async def _read() -> None:
            try:
                async with asyncio.timeout(self.request_timeout):
                    async for fragment in self.client.stream_completion(agent_id, messages):
                        collected.append(fragment)
                        buffer.feed(fragment)
            except TimeoutError:
                failure["timed_out"] = True
                log.warning("[%s] request timeout after %.1fs", agent_id, self.request_timeout)
            except (CompletionError, httpx.HTTPError, httpx.StreamError) as e:
                failure["error"] = str(e) or e.__class__.__name__
            finally:
                buffer.close()

        session.reader = asyncio.create_task(_read(), name=f"stream-{agent_id}")
        log.info("[%s] stream started", agent_id)

        try:
            async for char in buffer.drain():
                yield char

            if not session.cancel.is_set():
                # Drain ended because the reader closed the buffer.
                await session.reader

            text = "".join(collected)
            latency_ms = (time.monotonic() - start) * 1000

            if session.cancel.is_set():
                result = StreamResult(agent_id, text, StreamOutcome.ABORTED, latency_ms=latency_ms)
            elif failure["error"] is not None:
                log.warning("[%s] stream error: %s", agent_id, failure["error"])
                result = StreamResult(
                    agent_id, text, StreamOutcome.ERRORED,
                    error=failure["error"], latency_ms=latency_ms,
                )
            elif failure["timed_out"]:
                if text:
                    result = StreamResult(agent_id, text, StreamOutcome.TIMED_OUT, latency_ms=latency_ms)
                else:
                    yield TIMEOUT_PLACEHOLDER
                    result = StreamResult(
                        agent_id, TIMEOUT_PLACEHOLDER, StreamOutcome.TIMED_OUT,
                        placeholder=True, latency_ms=latency_ms,
                    )
            elif not text:
                yield NO_RESPONSE_PLACEHOLDER
                result = StreamResult(
                    agent_id, NO_RESPONSE_PLACEHOLDER, StreamOutcome.COMPLETED,
                    placeholder=True, latency_ms=latency_ms,
                )
            else:
                result = StreamResult(agent_id, text, StreamOutcome.COMPLETED, latency_ms=latency_ms)

            self._log_metric(
                "stream_finished",
                agent=agent_id,
                outcome=result.outcome.value,
                placeholder=result.placeholder,
                chars=len(text),
                latency_ms=round(latency_ms),
            )
            yield result
        finally:
            if self._sessions.get(agent_id) is session:
                del self._sessions[agent_id]
            if not session.reader.done():
                session.reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await session.reader

    def _log_metric(self, name: str, **fields: object) -> None:
        payload = {"metric": name, "ts": time.time(), **fields}
        log.info("metric %s", json.dumps(payload, separators=(",", ":"), sort_keys=True))
