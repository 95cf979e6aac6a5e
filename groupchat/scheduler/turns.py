"""TurnScheduler: decides when each agent gets to speak.

Every agent moves through ``IDLE -> PENDING -> (QUEUED) -> STREAMING -> IDLE``.
Delays are ``loop.call_later`` handles keyed by agent id, so all state
mutation happens in event-loop callbacks and never interleaves.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..agents import Agent
from ..chat.models import Message
from .decision import TurnDecision, TurnPolicy, decide
from .tracker import CooldownTracker

log = logging.getLogger("groupchat")

_DEFAULT_INTER_TURN_DELAY = 8.0
_DEFAULT_PAUSE_RECHECK = 0.5


class SchedulerInvariantViolation(AssertionError):
    """Raised when the turn state machine is driven into an impossible state."""


class TurnState(Enum):
    IDLE = "idle"
    PENDING = "pending"
    QUEUED = "queued"
    STREAMING = "streaming"


@dataclass
class QueueEntry:
    agent_id: str
    priority: int


class TurnScheduler:
    def __init__(
        self,
        policy: TurnPolicy | None = None,
        *,
        max_concurrent: int = 1,
        inter_turn_delay: float = _DEFAULT_INTER_TURN_DELAY,
        pause_recheck: float = _DEFAULT_PAUSE_RECHECK,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self.policy = policy or TurnPolicy()
        self.max_concurrent = max_concurrent
        self.inter_turn_delay = inter_turn_delay
        self.pause_recheck = pause_recheck
        self._clock = clock
        self._rng = rng or random.Random()
        self._tracker = CooldownTracker()
        self._pending: dict[str, asyncio.TimerHandle] = {}
        self._handoff: set[str] = set()  # pending agents holding a slot
        self._queue: list[QueueEntry] = []
        self._streaming: set[str] = set()
        self._responding = 0
        self._on_trigger: Callable[[str], None] | None = None
        self._is_paused: Callable[[], bool] | None = None

    @classmethod
    def from_settings(cls, settings: dict[str, Any], **kwargs: Any) -> TurnScheduler:
        return cls(
            TurnPolicy.from_settings(settings),
            max_concurrent=int(settings.get("scheduler.max_concurrent", 1)),
            inter_turn_delay=float(settings.get("scheduler.inter_turn_delay", _DEFAULT_INTER_TURN_DELAY)),
            pause_recheck=float(settings.get("scheduler.pause_recheck", _DEFAULT_PAUSE_RECHECK)),
            **kwargs,
        )

    # -- wiring -------------------------------------------------------------

    def set_response_handler(self, handler: Callable[[str], None]) -> None:
        self._on_trigger = handler

    def set_pause_checker(self, fn: Callable[[], bool]) -> None:
        self._is_paused = fn

    def is_paused(self) -> bool:
        return self._is_paused() if self._is_paused else False

    # -- introspection ------------------------------------------------------

    @property
    def tracker(self) -> CooldownTracker:
        return self._tracker

    @property
    def responding(self) -> int:
        return self._responding

    @property
    def pending(self) -> set[str]:
        return set(self._pending)

    @property
    def streaming(self) -> set[str]:
        return set(self._streaming)

    @property
    def queued(self) -> list[QueueEntry]:
        return list(self._queue)

    def state_of(self, agent_id: str) -> TurnState:
        if agent_id in self._streaming:
            return TurnState.STREAMING
        if agent_id in self._pending:
            return TurnState.PENDING
        if self._in_queue(agent_id):
            return TurnState.QUEUED
        return TurnState.IDLE

    def is_on_cooldown(self, agent_id: str) -> bool:
        return self._tracker.on_cooldown(agent_id, self._clock(), self.policy.cooldown)

    # -- decisions ----------------------------------------------------------

    def decide(
        self,
        agent: Agent,
        messages: list[Message],
        trigger: Message,
        roster: list[Agent],
    ) -> TurnDecision:
        decision = decide(
            agent,
            trigger,
            roster,
            self._tracker,
            self.policy,
            now=self._clock(),
            rng=self._rng,
        )
        if decision.should_respond:
            log.debug(
                "[%s] wants turn: priority=%d delay=%.2fs",
                agent.tag, decision.priority, decision.delay,
            )
        return decision

    # -- queueing -----------------------------------------------------------

    def queue_response(self, agent_id: str, delay: float, priority: int) -> None:
        if agent_id in self._pending or agent_id in self._streaming or self._in_queue(agent_id):
            return
        self._arm(agent_id, delay, priority)

    def force_queue_response(self, agent_id: str, delay: float, priority: int) -> None:
        """Re-arm an agent regardless of cooldown. Used by the retry path."""
        self._tracker.clear_cooldown(agent_id)
        self._disarm(agent_id)
        self._queue = [e for e in self._queue if e.agent_id != agent_id]
        self.queue_response(agent_id, delay, priority)

    def _arm(self, agent_id: str, delay: float, priority: int) -> None:
        loop = asyncio.get_running_loop()
        self._pending[agent_id] = loop.call_later(max(delay, 0.0), self._on_timer, agent_id, priority)

    def _disarm(self, agent_id: str) -> None:
        handle = self._pending.pop(agent_id, None)
        if handle is not None:
            handle.cancel()
        if agent_id in self._handoff:
            self._handoff.discard(agent_id)
            self._release()

    def _on_timer(self, agent_id: str, priority: int) -> None:
        if agent_id not in self._pending:
            return
        if self.is_paused():
            # Stay pending; the concurrency counter is untouched while paused.
            self._arm(agent_id, self.pause_recheck, priority)
            return
        del self._pending[agent_id]
        self._try_dispatch(agent_id, priority)

    def _try_dispatch(self, agent_id: str, priority: int) -> None:
        if agent_id in self._streaming:
            return
        if self._streaming or self._responding >= self.max_concurrent:
            self._enqueue(agent_id, priority)
            return
        self._dispatch(agent_id)

    def _in_queue(self, agent_id: str) -> bool:
        return any(e.agent_id == agent_id for e in self._queue)

    def _enqueue(self, agent_id: str, priority: int) -> None:
        if self._in_queue(agent_id):
            return
        # Insert before the first strictly lower priority: FIFO among ties.
        index = next(
            (i for i, e in enumerate(self._queue) if e.priority < priority),
            len(self._queue),
        )
        self._queue.insert(index, QueueEntry(agent_id=agent_id, priority=priority))
        log.debug("[%s] queued at position %d (priority %d)", agent_id, index, priority)

    def _dispatch(self, agent_id: str) -> None:
        if agent_id in self._streaming:
            raise SchedulerInvariantViolation(f"agent '{agent_id}' is already streaming")
        if self._responding >= self.max_concurrent:
            raise SchedulerInvariantViolation(
                f"concurrency cap {self.max_concurrent} reached dispatching '{agent_id}'"
            )
        self._responding += 1
        self._start(agent_id)

    def _start(self, agent_id: str) -> None:
        self._streaming.add(agent_id)
        self._log_metric("turn_dispatched", agent=agent_id, responding=self._responding)
        if self._on_trigger is not None:
            self._on_trigger(agent_id)

    # -- completion ---------------------------------------------------------

    def complete_response(self, agent_id: str) -> None:
        if agent_id not in self._streaming:
            # A stream that resolves after reset() has nothing left to release.
            log.debug("[%s] completion ignored, agent not streaming", agent_id)
            return

        self._tracker.record_response(agent_id, self._clock())
        self._disarm(agent_id)
        self._streaming.discard(agent_id)
        self._queue = [e for e in self._queue if e.agent_id != agent_id]
        self._log_metric("turn_completed", agent=agent_id, queued=len(self._queue))

        if self._queue and not self.is_paused():
            nxt = self._queue.pop(0)
            # The slot stays held through the reading delay.
            loop = asyncio.get_running_loop()
            self._pending[nxt.agent_id] = loop.call_later(
                self.inter_turn_delay, self._on_handoff, nxt.agent_id, nxt.priority,
            )
            self._handoff.add(nxt.agent_id)
            log.debug("[%s] next up in %.1fs", nxt.agent_id, self.inter_turn_delay)
        else:
            self._release()

    def _on_handoff(self, agent_id: str, priority: int) -> None:
        if self._pending.pop(agent_id, None) is None:
            return
        self._handoff.discard(agent_id)
        if self.is_paused():
            self._release()
            self._arm(agent_id, self.pause_recheck, priority)
            return
        if agent_id in self._streaming:
            self._release()
            self.resume()
            return
        self._start(agent_id)

    def _release(self) -> None:
        self._responding = max(self._responding - 1, 0)

    def resume(self) -> None:
        """Dispatch the queue head if nobody is speaking and a slot is free."""
        if self.is_paused() or not self._queue:
            return
        if self._streaming or self._responding >= self.max_concurrent:
            return
        nxt = self._queue.pop(0)
        self._dispatch(nxt.agent_id)

    def reset(self) -> None:
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()
        self._handoff.clear()
        self._tracker.clear()
        self._queue.clear()
        self._streaming.clear()
        self._responding = 0

    def _log_metric(self, name: str, **fields: object) -> None:
        payload = {"metric": name, "ts": time.time(), **fields}
        log.info("metric %s", json.dumps(payload, separators=(",", ":"), sort_keys=True))
