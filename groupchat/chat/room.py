from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

from ..agents import Agent, create_roster
from ..agents.prompts import build_request_messages
from ..scheduler.turns import TurnScheduler
from ..streaming.sessions import StreamOutcome, StreamResult, StreamSessionManager
from .events import (
    AgentCompleted,
    AgentStreamChunk,
    ChatEvent,
    ConversationCleared,
    ConversationPaused,
    ConversationStopped,
    MessageAdded,
    MessageRetracted,
    RetryScheduled,
    RosterChanged,
)
from .models import Message
from .router import HUMAN_AUTHOR, SYSTEM_AUTHOR, author_label

log = logging.getLogger("groupchat")

ERROR_PLACEHOLDER = "[Error: Failed to get response]"

_DEFAULT_CONTEXT_WINDOW = 20
_DEFAULT_MAX_RETRIES = 2
_DEFAULT_RETRY_PRIORITY = 90
_DEFAULT_RETRY_BACKOFF = 2.0


class ChatRoom:
    """One shared conversation feed between a human and a roster of agents.

    Wires the turn scheduler to the stream session manager: every new message
    is offered to each agent, dispatched turns are streamed into the feed,
    and finished turns are fed back as triggers for the next round. Empty or
    failed turns are retried a bounded number of times.
    """

    def __init__(
        self,
        roster: list[Agent],
        sessions: StreamSessionManager,
        scheduler: TurnScheduler | None = None,
        *,
        context_window: int = _DEFAULT_CONTEXT_WINDOW,
        max_retries: int = _DEFAULT_MAX_RETRIES,
        retry_priority: int = _DEFAULT_RETRY_PRIORITY,
        retry_backoff: float = _DEFAULT_RETRY_BACKOFF,
    ) -> None:
        self.roster = create_roster(roster)
        self.sessions = sessions
        self.scheduler = scheduler or TurnScheduler()
        self.context_window = context_window
        self.max_retries = max_retries
        self.retry_priority = retry_priority
        self.retry_backoff = retry_backoff
        self.messages: list[Message] = []
        self.paused = False
        self._retries: dict[str, int] = {}
        self._turn_tasks: dict[str, asyncio.Task] = {}
        self._subscribers: set[asyncio.Queue[ChatEvent]] = set()
        # Bumped by stop/pause/new conversation so stale turns don't touch
        # the freshly reset scheduler.
        self._epoch = 0
        self.scheduler.set_response_handler(self._on_dispatch)
        self.scheduler.set_pause_checker(lambda: self.paused)

    @classmethod
    def from_settings(
        cls,
        settings: dict[str, Any],
        roster: list[str] | list[dict] | None = None,
        client: Any | None = None,
    ) -> ChatRoom:
        return cls(
            create_roster(roster if roster is not None else settings.get("agents.enabled", [])),
            StreamSessionManager.from_settings(settings, client),
            TurnScheduler.from_settings(settings),
            context_window=int(settings.get("context.window_size", _DEFAULT_CONTEXT_WINDOW)),
            max_retries=int(settings.get("retry.max_attempts", _DEFAULT_MAX_RETRIES)),
            retry_priority=int(settings.get("retry.priority", _DEFAULT_RETRY_PRIORITY)),
            retry_backoff=float(settings.get("retry.backoff", _DEFAULT_RETRY_BACKOFF)),
        )

    # -- events -------------------------------------------------------------

    def subscribe(self) -> asyncio.Queue[ChatEvent]:
        queue: asyncio.Queue[ChatEvent] = asyncio.Queue()
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[ChatEvent]) -> None:
        self._subscribers.discard(queue)

    def _emit(self, event: ChatEvent) -> None:
        for queue in self._subscribers:
            queue.put_nowait(event)

    # -- roster -------------------------------------------------------------

    def get_agent(self, agent_id: str) -> Agent | None:
        return next((a for a in self.roster if a.id == agent_id), None)

    def add_agent(self, agent: str | dict | Agent) -> Agent:
        new = create_roster([agent])[0]
        existing = self.get_agent(new.id)
        if existing is not None:
            return existing
        self.roster = create_roster([*self.roster, new])
        self.post_system_message(f"{new.name} joined the chat")
        self._emit(RosterChanged(agents=[a.id for a in self.roster]))
        return self.get_agent(new.id)

    def remove_agent(self, agent_id: str) -> None:
        agent = self.get_agent(agent_id)
        if agent is None:
            return
        # A pending turn for a removed agent completes as a no-op on dispatch.
        self.sessions.stop_stream(agent_id)
        self.roster = create_roster([a for a in self.roster if a.id != agent_id])
        self.post_system_message(f"{agent.name} left the chat")
        self._emit(RosterChanged(agents=[a.id for a in self.roster]))

    # -- messages -----------------------------------------------------------

    def _append(self, message: Message) -> Message:
        self.messages.append(message)
        self._emit(MessageAdded(message=message))
        return message

    def post_user_message(self, text: str) -> Message:
        message = self._append(Message(author=HUMAN_AUTHOR, text=text, author_name="User"))
        self._evaluate(message)
        return message

    def post_system_message(self, text: str) -> Message:
        # Agents never answer system notices, so there is nothing to evaluate.
        return self._append(Message(author=SYSTEM_AUTHOR, text=text, author_name="System"))

    def _evaluate(self, trigger: Message) -> None:
        for agent in self.roster:
            decision = self.scheduler.decide(agent, self.messages, trigger, self.roster)
            if decision.should_respond:
                self.scheduler.queue_response(agent.id, decision.delay, decision.priority)

    # -- turns --------------------------------------------------------------

    def _on_dispatch(self, agent_id: str) -> None:
        task = asyncio.create_task(self._run_turn(agent_id), name=f"turn-{agent_id}")
        self._turn_tasks[agent_id] = task

        def _done(t: asyncio.Task) -> None:
            if self._turn_tasks.get(agent_id) is t:
                del self._turn_tasks[agent_id]

        task.add_done_callback(_done)

    async def _run_turn(self, agent_id: str) -> None:
        agent = self.get_agent(agent_id)
        if agent is None:
            log.info("[%s] dispatched after leaving the roster, skipping", agent_id)
            self.scheduler.complete_response(agent_id)
            return

        epoch = self._epoch
        request = build_request_messages(agent, self.roster, self.messages, self.context_window)
        message = self._append(Message(
            author=agent.id, text="", author_name=agent.name, streaming=True,
        ))

        try:
            result = await self._stream_turn(agent, message, request)
        except Exception as e:
            log.exception("[%s] turn failed: %s", agent.tag, e)
            result = StreamResult(agent.id, message.text, StreamOutcome.ERRORED, error=str(e))

        message.streaming = False
        if epoch != self._epoch:
            # Stopped, paused or cleared mid-turn: keep what arrived, nothing more.
            message.text = result.text
            self._emit(AgentCompleted(agent_id=agent.id, message=message, result=result, final=True))
            return

        self.scheduler.complete_response(agent.id)
        self._finish_turn(agent, message, result)

    async def _stream_turn(
        self, agent: Agent, message: Message, request: list[dict[str, str]],
    ) -> StreamResult:
        result: StreamResult | None = None
        async for item in self.sessions.stream(agent.id, request):
            if isinstance(item, StreamResult):
                result = item
                continue
            message.text += item
            self._emit(AgentStreamChunk(agent_id=agent.id, message_id=message.id, text=item))
        if result is None:
            raise RuntimeError("stream ended without a result")
        return result

    def _finish_turn(self, agent: Agent, message: Message, result: StreamResult) -> None:
        if result.outcome is StreamOutcome.ERRORED:
            message.text = result.text or ERROR_PLACEHOLDER
        else:
            message.text = result.text

        if result.outcome is StreamOutcome.ABORTED:
            self._retries.pop(agent.id, None)
            self._emit(AgentCompleted(agent_id=agent.id, message=message, result=result, final=True))
            return

        attempts = self._retries.get(agent.id, 0)
        if result.needs_retry and attempts < self.max_retries:
            attempt = attempts + 1
            self._retries[agent.id] = attempt
            self._emit(AgentCompleted(agent_id=agent.id, message=message, result=result, final=False))
            self._retract(message)
            self.scheduler.force_queue_response(agent.id, self.retry_backoff, self.retry_priority)
            self._emit(RetryScheduled(agent_id=agent.id, attempt=attempt, delay=self.retry_backoff))
            self._log_metric(
                "turn_retry",
                agent=agent.id,
                attempt=attempt,
                outcome=result.outcome.value,
                error=result.error,
            )
            return

        self._retries.pop(agent.id, None)
        self._emit(AgentCompleted(agent_id=agent.id, message=message, result=result, final=True))
        self._evaluate(message)

    def _retract(self, message: Message) -> None:
        try:
            self.messages.remove(message)
        except ValueError:
            return
        self._emit(MessageRetracted(message_id=message.id, agent_id=message.author))

    # -- controls -----------------------------------------------------------

    def _interrupt(self) -> None:
        self._epoch += 1
        self.sessions.stop_all_streams()
        self.scheduler.reset()
        self._retries.clear()

    def stop(self) -> None:
        """Abort every stream, drop every pending turn, and clear pause."""
        self._interrupt()
        self.paused = False
        self._emit(ConversationStopped())

    def pause(self) -> None:
        if self.paused:
            return
        self.paused = True
        self._interrupt()
        self._emit(ConversationPaused(paused=True))

    def resume(self) -> None:
        if not self.paused:
            return
        self.paused = False
        self.scheduler.resume()
        self._emit(ConversationPaused(paused=False))

    def toggle_pause(self) -> bool:
        if self.paused:
            self.resume()
        else:
            self.pause()
        return self.paused

    def new_conversation(self) -> None:
        self._interrupt()
        self.messages.clear()
        self._emit(ConversationCleared())

    @property
    def is_generating(self) -> bool:
        return self.sessions.has_active_streams() or any(m.streaming for m in self.messages)

    def transcript(self) -> str:
        names = {a.id: a.name for a in self.roster}
        return "\n\n".join(
            f"[{m.author_name or author_label(m.author, names)}]: {m.text}"
            for m in self.messages
        )

    async def close(self) -> None:
        self.stop()
        tasks = list(self._turn_tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        aclose = getattr(self.sessions.client, "aclose", None)
        if aclose is not None:
            await aclose()

    def _log_metric(self, name: str, **fields: object) -> None:
        payload = {"metric": name, "ts": time.time(), **fields}
        log.info("metric %s", json.dumps(payload, separators=(",", ":"), sort_keys=True))
