"""Priority decision: should an agent answer a message, how soon, how urgently."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any

from ..agents import Agent
from ..chat.models import Message
from ..chat.router import HUMAN_AUTHOR, SYSTEM_AUTHOR, is_mentioned, is_question
from .tracker import CooldownTracker

PRIORITY_BASE = 50
PRIORITY_SILENT = 60
PRIORITY_QUESTION = 70
PRIORITY_HUMAN = 80
PRIORITY_MENTION = 100

# Consecutive unanswered evaluations before an agent is nudged back in.
SILENCE_THRESHOLD = 2


@dataclass(frozen=True)
class TurnDecision:
    should_respond: bool
    delay: float = 0.0
    priority: int = 0


_NO_TURN = TurnDecision(should_respond=False)


@dataclass(frozen=True)
class TurnPolicy:
    cooldown: float = 8.0
    base_delay: float = 2.0
    stagger: float = 0.5
    jitter: float = 1.0
    thinking_bonus: float = 2.0
    # 1.0 keeps every agent engaged; lower values let agents sit out
    # unmentioned messages at random.
    engage_probability: float = 1.0

    @classmethod
    def from_settings(cls, settings: dict[str, Any]) -> TurnPolicy:
        defaults = cls()
        return cls(
            cooldown=float(settings.get("scheduler.cooldown", defaults.cooldown)),
            base_delay=float(settings.get("scheduler.base_delay", defaults.base_delay)),
            stagger=float(settings.get("scheduler.stagger", defaults.stagger)),
            jitter=float(settings.get("scheduler.jitter", defaults.jitter)),
            thinking_bonus=float(settings.get("scheduler.thinking_bonus", defaults.thinking_bonus)),
            engage_probability=float(
                settings.get("scheduler.engage_probability", defaults.engage_probability)
            ),
        )


def _roster_index(agent: Agent, roster: list[Agent]) -> int:
    for i, member in enumerate(roster):
        if member.id == agent.id:
            return i
    return agent.ordinal_index


def response_delay(
    agent: Agent,
    roster: list[Agent],
    policy: TurnPolicy,
    rng: random.Random,
) -> float:
    delay = policy.base_delay + policy.stagger * _roster_index(agent, roster)
    if policy.jitter > 0:
        delay += rng.uniform(0, policy.jitter)
    if agent.deliberate:
        delay += policy.thinking_bonus
    return delay


def decide(
    agent: Agent,
    trigger: Message,
    roster: list[Agent],
    tracker: CooldownTracker,
    policy: TurnPolicy,
    *,
    now: float,
    rng: random.Random,
) -> TurnDecision:
    """Evaluate whether *agent* should answer *trigger*.

    Bumps the agent's silence counter for every message it is asked about,
    whether or not it ends up responding; a completed turn resets it.
    """
    if trigger.author == agent.id or trigger.author == SYSTEM_AUTHOR:
        return _NO_TURN

    silence = tracker.bump_silence(agent.id)
    mentioned = is_mentioned(trigger.text, agent.tag)

    # Mentions bypass the cooldown.
    if not mentioned and tracker.on_cooldown(agent.id, now, policy.cooldown):
        return _NO_TURN

    if not mentioned and rng.random() >= policy.engage_probability:
        return _NO_TURN

    priority = PRIORITY_BASE
    if mentioned:
        priority = PRIORITY_MENTION
    if trigger.author == HUMAN_AUTHOR:
        priority = max(priority, PRIORITY_HUMAN)
    if is_question(trigger.text):
        priority = max(priority, PRIORITY_QUESTION)
    if silence >= SILENCE_THRESHOLD:
        priority = max(priority, PRIORITY_SILENT)

    return TurnDecision(
        should_respond=True,
        delay=response_delay(agent, roster, policy, rng),
        priority=priority,
    )
