import random

import pytest

from groupchat.agents import Agent
from groupchat.chat.models import Message
from groupchat.scheduler.decision import (
    PRIORITY_BASE,
    PRIORITY_HUMAN,
    PRIORITY_MENTION,
    PRIORITY_QUESTION,
    PRIORITY_SILENT,
    TurnPolicy,
    decide,
    response_delay,
)
from groupchat.scheduler.tracker import CooldownTracker

POLICY = TurnPolicy(cooldown=8.0, base_delay=2.0, stagger=0.5, jitter=0.0, thinking_bonus=2.0)


def _decide(agent, trigger, roster, tracker, now=100.0, policy=POLICY, rng=None):
    return decide(agent, trigger, roster, tracker, policy, now=now, rng=rng or random.Random(0))


def test_mention_bypasses_cooldown(roster):
    alpha, beta = roster
    tracker = CooldownTracker()
    tracker.record_response(alpha.id, 100.0)

    decision = _decide(alpha, Message(beta.id, "@Alpha thoughts"), roster, tracker, now=100.0)

    assert decision.should_respond is True
    assert decision.priority == PRIORITY_MENTION


def test_cooldown_blocks_unmentioned_message(roster):
    alpha, beta = roster
    tracker = CooldownTracker()
    tracker.record_response(alpha.id, 100.0)

    decision = _decide(alpha, Message("user", "anyone?"), roster, tracker, now=104.0)

    assert decision.should_respond is False


def test_cooldown_expires(roster):
    alpha, _ = roster
    tracker = CooldownTracker()
    tracker.record_response(alpha.id, 100.0)

    decision = _decide(alpha, Message("user", "anyone"), roster, tracker, now=108.0)

    assert decision.should_respond is True


def test_silence_raises_priority(roster):
    alpha, beta = roster
    tracker = CooldownTracker()
    trigger = Message(beta.id, "I think so.")

    first = _decide(alpha, trigger, roster, tracker)
    second = _decide(alpha, trigger, roster, tracker)
    third = _decide(alpha, trigger, roster, tracker)

    assert first.priority == PRIORITY_BASE
    assert second.priority == PRIORITY_BASE
    assert third.priority >= PRIORITY_SILENT
    assert tracker.silence(alpha.id) == 3


def test_completed_turn_resets_silence(roster):
    alpha, beta = roster
    tracker = CooldownTracker()
    for _ in range(3):
        _decide(alpha, Message(beta.id, "hmm."), roster, tracker)
    tracker.record_response(alpha.id, 0.0)

    decision = _decide(alpha, Message(beta.id, "hmm."), roster, tracker)

    assert decision.priority == PRIORITY_BASE


@pytest.mark.parametrize(
    "author,text,expected",
    [
        ("user", "hello", PRIORITY_HUMAN),
        ("user", "hello?", PRIORITY_HUMAN),
        ("test/beta", "why?", PRIORITY_QUESTION),
        ("test/beta", "@Alpha why?", PRIORITY_MENTION),
        ("user", "@alpha hi", PRIORITY_MENTION),
    ],
)
def test_priority_layers(roster, author, text, expected):
    alpha, _ = roster
    decision = _decide(alpha, Message(author, text), roster, CooldownTracker())
    assert decision.should_respond is True
    assert decision.priority == expected


def test_own_message_is_ignored(roster):
    alpha, _ = roster
    tracker = CooldownTracker()

    decision = _decide(alpha, Message(alpha.id, "@Alpha talking to myself?"), roster, tracker)

    assert decision.should_respond is False
    assert tracker.silence(alpha.id) == 0


def test_system_message_is_ignored(roster):
    alpha, _ = roster
    tracker = CooldownTracker()

    decision = _decide(alpha, Message("system", "Beta joined the chat"), roster, tracker)

    assert decision.should_respond is False
    assert tracker.silence(alpha.id) == 0


def test_mention_needs_word_boundary(roster):
    alpha, beta = roster
    tracker = CooldownTracker()
    tracker.record_response(alpha.id, 100.0)

    decision = _decide(alpha, Message(beta.id, "@Alphabet is a company"), roster, tracker, now=101.0)

    assert decision.should_respond is False


def test_delay_staggers_by_roster_position(roster):
    alpha, beta = roster
    rng = random.Random(0)
    assert response_delay(alpha, roster, POLICY, rng) == pytest.approx(2.0)
    assert response_delay(beta, roster, POLICY, rng) == pytest.approx(2.5)


def test_deliberate_agent_gets_thinking_bonus():
    thinker = Agent(id="test/slow", name="Slow", tag="Slow", deliberate=True)
    assert response_delay(thinker, [thinker], POLICY, random.Random(0)) == pytest.approx(4.0)


def test_jitter_stays_within_bounds(roster):
    alpha, _ = roster
    policy = TurnPolicy(base_delay=2.0, stagger=0.5, jitter=1.0)
    rng = random.Random(42)
    for _ in range(50):
        delay = response_delay(alpha, roster, policy, rng)
        assert 2.0 <= delay <= 3.0


def test_zero_engage_probability_only_answers_mentions(roster):
    alpha, _ = roster
    policy = TurnPolicy(jitter=0.0, engage_probability=0.0)
    tracker = CooldownTracker()

    plain = _decide(alpha, Message("user", "hello all"), roster, tracker, policy=policy)
    mention = _decide(alpha, Message("user", "@Alpha hello"), roster, tracker, policy=policy)

    assert plain.should_respond is False
    assert mention.should_respond is True


def test_policy_from_settings():
    policy = TurnPolicy.from_settings({"scheduler.cooldown": 3, "scheduler.jitter": 0})
    assert policy.cooldown == 3.0
    assert policy.jitter == 0.0
    assert policy.base_delay == 2.0
