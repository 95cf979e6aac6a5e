from __future__ import annotations

from typing import TYPE_CHECKING

from . import Agent
from ..chat.router import HUMAN_AUTHOR, SYSTEM_AUTHOR

if TYPE_CHECKING:
    from ..chat.models import Message

_DISCUSSION_RULES = (
    "Rules:\n"
    "- ALWAYS respond in the same language as the conversation\n"
    "- This is an analytical discussion for exploring ideas - engage deeply with the topic\n"
    "- Keep responses focused (2-4 sentences usually, expand when analyzing complex points)\n"
    "- You can address others using @mentions (e.g., @{example})\n"
    "- DO NOT wait for or ask for human input - continue the discussion with other AI models\n"
    "- DO NOT ask \"what do you think?\" to @User or @Human - they will join when they want\n"
    "- Build on others' points, disagree, ask follow-up questions to other AI models\n"
    "- If directly addressed with @{tag}, you must respond\n"
    "- Be yourself - show personality and engage naturally with the topic"
)


def build_system_prompt(agent: Agent, roster: list[Agent]) -> str:
    others = [a.tag for a in roster if a.id != agent.id]
    if others:
        others_line = f"The other AI participants are: {', '.join(others)}."
        with_models = " with other AI models"
    else:
        others_line = "You are the only AI in this chat."
        with_models = ""

    return (
        f"You are {agent.name}, participating in an AI group discussion{with_models}. "
        "A human (User) may join at any time but is NOT required - continue the "
        "discussion without waiting for human input.\n\n"
        f"{others_line}\n\n"
        + _DISCUSSION_RULES.format(example=others[0] if others else "User", tag=agent.tag)
    )


def build_context_window(
    messages: list[Message],
    window_size: int,
    agent: Agent,
) -> list[dict[str, str]]:
    """Map the last *window_size* feed messages to chat-completion messages.

    Text written by other agents is prefixed with ``[Name]: `` so the model
    can tell speakers apart; the agent's own turns are passed through as-is.
    """
    recent = messages[-window_size:] if window_size > 0 else []
    result: list[dict[str, str]] = []
    for msg in recent:
        if msg.author == HUMAN_AUTHOR:
            result.append({"role": "user", "content": msg.text})
        elif msg.author == SYSTEM_AUTHOR:
            result.append({"role": "system", "content": msg.text})
        elif msg.author == agent.id:
            result.append({"role": "assistant", "content": msg.text})
        else:
            name = msg.author_name or msg.author
            result.append({"role": "assistant", "content": f"[{name}]: {msg.text}"})
    return result


def build_request_messages(
    agent: Agent,
    roster: list[Agent],
    messages: list[Message],
    window_size: int,
) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": build_system_prompt(agent, roster)},
        *build_context_window(messages, window_size, agent),
    ]
