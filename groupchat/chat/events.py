from __future__ import annotations

from dataclasses import dataclass

from ..streaming.sessions import StreamResult
from .models import Message


@dataclass
class ChatEvent:
    """Base class for chat events."""


@dataclass
class MessageAdded(ChatEvent):
    message: Message


@dataclass
class AgentStreamChunk(ChatEvent):
    agent_id: str
    message_id: str
    text: str


@dataclass
class AgentCompleted(ChatEvent):
    agent_id: str
    message: Message
    result: StreamResult
    final: bool  # False when the turn is about to be retried


@dataclass
class MessageRetracted(ChatEvent):
    """A failed attempt was withdrawn from the feed ahead of a retry."""
    message_id: str
    agent_id: str


@dataclass
class RetryScheduled(ChatEvent):
    agent_id: str
    attempt: int
    delay: float


@dataclass
class ConversationStopped(ChatEvent):
    pass


@dataclass
class ConversationPaused(ChatEvent):
    paused: bool


@dataclass
class ConversationCleared(ChatEvent):
    pass


@dataclass
class RosterChanged(ChatEvent):
    agents: list[str]
