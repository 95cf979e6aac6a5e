from __future__ import annotations

from datetime import datetime, timezone

from ..chat.events import (
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


def _ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def event_to_dict(event: ChatEvent) -> dict:
    match event:
        case MessageAdded(message=message):
            return {"type": "message_added", "message": message.to_dict()}
        case AgentStreamChunk(agent_id=agent, message_id=mid, text=text):
            return {"type": "agent_stream", "agent": agent, "message_id": mid, "chunk": text}
        case AgentCompleted(agent_id=agent, message=message, result=result, final=final):
            return {
                "type": "agent_completed",
                "agent": agent,
                "message_id": message.id,
                "text": message.text,
                "outcome": result.outcome.value,
                "placeholder": result.placeholder,
                "error": result.error,
                "latency_ms": result.latency_ms,
                "final": final,
                "created_at": _ts(),
            }
        case MessageRetracted(message_id=mid, agent_id=agent):
            return {"type": "message_retracted", "agent": agent, "message_id": mid}
        case RetryScheduled(agent_id=agent, attempt=attempt, delay=delay):
            return {"type": "retry_scheduled", "agent": agent, "attempt": attempt, "delay": delay}
        case ConversationStopped():
            return {"type": "stopped", "created_at": _ts()}
        case ConversationPaused(paused=paused):
            return {"type": "paused" if paused else "resumed", "created_at": _ts()}
        case ConversationCleared():
            return {"type": "cleared", "created_at": _ts()}
        case RosterChanged(agents=agents):
            return {"type": "roster_changed", "agents": agents}
        case _:
            return {"type": "unknown"}
