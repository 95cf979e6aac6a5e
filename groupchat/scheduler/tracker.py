from __future__ import annotations


class CooldownTracker:
    """Per-agent last-response timestamps and consecutive-silence counters."""

    def __init__(self) -> None:
        self._last_response: dict[str, float] = {}
        self._silence: dict[str, int] = {}

    def record_response(self, agent_id: str, now: float) -> None:
        self._last_response[agent_id] = now
        self._silence[agent_id] = 0

    def last_response_at(self, agent_id: str) -> float | None:
        return self._last_response.get(agent_id)

    def on_cooldown(self, agent_id: str, now: float, window: float) -> bool:
        last = self._last_response.get(agent_id)
        if last is None:
            return False
        return now - last < window

    def clear_cooldown(self, agent_id: str) -> None:
        self._last_response.pop(agent_id, None)

    def silence(self, agent_id: str) -> int:
        return self._silence.get(agent_id, 0)

    def bump_silence(self, agent_id: str) -> int:
        """Count one more evaluated-but-unanswered turn. Returns the previous count."""
        previous = self._silence.get(agent_id, 0)
        self._silence[agent_id] = previous + 1
        return previous

    def clear(self) -> None:
        self._last_response.clear()
        self._silence.clear()
