from dataclasses import dataclass, replace


@dataclass(frozen=True)
class Agent:
    id: str  # upstream model id
    name: str
    tag: str  # short name used for @mentions
    ordinal_index: int = 0
    deliberate: bool = False  # slow "thinking" models get extra delay


AVAILABLE_AGENTS: list[Agent] = [
    Agent(id="moonshotai/kimi-k2-0905", name="Kimi K2", tag="Kimi", deliberate=True),
    Agent(id="google/gemini-3-flash-preview", name="Gemini 3 Flash", tag="Gemini"),
    Agent(id="anthropic/claude-opus-4.5", name="Claude Opus 4.5", tag="Claude", deliberate=True),
    Agent(id="x-ai/grok-4.1-fast", name="Grok 4.1 Fast", tag="Grok"),
    Agent(id="openai/gpt-5.2", name="GPT 5.2", tag="GPT", deliberate=True),
]

_CATALOG: dict[str, Agent] = {a.id: a for a in AVAILABLE_AGENTS}


def get_agent(agent_id: str) -> Agent | None:
    return _CATALOG.get(agent_id)


def create_roster(ids_or_specs: list[str] | list[dict] | list[Agent]) -> list[Agent]:
    """Build an active roster, assigning ordinal indices in the given order.

    Items may be catalog ids, dicts with ``id``/``name``/``tag``/``deliberate``
    keys, or ``Agent`` instances. Unknown ids and duplicates raise ValueError.
    """
    agents: list[Agent] = []
    for item in ids_or_specs:
        if isinstance(item, str):
            known = _CATALOG.get(item)
            if known is None:
                raise ValueError(f"Unknown agent id: {item}")
            agents.append(known)
        elif isinstance(item, dict):
            agent_id = item.get("id", "")
            if not agent_id:
                raise ValueError(f"Invalid agent spec: {item!r}")
            base = _CATALOG.get(agent_id)
            tag = item.get("tag") or (base.tag if base else "")
            if not tag:
                raise ValueError(f"Agent '{agent_id}' needs a tag")
            agents.append(Agent(
                id=agent_id,
                name=item.get("name") or (base.name if base else tag),
                tag=tag,
                deliberate=bool(item.get("deliberate", base.deliberate if base else False)),
            ))
        elif isinstance(item, Agent):
            agents.append(item)
        else:
            raise ValueError(f"Invalid agent spec: {item!r}")

    seen: set[str] = set()
    for agent in agents:
        if agent.id in seen:
            raise ValueError(f"Duplicate agent id: {agent.id}")
        seen.add(agent.id)

    return [replace(agent, ordinal_index=i) for i, agent in enumerate(agents)]
