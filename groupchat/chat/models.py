from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field

from .router import HUMAN_AUTHOR, SYSTEM_AUTHOR


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class Message:
    """A single entry in the conversation feed."""

    author: str  # "user", "system", or an agent id
    text: str
    id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=time.time)
    author_name: str = ""
    streaming: bool = False

    @property
    def is_human(self) -> bool:
        return self.author == HUMAN_AUTHOR

    @property
    def is_system(self) -> bool:
        return self.author == SYSTEM_AUTHOR

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "author": self.author,
            "author_name": self.author_name,
            "text": self.text,
            "created_at": self.created_at,
            "streaming": self.streaming,
        }
