from __future__ import annotations

import re

HUMAN_AUTHOR = "user"
SYSTEM_AUTHOR = "system"

# Same shape as the frontend mention highlighter: "@tag" not preceded by "/".
_MENTION_RE = re.compile(r"(?<!/)@(\w+)")


def extract_mentions(text: str) -> list[str]:
    """Extract @Tag mentions from text."""
    return _MENTION_RE.findall(text)


def is_mentioned(text: str, tag: str) -> bool:
    """Return True if *text* contains ``@tag`` (case-insensitive, word boundary)."""
    if not tag:
        return False
    pattern = re.compile(rf"@{re.escape(tag)}\b", re.IGNORECASE)
    return bool(pattern.search(text))


def is_question(text: str) -> bool:
    return "?" in text


def author_label(author: str, names: dict[str, str] | None = None) -> str:
    """Display label for a message author: ``User``, ``System`` or the agent name."""
    if author == HUMAN_AUTHOR:
        return "User"
    if author == SYSTEM_AUTHOR:
        return "System"
    if names and author in names:
        return names[author]
    return author
