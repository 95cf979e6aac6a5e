from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any

_DEFAULT_DB_PATH = Path.home() / ".groupchat" / "groupchat.db"

DEFAULTS: dict[str, Any] = {
    "agents.enabled": ["moonshotai/kimi-k2-0905", "anthropic/claude-opus-4.5"],
    # Turn-taking (seconds)
    "scheduler.cooldown": 8.0,
    "scheduler.base_delay": 2.0,
    "scheduler.stagger": 0.5,
    "scheduler.jitter": 1.0,
    "scheduler.thinking_bonus": 2.0,
    "scheduler.engage_probability": 1.0,
    "scheduler.inter_turn_delay": 8.0,
    "scheduler.pause_recheck": 0.5,
    "scheduler.max_concurrent": 1,
    # Streaming
    "stream.request_timeout": 10.0,
    "stream.char_delay": 0.03,
    # Retries of empty / failed turns
    "retry.max_attempts": 2,
    "retry.priority": 90,
    "retry.backoff": 2.0,
    "context.window_size": 20,
    "completion.endpoint": "http://localhost:3000/api/chat",
    # Seconds a room with no connected socket survives; 0 keeps it forever
    "server.idle_ttl": 300.0,
}

_SCHEMA = """
CREATE TABLE IF NOT EXISTS settings (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class SettingsStore:
    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or _DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    def get(self, key: str, default: Any = ...) -> Any:
        with self._lock:
            cur = self._conn.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            )
            row = cur.fetchone()
        if row is not None:
            return json.loads(row[0])
        if default is not ...:
            return default
        return DEFAULTS.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, json.dumps(value)),
            )
            self._conn.commit()

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM settings WHERE key = ?", (key,))
            self._conn.commit()

    def get_all(self) -> dict[str, Any]:
        with self._lock:
            cur = self._conn.execute("SELECT key, value FROM settings")
            rows = {row[0]: json.loads(row[1]) for row in cur.fetchall()}
        result = dict(DEFAULTS)
        result.update(rows)
        return result

    def set_many(self, updates: dict[str, Any]) -> None:
        with self._lock:
            for key, value in updates.items():
                self._conn.execute(
                    "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                    (key, json.dumps(value)),
                )
            self._conn.commit()

    def get_effective(self, cli_overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """Stored settings over DEFAULTS, with CLI overrides on top."""
        result = self.get_all()
        if cli_overrides:
            result.update({k: v for k, v in cli_overrides.items() if v is not None})
        return result

    def close(self) -> None:
        with self._lock:
            self._conn.close()
