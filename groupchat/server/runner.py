from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

from fastapi import WebSocket

from ..chat.room import ChatRoom
from .protocol import event_to_dict
from .settings import SettingsStore

log = logging.getLogger("groupchat")

_DEFAULT_IDLE_TTL = 300.0


class RoomRunner:
    """Owns the live rooms and fans their events out to joined WebSockets."""

    def __init__(
        self,
        settings_store: SettingsStore,
        send_timeout: float = 120.0,
        client_factory: Callable[[dict[str, Any]], Any] | None = None,
        cli_overrides: dict[str, Any] | None = None,
        idle_ttl: float | None = None,
    ) -> None:
        self.settings_store = settings_store
        self.send_timeout = send_timeout
        self.client_factory = client_factory
        self.cli_overrides = cli_overrides or {}
        # None reads server.idle_ttl from the settings each time a room goes idle.
        self.idle_ttl = idle_ttl
        self._rooms: dict[str, ChatRoom] = {}
        self._subscribers: dict[str, set[WebSocket]] = {}
        self._pumps: dict[str, asyncio.Task] = {}
        self._idle_cleanup_tasks: dict[str, asyncio.Task] = {}

    def create_room(self, agents: list[str] | list[dict] | None = None) -> tuple[str, ChatRoom]:
        settings = self.settings_store.get_effective(self.cli_overrides)
        client = self.client_factory(settings) if self.client_factory else None
        room = ChatRoom.from_settings(settings, agents, client=client)
        session_id = uuid.uuid4().hex[:12]
        self._rooms[session_id] = room
        # Subscribe before the pump first runs so no early event is lost.
        queue = room.subscribe()
        self._pumps[session_id] = asyncio.create_task(
            self._pump(session_id, room, queue), name=f"pump-{session_id}",
        )
        self._log_metric("room_created", session_id=session_id, agents=[a.id for a in room.roster])
        return session_id, room

    def get_room(self, session_id: str) -> ChatRoom | None:
        return self._rooms.get(session_id)

    def list_rooms(self) -> list[str]:
        return list(self._rooms)

    def subscribe(self, session_id: str, ws: WebSocket) -> None:
        self._subscribers.setdefault(session_id, set()).add(ws)
        self._cancel_idle_cleanup(session_id)

    def unsubscribe(self, session_id: str, ws: WebSocket) -> None:
        subs = self._subscribers.get(session_id)
        if subs:
            subs.discard(ws)
            if not subs:
                self._subscribers.pop(session_id, None)
        if not self._subscribers.get(session_id) and session_id in self._rooms:
            self._schedule_idle_cleanup(session_id)

    def _effective_idle_ttl(self) -> float:
        if self.idle_ttl is not None:
            return self.idle_ttl
        settings = self.settings_store.get_effective(self.cli_overrides)
        return float(settings.get("server.idle_ttl", _DEFAULT_IDLE_TTL))

    def _cancel_idle_cleanup(self, session_id: str) -> None:
        task = self._idle_cleanup_tasks.pop(session_id, None)
        if task and not task.done():
            task.cancel()

    def _schedule_idle_cleanup(self, session_id: str) -> None:
        ttl = self._effective_idle_ttl()
        if ttl <= 0:
            return
        if session_id in self._idle_cleanup_tasks:
            return

        async def _close_after_idle() -> None:
            try:
                await asyncio.sleep(ttl)
            finally:
                if self._idle_cleanup_tasks.get(session_id) is asyncio.current_task():
                    self._idle_cleanup_tasks.pop(session_id, None)
            if self._subscribers.get(session_id):
                return
            log.info("closing room %s after %.1fs without subscribers", session_id, ttl)
            await self.close_room(session_id)

        self._idle_cleanup_tasks[session_id] = asyncio.create_task(
            _close_after_idle(),
            name=f"idle-cleanup-{session_id}",
        )

    async def broadcast(self, session_id: str, data: dict) -> int:
        subs = list(self._subscribers.get(session_id, ()))
        failures = 0
        for ws in subs:
            try:
                await asyncio.wait_for(ws.send_json(data), timeout=self.send_timeout)
            except Exception:
                failures += 1
                log.debug("send failed for session %s", session_id, exc_info=True)
                self.unsubscribe(session_id, ws)
        return failures

    async def _pump(self, session_id: str, room: ChatRoom, queue: asyncio.Queue) -> None:
        try:
            while True:
                event = await queue.get()
                await self.broadcast(session_id, event_to_dict(event))
        finally:
            room.unsubscribe(queue)

    async def close_room(self, session_id: str) -> None:
        self._cancel_idle_cleanup(session_id)
        room = self._rooms.pop(session_id, None)
        pump = self._pumps.pop(session_id, None)
        self._subscribers.pop(session_id, None)
        if room is not None:
            await room.close()
        if pump is not None:
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)
        if room is not None:
            self._log_metric("room_closed", session_id=session_id)

    async def shutdown(self) -> None:
        for session_id in list(self._rooms):
            await self.close_room(session_id)

    def _log_metric(self, name: str, **fields: object) -> None:
        payload = {"metric": name, "ts": time.time(), "service": "groupchat", **fields}
        log.info("metric %s", json.dumps(payload, separators=(",", ":"), sort_keys=True))
