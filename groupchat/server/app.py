from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, PlainTextResponse

from ..agents import AVAILABLE_AGENTS
from ..chat.room import ChatRoom
from .runner import RoomRunner
from .settings import DEFAULTS, SettingsStore

log = logging.getLogger("groupchat")

# --- WebSocket message validation ---

_MAX_WS_MESSAGE_SIZE = 256 * 1024

_VALID_MSG_TYPES = frozenset({
    "create_session", "join_session", "message", "stop", "pause", "resume",
    "new_conversation", "add_agent", "remove_agent",
})

_REQUIRED_FIELDS: dict[str, list[str]] = {
    "join_session": ["session_id"],
    "message": ["text"],
    "add_agent": ["agent_id"],
    "remove_agent": ["agent_id"],
}

# Rate limiting: max messages per window
_RATE_LIMIT_WINDOW = 10.0  # seconds
_RATE_LIMIT_MAX = 100  # messages per window


def _validate_ws_message(msg: dict) -> str | None:
    """Validate a WebSocket message shape. Returns error string or None."""
    if not isinstance(msg, dict):
        return "Message must be a JSON object"
    msg_type = msg.get("type")
    if not isinstance(msg_type, str):
        return "Missing or invalid 'type' field"
    if msg_type not in _VALID_MSG_TYPES:
        return f"Unknown message type: {msg_type}"
    for field in _REQUIRED_FIELDS.get(msg_type, []):
        if field not in msg or msg[field] is None:
            return f"Missing required field '{field}' for {msg_type}"
    return None


def create_app(
    settings_store: SettingsStore | None = None,
    send_timeout: float = 120.0,
    client_factory: Callable[[dict[str, Any]], Any] | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> FastAPI:
    settings = settings_store or SettingsStore()
    runner = RoomRunner(
        settings,
        send_timeout=send_timeout,
        client_factory=client_factory,
        cli_overrides=cli_overrides,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await runner.shutdown()

    app = FastAPI(title="Groupchat", lifespan=lifespan)
    app.state.runner = runner

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "rooms": len(runner.list_rooms())}

    @app.get("/api/agents")
    def list_agents():
        return [asdict(a) for a in AVAILABLE_AGENTS]

    @app.get("/api/sessions/{session_id}/messages")
    def get_messages(session_id: str):
        room = runner.get_room(session_id)
        if room is None:
            return JSONResponse(status_code=404, content={"detail": "Not found"})
        return [m.to_dict() for m in room.messages]

    @app.get("/api/sessions/{session_id}/export")
    def export_session(session_id: str):
        room = runner.get_room(session_id)
        if room is None:
            return JSONResponse(status_code=404, content={"detail": "Not found"})
        return PlainTextResponse(
            room.transcript(),
            headers={"Content-Disposition": f'attachment; filename="chat-{session_id}.txt"'},
        )

    # --- Settings REST API ---

    @app.get("/api/settings")
    def get_settings():
        return settings.get_all()

    @app.put("/api/settings")
    def update_settings(body: dict):
        invalid = [k for k in body if k not in DEFAULTS]
        if invalid:
            return JSONResponse(status_code=400, content={"detail": f"Unknown settings keys: {invalid}"})
        settings.set_many(body)
        return settings.get_all()

    @app.get("/api/settings/{key:path}")
    def get_setting(key: str):
        if key not in DEFAULTS:
            return JSONResponse(status_code=404, content={"detail": f"Unknown settings key: {key}"})
        return {"key": key, "value": settings.get(key)}

    @app.put("/api/settings/{key:path}")
    def update_setting(key: str, body: dict):
        if key not in DEFAULTS:
            return JSONResponse(status_code=400, content={"detail": f"Unknown settings key: {key}"})
        if "value" not in body:
            return JSONResponse(status_code=400, content={"detail": "Missing 'value' in request body"})
        settings.set(key, body["value"])
        return {"key": key, "value": body["value"]}

    @app.delete("/api/settings/{key:path}")
    def delete_setting(key: str):
        settings.delete(key)
        return {"ok": True}

    async def _handle(ws: WebSocket, room: ChatRoom, msg: dict) -> None:
        msg_type = msg["type"]
        if msg_type == "message":
            text = str(msg["text"]).strip()
            if not text:
                await ws.send_json({"type": "error", "message": "Empty message"})
                return
            room.post_user_message(text)
        elif msg_type == "stop":
            room.stop()
        elif msg_type == "pause":
            room.pause()
        elif msg_type == "resume":
            room.resume()
        elif msg_type == "new_conversation":
            room.new_conversation()
        elif msg_type == "add_agent":
            try:
                room.add_agent(msg["agent_id"])
            except ValueError as exc:
                await ws.send_json({"type": "error", "message": str(exc)})
        elif msg_type == "remove_agent":
            room.remove_agent(msg["agent_id"])

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket) -> None:
        await ws.accept()
        log.info("ws connected")
        session_id: str | None = None
        await ws.send_json({"type": "connected", "agents": [a.id for a in AVAILABLE_AGENTS]})

        _rate_timestamps: list[float] = []

        try:
            while True:
                raw = await ws.receive_text()
                if len(raw) > _MAX_WS_MESSAGE_SIZE:
                    await ws.send_json({"type": "error", "message": f"Message too large (max {_MAX_WS_MESSAGE_SIZE} bytes)"})
                    continue

                try:
                    msg = json.loads(raw)
                except (json.JSONDecodeError, ValueError):
                    await ws.send_json({"type": "error", "message": "Invalid JSON"})
                    continue

                validation_error = _validate_ws_message(msg)
                if validation_error:
                    await ws.send_json({"type": "error", "message": validation_error})
                    continue

                now = time.monotonic()
                _rate_timestamps = [t for t in _rate_timestamps if now - t < _RATE_LIMIT_WINDOW]
                _rate_timestamps.append(now)
                if len(_rate_timestamps) > _RATE_LIMIT_MAX:
                    await ws.send_json({"type": "error", "message": "Rate limit exceeded, slow down"})
                    continue

                msg_type = msg["type"]

                if msg_type == "create_session":
                    try:
                        sid, room = runner.create_room(msg.get("agents"))
                    except ValueError as exc:
                        await ws.send_json({"type": "error", "message": str(exc)})
                        continue
                    if session_id:
                        runner.unsubscribe(session_id, ws)
                    session_id = sid
                    runner.subscribe(session_id, ws)
                    await ws.send_json({
                        "type": "session_created",
                        "session_id": session_id,
                        "agents": [asdict(a) for a in room.roster],
                    })
                    continue

                if msg_type == "join_session":
                    room = runner.get_room(msg["session_id"])
                    if room is None:
                        await ws.send_json({"type": "error", "message": "Session not found"})
                        continue
                    if session_id:
                        runner.unsubscribe(session_id, ws)
                    session_id = msg["session_id"]
                    runner.subscribe(session_id, ws)
                    await ws.send_json({
                        "type": "session_joined",
                        "session_id": session_id,
                        "agents": [asdict(a) for a in room.roster],
                        "messages": [m.to_dict() for m in room.messages],
                        "paused": room.paused,
                    })
                    continue

                room = runner.get_room(session_id) if session_id else None
                if room is None:
                    await ws.send_json({"type": "error", "message": "No active session"})
                    continue
                await _handle(ws, room, msg)
                # Give the room's event pump a chance to flush before the next read.
                await asyncio.sleep(0)
        except WebSocketDisconnect:
            log.info("ws disconnected")
        finally:
            if session_id:
                runner.unsubscribe(session_id, ws)

    return app
