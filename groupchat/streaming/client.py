"""Client for the upstream chat-completion streaming endpoint.

The endpoint takes ``{"model", "messages"}`` and answers with server-sent
events: ``data: {"content": ...}`` fragments, ``data: {"error": ...}`` on
failure, and a final ``data: [DONE]``.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncGenerator
from typing import Any

import httpx

log = logging.getLogger("groupchat")

DEFAULT_ENDPOINT = "http://localhost:3000/api/chat"
_DONE_SENTINEL = "[DONE]"


class CompletionError(Exception):
    """Upstream returned an error status or an in-stream error event."""


def _try_parse_json(data: str, *, model: str) -> Any | None:
    try:
        return json.loads(data)
    except (json.JSONDecodeError, ValueError):
        truncated = data[:200] + "..." if len(data) > 200 else data
        log.debug("[%s] sse parse failed: %s", model, truncated)
        return None


def _error_message(status_code: int, body: bytes) -> str:
    message = f"API error: {status_code}"
    if not body:
        return message
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, ValueError):
        return message
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return message


class CompletionClient:
    def __init__(
        self,
        endpoint: str | None = None,
        *,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoint = endpoint or os.getenv("GROUPCHAT_ENDPOINT", DEFAULT_ENDPOINT)
        self.api_key = api_key if api_key is not None else os.getenv("GROUPCHAT_API_KEY")
        # No client-side read timeout: the session manager owns the deadline.
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(None, connect=10.0))
        self._owns_client = client is None

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def stream_completion(
        self, model: str, messages: list[dict[str, str]],
    ) -> AsyncGenerator[str, None]:
        """Yield content fragments until the end sentinel or end of body."""
        payload = {"model": model, "messages": messages}
        async with self._client.stream(
            "POST", self.endpoint, json=payload, headers=self._headers(),
        ) as response:
            if not response.is_success:
                body = await response.aread()
                raise CompletionError(_error_message(response.status_code, body))

            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if not data:
                    continue
                if data == _DONE_SENTINEL:
                    return
                event = _try_parse_json(data, model=model)
                if not isinstance(event, dict):
                    continue
                if event.get("error"):
                    raise CompletionError(str(event["error"]))
                content = event.get("content")
                if content:
                    yield content

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
