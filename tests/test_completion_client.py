import json

import httpx
import pytest

from groupchat.streaming.client import CompletionClient, CompletionError


def _sse(*events):
    lines = []
    for event in events:
        data = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {data}\n\n")
    return "".join(lines)


def _client(handler, **kwargs):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CompletionClient("http://upstream.test/api/chat", client=http, **kwargs)


async def _collect(client, model="test/alpha"):
    return [c async for c in client.stream_completion(model, [{"role": "user", "content": "hi"}])]


@pytest.mark.asyncio
async def test_streams_content_until_done():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, text=_sse({"content": "Hel"}, {"content": "lo"}, "[DONE]", {"content": "late"}))

    chunks = await _collect(_client(handler))

    assert chunks == ["Hel", "lo"]
    assert seen["body"] == {"model": "test/alpha", "messages": [{"role": "user", "content": "hi"}]}


@pytest.mark.asyncio
async def test_skips_malformed_and_empty_events():
    def handler(request):
        body = ": keepalive\n\n" + "data: {not json\n\n" + _sse({"content": ""}, {"other": 1}, {"content": "ok"})
        return httpx.Response(200, text=body)

    assert await _collect(_client(handler)) == ["ok"]


@pytest.mark.asyncio
async def test_error_status_uses_error_field():
    def handler(request):
        return httpx.Response(429, json={"error": "Rate limited"})

    with pytest.raises(CompletionError, match="Rate limited"):
        await _collect(_client(handler))


@pytest.mark.asyncio
async def test_error_status_without_body():
    def handler(request):
        return httpx.Response(502, text="bad gateway")

    with pytest.raises(CompletionError, match="API error: 502"):
        await _collect(_client(handler))


@pytest.mark.asyncio
async def test_in_stream_error_event_raises():
    def handler(request):
        return httpx.Response(200, text=_sse({"content": "par"}, {"error": "Stream error"}))

    client = _client(handler)
    chunks = []
    with pytest.raises(CompletionError, match="Stream error"):
        async for chunk in client.stream_completion("test/alpha", []):
            chunks.append(chunk)
    assert chunks == ["par"]


@pytest.mark.asyncio
async def test_sends_bearer_token_when_configured():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, text=_sse("[DONE]"))

    await _collect(_client(handler, api_key="sk-test"))

    assert seen["auth"] == "Bearer sk-test"


@pytest.mark.asyncio
async def test_endpoint_from_environment(monkeypatch):
    monkeypatch.setenv("GROUPCHAT_ENDPOINT", "http://env.test/chat")
    client = CompletionClient(client=httpx.AsyncClient())
    assert client.endpoint == "http://env.test/chat"
