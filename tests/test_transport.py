"""Tests for the httpx streaming transport."""

from __future__ import annotations

import json

import httpx
import pytest

from parley.orchestration.cancellation import CancellationScope
from parley.orchestration.errors import TransportError
from parley.services.transport import HttpStreamingTransport, parse_ndjson_line, parse_sse_line


def _sse(*deltas: str) -> bytes:
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": delta}}]})
        for delta in deltas
    ]
    lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode()


def _ndjson(*deltas: str) -> bytes:
    lines = [json.dumps({"message": {"role": "assistant", "content": delta}, "done": False}) for delta in deltas]
    lines.append(json.dumps({"message": {"role": "assistant", "content": ""}, "done": True}))
    return ("\n".join(lines) + "\n").encode()


def _transport(handler) -> HttpStreamingTransport:
    return HttpStreamingTransport(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class _Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple[str, bool, bool]] = []

    def __call__(self, text: str, is_finished: bool, is_error: bool) -> None:
        self.calls.append((text, is_finished, is_error))


def test_parse_sse_line() -> None:
    assert parse_sse_line('data: {"choices": [{"delta": {"content": "Hi"}}]}') == ("Hi", False)
    assert parse_sse_line("data: [DONE]") == ("", True)
    assert parse_sse_line(": keep-alive") == ("", False)
    assert parse_sse_line("data: {not json") == ("", False)
    with pytest.raises(TransportError, match="bad key"):
        parse_sse_line('data: {"error": {"message": "bad key"}}')


def test_parse_ndjson_line() -> None:
    assert parse_ndjson_line('{"message": {"content": "Hi"}, "done": false}') == ("Hi", False)
    assert parse_ndjson_line('{"message": {"content": ""}, "done": true}') == ("", True)
    assert parse_ndjson_line("") == ("", False)


@pytest.mark.asyncio
async def test_streams_openai_sse_with_accumulated_text() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=_sse("Hel", "lo", "!"), headers={"content-type": "text/event-stream"})

    recorder = _Recorder()
    transport = _transport(handler)

    await transport.stream(
        "https://api.groq.com/openai/v1/chat/completions",
        {"stream": True, "model": "m", "messages": []},
        recorder,
        {"Authorization": "Bearer k"},
        "groq",
        CancellationScope(),
    )

    assert recorder.calls == [
        ("Hel", False, False),
        ("Hello", False, False),
        ("Hello!", False, False),
        ("Hello!", True, False),
    ]
    assert seen["auth"] == "Bearer k"
    assert seen["body"]["model"] == "m"


@pytest.mark.asyncio
async def test_streams_ollama_ndjson() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_ndjson("Hi", " there"))

    recorder = _Recorder()

    await _transport(handler).stream(
        "http://localhost:11434/api/chat", {}, recorder, None, "ollama", CancellationScope()
    )

    assert recorder.calls[-1] == ("Hi there", True, False)
    assert [call for call in recorder.calls if not call[1]] == [("Hi", False, False), ("Hi there", False, False)]


@pytest.mark.asyncio
async def test_http_error_reports_single_error_chunk() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text='{"error": "invalid api key"}')

    recorder = _Recorder()

    await _transport(handler).stream("https://x/chat", {}, recorder, None, "openai", CancellationScope())

    assert len(recorder.calls) == 1
    text, finished, error = recorder.calls[0]
    assert finished and error
    assert text.startswith("HTTP 401")
    assert "invalid api key" in text


@pytest.mark.asyncio
async def test_connection_failure_reports_error_chunk() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    recorder = _Recorder()

    await _transport(handler).stream("https://x/chat", {}, recorder, None, "openai", CancellationScope())

    assert recorder.calls == [("connection refused", True, True)]
