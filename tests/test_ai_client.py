import json

import httpx
import pytest

from gradebook.errors import (
    PermanentGradingError,
    TransientGradingError,
    UnparsableAIResponseError,
)
from gradebook.services.ai_client import ChatCompletionClient, parse_sse_line

MESSAGES = [{"role": "user", "content": "Grade this"}]


def completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def make_client(handler, delays=None, max_retries=3):
    async def sleep(delay):
        if delays is not None:
            delays.append(delay)

    http = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="https://ai.test/v1",
    )
    return ChatCompletionClient(
        model="test-model",
        max_retries=max_retries,
        retry_base_delay=1.0,
        retry_backoff=1.5,
        retry_max_delay=10.0,
        http_client=http,
        sleep=sleep,
    )


async def test_complete_sends_model_and_sampling_settings():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion("hello"))

    client = make_client(handler)
    assert await client.complete(MESSAGES, temperature=0.3, max_tokens=2000) == "hello"

    assert seen["url"] == "https://ai.test/v1/chat/completions"
    assert seen["body"]["model"] == "test-model"
    assert seen["body"]["temperature"] == 0.3
    assert seen["body"]["max_tokens"] == 2000
    assert seen["body"]["stream"] is False


async def test_complete_retries_server_errors_with_backoff():
    calls = []
    delays = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(502, json={"error": {"message": "bad gateway"}})
        return httpx.Response(200, json=completion("graded"))

    client = make_client(handler, delays)

    assert await client.complete(MESSAGES) == "graded"
    assert len(calls) == 3
    assert delays == [1.0, 1.5]


async def test_complete_retries_timeouts_then_gives_up():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    client = make_client(handler, max_retries=3)

    with pytest.raises(TransientGradingError):
        await client.complete(MESSAGES)
    assert len(calls) == 4


async def test_complete_does_not_retry_client_errors():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(401, json={"error": {"message": "invalid key"}})

    client = make_client(handler)

    with pytest.raises(PermanentGradingError) as exc_info:
        await client.complete(MESSAGES)

    assert len(calls) == 1
    assert exc_info.value.status_code == 401
    assert "invalid or expired" in str(exc_info.value)


async def test_complete_rejects_response_without_content():
    client = make_client(lambda request: httpx.Response(200, json={"choices": []}))

    with pytest.raises(UnparsableAIResponseError):
        await client.complete(MESSAGES)


# ---------------------------
# Streaming
# ---------------------------
def sse(*fragments, done=True, trailing_newline=True):
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": f}}]})
        for f in fragments
    ]
    if done:
        lines.append("data: [DONE]")
    body = "\n\n".join(lines)
    return (body + "\n" if trailing_newline else body).encode()


async def test_stream_forwards_fragments_until_done():
    body = sse("Good ", "work", done=True) + b"data: " + json.dumps(
        {"choices": [{"delta": {"content": "ignored"}}]}
    ).encode() + b"\n"
    client = make_client(lambda request: httpx.Response(200, content=body))
    chunks = []

    text = await client.stream(MESSAGES, chunks.append)

    assert text == "Good work"
    assert chunks == ["Good ", "work"]


async def test_stream_flushes_last_event_without_newline():
    body = sse("Part one. ", "Part two.", done=False, trailing_newline=False)
    client = make_client(lambda request: httpx.Response(200, content=body))
    chunks = []

    async def sink(fragment):
        chunks.append(fragment)

    text = await client.stream(MESSAGES, sink)

    assert text == "Part one. Part two."
    assert chunks == ["Part one. ", "Part two."]


async def test_stream_skips_malformed_events():
    body = b"data: {not json}\n\n" + sse("ok")
    client = make_client(lambda request: httpx.Response(200, content=body))

    assert await client.stream(MESSAGES, lambda fragment: None) == "ok"


async def test_stream_reports_http_errors():
    client = make_client(lambda request: httpx.Response(429, text="slow down"))

    with pytest.raises(PermanentGradingError):
        await client.stream(MESSAGES, lambda fragment: None)


def test_parse_sse_line():
    assert parse_sse_line("data: [DONE]") == (True, None)
    assert parse_sse_line(": keep-alive") == (False, None)
    assert parse_sse_line('data: {"choices": [{"delta": {}}]}') == (False, None)
