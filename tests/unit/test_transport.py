# tests/unit/test_transport.py

from __future__ import annotations
import json
import sys
from pathlib import Path
import httpx
import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from prepchat.core.errors import ApiError, StreamCancelled, StreamProcessingError
from prepchat.core.models import ProviderFamily
from prepchat.transport.http import (
    CancelToken,
    ChatTransport,
    PreparedRequest,
    TransportMode,
    TransportState,
    remainder,
)

ENDPOINT = "https://api.example.test/v1/chat"
PROXY = "http://proxy.test/api/proxy"
SSE = {"content-type": "text/event-stream"}


def _req(stream=True):
    return PreparedRequest(
        endpoint=ENDPOINT,
        body={"model": "m", "messages": [{"role": "user", "content": "hi"}], "stream": stream},
        headers={"Authorization": "Bearer k", "Content-Type": "application/json"},
        family=ProviderFamily.OPENAI,
        model="m",
    )


def _sse(text):
    return f'data: {json.dumps({"choices": [{"delta": {"content": text}}]}, ensure_ascii=False)}\n\n'.encode()


def _full(text):
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


def _transport(handler, mode=TransportMode.DIRECT):
    return ChatTransport(mode, PROXY, client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_direct_buffered_posts_body_to_endpoint():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_full("Hello"))

    t = _transport(handler)
    assert t.send(_req(stream=False)) == "Hello"
    assert seen["url"] == ENDPOINT
    assert seen["auth"] == "Bearer k"
    assert seen["body"]["model"] == "m"
    assert t.state is TransportState.COMPLETED


def test_proxied_wraps_request_in_envelope():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["envelope"] = json.loads(request.content)
        return httpx.Response(200, json=_full("Hi"))

    t = _transport(handler, TransportMode.PROXIED)
    assert t.send(_req(stream=False)) == "Hi"
    env = seen["envelope"]
    assert seen["url"] == PROXY
    assert env["target"] == ENDPOINT
    assert env["headers"]["Authorization"] == "Bearer k"
    assert env["data"]["messages"][0]["content"] == "hi"
    assert env["stream"] is False


def test_direct_stream_emits_deltas_in_order():
    def handler(request):
        chunks = [_sse("Hel"), _sse("lo"), b"data: [DONE]\n\n"]
        return httpx.Response(200, headers=SSE, content=iter(chunks))

    got = []
    t = _transport(handler)
    assert t.send(_req(), stream=True, on_delta=got.append) == "Hello"
    assert got == ["Hel", "lo"]
    assert t.state is TransportState.COMPLETED


def test_stream_reassembles_split_lines_and_multibyte_chars():
    raw = _sse("é") + _sse("!")
    cut = raw.index(b"\xc3") + 1  # inside the two-byte "é"

    def handler(request):
        return httpx.Response(200, headers=SSE, content=iter([raw[:cut], raw[cut:]]))

    got = []
    assert _transport(handler).send(_req(), stream=True, on_delta=got.append) == "é!"
    assert "�" not in "".join(got)


def test_api_error_uses_provider_message_and_status():
    def handler(request):
        return httpx.Response(401, json={"error": {"message": "Incorrect API key provided"}})

    t = _transport(handler)
    with pytest.raises(ApiError) as ei:
        t.send(_req(stream=False))
    assert str(ei.value) == "Incorrect API key provided"
    assert ei.value.status_code == 401
    assert t.state is TransportState.FAILED


def test_api_error_falls_back_to_status_text():
    def handler(request):
        return httpx.Response(500, text="<html>oops</html>")

    with pytest.raises(ApiError) as ei:
        _transport(handler).send(_req(stream=False))
    assert str(ei.value) == "Internal Server Error"


def test_stream_error_status_raises_api_error():
    def handler(request):
        return httpx.Response(429, json={"message": "slow down"})

    with pytest.raises(ApiError) as ei:
        _transport(handler).send(_req(), stream=True)
    assert str(ei.value) == "slow down"
    assert ei.value.status_code == 429


def test_connection_failure_is_api_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ApiError, match="connection refused"):
        _transport(handler).send(_req(stream=False))


def _broken_stream():
    yield _sse("Hel")
    raise httpx.ReadError("connection reset")


def test_direct_stream_failure_surfaces():
    def handler(request):
        return httpx.Response(200, headers=SSE, content=_broken_stream())

    t = _transport(handler)
    with pytest.raises(StreamProcessingError):
        t.send(_req(), stream=True)
    assert t.state is TransportState.FAILED


def test_proxied_stream_failure_retries_buffered():
    calls = []

    def handler(request):
        env = json.loads(request.content)
        calls.append(env["stream"])
        if env["stream"]:
            return httpx.Response(200, headers=SSE, content=_broken_stream())
        assert env["data"]["stream"] is False
        return httpx.Response(200, json=_full("Hello world"))

    got = []
    t = _transport(handler, TransportMode.PROXIED)
    assert t.send(_req(), stream=True, on_delta=got.append) == "Hello world"
    assert calls == [True, False]
    assert got == ["Hel", "lo world"]
    assert t.state is TransportState.COMPLETED


def test_cancel_stops_stream_between_reads():
    def handler(request):
        return httpx.Response(200, headers=SSE, content=iter([_sse("one"), _sse("two"), _sse("three")]))

    token = CancelToken()
    got = []

    def on_delta(delta):
        got.append(delta)
        token.cancel()

    with pytest.raises(StreamCancelled):
        _transport(handler).send(_req(), stream=True, on_delta=on_delta, cancel=token)
    assert got == ["one"]


def test_buffered_copy_turns_streaming_off():
    req = _req(stream=True)
    assert req.buffered().body["stream"] is False
    assert req.body["stream"] is True
    no_flag = PreparedRequest(endpoint=ENDPOINT, body={"model": "m"})
    assert no_flag.buffered() is no_flag


def test_mode_for_host():
    assert TransportMode.for_host("localhost") is TransportMode.DIRECT
    assert TransportMode.for_host("127.0.0.1") is TransportMode.DIRECT
    assert TransportMode.for_host("chat.example.com") is TransportMode.PROXIED


def test_proxied_fallback_delivers_whole_answer_after_error_status():
    def handler(request):
        env = json.loads(request.content)
        if env["stream"]:
            return httpx.Response(502, json={"error": "Bad gateway"})
        return httpx.Response(200, json=_full("FULL ANSWER"))

    got = []
    t = _transport(handler, TransportMode.PROXIED)
    assert t.send(_req(), stream=True, on_delta=got.append) == "FULL ANSWER"
    assert got == ["FULL ANSWER"]


def test_remainder_of_fallback_text():
    assert remainder("Hello world", "Hel") == "lo world"
    assert remainder("Hello world", "") == "Hello world"
    assert remainder("Different", "Hel") == "Different"
    assert remainder("Hel", "Hel") == ""
