"""End-to-end tests for CompletionHandler against httpx.MockTransport."""

import asyncio

import httpx
import pytest

from streamwire.config import resolve_settings
from streamwire.errors import ConfigError, ErrorKind, NoContentError, ProtocolError
from streamwire.llm.handler import CompletionHandler, CreateMessageOptions
from streamwire.types import EventKind

from helpers import SCENARIO_C, SCENARIO_D, Recorder

USER_Q = [{"role": "user", "content": "What is 2+2?"}]


def _custom(**overrides):
    return resolve_settings("custom", {"model_id": "local-model", **overrides})


def _handler(settings, recorder, sink=None):
    return CompletionHandler(settings, diagnostics=sink, http_transport=recorder.transport)


async def _collect(agen):
    return [event async for event in agen]


def _kinds(events):
    return [e.kind for e in events]


# ---------------------------------------------------------------------------
# Streaming round trips
# ---------------------------------------------------------------------------

class TestCreateMessage:
    async def test_streaming_scenario(self, sink):
        recorder = Recorder(chunks=[SCENARIO_C])
        handler = _handler(_custom(), recorder, sink)

        events = await _collect(handler.create_message("Be brief.", USER_Q))

        assert _kinds(events) == [EventKind.CONTENT, EventKind.CONTENT, EventKind.DONE]
        assert "".join(e.text for e in events) == "Hello"

        request = recorder.requests[0]
        assert str(request.url) == "http://localhost:8000/v1/chat/completions"
        body = recorder.body()
        assert body["model"] == "local-model"
        assert body["stream"] is True
        assert body["stream_options"] == {"include_usage": True}
        assert body["temperature"] == 0.0
        assert body["messages"] == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "What is 2+2?"},
        ]
        assert "max_completion_tokens" not in body
        assert any(line.startswith("Status: 200") for line in sink.lines)

    async def test_whole_document_response(self):
        recorder = Recorder(chunks=[SCENARIO_D[:10], SCENARIO_D[10:]])
        events = await _collect(_handler(_custom(), recorder).create_message("S", USER_Q))
        assert _kinds(events) == [EventKind.CONTENT, EventKind.USAGE, EventKind.DONE]
        assert events[0].text == "hi"

    async def test_error_status(self):
        recorder = Recorder(status=401, chunks=[b'{"error":{"message":"bad key"}}'])
        events = await _collect(_handler(_custom(), recorder).create_message("S", USER_Q))
        assert len(events) == 1
        assert events[0].error_kind == ErrorKind.PROTOCOL
        assert events[0].message == "bad key"
        assert events[0].error.status_code == 401

    async def test_error_document_with_200(self):
        recorder = Recorder(chunks=[b'{"error":{"message":"bad key"}}'])
        events = await _collect(_handler(_custom(), recorder).create_message("S", USER_Q))
        assert _kinds(events) == [EventKind.ERROR]
        assert events[0].message == "bad key"

    async def test_format_error_sends_nothing(self):
        recorder = Recorder()
        events = await _collect(_handler(_custom(), recorder).create_message("S", []))
        assert len(events) == 1
        assert events[0].error_kind == ErrorKind.FORMAT
        assert events[0].message == "No user messages or prompt provided"
        assert recorder.requests == []

    async def test_connection_refused(self):
        recorder = Recorder(exc=httpx.ConnectError("Connection refused"))
        events = await _collect(_handler(_custom(), recorder).create_message("S", USER_Q))
        assert _kinds(events) == [EventKind.ERROR]
        assert events[0].error_kind == ErrorKind.TRANSPORT

    async def test_redirect_loop(self):
        def loop(request):
            return httpx.Response(302, headers={"Location": str(request.url)})

        handler = CompletionHandler(_custom(), http_transport=httpx.MockTransport(loop))
        events = await _collect(handler.create_message("S", USER_Q))
        assert _kinds(events) == [EventKind.ERROR]
        assert events[0].error_kind == ErrorKind.TRANSPORT
        assert "redirect" in events[0].message.lower()

    async def test_undecodable_body(self):
        def bad_gzip(request):
            return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"not gzip")

        handler = CompletionHandler(_custom(), http_transport=httpx.MockTransport(bad_gzip))
        events = await _collect(handler.create_message("S", USER_Q))
        assert _kinds(events) == [EventKind.ERROR]
        assert events[0].error_kind == ErrorKind.TRANSPORT

    async def test_timeout_mid_stream(self):
        first = b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n'
        second = b'data: {"choices":[{"delta":{"content":"lo"}}]}\n'
        recorder = Recorder(chunks=[first, second], stall_after=1)
        handler = _handler(_custom(request_timeout_ms=200), recorder)

        events = await _collect(handler.create_message("S", USER_Q))

        assert _kinds(events) == [EventKind.CONTENT, EventKind.ERROR]
        assert events[0].text == "Hel"
        assert events[1].error_kind == ErrorKind.TRANSPORT
        assert recorder.streams[0].closed

    async def test_abandoning_the_stream_closes_the_connection(self):
        recorder = Recorder(chunks=[SCENARIO_C])
        agen = _handler(_custom(), recorder).create_message("S", USER_Q)
        first = await agen.__anext__()
        assert first.text == "Hel"
        await agen.aclose()
        assert recorder.streams[0].closed

    async def test_reasoning_events(self):
        body = (
            b'data: {"choices":[{"delta":{"reasoning_content":"thinking"}}]}\n'
            b'data: {"choices":[{"delta":{"content":"4"}}]}\n'
            b"data: [DONE]\n"
        )
        recorder = Recorder(chunks=[body])
        events = await _collect(_handler(_custom(), recorder).create_message("S", USER_Q))
        assert _kinds(events) == [EventKind.REASONING, EventKind.CONTENT, EventKind.DONE]

    async def test_concurrent_requests_are_independent(self):
        recorder = Recorder(chunks=[SCENARIO_C])
        handler = _handler(_custom(), recorder)
        results = await asyncio.gather(
            _collect(handler.create_message("S", USER_Q)),
            _collect(handler.create_message("S", USER_Q)),
            _collect(handler.create_message("S", USER_Q)),
        )
        for events in results:
            assert "".join(e.text for e in events) == "Hello"
            assert events[-1].kind == EventKind.DONE
        assert len(recorder.requests) == 3


# ---------------------------------------------------------------------------
# Provider-specific request shapes
# ---------------------------------------------------------------------------

class TestRequestShapes:
    async def test_deepseek_reasoner(self):
        settings = resolve_settings("deepseek", {"api_key": "sk-test"})
        recorder = Recorder(chunks=[SCENARIO_D])
        events = await _collect(_handler(settings, recorder).create_message("S", USER_Q))
        assert events[0].text == "hi"

        request = recorder.requests[0]
        assert str(request.url) == "https://api.deepseek.com/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-test"
        body = recorder.body()
        assert body["model"] == "deepseek-reasoner"
        assert "stream" not in body
        assert body["temperature"] == 0.6
        assert body["messages"] == [{"role": "user", "content": "S\nWhat is 2+2?"}]

    def test_deepseek_chat_prompt_cache(self):
        settings = resolve_settings("deepseek", {"api_key": "k", "model_id": "deepseek-chat"})
        handler = CompletionHandler(settings)
        history = [
            {"role": "user", "content": "a"},
            {"role": "assistant", "content": "b"},
            {"role": "user", "content": "c"},
        ]
        messages = handler.build_request("S", history).body["messages"]
        ephemeral = {"type": "ephemeral"}
        assert messages[0]["content"] == [{"type": "text", "text": "S", "cache_control": ephemeral}]
        assert messages[1]["content"][-1]["cache_control"] == ephemeral
        assert messages[3]["content"][-1]["cache_control"] == ephemeral
        assert messages[2]["content"] == "b"

    def test_developer_family(self):
        settings = resolve_settings("openai", {"api_key": "k", "model_id": "o3-mini"})
        body = CompletionHandler(settings).build_request("S", USER_Q).body
        assert body["messages"][0] == {"role": "developer", "content": "Formatting re-enabled\nS"}
        assert body["reasoning_effort"] == "medium"
        assert "temperature" not in body

    def test_max_completion_tokens(self):
        handler = CompletionHandler(_custom())
        options = CreateMessageOptions(include_max_tokens=True, max_tokens=256)
        body = handler.build_request("S", USER_Q, options).body
        assert body["max_completion_tokens"] == 256

    def test_max_tokens_from_model_table(self):
        settings = resolve_settings("openai", {"api_key": "k", "include_max_tokens": True})
        body = CompletionHandler(settings).build_request("S", USER_Q).body
        assert body["max_completion_tokens"] == 16_384

    def test_temperature_option(self):
        handler = CompletionHandler(_custom(temperature=0.3))
        assert handler.build_request("S", USER_Q).body["temperature"] == 0.3
        options = CreateMessageOptions(temperature=1.0)
        assert handler.build_request("S", USER_Q, options).body["temperature"] == 1.0

    def test_no_stream_options_for_xai(self):
        handler = CompletionHandler(_custom(base_url="https://api.x.ai/v1"))
        body = handler.build_request("S", USER_Q).body
        assert body["stream"] is True
        assert "stream_options" not in body

    def test_custom_endpoint_path_and_headers(self):
        settings = _custom(
            base_url="http://gateway.local/",
            endpoint_path="openai/chat",
            headers={"X-Team": "core"},
        )
        request = CompletionHandler(settings).build_request("S", USER_Q)
        assert request.url == "http://gateway.local/openai/chat"
        assert request.headers["x-team"] == "core"

    def test_trust_never_applied_to_plain_http(self, monkeypatch):
        sentinel = object()
        monkeypatch.setattr("streamwire.llm.handler.load_trust", lambda path, sink=None: sentinel)

        http = CompletionHandler(_custom(ca_bundle_path="/etc/ca.pem"))
        assert http.build_request("S", USER_Q).verify is True

        https = CompletionHandler(_custom(ca_bundle_path="/etc/ca.pem", base_url="https://secure.local/v1"))
        assert https.build_request("S", USER_Q).verify is sentinel


# ---------------------------------------------------------------------------
# Construction and model selection
# ---------------------------------------------------------------------------

class TestConstruction:
    def test_missing_required_key(self):
        with pytest.raises(ConfigError, match="DeepSeek API key is required"):
            CompletionHandler(resolve_settings("deepseek"))

    def test_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-env")
        handler = CompletionHandler(resolve_settings("deepseek"))
        assert handler.build_request("S", USER_Q).headers["authorization"] == "Bearer sk-env"

    def test_custom_without_key(self):
        request = CompletionHandler(_custom()).build_request("S", USER_Q)
        assert "authorization" not in request.headers

    def test_get_model(self):
        settings = resolve_settings("deepseek", {"api_key": "k"})
        model = CompletionHandler(settings).get_model()
        assert model.id == "deepseek-reasoner"
        assert model.info.context_window == 64_000
        assert model.temperature == 0.6
        assert model.max_tokens is None


# ---------------------------------------------------------------------------
# Convenience operations
# ---------------------------------------------------------------------------

class TestCompletePrompt:
    async def test_success(self):
        recorder = Recorder(chunks=[SCENARIO_C])
        text = await _handler(_custom(), recorder).complete_prompt("Say hello")
        assert text == "Hello"
        assert recorder.body()["messages"] == [{"role": "user", "content": "Say hello"}]

    async def test_error_names_provider(self):
        settings = resolve_settings("deepseek", {"api_key": "k"})
        recorder = Recorder(status=401, chunks=[b'{"error":{"message":"bad key"}}'])
        with pytest.raises(ProtocolError) as exc_info:
            await _handler(settings, recorder).complete_prompt("hi")
        assert str(exc_info.value) == "DeepSeek completion error: bad key"
        assert exc_info.value.status_code == 401

    async def test_no_content(self):
        recorder = Recorder(chunks=[b'data: {"choices":[{"delta":{"role":"assistant"}}]}\n'])
        with pytest.raises(NoContentError, match="Custom completion error"):
            await _handler(_custom(), recorder).complete_prompt("hi")


class TestListModels:
    async def test_ids_deduplicated(self):
        recorder = Recorder(chunks=[b'{"data":[{"id":"a"},{"id":"b"},{"id":"a"},{"object":"x"}]}'])
        ids = await _handler(_custom(), recorder).list_models()
        assert ids == ["a", "b"]
        assert str(recorder.requests[0].url) == "http://localhost:8000/v1/models"

    async def test_failure_is_empty(self):
        recorder = Recorder(status=500, chunks=[b"oops"])
        assert await _handler(_custom(), recorder).list_models() == []

    async def test_invalid_json_is_empty(self):
        recorder = Recorder(chunks=[b"<html>"])
        assert await _handler(_custom(), recorder).list_models() == []

    async def test_connection_error_is_empty(self):
        recorder = Recorder(exc=httpx.ConnectError("refused"))
        assert await _handler(_custom(), recorder).list_models() == []
