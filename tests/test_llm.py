"""Tests for the completion provider layer (no network access)."""

from __future__ import annotations

import asyncio
import json

import httpx
import openai
import pytest

from workbench.llm import (
    AnthropicProvider,
    CompletionEventType,
    CompletionRequest,
    ModelRoutingProvider,
    OpenAIResponsesProvider,
    build_user_message,
    model_family,
    parse_llm_json_response,
)


def collect(provider, request: CompletionRequest):
    async def _collect():
        return [event async for event in provider.stream(request)]
    return asyncio.run(_collect())


def stream_body(*events: dict) -> str:
    return "".join(f"data: {json.dumps(event)}\n\n" for event in events)


def openai_client(handler) -> openai.AsyncOpenAI:
    return openai.AsyncOpenAI(
        api_key="sk-test",
        base_url="https://example.test/v1",
        max_retries=0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def streaming(*events: dict):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            text=stream_body(*events),
            headers={"content-type": "text/event-stream"},
        )
    return handler


def text_delta(delta: str) -> dict:
    return {"type": "response.output_text.delta", "delta": delta, "item_id": "msg_1",
            "output_index": 0, "content_index": 0, "sequence_number": 1}


def completed(input_tokens: int, output_tokens: int) -> dict:
    return {
        "type": "response.completed",
        "sequence_number": 9,
        "response": {"usage": {"input_tokens": input_tokens, "output_tokens": output_tokens}},
    }


REQUEST = CompletionRequest(
    prompt_text="Summarize",
    chunk_text="Some text",
    include_chunk=True,
    model="gpt-test",
    temperature=0.3,
    max_tokens=64,
    system_prompt="Be brief.",
)


# =========================================================================
# 1. Helpers
# =========================================================================


class TestHelpers:
    def test_user_message_appends_chunk(self):
        assert build_user_message(REQUEST) == "Summarize\n\nSome text"
        assert build_user_message(REQUEST.model_copy(update={"include_chunk": False})) == "Summarize"

    def test_json_fences_stripped(self):
        assert parse_llm_json_response('```json\n{"a": 1}\n```') == {"a": 1}
        assert parse_llm_json_response("  [1, 2] ") == [1, 2]

    def test_invalid_json_raises_value_error(self):
        with pytest.raises(ValueError):
            parse_llm_json_response("nope")

    @pytest.mark.parametrize("model,family", [
        ("claude-sonnet-4-6", "anthropic"),
        ("gpt-4.1", "openai"),
        ("o3-mini", "openai"),
        ("openai/gpt-4o-mini", "openai"),
    ])
    def test_model_family(self, model, family):
        assert model_family(model) == family

    def test_unknown_model_family(self):
        with pytest.raises(ValueError):
            model_family("llama-3")


# =========================================================================
# 2. Providers
# =========================================================================


class TestOpenAIProvider:
    def test_streams_deltas_then_done(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return streaming(text_delta("Hi "), text_delta("there"), completed(9, 2))(request)

        provider = OpenAIResponsesProvider(client=openai_client(handler))
        events = collect(provider, REQUEST)

        assert "".join(e.text for e in events if e.type == CompletionEventType.DELTA) == "Hi there"
        assert events[-1].type == CompletionEventType.DONE
        assert events[-1].usage.input_tokens == 9
        assert events[-1].usage.output_tokens == 2
        assert seen["url"] == "https://example.test/v1/responses"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["stream"] is True
        assert seen["body"]["instructions"] == "Be brief."
        assert seen["body"]["max_output_tokens"] == 64
        assert seen["body"]["input"][0]["content"][0]["text"] == "Summarize\n\nSome text"

    def test_done_text_used_when_no_delta_seen(self):
        done = {"type": "response.output_text.done", "text": "All", "item_id": "msg_1",
                "output_index": 0, "content_index": 0, "sequence_number": 1}
        provider = OpenAIResponsesProvider(client=openai_client(streaming(done)))
        events = collect(provider, REQUEST)
        assert [e.text for e in events if e.type == CompletionEventType.DELTA] == ["All"]
        assert events[-1].type == CompletionEventType.DONE

    def test_failed_response_becomes_error_event(self):
        failed = {
            "type": "response.failed",
            "sequence_number": 2,
            "response": {"error": {"code": "server_error", "message": "overloaded"}},
        }
        provider = OpenAIResponsesProvider(client=openai_client(streaming(text_delta("par"), failed)))
        events = collect(provider, REQUEST)
        assert [e.type for e in events] == [CompletionEventType.DELTA, CompletionEventType.ERROR]
        assert events[-1].error == "overloaded"

    def test_http_error_becomes_error_event(self):
        client = openai_client(lambda request: httpx.Response(429, json={"error": {"message": "slow down"}}))
        events = collect(OpenAIResponsesProvider(client=client), REQUEST)
        assert len(events) == 1
        assert events[0].type == CompletionEventType.ERROR
        assert "429" in events[0].error

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        events = collect(OpenAIResponsesProvider(), REQUEST)
        assert [e.type for e in events] == [CompletionEventType.ERROR]

    def test_openai_prefix_stripped_from_model(self):
        kwargs = OpenAIResponsesProvider()._request_kwargs(REQUEST.model_copy(update={"model": "openai/gpt-x"}))
        assert kwargs["model"] == "gpt-x"


class TestAnthropicProvider:
    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        events = collect(AnthropicProvider(), REQUEST.model_copy(update={"model": "claude-test"}))
        assert [e.type for e in events] == [CompletionEventType.ERROR]


class TestRoutingProvider:
    def test_unknown_model_yields_error_event(self):
        events = collect(ModelRoutingProvider(), REQUEST.model_copy(update={"model": "mystery-1"}))
        assert [e.type for e in events] == [CompletionEventType.ERROR]
        assert "mystery-1" in events[0].error

    def test_routes_by_model_family(self):
        openai_provider = OpenAIResponsesProvider(client=openai_client(streaming(text_delta("ok"))))
        events = collect(ModelRoutingProvider(openai_provider=openai_provider), REQUEST)
        assert [e.text for e in events if e.type == CompletionEventType.DELTA] == ["ok"]
