"""Completion provider implementations.

Provides a unified streaming interface over the OpenAI Responses API and
Anthropic Claude. Every provider yields the same event sequence (see
events.py) and reports failures as a single error event rather than
raising, so one failed call never affects other units of a run.

Cancellation: the executor consumes stream() inside an asyncio task and
cancels that task; the HTTP stream is closed as the CancelledError
unwinds through the ``async with`` blocks below.
"""

import logging
import os
from typing import Any, AsyncIterator, Optional, Protocol, runtime_checkable

import anthropic
import httpx
import openai

from .client import build_user_message
from .events import (
    CompletionEvent,
    CompletionRequest,
    CompletionUsage,
    delta_event,
    done_event,
    error_event,
    usage_event,
)

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1")

# Timeouts shared by both providers
STREAM_TIMEOUT = httpx.Timeout(
    connect=30.0,
    read=300.0,  # max silence between stream events
    write=60.0,
    pool=30.0,
)


@runtime_checkable
class CompletionProvider(Protocol):
    """Protocol for completion providers."""

    def stream(self, request: CompletionRequest) -> AsyncIterator[CompletionEvent]: ...


class OpenAIResponsesProvider:
    """OpenAI Responses API through the SDK's streaming ``responses.create``.

    Handles:
    - API key from the constructor or OPENAI_API_KEY
    - Mapping of Responses stream events onto completion events
    - SDK errors (HTTP status, connection, timeout) reported as error events
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[openai.AsyncOpenAI] = None,
    ):
        self._api_key = api_key
        self._base_url = base_url or OPENAI_BASE_URL
        self._client = client

    def _get_client(self) -> Optional[openai.AsyncOpenAI]:
        if self._client is None:
            api_key = self._api_key or os.environ.get("OPENAI_API_KEY")
            if not api_key:
                return None
            self._client = openai.AsyncOpenAI(
                api_key=api_key,
                base_url=self._base_url,
                timeout=STREAM_TIMEOUT,
                max_retries=0,
            )
        return self._client

    def _request_kwargs(self, request: CompletionRequest) -> dict[str, Any]:
        model = request.model
        if model.startswith("openai/"):
            model = model[len("openai/"):]

        kwargs: dict[str, Any] = {
            "model": model,
            "input": [
                {
                    "role": "user",
                    "content": [{"type": "input_text", "text": build_user_message(request)}],
                }
            ],
        }
        if request.system_prompt:
            kwargs["instructions"] = request.system_prompt
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.max_tokens:
            kwargs["max_output_tokens"] = request.max_tokens
        return kwargs

    async def stream(self, request: CompletionRequest) -> AsyncIterator[CompletionEvent]:
        client = self._get_client()
        if client is None:
            yield error_event("Missing OpenAI API key")
            return

        kwargs = self._request_kwargs(request)
        logger.info(
            f"OpenAI Responses call: model={kwargs['model']}, "
            f"~{len(build_user_message(request)):,} chars"
        )

        usage: Optional[CompletionUsage] = None
        seen_delta = False
        try:
            response_stream = await client.responses.create(**kwargs, stream=True)
            async with response_stream:
                async for event in response_stream:
                    event_type = getattr(event, "type", "")
                    if event_type == "response.output_text.delta":
                        if event.delta:
                            seen_delta = True
                            yield delta_event(event.delta)
                    elif event_type == "response.output_text.done":
                        # The done event repeats the full text
                        if not seen_delta and getattr(event, "text", ""):
                            yield delta_event(event.text)
                    elif event_type == "response.completed":
                        usage = _response_usage(getattr(event, "response", None))
                        if usage is not None:
                            yield usage_event(usage.input_tokens, usage.output_tokens)
                    elif event_type == "response.failed":
                        yield error_event(_failure_message(getattr(event, "response", None)))
                        return
                    elif event_type == "error":
                        yield error_event(getattr(event, "message", "") or "OpenAI stream error")
                        return
        except openai.APIError as e:
            logger.warning(f"OpenAI stream failed: {type(e).__name__}: {e}")
            yield error_event(f"OpenAI API error: {e}")
            return

        yield done_event(usage)


def _response_usage(response: Any) -> Optional[CompletionUsage]:
    usage = getattr(response, "usage", None)
    if usage is None:
        return None
    return CompletionUsage(
        input_tokens=getattr(usage, "input_tokens", 0) or 0,
        output_tokens=getattr(usage, "output_tokens", 0) or 0,
    )


def _failure_message(response: Any) -> str:
    error = getattr(response, "error", None)
    message = getattr(error, "message", None)
    return message or "OpenAI response failed"


class AnthropicProvider:
    """Anthropic Claude backend using the SDK's message streaming."""

    def __init__(self, client: Optional[anthropic.AsyncAnthropic] = None):
        self._client = client

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(timeout=STREAM_TIMEOUT)
        return self._client

    async def stream(self, request: CompletionRequest) -> AsyncIterator[CompletionEvent]:
        if self._client is None and not os.environ.get("ANTHROPIC_API_KEY"):
            yield error_event("Missing Anthropic API key")
            return

        kwargs: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens or 1024,
            "messages": [{"role": "user", "content": build_user_message(request)}],
        }
        if request.system_prompt:
            kwargs["system"] = request.system_prompt
        if request.temperature is not None:
            kwargs["temperature"] = min(request.temperature, 1.0)

        logger.info(f"Anthropic stream call: model={request.model}, max_tokens={kwargs['max_tokens']}")

        try:
            async with self._get_client().messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield delta_event(text)
                final = await stream.get_final_message()
        except anthropic.APIError as e:
            logger.warning(f"Anthropic stream failed: {type(e).__name__}: {e}")
            yield error_event(f"Anthropic API error: {e}")
            return
        except httpx.HTTPError as e:
            logger.warning(f"Anthropic transport failed: {type(e).__name__}: {e}")
            yield error_event(f"Stream error: {e or type(e).__name__}")
            return

        usage = CompletionUsage(
            input_tokens=final.usage.input_tokens,
            output_tokens=final.usage.output_tokens,
        )
        yield done_event(usage)
