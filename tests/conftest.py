"""Shared fixtures for the workbench test suite.

Completion providers are replaced by scripted fakes: no test talks to a
real model API.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from typing import AsyncIterator, Callable

import pytest

from workbench.chunking.schemas import ProcessUnit
from workbench.llm.events import (
    CompletionEvent,
    CompletionRequest,
    CompletionUsage,
    delta_event,
    done_event,
    error_event,
)

# ---------------------------------------------------------------------------
# Configure verbose logging for test debugging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
    force=True,
)


class FakeProvider:
    """Streams a scripted reply for every request and records the requests.

    *reply* is either a fixed string or a function of the request. The reply
    is streamed in two deltas followed by a done event carrying usage.
    """

    def __init__(
        self,
        reply: str | Callable[[CompletionRequest], str] = "ok",
        input_tokens: int = 10,
        output_tokens: int = 5,
    ):
        self.reply = reply
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.requests: list[CompletionRequest] = []

    async def stream(self, request: CompletionRequest) -> AsyncIterator[CompletionEvent]:
        self.requests.append(request)
        text = self.reply(request) if callable(self.reply) else self.reply
        middle = len(text) // 2
        for part in (text[:middle], text[middle:]):
            if part:
                yield delta_event(part)
        yield done_event(CompletionUsage(input_tokens=self.input_tokens, output_tokens=self.output_tokens))


class ErrorProvider:
    """Emits a partial delta, then an error event."""

    def __init__(self, message: str = "rate limited"):
        self.message = message
        self.requests: list[CompletionRequest] = []

    async def stream(self, request: CompletionRequest) -> AsyncIterator[CompletionEvent]:
        self.requests.append(request)
        yield delta_event("partial")
        yield error_event(self.message)


class BlockingProvider:
    """Answers the first *fast_calls* requests, then blocks until cancelled.

    ``started`` is set when a blocking call has begun, so a test can cancel
    the run while the call is in flight.
    """

    def __init__(self, fast_calls: int = 0, reply: str = "fast"):
        self.fast_calls = fast_calls
        self.reply = reply
        self.requests: list[CompletionRequest] = []
        self.started = threading.Event()
        self.was_cancelled = False

    async def stream(self, request: CompletionRequest) -> AsyncIterator[CompletionEvent]:
        self.requests.append(request)
        if len(self.requests) <= self.fast_calls:
            yield delta_event(self.reply)
            yield done_event()
            return

        yield delta_event("thinking")
        self.started.set()
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            self.was_cancelled = True
            raise
        yield done_event()


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def text_units() -> list[ProcessUnit]:
    return [
        ProcessUnit(index=0, raw_text="The quick brown fox jumps over the lazy dog"),
        ProcessUnit(index=1, raw_text="Too short"),
        ProcessUnit(index=2, raw_text="A third fragment with enough words to pass"),
    ]


@pytest.fixture
def table_units() -> list[ProcessUnit]:
    return [
        ProcessUnit(index=0, raw_text='{"name":"Ada","age":"30"}', row={"name": "Ada", "age": "30"}),
        ProcessUnit(index=1, raw_text='{"name":"Lin","age":"25"}', row={"name": "Lin", "age": "25"}),
    ]
