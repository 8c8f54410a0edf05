"""Completion provider request and event types.

A provider turns one CompletionRequest into an ordered async stream of
CompletionEvents:

- delta: a piece of generated text; deltas concatenate to the full text
- usage: token counts, possibly before the end of the stream
- done: the call finished; may carry the final usage counts
- error: the call failed; nothing follows an error event
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class CompletionError(RuntimeError):
    """A completion call failed (error event or transport failure)."""


class CompletionRequest(BaseModel):
    """Everything a provider needs for one completion call."""

    prompt_text: str = Field(..., description="Rendered user prompt")
    chunk_text: str = Field(default="", description="Unit text, appended when include_chunk")
    include_chunk: bool = False
    model: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    system_prompt: Optional[str] = None


class CompletionEventType(str, Enum):
    DELTA = "delta"
    USAGE = "usage"
    DONE = "done"
    ERROR = "error"


class CompletionUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class CompletionEvent(BaseModel):
    type: CompletionEventType
    text: str = ""
    usage: Optional[CompletionUsage] = None
    error: Optional[str] = None


def delta_event(text: str) -> CompletionEvent:
    return CompletionEvent(type=CompletionEventType.DELTA, text=text)


def usage_event(input_tokens: int = 0, output_tokens: int = 0) -> CompletionEvent:
    return CompletionEvent(
        type=CompletionEventType.USAGE,
        usage=CompletionUsage(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def done_event(usage: Optional[CompletionUsage] = None) -> CompletionEvent:
    return CompletionEvent(type=CompletionEventType.DONE, usage=usage)


def error_event(message: str) -> CompletionEvent:
    return CompletionEvent(type=CompletionEventType.ERROR, error=message or "Unknown error")
