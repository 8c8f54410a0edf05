"""Completion provider boundary.

The executor only depends on CompletionProvider: given a CompletionRequest,
stream CompletionEvents (delta, usage, done, error). Vendor adapters for
the OpenAI Responses API and Anthropic live in providers.py.
"""

from workbench.llm.client import build_user_message, parse_llm_json_response
from workbench.llm.events import (
    CompletionError,
    CompletionEvent,
    CompletionEventType,
    CompletionRequest,
    CompletionUsage,
)
from workbench.llm.factory import ModelRoutingProvider, get_provider, model_family
from workbench.llm.providers import (
    AnthropicProvider,
    CompletionProvider,
    OpenAIResponsesProvider,
)

__all__ = [
    "AnthropicProvider",
    "CompletionError",
    "CompletionEvent",
    "CompletionEventType",
    "CompletionProvider",
    "CompletionRequest",
    "CompletionUsage",
    "ModelRoutingProvider",
    "OpenAIResponsesProvider",
    "build_user_message",
    "get_provider",
    "model_family",
    "parse_llm_json_response",
]
