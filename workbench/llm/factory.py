"""Completion provider factory.

Resolves model IDs to the appropriate provider implementation.
"""

import logging
from typing import AsyncIterator, Optional, Union

from .events import CompletionEvent, CompletionRequest, error_event
from .providers import AnthropicProvider, OpenAIResponsesProvider

logger = logging.getLogger(__name__)

OPENAI_PREFIXES = ("gpt-", "chatgpt-", "o1", "o3", "o4", "openai/")


def model_family(model_id: str) -> str:
    """Vendor family of a model ID: 'anthropic' or 'openai'.

    Raises:
        ValueError: If model_id is not recognized
    """
    if model_id.startswith("claude-"):
        return "anthropic"
    if model_id.startswith(OPENAI_PREFIXES):
        return "openai"
    raise ValueError(
        f"Unknown model: '{model_id}'. "
        f"Expected a model ID starting with 'gpt-', 'o', 'claude-', or 'openai/'."
    )


def get_provider(model_id: str) -> Union[AnthropicProvider, OpenAIResponsesProvider]:
    """Get the appropriate provider for a model ID.

    Args:
        model_id: Full model identifier (e.g. 'gpt-4.1', 'claude-sonnet-4-6',
                  'openai/gpt-4o-mini')

    Returns:
        Provider instance for the model

    Raises:
        ValueError: If model_id is not recognized
    """
    if model_family(model_id) == "anthropic":
        return AnthropicProvider()
    return OpenAIResponsesProvider()


class ModelRoutingProvider:
    """Provider that picks the backing provider from each request's model.

    Prompt nodes can override the model per node, so a single run may talk
    to several vendors. Backing providers are created once per vendor.
    """

    def __init__(
        self,
        anthropic_provider: Optional[AnthropicProvider] = None,
        openai_provider: Optional[OpenAIResponsesProvider] = None,
    ):
        self._providers: dict[str, Union[AnthropicProvider, OpenAIResponsesProvider]] = {}
        if anthropic_provider is not None:
            self._providers["anthropic"] = anthropic_provider
        if openai_provider is not None:
            self._providers["openai"] = openai_provider

    def _resolve(self, model_id: str) -> Union[AnthropicProvider, OpenAIResponsesProvider]:
        family = model_family(model_id)
        if family not in self._providers:
            self._providers[family] = get_provider(model_id)
        return self._providers[family]

    async def stream(self, request: CompletionRequest) -> AsyncIterator[CompletionEvent]:
        try:
            provider = self._resolve(request.model)
        except ValueError as e:
            logger.warning(str(e))
            yield error_event(str(e))
            return

        async for event in provider.stream(request):
            yield event
