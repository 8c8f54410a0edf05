"""Shared helpers for completion calls.

Used by the providers (user message assembly) and by the executor
(JSON coercion of prompt node responses).
"""

import json
import logging
from typing import Any

from .events import CompletionRequest

logger = logging.getLogger(__name__)


def build_user_message(request: CompletionRequest) -> str:
    """The user message sent to the model.

    The unit's chunk text is appended after a blank line when the request
    asks for it.
    """
    if not request.include_chunk:
        return request.prompt_text
    return f"{request.prompt_text}\n\n{request.chunk_text or ''}"


def parse_llm_json_response(raw_text: str) -> Any:
    """Parse JSON from LLM response, handling markdown code fences.

    LLMs sometimes wrap JSON in ```json ... ``` fences despite being
    told not to. This function strips those fences before parsing.

    Args:
        raw_text: Raw text from LLM response

    Returns:
        Parsed JSON value

    Raises:
        json.JSONDecodeError: If the text cannot be parsed as JSON
    """
    content = raw_text.strip()

    # Strip leading markdown fence (```json or ```)
    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else content[3:]

    # Strip trailing fence
    if content.endswith("```"):
        content = content.rsplit("```", 1)[0]

    content = content.strip()
    return json.loads(content)
