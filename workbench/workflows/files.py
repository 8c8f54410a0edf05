"""Workflow and prompt files: YAML front matter followed by a body.

    ---
    name: CSV Row Summarizer
    category: Data
    difficulty: beginner
    tags: [csv, summary]
    ---
    nodes:
      - id: summarize
        ...

Only the front matter goes through YAML. The body of a .workflow file is a
node script and is read by the dedicated script parser.
"""

import logging
import re
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from .schemas import Difficulty, PromptFile, WorkflowFile, WorkflowMetadata

logger = logging.getLogger(__name__)

_FRONT_MATTER_RE = re.compile(r"^---\r?\n(.*?)\r?\n---\r?\n(.*)$", re.DOTALL)


def split_front_matter(text: str) -> tuple[dict[str, Any], str]:
    """Split *text* into (front matter mapping, body).

    Text without a front matter block returns ({}, text). Front matter that
    is not a YAML mapping is ignored with a warning.
    """
    match = _FRONT_MATTER_RE.match(text or "")
    if not match:
        return {}, text or ""

    raw_meta, body = match.group(1), match.group(2)
    try:
        meta = yaml.safe_load(raw_meta)
    except yaml.YAMLError as e:
        logger.warning(f"Unreadable front matter, ignoring it: {e}")
        return {}, body

    if meta is None:
        return {}, body
    if not isinstance(meta, dict):
        logger.warning(f"Front matter is a {type(meta).__name__}, expected a mapping")
        return {}, body
    return meta, body


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None and str(v).strip()]
    return [str(value)]


def _body_text(body: str) -> str:
    body = body.lstrip("\n")
    return body if body.endswith("\n") else body + "\n"


def parse_workflow_file(text: str) -> WorkflowFile:
    """Read a .workflow file. Missing or bad metadata fields get defaults."""
    meta, body = split_front_matter(text)

    data: dict[str, Any] = {}
    for key in ("name", "category", "description"):
        if meta.get(key):
            data[key] = str(meta[key])
    data["tags"] = _as_list(meta.get("tags"))
    data["use_cases"] = _as_list(meta.get("use_cases"))

    difficulty = meta.get("difficulty")
    if difficulty:
        try:
            data["difficulty"] = Difficulty(str(difficulty).lower())
        except ValueError:
            logger.warning(f"Unknown workflow difficulty '{difficulty}', using beginner")

    return WorkflowFile(metadata=WorkflowMetadata(**data), body=body)


def build_workflow_file(metadata: WorkflowMetadata, body: str) -> str:
    """Inverse of parse_workflow_file()."""
    front = yaml.safe_dump(
        metadata.model_dump(mode="json"),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=None,
    )
    return f"---\n{front}---\n{_body_text(body)}" if body.strip() else f"---\n{front}---\n"


def parse_prompt_file(text: str) -> PromptFile:
    """Read a .prompt file: model settings in front matter, prompt as body."""
    meta, body = split_front_matter(text)
    data: dict[str, Any] = {"body": body}
    if meta.get("model"):
        data["model"] = str(meta["model"])
    for key in ("temperature", "max_tokens"):
        if meta.get(key) is not None:
            data[key] = meta[key]
    try:
        return PromptFile(**data)
    except ValidationError as e:
        logger.warning(f"Invalid prompt file settings, keeping only the body: {e}")
        return PromptFile(body=body)


def build_prompt_file(
    body: str,
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> str:
    """Inverse of parse_prompt_file()."""
    meta: dict[str, Any] = {"type": "prompt"}
    if model:
        meta["model"] = model
    if temperature is not None:
        meta["temperature"] = temperature
    if max_tokens is not None:
        meta["max_tokens"] = max_tokens
    front = yaml.safe_dump(meta, sort_keys=False, allow_unicode=True)
    return f"---\n{front}---\n{_body_text(body)}"
