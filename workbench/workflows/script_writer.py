"""Serialize node lists back to workflow script text.

serialize_nodes() is the inverse of script_parser.parse_script(): any node
list made of the documented fields parses back to an equal node list.
"""

import json
import re
from typing import Any

from .schemas import BUILTIN_VARIABLES, NodeType, WorkflowNode
from .script_parser import TAB_WIDTH, coerce_scalar

ITEM_INDENT = " " * TAB_WIDTH
FIELD_INDENT = " " * (TAB_WIDTH * 2)
BLOCK_INDENT = " " * (TAB_WIDTH * 3)

# WorkflowNode field -> script key, in output order
FIELD_KEYS = [
    ("expr", "expr"),
    ("prompt_template", "prompt"),
    ("system_template", "system"),
    ("model", "model"),
    ("temperature", "temperature"),
    ("max_tokens", "max_tokens"),
    ("expected_format", "expect"),
    ("output_key", "output"),
    ("append_chunk", "append_chunk"),
    ("message_template", "message"),
]

_BLOCK_MARKERS = {"|", "|-", "|+"}
_SAFE_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")


def _plain_is_safe(text: str) -> bool:
    """Whether *text* written unquoted parses back to the same string."""
    if not text or text != text.strip():
        return False
    if text in _BLOCK_MARKERS:
        return False
    value, quoted = coerce_scalar(text)
    return not quoted and value == text and isinstance(value, str)


def _format_scalar(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if not isinstance(value, str):
        value = json.dumps(value, ensure_ascii=False)
    if _plain_is_safe(value):
        return value
    if '"' not in value:
        return f'"{value}"'
    return f"'{value}'"


def _needs_block(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return "\n" in value or ('"' in value and "'" in value and not _plain_is_safe(value))


def _field_lines(key: str, value: Any, first: bool = False) -> list[str]:
    prefix = f"{ITEM_INDENT}- " if first else FIELD_INDENT
    if not _needs_block(value):
        return [f"{prefix}{key}: {_format_scalar(value)}"]

    marker = "|+" if value.endswith("\n") else "|"
    body = value[:-1] if value.endswith("\n") else value
    lines = [f"{prefix}{key}: {marker}"]
    for line in body.split("\n"):
        lines.append(f"{BLOCK_INDENT}{line}" if line else "")
    if marker == "|+":
        lines.append("")
    return lines


def serialize_nodes(nodes: list[WorkflowNode]) -> str:
    """Render a node list as workflow script text."""
    lines = ["nodes:"]
    for node in nodes:
        lines.extend(_field_lines("id", node.id, first=True))
        lines.extend(_field_lines("type", node.type))
        for field, key in FIELD_KEYS:
            value = getattr(node, field)
            if value is None:
                continue
            if hasattr(value, "value"):
                value = value.value
            lines.extend(_field_lines(key, value))
        for key, value in node.extra.items():
            if _SAFE_KEY_RE.match(key):
                lines.extend(_field_lines(key, value))
    return "\n".join(lines) + "\n"


def available_variables(nodes: list[WorkflowNode], position: int) -> list[str]:
    """Context keys a node at *position* can reference in its templates.

    Built-ins first, then the output key of every earlier prompt node and
    the id of every earlier func node, without duplicates.
    """
    names = list(BUILTIN_VARIABLES)
    for node in nodes[:max(position, 0)]:
        if node.node_type == NodeType.PROMPT:
            name = node.resolved_output_key
        elif node.node_type == NodeType.FUNC:
            name = node.id
        else:
            continue
        if name not in names:
            names.append(name)
    return names
