"""``{{ path }}`` placeholder rendering against a unit context.

Only placeholders are interpreted; everything else in the template is
copied as-is. A path is a dotted sequence of names (``user.name``); a
numeric segment indexes into a list (``items.0``). Rendering never raises:
a path that cannot be resolved renders as an empty string.
"""

import json
import re
from typing import Any, Mapping

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z0-9_]+(?:\.[A-Za-z0-9_]+)*)\s*\}\}")

_MISSING = object()


def resolve_path(context: Mapping[str, Any], path: str) -> Any:
    """Walk *path* through nested mappings and lists. Returns None if missing."""
    current: Any = context
    for segment in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(segment, _MISSING)
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            position = int(segment)
            current = current[position] if position < len(current) else _MISSING
        else:
            return None
        if current is _MISSING:
            return None
    return current


def stringify(value: Any) -> str:
    """Text form of a context value as it appears in rendered templates."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def render(template: str, context: Mapping[str, Any]) -> str:
    """Replace every ``{{ path }}`` in *template* with its value in *context*."""
    if not template:
        return ""
    return PLACEHOLDER_RE.sub(
        lambda match: stringify(resolve_path(context, match.group(1))),
        template,
    )


def placeholders(template: str) -> list[str]:
    """Paths referenced by *template*, in order of first appearance."""
    seen: list[str] = []
    for match in PLACEHOLDER_RE.finditer(template or ""):
        if match.group(1) not in seen:
            seen.append(match.group(1))
    return seen
