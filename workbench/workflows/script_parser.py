"""Parser for the workflow script format.

The format is a small, deliberately restricted YAML subset. A general YAML
library would accept constructs the format never needed, so the grammar is
kept here:

    script      ::= line*
    line        ::= blank | comment | nodes-key | item | field | block-line
    comment     ::= INDENT "#" TEXT
    nodes-key   ::= INDENT "nodes:"
    item        ::= INDENT "-" [SP field-body]          (starts a new node)
    field       ::= INDENT field-body
    field-body  ::= KEY ":" [SP value]
    value       ::= "|" | "|-" | "|+" | scalar
    scalar      ::= '"' TEXT '"' | "'" TEXT "'" | "true" | "false" | "null"
                  | NUMBER | TEXT
    block-line  ::= line indented one level deeper than the KEY of the block

Rules:
- Tabs are expanded to TAB_WIDTH spaces before any indentation logic.
- A ``key: |`` field opens a literal block. Content lines sit one nesting
  level (TAB_WIDTH spaces) deeper than the key; exactly that much
  indentation is stripped and anything deeper is kept. Blank lines inside
  the block are kept. Trailing blank lines are dropped, unless the block was
  opened with ``|+``, which keeps them (the value then ends with newlines).
  The block ends at the first non-blank line that is shallower.
- Unquoted scalars are coerced (booleans, null, numbers); quoted scalars
  keep their text with the surrounding quotes removed.

Individual malformed fields never abort parsing: they are reported as
warnings and dropped. Only a script with no nodes at all is an error.
"""

import logging
import re
from typing import Any, Optional

from .schemas import ExpectedFormat, NodeType, ParsedScript, WorkflowNode

logger = logging.getLogger(__name__)

TAB_WIDTH = 2

_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")
_INT_RE = re.compile(r"^[-+]?\d+$")
_FLOAT_RE = re.compile(r"^[-+]?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][-+]?\d+)?$")

# Script key -> WorkflowNode field
SCRIPT_FIELDS = {
    "expr": "expr",
    "prompt": "prompt_template",
    "prompt_template": "prompt_template",
    "system": "system_template",
    "system_template": "system_template",
    "model": "model",
    "temperature": "temperature",
    "max_tokens": "max_tokens",
    "maxTokens": "max_tokens",
    "expect": "expected_format",
    "expected_format": "expected_format",
    "output": "output_key",
    "output_key": "output_key",
    "outputKey": "output_key",
    "append_chunk": "append_chunk",
    "appendChunk": "append_chunk",
    "message": "message_template",
    "message_template": "message_template",
}

_STRING_FIELDS = {
    "expr",
    "prompt_template",
    "system_template",
    "model",
    "output_key",
    "message_template",
}


class ScriptStructureError(ValueError):
    """The script has no recognizable node list."""


def coerce_scalar(raw: str) -> tuple[Any, bool]:
    """Coerce a scalar token. Returns (value, was_quoted)."""
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in ("'", '"'):
        return raw[1:-1], True
    if raw == "true":
        return True, False
    if raw == "false":
        return False, False
    if raw in ("null", "~"):
        return None, False
    if _INT_RE.match(raw):
        return int(raw), False
    if _FLOAT_RE.match(raw):
        return float(raw), False
    return raw, False


def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip(" "))


class _RawNode:
    """Fields collected for one list item before validation."""

    def __init__(self, line_number: int):
        self.line_number = line_number
        # key -> (raw text, coerced value, was_quoted, is_block)
        self.fields: dict[str, tuple[str, Any, bool, bool]] = {}


class _ScriptReader:
    """Line-oriented state machine producing raw nodes."""

    def __init__(self, text: str):
        self.lines = text.replace("\t", " " * TAB_WIDTH).replace("\r\n", "\n").split("\n")
        if self.lines and self.lines[-1] == "":
            self.lines.pop()
        self.raw_nodes: list[_RawNode] = []
        self.warnings: list[str] = []
        self.saw_nodes_key = False

        self._current: Optional[_RawNode] = None
        self._block_key: Optional[str] = None
        self._block_indent = 0
        self._block_keep = False
        self._block_lines: list[str] = []

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def read(self) -> None:
        for line_number, line in enumerate(self.lines, start=1):
            if self._block_key is not None and self._consume_block_line(line):
                continue
            self._read_line(line_number, line)
        self._close_block()
        self._finish_node()

    # --- block scalars ---

    def _consume_block_line(self, line: str) -> bool:
        """Append *line* to the open block. False when the block has ended."""
        if not line.strip():
            self._block_lines.append("")
            return True

        if _indent_of(line) < self._block_indent:
            self._close_block()
            return False

        self._block_lines.append(line[self._block_indent:])
        return True

    def _close_block(self) -> None:
        if self._block_key is None:
            return
        if not self._block_keep:
            while self._block_lines and self._block_lines[-1] == "":
                self._block_lines.pop()
        value = "\n".join(self._block_lines)
        if self._current is not None:
            self._store(self._block_key, value, value, True, True)
        self._block_key = None
        self._block_keep = False
        self._block_lines = []

    # --- regular lines ---

    def _read_line(self, line_number: int, line: str) -> None:
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            return

        indent = _indent_of(line)

        if stripped.rstrip() == "nodes:":
            self.saw_nodes_key = True
            return

        if stripped == "-" or stripped.startswith("- "):
            self._finish_node()
            self._current = _RawNode(line_number)
            rest = stripped[1:].strip()
            if rest:
                self._read_field(line_number, rest, indent + 2)
            return

        if self._current is None:
            self.warn(f"Line {line_number}: ignoring '{stripped}' outside the node list")
            return

        self._read_field(line_number, stripped, indent)

    def _read_field(self, line_number: int, body: str, key_indent: int) -> None:
        key, sep, value = body.partition(":")
        key = key.strip()
        value = value.strip()
        if not sep or not _KEY_RE.match(key):
            self.warn(f"Line {line_number}: expected 'key: value', got '{body}'")
            return

        if value in ("|", "|-", "|+"):
            self._block_key = key
            self._block_indent = key_indent + TAB_WIDTH
            self._block_keep = value == "|+"
            self._block_lines = []
            return

        if not value:
            return

        coerced, quoted = coerce_scalar(value)
        self._store(key, value, coerced, quoted, False)

    def _store(self, key: str, raw: str, value: Any, quoted: bool, is_block: bool) -> None:
        assert self._current is not None
        if key in self._current.fields:
            self.warn(
                f"Node at line {self._current.line_number}: duplicate key '{key}', "
                f"last value wins"
            )
        self._current.fields[key] = (raw, value, quoted, is_block)

    def _finish_node(self) -> None:
        self._close_block()
        if self._current is not None:
            self.raw_nodes.append(self._current)
        self._current = None


def _typed_value(
    field: str,
    raw: str,
    value: Any,
    quoted: bool,
    is_block: bool,
) -> tuple[bool, Any]:
    """Validate a coerced value for a WorkflowNode field. Returns (ok, value)."""
    if field in _STRING_FIELDS:
        if value is None:
            return True, None
        if isinstance(value, str):
            return True, value
        # Unquoted scalar that coerced to bool/number: keep the literal text
        return True, raw

    if is_block:
        return False, value

    if field == "temperature":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return True, float(value)
        return False, value

    if field == "max_tokens":
        if isinstance(value, int) and not isinstance(value, bool):
            return True, value
        if isinstance(value, float) and value.is_integer():
            return True, int(value)
        return False, value

    if field == "append_chunk":
        if isinstance(value, bool):
            return True, value
        return False, value

    if field == "expected_format":
        if isinstance(value, str) and value.lower() in (f.value for f in ExpectedFormat):
            return True, ExpectedFormat(value.lower())
        return False, value

    return True, value


def _build_node(raw_node: _RawNode, position: int, warnings: list[str]) -> WorkflowNode:
    fields = dict(raw_node.fields)
    where = f"Node at line {raw_node.line_number}"

    node_id: Optional[str] = None
    if "id" in fields:
        raw, value, _, _ = fields.pop("id")
        if value is not None:
            node_id = value if isinstance(value, str) else raw
    if not node_id:
        node_id = f"node-{position + 1}"
        warnings.append(f"{where}: missing id, using '{node_id}'")

    node_type = NodeType.FUNC.value
    if "type" in fields:
        raw, value, _, _ = fields.pop("type")
        node_type = value if isinstance(value, str) else raw
    else:
        warnings.append(f"{where} ('{node_id}'): missing type, defaulting to 'func'")

    data: dict[str, Any] = {"id": node_id, "type": node_type}
    extra: dict[str, Any] = {}

    for key, (raw, value, quoted, is_block) in fields.items():
        field = SCRIPT_FIELDS.get(key)
        if field is None:
            warnings.append(f"Node '{node_id}': unknown field '{key}' ignored by the executor")
            extra[key] = value
            continue
        ok, typed = _typed_value(field, raw, value, quoted, is_block)
        if not ok:
            warnings.append(f"Node '{node_id}': invalid value for '{key}': {raw!r}")
            continue
        if typed is not None:
            data[field] = typed

    if extra:
        data["extra"] = extra
    return WorkflowNode(**data)


def parse_script(text: str) -> ParsedScript:
    """Parse workflow script text into an ordered node list plus warnings.

    Raises:
        ScriptStructureError: If the text contains no nodes at all
    """
    reader = _ScriptReader(text or "")
    reader.read()

    if not reader.raw_nodes:
        if reader.saw_nodes_key:
            raise ScriptStructureError("Workflow script has an empty 'nodes:' list")
        raise ScriptStructureError(
            "Workflow script has no node list (expected 'nodes:' followed by '- ' items)"
        )

    warnings = list(reader.warnings)
    if not reader.saw_nodes_key:
        warnings.append("Missing 'nodes:' header; reading list items as nodes")

    nodes: list[WorkflowNode] = []
    seen_ids: set[str] = set()
    for position, raw_node in enumerate(reader.raw_nodes):
        node = _build_node(raw_node, position, warnings)
        if node.id in seen_ids:
            suffix = 2
            while f"{node.id}-{suffix}" in seen_ids:
                suffix += 1
            new_id = f"{node.id}-{suffix}"
            warnings.append(f"Duplicate node id '{node.id}' renamed to '{new_id}'")
            node = node.model_copy(update={"id": new_id})
        seen_ids.add(node.id)
        nodes.append(node)

    for warning in warnings:
        logger.warning(f"Workflow script: {warning}")

    logger.info(f"Parsed workflow script: {len(nodes)} nodes, {len(warnings)} warnings")
    return ParsedScript(nodes=nodes, warnings=warnings)


def parse_nodes(text: str) -> list[WorkflowNode]:
    """Parse workflow script text, returning only the node list."""
    return parse_script(text).nodes
