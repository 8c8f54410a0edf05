"""Workflow schemas: node definitions, parse results and workflow files.

A workflow is a strictly sequential list of typed nodes. There is no
branching: list order is execution order. Each node reads and writes the
per-unit context mapping, so later nodes can use earlier nodes' outputs.

Node types:
- func: evaluates a Python function body and merges the returned dict
- prompt: renders a prompt, calls the completion provider, stores the text
- print: renders a message into the run log
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

# Variables every unit context starts with
BUILTIN_VARIABLES = ("chunk", "row", "data", "index")


class NodeType(str, Enum):
    """Closed set of node types the executor knows how to run."""

    FUNC = "func"
    PROMPT = "prompt"
    PRINT = "print"


class ExpectedFormat(str, Enum):
    """How a prompt node's response is stored in the context."""

    TEXT = "text"
    JSON = "json"


class WorkflowNode(BaseModel):
    """One step of a workflow pipeline.

    ``type`` is kept as a plain string so scripts with unknown node types
    still parse; the executor warns about them and skips the step.
    Unset optional fields fall back to run-level defaults at execution time.
    """

    id: str = Field(..., description="Unique within the workflow; default output key")
    type: str = Field(default=NodeType.FUNC.value, description="func | prompt | print")

    # func
    expr: Optional[str] = Field(
        default=None,
        description="Python function body evaluated with context, chunk, row, helpers",
    )

    # prompt
    prompt_template: Optional[str] = Field(default=None, description="User prompt template")
    system_template: Optional[str] = Field(default=None, description="System prompt template")
    model: Optional[str] = Field(default=None, description="Model override")
    temperature: Optional[float] = Field(default=None, description="Temperature override")
    max_tokens: Optional[int] = Field(default=None, description="Output token cap override")
    expected_format: Optional[ExpectedFormat] = Field(
        default=None,
        description="text (default) or json",
    )
    output_key: Optional[str] = Field(
        default=None,
        description="Context key for the response (defaults to the node id)",
    )
    append_chunk: Optional[bool] = Field(
        default=None,
        description="Append the unit's chunk text to the rendered prompt",
    )

    # print
    message_template: Optional[str] = Field(default=None, description="Message template")

    extra: dict[str, Any] = Field(
        default_factory=dict,
        description="Unrecognized script keys, preserved for round trips",
    )

    @model_validator(mode="before")
    @classmethod
    def _accept_script_keys(cls, data: Any) -> Any:
        """Accept the short keys used in workflow scripts and the editor."""
        if isinstance(data, dict):
            renames = {
                "prompt": "prompt_template",
                "system": "system_template",
                "message": "message_template",
                "output": "output_key",
                "expect": "expected_format",
                "maxTokens": "max_tokens",
                "appendChunk": "append_chunk",
                "outputKey": "output_key",
            }
            for old_key, new_key in renames.items():
                if old_key in data and new_key not in data:
                    data[new_key] = data.pop(old_key)
        return data

    @property
    def node_type(self) -> Optional[NodeType]:
        """The known node type, or None for an unknown type."""
        try:
            return NodeType(self.type)
        except ValueError:
            return None

    @property
    def resolved_output_key(self) -> str:
        return self.output_key or self.id

    @property
    def wants_json(self) -> bool:
        return self.expected_format == ExpectedFormat.JSON


class ParsedScript(BaseModel):
    """Result of parsing a workflow script."""

    nodes: list[WorkflowNode] = Field(default_factory=list)
    warnings: list[str] = Field(
        default_factory=list,
        description="Authoring warnings (unknown keys, bad values, duplicate ids)",
    )


class Difficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class WorkflowMetadata(BaseModel):
    """Front matter of a .workflow file."""

    name: str = "Untitled"
    category: str = "Uncategorized"
    difficulty: Difficulty = Difficulty.BEGINNER
    tags: list[str] = Field(default_factory=list)
    description: str = ""
    use_cases: list[str] = Field(default_factory=list)


class WorkflowFile(BaseModel):
    """A workflow file: front matter metadata plus the node script body."""

    metadata: WorkflowMetadata = Field(default_factory=WorkflowMetadata)
    body: str = Field(default="", description="Node script text")


class PromptFile(BaseModel):
    """A saved single prompt with its generation settings."""

    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    body: str = ""


class WorkflowSummary(BaseModel):
    """Lightweight workflow info for listing endpoints."""

    workflow_key: str
    name: str
    category: str
    difficulty: Difficulty
    tags: list[str] = Field(default_factory=list)
    description: str = ""
    node_count: int = 0
