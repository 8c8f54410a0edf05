"""Workflow scripts and the workflow library.

A workflow is an ordered list of typed nodes (func, prompt, print) written
in a small YAML-like script format:
- script_parser: script text -> node list, with authoring warnings
- script_writer: node list -> script text, and editor variable hints
- files: .workflow / .prompt files with YAML front matter
- registry: built-in and saved workflows
"""

from .schemas import (
    BUILTIN_VARIABLES,
    Difficulty,
    ExpectedFormat,
    NodeType,
    ParsedScript,
    PromptFile,
    WorkflowFile,
    WorkflowMetadata,
    WorkflowNode,
    WorkflowSummary,
)
from .script_parser import ScriptStructureError, parse_nodes, parse_script
from .script_writer import available_variables, serialize_nodes
from .registry import WorkflowRegistry, get_workflow_registry

__all__ = [
    "BUILTIN_VARIABLES",
    "Difficulty",
    "ExpectedFormat",
    "NodeType",
    "ParsedScript",
    "PromptFile",
    "ScriptStructureError",
    "WorkflowFile",
    "WorkflowMetadata",
    "WorkflowNode",
    "WorkflowRegistry",
    "WorkflowSummary",
    "available_variables",
    "get_workflow_registry",
    "parse_nodes",
    "parse_script",
    "serialize_nodes",
]
