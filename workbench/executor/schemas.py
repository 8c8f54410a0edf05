"""Executor-side schemas for runs, results, logs and progress.

These are distinct from the workflow schemas (which describe node lists).
Executor schemas describe what happens during and after a run.
"""

import os
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from workbench.chunking.schemas import ProcessUnit

DEFAULT_MODEL = os.environ.get("WORKBENCH_DEFAULT_MODEL", "gpt-4.1")
DEFAULT_TEMPERATURE = float(os.environ.get("WORKBENCH_DEFAULT_TEMPERATURE", "0.7"))
DEFAULT_MAX_TOKENS = int(os.environ.get("WORKBENCH_DEFAULT_MAX_TOKENS", "500"))
DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunSettings(BaseModel):
    """Workflow-level defaults used when a prompt node leaves a field unset."""

    model: str = Field(default=DEFAULT_MODEL)
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0, le=2)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, ge=1)
    system_prompt: str = Field(
        default=DEFAULT_SYSTEM_PROMPT,
        description="System prompt for prompt nodes without a system template",
    )
    append_chunk: bool = Field(
        default=False,
        description="Default for prompt nodes that do not set append_chunk",
    )


class UnitStatus(str, Enum):
    """Per-unit execution states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


class LogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LogKind(str, Enum):
    """What produced a run log entry."""
    PRINT = "print"
    HELPER_LOG = "helper_log"
    SKIP = "skip"
    NODE_ERROR = "node_execution_error"
    AUTHORING_WARNING = "node_authoring_warning"
    FORMAT_WARNING = "format_coercion_warning"
    CANCELLED = "cancelled"
    RUN = "run"


class LogEntry(BaseModel):
    """One line of the user-visible run log."""

    index: Optional[int] = Field(default=None, description="Unit index, None for run-level entries")
    level: LogLevel = LogLevel.INFO
    kind: LogKind = LogKind.PRINT
    node_id: Optional[str] = None
    message: str

    def format(self) -> str:
        if self.index is None:
            return self.message
        return f"[{self.index}] {self.message}"


class UnitSnapshot(BaseModel):
    """Final context of a unit that ran every node without short-circuiting."""

    index: int
    context: dict[str, Any] = Field(default_factory=dict)


class UnitOutcome(BaseModel):
    """Terminal status of one unit."""

    index: int
    status: UnitStatus = UnitStatus.PENDING
    node_id: Optional[str] = Field(
        default=None,
        description="Node that skipped or failed the unit",
    )
    error: Optional[str] = None


class UsageTotals(BaseModel):
    """Token usage summed over every completion call of a run."""

    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0

    def add(self, input_tokens: int = 0, output_tokens: int = 0) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens


class RunResult(BaseModel):
    """Outcome of a workflow run.

    ``error`` is only set for run-level failures (an unparseable script);
    node and provider failures live in ``logs`` and ``outcomes``.
    """

    logs: list[LogEntry] = Field(default_factory=list)
    per_unit: list[UnitSnapshot] = Field(default_factory=list)
    outcomes: list[UnitOutcome] = Field(default_factory=list)
    error: Optional[str] = None
    cancelled: bool = False
    warnings: list[str] = Field(
        default_factory=list,
        description="Script authoring warnings from parsing",
    )
    usage: UsageTotals = Field(default_factory=UsageTotals)

    def log_lines(self) -> list[str]:
        return [entry.format() for entry in self.logs]

    def snapshot_for(self, index: int) -> Optional[UnitSnapshot]:
        for snapshot in self.per_unit:
            if snapshot.index == index:
                return snapshot
        return None


class ChunkResult(BaseModel):
    """Result of single-prompt mode for one unit."""

    index: int
    chunk: str = ""
    response: str = ""
    is_complete: bool = False
    error: Optional[str] = None


class ExportFormat(str, Enum):
    COMBINED = "combined"
    APPEND = "append"
    CSV = "csv"
    DOCUMENTS = "documents"


class ExportedDocument(BaseModel):
    """A new document produced by an export."""

    title: str
    content: str


class RunKind(str, Enum):
    WORKFLOW = "workflow"
    PROMPT = "prompt"


class RunStatus(str, Enum):
    """Run lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunProgress(BaseModel):
    """Progress snapshot for a running run."""

    current_unit: int = 0
    total_units: int = 0
    completed_units: int = 0
    current_node: Optional[str] = None
    partial_text: str = Field(
        default="",
        description="Text streamed so far by the in-flight completion call",
    )
    detail: str = ""


class WorkbenchRun(BaseModel):
    """Full state of one run held by the run manager."""

    run_id: str = Field(default_factory=lambda: f"run-{uuid.uuid4().hex[:12]}")
    kind: RunKind = RunKind.WORKFLOW
    status: RunStatus = RunStatus.PENDING
    units: list[ProcessUnit] = Field(
        default_factory=list,
        description="Units the run processes, kept for export",
    )
    progress: RunProgress = Field(default_factory=RunProgress)
    logs: list[LogEntry] = Field(
        default_factory=list,
        description="Run log entries as they are written (workflow runs)",
    )
    result: Optional[RunResult] = None
    chunk_results: list[ChunkResult] = Field(default_factory=list)
    error: Optional[str] = None
    created_at: str = Field(default_factory=_now)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
