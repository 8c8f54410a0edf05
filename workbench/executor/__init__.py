"""Execution engine for workbench runs.

Runs a workflow node list (or a single prompt) over process units, calling
the completion provider, threading a per-unit context between nodes, and
tracking progress.

Architecture (bottom-up):
- template: {{ path }} placeholder rendering against a unit context
- evaluator: restricted evaluation of func node bodies
- cancellation: cooperative cancellation signal
- node_runner: runs one node (func, prompt, print) against one context
- workflow_runner: runs the node list over every unit, in order
- prompt_runner: single-prompt mode, one call per unit
- run_manager: background runs, progress polling, cancellation
- exporter: combined / append / CSV / per-unit document exports
"""

from workbench.executor.cancellation import CancellationSignal
from workbench.executor.evaluator import EvaluationError, RestrictedPythonEvaluator, ScriptEvaluator
from workbench.executor.exporter import ExportRow, export_rows, rows_from_chunk_results, rows_from_run
from workbench.executor.prompt_runner import run_prompt
from workbench.executor.run_manager import RunConflictError, RunManager, get_run_manager
from workbench.executor.schemas import (
    ChunkResult,
    ExportFormat,
    LogEntry,
    RunResult,
    RunSettings,
    UnitStatus,
    WorkbenchRun,
)
from workbench.executor.template import render
from workbench.executor.workflow_runner import execute, execute_script, run_document

__all__ = [
    "CancellationSignal",
    "ChunkResult",
    "EvaluationError",
    "ExportFormat",
    "ExportRow",
    "LogEntry",
    "RestrictedPythonEvaluator",
    "RunConflictError",
    "RunManager",
    "RunResult",
    "RunSettings",
    "ScriptEvaluator",
    "UnitStatus",
    "WorkbenchRun",
    "execute",
    "execute_script",
    "export_rows",
    "get_run_manager",
    "render",
    "rows_from_chunk_results",
    "rows_from_run",
    "run_document",
    "run_prompt",
]
