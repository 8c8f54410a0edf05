"""Top-level workflow execution: runs a node list over every process unit.

The workflow runner is the entry point for executing a workflow. It:

1. Processes units strictly one after another, in index order
2. Seeds a fresh context per unit (row columns, chunk, row, data, index)
3. Runs the unit's nodes sequentially, stopping the unit at the first skip
   or node failure (short-circuit) without aborting the run
4. Snapshots the context of every unit that ran all of its nodes
5. Honors cooperative cancellation: the in-flight completion call is
   aborted, no further unit is started, and every outstanding unit is
   marked cancelled while earlier results are kept

Only an unparseable script is a run-level error (RunResult.error).
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from workbench.chunking.schemas import ChunkParams, ProcessUnit
from workbench.chunking.splitter import create_units
from workbench.executor.cancellation import CancellationSignal
from workbench.executor.evaluator import RestrictedPythonEvaluator, ScriptEvaluator
from workbench.executor.node_runner import DeltaCallback, NodeRunner, RunLog, StepAction
from workbench.executor.schemas import (
    LogEntry,
    LogKind,
    LogLevel,
    RunResult,
    RunSettings,
    UnitOutcome,
    UnitSnapshot,
    UnitStatus,
)
from workbench.llm.providers import CompletionProvider
from workbench.workflows.schemas import WorkflowNode
from workbench.workflows.script_parser import ScriptStructureError, parse_script

logger = logging.getLogger(__name__)

# on_progress(position, total, node_id); node_id is None at the start of a unit
ProgressCallback = Callable[[int, int, Optional[str]], None]


def build_context(unit: ProcessUnit) -> dict[str, Any]:
    """Fresh context for *unit*: row columns first, then the built-ins."""
    context: dict[str, Any] = {}
    row = dict(unit.row) if unit.row is not None else None
    if row:
        context.update(row)
    context["chunk"] = unit.raw_text
    context["row"] = row
    context["data"] = row
    context["index"] = unit.index
    return context


def snapshot_context(context: dict[str, Any], unit: ProcessUnit) -> dict[str, Any]:
    snapshot = dict(context)
    snapshot["chunk"] = unit.raw_text
    return snapshot


async def _run_unit(
    runner: NodeRunner,
    nodes: list[WorkflowNode],
    unit: ProcessUnit,
    context: dict[str, Any],
    position: int,
    total: int,
    on_progress: Optional[ProgressCallback],
) -> tuple[UnitStatus, Optional[str], Optional[str]]:
    """Run every node for one unit. Returns (status, node_id, reason)."""
    for node in nodes:
        if on_progress is not None:
            on_progress(position, total, node.id)
        step = await runner.run_node(node, unit, context)
        if step.action == StepAction.SKIP:
            return UnitStatus.SKIPPED, node.id, step.reason
        if step.action == StepAction.FAIL:
            return UnitStatus.FAILED, node.id, step.reason
    return UnitStatus.COMPLETED, None, None


async def execute(
    nodes: list[WorkflowNode],
    units: list[ProcessUnit],
    provider: CompletionProvider,
    *,
    settings: Optional[RunSettings] = None,
    signal: Optional[CancellationSignal] = None,
    evaluator: Optional[ScriptEvaluator] = None,
    unit_limit: int = 0,
    on_progress: Optional[ProgressCallback] = None,
    on_log: Optional[Callable[[LogEntry], None]] = None,
    on_delta: Optional[DeltaCallback] = None,
) -> RunResult:
    """Run *nodes* over *units* and collect logs, snapshots and outcomes.

    Args:
        unit_limit: Process only the first N units (0 = all)
        on_progress: Called when a unit starts and before each node
        on_log: Called for every run log entry as it is written
        on_delta: Called with each streamed text delta of prompt nodes

    Returns:
        RunResult; never raises for node, provider or cancellation events
    """
    settings = settings or RunSettings()
    signal = signal or CancellationSignal()
    evaluator = evaluator or RestrictedPythonEvaluator()

    if unit_limit > 0:
        units = units[:unit_limit]

    log = RunLog(on_entry=on_log)
    result = RunResult(outcomes=[UnitOutcome(index=unit.index) for unit in units])
    runner = NodeRunner(provider, settings, evaluator, log, signal, result.usage, on_delta)
    total = len(units)

    logger.info(f"Executing workflow: {len(nodes)} nodes over {total} units, model={settings.model}")

    for position, unit in enumerate(units):
        if signal.cancelled:
            break

        outcome = result.outcomes[position]
        outcome.status = UnitStatus.RUNNING
        if on_progress is not None:
            on_progress(position, total, None)

        context = build_context(unit)
        try:
            status, node_id, reason = await _run_unit(
                runner, nodes, unit, context, position, total, on_progress
            )
        except asyncio.CancelledError:
            if not signal.cancelled:
                raise
            status, node_id, reason = UnitStatus.CANCELLED, None, signal.reason or "Cancelled"
            log.add(unit.index, "Cancelled while running", level=LogLevel.WARNING, kind=LogKind.CANCELLED)

        outcome.status = status
        outcome.node_id = node_id
        outcome.error = reason
        if status == UnitStatus.COMPLETED:
            result.per_unit.append(
                UnitSnapshot(index=unit.index, context=snapshot_context(context, unit))
            )

    if signal.cancelled:
        for outcome in result.outcomes:
            if outcome.status in (UnitStatus.PENDING, UnitStatus.RUNNING):
                outcome.status = UnitStatus.CANCELLED
                outcome.error = signal.reason or "Cancelled"
        result.cancelled = True
        log.add(
            None,
            f"Run cancelled: {len(result.per_unit)} of {total} units completed",
            level=LogLevel.WARNING,
            kind=LogKind.CANCELLED,
        )

    result.logs = log.entries
    counts = {s.value: sum(1 for o in result.outcomes if o.status == s) for s in UnitStatus}
    logger.info(
        f"Workflow finished: {counts['completed']} completed, {counts['skipped']} skipped, "
        f"{counts['failed']} failed, {counts['cancelled']} cancelled, "
        f"{result.usage.calls} completion calls"
    )
    return result


async def execute_script(
    script_text: str,
    units: list[ProcessUnit],
    provider: CompletionProvider,
    **kwargs: Any,
) -> RunResult:
    """Parse *script_text* and execute it.

    A script without a node list is a run-level error: the result carries
    ``error`` and no unit is processed. Parse warnings are copied to the
    result and the run log.
    """
    try:
        parsed = parse_script(script_text)
    except ScriptStructureError as e:
        logger.warning(f"Workflow script rejected: {e}")
        return RunResult(
            error=str(e),
            logs=[LogEntry(level=LogLevel.ERROR, kind=LogKind.RUN, message=str(e))],
        )

    result = await execute(parsed.nodes, units, provider, **kwargs)
    warning_entries = [
        LogEntry(level=LogLevel.WARNING, kind=LogKind.AUTHORING_WARNING, message=w)
        for w in parsed.warnings
    ]
    result.warnings = list(parsed.warnings)
    result.logs = warning_entries + result.logs
    return result


async def run_document(
    content: str,
    script_text: str,
    provider: CompletionProvider,
    chunk_params: Optional[ChunkParams] = None,
    **kwargs: Any,
) -> RunResult:
    """Chunk *content* and run the workflow script over the resulting units."""
    units = create_units(content, chunk_params)
    if not units:
        logger.info("No units to process, nothing to run")
    return await execute_script(script_text, units, provider, **kwargs)
