"""Run lifecycle management for the workbench.

Handles:
- Run creation (one active run per manager; a second start is refused)
- Execution in a background thread with its own event loop
- Progress updates (for frontend polling)
- Cancellation (signal-based, aborts the in-flight completion call)
- Run status queries

State is in-memory (per process). Finished runs are kept for polling up
to MAX_FINISHED_RUNS, oldest dropped first.
"""

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine, Optional

from workbench.chunking.schemas import ProcessUnit
from workbench.executor.cancellation import CancellationSignal
from workbench.executor.prompt_runner import run_prompt
from workbench.executor.schemas import (
    ChunkResult,
    LogEntry,
    RunKind,
    RunSettings,
    RunStatus,
    UsageTotals,
    WorkbenchRun,
)
from workbench.executor.workflow_runner import execute
from workbench.llm.factory import ModelRoutingProvider
from workbench.llm.providers import CompletionProvider
from workbench.workflows.schemas import WorkflowNode

logger = logging.getLogger(__name__)

MAX_FINISHED_RUNS = 50

_ACTIVE_STATUSES = (RunStatus.PENDING, RunStatus.RUNNING)


class RunConflictError(RuntimeError):
    """A run was started while another one is still active."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunManager:
    """Owns the runs of one workbench instance."""

    def __init__(self, provider_factory: Callable[[], CompletionProvider] = ModelRoutingProvider):
        self._provider_factory = provider_factory
        self._runs: dict[str, WorkbenchRun] = {}
        self._signals: dict[str, CancellationSignal] = {}
        self._threads: dict[str, threading.Thread] = {}
        self._active_run_id: Optional[str] = None
        self._lock = threading.Lock()

    # --- starting runs ---

    def _claim(
        self, kind: RunKind, units: list[ProcessUnit], total_units: int
    ) -> tuple[WorkbenchRun, CancellationSignal]:
        with self._lock:
            if self._active_run_id is not None:
                active = self._runs.get(self._active_run_id)
                if active is not None and active.status in _ACTIVE_STATUSES:
                    raise RunConflictError(
                        f"Run {active.run_id} is still {active.status.value}; cancel it first"
                    )

            run = WorkbenchRun(kind=kind, units=units[:total_units])
            run.progress.total_units = total_units
            run.progress.detail = "Waiting to start"
            signal = CancellationSignal()
            self._runs[run.run_id] = run
            self._signals[run.run_id] = signal
            self._active_run_id = run.run_id
            self._prune()

        logger.info(f"Created {kind.value} run {run.run_id} over {total_units} units")
        return run, signal

    def _prune(self) -> None:
        finished = [r for r in self._runs.values() if r.status not in _ACTIVE_STATUSES]
        for run in finished[:max(0, len(finished) - MAX_FINISHED_RUNS)]:
            self._runs.pop(run.run_id, None)
            self._signals.pop(run.run_id, None)
            self._threads.pop(run.run_id, None)

    def start_workflow_run(
        self,
        nodes: list[WorkflowNode],
        units: list[ProcessUnit],
        *,
        settings: Optional[RunSettings] = None,
        unit_limit: int = 0,
        warnings: Optional[list[str]] = None,
    ) -> WorkbenchRun:
        """Start executing *nodes* over *units* in the background.

        Raises:
            RunConflictError: If another run is still active
        """
        total = min(len(units), unit_limit) if unit_limit > 0 else len(units)
        provider = self._provider_factory()
        run, signal = self._claim(RunKind.WORKFLOW, units, total)
        run_id = run.run_id

        def on_progress(position: int, total_units: int, node_id: Optional[str]) -> None:
            with self._lock:
                progress = self._runs[run_id].progress
                progress.current_unit = position
                progress.total_units = total_units
                progress.completed_units = position
                progress.current_node = node_id
                progress.partial_text = ""
                progress.detail = f"Unit {position + 1}/{total_units}" + (
                    f": node '{node_id}'" if node_id else ""
                )

        def on_log(entry: LogEntry) -> None:
            with self._lock:
                self._runs[run_id].logs.append(entry)

        def on_delta(text: str) -> None:
            with self._lock:
                self._runs[run_id].progress.partial_text += text

        async def work() -> None:
            result = await execute(
                nodes,
                units,
                provider,
                settings=settings,
                signal=signal,
                unit_limit=unit_limit,
                on_progress=on_progress,
                on_log=on_log,
                on_delta=on_delta,
            )
            result.warnings = list(warnings or [])
            with self._lock:
                self._runs[run_id].result = result

        self._start_thread(run_id, signal, work)
        return self.get_run(run_id)

    def start_prompt_run(
        self,
        units: list[ProcessUnit],
        prompt: str,
        *,
        settings: Optional[RunSettings] = None,
        include_chunk: bool = True,
    ) -> WorkbenchRun:
        """Start single-prompt mode over *units* in the background.

        Raises:
            RunConflictError: If another run is still active
        """
        provider = self._provider_factory()
        run, signal = self._claim(RunKind.PROMPT, units, len(units))
        run_id = run.run_id
        with self._lock:
            self._runs[run_id].chunk_results = [
                ChunkResult(index=unit.index, chunk=unit.raw_text) for unit in units
            ]
        positions = {unit.index: position for position, unit in enumerate(units)}

        def on_delta(index: int, text: str) -> None:
            with self._lock:
                run_state = self._runs[run_id]
                position = positions[index]
                run_state.progress.current_unit = position
                run_state.progress.detail = f"Unit {position + 1}/{len(units)}"
                run_state.chunk_results[position].response += text

        def on_result(result: ChunkResult) -> None:
            with self._lock:
                run_state = self._runs[run_id]
                run_state.chunk_results[positions[result.index]] = result.model_copy()
                run_state.progress.completed_units += 1

        async def work() -> None:
            results = await run_prompt(
                units,
                prompt,
                provider,
                settings=settings,
                include_chunk=include_chunk,
                signal=signal,
                usage=UsageTotals(),
                on_result=on_result,
                on_delta=on_delta,
            )
            with self._lock:
                self._runs[run_id].chunk_results = results

        self._start_thread(run_id, signal, work)
        return self.get_run(run_id)

    # --- execution ---

    def _start_thread(
        self,
        run_id: str,
        signal: CancellationSignal,
        work: Callable[[], Coroutine[Any, Any, None]],
    ) -> threading.Thread:
        thread = threading.Thread(
            target=self._execute,
            args=(run_id, signal, work),
            name=f"workbench-{run_id}",
            daemon=True,
        )
        with self._lock:
            self._threads[run_id] = thread
        thread.start()
        logger.info(f"Started execution thread for run {run_id}")
        return thread

    def _execute(
        self,
        run_id: str,
        signal: CancellationSignal,
        work: Callable[[], Coroutine[Any, Any, None]],
    ) -> None:
        with self._lock:
            run = self._runs[run_id]
            run.status = RunStatus.RUNNING
            run.started_at = _now()

        error: Optional[str] = None
        try:
            asyncio.run(work())
        except Exception as e:
            logger.exception(f"Run {run_id} failed: {e}")
            error = str(e) or type(e).__name__

        with self._lock:
            run = self._runs[run_id]
            if error is not None:
                run.status = RunStatus.FAILED
                run.error = error
            elif signal.cancelled:
                run.status = RunStatus.CANCELLED
            else:
                run.status = RunStatus.COMPLETED
            run.completed_at = _now()
            run.progress.current_node = None
            run.progress.partial_text = ""
            run.progress.completed_units = self._finished_units(run)
            run.progress.detail = run.status.value.capitalize()
            if self._active_run_id == run_id:
                self._active_run_id = None

        logger.info(f"Run {run_id} status → {run.status.value}" + (f" (error: {error})" if error else ""))

    @staticmethod
    def _finished_units(run: WorkbenchRun) -> int:
        if run.result is not None:
            return sum(1 for o in run.result.outcomes if o.status.value in ("completed", "skipped", "failed"))
        return sum(1 for r in run.chunk_results if r.is_complete or (r.error and r.error != "Cancelled"))

    # --- queries and control ---

    def get_run(self, run_id: str) -> Optional[WorkbenchRun]:
        """Snapshot of a run's state, or None for an unknown run."""
        with self._lock:
            run = self._runs.get(run_id)
            return run.model_copy(deep=True) if run is not None else None

    def active_run(self) -> Optional[WorkbenchRun]:
        with self._lock:
            run_id = self._active_run_id
        return self.get_run(run_id) if run_id else None

    def list_runs(self) -> list[WorkbenchRun]:
        """All known runs, newest first."""
        with self._lock:
            runs = [run.model_copy(deep=True) for run in self._runs.values()]
        return sorted(runs, key=lambda r: r.created_at, reverse=True)

    def cancel(self, run_id: str) -> bool:
        """Request cancellation. Returns True if the run was active."""
        with self._lock:
            run = self._runs.get(run_id)
            signal = self._signals.get(run_id)
            if run is None or signal is None:
                return False
            if run.status not in _ACTIVE_STATUSES:
                logger.warning(f"Cannot cancel run {run_id}: status is {run.status.value}")
                return False

        signal.cancel("Cancelled by user")
        logger.info(f"Cancellation requested for run {run_id}")
        return True

    def wait(self, run_id: str, timeout: Optional[float] = None) -> bool:
        """Block until the run's thread exits. Returns False on timeout."""
        with self._lock:
            thread = self._threads.get(run_id)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()


# Global run manager instance
_manager: Optional[RunManager] = None


def get_run_manager() -> RunManager:
    """Get the global run manager instance."""
    global _manager
    if _manager is None:
        _manager = RunManager()
    return _manager
