"""Per-node execution within one process unit.

NodeRunner dispatches on node type and reports, for each node, whether the
unit continues, is skipped (a func returned a truthy ``skip``) or fails
(evaluation error, provider error, prompt node without a prompt). It never
raises for node-level problems; everything is written to the run log.

Completion calls are consumed inside their own asyncio task so that the
run's CancellationSignal can abort the in-flight call from any thread.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from workbench.chunking.schemas import ProcessUnit
from workbench.executor.cancellation import CancellationSignal
from workbench.executor.evaluator import ScriptEvaluator
from workbench.executor.schemas import (
    LogEntry,
    LogKind,
    LogLevel,
    RunSettings,
    UsageTotals,
)
from workbench.executor.template import render
from workbench.llm.client import parse_llm_json_response
from workbench.llm.events import (
    CompletionError,
    CompletionEventType,
    CompletionRequest,
    CompletionUsage,
)
from workbench.llm.providers import CompletionProvider
from workbench.workflows.schemas import NodeType, WorkflowNode

logger = logging.getLogger(__name__)

_PROCESS_LOG_LEVELS = {
    LogLevel.INFO: logging.DEBUG,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.WARNING,
}

DeltaCallback = Callable[[str], None]


class RunLog:
    """Ordered user-visible log of a run.

    Entries are mirrored to the process log: node failures and warnings at
    warning level, everything else at debug level.
    """

    def __init__(self, on_entry: Optional[Callable[[LogEntry], None]] = None):
        self.entries: list[LogEntry] = []
        self._on_entry = on_entry

    def add(
        self,
        index: Optional[int],
        message: str,
        *,
        level: LogLevel = LogLevel.INFO,
        kind: LogKind = LogKind.PRINT,
        node_id: Optional[str] = None,
    ) -> LogEntry:
        entry = LogEntry(index=index, level=level, kind=kind, node_id=node_id, message=message)
        self.entries.append(entry)
        logger.log(_PROCESS_LOG_LEVELS[level], f"Run log {entry.format()}")
        if self._on_entry is not None:
            self._on_entry(entry)
        return entry


class StepAction(str, Enum):
    CONTINUE = "continue"
    SKIP = "skip"
    FAIL = "fail"


@dataclass
class StepResult:
    action: StepAction = StepAction.CONTINUE
    reason: Optional[str] = None


class FuncHelpers:
    """The ``helpers`` binding of func bodies."""

    def __init__(self, context: dict[str, Any], log: RunLog, index: int, node_id: str):
        self._context = context
        self._log = log
        self._index = index
        self._node_id = node_id

    def template(self, tpl: str) -> str:
        """Render *tpl* against the current unit context."""
        return render(str(tpl), self._context)

    def log(self, msg: Any) -> None:
        """Append *msg* to the run log for this unit."""
        self._log.add(
            self._index,
            msg if isinstance(msg, str) else repr(msg),
            kind=LogKind.HELPER_LOG,
            node_id=self._node_id,
        )


async def _consume_stream(
    provider: CompletionProvider,
    request: CompletionRequest,
    on_delta: Optional[DeltaCallback],
) -> tuple[str, Optional[CompletionUsage]]:
    parts: list[str] = []
    usage: Optional[CompletionUsage] = None

    stream = provider.stream(request)
    try:
        async for event in stream:
            if event.type == CompletionEventType.DELTA:
                parts.append(event.text)
                if on_delta is not None:
                    on_delta(event.text)
            elif event.type == CompletionEventType.USAGE:
                usage = event.usage
            elif event.type == CompletionEventType.DONE:
                usage = event.usage or usage
                break
            elif event.type == CompletionEventType.ERROR:
                raise CompletionError(event.error or "Unknown error")
    except CompletionError:
        raise
    except Exception as e:
        # Providers report failures as events; anything raised is a provider bug
        raise CompletionError(f"{type(e).__name__}: {e}") from e
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()

    return "".join(parts), usage


async def collect_completion(
    provider: CompletionProvider,
    request: CompletionRequest,
    signal: CancellationSignal,
    usage_totals: Optional[UsageTotals] = None,
    on_delta: Optional[DeltaCallback] = None,
) -> str:
    """Run one completion call to the end and return the full text.

    Deltas are accumulated before returning, so callers never see partial
    text. Cancelling *signal* cancels the call; the awaiting coroutine then
    gets asyncio.CancelledError.

    Raises:
        CompletionError: On an error event or a provider exception
        asyncio.CancelledError: When *signal* is cancelled during the call
    """
    loop = asyncio.get_running_loop()
    task = loop.create_task(_consume_stream(provider, request, on_delta))
    unregister = signal.add_callback(lambda: loop.call_soon_threadsafe(task.cancel))
    try:
        text, usage = await task
    finally:
        unregister()

    if usage_totals is not None:
        usage_totals.calls += 1
        if usage is not None:
            usage_totals.add(usage.input_tokens, usage.output_tokens)
    return text


class NodeRunner:
    """Executes single nodes against a unit's context."""

    def __init__(
        self,
        provider: CompletionProvider,
        settings: RunSettings,
        evaluator: ScriptEvaluator,
        log: RunLog,
        signal: CancellationSignal,
        usage: UsageTotals,
        on_delta: Optional[DeltaCallback] = None,
    ):
        self.provider = provider
        self.settings = settings
        self.evaluator = evaluator
        self.log = log
        self.signal = signal
        self.usage = usage
        self.on_delta = on_delta

    async def run_node(
        self,
        node: WorkflowNode,
        unit: ProcessUnit,
        context: dict[str, Any],
    ) -> StepResult:
        node_type = node.node_type
        if node_type == NodeType.FUNC:
            return self._run_func(node, unit, context)
        if node_type == NodeType.PROMPT:
            return await self._run_prompt(node, unit, context)
        if node_type == NodeType.PRINT:
            return self._run_print(node, unit, context)

        self._authoring_warning(unit, node, f"Unknown node type '{node.type}' in node '{node.id}', skipping it")
        return StepResult()

    def _authoring_warning(self, unit: ProcessUnit, node: WorkflowNode, message: str) -> None:
        self.log.add(
            unit.index,
            message,
            level=LogLevel.WARNING,
            kind=LogKind.AUTHORING_WARNING,
            node_id=node.id,
        )

    def _fail(self, unit: ProcessUnit, node: WorkflowNode, message: str) -> StepResult:
        self.log.add(
            unit.index,
            message,
            level=LogLevel.ERROR,
            kind=LogKind.NODE_ERROR,
            node_id=node.id,
        )
        return StepResult(StepAction.FAIL, message)

    # --- func ---

    def _run_func(self, node: WorkflowNode, unit: ProcessUnit, context: dict[str, Any]) -> StepResult:
        if not (node.expr or "").strip():
            self._authoring_warning(unit, node, f"Func node '{node.id}' has no expr, skipping it")
            return StepResult()

        helpers = FuncHelpers(context, self.log, unit.index, node.id)
        bindings = {
            "context": context,
            "chunk": unit.raw_text,
            "row": context.get("row"),
            "helpers": helpers,
        }
        try:
            value = self.evaluator.evaluate(node.expr, bindings)
        except Exception as e:
            return self._fail(unit, node, f"Func node '{node.id}' failed: {e}")

        if isinstance(value, Mapping):
            if value.get("skip"):
                reason = value.get("reason")
                message = f"Skipped by node '{node.id}'" + (f": {reason}" if reason else "")
                self.log.add(unit.index, message, kind=LogKind.SKIP, node_id=node.id)
                return StepResult(StepAction.SKIP, message)
            context.update(value)
        elif value is not None:
            context[node.id] = value
        return StepResult()

    # --- prompt ---

    def build_request(self, node: WorkflowNode, unit: ProcessUnit, context: dict[str, Any]) -> CompletionRequest:
        """Render a prompt node into a completion request, applying run defaults."""
        settings = self.settings
        system = render(node.system_template, context) if node.system_template else settings.system_prompt
        append_chunk = node.append_chunk if node.append_chunk is not None else settings.append_chunk
        return CompletionRequest(
            prompt_text=render(node.prompt_template or "", context),
            chunk_text=unit.raw_text,
            include_chunk=append_chunk,
            model=node.model or settings.model,
            temperature=node.temperature if node.temperature is not None else settings.temperature,
            max_tokens=node.max_tokens or settings.max_tokens,
            system_prompt=system,
        )

    async def _run_prompt(self, node: WorkflowNode, unit: ProcessUnit, context: dict[str, Any]) -> StepResult:
        if not (node.prompt_template or "").strip():
            return self._fail(unit, node, f"Prompt node '{node.id}' has no prompt template")

        request = self.build_request(node, unit, context)
        try:
            text = await collect_completion(
                self.provider,
                request,
                self.signal,
                usage_totals=self.usage,
                on_delta=self.on_delta,
            )
        except CompletionError as e:
            return self._fail(unit, node, f"Prompt node '{node.id}' failed: {e}")

        value: Any = text
        if node.wants_json:
            try:
                value = parse_llm_json_response(text)
            except ValueError:
                self.log.add(
                    unit.index,
                    f"Node '{node.id}' expected JSON but the response is not valid JSON, storing raw text",
                    level=LogLevel.WARNING,
                    kind=LogKind.FORMAT_WARNING,
                    node_id=node.id,
                )
                value = text

        context[node.resolved_output_key] = value
        return StepResult()

    # --- print ---

    def _run_print(self, node: WorkflowNode, unit: ProcessUnit, context: dict[str, Any]) -> StepResult:
        if node.message_template is None:
            self._authoring_warning(unit, node, f"Print node '{node.id}' has no message, skipping it")
            return StepResult()

        self.log.add(
            unit.index,
            render(node.message_template, context),
            kind=LogKind.PRINT,
            node_id=node.id,
        )
        return StepResult()
