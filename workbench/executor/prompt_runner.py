"""Single-prompt mode: one prompt template applied to every unit.

For table units the prompt's ``{{ column }}`` placeholders are filled from
the row (placeholders that name no column are left as written) and the
unit text sent to the model is the row as ``column: value`` lines. Text
units are sent as-is after the prompt.

Each unit's call is isolated: a failed call records its error and the run
moves on. Cancelling stops the in-flight call and marks it and every unit
not yet started with ``error="Cancelled"``.
"""

import asyncio
import logging
import re
from typing import Callable, Optional

from workbench.chunking.schemas import ProcessUnit
from workbench.executor.cancellation import CancellationSignal
from workbench.executor.node_runner import collect_completion
from workbench.executor.schemas import ChunkResult, RunSettings, UsageTotals
from workbench.llm.events import CompletionError, CompletionRequest
from workbench.llm.providers import CompletionProvider

logger = logging.getLogger(__name__)

_ROW_PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")

CANCELLED_ERROR = "Cancelled"


def fill_row_placeholders(prompt: str, row: dict[str, str]) -> str:
    """Replace ``{{ column }}`` with the row's value; unknown names stay verbatim."""
    return _ROW_PLACEHOLDER_RE.sub(
        lambda match: row[match.group(1)] if match.group(1) in row else match.group(0),
        prompt,
    )


def row_as_lines(row: dict[str, str]) -> str:
    return "\n".join(f"{key}: {value}" for key, value in row.items())


def unit_prompt(prompt: str, unit: ProcessUnit) -> tuple[str, str]:
    """The (prompt text, chunk text) sent for *unit*."""
    if unit.row is not None:
        return fill_row_placeholders(prompt, unit.row), row_as_lines(unit.row)
    return prompt, unit.raw_text


async def run_prompt(
    units: list[ProcessUnit],
    prompt: str,
    provider: CompletionProvider,
    *,
    settings: Optional[RunSettings] = None,
    include_chunk: bool = True,
    signal: Optional[CancellationSignal] = None,
    usage: Optional[UsageTotals] = None,
    on_result: Optional[Callable[[ChunkResult], None]] = None,
    on_delta: Optional[Callable[[int, str], None]] = None,
) -> list[ChunkResult]:
    """Send *prompt* once per unit and collect ordered ChunkResults.

    Args:
        include_chunk: Append each unit's text after the prompt
        on_result: Called as each unit finishes (completed, failed or cancelled)
        on_delta: Called with (unit index, text delta) while streaming
    """
    settings = settings or RunSettings()
    signal = signal or CancellationSignal()
    results = [ChunkResult(index=unit.index, chunk=unit.raw_text) for unit in units]

    logger.info(f"Single-prompt run over {len(units)} units, model={settings.model}")

    for position, unit in enumerate(units):
        if signal.cancelled:
            break

        prompt_text, chunk_text = unit_prompt(prompt, unit)
        request = CompletionRequest(
            prompt_text=prompt_text,
            chunk_text=chunk_text,
            include_chunk=include_chunk,
            model=settings.model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        )
        result = results[position]
        result.chunk = chunk_text

        def _delta(text: str, index: int = unit.index) -> None:
            result.response += text
            if on_delta is not None:
                on_delta(index, text)

        try:
            text = await collect_completion(provider, request, signal, usage, _delta)
            result.response = text
            result.is_complete = True
        except CompletionError as e:
            logger.warning(f"Prompt call for unit {unit.index} failed: {e}")
            result.error = str(e)
        except asyncio.CancelledError:
            if not signal.cancelled:
                raise
            result.error = CANCELLED_ERROR

        if on_result is not None:
            on_result(result)

    if signal.cancelled:
        for result in results:
            if not result.is_complete and result.error is None:
                result.error = CANCELLED_ERROR
        logger.info("Single-prompt run cancelled")

    return results
