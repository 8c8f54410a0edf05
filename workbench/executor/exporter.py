"""Export of run results.

Results of either mode (workflow RunResult or single-prompt ChunkResults)
are first normalized to ExportRows, then rendered as:

- combined: one new Markdown document, optionally with a header per unit
- append: text to append to the open document
- csv: a table with columns ``Unit #, Original Text, Response, Status``
- documents: one new document per unit

Unit order is preserved in every form.
"""

import logging
from typing import Any, Optional, Union

from jinja2 import BaseLoader, Environment
from pydantic import BaseModel

from workbench.chunking.csv_table import stringify_csv
from workbench.chunking.schemas import ProcessUnit
from workbench.executor.schemas import (
    ChunkResult,
    ExportedDocument,
    ExportFormat,
    RunResult,
    UnitStatus,
)
from workbench.executor.template import stringify
from workbench.workflows.schemas import BUILTIN_VARIABLES

logger = logging.getLogger(__name__)

CSV_HEADERS = ["Unit #", "Original Text", "Response", "Status"]
NO_RESPONSE = "No response"

COMBINED_SEPARATOR = "\n\n---\n\n"
PLAIN_SEPARATOR = "\n\n"

SECTION_TEMPLATES = {
    (ExportFormat.COMBINED, True): "## Chunk {{ row.number }}\n\n{{ row.text }}",
    (ExportFormat.COMBINED, False): "{{ row.text }}",
    (ExportFormat.APPEND, True): "\n\n## AI Response {{ row.number }}\n\n{{ row.text }}",
    (ExportFormat.APPEND, False): "\n\n{{ row.text }}",
    (ExportFormat.DOCUMENTS, True): "## Chunk {{ row.number }}\n\n{{ row.text }}",
    (ExportFormat.DOCUMENTS, False): "{{ row.text }}",
}

_STATUS_LABELS = {
    UnitStatus.COMPLETED: "Complete",
    UnitStatus.FAILED: "Error",
    UnitStatus.SKIPPED: "Skipped",
    UnitStatus.CANCELLED: "Cancelled",
}

_env = Environment(
    loader=BaseLoader(),
    autoescape=False,  # Markdown and plain text, not HTML
    trim_blocks=True,
    lstrip_blocks=True,
)


class ExportRow(BaseModel):
    """One unit's result, independent of the run mode."""

    number: int
    original_text: str = ""
    response: str = ""
    error: Optional[str] = None
    status: str = "Incomplete"

    @property
    def text(self) -> str:
        return self.response or self.error or NO_RESPONSE


def rows_from_chunk_results(results: list[ChunkResult]) -> list[ExportRow]:
    rows = []
    for position, result in enumerate(results):
        if result.error:
            status = "Cancelled" if result.error == "Cancelled" else "Error"
        else:
            status = "Complete" if result.is_complete else "Incomplete"
        rows.append(ExportRow(
            number=position + 1,
            original_text=result.chunk,
            response=result.response,
            error=result.error,
            status=status,
        ))
    return rows


def _produced_values(context: dict[str, Any], unit: Optional[ProcessUnit]) -> dict[str, Any]:
    """Context entries written by nodes (built-ins and row columns removed)."""
    hidden = set(BUILTIN_VARIABLES)
    if unit is not None and unit.row:
        hidden.update(unit.row.keys())
    return {k: v for k, v in context.items() if k not in hidden}


def rows_from_run(
    result: RunResult,
    units: list[ProcessUnit],
    response_key: Optional[str] = None,
) -> list[ExportRow]:
    """Export rows for a workflow run.

    The response of a completed unit is its context value under
    *response_key*, or, without a key, every value the nodes produced,
    as JSON.
    """
    by_index = {unit.index: unit for unit in units}
    rows = []
    for position, outcome in enumerate(result.outcomes):
        unit = by_index.get(outcome.index)
        snapshot = result.snapshot_for(outcome.index)
        response = ""
        if snapshot is not None:
            if response_key:
                response = stringify(snapshot.context.get(response_key))
            else:
                produced = _produced_values(snapshot.context, unit)
                response = stringify(produced) if produced else ""
        rows.append(ExportRow(
            number=position + 1,
            original_text=unit.raw_text if unit is not None else "",
            response=response,
            error=outcome.error,
            status=_STATUS_LABELS.get(outcome.status, "Incomplete"),
        ))
    return rows


def _sections(rows: list[ExportRow], fmt: ExportFormat, include_headers: bool) -> list[str]:
    template = _env.from_string(SECTION_TEMPLATES[(fmt, include_headers)])
    return [template.render(row=row) for row in rows]


def combined_document(rows: list[ExportRow], include_headers: bool = True) -> str:
    separator = COMBINED_SEPARATOR if include_headers else PLAIN_SEPARATOR
    return separator.join(_sections(rows, ExportFormat.COMBINED, include_headers))


def append_text(rows: list[ExportRow], include_headers: bool = True) -> str:
    return PLAIN_SEPARATOR.join(_sections(rows, ExportFormat.APPEND, include_headers))


def results_csv(rows: list[ExportRow], delimiter: str = ",") -> str:
    records = [
        {
            "Unit #": str(row.number),
            "Original Text": row.original_text,
            "Response": row.response or row.error or "",
            "Status": row.status,
        }
        for row in rows
    ]
    return stringify_csv(CSV_HEADERS, records, delimiter)


def separate_documents(
    rows: list[ExportRow],
    title_prefix: str = "AI Results",
    include_headers: bool = False,
) -> list[ExportedDocument]:
    sections = _sections(rows, ExportFormat.DOCUMENTS, include_headers)
    return [
        ExportedDocument(title=f"{title_prefix} - Unit {row.number}", content=section)
        for row, section in zip(rows, sections)
    ]


def export_rows(
    rows: list[ExportRow],
    fmt: ExportFormat,
    *,
    include_headers: bool = True,
    title_prefix: str = "AI Results",
    delimiter: str = ",",
) -> Union[str, list[ExportedDocument]]:
    """Render *rows* in the requested export format."""
    logger.info(f"Exporting {len(rows)} results as {fmt.value}")
    if fmt == ExportFormat.COMBINED:
        return combined_document(rows, include_headers)
    if fmt == ExportFormat.APPEND:
        return append_text(rows, include_headers)
    if fmt == ExportFormat.CSV:
        return results_csv(rows, delimiter)
    return separate_documents(rows, title_prefix, include_headers)
