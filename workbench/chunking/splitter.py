"""Split a document's raw content into ordered process units.

Free-text modes cut the content into fragments and drop fragments that are
empty after trimming. Table mode turns each data row of a delimited table
into one unit whose ``row`` holds the header -> cell mapping and whose
``raw_text`` is the row serialized as compact JSON.

When ``auto_detect_table`` is set (the default), content that passes the
table validity check is processed in table mode whatever mode was asked
for, matching how the workbench switches into row processing as soon as a
CSV document is open.
"""

import json
import logging
import re
from typing import Optional

from .csv_table import detect_table
from .schemas import ChunkMode, ChunkParams, ProcessUnit, TableData

logger = logging.getLogger(__name__)

_BLANK_LINE_RE = re.compile(r"\n\s*\n")
_NEWLINE_RE = re.compile(r"\r?\n")


class ChunkingError(ValueError):
    """Invalid chunking parameters."""


def serialize_row(row: dict[str, str]) -> str:
    """Compact JSON form of a table row, used as the unit's chunk text."""
    return json.dumps(row, ensure_ascii=False, separators=(",", ":"))


def split_text(content: str, params: ChunkParams) -> list[str]:
    """Cut free text into non-empty fragments according to *params.mode*."""
    mode = params.mode

    if mode in (ChunkMode.NONE, ChunkMode.TABLE):
        parts = [content]
    elif mode == ChunkMode.NEWLINE:
        parts = _NEWLINE_RE.split(content)
    elif mode == ChunkMode.BLANK_LINE:
        parts = _BLANK_LINE_RE.split(content)
    elif mode == ChunkMode.WORD_COUNT:
        if params.word_count < 1:
            raise ChunkingError(f"word_count must be >= 1, got {params.word_count}")
        words = content.split()
        step = params.word_count
        parts = [" ".join(words[i:i + step]) for i in range(0, len(words), step)]
    elif mode == ChunkMode.CHARACTER_COUNT:
        if params.character_count < 1:
            raise ChunkingError(
                f"character_count must be >= 1, got {params.character_count}"
            )
        step = params.character_count
        parts = [content[i:i + step] for i in range(0, len(content), step)]
    elif mode == ChunkMode.CUSTOM_SEPARATOR:
        parts = content.split(params.separator) if params.separator else [content]
    else:
        raise ChunkingError(f"Unknown chunk mode: {mode}")

    return [p for p in parts if p.strip()]


def table_units(table: TableData, row_limit: int = 0) -> list[ProcessUnit]:
    """One unit per data row, truncated to *row_limit* rows when positive."""
    if row_limit < 0:
        raise ChunkingError(f"row_limit must be >= 0, got {row_limit}")
    rows = table.rows[:row_limit] if row_limit > 0 else table.rows
    return [
        ProcessUnit(index=i, raw_text=serialize_row(row), row=dict(row))
        for i, row in enumerate(rows)
    ]


def create_units(content: str, params: Optional[ChunkParams] = None) -> list[ProcessUnit]:
    """Chunk *content* into an ordered sequence of process units.

    Empty content yields an empty list; callers treat that as a no-op run.

    Raises:
        ChunkingError: If a count parameter used by the selected mode is < 1
    """
    params = params or ChunkParams()
    if not content:
        return []

    if params.mode == ChunkMode.TABLE or params.auto_detect_table:
        table = detect_table(content)
        if table is not None:
            units = table_units(table, params.row_limit)
            logger.info(
                f"Table mode: {len(table.headers)} columns, "
                f"{len(table.rows)} rows, delimiter={table.delimiter!r}, "
                f"{len(units)} units"
            )
            return units
        if params.mode == ChunkMode.TABLE:
            logger.warning("Content is not tabular, processing it as a single text unit")

    fragments = split_text(content, params)
    logger.info(f"Split content ({len(content):,} chars) into {len(fragments)} units, mode={params.mode.value}")
    return [ProcessUnit(index=i, raw_text=text) for i, text in enumerate(fragments)]
