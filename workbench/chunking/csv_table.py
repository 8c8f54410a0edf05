"""Delimited-table parsing, detection and serialization.

Handles RFC-4180-like text: double-quote quoting with "" as an escaped
quote, CR/LF/CRLF row endings, and a header row. The field delimiter is
auto-detected among comma, semicolon, tab and pipe.

detect_table() is the gate between "table" and "free text" processing. Its
thresholds were tuned empirically; changing them changes which documents
silently switch processing modes.
"""

import logging
from typing import Optional

from .schemas import TableData

logger = logging.getLogger(__name__)

DELIMITER_CANDIDATES = [",", ";", "\t", "|"]

# Lines scanned when scoring delimiter candidates
DELIMITER_SAMPLE_LINES = 10

# Table validity heuristic
TABLE_SAMPLE_ROWS = 20
MIN_FILLED_ROW_RATIO = 0.7  # share of sampled rows that must be "filled"
MIN_FILLED_CELL_RATIO = 0.3  # share of non-empty cells that makes a row "filled"


def _count_unquoted(line: str, candidate: str) -> int:
    count = 0
    in_quotes = False
    i = 0
    while i < len(line):
        ch = line[i]
        if ch == '"':
            if in_quotes and i + 1 < len(line) and line[i + 1] == '"':
                i += 1  # escaped quote stays inside the field
            else:
                in_quotes = not in_quotes
        elif not in_quotes and ch == candidate:
            count += 1
        i += 1
    return count


def detect_delimiter(text: str) -> str:
    """Pick the candidate with the most unquoted occurrences.

    Ties resolve to the earliest candidate, so comma wins over the others.
    """
    lines = text.splitlines()[:DELIMITER_SAMPLE_LINES]
    best = DELIMITER_CANDIDATES[0]
    best_score = -1
    for candidate in DELIMITER_CANDIDATES:
        score = sum(_count_unquoted(line, candidate) for line in lines)
        if score > best_score:
            best, best_score = candidate, score
    return best


def _split_records(text: str, delimiter: str) -> list[list[str]]:
    records: list[list[str]] = []
    row: list[str] = []
    cell: list[str] = []
    in_quotes = False
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        if in_quotes:
            if ch == '"':
                if i + 1 < n and text[i + 1] == '"':
                    cell.append('"')
                    i += 1
                else:
                    in_quotes = False
            else:
                cell.append(ch)
        elif ch == '"':
            in_quotes = True
        elif ch == delimiter:
            row.append("".join(cell))
            cell = []
        elif ch in "\r\n":
            if ch == "\r" and i + 1 < n and text[i + 1] == "\n":
                i += 1
            row.append("".join(cell))
            records.append(row)
            row = []
            cell = []
        else:
            cell.append(ch)
        i += 1

    if cell or row:
        row.append("".join(cell))
        records.append(row)

    # Blank lines are not records
    return [r for r in records if not (len(r) == 1 and not r[0].strip())]


def parse_csv(text: str, delimiter: Optional[str] = None) -> TableData:
    """Parse delimited text into headers and row mappings.

    Header cells are trimmed; an empty header becomes ``col_N`` (1-indexed).
    Data cells are trimmed and missing trailing cells become "".
    """
    delim = delimiter or detect_delimiter(text)
    records = _split_records(text, delim)
    if not records:
        return TableData(headers=[], rows=[], delimiter=delim)

    headers = [
        (h.strip() or f"col_{idx + 1}")
        for idx, h in enumerate(records[0])
    ]
    rows = []
    for record in records[1:]:
        rows.append({
            header: (record[i].strip() if i < len(record) else "")
            for i, header in enumerate(headers)
        })
    return TableData(headers=headers, rows=rows, delimiter=delim)


def detect_table(text: str) -> Optional[TableData]:
    """Return the parsed table if *text* really looks tabular, else None.

    Requires at least 2 columns, at least 1 data row, and that at least 70%
    of the sampled rows have at least 30% of their columns non-empty.
    """
    if not text or not text.strip():
        return None

    table = parse_csv(text)
    if len(table.headers) < 2 or not table.rows:
        return None

    sample = table.rows[:TABLE_SAMPLE_ROWS]
    column_count = len(table.headers)
    filled_rows = 0
    for row in sample:
        non_empty = sum(1 for value in row.values() if value)
        if non_empty / column_count >= MIN_FILLED_CELL_RATIO:
            filled_rows += 1

    if filled_rows / len(sample) < MIN_FILLED_ROW_RATIO:
        logger.debug(
            f"Content rejected as table: {filled_rows}/{len(sample)} sampled rows filled"
        )
        return None

    return table


def is_valid_table(text: str) -> bool:
    """Whether *text* passes the table validity check."""
    return detect_table(text) is not None


def _escape_cell(value: Optional[str], delimiter: str) -> str:
    if value is None:
        return ""
    s = str(value)
    needs_quotes = any(ch in s for ch in ('"', delimiter, "\n", "\r"))
    s = s.replace('"', '""')
    return f'"{s}"' if needs_quotes else s


def stringify_csv(
    headers: list[str],
    rows: list[dict[str, str]],
    delimiter: str = ",",
) -> str:
    """Serialize headers and row mappings back to delimited text."""
    head = delimiter.join(_escape_cell(h, delimiter) for h in headers)
    body = "\n".join(
        delimiter.join(_escape_cell(row.get(h, ""), delimiter) for h in headers)
        for row in rows
    )
    return f"{head}\n{body}" if body else head
