"""Document chunking: turns raw document content into process units.

Text documents are split by line, blank line, word count, character count
or a custom separator. Delimited tables (CSV, TSV, ...) become one unit per
data row.
"""

from .csv_table import (
    detect_delimiter,
    detect_table,
    is_valid_table,
    parse_csv,
    stringify_csv,
)
from .schemas import ChunkMode, ChunkParams, ProcessUnit, TableData
from .splitter import ChunkingError, create_units, serialize_row, split_text

__all__ = [
    "ChunkMode",
    "ChunkParams",
    "ChunkingError",
    "ProcessUnit",
    "TableData",
    "create_units",
    "detect_delimiter",
    "detect_table",
    "is_valid_table",
    "parse_csv",
    "serialize_row",
    "split_text",
    "stringify_csv",
]
