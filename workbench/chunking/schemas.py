"""Schemas for process units and chunking parameters.

A ProcessUnit is one atomic item pushed through a workflow: either a text
fragment cut from a document, or one data row of a delimited table.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ChunkMode(str, Enum):
    """How a document is cut into process units."""

    NONE = "none"
    NEWLINE = "newline"
    BLANK_LINE = "blank-line"
    WORD_COUNT = "word-count"
    CHARACTER_COUNT = "character-count"
    CUSTOM_SEPARATOR = "custom-separator"
    TABLE = "table"


class ChunkParams(BaseModel):
    """Caller-supplied chunking parameters."""

    mode: ChunkMode = Field(default=ChunkMode.NEWLINE, description="Splitting policy")
    word_count: int = Field(default=100, description="Words per unit (word-count mode)")
    character_count: int = Field(default=500, description="Characters per unit (character-count mode)")
    separator: str = Field(default="", description="Literal separator (custom-separator mode)")
    row_limit: int = Field(
        default=0,
        description="Max table rows turned into units. 0 means unlimited.",
    )
    auto_detect_table: bool = Field(
        default=True,
        description="Switch to table mode when the content passes the table validity check",
    )


class ProcessUnit(BaseModel):
    """One atomic item to push through the pipeline. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(..., description="Zero-based position, stable for the run")
    raw_text: str = Field(default="", description="Original chunk text")
    row: Optional[dict[str, str]] = Field(
        default=None,
        description="Column name -> cell value (table mode only)",
    )


class TableData(BaseModel):
    """A parsed delimited table."""

    headers: list[str] = Field(default_factory=list)
    rows: list[dict[str, str]] = Field(default_factory=list)
    delimiter: str = ","
