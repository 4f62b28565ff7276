from __future__ import annotations

import copy
import html
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from src.row_normalizer import EXPECTED_HEADERS

ERROR_HEADER_MISMATCH = "header_mismatch"
ERROR_EMPTY_FILE = "empty_file"
ERROR_PARSE = "parse_error"
ERROR_NO_TABLE = "no_table_detected"

SOURCE_DELIMITED = "delimited"
SOURCE_PDF = "pdf"

T = TypeVar("T")


@dataclass
class StageResult(Generic[T]):
    """Outcome of one import stage: a value, or an error kind with a user message."""

    value: T | None = None
    error_kind: str = ""
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error_kind

    @classmethod
    def failure(cls, error_kind: str, error: str) -> "StageResult[T]":
        return cls(value=None, error_kind=error_kind, error=error)


@dataclass
class ImportSession:
    source_name: str
    source_kind: str = SOURCE_DELIMITED
    header_row: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)
    mode: str = ""
    message: str = ""
    error_kind: str = ""
    error: str = ""
    extraction_mode: str = ""
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.error_kind

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def consume_validated_rows(self) -> list[list[str]]:
        return copy.deepcopy(self.rows)

    def preview(self, limit: int = 10) -> dict[str, Any]:
        return {
            "header_row": list(EXPECTED_HEADERS),
            "first_ten_data_rows": copy.deepcopy(self.rows[:limit]),
            "row_count": self.row_count,
            "matched_mode": self.mode,
        }

    def preview_note(self, limit: int = 10) -> str:
        mode = self.mode.upper()
        if not self.rows:
            return f"No data rows detected. Mode: {mode}."
        if self.row_count > limit:
            return f"Showing first {limit} rows ({self.row_count} total). Mode: {mode}."
        return f"{self.row_count} data rows. Mode: {mode}."


def html_block(css_class: str, text: str) -> str:
    """Wrap session text (which may carry raw header cells) in an escaped `<div>`."""
    return f"<div class='{css_class}'>{html.escape(text)}</div>"


def failed_session(source_name: str, source_kind: str, error_kind: str, error: str, **extra: Any) -> ImportSession:
    return ImportSession(
        source_name=source_name,
        source_kind=source_kind,
        error_kind=error_kind,
        error=error,
        **extra,
    )
