from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from src.delimited import strip_bom
from src.row_normalizer import (
    EXPECTED_HEADERS,
    LEGACY_HEADERS,
    canonical_row,
    map_legacy_row,
    map_new_row,
    norm_cell,
)

LOGGER = logging.getLogger(__name__)

CUSTOM_REQUIRED_HEADERS = [
    "patient code",
    "patient name",
    "patient age",
    "room",
    "admitting provider",
    "cause of admission",
    "diet",
    "isolation",
    "comments",
]

_UNNAMED_RE = re.compile(r"^unnamed[:\s_.\-]*\d*$", re.IGNORECASE)
_EXCEL_UNNAMED_RE = re.compile(r"^unnamed:", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class ValidationResult:
    ok: bool
    mode: str = ""
    message: str = ""
    error: str = ""


def _header_cells(header_row: list[Any] | None) -> list[str]:
    return [str(cell if cell is not None else "").strip() for cell in (header_row or [])]


def _relaxed(value: Any) -> str:
    return _WHITESPACE_RE.sub(" ", norm_cell(value)).lower()


def is_unnamed_header(value: str) -> bool:
    return bool(_UNNAMED_RE.match(value.strip()))


class TemplateMatcher:
    """A header recognizer paired with the row mapper for that header shape."""

    name = ""

    def recognize(self, header_row: list[Any]) -> bool:
        raise NotImplementedError

    def map_row(self, row: list[Any], header_row: list[Any]) -> list[str]:
        raise NotImplementedError


class MainTemplateEmptyCols(TemplateMatcher):
    name = "MAIN_TEMPLATE_EMPTY_COLS"

    def recognize(self, header_row: list[Any]) -> bool:
        base = [cell.lower() for cell in _header_cells(header_row) if cell and not is_unnamed_header(cell)]
        return all(required in base for required in CUSTOM_REQUIRED_HEADERS)

    def map_row(self, row: list[Any], header_row: list[Any]) -> list[str]:
        lowered = [cell.lower() for cell in _header_cells(header_row)]

        def value_for(key: str) -> str:
            for index, cell in enumerate(lowered):
                if not cell or is_unnamed_header(cell):
                    continue
                if cell == key:
                    value = row[index] if index < len(row) else ""
                    return "" if value is None else str(value)
            return ""

        return canonical_row(
            code=value_for("patient code"),
            name=value_for("patient name"),
            age=value_for("patient age"),
            room=value_for("room"),
            diagnosis=value_for("cause of admission"),
            provider=value_for("admitting provider"),
            diet=value_for("diet"),
            isolation=value_for("isolation"),
            comments=value_for("comments"),
        )


class ExcelMergedWithUnnamed(TemplateMatcher):
    """
    Spreadsheet exports where a merged header cell is followed by `Unnamed: N`
    filler columns. The value may sit in any of those columns.
    """

    name = "EXCEL_MERGED_WITH_UNNAMED"

    def recognize(self, header_row: list[Any]) -> bool:
        base = [cell.lower() for cell in _header_cells(header_row) if not _EXCEL_UNNAMED_RE.match(cell)]
        return all(required in base for required in CUSTOM_REQUIRED_HEADERS)

    def _indexes_for(self, lowered: list[str], key: str) -> list[int]:
        indexes: list[int] = []
        for index, cell in enumerate(lowered):
            if cell != key:
                continue
            indexes.append(index)
            follower = index + 1
            while follower < len(lowered) and _EXCEL_UNNAMED_RE.match(lowered[follower]):
                indexes.append(follower)
                follower += 1
        return indexes

    def map_row(self, row: list[Any], header_row: list[Any]) -> list[str]:
        lowered = [cell.lower() for cell in _header_cells(header_row)]

        def value_for(key: str) -> str:
            for index in self._indexes_for(lowered, key):
                value = row[index] if index < len(row) else ""
                text = str(value if value is not None else "").strip()
                if text:
                    return text
            return ""

        return canonical_row(
            code=value_for("patient code"),
            name=value_for("patient name"),
            age=value_for("patient age"),
            room=value_for("room"),
            diagnosis=value_for("cause of admission"),
            provider=value_for("admitting provider"),
            diet=value_for("diet"),
            isolation=value_for("isolation"),
            comments=value_for("comments"),
        )


class NewFixed(TemplateMatcher):
    name = "new"

    def recognize(self, header_row: list[Any]) -> bool:
        got = [norm_cell(cell).lower() for cell in header_row]
        expected = [header.lower() for header in EXPECTED_HEADERS]
        return got == expected

    def map_row(self, row: list[Any], header_row: list[Any]) -> list[str]:
        return map_new_row(row)


class LegacyFixed(TemplateMatcher):
    name = "legacy"

    def recognize(self, header_row: list[Any]) -> bool:
        return self.recognize_exact(header_row) or self.recognize_relaxed(header_row)

    def recognize_exact(self, header_row: list[Any]) -> bool:
        got = [str(cell if cell is not None else "").strip().lower() for cell in header_row]
        return got == [header.lower() for header in LEGACY_HEADERS]

    def recognize_relaxed(self, header_row: list[Any]) -> bool:
        got = [_relaxed(cell) for cell in header_row]
        return got == [header.lower() for header in LEGACY_HEADERS]

    def map_row(self, row: list[Any], header_row: list[Any]) -> list[str]:
        return map_legacy_row(row)


MAIN_TEMPLATE = MainTemplateEmptyCols()
EXCEL_MERGED_TEMPLATE = ExcelMergedWithUnnamed()
NEW_TEMPLATE = NewFixed()
LEGACY_TEMPLATE = LegacyFixed()

# Evaluation order matters: the two custom recognizers overlap and the first
# match decides how rows are mapped.
CUSTOM_TEMPLATES: list[TemplateMatcher] = [MAIN_TEMPLATE, EXCEL_MERGED_TEMPLATE]
TEMPLATE_ORDER: list[TemplateMatcher] = [*CUSTOM_TEMPLATES, NEW_TEMPLATE, LEGACY_TEMPLATE]


def clean_header_row(header_row: list[Any] | None) -> list[str]:
    cells = [str(cell if cell is not None else "") for cell in (header_row or [])]
    if cells:
        cells[0] = strip_bom(cells[0])
    return cells


def header_mismatch_error(got: list[str]) -> str:
    return (
        "Header mismatch. Expected either:\n"
        f"- NEW: {' | '.join(EXPECTED_HEADERS)}\n"
        f"- LEGACY: {' | '.join(LEGACY_HEADERS)}\n"
        f"Got: {' | '.join(got)}"
    )


def match_custom_template(header_row: list[Any]) -> TemplateMatcher | None:
    for template in CUSTOM_TEMPLATES:
        if template.recognize(header_row):
            return template
    return None


def validate_headers(header_row: list[Any]) -> ValidationResult:
    header = clean_header_row(header_row)
    got = [norm_cell(cell) for cell in header]

    if len(header) == len(EXPECTED_HEADERS) and NEW_TEMPLATE.recognize(header):
        return ValidationResult(ok=True, mode="new", message="Detected NEW template.")

    if len(header) == len(LEGACY_HEADERS):
        if LEGACY_TEMPLATE.recognize_exact(header):
            return ValidationResult(
                ok=True,
                mode="legacy",
                message="Detected LEGACY template. Mapping “Cause Of Admission” → “Diagnosis”.",
            )
        if LEGACY_TEMPLATE.recognize_relaxed(header):
            return ValidationResult(
                ok=True,
                mode="legacy",
                message=(
                    "Detected LEGACY template (relaxed). "
                    "Mapping “Cause Of Admission” → “Diagnosis”."
                ),
            )

    return ValidationResult(ok=False, error=header_mismatch_error(got))


def resolve_template(header_row: list[Any]) -> tuple[TemplateMatcher | None, ValidationResult]:
    header = clean_header_row(header_row)

    for template in TEMPLATE_ORDER:
        if not template.recognize(header):
            continue
        LOGGER.info("Header matched %s template", template.name)
        if template in CUSTOM_TEMPLATES:
            return template, ValidationResult(
                ok=True,
                mode=template.name,
                message=f"Detected custom template: {template.name}.",
            )
        # Built-in layouts report the exact/relaxed wording of the header check.
        return template, validate_headers(header)

    LOGGER.info("Header matched no known template (%d cells)", len(header))
    return None, ValidationResult(ok=False, error=header_mismatch_error([norm_cell(cell) for cell in header]))
