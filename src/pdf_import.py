from __future__ import annotations

import logging
import re

from src.extractors import EXTRACTION_MODE_OCR, PageCallback, extract_pdf_text
from src.row_normalizer import AGE, CANONICAL_WIDTH, SECTION, extract_age_number, norm_cell
from src.session import (
    ERROR_NO_TABLE,
    ERROR_PARSE,
    SOURCE_PDF,
    ImportSession,
    StageResult,
    failed_session,
)
from src.settings import ImportSettings

LOGGER = logging.getLogger(__name__)

PDF_MODE = "pdf"
MIN_PDF_CELLS = 3

_PATIENT_CODE_RE = re.compile(r"patient\s*code", re.IGNORECASE)
_PATIENT_NAME_RE = re.compile(r"patient\s*name", re.IGNORECASE)
_COLUMN_GAP_RE = re.compile(r"\s{2,}")

PARSE_FAILED_MESSAGE = "Failed to parse this PDF. Try changing OCR setting or export as CSV."
NO_TABLE_MESSAGE = "Could not detect table rows from this PDF."


def text_lines(text: str) -> list[str]:
    return [line for line in (norm_cell(raw) for raw in re.split(r"\r?\n", text or "")) if line]


def find_header_index(lines: list[str]) -> int:
    for index, line in enumerate(lines):
        if _PATIENT_CODE_RE.search(line) and _PATIENT_NAME_RE.search(line):
            return index
    return 0


def split_pdf_line(line: str) -> list[str]:
    if "," in line:
        return [cell.strip() for cell in line.split(",")]
    return [cell.strip() for cell in _COLUMN_GAP_RE.split(line)]


def text_to_rows(text: str, settings: ImportSettings) -> list[list[str]]:
    """
    Degrade extracted PDF text into canonical rows.

    Everything up to and including the header line is skipped. When no header
    is found the first line is still treated as one. Lines with fewer than
    three cells are dropped.
    """
    lines = text_lines(text)
    if not lines:
        return []
    data_lines = lines[find_header_index(lines) + 1 :]

    rows: list[list[str]] = []
    for line in data_lines:
        cells = split_pdf_line(line)
        if len(cells) < MIN_PDF_CELLS:
            continue
        row = [""] * CANONICAL_WIDTH
        for index in range(min(len(cells), settings.positional_columns, CANONICAL_WIDTH)):
            row[index] = cells[index]
        row[AGE] = extract_age_number(row[AGE])
        if not row[SECTION]:
            row[SECTION] = settings.pdf_default_section
        rows.append(row)
    return rows


def extract_pdf_rows(
    data: bytes,
    settings: ImportSettings,
    *,
    force_ocr: bool = False,
    language: str | None = None,
    on_page: PageCallback | None = None,
) -> tuple[StageResult[list[list[str]]], str]:
    try:
        pdf_text = extract_pdf_text(data, settings, force_ocr=force_ocr, language=language, on_page=on_page)
        rows = text_to_rows(pdf_text.text, settings)
    except Exception:
        LOGGER.exception("PDF extraction failed")
        return StageResult.failure(ERROR_PARSE, PARSE_FAILED_MESSAGE), ""

    if not rows:
        LOGGER.info("PDF yielded no table rows (%s)", pdf_text.mode)
        return StageResult.failure(ERROR_NO_TABLE, NO_TABLE_MESSAGE), pdf_text.mode
    LOGGER.info("PDF rows parsed: %d (%s)", len(rows), pdf_text.mode)
    return StageResult(value=rows), pdf_text.mode


def import_pdf(
    source_name: str,
    data: bytes,
    settings: ImportSettings,
    *,
    force_ocr: bool | None = None,
    language: str | None = None,
    on_page: PageCallback | None = None,
) -> ImportSession:
    use_force = settings.force_ocr if force_ocr is None else force_ocr
    ocr_language = language or settings.ocr_language
    result, extraction_mode = extract_pdf_rows(
        data,
        settings,
        force_ocr=use_force,
        language=ocr_language,
        on_page=on_page,
    )
    if not result.ok:
        return failed_session(
            source_name,
            SOURCE_PDF,
            result.error_kind,
            result.error,
            extraction_mode=extraction_mode,
        )

    rows = result.value or []
    warnings: list[str] = []
    if extraction_mode == EXTRACTION_MODE_OCR:
        warnings.append(f"OCR ({ocr_language}) used. Verify columns before import.")
    return ImportSession(
        source_name=source_name,
        source_kind=SOURCE_PDF,
        rows=rows,
        mode=PDF_MODE,
        message=f"{len(rows)} rows parsed from PDF.",
        extraction_mode=extraction_mode,
        warnings=warnings,
    )
