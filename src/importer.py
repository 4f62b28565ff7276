from __future__ import annotations

import logging
import threading

from src.delimited import decode_text_upload, tokenize
from src.extractors import PageCallback, is_pdf_upload
from src.pdf_import import import_pdf
from src.row_normalizer import is_blank_row
from src.session import (
    ERROR_EMPTY_FILE,
    ERROR_HEADER_MISMATCH,
    ERROR_PARSE,
    SOURCE_DELIMITED,
    ImportSession,
    StageResult,
    failed_session,
)
from src.settings import ImportSettings
from src.templates import TemplateMatcher, ValidationResult, clean_header_row, resolve_template

LOGGER = logging.getLogger(__name__)

EMPTY_FILE_MESSAGE = "Empty file."
READ_FAILED_MESSAGE = "Failed to read/parse file."
NO_DATA_ROWS_WARNING = "No data rows detected."


def tokenize_stage(text: str) -> StageResult[list[list[str]]]:
    try:
        rows, _delimiter = tokenize(text)
    except Exception:
        LOGGER.exception("Tokenizing delimited text failed")
        return StageResult.failure(ERROR_PARSE, READ_FAILED_MESSAGE)
    if not rows:
        return StageResult.failure(ERROR_EMPTY_FILE, EMPTY_FILE_MESSAGE)
    return StageResult(value=rows)


def validate_stage(header_row: list[str]) -> StageResult[tuple[TemplateMatcher, ValidationResult]]:
    template, result = resolve_template(header_row)
    if template is None:
        return StageResult.failure(ERROR_HEADER_MISMATCH, result.error)
    return StageResult(value=(template, result))


def normalize_stage(
    template: TemplateMatcher,
    header_row: list[str],
    data_rows: list[list[str]],
) -> StageResult[list[list[str]]]:
    try:
        rows = [template.map_row(row, header_row) for row in data_rows if not is_blank_row(row)]
    except Exception:
        LOGGER.exception("Row mapping failed for template %s", template.name)
        return StageResult.failure(ERROR_PARSE, READ_FAILED_MESSAGE)
    return StageResult(value=rows)


def import_delimited_text(text: str, source_name: str = "") -> ImportSession:
    tokenized = tokenize_stage(text)
    if not tokenized.ok:
        return failed_session(source_name, SOURCE_DELIMITED, tokenized.error_kind, tokenized.error)

    raw_rows = tokenized.value or []
    header_row = clean_header_row(raw_rows[0])

    validated = validate_stage(header_row)
    if not validated.ok:
        return failed_session(
            source_name,
            SOURCE_DELIMITED,
            validated.error_kind,
            validated.error,
            header_row=header_row,
        )
    template, result = validated.value

    normalized = normalize_stage(template, header_row, raw_rows[1:])
    if not normalized.ok:
        return failed_session(
            source_name,
            SOURCE_DELIMITED,
            normalized.error_kind,
            normalized.error,
            header_row=header_row,
        )

    rows = normalized.value or []
    LOGGER.info("Import %s: %d rows via %s", source_name or "(text)", len(rows), template.name)
    return ImportSession(
        source_name=source_name,
        source_kind=SOURCE_DELIMITED,
        header_row=header_row,
        rows=rows,
        mode=result.mode.lower(),
        message=f"{result.message} {len(rows)} rows ready.",
        warnings=[] if rows else [NO_DATA_ROWS_WARNING],
    )


def import_upload(
    filename: str,
    data: bytes,
    settings: ImportSettings,
    *,
    force_ocr: bool | None = None,
    language: str | None = None,
    on_page: PageCallback | None = None,
) -> ImportSession:
    if is_pdf_upload(filename, data):
        return import_pdf(filename, data, settings, force_ocr=force_ocr, language=language, on_page=on_page)

    try:
        text = decode_text_upload(data)
    except Exception:
        LOGGER.exception("Decoding %s failed", filename)
        return failed_session(filename, SOURCE_DELIMITED, ERROR_PARSE, READ_FAILED_MESSAGE)
    return import_delimited_text(text, source_name=filename)


class ImportController:
    """
    Holds the current import session for one host session.

    Every parse takes a ticket from `begin()`. `commit()` only accepts the
    result of the newest ticket, so a slow PDF/OCR parse that finishes after a
    later re-parse was started is discarded instead of overwriting it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._issued = 0
        self._session: ImportSession | None = None

    @property
    def session(self) -> ImportSession | None:
        return self._session

    def begin(self) -> int:
        with self._lock:
            self._issued += 1
            return self._issued

    def commit(self, ticket: int, session: ImportSession) -> bool:
        with self._lock:
            if ticket != self._issued:
                LOGGER.info("Discarding stale import result (ticket %d, newest %d)", ticket, self._issued)
                return False
            self._session = session
            return True

    def reset(self) -> None:
        with self._lock:
            self._issued += 1
            self._session = None

    def run(
        self,
        filename: str,
        data: bytes,
        settings: ImportSettings,
        *,
        force_ocr: bool | None = None,
        language: str | None = None,
        on_page: PageCallback | None = None,
    ) -> ImportSession:
        ticket = self.begin()
        session = import_upload(filename, data, settings, force_ocr=force_ocr, language=language, on_page=on_page)
        self.commit(ticket, session)
        return session

    def consume_validated_rows(self) -> list[list[str]]:
        session = self._session
        if session is None or not session.ok:
            return []
        return session.consume_validated_rows()
