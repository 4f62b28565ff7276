from __future__ import annotations

import logging
import re

LOGGER = logging.getLogger(__name__)

BOM = "\ufeff"
DELIMITER_CANDIDATES = [",", "\t", ";"]
DELIMITER_LABELS = {",": "comma", "\t": "tab", ";": "semicolon"}

_FIRST_LINE_RE = re.compile(r"\r?\n")


def strip_bom(text: str) -> str:
    if text and text[0] == BOM:
        return text[1:]
    return text


def decode_text_upload(data: bytes) -> str:
    for encoding in ("utf-8", "latin-1"):
        try:
            return strip_bom(data.decode(encoding))
        except UnicodeDecodeError:
            continue
    return strip_bom(data.decode("utf-8", errors="ignore"))


def detect_delimiter(text: str) -> str:
    first_line = _FIRST_LINE_RE.split(text or "", maxsplit=1)[0]
    best = ","
    best_count = -1
    for candidate in DELIMITER_CANDIDATES:
        count = first_line.count(candidate)
        # Strictly greater: ties keep the earlier candidate.
        if count > best_count:
            best = candidate
            best_count = count
    return best


def parse_dsv(text: str, delimiter: str) -> list[list[str]]:
    """
    Tokenize delimiter-separated text with RFC4180-style double-quote handling.

    Inside quotes a doubled quote is a literal quote and delimiters/newlines are
    kept as content. Outside quotes `\\n`, `\\r\\n` and `\\r` end a row. The last
    row is only emitted when it holds something, so a trailing newline does not
    add a phantom empty row.
    """
    rows: list[list[str]] = []
    row: list[str] = []
    field: list[str] = []
    in_quotes = False
    index = 0
    length = len(text)

    while index < length:
        char = text[index]
        if in_quotes:
            if char == '"':
                if index + 1 < length and text[index + 1] == '"':
                    field.append('"')
                    index += 2
                    continue
                in_quotes = False
                index += 1
                continue
            field.append(char)
            index += 1
            continue

        if char == '"':
            in_quotes = True
            index += 1
            continue
        if char == delimiter:
            row.append("".join(field))
            field = []
            index += 1
            continue
        if char == "\n" or char == "\r":
            row.append("".join(field))
            field = []
            rows.append(row)
            row = []
            if char == "\r" and index + 1 < length and text[index + 1] == "\n":
                index += 2
            else:
                index += 1
            continue
        field.append(char)
        index += 1

    row.append("".join(field))
    if len(row) > 1 or row[0] != "":
        rows.append(row)
    return rows


def tokenize(text: str) -> tuple[list[list[str]], str]:
    clean = strip_bom(text or "")
    delimiter = detect_delimiter(clean)
    rows = parse_dsv(clean, delimiter)
    LOGGER.info("Delimited text: %s delimiter, %d raw rows", DELIMITER_LABELS[delimiter], len(rows))
    return rows, delimiter
