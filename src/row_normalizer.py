from __future__ import annotations

import csv
import io
import random
import re
import string
from datetime import datetime, timezone
from typing import Any

EXPECTED_HEADERS = [
    "Patient Code",
    "Patient Name",
    "Patient Age",
    "Room",
    "Diagnosis",
    "Section",
    "Admitting Provider",
    "Diet",
    "Isolation",
    "Comments",
    "Symptoms (comma-separated)",
    "Symptoms Notes (JSON map)",
    "Labs Abnormal (comma-separated)",
]

LEGACY_HEADERS = [
    "Patient Code",
    "Patient Name",
    "Patient Age",
    "Room",
    "Admitting Provider",
    "Cause Of Admission",
    "Diet",
    "Isolation",
    "Comments",
]

CANONICAL_WIDTH = len(EXPECTED_HEADERS)

# Canonical slot positions.
CODE, NAME, AGE, ROOM, DIAGNOSIS, SECTION, PROVIDER, DIET, ISOLATION, COMMENTS, SYMPTOMS, SYMPTOMS_NOTES, LABS = range(
    CANONICAL_WIDTH
)

# Keys used when a canonical row becomes a spreadsheet record.
RECORD_KEYS = [
    "Patient Code",
    "Patient Name",
    "Patient Age",
    "Room",
    "Diagnosis",
    "Section",
    "Admitting Provider",
    "Diet",
    "Isolation",
    "Comments",
    "Symptoms",
    "Symptoms Notes",
    "Labs Abnormal",
]

EMPTY_RECORD_FIELDS = [
    "HPI Diagnosis",
    "HPI Previous",
    "HPI Current",
    "HPI Initial",
    "Patient Assessment",
    "Medication List",
    "Latest Notes",
]

# Column order of the patient records CSV download.
RECORD_COLUMNS = [*RECORD_KEYS, "Done", "Updated At", *EMPTY_RECORD_FIELDS]

_AGE_RE = re.compile(r"(?<![0-9])([0-9]{1,3})(?![0-9])")
_ALL_DIGITS_RE = re.compile(r"^[0-9]+$")


def norm_cell(value: Any) -> str:
    return str(value if value is not None else "").replace("\u00a0", " ").strip()


def is_blank_row(row: list[Any]) -> bool:
    return not any(norm_cell(cell) for cell in row)


def normalize_row_length(row: list[Any], size: int) -> list[str]:
    out = [""] * size
    for index in range(min(len(row), size)):
        value = row[index]
        out[index] = "" if value is None else str(value)
    return out


def extract_age_number(value: Any) -> str:
    """
    Pull the age digits out of free text: '72 Years 4 Months' -> '72'.
    Returns '' when the value holds no usable digit run.
    """
    text = str(value if value is not None else "").strip()
    match = _AGE_RE.search(text)
    if match:
        return match.group(1)
    if _ALL_DIGITS_RE.match(text):
        return text
    return ""


def map_new_row(row: list[Any]) -> list[str]:
    out = normalize_row_length(row, CANONICAL_WIDTH)
    out[AGE] = extract_age_number(out[AGE])
    return out


def map_legacy_row(row: list[Any]) -> list[str]:
    legacy = normalize_row_length(row, len(LEGACY_HEADERS))
    out = [""] * CANONICAL_WIDTH
    out[CODE] = legacy[0]
    out[NAME] = legacy[1]
    out[AGE] = extract_age_number(legacy[2])
    out[ROOM] = legacy[3]
    # Cause Of Admission is stored as Diagnosis.
    out[DIAGNOSIS] = legacy[5]
    out[PROVIDER] = legacy[4]
    out[DIET] = legacy[6]
    out[ISOLATION] = legacy[7]
    out[COMMENTS] = legacy[8]
    return out


def canonical_row(
    *,
    code: str = "",
    name: str = "",
    age: str = "",
    room: str = "",
    diagnosis: str = "",
    provider: str = "",
    diet: str = "",
    isolation: str = "",
    comments: str = "",
) -> list[str]:
    out = [""] * CANONICAL_WIDTH
    out[CODE] = code
    out[NAME] = name
    out[AGE] = extract_age_number(age)
    out[ROOM] = room
    out[DIAGNOSIS] = diagnosis
    out[PROVIDER] = provider
    out[DIET] = diet
    out[ISOLATION] = isolation
    out[COMMENTS] = comments
    return out


def generate_patient_code(rng: random.Random | None = None) -> str:
    chooser = rng or random
    alphabet = string.ascii_uppercase + string.digits
    return "P" + "".join(chooser.choice(alphabet) for _ in range(6))


def build_patient_records(
    rows: list[list[str]],
    active_section: str,
    *,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> list[dict[str, Any]]:
    """
    Turn canonical rows into the record dicts inserted into the patients sheet.

    Empty Patient Code gets a generated code, empty Section falls back to the
    active section and empty Symptoms Notes becomes an empty JSON map.
    """
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    records: list[dict[str, Any]] = []
    for row in rows:
        values = normalize_row_length(row, CANONICAL_WIDTH)
        record: dict[str, Any] = dict(zip(RECORD_KEYS, values))
        record["Patient Code"] = values[CODE] or generate_patient_code(rng)
        record["Section"] = values[SECTION] or active_section
        record["Symptoms Notes"] = values[SYMPTOMS_NOTES] or "{}"
        record["Done"] = False
        record["Updated At"] = stamp
        for field in EMPTY_RECORD_FIELDS:
            record[field] = ""
        records.append(record)
    return records


def template_csv() -> str:
    return ",".join(EXPECTED_HEADERS) + "\n"


def records_to_csv_bytes(records: list[dict[str, Any]]) -> bytes:
    if not records:
        return b""
    buffer = io.StringIO()
    writer = csv.DictWriter(
        buffer,
        fieldnames=RECORD_COLUMNS,
        lineterminator="\n",
        extrasaction="ignore",
    )
    writer.writeheader()
    for record in records:
        writer.writerow(record)
    return buffer.getvalue().encode("utf-8")
