from __future__ import annotations

import hashlib
import logging
import os
from typing import Any

import streamlit as st
try:
    import pandas as pd
except Exception:
    pd = None

from src.extractors import is_pdf_upload
from src.importer import ImportController
from src.row_normalizer import EXPECTED_HEADERS, build_patient_records, records_to_csv_bytes, template_csv
from src.session import (
    ERROR_EMPTY_FILE,
    ERROR_HEADER_MISMATCH,
    ERROR_NO_TABLE,
    ImportSession,
    html_block,
)
from src.settings import ImportSettings, load_import_settings

LOGGER = logging.getLogger(__name__)

def _truthy_env(name: str, default: bool = False) -> bool:
    fallback = "1" if default else "0"
    return os.getenv(name, fallback).strip().lower() in {"1", "true", "yes", "on"}


DEBUG_IMPORT = _truthy_env("ROUNDS_DEBUG_IMPORT", default=False)


def _upload_signature(name: str, data: bytes) -> str:
    return f"{name}:{len(data)}:{hashlib.sha256(data).hexdigest()[:12]}"


def _inject_theme() -> None:
    st.markdown(
        """
        <style>
        .rounds-note {
            font-size: 12px;
            color: #64748b;
            margin-top: 6px;
        }
        .rounds-error {
            white-space: pre-wrap;
            font-family: "IBM Plex Mono", "Menlo", monospace;
            font-size: 12px;
            background: #fef2f2;
            border: 1px solid #fecaca;
            border-radius: 10px;
            padding: 8px 10px;
            color: #7f1d1d;
        }
        </style>
        """,
        unsafe_allow_html=True,
    )


def _clear_import_state() -> None:
    for key in [
        "import_signature",
        "import_bytes",
        "import_name",
        "import_records",
    ]:
        st.session_state.pop(key, None)
    controller: ImportController | None = st.session_state.get("import_controller")
    if controller is not None:
        controller.reset()


def _run_import(
    controller: ImportController,
    name: str,
    data: bytes,
    settings: ImportSettings,
    *,
    force_ocr: bool,
    language: str,
) -> ImportSession:
    if not is_pdf_upload(name, data):
        return controller.run(name, data, settings)

    progress = st.progress(0.0, text="Parsing PDF...")

    def _on_page(done: int, total: int) -> None:
        progress.progress(done / max(total, 1), text=f"OCR page {done}/{total}")

    try:
        return controller.run(name, data, settings, force_ocr=force_ocr, language=language, on_page=_on_page)
    finally:
        progress.empty()


def _render_preview(session: ImportSession, preview_rows: int) -> None:
    preview = session.preview(limit=preview_rows)
    rows = [dict(zip(preview["header_row"], row)) for row in preview["first_ten_data_rows"]]
    if pd is None:
        st.table(rows)
    elif rows:
        st.dataframe(pd.DataFrame(rows, columns=EXPECTED_HEADERS), use_container_width=True, hide_index=True)
    st.markdown(html_block("rounds-note", session.preview_note(limit=preview_rows)), unsafe_allow_html=True)


def _render_session(session: ImportSession, preview_rows: int) -> None:
    if not session.ok:
        if session.error_kind == ERROR_HEADER_MISMATCH:
            st.markdown(html_block("rounds-error", session.error), unsafe_allow_html=True)
            st.error("Invalid headers. Please match NEW, LEGACY, or the supported custom template.")
        elif session.error_kind == ERROR_EMPTY_FILE:
            st.info(session.error)
        elif session.error_kind == ERROR_NO_TABLE:
            st.warning(session.error)
        else:
            st.error(session.error)
        return

    st.success(session.message)
    for warning in session.warnings:
        st.caption(warning)
    _render_preview(session, preview_rows)

    if DEBUG_IMPORT:
        with st.expander("Debug import session", expanded=False):
            st.json(
                {
                    "source": session.source_name,
                    "kind": session.source_kind,
                    "mode": session.mode,
                    "extraction_mode": session.extraction_mode,
                    "header_row": session.header_row,
                    "rows": session.rows[:2],
                }
            )


def _safe_build_records(rows: list[list[str]], active_section: str) -> list[dict[str, Any]]:
    try:
        return build_patient_records(rows, active_section)
    except Exception as error:
        st.error(f"Preparing patient records failed with unexpected error: {error}")
        with st.expander("Import error details", expanded=False):
            st.exception(error)
        return []


st.set_page_config(page_title="Patient Rounds Import", layout="wide")
_inject_theme()

try:
    settings = load_import_settings()
except Exception as error:
    st.sidebar.error("Import settings could not be loaded. Using defaults.")
    st.sidebar.code(str(error))
    settings = ImportSettings()

if "import_controller" not in st.session_state:
    st.session_state.import_controller = ImportController()
controller: ImportController = st.session_state.import_controller

st.title("Patient Rounds Import")
st.caption("Upload a CSV/TSV export or a PDF patient list. Rows are normalized to the rounds sheet layout.")

st.sidebar.header("Import settings")
active_section = st.sidebar.text_input("Active section", value=settings.default_section).strip() or settings.default_section
language_index = settings.ocr_languages.index(settings.ocr_language) if settings.ocr_language in settings.ocr_languages else 0
ocr_language = st.sidebar.selectbox("OCR language", options=settings.ocr_languages, index=language_index)
force_ocr = st.sidebar.checkbox("Enable OCR (scanned PDFs)", value=settings.force_ocr)
st.sidebar.caption("Tip: keep OCR off for digital PDFs (faster). Turn it on for scanned PDFs (images).")

st.sidebar.download_button(
    "Download blank template",
    data=template_csv().encode("utf-8"),
    file_name="palliative_rounds_template.csv",
    mime="text/csv",
    use_container_width=True,
)

upload = st.file_uploader(
    "Patient list",
    type=["csv", "tsv", "txt", "pdf"],
    accept_multiple_files=False,
    key="patient_list_upload",
)

if upload is None:
    if st.session_state.get("import_signature"):
        _clear_import_state()
else:
    upload_bytes = upload.getvalue()
    signature = _upload_signature(upload.name, upload_bytes)
    if st.session_state.get("import_signature") != signature:
        st.session_state.pop("import_records", None)
        st.session_state["import_signature"] = signature
        st.session_state["import_bytes"] = upload_bytes
        st.session_state["import_name"] = upload.name
        _run_import(controller, upload.name, upload_bytes, settings, force_ocr=force_ocr, language=ocr_language)

    if is_pdf_upload(upload.name, upload_bytes):
        if st.button("Re-parse", use_container_width=True, key="reparse_pdf"):
            st.session_state.pop("import_records", None)
            _run_import(
                controller,
                st.session_state["import_name"],
                st.session_state["import_bytes"],
                settings,
                force_ocr=force_ocr,
                language=ocr_language,
            )

session = controller.session
if session is not None:
    _render_session(session, settings.preview_rows)

    if st.button("Confirm import", type="primary", use_container_width=True, key="confirm_import"):
        rows = controller.consume_validated_rows()
        if not rows:
            st.warning("No rows to import.")
        else:
            st.session_state["import_records"] = _safe_build_records(rows, active_section)
            LOGGER.info("Prepared %d patient records for section %s", len(rows), active_section)

    records = st.session_state.get("import_records", [])
    if records:
        st.success(f"Prepared {len(records)} patients. Rows without a section go to `{active_section}`.")
        st.download_button(
            "Download patient records (CSV)",
            data=records_to_csv_bytes(records),
            file_name="patients_import.csv",
            mime="text/csv",
            use_container_width=True,
            key="download_import_records",
        )
