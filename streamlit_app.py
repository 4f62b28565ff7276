from __future__ import annotations

import logging
import runpy
import traceback
from pathlib import Path

import streamlit as st

LOGGER = logging.getLogger(__name__)

APP_PATH = Path(__file__).with_name("app.py")
PAGE_TITLE = "Patient Rounds Import"


def _render_startup_error(error: Exception) -> None:
    try:
        st.set_page_config(page_title=PAGE_TITLE, layout="wide")
    except Exception:
        # app.py may have configured the page before failing.
        LOGGER.debug("Page config already set")
    st.title("Startup Error")
    st.error("The importer failed during startup or rerun. Check the rules file and PDF/OCR dependencies.")
    st.code(f"{type(error).__name__}: {error}")
    with st.expander("Traceback", expanded=False):
        st.code(traceback.format_exc())


def run_app(app_path: Path = APP_PATH) -> None:
    try:
        runpy.run_path(str(app_path), run_name="__main__")
    except Exception as error:
        LOGGER.exception("Importer page %s failed", app_path.name)
        _render_startup_error(error)


if __name__ == "__main__":
    run_app()
