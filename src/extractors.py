from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from io import BytesIO
from typing import Callable

try:
    from PIL import Image
except Exception:  # pragma: no cover - optional dependency at runtime
    Image = None

try:
    from pypdf import PdfReader
except Exception:  # pragma: no cover - optional dependency at runtime
    PdfReader = None

try:
    import fitz  # PyMuPDF
except Exception:  # pragma: no cover - optional dependency at runtime
    fitz = None

try:
    import pytesseract
except Exception:  # pragma: no cover - optional dependency at runtime
    pytesseract = None

from src.settings import ImportSettings

LOGGER = logging.getLogger(__name__)

EXTRACTION_MODE_TEXT = "text"
EXTRACTION_MODE_OCR = "ocr"

_WHITESPACE_RE = re.compile(r"\s+")

PageCallback = Callable[[int, int], None]


class ExtractionError(Exception):
    """Raised when text extraction fails."""


@dataclass
class TextFragment:
    x: float
    y: float
    text: str


@dataclass
class PdfText:
    text: str
    mode: str
    page_count: int


def is_pdf_upload(filename: str, data: bytes) -> bool:
    return filename.lower().endswith(".pdf") or data[:5] == b"%PDF-"


def non_whitespace_length(text: str) -> int:
    return len(_WHITESPACE_RE.sub("", text or ""))


def group_fragments_into_lines(fragments: list[TextFragment], tolerance: float = 3.0) -> list[str]:
    """
    Rebuild visual lines from positioned text fragments.

    Fragments are taken in content-stream order; one whose rounded baseline is
    within `tolerance` of the current line joins it, anything else opens a new
    line. Each line is joined left-to-right.
    """
    lines: list[str] = []
    current: list[TextFragment] = []
    line_y: int | None = None

    def flush() -> None:
        if current:
            ordered = sorted(current, key=lambda fragment: fragment.x)
            lines.append(" ".join(fragment.text for fragment in ordered))

    for fragment in fragments:
        y = round(fragment.y)
        if line_y is None:
            line_y = y
        if abs(y - line_y) <= tolerance:
            current.append(fragment)
            continue
        flush()
        current = [fragment]
        line_y = y
    flush()
    return lines


def _page_fragments(page: object) -> list[TextFragment]:
    fragments: list[TextFragment] = []

    def visitor(text: str, cm: list[float], tm: list[float], font_dict: object, font_size: float) -> None:
        cleaned = text.replace("\n", " ").strip()
        if not cleaned:
            return
        # Text-space origin projected through the current transformation matrix.
        x = tm[4] * cm[0] + tm[5] * cm[2] + cm[4]
        y = tm[4] * cm[1] + tm[5] * cm[3] + cm[5]
        fragments.append(TextFragment(x=x, y=y, text=cleaned))

    page.extract_text(visitor_text=visitor)
    return fragments


def extract_pdf_text_layer(data: bytes, line_tolerance: float = 3.0) -> tuple[str, int]:
    if PdfReader is None:
        raise ExtractionError("PDF support missing. Install pypdf.")
    reader = PdfReader(BytesIO(data))
    page_texts: list[str] = []
    for page in reader.pages:
        lines = group_fragments_into_lines(_page_fragments(page), tolerance=line_tolerance)
        page_texts.append("\n".join(lines))
    return "\n".join(page_texts), len(reader.pages)


def _render_page_image(page: object, scale: float) -> object:
    pixmap = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
    return Image.frombytes("RGB", (pixmap.width, pixmap.height), pixmap.samples)


def ocr_pdf_pages(
    data: bytes,
    language: str = "eng",
    scale: float = 2.0,
    on_page: PageCallback | None = None,
) -> tuple[str, int]:
    """
    Rasterize every page and run Tesseract on it, one page at a time so only a
    single rendered page is held in memory.
    """
    if fitz is None:
        raise ExtractionError("PDF rendering for OCR missing. Install PyMuPDF.")
    if Image is None:
        raise ExtractionError("Image support missing. Install Pillow.")
    if pytesseract is None:
        raise ExtractionError("OCR support missing. Install pytesseract and Tesseract.")

    parts: list[str] = []
    with fitz.open(stream=data, filetype="pdf") as document:
        total = document.page_count
        for index in range(total):
            image = _render_page_image(document.load_page(index), scale)
            parts.append(pytesseract.image_to_string(image, lang=language) or "")
            LOGGER.info("OCR page %d/%d done", index + 1, total)
            if on_page is not None:
                on_page(index + 1, total)
    return "\n".join(parts), total


def extract_pdf_text(
    data: bytes,
    settings: ImportSettings,
    *,
    force_ocr: bool = False,
    language: str | None = None,
    on_page: PageCallback | None = None,
) -> PdfText:
    ocr_language = language or settings.ocr_language
    if not force_ocr:
        text, page_count = extract_pdf_text_layer(data, line_tolerance=settings.line_tolerance)
        if non_whitespace_length(text) >= settings.min_text_chars:
            LOGGER.info("PDF text layer used (%d pages)", page_count)
            return PdfText(text=text, mode=EXTRACTION_MODE_TEXT, page_count=page_count)
        LOGGER.info("PDF text layer too short, falling back to OCR (%s)", ocr_language)

    text, page_count = ocr_pdf_pages(data, language=ocr_language, scale=settings.ocr_scale, on_page=on_page)
    return PdfText(text=text, mode=EXTRACTION_MODE_OCR, page_count=page_count)
