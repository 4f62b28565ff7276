from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

try:
    import yaml
except Exception:
    yaml = None


REPO_ROOT = Path(__file__).resolve().parents[1]
RULES_PATH = REPO_ROOT / "rules" / "import_rules_v1.yaml"
ENV_FILE = REPO_ROOT / ".env"


@dataclass
class ImportSettings:
    min_text_chars: int = 50
    line_tolerance: float = 3.0
    positional_columns: int = 9
    pdf_default_section: str = "Default"
    ocr_scale: float = 2.0
    ocr_language: str = "eng"
    ocr_languages: list[str] = field(default_factory=lambda: ["eng", "ara"])
    force_ocr: bool = False
    preview_rows: int = 10
    default_section: str = "Default"


def load_local_env_file(path: Path = ENV_FILE) -> None:
    """
    Load key=value pairs from a local .env file into process env without overriding
    values that are already present.
    """
    if not path.exists():
        return

    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and (key not in os.environ or not os.environ.get(key, "").strip()):
            os.environ[key] = value


def truthy(value: Any) -> bool:
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def load_import_rules(rules_path: str = str(RULES_PATH)) -> dict[str, Any]:
    if yaml is None:
        raise RuntimeError("PyYAML is required. Install with `pip install pyyaml`.")
    with Path(rules_path).open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _section(payload: dict[str, Any], name: str) -> dict[str, Any]:
    value = payload.get(name, {})
    return value if isinstance(value, dict) else {}


def _env_number(name: str, fallback: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return fallback
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}.") from None


def settings_from_rules(payload: dict[str, Any]) -> ImportSettings:
    defaults = ImportSettings()
    pdf = _section(payload, "pdf")
    ocr = _section(payload, "ocr")
    preview = _section(payload, "preview")
    host = _section(payload, "host")

    languages = [str(item).strip() for item in (ocr.get("languages") or []) if str(item).strip()]
    return ImportSettings(
        min_text_chars=int(pdf.get("min_text_chars", defaults.min_text_chars)),
        line_tolerance=float(pdf.get("line_tolerance", defaults.line_tolerance)),
        positional_columns=int(pdf.get("positional_columns", defaults.positional_columns)),
        pdf_default_section=str(pdf.get("default_section", defaults.pdf_default_section)),
        ocr_scale=float(ocr.get("scale", defaults.ocr_scale)),
        ocr_language=str(ocr.get("language", defaults.ocr_language)).strip() or defaults.ocr_language,
        ocr_languages=languages or list(defaults.ocr_languages),
        force_ocr=truthy(ocr.get("force", defaults.force_ocr)),
        preview_rows=int(preview.get("rows", defaults.preview_rows)),
        default_section=str(host.get("default_section", defaults.default_section)),
    )


def apply_env_overrides(settings: ImportSettings) -> ImportSettings:
    language = os.getenv("ROUNDS_OCR_LANG", "").strip()
    if language:
        settings.ocr_language = language
        if language not in settings.ocr_languages:
            settings.ocr_languages.append(language)
    settings.min_text_chars = int(_env_number("ROUNDS_MIN_TEXT_CHARS", settings.min_text_chars))
    settings.ocr_scale = _env_number("ROUNDS_OCR_SCALE", settings.ocr_scale)
    if os.getenv("ROUNDS_FORCE_OCR", "").strip():
        settings.force_ocr = truthy(os.getenv("ROUNDS_FORCE_OCR", ""))
    return settings


def load_import_settings(rules_path: Path | str = RULES_PATH, env_file: Path | None = ENV_FILE) -> ImportSettings:
    if env_file is not None:
        load_local_env_file(env_file)
    rules_file = Path(rules_path)
    payload = load_import_rules(str(rules_file)) if rules_file.exists() else {}
    return apply_env_overrides(settings_from_rules(payload))
