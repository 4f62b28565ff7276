from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from src import settings as settings_module
from src.settings import (
    ImportSettings,
    apply_env_overrides,
    load_import_settings,
    load_local_env_file,
    settings_from_rules,
)

ENV_KEYS = ["ROUNDS_OCR_LANG", "ROUNDS_MIN_TEXT_CHARS", "ROUNDS_OCR_SCALE", "ROUNDS_FORCE_OCR"]


def _clean_env() -> dict[str, str]:
    return {key: value for key, value in os.environ.items() if key not in ENV_KEYS}


class RulesTests(unittest.TestCase):
    def test_rules_payload_maps_to_settings(self) -> None:
        payload = {
            "pdf": {"min_text_chars": 80, "line_tolerance": 4, "positional_columns": 7, "default_section": "Ward A"},
            "ocr": {"scale": 3, "language": "ara", "languages": ["eng", "ara", ""], "force": "yes"},
            "preview": {"rows": 5},
            "host": {"default_section": "Oncology"},
        }
        settings = settings_from_rules(payload)

        self.assertEqual(settings.min_text_chars, 80)
        self.assertEqual(settings.line_tolerance, 4.0)
        self.assertEqual(settings.positional_columns, 7)
        self.assertEqual(settings.pdf_default_section, "Ward A")
        self.assertEqual(settings.ocr_scale, 3.0)
        self.assertEqual(settings.ocr_language, "ara")
        self.assertEqual(settings.ocr_languages, ["eng", "ara"])
        self.assertTrue(settings.force_ocr)
        self.assertEqual(settings.preview_rows, 5)
        self.assertEqual(settings.default_section, "Oncology")

    def test_missing_sections_keep_defaults(self) -> None:
        self.assertEqual(settings_from_rules({"pdf": "not a mapping"}), ImportSettings())

    @unittest.skipIf(settings_module.yaml is None, "PyYAML not installed")
    def test_bundled_rules_file_loads(self) -> None:
        with patch.dict(os.environ, _clean_env(), clear=True):
            settings = load_import_settings(env_file=None)
        self.assertEqual(settings.min_text_chars, 50)
        self.assertEqual(settings.ocr_languages, ["eng", "ara"])
        self.assertFalse(settings.force_ocr)

    @unittest.skipIf(settings_module.yaml is None, "PyYAML not installed")
    def test_rules_file_on_disk(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "rules.yaml"
            path.write_text("pdf:\n  min_text_chars: 10\nocr:\n  language: ara\n", encoding="utf-8")
            with patch.dict(os.environ, _clean_env(), clear=True):
                settings = load_import_settings(rules_path=path, env_file=None)

        self.assertEqual(settings.min_text_chars, 10)
        self.assertEqual(settings.ocr_language, "ara")
        self.assertEqual(settings.positional_columns, 9)

    def test_missing_rules_file_uses_defaults(self) -> None:
        with patch.dict(os.environ, _clean_env(), clear=True):
            settings = load_import_settings(rules_path="/nonexistent/rules.yaml", env_file=None)
        self.assertEqual(settings, ImportSettings())


class EnvOverrideTests(unittest.TestCase):
    def test_env_values_override_rules(self) -> None:
        env = {
            **_clean_env(),
            "ROUNDS_OCR_LANG": "fra",
            "ROUNDS_MIN_TEXT_CHARS": "20",
            "ROUNDS_OCR_SCALE": "1.5",
            "ROUNDS_FORCE_OCR": "on",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = apply_env_overrides(ImportSettings())

        self.assertEqual(settings.ocr_language, "fra")
        self.assertIn("fra", settings.ocr_languages)
        self.assertEqual(settings.min_text_chars, 20)
        self.assertEqual(settings.ocr_scale, 1.5)
        self.assertTrue(settings.force_ocr)

    def test_bad_number_raises(self) -> None:
        with patch.dict(os.environ, {**_clean_env(), "ROUNDS_OCR_SCALE": "big"}, clear=True):
            with self.assertRaises(ValueError):
                apply_env_overrides(ImportSettings())

    def test_env_file_does_not_override_existing_values(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / ".env"
            path.write_text(
                "# local overrides\nROUNDS_OCR_LANG='ara'\nROUNDS_MIN_TEXT_CHARS=\"15\"\nnot a pair\n",
                encoding="utf-8",
            )
            with patch.dict(os.environ, {**_clean_env(), "ROUNDS_OCR_LANG": "eng"}, clear=True):
                load_local_env_file(path)
                self.assertEqual(os.environ["ROUNDS_OCR_LANG"], "eng")
                self.assertEqual(os.environ["ROUNDS_MIN_TEXT_CHARS"], "15")


if __name__ == "__main__":
    unittest.main()
