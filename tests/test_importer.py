from __future__ import annotations

import unittest
from unittest.mock import patch

from src.importer import ImportController, import_delimited_text, import_upload
from src.row_normalizer import CANONICAL_WIDTH, EXPECTED_HEADERS, LEGACY_HEADERS
from src.session import (
    ERROR_EMPTY_FILE,
    ERROR_HEADER_MISMATCH,
    SOURCE_PDF,
    ImportSession,
    html_block,
)
from src.settings import ImportSettings


def _new_line(*cells: str) -> str:
    padded = list(cells) + [""] * (len(EXPECTED_HEADERS) - len(cells))
    return ";".join(padded)


class DelimitedImportTests(unittest.TestCase):
    def test_legacy_export_end_to_end(self) -> None:
        text = ",".join(LEGACY_HEADERS) + "\nP1,John,70,101,DrA,Pneumonia,Reg,Standard,stable\n"
        session = import_delimited_text(text, source_name="legacy.csv")

        self.assertTrue(session.ok)
        self.assertEqual(session.mode, "main_template_empty_cols")
        self.assertEqual(session.row_count, 1)
        row = session.rows[0]
        self.assertEqual(len(row), CANONICAL_WIDTH)
        self.assertEqual(row[0], "P1")
        self.assertEqual(row[4], "Pneumonia")
        self.assertEqual(row[5], "")
        self.assertEqual(row[6], "DrA")
        self.assertTrue(session.message.endswith("1 rows ready."))

    def test_relaxed_legacy_header_imports_in_legacy_mode(self) -> None:
        header = list(LEGACY_HEADERS)
        header[0] = "Patient\u00a0Code"
        data_rows = [
            ["P1", "John", "70 years", "101", "DrA", "Pneumonia", "Reg", "Standard", "stable"],
            ["P2", "Mary", "65", "102", "DrB", "Heart failure", "Low salt", "Contact", ""],
            ["P3", "Omar", "", "103", "DrC", "", "", "", "new"],
        ]
        text = "\n".join(",".join(row) for row in [header, *data_rows])
        session = import_delimited_text(text)

        self.assertTrue(session.ok)
        self.assertEqual(session.mode, "legacy")
        self.assertIn("relaxed", session.message)
        self.assertEqual(session.row_count, len(data_rows))
        for raw, row in zip(data_rows, session.rows):
            self.assertEqual(row[4], raw[5])
            self.assertEqual(row[5], "")
            self.assertEqual(row[6], raw[4])

    def test_new_schema_with_semicolons_quotes_and_blank_rows(self) -> None:
        text = "\n".join(
            [
                ";".join(EXPECTED_HEADERS),
                _new_line("P1", '"Doe; Jane"', "72 Years 4 Months", "5", "CHF", "ICU"),
                ";;;;",
                _new_line("P2", "Ali", "N/A"),
            ]
        )
        session = import_delimited_text(text)

        self.assertTrue(session.ok)
        self.assertEqual(session.mode, "new")
        self.assertEqual(session.row_count, 2)
        self.assertEqual(session.rows[0][1], "Doe; Jane")
        self.assertEqual(session.rows[0][2], "72")
        self.assertEqual(session.rows[0][5], "ICU")
        self.assertEqual(session.rows[1][2], "")
        self.assertEqual(session.message, "Detected NEW template. 2 rows ready.")

    def test_custom_tab_export(self) -> None:
        header = [
            "Patient Code",
            "Unnamed: 1",
            "Patient Name",
            "Patient Age",
            "Room",
            "Admitting Provider",
            "Cause Of Admission",
            "Diet",
            "Isolation",
            "Comments",
        ]
        row = ["P4", "", "Hala", "80", "7", "Dr B", "COPD", "Soft", "No", ""]
        session = import_delimited_text("\t".join(header) + "\n" + "\t".join(row))

        self.assertTrue(session.ok)
        self.assertEqual(session.mode, "main_template_empty_cols")
        self.assertEqual(session.rows[0][:5], ["P4", "Hala", "80", "7", "COPD"])

    def test_header_mismatch_reports_error_and_no_rows(self) -> None:
        session = import_delimited_text("Bed,Patient ID\n1,A\n")

        self.assertFalse(session.ok)
        self.assertEqual(session.error_kind, ERROR_HEADER_MISMATCH)
        self.assertIn("Got: Bed | Patient ID", session.error)
        self.assertEqual(session.consume_validated_rows(), [])

    def test_mismatch_markup_escapes_received_header(self) -> None:
        session = import_delimited_text("<img src=x onerror=alert(1)>,Age <years>\n1,2\n")
        markup = html_block("rounds-error", session.error)

        self.assertIn("<img src=x onerror=alert(1)>", session.error)
        self.assertNotIn("<img", markup)
        self.assertIn("&lt;img src=x onerror=alert(1)&gt;", markup)
        self.assertIn("Age &lt;years&gt;", markup)
        self.assertTrue(markup.startswith("<div class='rounds-error'>"))

    def test_empty_file(self) -> None:
        session = import_delimited_text("")
        self.assertEqual(session.error_kind, ERROR_EMPTY_FILE)
        self.assertEqual(session.error, "Empty file.")

    def test_header_only_file_is_valid_with_warning(self) -> None:
        session = import_delimited_text(",".join(EXPECTED_HEADERS) + "\n")
        self.assertTrue(session.ok)
        self.assertEqual(session.row_count, 0)
        self.assertEqual(session.warnings, ["No data rows detected."])
        self.assertEqual(session.preview_note(), "No data rows detected. Mode: NEW.")

    def test_consumed_rows_are_a_copy(self) -> None:
        session = import_delimited_text(",".join(EXPECTED_HEADERS) + "\nP1,John\n")
        rows = session.consume_validated_rows()
        rows[0][0] = "changed"
        self.assertEqual(session.rows[0][0], "P1")

    def test_preview_is_capped(self) -> None:
        lines = [",".join(EXPECTED_HEADERS)] + [f"P{index},Name{index}" for index in range(12)]
        session = import_delimited_text("\n".join(lines))
        preview = session.preview(limit=10)

        self.assertEqual(preview["header_row"], EXPECTED_HEADERS)
        self.assertEqual(len(preview["first_ten_data_rows"]), 10)
        self.assertEqual(preview["row_count"], 12)
        self.assertEqual(preview["matched_mode"], "new")
        self.assertEqual(session.preview_note(), "Showing first 10 rows (12 total). Mode: NEW.")


class UploadDispatchTests(unittest.TestCase):
    def test_bytes_are_decoded_before_import(self) -> None:
        data = (",".join(EXPECTED_HEADERS) + "\nP1,Ren\xe9\n").encode("latin-1")
        session = import_upload("patients.csv", data, ImportSettings())
        self.assertTrue(session.ok)
        self.assertEqual(session.rows[0][1], "Ren\xe9")
        self.assertEqual(session.source_name, "patients.csv")

    def test_pdf_uploads_go_to_pdf_import(self) -> None:
        expected = ImportSession(source_name="list.pdf", source_kind=SOURCE_PDF, mode="pdf")
        with patch("src.importer.import_pdf", return_value=expected) as import_pdf:
            session = import_upload("upload.bin", b"%PDF-1.7 ...", ImportSettings(), force_ocr=True, language="ara")

        self.assertIs(session, expected)
        _args, kwargs = import_pdf.call_args
        self.assertTrue(kwargs["force_ocr"])
        self.assertEqual(kwargs["language"], "ara")


class ImportControllerTests(unittest.TestCase):
    def test_stale_result_is_not_committed(self) -> None:
        controller = ImportController()
        first = controller.begin()
        second = controller.begin()

        newest = ImportSession(source_name="second.csv")
        self.assertTrue(controller.commit(second, newest))
        self.assertFalse(controller.commit(first, ImportSession(source_name="first.csv")))
        self.assertIs(controller.session, newest)

    def test_reset_clears_session_and_invalidates_running_parse(self) -> None:
        controller = ImportController()
        ticket = controller.begin()
        controller.reset()

        self.assertFalse(controller.commit(ticket, ImportSession(source_name="late.csv")))
        self.assertIsNone(controller.session)
        self.assertEqual(controller.consume_validated_rows(), [])

    def test_run_commits_and_exposes_rows(self) -> None:
        controller = ImportController()
        data = (",".join(EXPECTED_HEADERS) + "\nP1,John\n").encode("utf-8")
        session = controller.run("patients.csv", data, ImportSettings())

        self.assertIs(controller.session, session)
        self.assertEqual(controller.consume_validated_rows()[0][:2], ["P1", "John"])

    def test_failed_session_has_nothing_to_consume(self) -> None:
        controller = ImportController()
        controller.run("bad.csv", b"x,y\n1,2\n", ImportSettings())
        self.assertEqual(controller.consume_validated_rows(), [])


if __name__ == "__main__":
    unittest.main()
