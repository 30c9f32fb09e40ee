from __future__ import annotations

import csv
import json
import tempfile
import unittest
from pathlib import Path

from openpyxl import load_workbook

from roster_doctor.engine import CleaningChange, ValidationError
from roster_doctor.export import FILL_ERROR, export_rows, output_columns, write_template
from roster_doctor.schema import FIELDS


ROWS = [
    {"Notes": "keep", "email": "a@example.com", "employeeId": "e-1"},
    {"Notes": None, "email": "bad", "employeeId": "e-2"},
]
ERRORS = [ValidationError(1, "email", "Invalid email format", "bad")]
CHANGES = [CleaningChange(0, "email", " A@example.com", "a@example.com", ["trimmed", "caseChanged"], "Cleaned value for email: trimmed whitespace, changed case")]


class ExportTests(unittest.TestCase):
    def test_catalog_columns_come_first(self):
        self.assertEqual(output_columns(ROWS), ["employeeId", "email", "Notes"])

    def test_workbook_has_data_errors_and_change_log(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = export_rows(ROWS, Path(tmpdir) / "out.xlsx", "xlsx", ERRORS, CHANGES)
            wb = load_workbook(path)
            self.assertEqual(wb.sheetnames, ["Clean Data", "Errors", "Change Log"])
            data = wb["Clean Data"]
            self.assertEqual([cell.value for cell in data[1]], ["employeeId", "email", "Notes"])
            self.assertEqual(data.cell(3, 2).value, "bad")
            self.assertEqual(data.cell(3, 2).fill.fgColor.rgb[-6:], FILL_ERROR.fgColor.rgb[-6:])
            errors = wb["Errors"]
            self.assertEqual([cell.value for cell in errors[2]], [2, "email", "Invalid email format", "bad"])
            log = wb["Change Log"]
            self.assertEqual(log.cell(2, 5).value, "trimmed, caseChanged")

    def test_csv_and_json(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            csv_path = export_rows(ROWS, Path(tmpdir) / "out.csv", "csv")
            with csv_path.open(encoding="utf-8", newline="") as handle:
                records = list(csv.DictReader(handle))
            self.assertEqual(records[0]["employeeId"], "e-1")
            self.assertEqual(records[1]["Notes"], "")

            json_path = export_rows(ROWS, Path(tmpdir) / "out.json", "json")
            payload = json.loads(json_path.read_text(encoding="utf-8"))
            self.assertEqual(payload[1]["email"], "bad")
            self.assertIsNone(payload[1]["Notes"])

    def test_unknown_format(self):
        with self.assertRaises(ValueError):
            export_rows(ROWS, Path("unused.txt"), "txt")


class TemplateTests(unittest.TestCase):
    def test_csv_template_with_descriptions(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_template(Path(tmpdir) / "user-template.csv", "csv")
            with path.open(encoding="utf-8", newline="") as handle:
                lines = list(csv.reader(handle))
        self.assertEqual(lines[0], list(FIELDS))
        self.assertEqual(len(lines), 2)
        self.assertTrue(lines[1][0].startswith("ID of the employee"))

    def test_csv_template_headers_only(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_template(Path(tmpdir) / "user-template.csv", "csv", include_descriptions=False)
            self.assertEqual(path.read_text(encoding="utf-8").splitlines(), [",".join(FIELDS)])

    def test_xlsx_template(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_template(Path(tmpdir) / "user-template.xlsx", "xlsx")
            ws = load_workbook(path)["Users"]
            self.assertEqual([cell.value for cell in ws[1]], list(FIELDS))
            self.assertIsNotNone(ws.cell(1, 1).comment)
            self.assertEqual(ws.max_row, 1)


if __name__ == "__main__":
    unittest.main()
