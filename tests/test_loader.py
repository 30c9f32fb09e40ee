import importlib.util
import json
import tempfile
import unittest
from pathlib import Path

from openpyxl import Workbook

from roster_doctor.loader import dataframe_to_rows, load_file, load_import

_ODFPY_AVAILABLE = importlib.util.find_spec("odf") is not None

REPO_ROOT = Path(__file__).resolve().parents[1]
SAMPLE_CSV = REPO_ROOT / "sample-data" / "messy_roster.csv"


class LoaderFormatTests(unittest.TestCase):
    def test_csv_blank_cells_become_none(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "staff.csv"
            path.write_text("Emp ID,First Name,Notes\nE-1,Ada,\nE-2,,late\n", encoding="utf-8")
            parsed = load_import(path)

        self.assertEqual(parsed["headers"], ["Emp ID", "First Name", "Notes"])
        self.assertEqual(parsed["rows"][0], {"Emp ID": "E-1", "First Name": "Ada", "Notes": None})
        self.assertIsNone(parsed["rows"][1]["First Name"])
        self.assertEqual(parsed["totalRows"], 2)
        self.assertEqual(parsed["fileType"], "csv")
        self.assertEqual(parsed["columnMapping"]["mapped"], {"Emp ID": "employeeId", "First Name": "firstName"})
        self.assertEqual(parsed["columnMapping"]["unmapped"], ["Notes"])

    def test_semicolon_delimiter_and_bom(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "staff.csv"
            path.write_bytes("\ufeffEmail;City\na@example.com;Paris\nb@example.com;Oslo\n".encode("utf-8"))
            loaded = load_file(path)
        self.assertEqual(loaded["delimiter"], ";")
        self.assertEqual(list(loaded["dataframe"].columns), ["Email", "City"])

    def test_leading_whitespace_is_preserved_for_cleaning(self):
        parsed = load_import(SAMPLE_CSV)
        self.assertEqual(parsed["rows"][1]["Emp ID"], "  E-002 ")
        self.assertIn("Notes", parsed["columnMapping"]["unmapped"])

    def test_json_array(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "staff.json"
            path.write_text(json.dumps([{"email": "a@example.com", "city": "Paris"}]), encoding="utf-8")
            parsed = load_import(path)
        self.assertEqual(parsed["rows"], [{"email": "a@example.com", "city": "Paris"}])
        self.assertEqual(parsed["fileType"], "json")

    def test_json_object_uses_first_list(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "staff.json"
            path.write_text(json.dumps({"meta": 1, "users": [{"email": "a@example.com"}]}), encoding="utf-8")
            parsed = load_import(path)
        self.assertEqual(parsed["totalRows"], 1)
        self.assertTrue(any("users" in warning for warning in parsed["warnings"]))

    def test_jsonl_skips_bad_lines(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "staff.jsonl"
            path.write_text('{"email": "a@example.com"}\nnot json\n{"email": "b@example.com"}\n', encoding="utf-8")
            parsed = load_import(path)
        self.assertEqual(parsed["totalRows"], 2)
        self.assertEqual(len(parsed["warnings"]), 1)

    def test_xlsx_multiple_sheets(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "staff.xlsx"
            wb = Workbook()
            ws = wb.active
            ws.title = "Staff"
            ws.append(["Email", "Hire Date"])
            ws.append(["a@example.com", None])
            other = wb.create_sheet("Archive")
            other.append(["Email"])
            other.append(["old@example.com"])
            wb.save(path)

            first = load_import(path)
            chosen = load_import(path, sheet_name="Archive")
            with self.assertRaisesRegex(ValueError, "not found"):
                load_import(path, sheet_name="Missing")

        self.assertEqual(first["sheetName"], "Staff")
        self.assertEqual(first["sheetNames"], ["Staff", "Archive"])
        self.assertEqual(first["rows"], [{"Email": "a@example.com", "Hire Date": None}])
        self.assertEqual(len(first["warnings"]), 1)
        self.assertEqual(chosen["rows"], [{"Email": "old@example.com"}])

    def test_explicit_mapping_overrides_inference(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "staff.csv"
            path.write_text("Code,Mail\nx,a@example.com\n", encoding="utf-8")
            parsed = load_import(path, mapping={"Code": "employeeId"})
        self.assertEqual(parsed["columnMapping"]["mapped"], {"Code": "employeeId"})
        self.assertEqual(parsed["columnMapping"]["unmapped"], ["Mail"])

    def test_unsupported_and_missing_files(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "staff.pdf"
            path.write_bytes(b"%PDF")
            with self.assertRaisesRegex(ValueError, "Unsupported format"):
                load_file(path)
            with self.assertRaises(FileNotFoundError):
                load_file(Path(tmpdir) / "missing.csv")

    def test_invalid_json(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "broken.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertRaisesRegex(ValueError, "Invalid JSON"):
                load_file(path)

    @unittest.skipUnless(_ODFPY_AVAILABLE, "odfpy not installed")
    def test_ods_round_trip_through_pandas(self):
        import pandas as pd

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "staff.ods"
            pd.DataFrame({"Email": ["a@example.com"]}).to_excel(path, engine="odf", index=False)
            parsed = load_import(path)
        self.assertEqual(parsed["rows"], [{"Email": "a@example.com"}])


class DataframeRowsTests(unittest.TestCase):
    def test_headers_are_strings(self):
        import pandas as pd

        headers, rows = dataframe_to_rows(pd.DataFrame({1: ["x"], "b": [float("nan")]}))
        self.assertEqual(headers, ["1", "b"])
        self.assertEqual(rows, [{"1": "x", "b": None}])


if __name__ == "__main__":
    unittest.main()
