from __future__ import annotations

import json
import os
import shutil
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

from roster_doctor.schema import FIELDS


ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "roster_doctor.cli"]
FIXED_STAMP = "20260301T010203Z"
SAMPLE = "sample-data/messy_roster.csv"

VALID_ROW = [
    "e-1", "Ada", "Lovelace", "ada@example.com", "2021-05-07", "Engineering", "R&D", "Engineer",
    "East", "+12015550123", "+12015550123", "female", "USA", "Boston", "1990-12-10", "English",
]


def run_cli(*args: str, env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
    merged_env = dict(os.environ)
    merged_env["ROSTER_DOCTOR_OUTPUT_STAMP"] = FIXED_STAMP
    if env:
        merged_env.update(env)
    return subprocess.run(
        [*CLI, *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
        env=merged_env,
    )


def write_valid_csv(folder: Path) -> Path:
    path = folder / "clean.csv"
    path.write_text(",".join(FIELDS) + "\n" + ",".join(VALID_ROW) + "\n", encoding="utf-8")
    return path


class MapCommandTests(unittest.TestCase):
    def test_map_json_lists_inferred_mapping(self):
        proc = run_cli("map", SAMPLE, "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["contract"]["name"], "roster_doctor.mapping")
        self.assertEqual(payload["mapping"]["Emp ID"], "employeeId")
        self.assertEqual(payload["mapping"]["Nation"], "country")
        self.assertEqual(payload["unmapped"], ["Notes"])
        self.assertEqual(payload["missing_fields"], [])

    def test_unmapping_a_required_field_returns_exit_6(self):
        proc = run_cli("map", SAMPLE, "--map", "Mobile=")
        self.assertEqual(proc.returncode, 6, proc.stderr)
        self.assertIn("Missing required fields: mobileNumber", proc.stderr)

    def test_config_threshold_controls_fuzzy_matches(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "staff.csv"
            path.write_text("Emial,Notes\na@example.com,x\n", encoding="utf-8")
            config = Path(tmpdir) / "roster-doctor.json"
            config.write_text(json.dumps({"fuzzy_threshold": 0.1}), encoding="utf-8")
            loose = json.loads(run_cli("map", str(path), "--json").stdout)
            strict = json.loads(run_cli("map", str(path), "--json", "--config", str(config)).stdout)
        self.assertEqual(loose["mapping"], {"Emial": "email"})
        self.assertEqual(strict["mapping"], {})

    def test_unknown_target_field_returns_exit_1(self):
        proc = run_cli("map", SAMPLE, "--map", "Emp ID=salary")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Unknown target field: salary", proc.stderr)


class ValidateCommandTests(unittest.TestCase):
    def test_messy_roster_returns_exit_5(self):
        proc = run_cli("validate", SAMPLE, "--json")
        self.assertEqual(proc.returncode, 5, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertFalse(payload["valid"])
        self.assertEqual(proc.stderr.strip(), "")
        found = {(error["row"], error["field"], error["message"]) for error in payload["errors"]}
        self.assertIn((3, "employeeId", "Duplicate value found in row 1"), found)
        self.assertIn((4, "gender", "Invalid option: unknown"), found)
        self.assertIn((4, "firstName", "First name is required"), found)
        self.assertEqual(payload["run_summary"]["metrics"]["total_rows"], 5)
        self.assertEqual(payload["run_summary"]["unmapped_headers"], ["Notes"])
        self.assertEqual(payload["run_summary"]["file_type"], "csv")

    def test_human_output_goes_to_stderr(self):
        proc = run_cli("validate", SAMPLE)
        self.assertEqual(proc.returncode, 5)
        self.assertIn("Verdict: INVALID", proc.stderr)
        self.assertEqual(proc.stdout, "")

    def test_clean_file_returns_exit_0_and_writes_report(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_valid_csv(Path(tmpdir))
            proc = run_cli("validate", str(path), "--out", tmpdir)
            self.assertEqual(proc.returncode, 0, proc.stderr)
            report = json.loads((Path(tmpdir) / "validation.json").read_text(encoding="utf-8"))
            self.assertTrue(report["valid"])
            self.assertEqual(report["errors"], [])

    def test_config_can_allow_extra_domains(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = Path(tmpdir) / "roster-doctor.json"
            config.write_text(json.dumps({"allowed_email_domains": [".xyz"]}), encoding="utf-8")
            proc = run_cli("validate", SAMPLE, "--json", "--config", str(config))
            payload = json.loads(proc.stdout)
        domain_errors = [e for e in payload["errors"] if e["message"].startswith("Invalid email domain")]
        self.assertEqual(len(domain_errors), 4)

    def test_bad_config_returns_exit_1(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = Path(tmpdir) / "roster-doctor.json"
            config.write_text(json.dumps({"colour": "blue"}), encoding="utf-8")
            proc = run_cli("validate", SAMPLE, "--config", str(config))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Unknown config keys", proc.stderr)

    def test_missing_file_returns_exit_1(self):
        proc = run_cli("validate", "sample-data/nope.csv")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("File not found", proc.stderr)

    def test_unreadable_input_returns_exit_2(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "broken.json"
            path.write_text("{not json", encoding="utf-8")
            proc = run_cli("validate", str(path))
        self.assertEqual(proc.returncode, 2)
        self.assertIn("Invalid JSON", proc.stderr)


class CleanCommandTests(unittest.TestCase):
    def test_clean_with_errors_returns_exit_4_and_writes_outputs(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            proc = run_cli("clean", SAMPLE, "--out", tmpdir, "--format", "csv")
            self.assertEqual(proc.returncode, 4, proc.stderr)
            self.assertIn("Cleaned output:", proc.stderr)
            cleaned = (Path(tmpdir) / "messy_roster_clean.csv").read_text(encoding="utf-8")
            self.assertTrue(cleaned.startswith("employeeId,firstName,lastName,email"))
            self.assertIn("e-002", cleaned)
            summary = json.loads((Path(tmpdir) / "clean_summary.json").read_text(encoding="utf-8"))
            self.assertEqual(summary["contract"]["name"], "roster_doctor.clean_summary")
            self.assertEqual(summary["run_summary"]["script"], "clean")

    def test_fail_on_errors_returns_exit_5(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            proc = run_cli("clean", SAMPLE, "--out", tmpdir, "--fail-on-errors")
            self.assertEqual(proc.returncode, 5, proc.stderr)
            self.assertTrue((Path(tmpdir) / "messy_roster_clean.xlsx").exists())

    def test_dry_run_writes_nothing(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            proc = run_cli("clean", SAMPLE, "--out", tmpdir, "--dry-run", "--json")
            self.assertEqual(proc.returncode, 4, proc.stderr)
            payload = json.loads(proc.stdout)
            self.assertIn("outputs", payload)
            self.assertFalse(any(Path(tmpdir).iterdir()))

    def test_fix_phones_records_more_changes(self):
        plain = json.loads(run_cli("clean", SAMPLE, "--dry-run", "--json").stdout)
        fixed = json.loads(run_cli("clean", SAMPLE, "--dry-run", "--json", "--fix-phones").stdout)
        self.assertGreater(fixed["change_count"], plain["change_count"])

    def test_default_output_directory_uses_stamp(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_valid_csv(Path(tmpdir))
            proc = run_cli("clean", str(path), "--format", "json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        output_dir = ROOT / "roster-doctor-output" / f"clean-{FIXED_STAMP}"
        try:
            records = json.loads((output_dir / "clean_clean.json").read_text(encoding="utf-8"))
            self.assertEqual(records[0]["employeeId"], "e-1")
            self.assertTrue((output_dir / "clean_summary.json").exists())
        finally:
            shutil.rmtree(output_dir, ignore_errors=True)
            if output_dir.parent.exists() and not any(output_dir.parent.iterdir()):
                output_dir.parent.rmdir()


class UtilityCommandTests(unittest.TestCase):
    def test_template_refuses_overwrite(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            target = Path(tmpdir) / "user-template.csv"
            first = run_cli("template", "--output", str(target))
            self.assertEqual(first.returncode, 0, first.stderr)
            self.assertTrue(target.read_text(encoding="utf-8").startswith("employeeId,"))
            second = run_cli("template", "--output", str(target))
            self.assertEqual(second.returncode, 1)
            forced = run_cli("template", "--output", str(target), "--force", "--format", "xlsx")
            self.assertEqual(forced.returncode, 0, forced.stderr)

    def test_config_init_refuses_overwrite(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            target = Path(tmpdir) / "roster-doctor.json"
            proc = run_cli("config", "init", "--path", str(target))
            self.assertEqual(proc.returncode, 0, proc.stderr)
            payload = json.loads(target.read_text(encoding="utf-8"))
            self.assertIn("fuzzy_threshold", payload)
            again = run_cli("config", "init", "--path", str(target))
            self.assertEqual(again.returncode, 1)

    def test_explain_field(self):
        proc = run_cli("explain", "employeeId", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertTrue(payload["required"])
        self.assertEqual(payload["rule"]["unique"], {"ignore_case": True, "ignore_nulls": True})

        human = run_cli("explain", "gender")
        self.assertIn("Allowed values: male, female", human.stdout)

    def test_explain_unknown_field(self):
        proc = run_cli("explain", "salary")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Unknown field", proc.stderr)

    def test_version(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0)
        self.assertEqual(proc.stdout.strip(), "0.1.0")

    def test_bad_arguments_return_exit_1(self):
        proc = run_cli("clean", SAMPLE, "--format", "pdf")
        self.assertEqual(proc.returncode, 1)


if __name__ == "__main__":
    unittest.main()
