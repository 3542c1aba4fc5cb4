from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "freight_doctor.cli"]
FIXED_STAMP = "20260301T010203Z"

SEA_2024 = "Rechnungsbetrag;Rohmasse;Warentarifnummer\n2638927;210000000;73181590\n"
AIR_2025 = (
    "Invoice value;Gross Mass (in kg);HTS Code (Tariff Number);Transport Mode\n"
    "150,50;12,5;84099100;AIR\n"
)


def run_cli(*args: str, env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
    merged_env = dict(os.environ)
    merged_env["FREIGHT_DOCTOR_OUTPUT_STAMP"] = FIXED_STAMP
    if env:
        merged_env.update(env)
    return subprocess.run(
        [*CLI, *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
        env=merged_env,
    )


def write_dsv_inputs(folder: Path) -> Path:
    inputs = folder / "inputs"
    inputs.mkdir()
    (inputs / "2024_sea.csv").write_text(SEA_2024, encoding="utf-8")
    (inputs / "2025_air.csv").write_text(AIR_2025, encoding="utf-8")
    return inputs


class FreightDoctorCliTests(unittest.TestCase):
    def test_merge_directory_writes_workbook_and_summary(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            inputs = write_dsv_inputs(Path(tmpdir))
            out_dir = Path(tmpdir) / "out"
            proc = run_cli("merge", "DSV", str(inputs), "--out", str(out_dir), "--json")
            self.assertEqual(proc.returncode, 0, proc.stderr)

            summary = json.loads(proc.stdout)
            self.assertEqual(summary["contract"]["name"], "freight_doctor.merge_summary")
            self.assertEqual(summary["broker"], "DSV")
            self.assertEqual(summary["metrics"]["total_rows"], 2)
            self.assertEqual(summary["metrics"]["warning_count"], 0)
            self.assertIn("scale-fix", summary["metrics"]["issues_by_kind"])
            self.assertTrue((out_dir / "merge-summary.json").exists())
            self.assertTrue((out_dir / "dsv-consolidated.xlsx").exists())

    def test_merge_refuses_to_overwrite_workbook(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            inputs = write_dsv_inputs(Path(tmpdir))
            target = Path(tmpdir) / "merged.xlsx"
            target.write_bytes(b"keep me")
            proc = run_cli("merge", "DSV", str(inputs), "--output", str(target), "--out", tmpdir)
            self.assertEqual(proc.returncode, 1)
            self.assertIn("Refusing to overwrite", proc.stderr)
            self.assertEqual(target.read_bytes(), b"keep me")

    def test_merge_human_output_goes_to_stderr(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            inputs = write_dsv_inputs(Path(tmpdir))
            proc = run_cli("merge", "DSV", str(inputs), "--out", str(Path(tmpdir) / "out"))
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertEqual(proc.stdout, "")
            self.assertIn("Workbook written:", proc.stderr)

    def test_audit_reports_idempotent_repair(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            inputs = write_dsv_inputs(Path(tmpdir))
            proc = run_cli("audit", "DSV", str(inputs), "--out", tmpdir, "--json")
            self.assertEqual(proc.returncode, 0, proc.stderr)
            payload = json.loads(proc.stdout)
            self.assertTrue(payload["idempotent"])
            self.assertTrue(payload["widths_preserved"])
            self.assertEqual(payload["second_pass"]["fix_count"], 0)
            self.assertTrue((Path(tmpdir) / "audit.json").exists())

    def test_headers_json_lists_unified_header(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            inputs = write_dsv_inputs(Path(tmpdir))
            proc = run_cli("headers", "DSV", str(inputs), "--json")
            self.assertEqual(proc.returncode, 0, proc.stderr)
            payload = json.loads(proc.stdout)
            self.assertEqual(
                payload["header"],
                ["Rechnungsbetrag", "Rohmasse", "Warentarifnummer", "Transport Mode"],
            )
            self.assertEqual(payload["mappings"]["2024_sea.csv"], [0, 1, 2])
            self.assertEqual(payload["unmapped"], [])

    def test_merge_with_warnings_returns_exit_3(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "dsv.csv"
            path.write_text("Rechnungsbetrag;Rohmasse\nabc;5\n", encoding="utf-8")
            proc = run_cli("merge", "DSV", str(path), "--out", str(Path(tmpdir) / "out"), "--json")
            self.assertEqual(proc.returncode, 3, proc.stderr)
            summary = json.loads(proc.stdout)
            self.assertEqual(summary["metrics"]["warning_count"], 1)
            self.assertIn("number-unparseable", summary["metrics"]["issues_by_kind"])

    def test_header_conflict_returns_exit_5(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            inputs = Path(tmpdir) / "inputs"
            inputs.mkdir()
            # "Invoice value" lands in the second Rechnungsbetrag slot in a.csv, the first in b.csv.
            (inputs / "a.csv").write_text("X;Rechnungsbetrag;Invoice value\n1;2;3\n", encoding="utf-8")
            (inputs / "b.csv").write_text("Invoice value\n100\n", encoding="utf-8")

            proc = run_cli("headers", "DSV", str(inputs))
            self.assertEqual(proc.returncode, 5)
            self.assertIn("Header conflict", proc.stderr)

            proc = run_cli("merge", "DSV", str(inputs), "--out", str(Path(tmpdir) / "out"))
            self.assertEqual(proc.returncode, 5)

    def test_synonyms_file_must_be_json_object(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            inputs = write_dsv_inputs(Path(tmpdir))
            synonyms = Path(tmpdir) / "synonyms.json"
            synonyms.write_text(json.dumps(["not", "a", "mapping"]), encoding="utf-8")
            proc = run_cli("headers", "DSV", str(inputs), "--synonyms", str(synonyms))
            self.assertEqual(proc.returncode, 1)

    def test_brokers_json(self):
        proc = run_cli("brokers", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        ids = [entry["broker_id"] for entry in payload["brokers"]]
        self.assertIn("DHL", ids)
        self.assertIn("DSV", ids)
        self.assertEqual(payload["contract"]["name"], "freight_doctor.brokers")

    def test_explain_known_and_unknown_kinds(self):
        proc = run_cli("explain", "shift-fix")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("Issue: shift-fix", proc.stdout)
        self.assertIn("Severity:", proc.stdout)

        proc = run_cli("explain", "made-up")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Unknown issue kind", proc.stderr)

    def test_version(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0)
        self.assertEqual(proc.stdout.strip(), "0.1.0")

    def test_unknown_broker_returns_exit_1(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            inputs = write_dsv_inputs(Path(tmpdir))
            proc = run_cli("merge", "NOPE", str(inputs), "--out", tmpdir)
            self.assertEqual(proc.returncode, 1)

    def test_missing_input_returns_exit_1(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            proc = run_cli("merge", "DSV", str(Path(tmpdir) / "missing.csv"), "--out", tmpdir)
            self.assertEqual(proc.returncode, 1)

    def test_bad_usage_returns_exit_1(self):
        proc = run_cli("merge")
        self.assertEqual(proc.returncode, 1)


if __name__ == "__main__":
    unittest.main()
