import importlib.util
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from openpyxl import Workbook

from freight_doctor.brokers import BROKERS
from freight_doctor.loader import extract_parts, load_rows, select_sheet

_XLRD_AVAILABLE = importlib.util.find_spec("xlrd") is not None


class TextLoaderTests(unittest.TestCase):
    def test_semicolon_csv_with_bom(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "dsv_2025.csv"
            path.write_text("Rechnungsbetrag;Rohmasse\n2638927;210000000\n;\n", encoding="utf-8-sig")

            result = load_rows(path, BROKERS["DSV"])
            self.assertEqual(result["detected_format"], "csv")
            self.assertEqual(result["delimiter"], ";")
            self.assertEqual(result["rows"][1], ["2638927", "210000000"])

            parts = extract_parts(result["rows"], BROKERS["DSV"])
            self.assertEqual(parts.header_names, ["Rechnungsbetrag", "Rohmasse"])
            self.assertEqual(parts.data, [["2638927", "210000000"]])
            self.assertGreaterEqual(parts.footer_rows, 1)

    def test_blank_last_row_is_kept_for_footer_accounting(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "dsv.csv"
            path.write_text("Rechnungsbetrag;Rohmasse\n100;5\n;\n", encoding="utf-8")
            rows = load_rows(path, BROKERS["DSV"])["rows"]
            self.assertEqual(len(rows), 3)
            self.assertEqual(rows[-1], [None, None])
            self.assertEqual(extract_parts(rows, BROKERS["DSV"]).footer_rows, 1)

    def test_cells_stay_text_and_empty_cells_are_none(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "kn.csv"
            path.write_text("ref,amount,note\n00123,\"1.234,56\",\n", encoding="utf-8")
            rows = load_rows(path, BROKERS["KN"])["rows"]
            self.assertEqual(rows[1], ["00123", "1.234,56", None])

    def test_delimiter_is_sniffed_without_schema(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "export.csv"
            path.write_text("a|b|c\n1|2|3\n4|5|6\n", encoding="utf-8")
            result = load_rows(path)
            self.assertEqual(result["delimiter"], "|")
            self.assertEqual(result["rows"][2], ["4", "5", "6"])

    def test_missing_and_unsupported_files(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(FileNotFoundError):
                load_rows(Path(tmpdir) / "missing.csv")
            path = Path(tmpdir) / "export.pdf"
            path.write_bytes(b"%PDF-1.4")
            with self.assertRaisesRegex(ValueError, "Unsupported format"):
                load_rows(path)


class WorkbookLoaderTests(unittest.TestCase):
    def _workbook(self, path: Path, sheets: dict) -> None:
        wb = Workbook()
        wb.remove(wb.active)
        for name, rows in sheets.items():
            ws = wb.create_sheet(name)
            for row in rows:
                ws.append(row)
        wb.save(path)

    def test_dsv_air_file_picks_import_sheet(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "DSV Luft 2025.xlsx"
            self._workbook(path, {
                "Summary": [["Total", 3]],
                "Import Report Template": [["Invoice value", "Gross Mass (in kg)"], [150.5, 12.5]],
            })
            result = load_rows(path, BROKERS["DSV"])
            self.assertEqual(result["sheet_name"], "Import Report Template")
            self.assertEqual(result["rows"][1], [150.5, 12.5])
            self.assertTrue(any("Multiple sheets" in w for w in result["warnings"]))

    def test_explicit_sheet_must_exist(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "ups.xlsx"
            self._workbook(path, {"Data": [["a", "b"]]})
            with self.assertRaisesRegex(ValueError, "not found"):
                load_rows(path, BROKERS["UPS"], sheet_name="Other")

    def test_corrupt_workbook_is_a_value_error(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "broken.xlsx"
            path.write_bytes(b"not a zip archive")
            with self.assertRaises(ValueError):
                load_rows(path, BROKERS["DHL"])

    @unittest.skipIf(_XLRD_AVAILABLE, "xlrd installed")
    def test_xls_without_xlrd_raises_import_error(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "legacy.xls"
            path.write_bytes(b"not-a-real-xls")
            with self.assertRaisesRegex(ImportError, "xlrd"):
                load_rows(path)

    def test_xls_import_error_is_simulated(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "legacy.xls"
            path.write_bytes(b"not-a-real-xls")
            original_import = __import__

            def fake_import(name, globals=None, locals=None, fromlist=(), level=0):
                if name == "xlrd":
                    raise ImportError("simulated missing xlrd")
                return original_import(name, globals, locals, fromlist, level)

            with mock.patch("builtins.__import__", side_effect=fake_import):
                with self.assertRaisesRegex(ImportError, "excel-legacy"):
                    load_rows(path)


class SheetSelectionTests(unittest.TestCase):
    def test_hint_gates_the_pattern(self):
        dsv = BROKERS["DSV"]
        sheets = ["Deckblatt", "Importzoll 2025"]
        self.assertEqual(select_sheet(sheets, "dsv_luft_q1.xlsx", dsv), "Importzoll 2025")
        self.assertEqual(select_sheet(sheets, "dsv_see_q1.xlsx", dsv), "Deckblatt")

    def test_first_sheet_without_schema(self):
        self.assertEqual(select_sheet(["A", "B"], "x.xlsx", None), "A")
        with self.assertRaises(ValueError):
            select_sheet([], "x.xlsx", None)


class ExtractPartsTests(unittest.TestCase):
    def test_dhl_two_header_rows_and_footer(self):
        rows = [
            ["Date", "EORI", "Name"],
            ["Datum", "EORI", "Name"],
            ["2025-05-01", "DE123", "ACME"],
            ["Summe", None, None],
        ]
        parts = extract_parts(rows, BROKERS["DHL"])
        self.assertEqual(len(parts.headers), 2)
        self.assertEqual(parts.header_names, ["Date", "EORI", "Name"])
        self.assertEqual(parts.data, [["2025-05-01", "DE123", "ACME"]])
        self.assertEqual(parts.footer_rows, 1)

    def test_fedex_header_after_preamble(self):
        rows = [["Report", "FedEx"]] * 13 + [["DATUM", "WKZ", "BETRAG"], ["01.05.2025", "EUR", "12,5"]]
        parts = extract_parts(rows, BROKERS["FEDEX"])
        self.assertEqual(parts.header_names, ["DATUM", "WKZ", "BETRAG"])
        self.assertEqual(parts.data, [["01.05.2025", "EUR", "12,5"]])

    def test_ups_rows_are_trimmed_to_62_columns(self):
        header = [f"c{i}" for i in range(62)]
        data = ["x", "y"] + [None] * 62
        noisy = ["x", "y"] + [None] * 61 + ["extra"]
        parts = extract_parts([header, data, noisy], BROKERS["UPS"])
        self.assertEqual(len(parts.data[0]), 62)
        self.assertEqual(len(parts.data[1]), 64)
        self.assertEqual(parts.trimmed_rows, 1)


if __name__ == "__main__":
    unittest.main()
