import unittest

from freight_doctor.report import (
    FIX,
    INFO,
    ISSUE_DEFINITIONS,
    WARNING,
    ReportBuilder,
    ValidationReport,
    merge_reports,
    report_summary,
)


class ReportTests(unittest.TestCase):
    def test_every_kind_has_a_severity(self):
        for kind, definition in ISSUE_DEFINITIONS.items():
            with self.subTest(kind=kind):
                self.assertIn(definition["severity"], (FIX, WARNING, INFO))
                self.assertTrue(definition["summary"])

    def test_builder_counts_fixes_and_warnings(self):
        builder = ReportBuilder()
        builder.add("shift-fix", row=0, column=109, zone="Goods", detail="merged", before="a", after="a b")
        builder.add("number-fix", row=1, column=33, before="1,5", after=1.5)
        builder.add("anchor-invalid", row=1, column=110, zone="Goods", detail="bad HS")
        report = builder.build()

        self.assertEqual((report.fix_count, report.warning_count), (2, 1))
        self.assertEqual([i.kind for i in report.fixes], ["shift-fix", "number-fix"])
        self.assertEqual(report.warnings[0].severity, WARNING)
        self.assertEqual(report.counts_by_kind(), {"shift-fix": 1, "number-fix": 1, "anchor-invalid": 1})

    def test_info_issues_are_neither_fixes_nor_warnings(self):
        builder = ReportBuilder()
        builder.add("zone-absent", row=0, column=30, zone="Consignee")
        builder.add("number-fix", row=0, column=33)
        report = builder.build()
        self.assertEqual((report.fix_count, report.warning_count), (1, 0))
        self.assertEqual(report.issues[0].severity, INFO)

    def test_unknown_kind_is_rejected(self):
        with self.assertRaises(KeyError):
            ReportBuilder().add("made-up", row=0)

    def test_report_is_immutable(self):
        report = ReportBuilder().build()
        self.assertEqual(report, ValidationReport())
        with self.assertRaises(AttributeError):
            report.fix_count = 3

    def test_to_dict(self):
        builder = ReportBuilder()
        builder.add("date-fix", row=2, column=0, before=45658, after="2025-01-01")
        payload = builder.build().to_dict()
        self.assertEqual(payload["fix_count"], 1)
        self.assertEqual(payload["issues"][0]["after"], "2025-01-01")
        self.assertEqual(payload["counts_by_kind"], {"date-fix": 1})

    def test_merge_and_summary(self):
        a = ReportBuilder()
        for row in range(5):
            a.add("number-fix", row=row, column=33, detail=f"row {row}")
        b = ReportBuilder()
        b.add("unmapped-column", row=None, column="Branch")
        merged = merge_reports(a.build(), b.build())
        self.assertEqual((merged.fix_count, merged.warning_count), (5, 1))

        summary = report_summary(merged, max_examples=2)
        self.assertEqual(summary["by_kind"]["number-fix"]["count"], 5)
        self.assertEqual(len(summary["by_kind"]["number-fix"]["examples"]), 2)
        self.assertEqual(summary["by_kind"]["unmapped-column"]["severity"], WARNING)


if __name__ == "__main__":
    unittest.main()
