"""
Validation report.

Every mutation and every unresolved anomaly produced by a repair or
unification run is recorded here. The report is assembled by a
``ReportBuilder`` and frozen once returned to the caller.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

FIX = "fix"
WARNING = "warning"
INFO = "info"

ISSUE_DEFINITIONS = {
    "shift-fix": {"severity": FIX, "summary": "Column shift detected and re-aligned"},
    "number-fix": {"severity": FIX, "summary": "Text number converted to a numeric value"},
    "date-fix": {"severity": FIX, "summary": "Date normalised to ISO YYYY-MM-DD"},
    "scale-fix": {"severity": FIX, "summary": "Integer-scaled amount divided back to its true magnitude"},
    "text-fix": {"severity": FIX, "summary": "Text cell cleaned or decimal separator normalised"},
    "unclassifiable-shift": {"severity": WARNING, "summary": "Anchor column invalid and no known shift pattern explains it"},
    "anchor-invalid": {"severity": WARNING, "summary": "Anchor column does not satisfy its classifier after repair"},
    "number-unparseable": {"severity": WARNING, "summary": "Value in a numeric column could not be converted"},
    "date-unparseable": {"severity": WARNING, "summary": "Value in a date column could not be parsed"},
    "unmapped-column": {"severity": WARNING, "summary": "File column has no slot in the unified header"},
    "zone-absent": {"severity": INFO, "summary": "Zone entirely blank; its required anchors were not validated"},
}


@dataclass(frozen=True)
class Issue:
    row: int | None
    column: int | str | None
    kind: str
    severity: str
    detail: str
    zone: str | None = None
    before: Any = None
    after: Any = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ValidationReport:
    issues: tuple[Issue, ...] = ()
    fix_count: int = 0
    warning_count: int = 0

    @property
    def fixes(self) -> list[Issue]:
        return [issue for issue in self.issues if issue.severity == FIX]

    @property
    def warnings(self) -> list[Issue]:
        return [issue for issue in self.issues if issue.severity == WARNING]

    def of_kind(self, kind: str) -> list[Issue]:
        return [issue for issue in self.issues if issue.kind == kind]

    def counts_by_kind(self) -> dict[str, int]:
        return dict(Counter(issue.kind for issue in self.issues))

    def to_dict(self) -> dict[str, Any]:
        return {
            "fix_count": self.fix_count,
            "warning_count": self.warning_count,
            "counts_by_kind": self.counts_by_kind(),
            "issues": [issue.to_dict() for issue in self.issues],
        }


@dataclass
class ReportBuilder:
    """Mutable accumulator; call ``build()`` once and discard."""

    issues: list[Issue] = field(default_factory=list)

    def add(
        self,
        kind: str,
        *,
        row: int | None,
        column: int | str | None = None,
        detail: str = "",
        zone: str | None = None,
        before: Any = None,
        after: Any = None,
    ) -> Issue:
        definition = ISSUE_DEFINITIONS[kind]
        issue = Issue(
            row=row,
            column=column,
            kind=kind,
            severity=definition["severity"],
            detail=detail,
            zone=zone,
            before=before,
            after=after,
        )
        self.issues.append(issue)
        if issue.severity != WARNING:
            logger.debug("row %s col %s %s: %s", row, column, kind, detail)
        else:
            logger.info("row %s col %s %s: %s", row, column, kind, detail)
        return issue

    def extend(self, report: ValidationReport) -> None:
        self.issues.extend(report.issues)

    def build(self) -> ValidationReport:
        return ValidationReport(
            issues=tuple(self.issues),
            fix_count=sum(1 for issue in self.issues if issue.severity == FIX),
            warning_count=sum(1 for issue in self.issues if issue.severity == WARNING),
        )


def merge_reports(*reports: ValidationReport) -> ValidationReport:
    builder = ReportBuilder()
    for report in reports:
        builder.extend(report)
    return builder.build()


def report_summary(report: ValidationReport, *, max_examples: int = 3) -> dict[str, Any]:
    """Compact per-kind summary for CLI output and JSON contracts."""
    by_kind: dict[str, dict[str, Any]] = {}
    for issue in report.issues:
        entry = by_kind.setdefault(
            issue.kind,
            {
                "severity": issue.severity,
                "summary": ISSUE_DEFINITIONS[issue.kind]["summary"],
                "count": 0,
                "examples": [],
            },
        )
        entry["count"] += 1
        if len(entry["examples"]) < max_examples:
            entry["examples"].append(
                {"row": issue.row, "column": issue.column, "detail": issue.detail}
            )
    return {
        "fix_count": report.fix_count,
        "warning_count": report.warning_count,
        "by_kind": by_kind,
    }
