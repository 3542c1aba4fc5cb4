"""
Merge pipeline: many export files of one broker -> one consolidated table.

Files are parsed in file-name order, split into header and data rows,
aligned to a unified header when their layouts differ, then repaired and
normalised as one batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import openpyxl
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from freight_doctor.brokers import BrokerSchema
from freight_doctor.classifiers import is_empty
from freight_doctor.headers import remap_row, unify_headers
from freight_doctor.loader import extract_parts, load_rows
from freight_doctor.repair import repair_and_normalize
from freight_doctor.report import Issue, ValidationReport

logger = logging.getLogger(__name__)

COLOR_CONSOLIDATED = "1565C0"
COLOR_SECONDARY = "6A1B9A"
COLOR_ISSUES = "E53935"
ISSUE_HEADERS = ["data_row", "column", "kind", "severity", "zone", "detail", "before", "after"]


@dataclass
class MergeResult:
    broker_id: str
    headers: list[list[Any]] = field(default_factory=list)
    data: list[list[Any]] = field(default_factory=list)
    report: ValidationReport = field(default_factory=ValidationReport)
    header_report: ValidationReport = field(default_factory=ValidationReport)
    aligned: bool = False
    stats: dict[str, Any] = field(default_factory=dict)

    @property
    def header_names(self) -> list[str]:
        if not self.headers:
            return []
        return ["" if is_empty(h) else str(h).strip() for h in self.headers[0]]


def _unique_labels(paths: Sequence[Path]) -> list[str]:
    labels: list[str] = []
    for path in paths:
        label = path.name
        n = 2
        while label in labels:
            label = f"{path.name} ({n})"
            n += 1
        labels.append(label)
    return labels


def merge_files(
    paths: Sequence["str | Path"],
    schema: BrokerSchema,
    synonyms: Optional[Mapping[str, str]] = None,
) -> MergeResult:
    """
    Parse, align and repair a batch of one broker's export files.

    Unreadable files are recorded in ``stats["skipped_files"]``; only a
    structural error (schema or header identity) aborts the run.
    """
    if synonyms:
        schema = schema.with_synonyms(synonyms)

    ordered = sorted((Path(p) for p in paths), key=lambda p: (p.name, str(p)))
    labels = _unique_labels(ordered)
    stats: dict[str, Any] = {
        "total_files": len(ordered),
        "rows_per_file": [],
        "total_rows": 0,
        "skipped_files": [],
        "aligned": False,
        "unified_width": 0,
    }

    parts_by_label = {}
    for path, label in zip(ordered, labels):
        try:
            loaded = load_rows(path, schema)
            parts = extract_parts(loaded["rows"], schema)
        except (FileNotFoundError, ValueError, ImportError) as exc:
            logger.warning("Skipping %s: %s", path.name, exc)
            stats["skipped_files"].append({"name": label, "error": str(exc)})
            continue
        parts_by_label[label] = parts
        stats["rows_per_file"].append({
            "name": label,
            "rows": len(parts.data),
            "footer_rows": parts.footer_rows,
            "trimmed_rows": parts.trimmed_rows,
            "sheet_name": loaded["sheet_name"],
            "warnings": loaded["warnings"],
        })
        stats["total_rows"] += len(parts.data)

    result = MergeResult(broker_id=schema.broker_id, stats=stats)
    if not parts_by_label:
        return result

    first = next(iter(parts_by_label.values()))
    needs_alignment = any(p.header_names != first.header_names for p in parts_by_label.values())

    if needs_alignment and schema.synonyms:
        unification = unify_headers(
            {label: p.header_names for label, p in parts_by_label.items()},
            schema.synonyms,
        )
        for label, parts in parts_by_label.items():
            mapping = unification.mapping_for(label)
            result.data.extend(
                [remap_row(row, mapping, unification.width) for row in parts.data]
            )
        result.headers = [list(unification.header)]
        result.header_report = unification.report
        result.aligned = True
        logger.info(
            "%s: aligned %d file(s) to %d unified column(s)",
            schema.broker_id, len(parts_by_label), unification.width,
        )
    else:
        result.headers = [list(h) for h in first.headers]
        for parts in parts_by_label.values():
            result.data.extend(parts.data)

    stats["aligned"] = result.aligned
    stats["unified_width"] = len(result.header_names)
    result.report = repair_and_normalize(result.data, schema, header=result.header_names)
    return result


# ══════════════════════════════════════════════════════════════════════════
# WORKBOOK OUTPUT
# ══════════════════════════════════════════════════════════════════════════

def _style_sheet(ws, col_widths: list[int], header_color: str, header_rows: int = 1) -> None:
    """Apply bold header, color, frozen header rows, and column widths."""
    fill = PatternFill("solid", fgColor=header_color)
    font = Font(bold=True, color="FFFFFF")
    for row in ws.iter_rows(min_row=1, max_row=max(header_rows, 1)):
        for cell in row:
            cell.font = font
            cell.fill = fill
            cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=False)
    ws.freeze_panes = f"A{max(header_rows, 1) + 1}"
    for i, width in enumerate(col_widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = width


def _infer_col_widths(rows: list[list], min_width: int = 10, max_width: int = 60, sample: int = 300) -> list[int]:
    width_count = max((len(r) for r in rows[: sample + 1]), default=0)
    widths = [min_width] * width_count
    for row in rows[: sample + 1]:
        for i, val in enumerate(row):
            shown = 0 if val is None else len(str(val)) + 2
            widths[i] = max(widths[i], min(max_width, shown))
    return widths


def _safe(value: Any) -> Any:
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def _issue_row(issue: Issue) -> list[Any]:
    data_row = issue.row + 1 if issue.row is not None else None
    return [
        data_row, issue.column, issue.kind, issue.severity, issue.zone, issue.detail,
        None if issue.before is None else str(issue.before),
        None if issue.after is None else str(issue.after),
    ]


def write_workbook(result: MergeResult, output_path: "str | Path", schema: BrokerSchema) -> Path:
    """
    Write the merged table as .xlsx.

    Sheets: Consolidated (data), Secondary Fields (columns listed in the
    broker's ``secondary_columns``, only when any of them hold data),
    Issues (every fix and warning from unification and repair).
    """
    output_path = Path(output_path)
    names = result.header_names
    secondary_names = {n.strip() for n in schema.secondary_columns}
    secondary_idx = [
        i for i, name in enumerate(names)
        if name in secondary_names
        and any(i < len(row) and not is_empty(row[i]) for row in result.data)
    ]
    skip = set(secondary_idx)

    def keep(row: Sequence[Any]) -> list[Any]:
        return [_safe(v) for i, v in enumerate(row) if i not in skip]

    wb = openpyxl.Workbook()

    # ── Sheet 1: Consolidated ────────────────────────────────────────────
    ws1 = wb.active
    ws1.title = "Consolidated"
    sheet_rows = [keep(h) for h in result.headers] + [keep(r) for r in result.data]
    for row in sheet_rows:
        ws1.append(row)
    _style_sheet(ws1, _infer_col_widths(sheet_rows), COLOR_CONSOLIDATED, len(result.headers))

    # ── Sheet 2: Secondary Fields ────────────────────────────────────────
    if secondary_idx:
        ws2 = wb.create_sheet("Secondary Fields")
        rows2 = [["data_row"] + [names[i] for i in secondary_idx]]
        for n, row in enumerate(result.data, start=1):
            values = [_safe(row[i]) if i < len(row) else None for i in secondary_idx]
            if any(not is_empty(v) for v in values):
                rows2.append([n] + values)
        for row in rows2:
            ws2.append(row)
        _style_sheet(ws2, _infer_col_widths(rows2), COLOR_SECONDARY)

    # ── Sheet 3: Issues ──────────────────────────────────────────────────
    ws3 = wb.create_sheet("Issues")
    rows3 = [ISSUE_HEADERS]
    for issue in result.header_report.issues + result.report.issues:
        rows3.append([_safe(v) for v in _issue_row(issue)])
    for row in rows3:
        ws3.append(row)
    _style_sheet(ws3, _infer_col_widths(rows3), COLOR_ISSUES)
    for cell in ws3["F"][1:]:
        cell.alignment = Alignment(wrap_text=True, vertical="top")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(output_path)
    logger.info("Wrote %s (%d data row(s))", output_path, len(result.data))
    return output_path
