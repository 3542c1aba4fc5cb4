"""
Row repair engine.

``repair_and_normalize`` runs every row of one broker export through the
same fixed order of steps:

  1. text cleanup (brokers whose exports carry stray line breaks)
  2. zone shift repair, left to right, one attempt per zone
  3. numeric columns
  4. date columns
  5. decimal sweep over the remaining text cells
  6. integer-scale rules
  7. anchor validation

Rows are mutated in place and never change length. A second pass over
repaired rows records no fixes.
"""

from __future__ import annotations

import logging
from typing import Any, MutableSequence, Sequence

from freight_doctor.brokers import BrokerSchema, FixedLayout
from freight_doctor.classifiers import cell_text, is_empty
from freight_doctor.normalization import (
    apply_integer_scale,
    clean_text,
    normalise_date,
    normalise_decimal_text,
    normalise_number,
    parse_date,
    parse_number,
)
from freight_doctor.report import ReportBuilder, ValidationReport
from freight_doctor.shifts import ShiftCategory, ShiftDescriptor, detect_zone_shift

logger = logging.getLogger(__name__)


def apply_shift(row: list[Any], descriptor: ShiftDescriptor) -> tuple[Any, Any]:
    """
    Re-align ``row`` in place according to ``descriptor``.

    Overflow: fragments ``origin .. origin + k`` are joined with a single
    space into the origin cell and the absorbed cells are removed.
    Structural gap: the ``k`` empty cells starting at the anchor are removed.
    Either way ``k`` absent cells are appended. Returns the origin cell's
    ``(before, after)`` values.
    """
    if not descriptor.repairable:
        raise ValueError(f"Shift descriptor is not repairable: {descriptor.describe()}")

    width = len(row)
    origin, k = descriptor.origin_column, descriptor.magnitude
    before = row[origin]

    if descriptor.category is ShiftCategory.STRUCTURAL_GAP:
        del row[origin:origin + k]
    else:
        fragments = [cell_text(row[c]) for c in range(origin, min(origin + k + 1, width))]
        row[origin] = " ".join(f for f in fragments if f is not None)
        del row[origin + 1:origin + k + 1]

    row.extend([None] * (width - len(row)))
    return before, row[origin]


def _repair_zones(row: list[Any], layout: FixedLayout, index: int, builder: ReportBuilder) -> set[str]:
    """Returns the names of zones already carrying a warning."""
    flagged: set[str] = set()
    for zone in layout.zones:
        descriptor = detect_zone_shift(row, zone, layout)
        if descriptor is None:
            continue

        if not descriptor.repairable:
            builder.add(
                "unclassifiable-shift",
                row=index,
                column=descriptor.anchor_column,
                zone=zone.name,
                detail=descriptor.describe(),
                before=_cell(row, descriptor.anchor_column),
            )
            flagged.add(zone.name)
            continue

        before, after = apply_shift(row, descriptor)
        builder.add(
            "shift-fix",
            row=index,
            column=descriptor.origin_column,
            zone=zone.name,
            detail=descriptor.describe(),
            before=before,
            after=after,
        )

        remaining = detect_zone_shift(row, zone, layout)
        if remaining is not None:
            builder.add(
                "anchor-invalid",
                row=index,
                column=zone.shift_anchor,
                zone=zone.name,
                detail=f"{zone.name}: anchor col {zone.shift_anchor} still invalid after repair, manual review",
                before=_cell(row, zone.shift_anchor),
            )
            flagged.add(zone.name)
    return flagged


def _cell(row: Sequence[Any], col: int) -> Any:
    return row[col] if 0 <= col < len(row) else None


def _normalise_numbers(row: list[Any], columns: Sequence[int], index: int, builder: ReportBuilder) -> None:
    for col in columns:
        if col >= len(row):
            continue
        value = row[col]
        new_val, changed, reason = normalise_number(value)
        if changed:
            row[col] = new_val
            builder.add("number-fix", row=index, column=col, detail=reason, before=value, after=new_val)
        elif not is_empty(value) and parse_number(value) is None:
            builder.add(
                "number-unparseable",
                row=index,
                column=col,
                detail=f'Col {col}: "{str(value)[:30]}" is not a number, left unchanged',
                before=value,
            )


def _normalise_dates(row: list[Any], columns: Sequence[int], index: int, builder: ReportBuilder) -> None:
    for col in columns:
        if col >= len(row):
            continue
        value = row[col]
        new_val, changed, reason = normalise_date(value)
        if changed:
            row[col] = new_val
            builder.add("date-fix", row=index, column=col, detail=reason, before=value, after=new_val)
        elif not is_empty(value) and parse_date(value) is None:
            builder.add(
                "date-unparseable",
                row=index,
                column=col,
                detail=f'Col {col}: "{str(value)[:30]}" matches no known date encoding, left unchanged',
                before=value,
            )


def repair_row(
    row: list[Any],
    schema: BrokerSchema,
    layout: FixedLayout,
    index: int,
    builder: ReportBuilder,
) -> None:
    """Run every repair step on one row, recording issues in ``builder``."""
    if schema.clean_text:
        for col, value in enumerate(row):
            new_val, changed, reason = clean_text(value)
            if changed:
                row[col] = new_val
                builder.add("text-fix", row=index, column=col, detail=reason, before=value, after=new_val)

    flagged = _repair_zones(row, layout, index, builder)

    _normalise_numbers(row, layout.numeric_columns, index, builder)
    _normalise_dates(row, layout.date_columns, index, builder)

    if schema.decimal_sweep != "off":
        protected = set(layout.numeric_columns) | set(layout.date_columns)
        protected.update(anchor.column for _, anchor in layout.all_anchors())
        leading_only = schema.decimal_sweep == "leading"
        for col, value in enumerate(row):
            if col in protected:
                continue
            new_val, changed, reason = normalise_decimal_text(value, leading_only=leading_only)
            if changed:
                row[col] = new_val
                builder.add("text-fix", row=index, column=col, detail=reason, before=value, after=new_val)

    for rule in layout.scale_rules:
        for col, before, after in apply_integer_scale(row, rule):
            builder.add(
                "scale-fix",
                row=index,
                column=col,
                detail=f"{rule.name}: {before!r} -> {after!r}",
                before=before,
                after=after,
            )

    absent: set[str] = set()
    for zone, anchor in layout.all_anchors():
        if zone is not None and zone.name in flagged:
            continue
        if zone is not None and zone.is_blank(row):
            if anchor.required and zone.name not in absent:
                absent.add(zone.name)
                builder.add(
                    "zone-absent",
                    row=index,
                    column=anchor.column,
                    zone=zone.name,
                    detail=f"{zone.name} (cols {zone.start}-{zone.end}) is blank, {anchor.name} not validated",
                )
            continue
        value = _cell(row, anchor.column)
        if not anchor.accepts(value):
            builder.add(
                "anchor-invalid",
                row=index,
                column=anchor.column,
                zone=zone.name if zone is not None else None,
                detail=f'{anchor.name} (col {anchor.column}) invalid: "{str(value)[:30]}"',
                before=value,
            )


def repair_and_normalize(
    rows: MutableSequence[Any],
    schema: BrokerSchema,
    *,
    header: Sequence[Any] | None = None,
) -> ValidationReport:
    """
    Repair and normalise ``rows`` in place for one broker.

    ``header`` is required for header-addressed layouts. Per-row anomalies
    become report warnings; only a misconfigured schema raises.
    """
    layout = schema.resolve_layout(header)
    builder = ReportBuilder()

    for index, row in enumerate(rows):
        if row is None:
            continue
        if not isinstance(row, list):
            row = list(row)
            rows[index] = row
        repair_row(row, schema, layout, index, builder)

    report = builder.build()
    logger.info(
        "%s: %d row(s), %d fix(es), %d warning(s)",
        schema.broker_id, len(rows), report.fix_count, report.warning_count,
    )
    return report
