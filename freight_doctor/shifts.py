"""
Column-shift detection.

A zone's shift anchor is the field whose classifier confirms alignment
(a country code closing an address, a freight amount after the delivery
location, a tariff code after the goods description). When it fails, the
detector scans forward for the value that should have been there and
names the pattern that explains the displacement.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence

from freight_doctor.brokers import FixedLayout, Zone
from freight_doctor.classifiers import get_classifier, is_empty

logger = logging.getLogger(__name__)


class ShiftCategory(str, Enum):
    ZONE_LOCAL = "zone-local-overflow"
    CASCADING = "cascading-overflow"
    DESCRIPTION = "description-overflow"
    STRUCTURAL_GAP = "structural-gap"
    UNCLASSIFIABLE = "unclassifiable"


@dataclass(frozen=True)
class ShiftDescriptor:
    zone: str
    origin_column: int
    magnitude: int
    category: ShiftCategory
    anchor_column: int
    found_column: int | None = None

    @property
    def repairable(self) -> bool:
        return self.category is not ShiftCategory.UNCLASSIFIABLE and self.magnitude > 0

    def describe(self) -> str:
        if not self.repairable:
            return f"{self.zone}: anchor col {self.anchor_column} invalid, no shift pattern matched"
        return (
            f"{self.zone}: +{self.magnitude} {self.category.value} at col {self.origin_column} "
            f"(expected col {self.anchor_column}, found col {self.found_column})"
        )


def _cell(row: Sequence[Any], col: int) -> Any:
    return row[col] if 0 <= col < len(row) else None


def _all_empty(row: Sequence[Any], start: int, stop: int) -> bool:
    return all(is_empty(_cell(row, c)) for c in range(start, stop))


def _confirmed(row: Sequence[Any], zone: Zone, found: int) -> bool:
    if not zone.confirm:
        return True
    return any(get_classifier(name)(_cell(row, found + offset)) for offset, name in zone.confirm)


def _cascade_confirmed(row: Sequence[Any], next_zone: Zone | None, magnitude: int) -> bool:
    """The overflow carried into the next zone: its anchor is displaced by the same amount."""
    if next_zone is None:
        return True
    anchor = next_zone.anchor_at(next_zone.shift_anchor)
    if anchor.accepts(_cell(row, next_zone.shift_anchor)):
        return False
    check = get_classifier(anchor.classifier)
    return check(_cell(row, next_zone.shift_anchor + magnitude))


def detect_zone_shift(row: Sequence[Any], zone: Zone, layout: FixedLayout) -> ShiftDescriptor | None:
    """
    Classify a misaligned zone, or return None when the zone is aligned.

    Candidates are tried nearest first, so the smallest magnitude and the
    narrowest category win.
    """
    if not zone.repairs_shifts:
        return None

    anchor_col = zone.shift_anchor
    anchor = zone.anchor_at(anchor_col)
    if anchor.accepts(_cell(row, anchor_col)):
        return None
    if _all_empty(row, zone.start, anchor_col + 1):
        return None

    check = get_classifier(anchor.classifier)
    has_text = not is_empty(_cell(row, zone.text_column))

    for k in range(1, zone.window + 1):
        found = anchor_col + k
        if found >= len(row):
            break
        if not check(row[found]) or not _confirmed(row, zone, found):
            continue

        if zone.gap_check and has_text and _all_empty(row, anchor_col, found):
            return ShiftDescriptor(zone.name, anchor_col, k, ShiftCategory.STRUCTURAL_GAP, anchor_col, found)
        if not has_text:
            continue

        if zone.kind == "description":
            category = ShiftCategory.DESCRIPTION
        elif found <= zone.end:
            category = ShiftCategory.ZONE_LOCAL
        elif _cascade_confirmed(row, layout.next_zone(zone), k):
            category = ShiftCategory.CASCADING
        else:
            continue
        return ShiftDescriptor(zone.name, zone.text_column, k, category, anchor_col, found)

    return ShiftDescriptor(zone.name, anchor_col, 0, ShiftCategory.UNCLASSIFIABLE, anchor_col)


def detect_shift(row: Sequence[Any], layout: FixedLayout) -> ShiftDescriptor | None:
    """First misaligned zone of a row, left to right, or None when every zone is aligned."""
    for zone in layout.zones:
        descriptor = detect_zone_shift(row, zone, layout)
        if descriptor is not None:
            return descriptor
    return None
