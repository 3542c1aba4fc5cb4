"""
Header unification across schema versions.

One broker emits files whose headers differ between vintages (columns
added, renamed, re-ordered). The unifier builds one ordered column space
from the widest header, appends names that only older or narrower files
carry, and maps every file's columns into that space. Duplicate names are
kept as distinct positional slots and consumed in order.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence, Union

from freight_doctor.errors import HeaderConflictError, SchemaError
from freight_doctor.report import ReportBuilder, ValidationReport

logger = logging.getLogger(__name__)

Headers = Union[Mapping[str, Sequence[Any]], Sequence[Sequence[Any]]]


def _clean(name: Any) -> str:
    if name is None:
        return ""
    if isinstance(name, float) and name != name:
        return ""
    return str(name).strip()


def validate_synonyms(synonyms: Mapping[str, str]) -> dict[str, str]:
    """
    Return the synonym table with trimmed keys and values.

    Raises SchemaError when two keys collapse onto one trimmed key with
    different targets, or when a target is itself a synonym of something
    else (chains make the result depend on lookup order).
    """
    table: dict[str, str] = {}
    for key, target in synonyms.items():
        k, t = _clean(key), _clean(target)
        if not k or not t:
            raise SchemaError(f"Synonym entries must be non-empty, got {key!r} -> {target!r}")
        if k in table and table[k] != t:
            raise SchemaError(f"Synonym '{k}' maps to both '{table[k]}' and '{t}'")
        table[k] = t
    for k, t in table.items():
        if t in table and table[t] != t:
            raise SchemaError(f"Chained synonym: '{k}' -> '{t}' -> '{table[t]}'")
    return table


def canonical_name(name: Any, synonyms: Mapping[str, str]) -> str:
    cleaned = _clean(name)
    return synonyms.get(cleaned, cleaned)


def _ordered(file_headers: Headers) -> list[tuple[str, list[str]]]:
    if isinstance(file_headers, Mapping):
        items = sorted(file_headers.items(), key=lambda item: item[0])
    else:
        items = [(f"file {i + 1}", header) for i, header in enumerate(file_headers)]
    return [(label, [_clean(h) for h in header]) for label, header in items]


def _base_index(ordered: Sequence[tuple[str, list[str]]]) -> int:
    base_idx = 0
    for i, (_, header) in enumerate(ordered):
        if len(header) > len(ordered[base_idx][1]):
            base_idx = i
    return base_idx


def build_unified_header(file_headers: Headers, synonyms: Mapping[str, str] | None = None) -> list[str]:
    """
    Widest header first (first on ties), then every unseen name from the
    remaining files in processing order. Every slot carries a canonical name.
    """
    table = validate_synonyms(synonyms or {})
    ordered = _ordered(file_headers)
    if not ordered:
        return []

    base_idx = _base_index(ordered)
    # Legacy names in the base are stored canonically so every synonym shares one slot.
    unified = [table.get(name, name) for name in ordered[base_idx][1]]
    present = set(unified)
    for i, (label, header) in enumerate(ordered):
        if i == base_idx:
            continue
        for name in header:
            if not name:
                continue
            canon = table.get(name, name)
            if canon in present or name in present:
                continue
            unified.append(canon)
            present.add(canon)
            logger.debug("%s: appended column '%s' at slot %d", label, canon, len(unified) - 1)
    return unified


def build_column_mapping(
    file_header: Sequence[Any],
    canonical_header: Sequence[str],
    synonyms: Mapping[str, str] | None = None,
) -> list[int | None]:
    """
    Map each file column to a unified slot, ``None`` when unmapped.

    Pass 1 matches exact names, pass 2 matches synonyms by canonical name;
    both consume the first unused slot, so the mapping is injective.
    """
    table = validate_synonyms(synonyms or {})
    names = [_clean(h) for h in file_header]
    mapping: list[int | None] = [None] * len(names)
    used: set[int] = set()

    def claim(target: str) -> int | None:
        for slot, slot_name in enumerate(canonical_header):
            if slot not in used and slot_name == target:
                used.add(slot)
                return slot
        return None

    for fi, name in enumerate(names):
        if name:
            mapping[fi] = claim(name)

    for fi, name in enumerate(names):
        if mapping[fi] is not None or not name:
            continue
        target = table.get(name)
        if target is not None:
            mapping[fi] = claim(target)

    return mapping


def remap_row(row: Sequence[Any], mapping: Sequence[int | None], width: int) -> list[Any]:
    out: list[Any] = [None] * width
    for fi, value in enumerate(row[:len(mapping)]):
        slot = mapping[fi]
        if slot is not None:
            out[slot] = value
    return out


def verify_canonical_identity(
    file_headers: Headers,
    canonical_header: Sequence[str],
    mappings: Sequence[Sequence[int | None]],
    synonyms: Mapping[str, str] | None = None,
) -> None:
    """
    Raise HeaderConflictError unless shared columns agree on one slot.

    Checked across files: the n-th occurrence of a name always lands in the
    same slot, and a field whose canonical name owns a single unified slot
    never lands anywhere else.
    """
    table = validate_synonyms(synonyms or {})
    slot_counts = Counter(canonical_header)
    by_name: dict[tuple[str, int], tuple[int, str]] = {}
    by_canon: dict[str, tuple[int, str]] = {}

    for (label, header), mapping in zip(_ordered(file_headers), mappings):
        seen: Counter = Counter()
        for name, slot in zip(header, mapping):
            occurrence = seen[name]
            seen[name] += 1
            if slot is None or not name:
                continue

            key = (name, occurrence)
            if key in by_name and by_name[key][0] != slot:
                first_slot, first_label = by_name[key]
                raise HeaderConflictError(
                    f"Column '{name}' (occurrence {occurrence + 1}) maps to slot {first_slot} "
                    f"in {first_label} but slot {slot} in {label}",
                    column=name,
                    slots=(first_slot, slot),
                )
            by_name.setdefault(key, (slot, label))

            canon = table.get(name, name)
            if slot_counts.get(canon) != 1:
                continue
            if canonical_header[slot] != canon:
                raise HeaderConflictError(
                    f"Column '{name}' resolves to '{canon}' but landed in slot {slot} "
                    f"('{canonical_header[slot]}') in {label}",
                    column=name,
                    slots=(canonical_header.index(canon), slot),
                )
            if canon in by_canon and by_canon[canon][0] != slot:
                raise HeaderConflictError(
                    f"Field '{canon}' maps to slot {by_canon[canon][0]} in {by_canon[canon][1]} "
                    f"but slot {slot} in {label}",
                    column=canon,
                    slots=(by_canon[canon][0], slot),
                )
            by_canon.setdefault(canon, (slot, label))


@dataclass(frozen=True)
class HeaderUnification:
    header: list[str]
    files: list[str]
    mappings: list[list[int | None]]
    report: ValidationReport = field(default_factory=ValidationReport)

    @property
    def width(self) -> int:
        return len(self.header)

    def mapping_for(self, file_label: str) -> list[int | None]:
        return self.mappings[self.files.index(file_label)]


def unify_headers(file_headers: Headers, synonyms: Mapping[str, str] | None = None) -> HeaderUnification:
    """Build the unified header and every file's mapping, then verify column identity."""
    table = validate_synonyms(synonyms or {})
    header = build_unified_header(file_headers, table)
    ordered = _ordered(file_headers)
    mappings = [build_column_mapping(names, header, table) for _, names in ordered]
    if ordered:
        # Unnamed base columns keep their own slot; elsewhere they stay unmapped.
        base_idx = _base_index(ordered)
        base_mapping = mappings[base_idx]
        for fi, name in enumerate(ordered[base_idx][1]):
            if not name:
                base_mapping[fi] = fi
    verify_canonical_identity(file_headers, header, mappings, table)

    builder = ReportBuilder()
    for (label, names), mapping in zip(ordered, mappings):
        for fi, (name, slot) in enumerate(zip(names, mapping)):
            if slot is None:
                builder.add(
                    "unmapped-column",
                    row=None,
                    column=name or fi,
                    detail=f"{label}: column {fi} '{name}' has no slot in the unified header",
                )

    return HeaderUnification(
        header=header,
        files=[label for label, _ in ordered],
        mappings=mappings,
        report=builder.build(),
    )
