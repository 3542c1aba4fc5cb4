"""
Cell classifiers.

Pure predicates that answer "does this raw cell look like X?" without
converting anything. Format interpretation (decimal separators, date
encodings) belongs to normalization.py.
"""

from __future__ import annotations

import math
import numbers
import re
from datetime import date
from typing import Any, Callable

COUNTRY_RE = re.compile(r"^[A-Za-z]{2}$")
CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
TARIFF_RE = re.compile(r"^\d{8,11}$")
PROCEDURE_RE = re.compile(r"^\d{3,4}$")
NUMERIC_RE = re.compile(r"^[-+]?[.,]?\d[\d.,'\s\u00a0\u202f]*$")
DOTTED_DATE_RE = re.compile(r"^\d{1,2}\.\d{1,2}\.\d{4}$")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2})?)?")
POSTCODE_RE = re.compile(r"^[\dA-Z][\dA-Z \-.]*$", re.IGNORECASE)
EORI_RE = re.compile(r"^[A-Z]{2}\d+")
MEASURE_RE = re.compile(r"^[A-Z]{2,3}$")

# Incoterms 2020 plus the 2000/2010 terms still seen in older declarations.
INCOTERMS = {
    "EXW", "FCA", "CPT", "CIP", "DAP", "DPU", "DDP",
    "FAS", "FOB", "CFR", "CIF",
    "DAT", "DAF", "DES", "DEQ", "DDU",
}

LONG_TEXT_MIN = 10
SHORT_TEXT_MAX = 10


def cell_text(value: Any) -> str | None:
    """Render a cell for pattern matching; None when the cell is absent."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        if isinstance(value, float) and math.isnan(value):
            return None
        if isinstance(value, numbers.Integral):
            return str(int(value))
        if float(value).is_integer():
            return str(int(value))
        return repr(float(value))
    text = str(value).strip()
    return text or None


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def is_country_code(value: Any) -> bool:
    return isinstance(value, str) and bool(COUNTRY_RE.match(value.strip()))


def is_currency_code(value: Any) -> bool:
    return isinstance(value, str) and bool(CURRENCY_RE.match(value.strip()))


def is_incoterm_code(value: Any) -> bool:
    return isinstance(value, str) and value.strip().upper() in INCOTERMS


def is_tariff_code(value: Any) -> bool:
    text = cell_text(value)
    return text is not None and bool(TARIFF_RE.match(text))


def is_procedure_code(value: Any) -> bool:
    text = cell_text(value)
    return text is not None and bool(PROCEDURE_RE.match(text))


def is_numeric_like(value: Any) -> bool:
    """True for real numbers and for text shaped like a number in any locale."""
    if isinstance(value, bool):
        return False
    if isinstance(value, numbers.Real):
        return not (isinstance(value, float) and math.isnan(value))
    if not isinstance(value, str):
        return False
    return bool(NUMERIC_RE.match(value.strip()))


def is_date_like(value: Any) -> bool:
    if isinstance(value, date):
        return True
    if not isinstance(value, str):
        return False
    text = value.strip()
    return bool(DOTTED_DATE_RE.match(text) or ISO_DATE_RE.match(text))


def is_postcode(value: Any) -> bool:
    text = cell_text(value)
    return text is not None and len(text) <= 10 and bool(POSTCODE_RE.match(text))


def is_long_text(value: Any) -> bool:
    return isinstance(value, str) and len(value.strip()) > LONG_TEXT_MIN


def is_short_text(value: Any) -> bool:
    return isinstance(value, str) and 0 < len(value.strip()) <= SHORT_TEXT_MAX


def is_eori(value: Any) -> bool:
    return isinstance(value, str) and bool(EORI_RE.match(value.strip()))


def is_measure_unit(value: Any) -> bool:
    return isinstance(value, str) and bool(MEASURE_RE.match(value.strip()))


CLASSIFIERS: dict[str, Callable[[Any], bool]] = {
    "country": is_country_code,
    "currency": is_currency_code,
    "incoterm": is_incoterm_code,
    "tariff": is_tariff_code,
    "procedure": is_procedure_code,
    "numeric": is_numeric_like,
    "date": is_date_like,
    "empty": is_empty,
    "postcode": is_postcode,
    "long_text": is_long_text,
    "short_text": is_short_text,
    "eori": is_eori,
    "measure": is_measure_unit,
}


def get_classifier(name: str) -> Callable[[Any], bool]:
    try:
        return CLASSIFIERS[name]
    except KeyError:
        raise KeyError(f"Unknown classifier '{name}'. Known: {sorted(CLASSIFIERS)}") from None
