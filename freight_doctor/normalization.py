"""
Value normalizers.

Every public ``normalise_*`` helper follows the same contract:
``(new_value, changed, reason)``. ``changed`` is False when the input is
already canonical or cannot be interpreted; callers decide whether an
uninterpretable value is worth a warning.
"""

from __future__ import annotations

import math
import numbers
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, NamedTuple, Sequence

from freight_doctor.classifiers import NUMERIC_RE, is_empty

SMART_QUOTES = {
    "\u201c": '"',
    "\u201d": '"',
    "\u2018": "'",
    "\u2019": "'",
}

GROUPING_CHARS_RE = re.compile(r"[\s'\u00a0\u202f]")
EUROPEAN_GROUPED_RE = re.compile(r"^-?(?!0\.)\d{1,3}(\.\d{3})+(,\d+)?$")
US_GROUPED_RE = re.compile(r"^-?\d{1,3}(,\d{3})+(\.\d+)?$")
COMMA_DECIMAL_RE = re.compile(r"^-?\d+,\d+$")
LEADING_SEPARATOR_RE = re.compile(r"^(-?)[.,](\d+)$")
PLAIN_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")

DOTTED_DATE_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$")
ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:[T ].*)?$")
ISO_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DIGITS_RE = re.compile(r"^\d+$")

EXCEL_EPOCH = date(1899, 12, 30)
SERIAL_MIN = 40_000   # 2009-07-06
SERIAL_MAX = 60_000   # 2064-04-08
MIN_YEAR = 1900
MAX_YEAR = 2099
YEAR_FIRST_MIN = 2000


class CalendarDate(NamedTuple):
    year: int
    month: int
    day: int

    def isoformat(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"


# ══════════════════════════════════════════════════════════════════════════
# TEXT CLEANUP
# ══════════════════════════════════════════════════════════════════════════

def clean_text(value: Any) -> tuple[Any, bool, str]:
    """Strip BOM, null bytes, line breaks and smart quotes from text cells."""
    if not isinstance(value, str):
        return value, False, ""

    new_val = value
    reasons = []
    if "\ufeff" in new_val:
        new_val = new_val.replace("\ufeff", "")
        reasons.append("BOM byte-order mark stripped")
    if "\x00" in new_val:
        new_val = new_val.replace("\x00", "")
        reasons.append("Null byte removed")

    stripped = new_val.strip()
    if "\n" in stripped or "\r" in stripped:
        new_val = stripped.replace("\r\n", " ").replace("\n", " ").replace("\r", " ")
        reasons.append("Embedded line break replaced with space")

    had_smart = any(s in new_val for s in SMART_QUOTES)
    for smart, straight in SMART_QUOTES.items():
        new_val = new_val.replace(smart, straight)
    if had_smart:
        reasons.append("Smart/curly quotes normalised to straight quotes")

    stripped = new_val.strip()
    if stripped != new_val:
        reasons.append("Leading/trailing whitespace removed")
        new_val = stripped

    return new_val, new_val != value, "; ".join(reasons)


# ══════════════════════════════════════════════════════════════════════════
# NUMBERS
# ══════════════════════════════════════════════════════════════════════════

def _decimal_text(text: str) -> str | None:
    """Rewrite a locale-formatted number as plain dot-decimal text."""
    s = GROUPING_CHARS_RE.sub("", text)
    if not s:
        return None

    m = LEADING_SEPARATOR_RE.match(s)
    if m:
        return f"{m.group(1)}0.{m.group(2)}"

    if PLAIN_NUMBER_RE.match(s):
        if "." in s and EUROPEAN_GROUPED_RE.match(s):
            # "1.234" in a German export is one thousand two hundred thirty-four.
            return s.replace(".", "")
        return s

    if EUROPEAN_GROUPED_RE.match(s):
        return s.replace(".", "").replace(",", ".")
    if COMMA_DECIMAL_RE.match(s):
        return s.replace(",", ".")
    if US_GROUPED_RE.match(s) and "." in s:
        return s.replace(",", "")
    if "," in s and "." in s:
        # Mixed separators outside the grouped patterns: the right-most one is the decimal mark.
        if s.rindex(",") > s.rindex("."):
            candidate = s.replace(".", "").replace(",", ".")
        else:
            candidate = s.replace(",", "")
        return candidate if PLAIN_NUMBER_RE.match(candidate) else None
    if s.count(",") > 1:
        candidate = s.replace(",", "")
        return candidate if PLAIN_NUMBER_RE.match(candidate) else None
    return None


def parse_number(value: Any) -> float | None:
    """
    Convert a raw cell into a float, or None when it is not a number.

    Handles ``1.234,56`` (European), ``1234.56`` (plain), ``75,5`` and
    leading-separator fragments such as ``,50``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        result = float(value)
        return None if math.isnan(result) else result
    if not isinstance(value, str):
        return None
    text = value.strip()
    if text.startswith("+"):
        text = text[1:]
    if not NUMERIC_RE.match(text):
        return None
    decimal = _decimal_text(text)
    if decimal is None:
        return None
    return float(decimal)


def normalise_number(value: Any) -> tuple[Any, bool, str]:
    if is_empty(value) or isinstance(value, bool):
        return value, False, ""
    if isinstance(value, numbers.Real):
        return value, False, ""
    parsed = parse_number(value)
    if parsed is None:
        return value, False, ""
    return parsed, True, f'Text number "{str(value).strip()}" converted to {parsed!r}'


def normalise_decimal_text(value: Any, *, leading_only: bool = False) -> tuple[Any, bool, str]:
    """
    Rewrite locale-formatted number text as dot-decimal text, keeping it a string.

    Only values that are unmistakably numbers are touched; free text,
    codes and plain integers stay as they are.
    """
    if not isinstance(value, str):
        return value, False, ""
    text = value.strip()
    if not text:
        return value, False, ""

    m = LEADING_SEPARATOR_RE.match(text)
    if m:
        fixed = f"{m.group(1)}0.{m.group(2)}"
        return fixed, True, f'Leading separator fixed: "{text}" -> "{fixed}"'
    if leading_only:
        return value, False, ""

    if EUROPEAN_GROUPED_RE.match(text):
        fixed = text.replace(".", "").replace(",", ".")
        return fixed, True, f'European thousands/decimal format converted: "{text}" -> "{fixed}"'
    if COMMA_DECIMAL_RE.match(text):
        fixed = text.replace(",", ".")
        return fixed, True, f'Comma decimal separator converted: "{text}" -> "{fixed}"'
    return value, False, ""


# ══════════════════════════════════════════════════════════════════════════
# DATES
# ══════════════════════════════════════════════════════════════════════════

def _checked(year: int, month: int, day: int) -> CalendarDate | None:
    if not (MIN_YEAR <= year <= MAX_YEAR):
        return None
    try:
        date(year, month, day)
    except ValueError:
        return None
    return CalendarDate(year, month, day)


def _from_serial(serial: float) -> CalendarDate | None:
    if not (SERIAL_MIN <= serial < SERIAL_MAX):
        return None
    d = EXCEL_EPOCH + timedelta(days=int(serial))
    return CalendarDate(d.year, d.month, d.day)


def _from_compact(digits: str) -> CalendarDate | None:
    """7-digit DMMYYYY, or 8-digit YYYYMMDD preferred over DDMMYYYY."""
    if len(digits) == 7:
        return _checked(int(digits[3:]), int(digits[1:3]), int(digits[0]))
    if len(digits) != 8:
        return None

    year, month, day = int(digits[:4]), int(digits[4:6]), int(digits[6:])
    if year >= YEAR_FIRST_MIN and 1 <= month <= 12 and 1 <= day <= 31:
        result = _checked(year, month, day)
        if result is not None:
            return result

    day, month, year = int(digits[:2]), int(digits[2:4]), int(digits[4:])
    if day <= 31 and month <= 12:
        return _checked(year, month, day)
    return None


def parse_date(value: Any) -> CalendarDate | None:
    """
    Decode one cell into a CalendarDate, or None when no rule applies.

    Accepted encodings: ``DD.MM.YYYY``, ``YYYY-MM-DD`` (optionally with a
    time part), spreadsheet serial numbers (Windows epoch 1899-12-30,
    40 000-60 000), 7-digit ``DMMYYYY`` and 8-digit ``YYYYMMDD`` /
    ``DDMMYYYY`` numbers or digit strings, and date/datetime objects.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return CalendarDate(value.year, value.month, value.day)
    if isinstance(value, date):
        return CalendarDate(value.year, value.month, value.day)

    if isinstance(value, numbers.Real):
        number = float(value)
        if math.isnan(number) or number < 0:
            return None
        if number.is_integer() and number >= 1_000_000:
            return _from_compact(str(int(number)))
        return _from_serial(number)

    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None

    m = DOTTED_DATE_RE.match(text)
    if m:
        return _checked(int(m.group(3)), int(m.group(2)), int(m.group(1)))
    m = ISO_DATE_RE.match(text)
    if m:
        return _checked(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    if DIGITS_RE.match(text):
        if len(text) in (7, 8):
            return _from_compact(text)
        if len(text) == 5:
            return _from_serial(int(text))
    return None


def normalise_date(value: Any) -> tuple[Any, bool, str]:
    if is_empty(value):
        return value, False, ""
    if isinstance(value, str) and ISO_DATE_ONLY_RE.match(value) and parse_date(value) is not None:
        return value, False, ""

    parsed = parse_date(value)
    if parsed is None:
        return value, False, ""

    result = parsed.isoformat()
    if isinstance(value, (date, datetime)):
        reason = "Date object converted to ISO YYYY-MM-DD"
    elif isinstance(value, numbers.Real):
        if float(value) >= 1_000_000:
            reason = "Compact numeric date converted to ISO YYYY-MM-DD"
        else:
            reason = "Spreadsheet serial date (epoch 1899-12-30) converted to ISO YYYY-MM-DD"
    elif DOTTED_DATE_RE.match(value.strip()):
        reason = "DD.MM.YYYY normalised to ISO YYYY-MM-DD"
    elif ISO_DATE_RE.match(value.strip()):
        reason = "ISO datetime truncated to date-only"
    else:
        reason = "Digit-only date normalised to ISO YYYY-MM-DD"
    return result, True, reason


# ══════════════════════════════════════════════════════════════════════════
# INTEGER-SCALE ENCODING
# ══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class IntegerScaleRule:
    """
    A source-specific convention where amounts are stored as scaled integers.

    The rule fires on a row when any weight column exceeds
    ``weight_threshold`` and any money column holds an integer above
    ``money_floor``. Money and companion columns are then divided by
    ``money_divisor`` and weight columns by ``weight_divisor``.

    Columns are offsets, or ``FieldRef`` names before a header layout is bound.
    """

    name: str
    weight_columns: tuple[Any, ...]
    money_columns: tuple[Any, ...]
    companion_columns: tuple[Any, ...] = ()
    weight_threshold: float = 100_000
    money_floor: float = 10_000
    weight_divisor: int = 1_000_000
    money_divisor: int = 100

    def columns(self) -> tuple[Any, ...]:
        return self.weight_columns + self.money_columns + self.companion_columns

    def triggered(self, row: Sequence[Any]) -> bool:
        weights = [parse_number(row[col]) for col in self.weight_columns if col < len(row)]
        monies = [parse_number(row[col]) for col in self.money_columns if col < len(row)]
        heavy = any(w is not None and w > self.weight_threshold for w in weights)
        integral = any(
            m is not None and m.is_integer() and m > self.money_floor for m in monies
        )
        return heavy and integral


def apply_integer_scale(row: list[Any], rule: IntegerScaleRule) -> list[tuple[int, Any, float]]:
    """Rescale a row in place; returns ``(column, before, after)`` per changed cell."""
    if not rule.triggered(row):
        return []

    changes: list[tuple[int, Any, float]] = []
    plan = (
        (rule.money_columns + rule.companion_columns, rule.money_divisor),
        (rule.weight_columns, rule.weight_divisor),
    )
    for columns, divisor in plan:
        for col in columns:
            if col >= len(row):
                continue
            number = parse_number(row[col])
            if number is None:
                continue
            scaled = number / divisor
            changes.append((col, row[col], scaled))
            row[col] = scaled
    return changes
