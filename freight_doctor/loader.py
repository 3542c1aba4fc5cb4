"""
File loader for broker exports.

Supports: .csv .tsv .txt .xlsx .xlsm .xls

Unlike a DataFrame loader, every file is returned as raw rows with no
header interpretation: broker exports carry multi-row headers, report
preambles and footer rows, and column positions matter more than names.

Public API:
    result = load_rows("path/to/export.xlsx", schema)
    rows   = result["rows"]
    parts  = extract_parts(rows, schema)

Result dict keys:
    rows              : list of row lists; empty cells are None
    detected_format   : "csv", "xlsx", ...
    detected_encoding : encoding name for text files; None for workbooks
    encoding_info     : detected, confidence, is_utf8, suspicious_chars
    delimiter         : delimiter for text files; None otherwise
    sheet_name        : sheet that was read; None for text files
    sheet_names       : all sheet names for workbooks; None otherwise
    warnings          : list of warning strings
"""

from __future__ import annotations

import csv
import io
import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence

import chardet
import pandas as pd

from freight_doctor.brokers import BrokerSchema
from freight_doctor.classifiers import is_empty

logger = logging.getLogger(__name__)

TEXT_FORMATS = {".csv", ".tsv", ".txt"}
EXCEL_FORMATS = {".xlsx", ".xlsm", ".xls"}
ALL_FORMATS = TEXT_FORMATS | EXCEL_FORMATS


# ══════════════════════════════════════════════════════════════════════════════
# ENCODING DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def _detect_encoding_info(raw: bytes) -> dict:
    """Detect encoding from raw bytes with chardet."""
    result = chardet.detect(raw)
    detected = result.get("encoding") or "unknown"
    confidence = round(result.get("confidence") or 0.0, 2)
    is_utf8 = detected.upper().replace("-", "") in ("UTF8", "UTF8SIG", "ASCII")

    suspicious: list[str] = []
    if not is_utf8:
        for row_idx, line in enumerate(raw.split(b"\n")[:100], start=1):
            try:
                line.decode("utf-8")
            except UnicodeDecodeError as e:
                suspicious.append(f"row {row_idx}: byte {line[e.start:e.end]!r} at position {e.start}")

    return {
        "detected": detected,
        "confidence": confidence,
        "is_utf8": is_utf8,
        "suspicious_chars": suspicious[:10],
    }


def _read_text_safely(raw: bytes, preferred_encoding: str) -> str:
    """
    Decode raw bytes line-by-line.

    Per line: UTF-8, then the detected encoding, then latin-1, finally
    CP1252 with replacement. Embedded null bytes are dropped.
    """
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc or enc == "unknown":
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", ""))
    return "\n".join(decoded_lines)


def _detect_delimiter(text: str) -> str:
    sample = "\n".join([line for line in text.splitlines() if line.strip()][:25])
    if sample:
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            pass
    return ","


# ══════════════════════════════════════════════════════════════════════════════
# CELL CLEANUP
# ══════════════════════════════════════════════════════════════════════════════

def _cell(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, str) and value == "":
        return None
    return value


def _frame_rows(df: pd.DataFrame) -> list[list[Any]]:
    return [[_cell(v) for v in row] for row in df.astype(object).values.tolist()]


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT LOADERS
# ══════════════════════════════════════════════════════════════════════════════

def _load_text(path: Path, suffix: str, schema: Optional[BrokerSchema]) -> dict:
    raw = path.read_bytes()
    enc_info = _detect_encoding_info(raw)
    enc = enc_info["detected"] if enc_info["detected"] != "unknown" else "utf-8"
    text = _read_text_safely(raw, enc)

    if suffix == ".tsv":
        delimiter = "\t"
    elif schema is not None:
        delimiter = schema.csv_delimiter
    else:
        delimiter = _detect_delimiter(text)

    width = max((len(r) for r in csv.reader(io.StringIO(text), delimiter=delimiter)), default=0)
    if width == 0:
        return _result(suffix, [], enc, enc_info, delimiter, None, None, [])

    try:
        df = pd.read_csv(
            io.StringIO(text),
            header=None,
            names=list(range(width)),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
            sep=re.escape(delimiter) if delimiter == "|" else delimiter,
            engine="python",
        )
    except Exception as exc:
        raise ValueError(f"Could not parse {suffix} file: {exc}") from exc

    return _result(suffix, _frame_rows(df), enc, enc_info, delimiter, None, None, [])


def select_sheet(sheet_names: Sequence[str], file_name: str, schema: Optional[BrokerSchema]) -> str:
    """
    Pick the worksheet that holds the data.

    A broker's ``sheet_pattern`` is consulted only for files whose name
    contains its ``sheet_hint``; otherwise the first sheet wins.
    """
    if not sheet_names:
        raise ValueError("Workbook has no sheets")
    if schema is None or not schema.sheet_pattern:
        return sheet_names[0]
    if schema.sheet_hint and schema.sheet_hint.lower() not in file_name.lower():
        return sheet_names[0]
    pattern = re.compile(schema.sheet_pattern, re.IGNORECASE)
    for name in sheet_names:
        if pattern.search(name):
            return name
    return sheet_names[0]


def _load_excel(
    path: Path,
    suffix: str,
    schema: Optional[BrokerSchema],
    sheet_name: Optional[str],
) -> dict:
    if suffix == ".xls":
        try:
            import xlrd  # noqa: F401
        except ImportError:
            raise ImportError(".xls files require xlrd. Run: pip install freight-doctor[excel-legacy]")

    warnings: list[str] = []
    try:
        with pd.ExcelFile(path) as xf:
            all_sheets = list(xf.sheet_names)
            if sheet_name is not None:
                if sheet_name not in all_sheets:
                    raise ValueError(f"Sheet '{sheet_name}' not found. Available: {all_sheets}")
                chosen = sheet_name
            else:
                chosen = select_sheet(all_sheets, path.name, schema)
            df = pd.read_excel(xf, sheet_name=chosen, header=None, dtype=object)
    except (ValueError, ImportError):
        raise
    except Exception as exc:
        raise ValueError(f"Could not open workbook: {exc}") from exc

    if len(all_sheets) > 1:
        others = [s for s in all_sheets if s != chosen]
        warnings.append(f"Multiple sheets found ({len(all_sheets)} total); used '{chosen}'. Ignored: {others}")

    return _result(suffix, _frame_rows(df), None, None, None, chosen, all_sheets, warnings)


def _result(suffix, rows, enc, enc_info, delimiter, sheet_name, sheet_names, warnings) -> dict:
    return {
        "rows": rows,
        "detected_format": suffix.lstrip("."),
        "detected_encoding": enc,
        "encoding_info": enc_info,
        "delimiter": delimiter,
        "sheet_name": sheet_name,
        "sheet_names": sheet_names,
        "warnings": warnings,
    }


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def load_rows(
    path: "str | Path",
    schema: Optional[BrokerSchema] = None,
    sheet_name: Optional[str] = None,
) -> dict:
    """
    Load a broker export as raw rows.

    Raises:
        FileNotFoundError  if the file does not exist.
        ValueError         if the format is unsupported or unreadable.
        ImportError        if a required optional dependency is missing.
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if suffix not in ALL_FORMATS:
        supported = ", ".join(sorted(ALL_FORMATS))
        raise ValueError(f"Unsupported format '{suffix}'. Supported: {supported}")

    if suffix in TEXT_FORMATS:
        result = _load_text(path, suffix, schema)
    else:
        result = _load_excel(path, suffix, schema, sheet_name)
    logger.debug("%s: %d raw row(s) loaded", path.name, len(result["rows"]))
    return result


@dataclass
class FileParts:
    headers: list[list[Any]]
    data: list[list[Any]]
    footer_rows: int = 0
    trimmed_rows: int = 0
    header_names: list[str] = field(default_factory=list)


def _trim_width(row: list[Any], width: Optional[int]) -> tuple[list[Any], bool]:
    if width is None or len(row) <= width:
        return row, False
    if all(is_empty(c) for c in row[width:]):
        return row[:width], True
    return row, False


def extract_parts(rows: Sequence[Sequence[Any]], schema: BrokerSchema) -> FileParts:
    """
    Split raw rows into header rows and data rows.

    Footer and blank rows are dropped, a UTF-8 BOM is stripped from the
    first cell, and rows are trimmed to ``data_width`` when everything
    beyond it is empty.
    """
    rows = [list(r) for r in rows]
    if rows and rows[0] and isinstance(rows[0][0], str):
        rows[0][0] = rows[0][0].lstrip("\ufeff")

    header_end = schema.header_start_row + schema.header_rows
    headers = [
        _trim_width(r, schema.data_width)[0]
        for r in rows[schema.header_start_row:header_end]
    ]

    data: list[list[Any]] = []
    footer_rows = trimmed_rows = 0
    for row in rows[schema.data_start_row:]:
        if schema.is_footer_row(row):
            footer_rows += 1
            continue
        row, trimmed = _trim_width(row, schema.data_width)
        trimmed_rows += trimmed
        data.append(row)

    # Field names live in the first header row.
    names_row = headers[0] if headers else []
    header_names = ["" if is_empty(h) else str(h).strip() for h in names_row]
    return FileParts(headers, data, footer_rows, trimmed_rows, header_names)
