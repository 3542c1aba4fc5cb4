from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from freight_doctor import __version__ as TOOL_VERSION
from freight_doctor.brokers import BROKERS, FixedLayout, get_broker
from freight_doctor.contracts import build_contract, build_run_summary
from freight_doctor.errors import HeaderConflictError, StructuralError
from freight_doctor.headers import unify_headers, validate_synonyms
from freight_doctor.loader import ALL_FORMATS, extract_parts, load_rows
from freight_doctor.merge import MergeResult, merge_files, write_workbook
from freight_doctor.repair import repair_and_normalize
from freight_doctor.report import ISSUE_DEFINITIONS, report_summary

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_WARNINGS = 3
EXIT_STRUCTURAL = 5

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class FreightDoctorArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True, default=str)


def timestamp_token() -> str:
    override = os.environ.get("FREIGHT_DOCTOR_OUTPUT_STAMP")
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_output_dir(broker_id: str) -> Path:
    return Path.cwd() / "freight-doctor-output" / f"{broker_id.lower()}-{timestamp_token()}"


def determine_output_dir(args: argparse.Namespace, broker_id: str) -> Path:
    if getattr(args, "out_dir", None):
        return Path(args.out_dir)
    return default_output_dir(broker_id)


def write_text(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def classify_backend_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, StructuralError):
        return EXIT_STRUCTURAL
    if isinstance(exc, (ImportError, UnicodeDecodeError)):
        return EXIT_PARSE_FAILED
    if isinstance(exc, FileNotFoundError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, ValueError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def load_synonyms(path: Path | None) -> dict[str, str]:
    if path is None:
        return {}
    if not path.exists():
        raise CliError(f"Synonym file not found: {path}", EXIT_COMMAND_ERROR)
    if path.suffix.lower() != ".json":
        raise CliError("Synonym file must be .json", EXIT_COMMAND_ERROR)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:
        raise CliError(f"Could not read synonym file: {exc}", EXIT_COMMAND_ERROR) from exc
    if not isinstance(payload, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in payload.items()
    ):
        raise CliError("Synonym file must be a JSON object of name -> canonical name", EXIT_COMMAND_ERROR)
    return validate_synonyms(payload)


def resolve_inputs(raw_paths: Sequence[str]) -> list[Path]:
    """Expand directories into their supported files; keep explicit files as given."""
    paths: list[Path] = []
    for raw in raw_paths:
        path = Path(raw)
        if path.is_dir():
            paths.extend(
                sorted(p for p in path.iterdir() if p.is_file() and p.suffix.lower() in ALL_FORMATS)
            )
        elif path.exists():
            paths.append(path)
        else:
            raise CliError(f"File not found: {path}", EXIT_COMMAND_ERROR)
    if not paths:
        raise CliError("No supported input files found", EXIT_COMMAND_ERROR)
    return paths


def resolve_broker(broker_id: str):
    try:
        return get_broker(broker_id)
    except StructuralError as exc:
        raise CliError(str(exc), EXIT_COMMAND_ERROR) from exc


def run_merge_pipeline(args: argparse.Namespace) -> tuple[Any, list[Path], MergeResult]:
    schema = resolve_broker(args.broker)
    paths = resolve_inputs(args.inputs)
    synonyms = load_synonyms(Path(args.synonyms) if args.synonyms else None)
    result = merge_files(paths, schema, synonyms=synonyms)
    if not result.headers and result.stats["skipped_files"]:
        raise CliError("No input file could be read", EXIT_PARSE_FAILED)
    return schema, paths, result


# ══════════════════════════════════════════════════════════════════════════════
# TEXT RENDERING
# ══════════════════════════════════════════════════════════════════════════════

def render_merge_text(summary: dict[str, Any]) -> str:
    metrics = summary["metrics"]
    lines = [
        "freight-doctor merge",
        f"Broker: {summary['broker']}",
        f"Files: {metrics['total_files']} ({len(metrics['skipped_files'])} skipped)",
        f"Rows: {metrics['total_rows']}",
        f"Aligned headers: {'yes' if metrics['aligned'] else 'no'}",
        f"Fixes: {metrics['fix_count']}",
        f"Warnings: {metrics['warning_count']}",
    ]
    for kind, entry in sorted(metrics["issues_by_kind"].items()):
        lines.append(f"- {kind}: {entry['count']}")
    for skipped in metrics["skipped_files"]:
        lines.append(f"Skipped {skipped['name']}: {skipped['error']}")
    return "\n".join(lines) + "\n"


def render_audit_text(payload: dict[str, Any]) -> str:
    lines = [
        "freight-doctor audit",
        f"Broker: {payload['broker']}",
        f"Rows: {payload['rows']}",
        f"First pass: {payload['first_pass']['fix_count']} fix(es), {payload['first_pass']['warning_count']} warning(s)",
        f"Second pass: {payload['second_pass']['fix_count']} fix(es)",
        f"Row widths preserved: {'yes' if payload['widths_preserved'] else 'no'}",
        f"Idempotent: {'yes' if payload['idempotent'] else 'no'}",
    ]
    return "\n".join(lines) + "\n"


def render_headers_text(payload: dict[str, Any]) -> str:
    lines = [
        "freight-doctor headers",
        f"Broker: {payload['broker']}",
        f"Unified columns: {len(payload['header'])}",
    ]
    for slot, name in enumerate(payload["header"]):
        lines.append(f"{slot:>4}  {name}")
    for item in payload["unmapped"]:
        lines.append(f"Unmapped: {item['detail']}")
    return "\n".join(lines) + "\n"


# ══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ══════════════════════════════════════════════════════════════════════════════

def run_merge(args: argparse.Namespace) -> int:
    try:
        schema, paths, result = run_merge_pipeline(args)
        out_dir = determine_output_dir(args, schema.broker_id)
        workbook_path = Path(args.output) if args.output else out_dir / f"{schema.broker_id.lower()}-consolidated.xlsx"
        if workbook_path.exists():
            raise CliError(f"Refusing to overwrite existing output: {workbook_path}", EXIT_COMMAND_ERROR)
        write_workbook(result, workbook_path, schema)

        report = report_summary(result.report)
        header_report = report_summary(result.header_report)
        warnings = [f"{s['name']}: {s['error']}" for s in result.stats["skipped_files"]]
        summary = build_run_summary(
            tool="freight-doctor",
            command="merge",
            broker=schema.broker_id,
            input_paths=paths,
            status="ok" if not warnings else "partial",
            output_path=workbook_path,
            warnings=warnings,
            metrics={
                **result.stats,
                "fix_count": report["fix_count"],
                "warning_count": report["warning_count"] + header_report["warning_count"],
                "issues_by_kind": {**header_report["by_kind"], **report["by_kind"]},
            },
        )
        summary["contract"] = build_contract("freight_doctor.merge_summary")
        write_json(out_dir / "merge-summary.json", summary)

        if args.json:
            maybe_emit_json_stdout(summary, True)
        else:
            emit_human(render_merge_text(summary).rstrip(), quiet=args.quiet)
            emit_human(f"Workbook written: {workbook_path}", quiet=args.quiet)
        return EXIT_WARNINGS if summary["metrics"]["warning_count"] else EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_audit(args: argparse.Namespace) -> int:
    """Merge, then repair the repaired rows again: any second-pass fix is a failure."""
    try:
        schema, paths, result = run_merge_pipeline(args)
        repaired = [list(row) for row in result.data]
        widths = [len(row) for row in repaired]
        second = repair_and_normalize(repaired, schema, header=result.header_names)
        widths_preserved = widths == [len(row) for row in repaired]
        idempotent = second.fix_count == 0 and repaired == result.data

        payload = {
            "contract": build_contract("freight_doctor.audit"),
            "tool": "freight-doctor",
            "command": "audit",
            "version": TOOL_VERSION,
            "broker": schema.broker_id,
            "input_files": [str(p) for p in paths],
            "rows": len(result.data),
            "first_pass": report_summary(result.report),
            "second_pass": report_summary(second),
            "widths_preserved": widths_preserved,
            "idempotent": idempotent,
        }
        if args.out_dir:
            write_json(Path(args.out_dir) / "audit.json", payload)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_audit_text(payload).rstrip(), quiet=args.quiet)
        return EXIT_SUCCESS if idempotent and widths_preserved else EXIT_STRUCTURAL
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_headers(args: argparse.Namespace) -> int:
    try:
        schema = resolve_broker(args.broker)
        paths = resolve_inputs(args.inputs)
        synonyms = load_synonyms(Path(args.synonyms) if args.synonyms else None)
        if synonyms:
            schema = schema.with_synonyms(synonyms)

        file_headers: dict[str, list[str]] = {}
        for path in paths:
            loaded = load_rows(path, schema)
            file_headers[path.name] = extract_parts(loaded["rows"], schema).header_names
        unification = unify_headers(file_headers, schema.synonyms)

        payload = {
            "contract": build_contract("freight_doctor.headers"),
            "tool": "freight-doctor",
            "command": "headers",
            "broker": schema.broker_id,
            "header": unification.header,
            "mappings": dict(zip(unification.files, unification.mappings)),
            "unmapped": [issue.to_dict() for issue in unification.report.issues],
        }
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_headers_text(payload).rstrip(), quiet=args.quiet)
        return EXIT_WARNINGS if payload["unmapped"] else EXIT_SUCCESS
    except HeaderConflictError as exc:
        eprint(f"Header conflict: {exc}")
        return EXIT_STRUCTURAL
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_brokers(args: argparse.Namespace) -> int:
    entries = []
    for broker_id, schema in sorted(BROKERS.items()):
        layout = schema.layout
        entries.append({
            "broker_id": broker_id,
            "label": schema.label,
            "layout": schema.tag,
            "zones": [z.name for z in layout.zones] if isinstance(layout, FixedLayout) else [],
            "header_rows": schema.header_rows,
            "data_start_row": schema.data_start_row,
            "synonyms": len(schema.synonyms),
        })
    payload = {"contract": build_contract("freight_doctor.brokers"), "brokers": entries}
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        for entry in entries:
            zones = ", ".join(entry["zones"]) or "-"
            print(f"{entry['broker_id']:<9} {entry['label']:<16} {entry['layout']:<7} zones: {zones}")
    return EXIT_SUCCESS


EXPLAIN_ISSUES = {
    "shift-fix": "A zone anchor was invalid and a shifted copy was found within the zone's search window. "
    "Overflow fragments were joined into the free-text column, or empty structural cells were removed.",
    "number-fix": "A numeric column held text such as '1.234,56' or ',50' and was converted to a number.",
    "date-fix": "A date column held a serial number, compact digits or dotted text and was rewritten as YYYY-MM-DD.",
    "scale-fix": "The broker stores weights and amounts as scaled integers; the row crossed the threshold and was divided back.",
    "text-fix": "Line breaks, smart quotes or stray byte order marks were removed, or a comma decimal separator was normalised.",
    "unclassifiable-shift": "An anchor column failed its check and no overflow or gap pattern explained it. The row was left untouched.",
    "anchor-invalid": "After repair an anchor column still fails its check. Review the row by hand.",
    "number-unparseable": "A numeric column held text that is not a number. The value was kept as-is.",
    "date-unparseable": "A date column held a value that matches no known date encoding. The value was kept as-is.",
    "unmapped-column": "A file column found no slot in the unified header. Add a synonym to map it.",
    "zone-absent": "Every cell of a zone was blank, so its required anchors were not checked. Informational; it does not count as a warning.",
}


def run_explain(args: argparse.Namespace) -> int:
    definition = ISSUE_DEFINITIONS.get(args.kind)
    if definition is None:
        eprint(f"Unknown issue kind: {args.kind}. Known: {', '.join(sorted(ISSUE_DEFINITIONS))}")
        return EXIT_COMMAND_ERROR
    payload = {
        "kind": args.kind,
        "severity": definition["severity"],
        "summary": definition["summary"],
        "description": EXPLAIN_ISSUES[args.kind],
    }
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        print(
            "\n".join(
                [
                    f"Issue: {args.kind}",
                    f"Severity: {payload['severity']}",
                    f"Summary: {payload['summary']}",
                    f"Details: {payload['description']}",
                ]
            )
        )
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def build_parser() -> argparse.ArgumentParser:
    parser = FreightDoctorArgumentParser(
        prog="freight-doctor",
        description="Column-shift repair and consolidation for customs broker exports.",
    )
    parser.add_argument("--log-level", choices=LOG_LEVELS, default="WARNING", help="Library log level (stderr)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    merge = subparsers.add_parser("merge", help="Merge, repair and normalise one broker's exports into a workbook.")
    merge.add_argument("broker", help="Broker id (see `freight-doctor brokers`)")
    merge.add_argument("inputs", nargs="+", help="Input files or directories")
    merge.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    merge.add_argument("--output", help="Explicit workbook output path")
    merge.add_argument("--synonyms", help="JSON file of extra column synonyms")
    merge.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    merge.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")

    audit = subparsers.add_parser("audit", help="Check that repairing already repaired rows changes nothing.")
    audit.add_argument("broker", help="Broker id")
    audit.add_argument("inputs", nargs="+", help="Input files or directories")
    audit.add_argument("-o", "--out", dest="out_dir", help="Write audit.json to this directory")
    audit.add_argument("--synonyms", help="JSON file of extra column synonyms")
    audit.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    audit.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")

    headers = subparsers.add_parser("headers", help="Show the unified header and per-file column mappings.")
    headers.add_argument("broker", help="Broker id")
    headers.add_argument("inputs", nargs="+", help="Input files or directories")
    headers.add_argument("--synonyms", help="JSON file of extra column synonyms")
    headers.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    headers.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")

    brokers = subparsers.add_parser("brokers", help="List configured broker schemas.")
    brokers.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    explain = subparsers.add_parser("explain", help="Explain a report issue kind.")
    explain.add_argument("kind", help="Issue kind, e.g. shift-fix")
    explain.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    subparsers.add_parser("version", help="Print version")
    return parser


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        configure_logging(args.log_level)
        if args.command == "merge":
            return run_merge(args)
        if args.command == "audit":
            return run_audit(args)
        if args.command == "headers":
            return run_headers(args)
        if args.command == "brokers":
            return run_brokers(args)
        if args.command == "explain":
            return run_explain(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
