"""Shared versioned contracts for freight-doctor JSON outputs."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

CONTRACT_VERSIONS = {
    "freight_doctor.merge_summary": "1.0.0",
    "freight_doctor.audit": "1.0.0",
    "freight_doctor.headers": "1.0.0",
    "freight_doctor.brokers": "1.0.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def build_run_summary(
    *,
    tool: str,
    command: str,
    broker: str,
    input_paths: Sequence[Path],
    status: str = "ok",
    output_path: Path | None = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "tool": tool,
        "command": command,
        "broker": broker,
        "status": status,
        "generated_at": utc_now_iso(),
        "input_files": [str(p) for p in input_paths],
        "output_file": str(output_path) if output_path else None,
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }
