"""Shared versioned contracts for roster-doctor JSON outputs."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from roster_doctor.mapping import missing_required

TOOL_NAME = "roster-doctor"

CONTRACT_VERSIONS = {
    "roster_doctor.mapping": "1.0.0",
    "roster_doctor.validation": "1.1.0",
    "roster_doctor.clean_summary": "1.1.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def build_run_summary(
    *,
    command: str,
    input_path: Path,
    parsed: dict[str, Any],
    mapping: dict[str, str],
    status: str = "ok",
    output_path: Path | None = None,
    metrics: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Run header for validate/clean payloads.

    ``parsed`` is the loader's import payload; the source file, sheet and
    header coverage of ``mapping`` are taken from it.
    """
    warnings = list(parsed.get("warnings") or [])
    headers = parsed.get("headers") or []
    return {
        "tool": TOOL_NAME,
        "script": command,
        "status": status,
        "generated_at": utc_now_iso(),
        "input_file": str(input_path),
        "file_type": parsed.get("fileType"),
        "sheet_name": parsed.get("sheetName"),
        "output_file": str(output_path) if output_path else None,
        "mapped_fields": sorted(mapping.values()),
        "unmapped_headers": [header for header in headers if header not in mapping],
        "missing_fields": missing_required(mapping),
        "warnings_count": len(warnings),
        "warnings": warnings,
        "metrics": metrics or {},
    }


def validation_metrics(progress: Any) -> dict[str, Any]:
    rows_with_errors = len(progress.grouped_errors)
    return {
        "total_rows": progress.total_rows,
        "processed_rows": progress.processed_rows,
        "error_count": progress.error_count,
        "change_count": progress.change_count,
        "rows_with_errors": rows_with_errors,
        "clean_rows": progress.total_rows - rows_with_errors,
    }
