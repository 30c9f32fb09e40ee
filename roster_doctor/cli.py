from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from roster_doctor import __version__ as TOOL_VERSION
from roster_doctor.contracts import TOOL_NAME, build_contract, build_run_summary, validation_metrics
from roster_doctor.export import EXPORT_FORMATS, TEMPLATE_FORMATS, export_rows, write_template
from roster_doctor.loader import ALL_FORMATS, load_import
from roster_doctor.mapping import missing_required, set_mapping
from roster_doctor.pipeline import ValidationProgress, run_all
from roster_doctor.schema import CLEANING_RULES, FIELD_DESCRIPTIONS, FIELDS, STRUCTURAL_SCHEMA, ConfigurationError
from roster_doctor.settings import Settings, load_settings, starter_config


EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_CLEAN_WITH_ERRORS = 4
EXIT_VALIDATE_FAILED = 5
EXIT_PARTIAL = 6

MAX_LISTED_ERRORS = 20


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class RosterDoctorArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True, default=str)


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def timestamp_token() -> str:
    override = os.environ.get("ROSTER_DOCTOR_OUTPUT_STAMP")
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_output_dir(input_path: Path) -> Path:
    return Path.cwd() / "roster-doctor-output" / f"{input_path.stem}-{timestamp_token()}"


def determine_output_dir(args: argparse.Namespace, input_path: Path) -> Path:
    if getattr(args, "out_dir", None):
        return Path(args.out_dir)
    return default_output_dir(input_path)


def write_text(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")


def classify_backend_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, ConfigurationError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, (ImportError, UnicodeDecodeError)):
        return EXIT_PARSE_FAILED
    if isinstance(exc, FileNotFoundError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, ValueError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def resolve_settings(args: argparse.Namespace) -> Settings:
    settings = Settings()
    config_path = getattr(args, "config", None)
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise CliError(f"Config not found: {path}", EXIT_COMMAND_ERROR)
        try:
            settings = load_settings(path)
        except (ValueError, TypeError) as exc:
            raise CliError(f"Could not read config: {exc}", EXIT_COMMAND_ERROR) from exc
    if getattr(args, "fix_phones", False):
        settings.clean_up = True
    return settings


def apply_overrides(mapping: dict[str, str], overrides: list[str] | None) -> dict[str, str]:
    """``HEADER=field`` assigns a header, ``HEADER=`` clears it."""
    for item in overrides or []:
        header, sep, field = item.rpartition("=")
        if not sep or not header:
            raise CliError(f"Invalid --map value (expected HEADER=field): {item}", EXIT_COMMAND_ERROR)
        try:
            mapping = set_mapping(mapping, header, field or None)
        except ConfigurationError as exc:
            raise CliError(str(exc), EXIT_COMMAND_ERROR) from exc
    return mapping


def load_and_map(args: argparse.Namespace, settings: Settings) -> tuple[Path, dict[str, Any], dict[str, str]]:
    input_path = Path(args.input)
    if not input_path.exists():
        raise CliError(f"File not found: {input_path}", EXIT_COMMAND_ERROR)
    if input_path.suffix.lower() not in ALL_FORMATS:
        raise CliError(
            f"Unsupported file type '{input_path.suffix or '[missing extension]'}'. "
            f"Supported: {', '.join(sorted(ALL_FORMATS))}",
            EXIT_COMMAND_ERROR,
        )
    parsed = load_import(
        input_path,
        sheet_name=getattr(args, "sheet_name", None),
        threshold=settings.fuzzy_threshold,
        min_match_chars=settings.min_match_chars,
    )
    mapping = apply_overrides(dict(parsed["columnMapping"]["mapped"]), getattr(args, "map_overrides", None))
    return input_path, parsed, mapping


# ── Human renderers ───────────────────────────────────────────────────────────

def render_mapping_text(input_path: Path, headers: list[str], mapping: dict[str, str]) -> str:
    lines = ["roster-doctor map", f"File: {input_path.name}"]
    width = max([len(header) for header in headers] + [6])
    for header in headers:
        lines.append(f"  {header.ljust(width)}  ->  {mapping.get(header) or '(unmapped)'}")
    missing = missing_required(mapping)
    if missing:
        lines.append(f"Missing required fields: {', '.join(missing)}")
    return "\n".join(lines) + "\n"


def render_validation_text(payload: dict[str, Any]) -> str:
    metrics = payload["run_summary"]["metrics"]
    lines = [
        "roster-doctor validate",
        f"File: {payload['input']}",
        f"Rows: {metrics['total_rows']}",
        f"Rows with errors: {metrics['rows_with_errors']}",
        f"Errors: {metrics['error_count']}",
        f"Changes: {metrics['change_count']}",
        f"Verdict: {'VALID' if payload['valid'] else 'INVALID'}",
    ]
    if payload["missing_fields"]:
        lines.append(f"Unmapped required fields: {', '.join(payload['missing_fields'])}")
    grouped = payload["grouped_errors"]
    for group in grouped[:MAX_LISTED_ERRORS]:
        for entry in group["fields"]:
            lines.append(f"  row {group['row'] + 1} {entry['field']}: {'; '.join(entry['messages'])}")
    if len(grouped) > MAX_LISTED_ERRORS:
        lines.append(f"  ... {len(grouped) - MAX_LISTED_ERRORS} more rows with errors")
    return "\n".join(lines) + "\n"


def build_validation_payload(
    input_path: Path,
    parsed: dict[str, Any],
    mapping: dict[str, str],
    progress: ValidationProgress,
    *,
    output_path: Path | None = None,
    command: str = "validate",
) -> dict[str, Any]:
    missing = missing_required(mapping)
    return {
        "contract": build_contract("roster_doctor.validation"),
        "run_summary": build_run_summary(
            command=command,
            input_path=input_path,
            parsed=parsed,
            mapping=mapping,
            status="ok" if progress.error_count == 0 else "errors",
            output_path=output_path,
            metrics=validation_metrics(progress),
        ),
        "tool": TOOL_NAME,
        "version": TOOL_VERSION,
        "input": str(input_path),
        "file_type": parsed["fileType"],
        "sheet_name": parsed["sheetName"],
        "mapping": mapping,
        "missing_fields": missing,
        "valid": progress.error_count == 0,
        "errors": [error.to_dict() for error in progress.errors],
        "grouped_errors": progress.grouped_errors,
        "change_count": progress.change_count,
    }


# ── Commands ──────────────────────────────────────────────────────────────────

def run_map(args: argparse.Namespace) -> int:
    try:
        settings = resolve_settings(args)
        input_path, parsed, mapping = load_and_map(args, settings)
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)

    missing = missing_required(mapping)
    payload = {
        "contract": build_contract("roster_doctor.mapping"),
        "input": str(input_path),
        "headers": parsed["headers"],
        "mapping": mapping,
        "unmapped": [header for header in parsed["headers"] if header not in mapping],
        "missing_fields": missing,
        "warnings": parsed["warnings"],
    }
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        emit_human(render_mapping_text(input_path, parsed["headers"], mapping).rstrip(), quiet=args.quiet)
    return EXIT_PARTIAL if missing else EXIT_SUCCESS


def run_validate(args: argparse.Namespace) -> int:
    try:
        settings = resolve_settings(args)
        input_path, parsed, mapping = load_and_map(args, settings)
        emit_human(f"Validating {parsed['totalRows']} rows from {input_path.name}", quiet=args.quiet or args.json)
        progress = run_all(parsed["rows"], mapping, settings=settings)
        output_path = None
        if args.output or args.out_dir:
            output_path = Path(args.output) if args.output else determine_output_dir(args, input_path) / "validation.json"
        payload = build_validation_payload(input_path, parsed, mapping, progress, output_path=output_path)
        if output_path is not None:
            write_json(output_path, payload)
            emit_human(f"Validation report: {output_path}", quiet=args.quiet)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_validation_text(payload).rstrip(), quiet=args.quiet)
        return EXIT_SUCCESS if payload["valid"] else EXIT_VALIDATE_FAILED
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_clean(args: argparse.Namespace) -> int:
    try:
        settings = resolve_settings(args)
        input_path, parsed, mapping = load_and_map(args, settings)
        progress = run_all(parsed["rows"], mapping, settings=settings)

        explicit = args.output_flag or args.output_positional
        out_dir = determine_output_dir(args, input_path)
        output_path = Path(explicit) if explicit else out_dir / f"{input_path.stem}_clean.{args.format}"
        if output_path.resolve() == input_path.resolve():
            raise CliError("Refusing to overwrite the input file.", EXIT_COMMAND_ERROR)
        summary_path = Path(args.json_summary) if args.json_summary else output_path.parent / "clean_summary.json"

        summary = build_validation_payload(
            input_path, parsed, mapping, progress, output_path=output_path, command="clean"
        )
        summary["contract"] = build_contract("roster_doctor.clean_summary")
        summary["outputs"] = {"cleaned": str(output_path), "summary": str(summary_path)}
        if not args.dry_run:
            export_rows(progress.rows, output_path, args.format, progress.errors, progress.changes)
            write_json(summary_path, summary)

        if args.json:
            maybe_emit_json_stdout(summary, True)
        else:
            emit_human(render_validation_text(summary).rstrip(), quiet=args.quiet)
            if not args.dry_run:
                emit_human(f"Cleaned output: {output_path}", quiet=args.quiet)
                emit_human(f"Clean summary: {summary_path}", quiet=args.quiet)
        if progress.error_count:
            return EXIT_VALIDATE_FAILED if args.fail_on_errors else EXIT_CLEAN_WITH_ERRORS
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_template(args: argparse.Namespace) -> int:
    output_path = Path(args.output or f"user-template.{args.format}")
    if output_path.exists() and not args.force:
        eprint(f"Refusing to overwrite existing file: {output_path}")
        return EXIT_COMMAND_ERROR
    write_template(output_path, args.format, include_descriptions=not args.no_descriptions)
    emit_human(f"Template written: {output_path}", quiet=args.quiet)
    return EXIT_SUCCESS


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    write_json(config_path, starter_config())
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_explain(args: argparse.Namespace) -> int:
    field = args.field
    if field not in FIELDS:
        eprint(f"Unknown field: {field}. Known fields: {', '.join(FIELDS)}")
        return EXIT_COMMAND_ERROR
    rule = CLEANING_RULES[field]
    constraint = STRUCTURAL_SCHEMA[field]
    payload = {
        "field": field,
        "label": constraint.label,
        "description": FIELD_DESCRIPTIONS[field],
        "required": constraint.required,
        "rule": rule.to_dict(),
    }
    if args.json:
        maybe_emit_json_stdout(payload, True)
        return EXIT_SUCCESS
    steps = [f"trim={rule.trim}", f"case={rule.case}"]
    if rule.normalize:
        steps.append("normalize=" + "+".join(rule.normalize))
    lines = [
        f"Field: {field} ({constraint.label})",
        f"Description: {payload['description']}",
        f"Required: {'yes' if constraint.required else 'no'}",
        f"Cleaning: {', '.join(steps)}",
    ]
    if rule.options:
        lines.append(f"Allowed values: {', '.join(rule.options)}")
    if rule.regex:
        lines.append(f"Format: {rule.regex}")
    if rule.unique:
        lines.append(f"Unique: yes (ignore case: {'yes' if rule.unique.ignore_case else 'no'})")
    if rule.column_hook_id:
        lines.append(f"Column hook: {rule.column_hook_id}")
    print("\n".join(lines))
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def _add_input_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("input", help="Input file path")
    parser.add_argument("--sheet", dest="sheet_name", help="Workbook sheet name")
    parser.add_argument(
        "--map",
        dest="map_overrides",
        action="append",
        metavar="HEADER=FIELD",
        help="Override the inferred mapping for one header (repeatable; empty FIELD unmaps)",
    )
    parser.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    parser.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logs on stderr")


def _add_run_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="JSON settings file (see `config init`)")
    parser.add_argument("--fix-phones", dest="fix_phones", action="store_true", help="Rewrite invalid phone numbers to the country calling code")
    parser.add_argument("-o", "--out", dest="out_dir", help="Output directory")


def build_parser() -> argparse.ArgumentParser:
    parser = RosterDoctorArgumentParser(prog="roster-doctor", description="Map, clean and validate personnel-record imports.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    map_cmd = subparsers.add_parser("map", help="Show the inferred column mapping.")
    _add_input_arguments(map_cmd)
    map_cmd.add_argument("--config", help="JSON settings file (see `config init`)")

    validate = subparsers.add_parser("validate", help="Clean and validate every row; report errors.")
    _add_input_arguments(validate)
    _add_run_arguments(validate)
    validate.add_argument("--output", help="Explicit validation report path")

    clean = subparsers.add_parser("clean", help="Validate and write the cleaned rows.")
    _add_input_arguments(clean)
    _add_run_arguments(clean)
    clean.add_argument("output_positional", nargs="?", default=None, help="Optional output path")
    clean.add_argument("--output", dest="output_flag", help="Explicit output path")
    clean.add_argument("--format", choices=list(EXPORT_FORMATS), default="xlsx", help="Output format")
    clean.add_argument("--json-summary", dest="json_summary", help="Explicit JSON summary output path")
    clean.add_argument("--dry-run", action="store_true", help="Validate without writing outputs")
    clean.add_argument("--fail-on-errors", action="store_true", help="Return exit code 5 instead of 4 when rows have errors")

    template = subparsers.add_parser("template", help="Write an empty import template.")
    template.add_argument("--format", choices=list(TEMPLATE_FORMATS), default="csv", help="Template format")
    template.add_argument("--output", help="Template output path")
    template.add_argument("--no-descriptions", action="store_true", help="Skip the CSV description row")
    template.add_argument("--force", action="store_true", help="Overwrite an existing file")
    template.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")

    config = subparsers.add_parser("config", help="Generate configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write a starter config file.")
    config_init.add_argument("--path", default="roster-doctor.json", help="Config output path")

    explain = subparsers.add_parser("explain", help="Explain a target field's rules.")
    explain.add_argument("field", help="Target field name, e.g. employeeId")
    explain.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    subparsers.add_parser("version", help="Print version")
    return parser


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        configure_logging(getattr(args, "verbose", False))
        if args.command == "map":
            return run_map(args)
        if args.command == "validate":
            return run_validate(args)
        if args.command == "clean":
            return run_clean(args)
        if args.command == "template":
            return run_template(args)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
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
