"""
loader.py - File loader for roster imports

Supports: .csv .tsv .txt .xlsx .xls .xlsm .ods .json .jsonl

Public API:
    result = load_file("path/to/staff.csv")
    df     = result["dataframe"]

    parsed = load_import("path/to/staff.xlsx", sheet_name="Staff")
    parsed["headers"], parsed["rows"], parsed["columnMapping"]

load_file result keys:
    dataframe         - pandas DataFrame, every cell read as text
    detected_format   - "csv", "xlsx", "json", etc.
    detected_encoding - encoding name for text files; None for binary
    delimiter         - delimiter char for text files; None otherwise
    sheet_name        - active sheet for spreadsheets; None otherwise
    sheet_names       - all sheet names for spreadsheets; None otherwise
    warnings          - list of warning strings

load_import converts the frame into the shape the validation core expects:
header strings plus one dict per record with blank cells as None.
"""

from __future__ import annotations

import csv
import io
import json as _json
from collections import Counter
from pathlib import Path
from typing import Any, Optional

import chardet
import pandas as pd

from roster_doctor.mapping import DEFAULT_FUZZY_THRESHOLD, DEFAULT_MIN_MATCH_CHARS, infer_mapping, split_headers

# ── Format groups ──────────────────────────────────────────────────────────────
TEXT_FORMATS  = {".csv", ".tsv", ".txt"}
EXCEL_FORMATS = {".xlsx", ".xls", ".xlsm"}
ODS_FORMATS   = {".ods"}
JSON_FORMATS  = {".json"}
JSONL_FORMATS = {".jsonl"}
ALL_FORMATS   = TEXT_FORMATS | EXCEL_FORMATS | ODS_FORMATS | JSON_FORMATS | JSONL_FORMATS


# ══════════════════════════════════════════════════════════════════════════════
# ENCODING + DELIMITER DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def _detect_encoding(raw: bytes) -> str:
    result = chardet.detect(raw)
    detected = result.get("encoding") or "utf-8"
    return detected


def _read_text_safely(raw: bytes, preferred_encoding: str) -> str:
    """
    Decode raw bytes line-by-line: UTF-8, then the detected encoding, then
    latin-1, and finally CP1252 with replacement. Null bytes are dropped.
    """
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc:
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", ""))
    text = "\n".join(decoded_lines)
    return text.lstrip("\ufeff")


def _detect_delimiter(text: str) -> str:
    """csv.Sniffer first; otherwise the candidate giving the most consistent width."""
    sample_lines = [line for line in text.splitlines() if line.strip()][:50]
    sample = "\n".join(sample_lines[:25])

    if sample:
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            pass

    best_delim = ","
    best_score = float("-inf")
    for delim in [",", ";", "\t", "|"]:
        rows = [
            row
            for row in csv.reader(io.StringIO("\n".join(sample_lines)), delimiter=delim)
            if any(cell.strip() for cell in row)
        ]
        if len(rows) < 2:
            continue
        mode_width, mode_count = Counter(len(row) for row in rows).most_common(1)[0]
        score = mode_width * 2.0 + (mode_count / len(rows)) * mode_width
        if mode_width == 1:
            score -= 10.0
        if score > best_score:
            best_score = score
            best_delim = delim
    return best_delim


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT LOADERS
# ══════════════════════════════════════════════════════════════════════════════

def _result(df: pd.DataFrame, fmt: str, **extra: Any) -> dict:
    payload = {
        "dataframe": df,
        "detected_format": fmt,
        "detected_encoding": None,
        "delimiter": None,
        "sheet_name": None,
        "sheet_names": None,
        "warnings": [],
    }
    payload.update(extra)
    return payload


def _load_text(path: Path, suffix: str) -> dict:
    raw = path.read_bytes()
    enc = _detect_encoding(raw)
    text = _read_text_safely(raw, enc)
    delimiter = "\t" if suffix == ".tsv" else _detect_delimiter(text)

    sep = r"\|" if delimiter == "|" else delimiter
    try:
        df = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
            on_bad_lines="skip",
            sep=sep,
            engine="python",
        )
    except Exception as exc:
        raise ValueError(f"Could not parse {suffix} file: {exc}") from exc
    return _result(df, suffix.lstrip("."), detected_encoding=enc, delimiter=delimiter)


def _load_workbook(path: Path, suffix: str, sheet_name: Optional[str]) -> dict:
    engine = "odf" if suffix in ODS_FORMATS else None
    try:
        with pd.ExcelFile(path, engine=engine) as xf:
            all_sheets = list(xf.sheet_names)
    except ImportError:
        raise
    except Exception as exc:
        raise ValueError(f"Could not read workbook: {exc}") from exc
    if not all_sheets:
        raise ValueError("Workbook contains no sheets.")

    warnings: list[str] = []
    if sheet_name is None:
        chosen = all_sheets[0]
        if len(all_sheets) > 1:
            warnings.append(f"Multiple sheets found; using '{chosen}'. Available sheets: {all_sheets}")
    elif sheet_name in all_sheets:
        chosen = sheet_name
    else:
        raise ValueError(f"Sheet '{sheet_name}' not found. Available: {all_sheets}")

    try:
        df = pd.read_excel(path, sheet_name=chosen, dtype=str, engine=engine)
    except Exception as exc:
        raise ValueError(f"Could not read sheet '{chosen}': {exc}") from exc
    return _result(
        df,
        suffix.lstrip("."),
        sheet_name=chosen,
        sheet_names=all_sheets,
        warnings=warnings,
    )


def _load_json(path: Path) -> dict:
    """Arrays load directly; objects use their first list-valued key. Nested records are flattened."""
    raw = path.read_bytes()
    enc = _detect_encoding(raw)
    text = raw.decode(enc, errors="replace").lstrip("\ufeff")
    try:
        data = _json.loads(text)
    except _json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON: {exc}") from exc

    warnings: list[str] = []
    if isinstance(data, list):
        records = data
    elif isinstance(data, dict):
        list_keys = [key for key, value in data.items() if isinstance(value, list)]
        if list_keys:
            records = data[list_keys[0]]
            warnings.append(f"Nested JSON: used array at top-level key '{list_keys[0]}'")
        else:
            records = [data]
            warnings.append("JSON is a single object; treated as a one-row table")
    else:
        raise ValueError(f"JSON root must be an array or object, got {type(data).__name__}")

    df = pd.json_normalize(records) if records else pd.DataFrame()
    return _result(df, "json", detected_encoding=enc, warnings=warnings)


def _load_jsonl(path: Path) -> dict:
    raw = path.read_bytes()
    enc = _detect_encoding(raw)
    text = raw.decode(enc, errors="replace")

    records: list[dict] = []
    bad_lines: list[int] = []
    for line_num, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            records.append(_json.loads(line))
        except _json.JSONDecodeError:
            bad_lines.append(line_num)

    warnings = []
    if bad_lines:
        warnings.append(f"{len(bad_lines)} lines could not be parsed (first: line {bad_lines[0]})")
    df = pd.json_normalize(records) if records else pd.DataFrame()
    return _result(df, "jsonl", detected_encoding=enc, warnings=warnings)


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def load_file(path: "str | Path", sheet_name: Optional[str] = None) -> dict:
    """
    Load any supported file into a pandas DataFrame.

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
        return _load_text(path, suffix)
    if suffix in EXCEL_FORMATS or suffix in ODS_FORMATS:
        return _load_workbook(path, suffix, sheet_name)
    if suffix in JSON_FORMATS:
        return _load_json(path)
    return _load_jsonl(path)


def _cell(value: Any) -> Any:
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        return value
    if isinstance(value, str) and value == "":
        return None
    return value


def dataframe_to_rows(df: pd.DataFrame) -> tuple[list[str], list[dict[str, Any]]]:
    headers = [str(column) for column in df.columns]
    rows = []
    for record in df.itertuples(index=False, name=None):
        rows.append({header: _cell(value) for header, value in zip(headers, record)})
    return headers, rows


def load_import(
    path: "str | Path",
    sheet_name: Optional[str] = None,
    mapping: Optional[dict[str, str]] = None,
    *,
    threshold: float = DEFAULT_FUZZY_THRESHOLD,
    min_match_chars: int = DEFAULT_MIN_MATCH_CHARS,
) -> dict:
    """Parse a file into ``{headers, rows, totalRows, fileType, columnMapping, ...}``."""
    loaded = load_file(path, sheet_name=sheet_name)
    headers, rows = dataframe_to_rows(loaded["dataframe"])
    if mapping is None:
        chosen = infer_mapping(headers, threshold=threshold, min_match_chars=min_match_chars)
    else:
        chosen = dict(mapping)
    return {
        "headers": headers,
        "rows": rows,
        "totalRows": len(rows),
        "fileType": loaded["detected_format"],
        "sheetName": loaded["sheet_name"],
        "sheetNames": loaded["sheet_names"],
        "encoding": loaded["detected_encoding"],
        "warnings": loaded["warnings"],
        "columnMapping": split_headers(chosen, headers),
    }
