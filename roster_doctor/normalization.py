"""Pure value normalisers shared by the rule catalog and the validation core."""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta
from typing import Any, Iterable

import pandas as pd

TRIM_NONE = "none"
TRIM_LEFT = "left"
TRIM_RIGHT = "right"
TRIM_BOTH = "both"
TRIM_NORMALIZE_SPACES = "normalizeSpaces"
TRIM_MODES = (TRIM_NONE, TRIM_LEFT, TRIM_RIGHT, TRIM_BOTH, TRIM_NORMALIZE_SPACES)

CASE_NONE = "none"
CASE_UPPER = "upper"
CASE_LOWER = "lower"
CASE_MODES = (CASE_NONE, CASE_UPPER, CASE_LOWER)

NORMALIZE_PHONE = "phoneDigitsOnly"
NORMALIZE_DATE = "toISODate"
NORMALIZE_COUNTRY = "toISO3"
NORMALIZE_EMPLOYEE_ID = "toEmployeeId"
NORMALIZE_FLAGS = (NORMALIZE_PHONE, NORMALIZE_DATE, NORMALIZE_COUNTRY, NORMALIZE_EMPLOYEE_ID)

INVALID_DATE = "Invalid Date"
ISO_DATE_FORMAT = "%Y-%m-%d"
EXCEL_EPOCH = datetime(1899, 12, 30)

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
EMPLOYEE_ID_RE = re.compile(r"^[a-z0-9-#]+$")
COUNTRY_ISO3_RE = re.compile(r"^[A-Z]{3}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NUMERIC_SERIAL_RE = re.compile(r"^\d+(?:\.\d+)?$")

# First match wins; the list is ordered from strictest to loosest.
DATE_FORMAT_PATTERNS = [
    ("%Y-%m-%d", re.compile(r"^\d{4}-\d{2}-\d{2}$"), "yyyy-MM-dd"),
    ("%m/%d/%y", re.compile(r"^\d{1,2}/\d{1,2}/\d{2}$"), "M/d/yy"),
    ("%m/%d/%Y", re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$"), "M/d/yyyy"),
    ("%m/%d/%Y", re.compile(r"^\d{2}/\d{2}/\d{4}$"), "MM/dd/yyyy"),
    ("%d/%m/%Y", re.compile(r"^\d{2}/\d{2}/\d{4}$"), "dd/MM/yyyy"),
    ("%d/%m/%y", re.compile(r"^\d{1,2}/\d{1,2}/\d{2}$"), "d/M/yy"),
    ("%Y/%m/%d", re.compile(r"^\d{4}/\d{2}/\d{2}$"), "yyyy/MM/dd"),
    ("%m-%d-%Y", re.compile(r"^\d{2}-\d{2}-\d{4}$"), "MM-dd-yyyy"),
    ("%d-%m-%Y", re.compile(r"^\d{2}-\d{2}-\d{4}$"), "dd-MM-yyyy"),
]


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value == ""


def values_differ(before: Any, after: Any) -> bool:
    """Inequality that treats two NaN cells as the same value."""
    if before is after:
        return False
    if is_blank(before) and is_blank(after) and type(before) is type(after):
        return False
    return before != after


def trim_value(value: Any, mode: str) -> Any:
    if not isinstance(value, str):
        return value
    if mode == TRIM_BOTH:
        return value.strip()
    if mode == TRIM_LEFT:
        return value.lstrip()
    if mode == TRIM_RIGHT:
        return value.rstrip()
    if mode == TRIM_NORMALIZE_SPACES:
        return " ".join(value.split())
    return value


def normalize_case(value: Any, mode: str) -> Any:
    if not isinstance(value, str):
        return value
    if mode == CASE_UPPER:
        return value.upper()
    if mode == CASE_LOWER:
        return value.lower()
    return value


def option_set(options: Iterable[str] | None, case: str = CASE_NONE) -> frozenset[str]:
    """Precompute the allowed-value set with the rule's case policy already applied."""
    return frozenset(normalize_case(str(option), case) for option in (options or ()))


def excel_serial_to_iso(serial: float) -> str:
    try:
        parsed = EXCEL_EPOCH + timedelta(days=int(serial))
    except (OverflowError, ValueError):
        return INVALID_DATE
    return parsed.strftime(ISO_DATE_FORMAT)


def _format_date(value: date) -> str:
    try:
        return value.strftime(ISO_DATE_FORMAT)
    except ValueError:
        return INVALID_DATE


def to_iso_date(value: Any) -> Any:
    """
    Convert an Excel serial, a native date, or a date string to ``yyyy-MM-dd``.

    Blank values pass through untouched. Anything that cannot be read as a
    date becomes the ``Invalid Date`` sentinel so the format validators flag it.
    """
    if is_blank(value):
        return value
    if isinstance(value, bool):
        return INVALID_DATE
    if isinstance(value, pd.Timestamp):
        return INVALID_DATE if pd.isna(value) else _format_date(value.to_pydatetime())
    if isinstance(value, (datetime, date)):
        return _format_date(value)
    if isinstance(value, (int, float)):
        return excel_serial_to_iso(value)

    text = str(value).strip()
    if not text:
        return value
    if NUMERIC_SERIAL_RE.fullmatch(text):
        converted = excel_serial_to_iso(float(text))
        if converted != INVALID_DATE:
            return converted

    for fmt, pattern, _label in DATE_FORMAT_PATTERNS:
        if not pattern.fullmatch(text):
            continue
        try:
            return datetime.strptime(text, fmt).strftime(ISO_DATE_FORMAT)
        except ValueError:
            continue

    parsed = pd.to_datetime(text, errors="coerce")
    if isinstance(parsed, pd.Timestamp) and not pd.isna(parsed):
        return _format_date(parsed.to_pydatetime())
    return INVALID_DATE


def _scalar_text(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def normalize_phone(value: Any) -> Any:
    """
    Keep digits plus one leading ``+``. ``00`` and single ``0`` trunk prefixes
    become ``+``; anything else gets ``+`` prepended.
    """
    if is_blank(value) or isinstance(value, bool):
        return value
    text = _scalar_text(value).strip()
    digits = re.sub(r"\D", "", text)
    if not digits:
        return ""
    if text.startswith("+"):
        return "+" + digits
    if digits.startswith("00"):
        return "+" + digits[2:]
    if digits.startswith("0"):
        return "+" + digits[1:]
    return "+" + digits


def normalize_country(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return re.sub(r"\s+", "", value).upper()


def normalize_employee_id(value: Any) -> Any:
    if is_blank(value) or isinstance(value, bool):
        return value
    return re.sub(r"[^a-z0-9\-#]", "", _scalar_text(value).lower())


NORMALIZERS = {
    NORMALIZE_PHONE: normalize_phone,
    NORMALIZE_DATE: to_iso_date,
    NORMALIZE_COUNTRY: normalize_country,
    NORMALIZE_EMPLOYEE_ID: normalize_employee_id,
}


def normalize_basic(value: Any, flags: Iterable[str]) -> Any:
    """Apply each normalisation flag in order."""
    for flag in flags:
        value = NORMALIZERS[flag](value)
    return value
