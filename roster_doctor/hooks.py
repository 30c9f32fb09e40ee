"""
hooks.py - Column and row hooks resolved by name

Column hooks take ``(value, context)`` and return the new value; ``context``
carries the target ``field`` and the current ``row``. Row hooks take
``(row, clean_up, settings)`` and return ``(new_row, [{"field", "message"}])``.
Both registries are plain dicts so callers can register their own hooks
before compiling a plan.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Callable, Optional

import phonenumbers
import pycountry
from phonenumbers import NumberParseException

from roster_doctor.engine import (
    CHANGE_CUSTOM_HOOK,
    CHANGE_ROW_HOOK,
    CleaningChange,
    CleaningResult,
    ValidationError,
)
from roster_doctor.normalization import is_blank, normalize_country, values_differ
from roster_doctor.schema import FIELDS

if TYPE_CHECKING:
    from roster_doctor.compiler import CompiledPlan
    from roster_doctor.settings import Settings

DEFAULT_CHANGE_CAP = 5000
DEFAULT_ALLOWED_EMAIL_DOMAINS = (
    ".com", ".org", ".net", ".edu", ".gov", ".io", ".co.za", ".co.uk",
)

ColumnHook = Callable[[Any, dict], Any]
RowHook = Callable[[dict, bool, Optional["Settings"]], tuple[dict, list[dict]]]


# ── Country and phone helpers ─────────────────────────────────────────────────

@lru_cache(maxsize=1)
def _country_index() -> dict[str, str]:
    index: dict[str, str] = {}
    for country in pycountry.countries:
        alpha_3 = country.alpha_3
        for attr in ("name", "official_name", "common_name"):
            label = getattr(country, attr, None)
            if label:
                index.setdefault(normalize_country(label), alpha_3)
        index[country.alpha_2] = alpha_3
        index[alpha_3] = alpha_3
    return index


def resolve_country_alias(value: Any, context: dict | None = None) -> Any:
    """Map alpha-2 codes and English country names to alpha-3; leave unknown values alone."""
    if not isinstance(value, str) or not value:
        return value
    return _country_index().get(normalize_country(value), value)


@lru_cache(maxsize=1)
def _alpha2_by_alpha3() -> dict[str, str]:
    return {country.alpha_3: country.alpha_2 for country in pycountry.countries}


def alpha3_to_alpha2(country_iso3: str) -> Optional[str]:
    if not country_iso3:
        return None
    return _alpha2_by_alpha3().get(country_iso3.strip().upper())


def check_valid_number(country_iso3: str, number: Any) -> dict[str, Any]:
    """
    Validate ``number`` for the country given as ISO alpha-3.

    Returns ``valid``, the country's ``callingCode`` and the calling code the
    number itself carries (``numberCallingCode``, only when it has one).
    """
    region = alpha3_to_alpha2(country_iso3 or "")
    calling_code = phonenumbers.country_code_for_region(region) if region else 0
    result = {
        "valid": False,
        "callingCode": str(calling_code) if calling_code else None,
        "numberCallingCode": None,
    }
    text = "" if number is None else str(number).strip()
    if not text:
        return result
    try:
        parsed = phonenumbers.parse(text, region)
    except NumberParseException:
        return result
    result["numberCallingCode"] = str(parsed.country_code)
    if region:
        result["valid"] = phonenumbers.is_valid_number_for_region(parsed, region)
    else:
        result["valid"] = phonenumbers.is_valid_number(parsed)
    return result


def number_update(field: str, number: Any, calling_code: Optional[str]) -> dict[str, Any]:
    """Rewrite ``number`` as ``+<calling code><national digits>`` and build its error."""
    text = "" if number is None else str(number).strip()
    shown_code = calling_code or "unknown"
    error = {
        "field": field,
        "message": (
            "Invalid number. The phone number needs to start with + followed by the country "
            f"code and be the correct length. In this case the country code is {shown_code}"
        ),
    }
    if not calling_code:
        return {"newNumber": text, "error": error}

    national = None
    if text.startswith("+"):
        try:
            national = str(phonenumbers.parse(text, None).national_number)
        except NumberParseException:
            national = None
    if national is None:
        national = re.sub(r"\D", "", text).lstrip("0")
        if national.startswith(calling_code) and text.startswith("+"):
            national = national[len(calling_code):]
    return {"newNumber": f"+{calling_code}{national}", "error": error}


# ── Row hook: onEntryInit ─────────────────────────────────────────────────────

def _check_phone_field(
    field: str,
    row: dict,
    updated: dict,
    country: str,
    baseline: dict[str, Any],
    clean_up: bool,
) -> tuple[dict, Optional[dict]]:
    value = row.get(field)
    if is_blank(value):
        return updated, None
    check = check_valid_number(country, value)
    mismatch = (
        str(value).startswith("+")
        and bool(check["numberCallingCode"])
        and bool(baseline["callingCode"])
        and check["numberCallingCode"] != baseline["callingCode"]
    )
    if check["valid"] and not mismatch:
        return updated, None
    rewrite = number_update(field, value, baseline["callingCode"])
    if clean_up:
        updated = {**updated, field: rewrite["newNumber"]}
    return updated, rewrite["error"]


def validate_phone_numbers(row: dict, clean_up: bool = False) -> tuple[dict, list[dict]]:
    country = "" if is_blank(row.get("country")) else str(row.get("country"))
    reference = row.get("mobileNumber")
    if is_blank(reference):
        reference = row.get("workPhoneNumber")
    baseline = check_valid_number(country, "" if is_blank(reference) else reference)
    updated = row
    errors: list[dict] = []
    for field in ("workPhoneNumber", "mobileNumber"):
        updated, error = _check_phone_field(field, row, updated, country, baseline, clean_up)
        if error:
            errors.append(error)
    return updated, errors


def validate_email_domain(row: dict, allowed_domains: tuple[str, ...]) -> Optional[dict]:
    email = str(row.get("email") or "")
    domain = email.split("@", 1)[1].lower() if "@" in email else ""
    if any(domain.endswith(allowed.lower()) for allowed in allowed_domains):
        return None
    return {
        "field": "email",
        "message": (
            "Invalid email domain. Only the following domains are allowed: "
            + ", ".join(allowed_domains)
        ),
    }


def copy_empty_number(row: dict) -> dict:
    mobile = row.get("mobileNumber")
    if not is_blank(row.get("workPhoneNumber")) or is_blank(mobile):
        return row
    country = "" if is_blank(row.get("country")) else str(row.get("country"))
    if check_valid_number(country, mobile)["valid"]:
        return {**row, "workPhoneNumber": str(mobile)}
    return row


def on_entry_init(row: dict, clean_up: bool = False, settings: Optional["Settings"] = None) -> tuple[dict, list[dict]]:
    allowed = settings.allowed_email_domains if settings is not None else DEFAULT_ALLOWED_EMAIL_DOMAINS
    updated = row
    errors: list[dict] = []

    if not is_blank(updated.get("mobileNumber")):
        updated, phone_errors = validate_phone_numbers(updated, clean_up)
        errors.extend(phone_errors)

    if not is_blank(updated.get("email")):
        error = validate_email_domain(updated, tuple(allowed))
        if error:
            errors.append(error)

    if not is_blank(updated.get("mobileNumber")):
        updated = copy_empty_number(updated)

    return updated, errors


COLUMN_HOOKS: dict[str, ColumnHook] = {
    "resolveCountryAlias": resolve_country_alias,
}

ROW_HOOKS: dict[str, RowHook] = {
    "onEntryInit": on_entry_init,
}


def register_column_hook(hook_id: str, hook: ColumnHook) -> None:
    COLUMN_HOOKS[hook_id] = hook


def register_row_hook(hook_id: str, hook: RowHook) -> None:
    ROW_HOOKS[hook_id] = hook


# ── Hook layer ────────────────────────────────────────────────────────────────

def apply(
    rows: list[dict[str, Any]],
    plan: "CompiledPlan",
    clean_up: bool = False,
    *,
    settings: Optional["Settings"] = None,
    row_offset: int = 0,
) -> CleaningResult:
    """
    Run column hooks, then row hooks, over cleaned rows.

    Indices on the returned errors/changes are local to ``rows``; ``row_offset``
    only feeds the human-readable change descriptions. At most ``change_cap``
    changes are recorded per call; further mutations still apply.
    """
    cap = settings.change_cap if settings is not None else DEFAULT_CHANGE_CAP
    out_rows: list[dict[str, Any]] = []
    errors: list[ValidationError] = []
    changes: list[CleaningChange] = []

    def record(change: CleaningChange) -> None:
        if len(changes) < cap:
            changes.append(change)

    for i, row in enumerate(rows):
        current = row
        for meta in plan.by_source_header.values():
            hook_id = meta.rule.column_hook_id
            if not hook_id:
                continue
            before = current.get(meta.target)
            after = COLUMN_HOOKS[hook_id](before, {"field": meta.target, "row": current})
            if values_differ(before, after):
                current = {**current, meta.target: after}
                record(
                    CleaningChange(
                        row=i,
                        field=meta.target,
                        original_value=before,
                        cleaned_value=after,
                        change_type=[CHANGE_CUSTOM_HOOK],
                        description=f"Column hook {hook_id} applied to {meta.target}",
                    )
                )

        for hook_id in plan.row_hook_ids:
            before_row = current
            current, hook_errors = ROW_HOOKS[hook_id](current, clean_up, settings)
            for problem in hook_errors:
                errors.append(
                    ValidationError(i, problem["field"], problem["message"], current.get(problem["field"]))
                )
            for name in FIELDS:
                if values_differ(before_row.get(name), current.get(name)):
                    record(
                        CleaningChange(
                            row=i,
                            field=name,
                            original_value=before_row.get(name),
                            cleaned_value=current.get(name),
                            change_type=[CHANGE_ROW_HOOK],
                            description=f"Row hook {hook_id} applied to row {row_offset + i + 1}",
                        )
                    )

        out_rows.append(current)

    return CleaningResult(rows=out_rows, errors=errors, changes=changes)
