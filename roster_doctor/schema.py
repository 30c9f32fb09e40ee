"""
schema.py - Target fields, cleaning rules, and structural constraints

The catalog is plain data. Executable behaviour is referenced by name only
(``column_hook_id`` and the row hook ids) and resolved through the registries
in ``roster_doctor.hooks``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Optional

from roster_doctor.normalization import (
    CASE_LOWER,
    CASE_NONE,
    CASE_UPPER,
    COUNTRY_ISO3_RE,
    EMAIL_RE,
    EMPLOYEE_ID_RE,
    ISO_DATE_RE,
    NORMALIZE_COUNTRY,
    NORMALIZE_DATE,
    NORMALIZE_EMPLOYEE_ID,
    NORMALIZE_PHONE,
    TRIM_BOTH,
    TRIM_NONE,
    TRIM_NORMALIZE_SPACES,
    is_blank,
)


class ConfigurationError(ValueError):
    """Raised when a mapping or rule set cannot be compiled."""


FIELDS = (
    "employeeId",
    "firstName",
    "lastName",
    "email",
    "startDate",
    "department",
    "division",
    "position",
    "region",
    "mobileNumber",
    "workPhoneNumber",
    "gender",
    "country",
    "city",
    "dateOfBirth",
    "language",
)

TYPE_STRING = "string"
TYPE_EMAIL = "email"
TYPE_DATE = "date"
TYPE_PHONE = "phone"
TYPE_CATEGORY = "category"
TYPE_COUNTRY = "country"
TYPE_ID = "id"

GENDER_OPTIONS = ("male", "female", "non-binary", "other", "prefer not to say")


@dataclass(frozen=True)
class UniquePolicy:
    ignore_case: bool = False
    ignore_nulls: bool = False


@dataclass(frozen=True)
class CleaningRule:
    type: str = TYPE_STRING
    trim: str = TRIM_NONE
    case: str = CASE_NONE
    normalize: tuple[str, ...] = ()
    options: Optional[tuple[str, ...]] = None
    regex: Optional[str] = None
    column_hook_id: Optional[str] = None
    unique: Optional[UniquePolicy] = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["normalize"] = list(self.normalize)
        payload["options"] = list(self.options) if self.options is not None else None
        return payload


CLEANING_RULES: dict[str, CleaningRule] = {
    "employeeId": CleaningRule(
        type=TYPE_ID,
        trim=TRIM_BOTH,
        case=CASE_LOWER,
        normalize=(NORMALIZE_EMPLOYEE_ID,),
        regex=EMPLOYEE_ID_RE.pattern,
        unique=UniquePolicy(ignore_case=True, ignore_nulls=True),
    ),
    "firstName": CleaningRule(trim=TRIM_NORMALIZE_SPACES),
    "lastName": CleaningRule(trim=TRIM_NORMALIZE_SPACES),
    "email": CleaningRule(
        type=TYPE_EMAIL,
        trim=TRIM_BOTH,
        case=CASE_LOWER,
        unique=UniquePolicy(ignore_case=True, ignore_nulls=True),
    ),
    "startDate": CleaningRule(
        type=TYPE_DATE, trim=TRIM_BOTH, normalize=(NORMALIZE_DATE,), regex=ISO_DATE_RE.pattern
    ),
    "department": CleaningRule(trim=TRIM_BOTH),
    "division": CleaningRule(trim=TRIM_BOTH),
    "position": CleaningRule(trim=TRIM_BOTH),
    "region": CleaningRule(trim=TRIM_BOTH),
    "mobileNumber": CleaningRule(type=TYPE_PHONE, trim=TRIM_BOTH, normalize=(NORMALIZE_PHONE,)),
    "workPhoneNumber": CleaningRule(type=TYPE_PHONE, trim=TRIM_BOTH, normalize=(NORMALIZE_PHONE,)),
    "gender": CleaningRule(
        type=TYPE_CATEGORY, trim=TRIM_BOTH, case=CASE_LOWER, options=GENDER_OPTIONS
    ),
    "country": CleaningRule(
        type=TYPE_COUNTRY,
        trim=TRIM_BOTH,
        case=CASE_UPPER,
        normalize=(NORMALIZE_COUNTRY,),
        column_hook_id="resolveCountryAlias",
    ),
    "city": CleaningRule(trim=TRIM_BOTH),
    "dateOfBirth": CleaningRule(
        type=TYPE_DATE, trim=TRIM_BOTH, normalize=(NORMALIZE_DATE,), regex=ISO_DATE_RE.pattern
    ),
    "language": CleaningRule(trim=TRIM_BOTH),
}

DEFAULT_ROW_HOOK_IDS = ("onEntryInit",)


# ── Structural constraints ────────────────────────────────────────────────────

@dataclass(frozen=True)
class FieldConstraint:
    label: str
    required: bool = True
    max_length: Optional[int] = None
    max_message: Optional[str] = None
    exact_length: Optional[int] = None
    length_message: Optional[str] = None
    pattern: Any = None
    pattern_message: Optional[str] = None
    email: bool = False


STRUCTURAL_SCHEMA: dict[str, FieldConstraint] = {
    "employeeId": FieldConstraint(
        label="Employee ID",
        pattern=EMPLOYEE_ID_RE,
        pattern_message=(
            "Employee ID must contain only lowercase letters, numbers, hyphens, and hash symbols"
        ),
    ),
    "firstName": FieldConstraint(
        label="First name", max_length=100, max_message="First name is too long"
    ),
    "lastName": FieldConstraint(
        label="Last name", max_length=100, max_message="Last name is too long"
    ),
    "email": FieldConstraint(
        label="Email", email=True, max_length=255, max_message="Email is too long"
    ),
    "startDate": FieldConstraint(
        label="Start date",
        pattern=ISO_DATE_RE,
        pattern_message="Start date must be in YYYY-MM-DD format",
    ),
    "department": FieldConstraint(label="Department"),
    "division": FieldConstraint(label="Division"),
    "position": FieldConstraint(label="Position"),
    "region": FieldConstraint(label="Region"),
    "mobileNumber": FieldConstraint(label="Mobile number"),
    "workPhoneNumber": FieldConstraint(label="Work phone number", required=False),
    "gender": FieldConstraint(label="Gender"),
    "country": FieldConstraint(
        label="Country",
        exact_length=3,
        length_message="Country must be a 3-letter ISO code",
        pattern=COUNTRY_ISO3_RE,
        pattern_message="Country must be a valid 3-letter ISO code",
    ),
    "city": FieldConstraint(label="City"),
    "dateOfBirth": FieldConstraint(
        label="Date of birth",
        pattern=ISO_DATE_RE,
        pattern_message="Date of birth must be in YYYY-MM-DD format",
    ),
    "language": FieldConstraint(label="Language"),
}

REQUIRED_FIELDS = tuple(name for name in FIELDS if STRUCTURAL_SCHEMA[name].required)

FIELD_DESCRIPTIONS = {
    "employeeId": "ID of the employee. Needs to be unique, lowercase, and contain only letters and numbers.",
    "firstName": "First Name of the employee.",
    "lastName": "Last Name of the employee.",
    "email": "Email of the employee.",
    "startDate": "Start Date of the employee.",
    "department": "Department of the employee.",
    "division": "Division of the employee.",
    "position": "Position of the employee.",
    "region": "Region of the employee.",
    "mobileNumber": "Mobile Number of the employee.",
    "workPhoneNumber": "Work Phone Number of the employee.",
    "gender": "Gender of the employee.",
    "country": "Country of the employee.",
    "city": "City of the employee.",
    "dateOfBirth": "Date of Birth of the employee.",
    "language": "Language of the employee.",
}


def get_rule(target: str, rules: dict[str, CleaningRule] | None = None) -> CleaningRule:
    catalog = CLEANING_RULES if rules is None else rules
    rule = catalog.get(target)
    if rule is None:
        raise ConfigurationError(f"No cleaning rule found for target: {target}")
    return rule


def check_field(name: str, value: Any) -> list[str]:
    """Return the structural messages for one field value (empty list when valid)."""
    constraint = STRUCTURAL_SCHEMA[name]
    if is_blank(value) and not isinstance(value, str):
        return [f"{constraint.label} is required"] if constraint.required else []

    text = value if isinstance(value, str) else str(value)
    if not text.strip():
        return [f"{constraint.label} cannot be empty"] if constraint.required else []

    messages: list[str] = []
    if constraint.email and not EMAIL_RE.fullmatch(text):
        messages.append("Invalid email format")
    if constraint.max_length is not None and len(text) > constraint.max_length:
        messages.append(constraint.max_message or f"{constraint.label} is too long")
    if constraint.exact_length is not None and len(text) != constraint.exact_length:
        messages.append(constraint.length_message or f"{constraint.label} has the wrong length")
    if constraint.pattern is not None and not constraint.pattern.search(text):
        messages.append(constraint.pattern_message or f"{constraint.label} has an invalid format")
    return messages


def check_row(row: dict[str, Any]) -> list[tuple[str, str, Any]]:
    """Structural pass over every catalog field. Returns ``(field, message, value)`` triples."""
    problems = []
    for name in FIELDS:
        value = row.get(name)
        for message in check_field(name, value):
            problems.append((name, message, value))
    return problems
