"""
engine.py - Validation core

run(rows, plan, tracker=None, row_offset=0) cleans every mapped field in the
fixed order trim -> case -> normalize, runs the plan's validators, and
enforces cross-row uniqueness. It returns new row dicts plus the errors and
changes found; input rows are never modified.

Row indices on the returned errors/changes are local to ``rows``. The
``row_offset`` is only used for uniqueness bookkeeping so that a tracker
shared across chunks records and reports global row numbers.

duplicate_errors(rows, plan) rescans cleaned rows for uniqueness only; the
editor uses it after each mutation so duplicate errors always point back to
the first occurrence.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Optional

from roster_doctor.normalization import (
    CASE_NONE,
    TRIM_NONE,
    is_blank,
    normalize_basic,
    normalize_case,
    trim_value,
    values_differ,
)

if TYPE_CHECKING:
    from roster_doctor.compiler import CompiledPlan
    from roster_doctor.schema import UniquePolicy

DUPLICATE_MESSAGE = "Duplicate value found in row {row}"

CHANGE_TRIMMED = "trimmed"
CHANGE_CASE = "caseChanged"
CHANGE_NORMALIZED = "normalized"
CHANGE_CUSTOM_HOOK = "customHook"
CHANGE_ROW_HOOK = "rowHook"

_CHANGE_WORDING = {
    CHANGE_TRIMMED: "trimmed whitespace",
    CHANGE_CASE: "changed case",
    CHANGE_NORMALIZED: "normalized format",
}


@dataclass
class ValidationError:
    row: int
    field: str
    message: str
    value: Any = None

    def shifted(self, offset: int) -> "ValidationError":
        return replace(self, row=self.row + offset)

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row, "field": self.field, "message": self.message, "value": self.value}


@dataclass
class CleaningChange:
    row: int
    field: str
    original_value: Any
    cleaned_value: Any
    change_type: list[str] = field(default_factory=list)
    description: str = ""

    def shifted(self, offset: int) -> "CleaningChange":
        return replace(self, row=self.row + offset)

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row,
            "field": self.field,
            "originalValue": self.original_value,
            "cleanedValue": self.cleaned_value,
            "changeType": list(self.change_type),
            "description": self.description,
        }


@dataclass
class CleaningResult:
    rows: list[dict[str, Any]]
    errors: list[ValidationError] = field(default_factory=list)
    changes: list[CleaningChange] = field(default_factory=list)


class UniqueTracker:
    """First-seen global row index per (target field, normalised value)."""

    def __init__(self) -> None:
        self._seen: dict[str, dict[str, int]] = {}

    @staticmethod
    def key_for(value: Any, policy: "UniquePolicy") -> Optional[str]:
        if policy.ignore_nulls and is_blank(value):
            return None
        text = "" if value is None else str(value)
        return text.lower() if policy.ignore_case else text

    def check(self, target: str, value: Any, policy: "UniquePolicy", global_row: int) -> Optional[int]:
        """Record the value, or return the first row that already holds it."""
        key = self.key_for(value, policy)
        if key is None:
            return None
        seen = self._seen.setdefault(target, {})
        first = seen.get(key)
        if first is None:
            seen[key] = global_row
            return None
        if first == global_row:
            return None
        return first

    def reset(self) -> None:
        self._seen.clear()

    def __len__(self) -> int:
        return sum(len(values) for values in self._seen.values())


def read_source_value(row: dict[str, Any], source_header: str, target: str) -> Any:
    if source_header in row:
        return row[source_header]
    return row.get(target)


def clean_value(value: Any, rule) -> tuple[Any, list[str]]:
    """Apply trim, case, then normalisation. Returns the value and the steps that altered it."""
    steps: list[str] = []
    current = value
    if rule.trim and rule.trim != TRIM_NONE:
        trimmed = trim_value(current, rule.trim)
        if values_differ(trimmed, current):
            steps.append(CHANGE_TRIMMED)
        current = trimmed
    if rule.case and rule.case != CASE_NONE:
        cased = normalize_case(current, rule.case)
        if values_differ(cased, current):
            steps.append(CHANGE_CASE)
        current = cased
    if rule.normalize:
        normalized = normalize_basic(current, rule.normalize)
        if values_differ(normalized, current):
            steps.append(CHANGE_NORMALIZED)
        current = normalized
    return current, steps


def describe_steps(target: str, steps: list[str]) -> str:
    wording = ", ".join(_CHANGE_WORDING.get(step, step) for step in steps)
    return f"Cleaned value for {target}: {wording}"


def run(
    rows: list[dict[str, Any]],
    plan: "CompiledPlan",
    tracker: Optional[UniqueTracker] = None,
    row_offset: int = 0,
) -> CleaningResult:
    if tracker is None and plan.has_uniqueness_checks:
        tracker = UniqueTracker()

    processed: list[dict[str, Any]] = []
    errors: list[ValidationError] = []
    changes: list[CleaningChange] = []

    for i, source_row in enumerate(rows):
        cleaned_row = dict(source_row)
        for source_header, meta in plan.by_source_header.items():
            original = read_source_value(source_row, source_header, meta.target)
            cleaned, steps = clean_value(original, meta.rule)
            if steps:
                changes.append(
                    CleaningChange(
                        row=i,
                        field=meta.target,
                        original_value=original,
                        cleaned_value=cleaned,
                        change_type=steps,
                        description=describe_steps(meta.target, steps),
                    )
                )
            if source_header != meta.target:
                cleaned_row.pop(source_header, None)
            cleaned_row[meta.target] = cleaned

        for meta in plan.by_source_header.values():
            value = cleaned_row.get(meta.target)
            for validator in meta.validators:
                message = validator(value)
                if message:
                    errors.append(ValidationError(i, meta.target, message, value))

            if meta.rule.unique is None or tracker is None:
                continue
            first = tracker.check(meta.target, value, meta.rule.unique, row_offset + i)
            if first is not None:
                errors.append(
                    ValidationError(i, meta.target, DUPLICATE_MESSAGE.format(row=first + 1), value)
                )

        processed.append(cleaned_row)

    return CleaningResult(rows=processed, errors=errors, changes=changes)


def is_duplicate_error(error: ValidationError) -> bool:
    return error.message.startswith(DUPLICATE_MESSAGE.split("{", 1)[0])


def duplicate_errors(rows: list[dict[str, Any]], plan: "CompiledPlan") -> list[ValidationError]:
    """Uniqueness errors for already-cleaned rows, exactly as a full run in row order reports them."""
    errors: list[ValidationError] = []
    if not plan.has_uniqueness_checks:
        return errors
    tracker = UniqueTracker()
    for i, row in enumerate(rows):
        for meta in plan.by_source_header.values():
            if meta.rule.unique is None:
                continue
            value = row.get(meta.target)
            first = tracker.check(meta.target, value, meta.rule.unique, i)
            if first is not None:
                errors.append(ValidationError(i, meta.target, DUPLICATE_MESSAGE.format(row=first + 1), value))
    return errors
