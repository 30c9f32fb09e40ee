"""
compiler.py - Turns a confirmed mapping into a CompiledPlan

compile_plan resolves each mapped header to its catalog rule, pre-builds the
option set, regex and validator closures for it, and checks that every hook
id it references is registered. The plan is read-only and keyed by source
header; rebuild it whenever the mapping changes.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Pattern

from roster_doctor.hooks import COLUMN_HOOKS, ROW_HOOKS
from roster_doctor.normalization import is_blank, normalize_case, option_set
from roster_doctor.schema import (
    CLEANING_RULES,
    DEFAULT_ROW_HOOK_IDS,
    CleaningRule,
    ConfigurationError,
    get_rule,
)

logger = logging.getLogger(__name__)

COMPLEXITY_LOW = "low"
COMPLEXITY_MEDIUM = "medium"
COMPLEXITY_HIGH = "high"

Validator = Callable[[Any], Optional[str]]


@dataclass(frozen=True)
class FieldPlan:
    source_header: str
    target: str
    rule: CleaningRule
    option_set: Optional[frozenset[str]] = None
    regex: Optional[Pattern[str]] = None
    validators: tuple[Validator, ...] = ()


@dataclass(frozen=True)
class CompiledPlan:
    by_source_header: dict[str, FieldPlan]
    by_target: dict[str, CleaningRule]
    row_hook_ids: tuple[str, ...] = ()
    has_uniqueness_checks: bool = False
    has_complex_hooks: bool = False
    estimated_complexity: str = COMPLEXITY_LOW
    structural_checks: bool = True
    mapping: dict[str, str] = field(default_factory=dict)

    def unique_targets(self) -> list[str]:
        return [meta.target for meta in self.by_source_header.values() if meta.rule.unique]

    def summary(self) -> dict[str, Any]:
        return {
            "fields": {meta.source_header: meta.target for meta in self.by_source_header.values()},
            "rowHooks": list(self.row_hook_ids),
            "hasUniquenessChecks": self.has_uniqueness_checks,
            "hasComplexHooks": self.has_complex_hooks,
            "estimatedComplexity": self.estimated_complexity,
        }


def _option_validator(allowed: frozenset[str], case: str) -> Validator:
    def validate(value: Any) -> Optional[str]:
        if is_blank(value):
            return None
        key = normalize_case(value, case) if isinstance(value, str) else str(value)
        return None if key in allowed else f"Invalid option: {value}"

    return validate


def _regex_validator(pattern: Pattern[str]) -> Validator:
    def validate(value: Any) -> Optional[str]:
        if not isinstance(value, str) or value == "":
            return None
        return None if pattern.search(value) else "Invalid format"

    return validate


def compile_plan(
    mapping: dict[str, str],
    rules: dict[str, CleaningRule] | None = None,
    row_hook_ids: tuple[str, ...] = DEFAULT_ROW_HOOK_IDS,
    *,
    structural_checks: bool = True,
) -> CompiledPlan:
    """
    Resolve every mapped header to its rule and pre-build its validators.

    Raises ConfigurationError for a target without a rule, a target claimed by
    two headers, or a hook id missing from the registries. These are catalog
    or mapping bugs and must abort rather than silently skip a field.
    """
    catalog = CLEANING_RULES if rules is None else rules
    by_source_header: dict[str, FieldPlan] = {}
    by_target: dict[str, CleaningRule] = {}

    for source_header, target in mapping.items():
        if target in by_target:
            raise ConfigurationError(f"Target field {target} is mapped more than once")
        rule = get_rule(target, catalog)
        if rule.column_hook_id and rule.column_hook_id not in COLUMN_HOOKS:
            raise ConfigurationError(f"Unknown column hook: {rule.column_hook_id}")

        validators: list[Validator] = []
        allowed = None
        if rule.options is not None:
            allowed = option_set(rule.options, rule.case)
            validators.append(_option_validator(allowed, rule.case))
        pattern = None
        if rule.regex:
            pattern = re.compile(rule.regex)
            validators.append(_regex_validator(pattern))

        by_source_header[source_header] = FieldPlan(
            source_header=source_header,
            target=target,
            rule=rule,
            option_set=allowed,
            regex=pattern,
            validators=tuple(validators),
        )
        by_target[target] = rule

    for hook_id in row_hook_ids:
        if hook_id not in ROW_HOOKS:
            raise ConfigurationError(f"Unknown row hook: {hook_id}")

    has_uniqueness_checks = any(meta.rule.unique for meta in by_source_header.values())
    has_complex_hooks = bool(row_hook_ids) or any(
        meta.rule.column_hook_id for meta in by_source_header.values()
    )
    complexity = COMPLEXITY_LOW
    if has_uniqueness_checks or has_complex_hooks:
        complexity = COMPLEXITY_MEDIUM
    if has_uniqueness_checks and has_complex_hooks:
        complexity = COMPLEXITY_HIGH

    plan = CompiledPlan(
        by_source_header=by_source_header,
        by_target=by_target,
        row_hook_ids=tuple(row_hook_ids),
        has_uniqueness_checks=has_uniqueness_checks,
        has_complex_hooks=has_complex_hooks,
        estimated_complexity=complexity,
        structural_checks=structural_checks,
        mapping=dict(mapping),
    )
    logger.debug("Compiled plan: %s", plan.summary())
    return plan
