"""Collapse flat error/change lists into per-row views for presentation."""

from __future__ import annotations

from typing import Any, Iterable

from roster_doctor.engine import CleaningChange, ValidationError


def _group(entries: Iterable[tuple[int, str, str, Any]]) -> list[dict[str, Any]]:
    by_row: dict[int, dict[str, dict[str, Any]]] = {}
    for row, field, message, value in entries:
        fields = by_row.setdefault(row, {})
        entry = fields.get(field)
        if entry is None:
            fields[field] = {"field": field, "messages": [message], "value": value}
        else:
            entry["messages"].append(message)
            entry["value"] = value
    return [
        {"row": row, "fields": list(by_row[row].values())}
        for row in sorted(by_row)
    ]


def group_errors_by_row(errors: Iterable[ValidationError]) -> list[dict[str, Any]]:
    """Sorted by row; within a row, fields keep first-seen order and merge their messages."""
    return _group((e.row, e.field, e.message, e.value) for e in errors)


def group_changes_by_row(changes: Iterable[CleaningChange]) -> list[dict[str, Any]]:
    return _group((c.row, c.field, c.description, c.cleaned_value) for c in changes)


def flatten_grouped(grouped: list[dict[str, Any]]) -> list[tuple[int, str, str]]:
    return [
        (group["row"], entry["field"], message)
        for group in grouped
        for entry in group["fields"]
        for message in entry["messages"]
    ]


def grouped_field_messages(grouped: list[dict[str, Any]], row: int, field: str) -> list[str]:
    for group in grouped:
        if group["row"] != row:
            continue
        for entry in group["fields"]:
            if entry["field"] == field:
                return list(entry["messages"])
    return []
