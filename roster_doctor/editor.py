"""
editor.py - Incremental edits over a validated table, with undo/redo

Every mutation re-validates only the affected rows against the current plan,
merges the result into a new TableState, and pushes a whole-table snapshot
pair onto the history. Grouped errors/changes are always rebuilt from the
flat lists, never patched. Duplicate errors are the one cross-row result: they
are recomputed over the whole table after every mutation, so an edit, insert
or delete leaves them exactly as a full run would.

Rows inside a TableState are treated as immutable: the pipeline always builds
new row dicts, so consecutive snapshots can share them safely.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Pattern

from roster_doctor.compiler import CompiledPlan
from roster_doctor.engine import CleaningChange, ValidationError, duplicate_errors, is_duplicate_error
from roster_doctor.grouping import group_changes_by_row, group_errors_by_row
from roster_doctor.pipeline import ValidationChunk, ValidationProgress, validate_chunk
from roster_doctor.settings import Settings

MODE_REPLACE = "replace"
MODE_ADD = "add"
FIELD_ALL = "all"
HISTORY_SIZE = 100


@dataclass(frozen=True)
class TableState:
    rows: tuple[dict[str, Any], ...] = ()
    errors: tuple[ValidationError, ...] = ()
    changes: tuple[CleaningChange, ...] = ()
    grouped_errors: tuple[dict[str, Any], ...] = ()
    grouped_changes: tuple[dict[str, Any], ...] = ()

    @classmethod
    def build(
        cls,
        rows: Iterable[dict[str, Any]],
        errors: Iterable[ValidationError],
        changes: Iterable[CleaningChange],
    ) -> "TableState":
        errors = tuple(errors)
        changes = tuple(changes)
        return cls(
            rows=tuple(rows),
            errors=errors,
            changes=changes,
            grouped_errors=tuple(group_errors_by_row(errors)),
            grouped_changes=tuple(group_changes_by_row(changes)),
        )

    @classmethod
    def from_progress(cls, progress: ValidationProgress) -> "TableState":
        return cls.build(progress.rows, progress.errors, progress.changes)

    def errors_for(self, row: int) -> list[ValidationError]:
        return [error for error in self.errors if error.row == row]


@dataclass
class HistoryEntry:
    label: str
    prev: TableState
    next: TableState


class TableHistory:
    """Bounded undo/redo stack; pushing truncates the redo tail, overflow evicts the oldest entry."""

    def __init__(self, capacity: int = HISTORY_SIZE) -> None:
        self.capacity = capacity
        self._entries: list[HistoryEntry] = []
        self._cursor = 0

    def push(self, label: str, prev: TableState, next_state: TableState) -> None:
        del self._entries[self._cursor:]
        self._entries.append(HistoryEntry(label, prev, next_state))
        if len(self._entries) > self.capacity:
            del self._entries[: len(self._entries) - self.capacity]
        self._cursor = len(self._entries)

    def undo(self) -> Optional[TableState]:
        if not self.can_undo:
            return None
        self._cursor -= 1
        return self._entries[self._cursor].prev

    def redo(self) -> Optional[TableState]:
        if not self.can_redo:
            return None
        entry = self._entries[self._cursor]
        self._cursor += 1
        return entry.next

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return self._cursor < len(self._entries)

    def labels(self) -> list[str]:
        return [entry.label for entry in self._entries]

    def clear(self) -> None:
        self._entries.clear()
        self._cursor = 0

    def __len__(self) -> int:
        return len(self._entries)


# ── Find / replace helpers ────────────────────────────────────────────────────

_REGEX_LITERAL = re.compile(r"^/(.*)/([a-z]*)$", re.DOTALL)
_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


def to_regex(query: str, exact: bool = False) -> Pattern[str]:
    """``/pattern/flags`` is a regex; anything else is a literal (whole-cell when ``exact``)."""
    literal = _REGEX_LITERAL.match(query)
    if literal and not exact:
        flags = 0
        for flag in literal.group(2):
            flags |= _REGEX_FLAGS.get(flag, 0)
        return re.compile(literal.group(1), flags)
    escaped = re.escape(query)
    return re.compile(f"^{escaped}$" if exact else escaped)


def find_matches(
    rows: Iterable[dict[str, Any]],
    query: str,
    field: str = FIELD_ALL,
    exact: bool = False,
) -> set[tuple[int, str]]:
    pattern = to_regex(query, exact)
    matches: set[tuple[int, str]] = set()
    for i, row in enumerate(rows):
        keys = list(row) if field == FIELD_ALL else [field]
        for key in keys:
            value = row.get(key)
            if value is not None and pattern.search(str(value)):
                matches.add((i, key))
    return matches


def _contiguous_runs(indices: list[int]) -> list[list[int]]:
    runs: list[list[int]] = []
    for index in sorted(indices):
        if runs and index == runs[-1][-1] + 1:
            runs[-1].append(index)
        else:
            runs.append([index])
    return runs


# ── Editor ────────────────────────────────────────────────────────────────────

class TableEditor:
    def __init__(
        self,
        plan: CompiledPlan,
        state: TableState,
        *,
        clean_up: bool = False,
        settings: Optional[Settings] = None,
        history: Optional[TableHistory] = None,
    ) -> None:
        self.plan = plan
        self.settings = settings or Settings()
        self.clean_up = clean_up
        self.history = history or TableHistory(self.settings.history_size)
        self._state = state

    @classmethod
    def from_progress(cls, plan: CompiledPlan, progress: ValidationProgress, **kwargs) -> "TableEditor":
        return cls(plan, TableState.from_progress(progress), **kwargs)

    @property
    def state(self) -> TableState:
        return self._state

    def _commit(self, label: str, next_state: TableState, push_history: bool = True) -> TableState:
        if push_history:
            self.history.push(label, self._state, next_state)
        self._state = next_state
        return next_state

    def _check_index(self, index: int, *, allow_end: bool = False) -> None:
        limit = len(self._state.rows) + (1 if allow_end else 0)
        if not 0 <= index < limit:
            raise IndexError(f"Row index {index} out of range for {len(self._state.rows)} rows")

    def _validate(self, rows: list[dict[str, Any]], start_row: int) -> ValidationChunk:
        return validate_chunk(
            rows,
            self.plan,
            start_row,
            clean_up=self.clean_up,
            settings=self.settings,
        )

    def _build(
        self,
        rows: list[dict[str, Any]],
        errors: list[ValidationError],
        changes: list[CleaningChange],
    ) -> TableState:
        """Merge results, then rescan uniqueness over the whole table in row order."""
        if self.plan.has_uniqueness_checks:
            unique = set(self.plan.unique_targets())
            errors = [e for e in errors if not (e.field in unique and is_duplicate_error(e))]
            errors += duplicate_errors(rows, self.plan)
        return TableState.build(rows, errors, changes)

    def _insert(self, row_data: dict[str, Any], index: int, label: str, push_history: bool) -> TableState:
        current = self._state
        chunk = self._validate([row_data], index)
        rows = list(current.rows)
        rows.insert(index, chunk.rows[0])
        errors = [e if e.row < index else e.shifted(1) for e in current.errors]
        changes = [c if c.row < index else c.shifted(1) for c in current.changes]
        next_state = self._build(rows, errors + chunk.errors, changes + chunk.changes)
        return self._commit(label, next_state, push_history)

    def edit_row(
        self,
        row_data: dict[str, Any],
        row_index: int,
        mode: str = MODE_REPLACE,
        label: Optional[str] = None,
        *,
        push_history: bool = True,
    ) -> TableState:
        if mode == MODE_ADD:
            self._check_index(row_index, allow_end=True)
            return self._insert(row_data, row_index, label or f"Add row {row_index + 1}", push_history)
        if mode != MODE_REPLACE:
            raise ValueError(f"Unknown edit mode: {mode}")

        self._check_index(row_index)
        current = self._state
        chunk = self._validate([row_data], row_index)
        rows = list(current.rows)
        rows[row_index] = chunk.rows[0]
        errors = [e for e in current.errors if e.row != row_index] + chunk.errors
        changes = [c for c in current.changes if c.row != row_index] + chunk.changes
        next_state = self._build(rows, errors, changes)
        return self._commit(label or f"Edit row {row_index + 1}", next_state, push_history)

    def delete_rows(self, indices: Iterable[int]) -> TableState:
        doomed = sorted(set(indices))
        for index in doomed:
            self._check_index(index)
        current = self._state
        removed = set(doomed)
        compaction: dict[int, int] = {}
        for old in range(len(current.rows)):
            if old not in removed:
                compaction[old] = len(compaction)
        rows = [row for i, row in enumerate(current.rows) if i not in removed]
        errors = [e.shifted(compaction[e.row] - e.row) for e in current.errors if e.row not in removed]
        changes = [c.shifted(compaction[c.row] - c.row) for c in current.changes if c.row not in removed]
        next_state = self._build(rows, errors, changes)
        label = "Delete rows " + ", ".join(str(i + 1) for i in doomed)
        return self._commit(label, next_state)

    def duplicate_row(self, index: int) -> TableState:
        self._check_index(index)
        source = dict(self._state.rows[index])
        return self._insert(source, index + 1, f"Duplicate row {index + 1}", True)

    def find(self, query: str, field: str = FIELD_ALL, exact: bool = False) -> set[tuple[int, str]]:
        return find_matches(self._state.rows, query, field, exact)

    def find_replace(self, query: str, replacement: str, field: str = FIELD_ALL, exact: bool = False) -> int:
        """Replace matches cell by cell, re-validate affected rows in runs. Returns cells changed."""
        pattern = to_regex(query, exact)
        current = self._state
        edited: dict[int, dict[str, Any]] = {}
        cells = 0
        for i, row in enumerate(current.rows):
            keys = list(row) if field == FIELD_ALL else [field]
            for key in keys:
                value = row.get(key)
                if value is None:
                    continue
                text = str(value)
                replaced = pattern.sub(replacement, text)
                if replaced != text:
                    edited.setdefault(i, dict(row))[key] = replaced
                    cells += 1
        if not edited:
            return 0

        rows = list(current.rows)
        fresh_errors: list[ValidationError] = []
        fresh_changes: list[CleaningChange] = []
        for run in _contiguous_runs(list(edited)):
            chunk = self._validate([edited[i] for i in run], run[0])
            for offset, row in enumerate(chunk.rows):
                rows[run[0] + offset] = row
            fresh_errors.extend(chunk.errors)
            fresh_changes.extend(chunk.changes)

        errors = [e for e in current.errors if e.row not in edited] + fresh_errors
        changes = [c for c in current.changes if c.row not in edited] + fresh_changes
        next_state = self._build(rows, errors, changes)
        self._commit(f'Replace "{query}" → "{replacement}" ({cells} cells)', next_state)
        return cells

    def undo(self) -> bool:
        previous = self.history.undo()
        if previous is None:
            return False
        self._state = previous
        return True

    def redo(self) -> bool:
        following = self.history.redo()
        if following is None:
            return False
        self._state = following
        return True
