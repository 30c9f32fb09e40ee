"""
pipeline.py - Chunked validation over a full row set

validate_chunk runs the validation core, the hook layer and the structural
pass on one contiguous slice and returns every error/change with global row
indices. validate_all walks the whole input in size-adaptive chunks, sharing
one uniqueness tracker, yielding to the event loop between chunks and
reporting debounced progress. run_all is the blocking convenience wrapper.

Chunks are processed strictly in order: the shared tracker has to see rows in
row order for "first occurrence" to mean the lowest row index.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from roster_doctor import engine, hooks
from roster_doctor.compiler import CompiledPlan, compile_plan
from roster_doctor.engine import CleaningChange, UniqueTracker, ValidationError
from roster_doctor.grouping import group_changes_by_row, group_errors_by_row
from roster_doctor.schema import check_row
from roster_doctor.settings import Settings

logger = logging.getLogger(__name__)

ProgressCallback = Callable[["ValidationProgress"], None]


@dataclass
class ValidationChunk:
    start_row: int
    end_row: int
    rows: list[dict[str, Any]]
    errors: list[ValidationError] = field(default_factory=list)
    changes: list[CleaningChange] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "startRow": self.start_row,
            "endRow": self.end_row,
            "rows": self.rows,
            "errors": [error.to_dict() for error in self.errors],
            "changes": [change.to_dict() for change in self.changes],
        }


@dataclass
class ValidationProgress:
    total_rows: int
    processed_rows: int = 0
    error_count: int = 0
    change_count: int = 0
    estimated_time_remaining: float = 0.0
    is_complete: bool = False
    chunks: list[ValidationChunk] = field(default_factory=list)
    errors: list[ValidationError] = field(default_factory=list)
    changes: list[CleaningChange] = field(default_factory=list)
    grouped_errors: list[dict[str, Any]] = field(default_factory=list)
    grouped_changes: list[dict[str, Any]] = field(default_factory=list)

    @property
    def rows(self) -> list[dict[str, Any]]:
        return [row for chunk in self.chunks for row in chunk.rows]

    def metadata(self) -> dict[str, Any]:
        return {
            "totalRows": self.total_rows,
            "processedRows": self.processed_rows,
            "errorCount": self.error_count,
            "changeCount": self.change_count,
            "estimatedTimeRemaining": self.estimated_time_remaining,
        }

    def to_dict(self, *, include_rows: bool = True) -> dict[str, Any]:
        payload = {
            "metadata": self.metadata(),
            "isComplete": self.is_complete,
            "errors": [error.to_dict() for error in self.errors],
            "changes": [change.to_dict() for change in self.changes],
            "groupedErrors": self.grouped_errors,
            "groupedChanges": self.grouped_changes,
        }
        if include_rows:
            payload["rows"] = self.rows
        return payload


def pick_chunk_size(column_count: int) -> int:
    if column_count <= 0:
        return 1000
    if column_count <= 8:
        return 3000
    if column_count <= 16:
        return 2000
    return 1000


def column_count(rows: list[dict[str, Any]]) -> int:
    return len(rows[0]) if rows else 0


class ProgressDebouncer:
    """Forward at most one update per ``interval_ms``; ``flush`` always delivers the latest."""

    def __init__(self, callback: Optional[ProgressCallback], interval_ms: int = 0, clock=time.monotonic) -> None:
        self._callback = callback
        self._interval = max(interval_ms, 0) / 1000.0
        self._clock = clock
        self._last: Optional[float] = None
        self._pending: Optional[ValidationProgress] = None

    def push(self, progress: ValidationProgress) -> None:
        if self._callback is None:
            return
        now = self._clock()
        if self._last is None or now - self._last >= self._interval:
            self._last = now
            self._pending = None
            self._callback(progress)
        else:
            self._pending = progress

    def flush(self, progress: Optional[ValidationProgress] = None) -> None:
        if self._callback is None:
            return
        latest = progress or self._pending
        self._pending = None
        if latest is not None:
            self._last = self._clock()
            self._callback(latest)


def validate_chunk(
    rows: list[dict[str, Any]],
    plan: CompiledPlan,
    start_row: int = 0,
    *,
    tracker: Optional[UniqueTracker] = None,
    clean_up: bool = False,
    settings: Optional[Settings] = None,
) -> ValidationChunk:
    core = engine.run(rows, plan, tracker, row_offset=start_row)
    hooked = hooks.apply(core.rows, plan, clean_up, settings=settings, row_offset=start_row)

    errors = list(core.errors) + list(hooked.errors)
    structural = plan.structural_checks and (settings is None or settings.structural_checks)
    if structural:
        for i, row in enumerate(hooked.rows):
            for name, message, value in check_row(row):
                errors.append(ValidationError(i, name, message, value))

    return ValidationChunk(
        start_row=start_row,
        end_row=start_row + len(rows),
        rows=hooked.rows,
        errors=[error.shifted(start_row) for error in errors],
        changes=[change.shifted(start_row) for change in list(core.changes) + list(hooked.changes)],
    )


async def validate_all(
    rows: list[dict[str, Any]],
    plan: CompiledPlan,
    on_progress: Optional[ProgressCallback] = None,
    *,
    clean_up: bool = False,
    settings: Optional[Settings] = None,
) -> ValidationProgress:
    settings = settings or Settings()
    size = pick_chunk_size(column_count(rows))
    tracker = UniqueTracker() if plan.has_uniqueness_checks else None
    debouncer = ProgressDebouncer(on_progress, settings.progress_debounce_ms)
    progress = ValidationProgress(total_rows=len(rows))
    started = time.monotonic()

    for start in range(0, len(rows), size):
        chunk = validate_chunk(
            rows[start:start + size],
            plan,
            start,
            tracker=tracker,
            clean_up=clean_up,
            settings=settings,
        )
        progress.chunks.append(chunk)
        progress.processed_rows += len(chunk.rows)
        progress.error_count += len(chunk.errors)
        progress.change_count += len(chunk.changes)
        elapsed = time.monotonic() - started
        remaining = progress.total_rows - progress.processed_rows
        progress.estimated_time_remaining = round(elapsed / progress.processed_rows * remaining, 3)
        logger.debug("Validated rows %d-%d of %d", chunk.start_row, chunk.end_row, len(rows))
        debouncer.push(_snapshot(progress))
        await asyncio.sleep(0)

    progress.errors = [error for chunk in progress.chunks for error in chunk.errors]
    progress.changes = [change for chunk in progress.chunks for change in chunk.changes]
    progress.grouped_errors = group_errors_by_row(progress.errors)
    progress.grouped_changes = group_changes_by_row(progress.changes)
    progress.estimated_time_remaining = 0.0
    progress.is_complete = True
    debouncer.flush(progress)
    return progress


def _snapshot(progress: ValidationProgress) -> ValidationProgress:
    return ValidationProgress(
        total_rows=progress.total_rows,
        processed_rows=progress.processed_rows,
        error_count=progress.error_count,
        change_count=progress.change_count,
        estimated_time_remaining=progress.estimated_time_remaining,
        chunks=list(progress.chunks),
    )


def run_all(
    rows: list[dict[str, Any]],
    mapping: dict[str, str],
    on_progress: Optional[ProgressCallback] = None,
    *,
    clean_up: bool = False,
    settings: Optional[Settings] = None,
) -> ValidationProgress:
    settings = settings or Settings()
    plan = compile_plan(mapping, structural_checks=settings.structural_checks)
    return asyncio.run(
        validate_all(rows, plan, on_progress, clean_up=clean_up or settings.clean_up, settings=settings)
    )
