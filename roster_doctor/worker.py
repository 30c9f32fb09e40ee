"""
worker.py - Background execution boundary for validation runs

The worker owns a single background thread. Requests are deep-copied on the
way in and results are handed back as fresh payloads, so the caller and the
worker never share mutable rows. Progress callbacks fire on the worker thread
with plain-dict payloads; a caller that abandons a run simply ignores them.
"""

from __future__ import annotations

import asyncio
import copy
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from roster_doctor.compiler import CompiledPlan, compile_plan
from roster_doctor.pipeline import ValidationChunk, ValidationProgress, validate_all, validate_chunk
from roster_doctor.settings import Settings


class ValidationWorker:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or Settings()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="roster-validation")
        self._plan: Optional[CompiledPlan] = None
        self._plan_key: Optional[tuple] = None

    def __enter__(self) -> "ValidationWorker":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    def plan_for(self, mapping: dict[str, str]) -> CompiledPlan:
        key = tuple(mapping.items())
        if self._plan is None or self._plan_key != key:
            self._plan = compile_plan(mapping, structural_checks=self.settings.structural_checks)
            self._plan_key = key
        return self._plan

    def submit_all(
        self,
        rows: list[dict[str, Any]],
        mapping: dict[str, str],
        on_progress: Optional[Callable[[dict[str, Any]], None]] = None,
        *,
        clean_up: Optional[bool] = None,
    ) -> "Future[ValidationProgress]":
        payload = copy.deepcopy(rows)
        plan = self.plan_for(dict(mapping))
        clean = self.settings.clean_up if clean_up is None else clean_up

        def forward(progress: ValidationProgress) -> None:
            if on_progress is not None:
                on_progress(copy.deepcopy(progress.to_dict(include_rows=False)))

        def job() -> ValidationProgress:
            result = asyncio.run(
                validate_all(payload, plan, forward, clean_up=clean, settings=self.settings)
            )
            return copy.deepcopy(result)

        return self._executor.submit(job)

    def submit_chunk(
        self,
        rows: list[dict[str, Any]],
        mapping: dict[str, str],
        start_row: int = 0,
        *,
        clean_up: Optional[bool] = None,
    ) -> "Future[ValidationChunk]":
        payload = copy.deepcopy(rows)
        plan = self.plan_for(dict(mapping))
        clean = self.settings.clean_up if clean_up is None else clean_up

        def job() -> ValidationChunk:
            chunk = validate_chunk(payload, plan, start_row, clean_up=clean, settings=self.settings)
            return copy.deepcopy(chunk)

        return self._executor.submit(job)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
