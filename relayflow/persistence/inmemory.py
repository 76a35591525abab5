"""In-memory implementation of the run repository."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable

from ..contracts import TERMINAL_RUN_STATUSES, RunStatus
from .models import RunInstance, StepRecord
from .repository import RunRepository


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRunRepository(RunRepository):
    """Store run state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._runs: Dict[str, RunInstance] = {}
        self._branches: Dict[str, Dict[str, bool]] = {}
        self._step_id = 0

    # ------------------------------------------------------------------
    async def create_run(
        self, run_id: str, workflow_id: str, payload: dict | None = None
    ) -> bool:
        if run_id in self._runs:
            return False
        self._runs[run_id] = RunInstance(
            run_id=run_id,
            workflow_id=workflow_id,
            payload=dict(payload or {}),
            status=RunStatus.PENDING.value,
        )
        self._branches[run_id] = {}
        return True

    async def get_run(self, run_id: str) -> RunInstance | None:
        run = self._runs.get(run_id)
        if run is None:
            return None
        return run.model_copy(
            update={"open_branches": self._open_count(run_id)}, deep=True
        )

    async def list_runs(self) -> list[RunInstance]:
        return [
            run.model_copy(update={"steps": [], "open_branches": self._open_count(run.run_id)})
            for run in self._runs.values()
        ]

    def _find_step(self, run_id: str, step_id: str) -> StepRecord | None:
        run = self._runs.get(run_id)
        if run is None:
            return None
        return next((s for s in run.steps if s.step_id == step_id), None)

    async def mark_step_started(
        self,
        run_id: str,
        step_id: str,
        execution_id: str,
        step_type: str | None = None,
        lease: float | None = None,
    ) -> bool:
        run = self._runs.get(run_id)
        if not run:
            return False
        # first arrival owns the step
        existing = self._find_step(run_id, step_id)
        if existing is not None:
            if (
                lease is None
                or existing.execution_id != execution_id
                or existing.completed_at is not None
                or existing.started_at > _now() - timedelta(seconds=lease)
            ):
                return False
            existing.started_at = _now()
            return True
        self._step_id += 1
        run.steps.append(
            StepRecord(
                id=self._step_id,
                run_id=run_id,
                step_id=step_id,
                execution_id=execution_id,
                step_type=step_type,
                started_at=_now(),
            )
        )
        if run.status == RunStatus.PENDING.value:
            run.status = RunStatus.RUNNING.value
        return True

    async def release_step(self, run_id: str, step_id: str, execution_id: str) -> None:
        run = self._runs.get(run_id)
        if not run:
            return
        run.steps = [
            s
            for s in run.steps
            if not (
                s.step_id == step_id
                and s.execution_id == execution_id
                and s.completed_at is None
            )
        ]

    async def mark_step_completed(
        self,
        run_id: str,
        step_id: str,
        status: str,
        log_entry: dict[str, Any] | None = None,
        continuations: list[dict[str, Any]] | None = None,
    ) -> None:
        step = self._find_step(run_id, step_id)
        if step is None or step.completed_at is not None:
            return
        step.completed_at = _now()
        step.status = status
        step.log_entry = log_entry
        step.continuations = list(continuations or [])

    async def get_step(self, run_id: str, step_id: str) -> StepRecord | None:
        step = self._find_step(run_id, step_id)
        return step.model_copy(deep=True) if step else None

    async def get_execution_log(self, run_id: str) -> list[dict[str, Any]]:
        run = self._runs.get(run_id)
        if not run:
            return []
        return [dict(s.log_entry) for s in run.steps if s.log_entry is not None]

    async def update_payload(self, run_id: str, payload: dict) -> None:
        run = self._runs.get(run_id)
        if run:
            run.payload = {**run.payload, **payload}

    def _open_count(self, run_id: str) -> int:
        return sum(1 for is_open in self._branches.get(run_id, {}).values() if is_open)

    async def open_branches(self, run_id: str, execution_ids: Iterable[str]) -> None:
        branches = self._branches.setdefault(run_id, {})
        for execution_id in execution_ids:
            branches.setdefault(execution_id, True)

    async def close_branch(self, run_id: str, execution_id: str) -> int:
        branches = self._branches.setdefault(run_id, {})
        branches[execution_id] = False
        return self._open_count(run_id)

    async def mark_run_completed(
        self, run_id: str, status: str, message: str | None = None
    ) -> bool:
        run = self._runs.get(run_id)
        if not run or run.status in TERMINAL_RUN_STATUSES:
            return False
        run.status = status
        run.message = message
        return True

    async def mark_result_delivered(self, run_id: str) -> None:
        run = self._runs.get(run_id)
        if run:
            run.result_delivered = True
