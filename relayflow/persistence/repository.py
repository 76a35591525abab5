"""Repository abstraction for run state persistence."""

from __future__ import annotations

from typing import Any, Iterable, Protocol

from .models import RunInstance, StepRecord


class RunRepository(Protocol):
    """Protocol for run state persistence backends.

    Every write is idempotent so redelivered messages can replay them.
    """

    async def create_run(
        self, run_id: str, workflow_id: str, payload: dict | None = None
    ) -> bool:
        """Persist a new pending run. Returns ``False`` if it already existed."""

    async def get_run(self, run_id: str) -> RunInstance | None:
        """Retrieve the run with its step history."""

    async def list_runs(self) -> list[RunInstance]:
        """Return all persisted runs (without step history)."""

    async def mark_step_started(
        self,
        run_id: str,
        step_id: str,
        execution_id: str,
        step_type: str | None = None,
        lease: float | None = None,
    ) -> bool:
        """Claim ``step_id`` for ``execution_id``; moves a pending run to running.

        Returns ``True`` only for the caller that owns the step: the first
        arrival, or the same execution taking back an unfinished claim older
        than ``lease`` seconds.
        """

    async def release_step(self, run_id: str, step_id: str, execution_id: str) -> None:
        """Drop an unfinished claim so a later delivery can run the step."""

    async def mark_step_completed(
        self,
        run_id: str,
        step_id: str,
        status: str,
        log_entry: dict[str, Any] | None = None,
        continuations: list[dict[str, Any]] | None = None,
    ) -> None:
        """Record completion of a step, once."""

    async def get_step(self, run_id: str, step_id: str) -> StepRecord | None:
        """Return the record of ``step_id`` within the run, if any."""

    async def get_execution_log(self, run_id: str) -> list[dict[str, Any]]:
        """Log entries of completed steps in start order."""

    async def update_payload(self, run_id: str, payload: dict) -> None:
        """Shallow-merge ``payload`` into the run payload."""

    async def open_branches(self, run_id: str, execution_ids: Iterable[str]) -> None:
        """Register in-flight branches (no-op for ids already known)."""

    async def close_branch(self, run_id: str, execution_id: str) -> int:
        """Close a branch and return how many remain open."""

    async def mark_run_completed(
        self, run_id: str, status: str, message: str | None = None
    ) -> bool:
        """Move the run to a terminal status. ``False`` if it already was terminal."""

    async def mark_result_delivered(self, run_id: str) -> None:
        """Record that the terminal result reached the completion sink."""
