"""Step execution engine for relayflow workflows."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .actions import resolve_actions
from .conditions import select_next_steps
from .contracts import (
    ExecutionLogEntry,
    ExecutionResult,
    ExecutionResultData,
    NextStepRef,
    RunContext,
    StepStatus,
    WorkflowNode,
)
from .dispatch import ActionDispatcher
from .errors import classify_error

logger = logging.getLogger(__name__)


@dataclass
class StepOutcome:
    """What running a node produced.

    Exactly one of ``next_steps`` (continuation) or ``result`` (terminal)
    drives what happens next.
    """

    entry: ExecutionLogEntry
    results: Dict[str, Any] = field(default_factory=dict)
    next_steps: List[NextStepRef] = field(default_factory=list)
    result: Optional[ExecutionResult] = None

    @property
    def is_terminal(self) -> bool:
        return self.result is not None


def build_result(context: RunContext, success: bool, message: str) -> ExecutionResult:
    return ExecutionResult(
        workflow_id=context.workflow_id,
        run_id=context.run_id,
        success=success,
        message=message,
        data=ExecutionResultData(
            payload=dict(context.data), execution_log=list(context.execution_log)
        ),
    )


class StepExecutor:
    """Executes a single node: dispatch, timing, log entry, continuation.

    The handler is invoked exactly once per call; retries are left to the
    queue.
    """

    def __init__(self, dispatcher: ActionDispatcher) -> None:
        self._dispatcher = dispatcher

    async def execute(self, node: WorkflowNode, context: RunContext) -> StepOutcome:
        """Run ``node`` against ``context``.

        ``context`` is updated in place: results are merged into
        ``context.data`` and the new log entry is appended to
        ``context.execution_log``.

        Raises:
            UnknownActionType: nothing is registered for ``node.type``.
        """
        config = resolve_actions(node.actions, context.data)
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()
        outcome = await self._dispatcher.dispatch(node.type, config, timeout=node.timeout)
        elapsed_ms = round((time.perf_counter() - start) * 1000, 3)

        status = StepStatus.SUCCESS if outcome.success else StepStatus.FAILED
        error = None if outcome.success else (outcome.error or "Unknown error")
        entry = ExecutionLogEntry(
            node_id=node.id,
            type=node.type,
            status=status.value,
            timestamp=started_at,
            execution_time=elapsed_ms,
            error=error,
            error_type=classify_error(error).value if error else None,
        )
        context.execution_log.append(entry)
        results = outcome.results or {}

        if outcome.success:
            context.data.update(results)
            logger.info(
                f"Step {node.id} ({node.type}) succeeded in {elapsed_ms}ms "
                f"for run_id={context.run_id}"
            )
            next_steps = select_next_steps(node.next_steps, status, results, context.data)
            if not next_steps:
                return StepOutcome(
                    entry=entry,
                    results=results,
                    result=build_result(context, True, "Workflow completed successfully"),
                )
            return StepOutcome(entry=entry, results=results, next_steps=next_steps)

        logger.warning(
            f"Step {node.id} ({node.type}) failed for run_id={context.run_id}: {error}"
        )
        handling = node.error_handling
        if handling.on_failure == "skip_to_step":
            return StepOutcome(
                entry=entry, next_steps=[NextStepRef(id=handling.skip_to_step_id)]
            )
        if node.tolerates_failure:
            next_steps = select_next_steps(node.next_steps, status, results, context.data)
            if next_steps:
                return StepOutcome(entry=entry, next_steps=next_steps)
            return StepOutcome(
                entry=entry,
                result=build_result(
                    context, True, f"Workflow completed; step {node.id} failed: {error}"
                ),
            )
        return StepOutcome(
            entry=entry,
            result=build_result(context, False, f"Step {node.id} failed: {error}"),
        )
