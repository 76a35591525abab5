"""Workflow run coordination: consume step executions and advance runs."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from .constants import DEFAULT_STEP_LEASE
from .contracts import (
    TERMINAL_RUN_STATUSES,
    TERMINAL_STEP_STATUSES,
    ExecutionLogEntry,
    ExecutionResult,
    ExecutionResultData,
    NextStepRef,
    RunContext,
    RunStatus,
    StepExecution,
    StepStatus,
    WorkflowDefinition,
    WorkflowNode,
    branch_execution_id,
)
from .definitions import DefinitionStore
from .errors import (
    ConfigurationError,
    ProcessingError,
    StepInProgress,
    UnknownRun,
    UnknownStep,
    UnknownWorkflow,
)
from .execute import StepExecutor, StepOutcome
from .persistence import RunRepository, StepRecord, get_repository
from .sinks import CompletionSink, LoggingCompletionSink
from .transports import BaseTransport, Route

logger = logging.getLogger(__name__)

COMPLETED_MESSAGE = "Workflow completed successfully"


def completion_message(execution_log: List[ExecutionLogEntry]) -> str:
    """Message for a successful run, naming the steps whose failure was tolerated."""
    failed = [e for e in execution_log if e.status == StepStatus.FAILED.value]
    if not failed:
        return COMPLETED_MESSAGE
    notes = "; ".join(f"step {e.node_id} failed: {e.error}" for e in failed)
    return f"Workflow completed; {notes}"


class WorkflowRunCoordinator:
    """Consumes the execution queue and drives each run to completion.

    Every delivered :class:`StepExecution` is one open branch of its run.
    The step either publishes its continuations or ends its branch; the run
    succeeds when its last branch closes and fails as soon as a step fails
    without tolerance.
    """

    def __init__(
        self,
        transport: BaseTransport,
        definitions: DefinitionStore,
        executor: StepExecutor,
        repository: RunRepository | None = None,
        sink: CompletionSink | None = None,
        step_lease: float = DEFAULT_STEP_LEASE,
    ) -> None:
        self._transport = transport
        self._definitions = definitions
        self._executor = executor
        self._repository = repository or get_repository()
        self._sink = sink or LoggingCompletionSink()
        self._step_lease = step_lease

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Consume step executions until ``lifespan`` elapses (forever if None)."""
        async for raw_message, step in self._transport.subscribe(
            Route.EXECUTION, StepExecution, lifespan=lifespan
        ):
            await self.process(raw_message, step)

    async def process(self, raw_message: Any, step: StepExecution) -> None:
        """Handle one delivery and settle it with the broker."""
        try:
            await self.handle(step)
        except StepInProgress as exc:
            logger.warning(f"{exc}; delaying execution {step.execution_id}")
            await self._transport.nack(raw_message, requeue=False)
            return
        except ProcessingError as exc:
            logger.error(
                f"Could not process step {step.step_id} of run {step.run_id}: {exc}"
            )
            await self._reject(raw_message, step, exc)
            return
        except Exception as exc:
            logger.exception(
                f"Unexpected error processing step {step.step_id} of run {step.run_id}"
            )
            await self._reject(raw_message, step, exc)
            return
        await self._transport.ack(raw_message)

    async def _reject(self, raw_message: Any, step: StepExecution, exc: Exception) -> None:
        try:
            parked = await self._transport.dead_letter(raw_message)
            if parked:
                await self._finish(
                    step.run_id,
                    step.workflow_id,
                    success=False,
                    message=f"Step {step.step_id} could not be processed: {exc}",
                )
        except Exception:
            logger.exception(
                f"Could not settle rejected step {step.step_id} of run {step.run_id}"
            )

    async def handle(self, step: StepExecution) -> None:
        """Execute ``step`` once and advance its run.

        Raises:
            ProcessingError: the step cannot be processed as delivered.
        """
        run = await self._repository.get_run(step.run_id)
        if run is None:
            raise UnknownRun(step.run_id)
        if run.status in TERMINAL_RUN_STATUSES:
            if not run.result_delivered:
                logger.info(f"Run {step.run_id} already {run.status}; delivering its result")
                await self._deliver(step.run_id)
                return
            logger.info(
                f"Run {step.run_id} already {run.status}; dropping step {step.step_id}"
            )
            return

        record = await self._repository.get_step(step.run_id, step.step_id)
        if record is not None and (
            record.execution_id != step.execution_id
            or record.status in TERMINAL_STEP_STATUSES
        ):
            await self._settle_recorded(step, record)
            return

        definition = await self._definitions.get(step.workflow_id)
        if definition is None:
            raise UnknownWorkflow(step.workflow_id)
        node = definition.get_node(step.step_id)
        if node is None:
            raise UnknownStep(step.workflow_id, step.step_id)

        claimed = await self._repository.mark_step_started(
            step.run_id,
            step.step_id,
            step.execution_id,
            node.type,
            lease=self._lease_for(node),
        )
        if not claimed:
            record = await self._repository.get_step(step.run_id, step.step_id)
            if record is None:
                # the claim was released in between
                raise StepInProgress(step.run_id, step.step_id)
            await self._settle_recorded(step, record)
            return

        try:
            await self._run_claimed(step, definition, node)
        except Exception:
            await self._repository.release_step(step.run_id, step.step_id, step.execution_id)
            raise

    async def _run_claimed(
        self, step: StepExecution, definition: WorkflowDefinition, node: WorkflowNode
    ) -> None:
        step.status = StepStatus.RUNNING
        history = await self._repository.get_execution_log(step.run_id)
        context = RunContext(
            workflow_id=step.workflow_id,
            run_id=step.run_id,
            data=dict(step.data),
            execution_log=[ExecutionLogEntry.model_validate(e) for e in history],
        )

        outcome = await self._executor.execute(node, context)
        step.status = StepStatus(outcome.entry.status)
        step.results = outcome.results

        continuations: List[StepExecution] = []
        failure: Optional[str] = None
        if outcome.is_terminal and not outcome.result.success:
            failure = outcome.result.message
        elif not outcome.is_terminal:
            try:
                continuations = self._continuations(
                    definition, step, outcome.next_steps, context.data
                )
            except ConfigurationError as exc:
                failure = f"Step {step.step_id} cannot continue: {exc}"

        if failure is not None:
            await self._fail(step, outcome, failure)
            return

        await self._repository.update_payload(step.run_id, outcome.results)
        await self._repository.mark_step_completed(
            step.run_id,
            step.step_id,
            outcome.entry.status,
            log_entry=outcome.entry.model_dump(mode="json", by_alias=True),
            continuations=[c.model_dump(mode="json", by_alias=True) for c in continuations],
        )
        await self._advance(step, continuations)

    def _lease_for(self, node: WorkflowNode) -> float:
        return max(self._step_lease, node.timeout or 0.0)

    async def _settle_recorded(self, step: StepExecution, record: StepRecord) -> None:
        """Deal with a delivery whose step another execution or delivery already claimed."""
        if record.execution_id != step.execution_id:
            # Another branch reached this node first.
            logger.info(
                f"Step {step.step_id} of run {step.run_id} already reached by "
                f"another branch; closing branch {step.execution_id}"
            )
            await self._close(step)
        elif record.status in TERMINAL_STEP_STATUSES:
            await self._replay(step, record)
        else:
            raise StepInProgress(step.run_id, step.step_id)

    def _continuations(
        self,
        definition: WorkflowDefinition,
        step: StepExecution,
        refs: List[NextStepRef],
        data: dict,
    ) -> List[StepExecution]:
        continuations: List[StepExecution] = []
        seen: set[str] = set()
        for ref in refs:
            node = definition.resolve(ref)
            if node.id in seen:
                continue
            seen.add(node.id)
            continuations.append(
                StepExecution(
                    workflow_id=step.workflow_id,
                    run_id=step.run_id,
                    execution_id=branch_execution_id(step.run_id, step.execution_id, node.id),
                    step_id=node.id,
                    type=node.type,
                    actions=node.actions,
                    data=dict(data),
                    previous_step_id=step.step_id,
                )
            )
        return continuations

    async def _advance(self, step: StepExecution, continuations: List[StepExecution]) -> None:
        if continuations:
            await self._repository.open_branches(
                step.run_id, [c.execution_id for c in continuations]
            )
            for continuation in continuations:
                await self._transport.publish(Route.EXECUTION, continuation)
            logger.info(
                f"Step {step.step_id} of run {step.run_id} continues to "
                f"{', '.join(c.step_id for c in continuations)}"
            )
        await self._close(step)

    async def _close(self, step: StepExecution) -> None:
        remaining = await self._repository.close_branch(step.run_id, step.execution_id)
        if remaining == 0:
            await self._finish(step.run_id, step.workflow_id, success=True)

    async def _replay(self, step: StepExecution, record: StepRecord) -> None:
        """Redelivery of a step that already ran: repeat its side effects on the bus only."""
        logger.info(
            f"Step {step.step_id} of run {step.run_id} already {record.status}; "
            f"republishing {len(record.continuations)} continuation(s)"
        )
        continuations = [StepExecution.model_validate(c) for c in record.continuations]
        await self._advance(step, continuations)

    async def _fail(self, step: StepExecution, outcome: StepOutcome, message: str) -> None:
        await self._repository.update_payload(step.run_id, outcome.results)
        await self._repository.mark_step_completed(
            step.run_id,
            step.step_id,
            outcome.entry.status,
            log_entry=outcome.entry.model_dump(mode="json", by_alias=True),
        )
        await self._finish(step.run_id, step.workflow_id, success=False, message=message)
        await self._repository.close_branch(step.run_id, step.execution_id)

    async def _finish(
        self,
        run_id: str,
        workflow_id: str,
        success: bool,
        message: Optional[str] = None,
    ) -> None:
        status = RunStatus.SUCCEEDED if success else RunStatus.FAILED
        if message is None:
            history = await self._repository.get_execution_log(run_id)
            message = completion_message(
                [ExecutionLogEntry.model_validate(e) for e in history]
            )
        if not await self._repository.mark_run_completed(run_id, status.value, message):
            return
        logger.info(f"Run {run_id} of {workflow_id} {status.value}: {message}")
        await self._deliver(run_id)

    async def _deliver(self, run_id: str) -> None:
        # the run stays undelivered until the sink accepts its result
        result = await self.build_result(run_id)
        await self._sink.deliver(result)
        await self._repository.mark_result_delivered(run_id)

    async def build_result(self, run_id: str) -> ExecutionResult:
        """Assemble the terminal result from the run's stored state."""
        run = await self._repository.get_run(run_id)
        if run is None:
            raise UnknownRun(run_id)
        history = await self._repository.get_execution_log(run_id)
        return ExecutionResult(
            workflow_id=run.workflow_id,
            run_id=run_id,
            success=run.status == RunStatus.SUCCEEDED.value,
            message=run.message or "",
            data=ExecutionResultData(
                payload=run.payload,
                execution_log=[ExecutionLogEntry.model_validate(e) for e in history],
            ),
        )
