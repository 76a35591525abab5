"""Starting workflow runs."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from .contracts import RunInvocation, StepExecution, branch_execution_id
from .definitions import DefinitionStore
from .errors import ConfigurationError, UnknownWorkflow
from .persistence import RunRepository, get_repository
from .transports import BaseTransport, Route

logger = logging.getLogger(__name__)


class WorkflowInvoker:
    """Service responsible for creating runs and publishing their first step."""

    def __init__(
        self,
        transport: BaseTransport,
        definitions: DefinitionStore,
        repository: RunRepository | None = None,
    ) -> None:
        self._transport = transport
        self._definitions = definitions
        self._repository = repository or get_repository()

    async def invoke(
        self,
        workflow_id: str,
        payload: Optional[Dict[str, Any]] = None,
        run_id: Optional[str] = None,
    ) -> str:
        """Create a run of ``workflow_id`` and publish its entry step.

        Invoking again with an existing ``run_id`` republishes the same entry
        step, which consumers recognise as a redelivery.

        Returns:
            The run id.

        Raises:
            UnknownWorkflow: no definition is known for ``workflow_id``.
            ConfigurationError: the definition has no unambiguous entry node.
        """
        definition = await self._definitions.get(workflow_id)
        if definition is None:
            raise UnknownWorkflow(workflow_id)
        entry = definition.entry_node()
        payload = dict(payload or {})
        run_id = run_id or str(uuid.uuid4())

        created = await self._repository.create_run(run_id, workflow_id, payload)
        if not created:
            logger.info(f"Run {run_id} already exists; republishing entry step")

        step = StepExecution(
            workflow_id=workflow_id,
            run_id=run_id,
            execution_id=branch_execution_id(run_id, None, entry.id),
            step_id=entry.id,
            type=entry.type,
            actions=entry.actions,
            data=payload,
        )
        await self._repository.open_branches(run_id, [step.execution_id])
        await self._transport.publish(Route.EXECUTION, step)
        logger.info(f"Started run {run_id} of workflow {workflow_id} at step {entry.id}")
        return run_id

    async def request(
        self,
        workflow_id: str,
        payload: Optional[Dict[str, Any]] = None,
        run_id: Optional[str] = None,
    ) -> str:
        """Queue an invocation on the invoker route for a worker to pick up."""
        run_id = run_id or str(uuid.uuid4())
        invocation = RunInvocation(workflow_id=workflow_id, run_id=run_id, payload=payload or {})
        await self._transport.publish(Route.INVOKER, invocation)
        return run_id

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Consume queued invocations."""
        async for raw_message, invocation in self._transport.subscribe(
            Route.INVOKER, RunInvocation, lifespan=lifespan
        ):
            try:
                await self.invoke(
                    invocation.workflow_id, invocation.payload, run_id=invocation.run_id
                )
            except (UnknownWorkflow, ConfigurationError) as exc:
                logger.error(f"Cannot start workflow {invocation.workflow_id}: {exc}")
                await self._transport.park(raw_message)
                continue
            await self._transport.ack(raw_message)
