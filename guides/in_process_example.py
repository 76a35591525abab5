"""Run the lead alert workflow end to end inside one process.

Uses the in-memory transport and repository with stub handlers, so nothing
needs to be running.
"""

import asyncio
from pathlib import Path

from relayflow import (
    ActionDispatcher,
    ActionResult,
    StepExecutor,
    WorkflowInvoker,
    WorkflowRunCoordinator,
    default_registry,
    get_definition_store,
)
from relayflow.persistence import InMemoryRunRepository
from relayflow.transports import InMemoryTransport


class PrintingSink:
    async def deliver(self, result):
        print(f"Run {result.run_id}: success={result.success} ({result.message})")
        for entry in result.data.execution_log:
            print(f"  - {entry.node_id}: {entry.status} {entry.error or ''}")


async def main():
    registry = default_registry()
    registry.register("enrich", lambda config: ActionResult.ok(company="Acme"))
    registry.register("slack_alert", lambda config: ActionResult.failed("rate_limited"))
    registry.register("email_send", lambda config: ActionResult.ok(email_sent=True))

    transport = InMemoryTransport()
    repository = InMemoryRunRepository()
    definitions = get_definition_store(str(Path(__file__).parent / "workflows"))

    coordinator = WorkflowRunCoordinator(
        transport,
        definitions,
        StepExecutor(ActionDispatcher(registry)),
        repository=repository,
        sink=PrintingSink(),
    )
    invoker = WorkflowInvoker(transport, definitions, repository=repository)

    await invoker.invoke("lead-alert", {"email": "ada@acme.example"})
    await coordinator.start(lifespan=1)


if __name__ == "__main__":
    asyncio.run(main())
