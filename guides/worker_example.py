"""Example showing how to run a coordinator against RabbitMQ.

Start RabbitMQ, then run one or more workers::

    RELAYFLOW_TRANSPORT=rabbitmq RELAYFLOW_DEFINITIONS=guides/workflows \
        python guides/worker_example.py

and start runs with ``relayflow workflow invoke lead-alert --payload '{"email": "a@b.example"}'``.
"""

import asyncio
import logging

from relayflow import (
    ActionDispatcher,
    StepExecutor,
    WorkflowRunCoordinator,
    default_registry,
    get_definition_store,
    get_repository,
    get_transport,
    load_config,
)
from relayflow.sinks import get_completion_sink


async def main():
    config = load_config()
    transport = get_transport(config=config)
    await transport.connect()

    registry = default_registry(
        {
            "enrich": "lead_alert_handlers:EnrichHandler",
            "slack_alert": "lead_alert_handlers:SlackAlertHandler",
            "email_send": "lead_alert_handlers:send_email",
        }
    )
    coordinator = WorkflowRunCoordinator(
        transport,
        get_definition_store(config=config),
        StepExecutor(ActionDispatcher(registry, config.execution.action_timeout)),
        repository=get_repository(config=config),
        sink=get_completion_sink(config, transport),
    )
    try:
        await coordinator.start()
    finally:
        await transport.disconnect()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
