"""Destinations for terminal execution results."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx

from .config import RelayflowConfig
from .contracts import ExecutionResult
from .transports import BaseTransport, Route

logger = logging.getLogger(__name__)


class CompletionSink(Protocol):
    async def deliver(self, result: ExecutionResult) -> None:
        """Hand a finished run's result to whoever is waiting for it."""


class LoggingCompletionSink:
    async def deliver(self, result: ExecutionResult) -> None:
        log = logger.info if result.success else logger.error
        log(
            f"Run {result.run_id} of workflow {result.workflow_id} finished: "
            f"success={result.success} message={result.message!r} "
            f"steps={len(result.data.execution_log)}"
        )


class TransportCompletionSink:
    """Publish results onto the completion route."""

    def __init__(self, transport: BaseTransport) -> None:
        self._transport = transport

    async def deliver(self, result: ExecutionResult) -> None:
        await self._transport.publish(Route.COMPLETION, result)


class WebhookCompletionSink:
    """POST results as JSON to an HTTP callback."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client

    async def deliver(self, result: ExecutionResult) -> None:
        body = result.model_dump(mode="json", by_alias=True)
        if self._client is not None:
            response = await self._client.post(self.url, json=body, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=body)
        response.raise_for_status()
        logger.debug(f"Delivered result of run {result.run_id} to {self.url}")


def get_completion_sink(
    config: RelayflowConfig, transport: Optional[BaseTransport] = None
) -> CompletionSink:
    completion = config.completion
    if completion.backend == "log":
        return LoggingCompletionSink()
    if completion.backend == "queue":
        if transport is None:
            raise ValueError("Queue completion sink needs a transport")
        return TransportCompletionSink(transport)
    if completion.backend == "webhook":
        if not completion.webhook_url:
            raise ValueError("Webhook completion sink needs completion.webhook_url")
        return WebhookCompletionSink(completion.webhook_url, timeout=completion.webhook_timeout)
    raise ValueError(f"Unsupported completion backend: {completion.backend}")
