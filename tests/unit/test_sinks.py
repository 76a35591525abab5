"""Tests for completion sinks."""

import json

import httpx
import pytest

from relayflow.config import CompletionConfig, RelayflowConfig
from relayflow.contracts import ExecutionLogEntry, ExecutionResult, ExecutionResultData
from relayflow.sinks import (
    LoggingCompletionSink,
    TransportCompletionSink,
    WebhookCompletionSink,
    get_completion_sink,
)
from relayflow.transports import InMemoryTransport, Route


def _result(success: bool = True) -> ExecutionResult:
    return ExecutionResult(
        workflow_id="wf",
        run_id="run-1",
        success=success,
        message="Workflow completed successfully" if success else "Step x failed: boom",
        data=ExecutionResultData(
            payload={"email": "a@example.com"},
            execution_log=[ExecutionLogEntry(node_id="x", type="enrich", status="success")],
        ),
    )


@pytest.mark.asyncio
async def test_webhook_sink_posts_camel_case_json():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    sink = WebhookCompletionSink("https://hooks.example.com/done", client=client)
    await sink.deliver(_result())
    await client.aclose()

    assert len(seen) == 1
    assert seen[0].method == "POST"
    body = json.loads(seen[0].content)
    assert body["runId"] == "run-1"
    assert body["success"] is True
    assert body["data"]["executionLog"][0]["nodeId"] == "x"


@pytest.mark.asyncio
async def test_webhook_sink_raises_on_error_status():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503)))
    sink = WebhookCompletionSink("https://hooks.example.com/done", client=client)
    with pytest.raises(httpx.HTTPStatusError):
        await sink.deliver(_result(success=False))
    await client.aclose()


@pytest.mark.asyncio
async def test_transport_sink_publishes_to_completion_route():
    transport = InMemoryTransport()
    await TransportCompletionSink(transport).deliver(_result())

    delivered = transport.messages(Route.COMPLETION, ExecutionResult)
    assert [r.run_id for r in delivered] == ["run-1"]


@pytest.mark.asyncio
async def test_logging_sink_logs_outcome(caplog):
    caplog.set_level("INFO", logger="relayflow.sinks")
    await LoggingCompletionSink().deliver(_result(success=False))
    assert "run-1" in caplog.text
    assert "success=False" in caplog.text


def test_get_completion_sink_by_backend():
    transport = InMemoryTransport()
    assert isinstance(get_completion_sink(RelayflowConfig()), LoggingCompletionSink)

    queue_config = RelayflowConfig(completion=CompletionConfig(backend="queue"))
    assert isinstance(get_completion_sink(queue_config, transport), TransportCompletionSink)
    with pytest.raises(ValueError):
        get_completion_sink(queue_config)

    hook_config = RelayflowConfig(
        completion=CompletionConfig(backend="webhook", webhook_url="https://x.test/hook")
    )
    sink = get_completion_sink(hook_config)
    assert isinstance(sink, WebhookCompletionSink)
    assert sink.url == "https://x.test/hook"

    with pytest.raises(ValueError):
        get_completion_sink(RelayflowConfig(completion=CompletionConfig(backend="webhook")))
