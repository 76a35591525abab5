"""Tests for single-step execution."""

import asyncio

import pytest

from relayflow.actions import ActionResult
from relayflow.contracts import RunContext, WorkflowNode
from relayflow.dispatch import ActionDispatcher
from relayflow.errors import UnknownActionType
from relayflow.execute import StepExecutor
from relayflow.registry import ActionRegistry


def _executor(**handlers) -> StepExecutor:
    registry = ActionRegistry()
    for step_type, handler in handlers.items():
        registry.register(step_type, handler)
    return StepExecutor(ActionDispatcher(registry, default_timeout=1))


def _context(**data) -> RunContext:
    return RunContext(workflow_id="wf", run_id="run-1", data=data)


def _node(**kwargs) -> WorkflowNode:
    kwargs.setdefault("id", "step")
    kwargs.setdefault("type", "enrich")
    return WorkflowNode.model_validate(kwargs)


@pytest.mark.asyncio
async def test_success_merges_results_and_continues():
    calls = []

    def enrich(config):
        calls.append(config)
        return ActionResult.ok(company="Acme")

    node = _node(
        actions={"enrich": {"email": "${email}"}},
        next_steps=[{"id": "alert"}, {"id": "on-fail", "condition": "failure"}],
    )
    context = _context(email="a@example.com")

    outcome = await _executor(enrich=enrich).execute(node, context)

    assert calls == [{"enrich": {"email": "a@example.com"}}]
    assert not outcome.is_terminal
    assert [ref.id for ref in outcome.next_steps] == ["alert"]
    assert outcome.results == {"company": "Acme"}
    assert context.data == {"email": "a@example.com", "company": "Acme"}
    assert len(context.execution_log) == 1
    entry = context.execution_log[0]
    assert entry.node_id == "step"
    assert entry.status == "success"
    assert entry.execution_time is not None and entry.execution_time >= 0
    assert entry.error is None


@pytest.mark.asyncio
async def test_node_without_next_steps_completes_run():
    node = _node(type="terminator")
    executor = _executor(terminator=lambda config: ActionResult.ok())
    outcome = await executor.execute(node, _context())

    assert outcome.is_terminal
    assert outcome.result.success
    assert outcome.result.message == "Workflow completed successfully"
    assert len(outcome.result.data.execution_log) == 1


@pytest.mark.asyncio
async def test_failure_without_tolerance_fails_run():
    node = _node(type="slack_alert", next_steps=[{"id": "end"}])
    executor = _executor(slack_alert=lambda config: ActionResult.failed("rate_limited"))
    outcome = await executor.execute(node, _context())

    assert outcome.is_terminal
    assert not outcome.result.success
    assert "rate_limited" in outcome.result.message
    entry = outcome.entry
    assert entry.status == "failed"
    assert entry.error == "rate_limited"
    assert entry.error_type == "RATE_LIMIT"


@pytest.mark.asyncio
async def test_continue_on_failure_follows_failure_branches():
    node = _node(
        continue_on_failure=True,
        next_steps=[
            {"id": "happy", "condition": "success"},
            {"id": "fallback", "condition": "failure"},
        ],
    )
    executor = _executor(enrich=lambda config: ActionResult.failed("404 not found"))
    context = _context(email="x")
    outcome = await executor.execute(node, context)

    assert [ref.id for ref in outcome.next_steps] == ["fallback"]
    assert outcome.entry.error_type == "NOT_FOUND"
    assert context.data == {"email": "x"}


@pytest.mark.asyncio
async def test_tolerated_failure_without_successors_completes_run():
    node = _node(error_handling={"on_failure": "continue"})
    executor = _executor(enrich=lambda config: ActionResult.failed("boom"))
    outcome = await executor.execute(node, _context())

    assert outcome.is_terminal
    assert outcome.result.success
    assert "step failed: boom" in outcome.result.message


@pytest.mark.asyncio
async def test_skip_to_step_on_failure():
    node = _node(
        next_steps=[{"id": "normal"}],
        error_handling={"on_failure": "skip_to_step", "skip_to_step_id": "cleanup"},
    )
    executor = _executor(enrich=lambda config: ActionResult.failed("network unreachable"))
    outcome = await executor.execute(node, _context())

    assert [ref.id for ref in outcome.next_steps] == ["cleanup"]
    assert outcome.entry.error_type == "NETWORK_ERROR"


@pytest.mark.asyncio
async def test_node_timeout_overrides_default():
    async def slow(config):
        await asyncio.sleep(0.5)
        return ActionResult.ok()

    node = _node(timeout=0.01)
    outcome = await _executor(enrich=slow).execute(node, _context())

    assert outcome.entry.status == "failed"
    assert outcome.entry.error_type == "TIMEOUT"


@pytest.mark.asyncio
async def test_unknown_type_propagates():
    with pytest.raises(UnknownActionType):
        await _executor().execute(_node(type="mystery"), _context())
