"""Tests for the action registry and dispatcher."""

import asyncio
import time

import pytest

from relayflow.actions import ActionHandler, ActionResult, TerminatorHandler
from relayflow.dispatch import ActionDispatcher
from relayflow.errors import UnknownActionType
from relayflow.registry import ActionRegistry, default_registry


class EchoHandler(ActionHandler):
    async def execute(self, config):
        return ActionResult.ok(echo=config)


class SlowHandler(ActionHandler):
    timeout = 0.05

    async def execute(self, config):
        await asyncio.sleep(1)
        return ActionResult.ok()


def test_default_registry_has_builtin_handlers():
    registry = default_registry()
    assert "trigger" in registry
    assert "terminator" in registry
    assert len(registry) == 2


def test_unregistered_type_raises():
    registry = ActionRegistry()
    with pytest.raises(UnknownActionType, match="Unknown action type: enrich"):
        registry.get("enrich")


def test_register_rejects_non_callables():
    with pytest.raises(TypeError):
        ActionRegistry().register("enrich", 42)


def test_load_handlers_from_import_path():
    registry = ActionRegistry()
    registry.load_handlers({"done": "relayflow.actions.builtin:TerminatorHandler"})
    assert isinstance(registry.get("done"), TerminatorHandler)

    with pytest.raises(ValueError):
        registry.load_handlers({"bad": "relayflow.actions.builtin"})


def test_decorator_registration():
    registry = ActionRegistry()

    @registry.handler("enrich")
    def enrich(config):
        return {"success": True, "results": {"company": "Acme"}}

    assert registry.get("enrich") is enrich


@pytest.mark.asyncio
async def test_dispatch_async_handler():
    dispatcher = ActionDispatcher(ActionRegistry({"echo": EchoHandler}))
    result = await dispatcher.dispatch("echo", {"echo": {"a": 1}})
    assert result.success
    assert result.results == {"echo": {"echo": {"a": 1}}}


@pytest.mark.asyncio
async def test_dispatch_sync_callable_returning_dict():
    registry = ActionRegistry()
    registry.register("enrich", lambda config: {"success": True, "results": {"n": len(config)}})
    result = await ActionDispatcher(registry).dispatch("enrich", {"x": {}, "y": {}})
    assert result.success
    assert result.results == {"n": 2}


@pytest.mark.asyncio
async def test_dispatch_sync_handler_does_not_block_loop():
    def blocking(config):
        time.sleep(0.05)
        return ActionResult.ok()

    registry = ActionRegistry({"blocking": blocking})
    dispatcher = ActionDispatcher(registry)
    ticks = []

    async def ticker():
        for _ in range(3):
            ticks.append(1)
            await asyncio.sleep(0.01)

    result, _ = await asyncio.gather(dispatcher.dispatch("blocking", {}), ticker())
    assert result.success
    assert len(ticks) == 3


@pytest.mark.asyncio
async def test_handler_timeout_is_a_failed_result():
    dispatcher = ActionDispatcher(ActionRegistry({"slow": SlowHandler}))
    result = await dispatcher.dispatch("slow", {})
    assert not result.success
    assert "timed out after 0.05s" in result.error


@pytest.mark.asyncio
async def test_explicit_timeout_overrides_handler_timeout():
    class Quick(ActionHandler):
        timeout = 0.01

        async def execute(self, config):
            await asyncio.sleep(0.05)
            return ActionResult.ok(done=True)

    dispatcher = ActionDispatcher(ActionRegistry({"quick": Quick}))
    result = await dispatcher.dispatch("quick", {}, timeout=1)
    assert result.success


@pytest.mark.asyncio
async def test_zero_timeouts_are_not_replaced_by_the_default():
    class Impatient(ActionHandler):
        timeout = 0

        async def execute(self, config):
            await asyncio.sleep(0.05)
            return ActionResult.ok()

    dispatcher = ActionDispatcher(
        ActionRegistry({"impatient": Impatient, "slow": SlowHandler}), default_timeout=1
    )
    result = await dispatcher.dispatch("impatient", {})
    assert not result.success
    assert "timed out after 0s" in result.error

    result = await dispatcher.dispatch("slow", {}, timeout=0)
    assert not result.success
    assert "timed out after 0s" in result.error


@pytest.mark.asyncio
async def test_handler_exception_is_a_failed_result():
    def boom(config):
        raise RuntimeError("connection refused")

    dispatcher = ActionDispatcher(ActionRegistry({"boom": boom}))
    result = await dispatcher.dispatch("boom", {})
    assert not result.success
    assert result.error == "connection refused"


@pytest.mark.asyncio
async def test_invalid_handler_return_is_a_failed_result():
    dispatcher = ActionDispatcher(ActionRegistry({"odd": lambda config: "nope"}))
    result = await dispatcher.dispatch("odd", {})
    assert not result.success
    assert "Invalid result" in result.error


@pytest.mark.asyncio
async def test_dispatch_unknown_type_raises():
    with pytest.raises(UnknownActionType):
        await ActionDispatcher(ActionRegistry()).dispatch("missing", {})
