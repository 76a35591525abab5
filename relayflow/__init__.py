"""Relayflow: queue-driven execution of declarative workflow graphs."""

from .actions import ActionHandler, ActionResult
from .config import RelayflowConfig, load_config
from .contracts import (
    ExecutionLogEntry,
    ExecutionResult,
    StepExecution,
    WorkflowDefinition,
    WorkflowNode,
)
from .coordinator import WorkflowRunCoordinator
from .definitions import get_definition_store
from .dispatch import ActionDispatcher
from .execute import StepExecutor
from .invoke import WorkflowInvoker
from .persistence import get_repository
from .registry import ActionRegistry, default_registry
from .transports import get_transport

__version__ = "0.1.0"
__all__ = [
    "ActionDispatcher",
    "ActionHandler",
    "ActionRegistry",
    "ActionResult",
    "ExecutionLogEntry",
    "ExecutionResult",
    "RelayflowConfig",
    "StepExecution",
    "StepExecutor",
    "WorkflowDefinition",
    "WorkflowInvoker",
    "WorkflowNode",
    "WorkflowRunCoordinator",
    "default_registry",
    "get_definition_store",
    "get_repository",
    "get_transport",
    "load_config",
]
