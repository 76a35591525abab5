"""Core message contracts for relayflow workflow runs."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .errors import ConfigurationError


class NodeType(str, Enum):
    """Step types known out of the box. Node ``type`` stays an open string."""

    TRIGGER = "trigger"
    ENRICH = "enrich"
    FETCH_RECENT_ACTIVITY = "fetch_recent_activity"
    AI_SUMMARIZE_MEETING = "ai_summarize_meeting"
    SLACK_ALERT = "slack_alert"
    EMAIL_SEND = "email_send"
    TERMINATOR = "terminator"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STEP_STATUSES = (StepStatus.SUCCESS.value, StepStatus.FAILED.value)
TERMINAL_RUN_STATUSES = (RunStatus.SUCCEEDED.value, RunStatus.FAILED.value)


class WireModel(BaseModel):
    """Base for models exchanged over the bus (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        """Serialize message to JSON."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, data: str | bytes):
        """Deserialize message from JSON."""
        return cls.model_validate_json(data)


# ----------------------------------------------------------------------
# Workflow definitions


class NextStepRef(BaseModel):
    """Reference from a node to one of its successors."""

    id: str
    type: Optional[str] = None
    condition: str = "always"
    condition_type: Optional[str] = None
    condition_field: Optional[str] = None
    condition_value: Any = None
    label: Optional[str] = None


class ErrorHandling(BaseModel):
    on_failure: Literal["terminate", "continue", "skip_to_step"] = "terminate"
    skip_to_step_id: Optional[str] = None

    @model_validator(mode="after")
    def _check_skip_target(self) -> "ErrorHandling":
        if self.on_failure == "skip_to_step" and not self.skip_to_step_id:
            raise ValueError("on_failure 'skip_to_step' requires skip_to_step_id")
        return self


class Position(BaseModel):
    x: float = 0
    y: float = 0


class WorkflowNode(BaseModel):
    """One step definition in the workflow graph."""

    id: str
    type: str
    name: str = ""
    actions: Dict[str, Any] = Field(default_factory=dict)
    next_steps: List[NextStepRef] = Field(default_factory=list)
    position: Optional[Position] = None
    timeout: Optional[float] = Field(default=None, description="Seconds")
    error_handling: ErrorHandling = Field(default_factory=ErrorHandling)
    continue_on_failure: bool = False

    @property
    def is_terminal(self) -> bool:
        return not self.next_steps

    @property
    def tolerates_failure(self) -> bool:
        return self.continue_on_failure or self.error_handling.on_failure != "terminate"


class WorkflowDefinition(BaseModel):
    """Read-only graph of nodes describing a workflow."""

    id: str
    name: str
    description: Optional[str] = None
    version: str = "1"
    nodes: List[WorkflowNode] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_ids(self) -> "WorkflowDefinition":
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"Duplicate node id '{node.id}' in workflow {self.id}")
            seen.add(node.id)
        return self

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        return next((node for node in self.nodes if node.id == node_id), None)

    def entry_node(self) -> WorkflowNode:
        """Return the node a new run starts from.

        The single ``trigger`` node wins; otherwise the single node that no
        other node points at.
        """
        triggers = [n for n in self.nodes if n.type == NodeType.TRIGGER.value]
        if len(triggers) == 1:
            return triggers[0]
        if len(triggers) > 1:
            raise ConfigurationError(
                f"Workflow {self.id} declares {len(triggers)} trigger nodes"
            )
        referenced = {ref.id for node in self.nodes for ref in node.next_steps}
        roots = [n for n in self.nodes if n.id not in referenced]
        if len(roots) != 1:
            raise ConfigurationError(
                f"Workflow {self.id} must have exactly one entry node, found {len(roots)}"
            )
        return roots[0]

    def resolve(self, ref: NextStepRef) -> WorkflowNode:
        node = self.get_node(ref.id)
        if node is None:
            raise ConfigurationError(
                f"Workflow {self.id} references missing next step '{ref.id}'"
            )
        return node

    def validate_graph(self) -> List[str]:
        """Return human-readable problems found in the graph."""
        problems: List[str] = []
        entry: Optional[WorkflowNode] = None
        try:
            entry = self.entry_node()
        except ConfigurationError as exc:
            problems.append(str(exc))

        for node in self.nodes:
            for ref in node.next_steps:
                if self.get_node(ref.id) is None:
                    problems.append(f"Node '{node.id}' references missing node '{ref.id}'")
            handling = node.error_handling
            if handling.skip_to_step_id and self.get_node(handling.skip_to_step_id) is None:
                problems.append(
                    f"Node '{node.id}' skips to missing node '{handling.skip_to_step_id}'"
                )

        if entry is not None:
            reachable = {entry.id}
            frontier = [entry]
            while frontier:
                node = frontier.pop()
                targets = [ref.id for ref in node.next_steps]
                if node.error_handling.skip_to_step_id:
                    targets.append(node.error_handling.skip_to_step_id)
                for target_id in targets:
                    target = self.get_node(target_id)
                    if target is not None and target.id not in reachable:
                        reachable.add(target.id)
                        frontier.append(target)
            for node in self.nodes:
                if node.id not in reachable:
                    problems.append(f"Node '{node.id}' is unreachable from '{entry.id}'")
        return problems


# ----------------------------------------------------------------------
# Runtime records


class StepExecution(WireModel):
    """The unit carried on the execution queue."""

    workflow_id: str
    run_id: str
    execution_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    step_id: str
    type: str
    status: StepStatus = StepStatus.PENDING
    actions: Dict[str, Any] = Field(default_factory=dict)
    results: Optional[Dict[str, Any]] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    previous_step_id: Optional[str] = None


class ExecutionLogEntry(WireModel):
    """Immutable record of one executed step."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    node_id: str
    type: str
    status: Literal["success", "failed"]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    execution_time: Optional[float] = Field(default=None, description="Milliseconds")
    error: Optional[str] = None
    error_type: Optional[str] = None


class RunContext(BaseModel):
    """Payload and audit trail accumulated by a run."""

    workflow_id: str
    run_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    execution_log: List[ExecutionLogEntry] = Field(default_factory=list)


class ExecutionResultData(WireModel):
    payload: Dict[str, Any] = Field(default_factory=dict)
    execution_log: List[ExecutionLogEntry] = Field(default_factory=list)


class ExecutionResult(WireModel):
    """Terminal artifact of a run."""

    workflow_id: str
    run_id: str
    success: bool
    message: str
    data: ExecutionResultData = Field(default_factory=ExecutionResultData)


class RunInvocation(WireModel):
    """Request to start a new run, carried on the invoker queue."""

    workflow_id: str
    run_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


def branch_execution_id(run_id: str, parent_execution_id: str | None, step_id: str) -> str:
    """Deterministic id of the branch that runs ``step_id`` after a parent step.

    Republishing the same continuation yields the same id, so consumers can
    tell a redelivery from a new branch.
    """
    name = f"{run_id}/{parent_execution_id or ''}/{step_id}"
    return str(uuid.uuid5(uuid.NAMESPACE_URL, name))
