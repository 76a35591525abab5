"""Error taxonomy for the workflow engine."""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    PERMISSION_ERROR = "PERMISSION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class RelayflowError(Exception):
    """Base class for all engine errors."""


class ProcessingError(RelayflowError):
    """The coordinator could not even attempt to execute a message.

    Messages failing with this error are rejected to the dead-letter path
    and retried a bounded number of times.
    """


class MalformedMessage(ProcessingError):
    """Payload could not be parsed into the expected message model."""


class UnknownWorkflow(ProcessingError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Unknown workflow: {workflow_id}")
        self.workflow_id = workflow_id


class UnknownRun(ProcessingError):
    def __init__(self, run_id: str) -> None:
        super().__init__(f"Unknown run: {run_id}")
        self.run_id = run_id


class UnknownStep(ProcessingError):
    def __init__(self, workflow_id: str, step_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} has no node {step_id}")
        self.workflow_id = workflow_id
        self.step_id = step_id


class UnknownActionType(ProcessingError):
    """No handler is registered for a step type."""

    def __init__(self, step_type: str) -> None:
        super().__init__(f"Unknown action type: {step_type}")
        self.step_type = step_type


class StepInProgress(ProcessingError):
    """Another consumer holds the claim on this execution of the step."""

    def __init__(self, run_id: str, step_id: str) -> None:
        super().__init__(f"Step {step_id} of run {run_id} is already running")
        self.run_id = run_id
        self.step_id = step_id


class ConfigurationError(RelayflowError):
    """The workflow graph itself is broken; retrying cannot help."""


class TransientHandlerError(RelayflowError):
    """A handler failed for a recoverable reason (rate limit, network)."""


class HandlerTimeout(TransientHandlerError):
    def __init__(self, step_type: str, timeout: float) -> None:
        super().__init__(f"Action {step_type} timed out after {timeout:g}s")
        self.step_type = step_type
        self.timeout = timeout


_CATEGORY_PATTERNS = (
    (ErrorCategory.TIMEOUT, ("timeout", "timed out")),
    (ErrorCategory.NETWORK_ERROR, ("network", "connection")),
    (ErrorCategory.RATE_LIMIT, ("rate limit", "rate_limit", "too many requests")),
    (ErrorCategory.PERMISSION_ERROR, ("permission", "unauthorized")),
    (ErrorCategory.NOT_FOUND, ("not found", "404")),
    (ErrorCategory.VALIDATION_ERROR, ("validation", "invalid")),
)


def classify_error(message: str | None) -> ErrorCategory:
    """Map a handler error message onto a coarse category."""
    text = (message or "").lower()
    for category, patterns in _CATEGORY_PATTERNS:
        if any(pattern in text for pattern in patterns):
            return category
    return ErrorCategory.UNKNOWN_ERROR
