"""Evaluation of conditions attached to next-step references."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Sequence

from .contracts import NextStepRef, StepStatus

logger = logging.getLogger(__name__)

FIELD_REQUIRED = {"if_not_empty", "if_empty", "equals", "not_equals", "contains", "greater_than", "less_than"}
VALUE_REQUIRED = {"equals", "not_equals", "contains", "greater_than", "less_than"}


def _is_not_empty(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return bool(value)


def _is_equal(value: Any, expected: Any) -> bool:
    if isinstance(value, str) and isinstance(expected, str):
        return value.lower() == expected.lower()
    return value == expected


def _contains(value: Any, needle: Any) -> bool:
    if isinstance(value, str) and isinstance(needle, str):
        return needle.lower() in value.lower()
    if isinstance(value, (list, tuple, set)):
        return needle in value
    return False


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _compare(value: Any, expected: Any, greater: bool) -> bool:
    left, right = _as_number(value), _as_number(expected)
    if left is None or right is None:
        return False
    return left > right if greater else left < right


def _basic_condition(condition: Optional[str], status: StepStatus) -> bool:
    name = (condition or "always").lower()
    if name == "success":
        return status == StepStatus.SUCCESS
    if name == "failure":
        return status == StepStatus.FAILED
    return True


def field_value(
    name: Optional[str], results: Mapping[str, Any], data: Mapping[str, Any]
) -> Any:
    """Look a field up in the step results first, then in the run payload."""
    if not name:
        return None
    for source in (results, data):
        if source and source.get(name) is not None:
            return source[name]
    return None


def evaluate(
    ref: NextStepRef,
    status: StepStatus,
    results: Mapping[str, Any],
    data: Mapping[str, Any],
) -> bool:
    if not _basic_condition(ref.condition, status):
        return False
    kind = ref.condition_type
    if not kind or kind == "always":
        return True

    value = field_value(ref.condition_field, results, data)
    expected = ref.condition_value
    if kind == "if_not_empty":
        return _is_not_empty(value)
    if kind == "if_empty":
        return not _is_not_empty(value)
    if kind == "equals":
        return _is_equal(value, expected)
    if kind == "not_equals":
        return not _is_equal(value, expected)
    if kind == "contains":
        return _contains(value, expected)
    if kind == "greater_than":
        return _compare(value, expected, greater=True)
    if kind == "less_than":
        return _compare(value, expected, greater=False)
    logger.warning(f"Unknown condition type: {kind}, defaulting to true")
    return True


def select_next_steps(
    refs: Sequence[NextStepRef],
    status: StepStatus,
    results: Mapping[str, Any],
    data: Mapping[str, Any],
) -> List[NextStepRef]:
    """Return the references whose conditions hold, preserving order."""
    return [ref for ref in refs if evaluate(ref, status, results, data)]


def validate_condition(ref: NextStepRef) -> List[str]:
    errors: List[str] = []
    if ref.condition_type in FIELD_REQUIRED and not ref.condition_field:
        errors.append(f"Condition type '{ref.condition_type}' requires condition_field")
    if ref.condition_type in VALUE_REQUIRED and ref.condition_value is None:
        errors.append(f"Condition type '{ref.condition_type}' requires condition_value")
    return errors
