"""Tests for next-step condition evaluation."""

import pytest

from relayflow.conditions import evaluate, field_value, select_next_steps, validate_condition
from relayflow.contracts import NextStepRef, StepStatus


def _ref(**kwargs) -> NextStepRef:
    return NextStepRef(id=kwargs.pop("id", "next"), **kwargs)


def test_always_and_status_conditions():
    assert evaluate(_ref(), StepStatus.SUCCESS, {}, {})
    assert evaluate(_ref(condition="success"), StepStatus.SUCCESS, {}, {})
    assert not evaluate(_ref(condition="success"), StepStatus.FAILED, {}, {})
    assert evaluate(_ref(condition="failure"), StepStatus.FAILED, {}, {})
    assert not evaluate(_ref(condition="failure"), StepStatus.SUCCESS, {}, {})


@pytest.mark.parametrize(
    "condition_type, value, expected, outcome",
    [
        ("if_not_empty", "Acme", None, True),
        ("if_not_empty", "   ", None, False),
        ("if_empty", [], None, True),
        ("equals", "HIGH", "high", True),
        ("not_equals", "low", "high", True),
        ("contains", "Quarterly Review", "review", True),
        ("contains", ["a", "b"], "c", False),
        ("greater_than", "10", 5, True),
        ("less_than", 3, "2", False),
        ("greater_than", "n/a", 5, False),
    ],
)
def test_field_conditions(condition_type, value, expected, outcome):
    ref = _ref(condition_type=condition_type, condition_field="f", condition_value=expected)
    assert evaluate(ref, StepStatus.SUCCESS, {"f": value}, {}) is outcome


def test_field_lookup_prefers_results_over_payload():
    assert field_value("f", {"f": "result"}, {"f": "payload"}) == "result"
    assert field_value("f", {}, {"f": "payload"}) == "payload"
    assert field_value(None, {"f": 1}, {}) is None


def test_unknown_condition_type_defaults_to_true():
    assert evaluate(_ref(condition_type="mystery"), StepStatus.SUCCESS, {}, {})


def test_select_next_steps_preserves_order():
    refs = [
        _ref(id="a"),
        _ref(id="b", condition="failure"),
        _ref(id="c", condition_type="equals", condition_field="tier", condition_value="gold"),
    ]
    selected = select_next_steps(refs, StepStatus.SUCCESS, {"tier": "gold"}, {})
    assert [r.id for r in selected] == ["a", "c"]


def test_validate_condition_requires_field_and_value():
    errors = validate_condition(_ref(condition_type="equals"))
    assert len(errors) == 2
    assert validate_condition(_ref(condition_type="if_empty", condition_field="x")) == []
