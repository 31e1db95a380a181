import math

import pytest

from dwe.ir.references import resolve_template
from dwe.runtime.conditions import (
    ConditionSyntaxError,
    condition_roots,
    evaluate_condition,
    is_truthy,
    loose_equals,
    parse_condition,
    strict_equals,
)


CONTEXT = {
    "inputs": {"count": 5, "label": "ok", "empty": "", "flag": False},
    "search": {"output": {"total": 3, "results": [], "status": "ready"}},
}


@pytest.mark.parametrize(
    "expression, expected",
    [
        ("{{ search.output.total > 0 }}", True),
        ("search.output.total > 0", True),
        ("search.output.total >= 4", False),
        ("{{ search.output.status == 'ready' }}", True),
        ("search.output.status != 'ready'", False),
        ("inputs.count == '5'", True),
        ("inputs.count === '5'", False),
        ("inputs.count === 5", True),
        ("inputs.missing == null", True),
        ("inputs.missing === null", False),
        ("inputs.missing === undefined", True),
        ("!(inputs.count > 1) || inputs.label == 'ok'", True),
        ("inputs.count > 1 && inputs.flag", False),
        ("'b' > 'a'", True),
        ("inputs.count > -1", True),
    ],
)
def test_expression_semantics(expression, expected):
    assert evaluate_condition(expression, CONTEXT) is expected


@pytest.mark.parametrize(
    "expression, expected",
    [
        ("skipped.output.results === undefined", True),
        ("skipped.output.results === null", False),
        ("skipped.output.results == null", True),
        ("skipped.output === null", True),
        ("skipped.output.results.length > 0", False),
    ],
)
def test_null_part_way_down_a_path_is_undefined(expression, expected):
    context = {"skipped": {"output": None, "skipped": True}}
    assert evaluate_condition(expression, context) is expected


def test_null_orders_as_zero():
    context = {"value": None}
    assert evaluate_condition("value >= 0", context) is True
    assert evaluate_condition("value < 1", context) is True
    assert evaluate_condition("value > 0", context) is False
    assert evaluate_condition("inputs.missing >= 0", context) is False


def test_templates_still_render_null_part_way_down_a_path():
    context = {"a": {"b": None}}
    assert resolve_template("{{ a.b.c }}", context) is None
    assert resolve_template("c={{ a.b.c }}", context) == "c=null"


def test_sole_path_is_tested_for_truthiness():
    assert evaluate_condition("{{ search.output.results }}", CONTEXT) is True
    assert evaluate_condition("{{ inputs.empty }}", CONTEXT) is False
    assert evaluate_condition("{{ inputs.missing }}", CONTEXT) is False


def test_mixed_text_is_resolved_then_evaluated():
    assert evaluate_condition("{{ search.output.total }} > 2", CONTEXT) is True
    assert evaluate_condition("{{ search.output.total }} > 7", CONTEXT) is False


def test_non_string_conditions():
    assert evaluate_condition(True, CONTEXT) is True
    assert evaluate_condition(0, CONTEXT) is False
    assert evaluate_condition(None, CONTEXT) is False


def test_malformed_conditions_evaluate_false():
    assert evaluate_condition("search.output.total >>> 3", CONTEXT) is False
    assert evaluate_condition("((inputs.count", CONTEXT) is False
    assert evaluate_condition("inputs.count > ", CONTEXT) is False


def test_parser_rejects_malformed_input():
    with pytest.raises(ConditionSyntaxError):
        parse_condition("a >")
    with pytest.raises(ConditionSyntaxError):
        parse_condition("a ; b")


def test_parse_is_cached():
    assert parse_condition("a.b > 1") is parse_condition("a.b > 1")


def test_truthiness_follows_workflow_values():
    assert is_truthy([]) is True
    assert is_truthy({}) is True
    assert is_truthy("") is False
    assert is_truthy(0) is False
    assert is_truthy(math.nan) is False
    assert is_truthy("0") is True


def test_equality_helpers():
    assert loose_equals(True, 1) is True
    assert loose_equals("", 0) is True
    assert loose_equals([1], [1]) is True
    assert loose_equals({"a": 1}, "x") is False
    assert strict_equals(1, 1.0) is True
    assert strict_equals(True, 1) is False


def test_condition_roots():
    assert condition_roots("{{ item.score > 0.5 }}") == {"item"}
    assert condition_roots("search.output.total > 0 && inputs.enabled") == {"search", "inputs"}
    assert condition_roots("not a condition ;") == set()
