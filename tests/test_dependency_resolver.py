import pytest

from dwe.compiler.dependency_resolver import (
    DependencyResolver,
    ExecutionPlanError,
    build_dependency_graph,
    build_execution_plan,
)
from dwe.ir.spec_schema import WorkflowDefinition


def _template(step_id, text="x", **extra):
    return {"id": step_id, "tool": "template", "inputs": {"text": text}, **extra}


def test_diamond_layers():
    steps = [
        _template("a"),
        _template("b"),
        _template("c", "{{ a.output.text }} {{ b.output.text }}"),
    ]
    assert build_execution_plan(steps) == [["a", "b"], ["c"]]


def test_layers_follow_dependencies_not_definition_order():
    steps = [
        _template("c", "{{ b.output.text }}"),
        _template("a"),
        _template("b", "{{ a.output.text }}"),
    ]
    assert build_execution_plan(steps) == [["a"], ["b"], ["c"]]


def test_independent_steps_keep_definition_order():
    assert build_execution_plan([_template("z"), _template("y"), _template("x")]) == [["z", "y", "x"]]


def test_branch_members_run_after_their_conditional():
    steps = [
        _template("then_step"),
        {
            "id": "gate",
            "tool": "conditional",
            "inputs": {"condition": "{{ inputs.flag }}", "then": ["then_step"], "else": []},
        },
    ]
    assert build_dependency_graph(steps) == {"then_step": {"gate"}, "gate": set()}
    assert build_execution_plan(steps) == [["gate"], ["then_step"]]


def test_condition_and_for_each_create_edges():
    steps = [
        _template("source"),
        _template("gated", condition="source.output.charCount > 0"),
        _template("each", "{{ item }}", forEach="{{ source.output.items }}"),
    ]
    graph = build_dependency_graph(steps)
    assert graph["gated"] == {"source"}
    assert graph["each"] == {"source"}


def test_unknown_references_are_dropped_from_graph():
    assert build_dependency_graph([_template("a", "{{ ghost.output }}")]) == {"a": set()}


def test_cycle_cannot_be_planned():
    steps = [_template("a", "{{ b.output.text }}"), _template("b", "{{ a.output.text }}")]
    with pytest.raises(ExecutionPlanError):
        build_execution_plan(steps)


def test_resolver_queries():
    steps = [
        _template("a"),
        _template("b", "{{ a.output.text }}"),
        _template("c", "{{ b.output.text }}"),
        _template("d"),
    ]
    resolver = DependencyResolver(steps)

    assert resolver.roots() == ["a", "d"]
    assert resolver.sinks() == ["c", "d"]
    assert resolver.dependencies("c") == {"b"}
    assert resolver.topological_order() == ["a", "d", "b", "c"]
    assert resolver.has_path("a", "c") is True
    assert resolver.has_path("c", "a") is False
    assert resolver.has_path("d", "c") is False


def test_plan_accepts_typed_steps(search_workflow):
    definition = WorkflowDefinition.model_validate(search_workflow)
    assert build_execution_plan(definition.steps) == [["search"], ["summary"]]
