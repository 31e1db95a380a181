from dwe.ir.references import (
    MISSING,
    extract_condition_dependencies,
    extract_dependencies,
    resolve_template,
    step_references,
    stringify,
)


CONTEXT = {
    "inputs": {"name": "Ada", "last": "Lovelace", "nothing": None},
    "defaults": {"limit": 3},
    "search": {"output": {"results": [{"text": "alpha"}, {"text": "beta"}], "total": 2}},
}


def test_extract_dependencies_finds_step_roots():
    assert extract_dependencies("{{ search.output.results }}") == {"search"}
    assert extract_dependencies("{{ a.output.x || b.output.y }}") == {"a", "b"}


def test_extract_dependencies_ignores_workflow_and_iteration_roots():
    value = {
        "q": "{{ inputs.query }}",
        "nested": ["{{ defaults.limit }}", "{{ item.name }}", "{{ index }}"],
        "flag": "{{ true }}",
    }
    assert extract_dependencies(value) == set()


def test_extract_dependencies_skips_quoted_text():
    assert extract_dependencies("{{ a.output.title || 'untitled.value' }}") == {"a"}


def test_extract_condition_dependencies_reads_bare_expressions():
    assert extract_condition_dependencies("search.output.total > 0 && inputs.enabled") == {"search"}
    assert extract_condition_dependencies("{{ rank.output.count >= 1 }}") == {"rank"}
    assert extract_condition_dependencies(None) == set()


def test_sole_template_preserves_type():
    assert resolve_template("{{ search.output.results }}", CONTEXT) == [{"text": "alpha"}, {"text": "beta"}]
    assert resolve_template("{{ search.output.total }}", CONTEXT) == 2


def test_missing_sole_template_resolves_to_none():
    assert resolve_template("{{ search.output.nope }}", CONTEXT) is None
    assert resolve_template("{{ ghost.output }}", CONTEXT) is None


def test_mixed_text_renders_missing_as_empty_and_null_as_text():
    assert resolve_template("Hello {{ inputs.name }}!", CONTEXT) == "Hello Ada!"
    assert resolve_template("Hello {{ inputs.unknown }}!", CONTEXT) == "Hello !"
    assert resolve_template("Value: {{ inputs.nothing }}", CONTEXT) == "Value: null"


def test_indexing_and_length():
    assert resolve_template("{{ search.output.results[1].text }}", CONTEXT) == "beta"
    assert resolve_template("{{ search.output.results.length }}", CONTEXT) == 2
    assert resolve_template("{{ search.output.results[5] }}", CONTEXT) is None


def test_fallback_and_concatenation():
    assert resolve_template("{{ inputs.missing || 'anonymous' }}", CONTEXT) == "anonymous"
    assert resolve_template("{{ inputs.name || 'anonymous' }}", CONTEXT) == "Ada"
    assert resolve_template("{{ inputs.name + ' ' + inputs.last }}", CONTEXT) == "Ada Lovelace"


def test_resolution_recurses_into_collections():
    value = {"list": ["{{ inputs.name }}", 4], "deep": {"n": "{{ defaults.limit }}"}, "flag": True}
    assert resolve_template(value, CONTEXT) == {"list": ["Ada", 4], "deep": {"n": 3}, "flag": True}


def test_stringify_forms():
    assert stringify(True) == "true"
    assert stringify(None) == "null"
    assert stringify(MISSING) == ""
    assert stringify(2.0) == "2"
    assert stringify({"a": 1}) == '{"a":1}'


def test_missing_is_falsy_singleton():
    assert not MISSING
    assert repr(MISSING) == "MISSING"


def test_step_references_drop_loop_binding():
    step = {
        "id": "each",
        "tool": "loop",
        "inputs": {
            "items": "{{ src.output.results }}",
            "as": "doc",
            "step": {"tool": "template", "inputs": {"text": "{{ doc.title }}"}},
        },
    }
    assert step_references(step) == {"src"}


def test_step_references_include_bare_conditional_and_step_condition():
    step = {
        "id": "check",
        "tool": "conditional",
        "condition": "{{ gate.output.open }}",
        "inputs": {"condition": "search.output.total > 0", "then": ["next"]},
    }
    assert step_references(step) == {"search", "gate"}
