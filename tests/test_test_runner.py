import json

from dwe.runtime.test_runner import load_test_cases, run_all_tests, run_workflow_test


def _case(query_hits, **expect):
    return {
        "name": "finds documents",
        "inputs": {"query": "vectors"},
        "mocks": {"query": query_hits},
        "expect": expect,
    }


def test_passing_case_reports_each_assertion(search_workflow, query_hits):
    case = _case(
        query_hits,
        steps={"search": {"status": "completed"}, "summary": {"status": "completed"}},
        output={"results": {"type": "array", "minLength": 1}, "summary": {"type": "string"}},
        noErrors=True,
    )

    result = run_workflow_test(search_workflow, case)

    assert result.passed is True
    assert [item.message for item in result.assertions] == [
        'Step "search" completed',
        'Step "summary" completed',
        "output.results matches expected shape",
        "output.summary matches expected shape",
        "No step errors",
    ]


def test_output_shape_failures(search_workflow, query_hits):
    case = _case(
        query_hits,
        output={"results": {"type": "string"}, "summary": {"minLength": 500}},
    )

    result = run_workflow_test(search_workflow, case)

    assert result.passed is False
    messages = [item.message for item in result.assertions if not item.passed]
    assert messages == [
        "output.results should be string, got array",
        "output.summary length 24 < minLength 500",
    ]


def test_step_status_expectations(branching_workflow):
    case = {
        "name": "empty search falls back",
        "inputs": {"query": "nothing"},
        "mocks": {"query": {"results": [], "total": 0}},
        "expect": {
            "steps": {
                "summarize": {"status": "skipped"},
                "fallback": {"status": "skipped"},
                "ghost": {"status": "completed"},
            }
        },
    }

    result = run_workflow_test(branching_workflow, case)

    assert result.passed is False
    assert [(item.passed, item.message) for item in result.assertions] == [
        (True, 'Step "summarize" skipped'),
        (False, 'Step "fallback" should have been skipped'),
        (False, 'Step "ghost" not found in results'),
    ]


def test_step_errors_fail_no_errors_expectation():
    definition = {
        "name": "fragile",
        "steps": [{"id": "search", "tool": "query", "continueOnError": True, "inputs": {"query": "x"}}],
    }

    def explode(inputs, defaults, context):
        raise RuntimeError("index offline")

    result = run_workflow_test(
        definition,
        {"name": "errors", "mocks": {"query": explode}, "expect": {"steps": {"search": {"status": "completed"}}, "noErrors": True}},
    )

    assert result.passed is False
    assert [item.message for item in result.assertions] == [
        'Step "search" errored: index offline',
        "Expected no errors but found: search: index offline",
    ]


def test_run_failure_is_reported_as_error(search_workflow):
    result = run_workflow_test(search_workflow, {"name": "no inputs", "mocks": {"query": {}}})
    assert result.passed is False
    assert result.errors == ['Missing required input: "query"']
    assert result.assertions == []


def _write_package(root, query_hits):
    tests_dir = root / "tests"
    tests_dir.mkdir()
    (tests_dir / "a-basic.test.json").write_text(
        json.dumps(
            {
                "name": "basic",
                "inputs": {"query": "q"},
                "mocks": {"query": query_hits},
                "expect": {"output": {"results": {"type": "array"}}},
            }
        ),
        encoding="utf-8",
    )
    (tests_dir / "b-broken.test.json").write_text("{not json", encoding="utf-8")
    (tests_dir / "notes.json").write_text("{}", encoding="utf-8")


def test_load_test_cases(tmp_path, query_hits):
    _write_package(tmp_path, query_hits)

    cases = load_test_cases(tmp_path)

    assert [case.file for case in cases] == ["a-basic.test.json", "b-broken.test.json"]
    assert cases[0].name == "basic"
    assert cases[0].load_error is None
    assert cases[1].name == "b-broken.test.json"
    assert cases[1].load_error.startswith("Failed to load:")


def test_load_test_cases_without_tests_dir(tmp_path):
    assert load_test_cases(tmp_path) == []


def test_run_all_tests_summarizes(tmp_path, search_workflow, query_hits):
    _write_package(tmp_path, query_hits)

    suite = run_all_tests(search_workflow, tmp_path)

    assert (suite.total, suite.passed, suite.failed) == (2, 1, 1)
    assert suite.results[0].passed is True
    assert suite.results[1].error.startswith("Failed to load:")


def test_run_all_tests_filters_by_name(tmp_path, search_workflow, query_hits):
    _write_package(tmp_path, query_hits)

    suite = run_all_tests(search_workflow, tmp_path, test_name="basic")

    assert suite.total == 1
    assert suite.results[0].name == "basic"
