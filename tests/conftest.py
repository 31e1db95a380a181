import pytest


@pytest.fixture
def search_workflow():
    """Query, then summarize the results with a template."""
    return {
        "name": "search-and-summarize",
        "description": "Searches a collection and summarizes the hits",
        "version": "1.0.0",
        "inputs": {
            "query": {"type": "string", "required": True, "description": "Search text"},
            "limit": {"type": "number", "default": 5, "description": "Max hits"},
        },
        "steps": [
            {
                "id": "search",
                "name": "Search",
                "tool": "query",
                "inputs": {"query": "{{ inputs.query }}", "limit": "{{ inputs.limit }}"},
            },
            {
                "id": "summary",
                "name": "Summary",
                "tool": "template",
                "inputs": {"text": "Found {{ search.output.total }} docs for {{ inputs.query }}"},
            },
        ],
        "output": {
            "results": "{{ search.output.results }}",
            "summary": "{{ summary.output.text }}",
        },
    }


@pytest.fixture
def branching_workflow():
    """Search, then either summarize or fall back depending on the hit count."""
    return {
        "name": "branching",
        "inputs": {"query": {"type": "string", "required": True}},
        "steps": [
            {"id": "search", "tool": "query", "inputs": {"query": "{{ inputs.query }}"}},
            {
                "id": "check",
                "tool": "conditional",
                "inputs": {
                    "condition": "{{ search.output.total > 0 }}",
                    "then": ["summarize"],
                    "else": ["fallback"],
                },
            },
            {
                "id": "summarize",
                "tool": "template",
                "inputs": {"text": "Top hit: {{ search.output.results[0].text }}"},
            },
            {"id": "fallback", "tool": "template", "inputs": {"text": "Nothing found for {{ inputs.query }}"}},
        ],
        "output": {
            "summary": "{{ summarize.output.text }}",
            "fallback": "{{ fallback.output.text }}",
        },
    }


@pytest.fixture
def query_hits():
    return {"results": [{"text": "alpha", "score": 0.9}, {"text": "beta", "score": 0.4}], "total": 2}
