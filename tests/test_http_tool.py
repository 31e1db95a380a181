import functools
import json

import httpx
import pytest

from dwe.runtime.dispatcher import default_registry
from dwe.runtime.executor import WorkflowEngine, RunOptions
from dwe.tools.http import execute_http, html_to_text


def _transport(handler):
    return httpx.MockTransport(handler)


def test_get_returns_parsed_json():
    def handler(request):
        assert request.method == "GET"
        assert request.headers["x-api-key"] == "secret"
        return httpx.Response(200, json={"ok": True})

    result = execute_http(
        {"url": "https://api.example.test/items", "headers": {"X-Api-Key": "secret"}},
        transport=_transport(handler),
    )

    assert result["status"] == 200
    assert result["statusText"] == "OK"
    assert result["body"] == {"ok": True}
    assert result["headers"]["content-type"] == "application/json"
    assert isinstance(result["durationMs"], int)


def test_object_body_is_sent_as_json():
    captured = {}

    def handler(request):
        captured["body"] = json.loads(request.content)
        captured["content_type"] = request.headers["content-type"]
        return httpx.Response(201, json={"id": 7})

    result = execute_http(
        {"url": "https://api.example.test/items", "method": "post", "body": {"name": "doc"}},
        transport=_transport(handler),
    )

    assert result["status"] == 201
    assert captured == {"body": {"name": "doc"}, "content_type": "application/json"}


def test_get_never_sends_a_body():
    def handler(request):
        assert request.content == b""
        return httpx.Response(200, text="fine")

    result = execute_http(
        {"url": "https://api.example.test/", "body": {"ignored": True}}, transport=_transport(handler)
    )
    assert result["body"] == "fine"


def test_text_response_type_and_error_status_is_returned():
    def handler(request):
        return httpx.Response(404, text='{"looks": "like json"}')

    result = execute_http(
        {"url": "https://api.example.test/missing", "responseType": "text"}, transport=_transport(handler)
    )
    assert result["status"] == 404
    assert result["statusText"] == "Not Found"
    assert result["body"] == '{"looks": "like json"}'


def test_extract_text_strips_markup():
    page = "<html><head><style>p {}</style></head><body><p>Hello &amp; <b>bye</b></p><script>x()</script></body></html>"

    def handler(request):
        return httpx.Response(200, html=page)

    result = execute_http({"url": "https://example.test/", "extract": "text"}, transport=_transport(handler))
    assert result["body"] == "Hello & bye"


def test_redirects_are_not_followed_by_default():
    def handler(request):
        if request.url.path == "/old":
            return httpx.Response(302, headers={"location": "https://example.test/new"})
        return httpx.Response(200, json={"moved": True})

    transport = _transport(handler)
    assert execute_http({"url": "https://example.test/old"}, transport=transport)["status"] == 302

    followed = execute_http({"url": "https://example.test/old", "followRedirects": True}, transport=transport)
    assert followed["status"] == 200
    assert followed["body"] == {"moved": True}


def test_timeout_and_connection_errors():
    def slow(request):
        raise httpx.ReadTimeout("too slow", request=request)

    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TimeoutError, match="timed out after 5ms"):
        execute_http({"url": "https://example.test/", "timeout": 5}, transport=_transport(slow))
    with pytest.raises(ConnectionError, match="refused"):
        execute_http({"url": "https://example.test/"}, transport=_transport(refused))


def test_url_is_required():
    with pytest.raises(ValueError, match='http: "url" input is required'):
        execute_http({})


def test_html_to_text():
    assert html_to_text("<p>a</p>\n\n<p>b&nbsp;c</p>") == "a b c"
    assert html_to_text("<style>p { color: red }</style><p>x</p>") == "x"


def test_html_to_text_ignores_attributes_comments_and_scripts():
    markup = '<p title="a>b">x</p><!-- hidden <i>note</i> --><script>if (a<b) {}</script>y'
    assert html_to_text(markup) == "x y"


def test_http_step_in_a_workflow():
    def handler(request):
        return httpx.Response(200, json={"title": f"Item {request.url.params['id']}"})

    registry = default_registry().with_overrides(
        {"http": functools.partial(execute_http, transport=_transport(handler))}
    )
    definition = {
        "name": "fetch",
        "inputs": {"id": {"type": "string", "required": True}},
        "steps": [
            {"id": "fetch", "tool": "http", "inputs": {"url": "https://api.example.test/items?id={{ inputs.id }}"}},
        ],
        "output": {"title": "{{ fetch.output.body.title }}", "status": "{{ fetch.output.status }}"},
    }

    result = WorkflowEngine(registry=registry).run(definition, RunOptions(inputs={"id": "42"}))
    assert result.output == {"title": "Item 42", "status": 200}
