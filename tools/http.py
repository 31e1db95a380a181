"""
Backend for the ``http`` step kind.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx
from bs4 import BeautifulSoup, Comment

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30000
BODYLESS_METHODS = frozenset({"GET", "HEAD"})


def html_to_text(markup: str) -> str:
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()
    # get_text keeps &nbsp; as \xa0, split() folds it with other whitespace
    return " ".join(soup.get_text(" ", strip=True).split())


def _timeout_seconds(value: Any) -> float:
    try:
        millis = float(value)
    except (TypeError, ValueError):
        millis = DEFAULT_TIMEOUT_MS
    if millis <= 0:
        millis = DEFAULT_TIMEOUT_MS
    return millis / 1000.0


def execute_http(
    inputs: Dict[str, Any],
    defaults: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
    *,
    transport: Optional[httpx.BaseTransport] = None,
) -> Dict[str, Any]:
    """
    Perform one HTTP request described by the step inputs.

    Non-2xx responses are returned, not raised; only transport failures
    (timeouts, refused connections) fail the step.
    """

    url = inputs.get("url")
    if not url or not isinstance(url, str):
        raise ValueError('http: "url" input is required')

    method = str(inputs.get("method") or "GET").upper()
    headers = {str(key): str(value) for key, value in (inputs.get("headers") or {}).items()}
    timeout_ms = inputs.get("timeout", DEFAULT_TIMEOUT_MS)
    follow_redirects = bool(inputs.get("followRedirects", False))
    response_type = inputs.get("responseType") or "json"

    request_kwargs: Dict[str, Any] = {"headers": headers}
    body = inputs.get("body")
    if body is not None and method not in BODYLESS_METHODS:
        if isinstance(body, (dict, list)):
            request_kwargs["json"] = body
            if not any(key.lower() == "content-type" for key in headers):
                headers["Content-Type"] = "application/json"
        else:
            request_kwargs["content"] = str(body)

    started = time.perf_counter()
    try:
        with httpx.Client(
            transport=transport,
            timeout=_timeout_seconds(timeout_ms),
            follow_redirects=follow_redirects,
        ) as client:
            response = client.request(method, url, **request_kwargs)
    except httpx.TimeoutException as exc:
        raise TimeoutError(f"http: request to {url} timed out after {timeout_ms}ms") from exc
    except httpx.RequestError as exc:
        raise ConnectionError(f"http: request to {url} failed: {exc}") from exc
    duration_ms = int((time.perf_counter() - started) * 1000)

    if response_type == "text":
        payload: Any = response.text
    else:
        try:
            payload = response.json()
        except ValueError:
            payload = response.text

    if inputs.get("extract") == "text" and isinstance(payload, str):
        payload = html_to_text(payload)

    LOGGER.debug("http %s %s -> %s in %dms", method, url, response.status_code, duration_ms)
    return {
        "status": response.status_code,
        "statusText": response.reason_phrase,
        "headers": dict(response.headers),
        "body": payload,
        "durationMs": duration_ms,
    }
