"""
Template references inside workflow definitions.

A reference is a ``{{ expression }}`` fragment embedded in any string value of
a step. Expressions are dotted paths (``search.output.results[0].text``) with
an optional ``||`` fallback chain and ``+`` concatenation. There is no
arithmetic and no function call syntax.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterable, List, Mapping, Optional, Set, Tuple

from dwe.ir.spec_schema import StepKind, parse_step_kind, step_kind_name

TEMPLATE_RE = re.compile(r"\{\{\s*(.+?)\s*\}\}")
SOLE_TEMPLATE_RE = re.compile(r"^\{\{\s*([^}]+?)\s*\}\}$")
IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
INDEXED_SEGMENT_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\[(\d+)\]$")
NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")

_QUOTED_RE = re.compile(r"'[^']*'|\"[^\"]*\"")
_ROOT_RE = re.compile(r"(?<![A-Za-z0-9_.\]])([A-Za-z_][A-Za-z0-9_]*)")

LITERAL_WORDS = frozenset({"true", "false", "null", "undefined"})
WORKFLOW_ROOTS = frozenset({"inputs", "defaults"})
ITERATION_ROOTS = frozenset({"item", "index"})
IGNORED_ROOTS = LITERAL_WORDS | WORKFLOW_ROOTS | ITERATION_ROOTS

Segment = Tuple[str, Optional[int]]


class _Missing:
    """Marker for a path that does not resolve; distinct from an explicit null."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


def is_template_string(value: Any) -> bool:
    return isinstance(value, str) and TEMPLATE_RE.search(value) is not None


def expression_roots(expression: str) -> Set[str]:
    """Root identifiers of every path in a bare expression, literals excluded."""

    stripped = _QUOTED_RE.sub(" ", expression)
    return {
        match.group(1)
        for match in _ROOT_RE.finditer(stripped)
        if match.group(1) not in LITERAL_WORDS
    }


def extract_dependencies(value: Any) -> Set[str]:
    """Step ids referenced by ``{{ }}`` expressions anywhere inside ``value``."""

    deps: Set[str] = set()
    for expression in _iter_expressions(value):
        deps.update(root for root in expression_roots(expression) if root not in IGNORED_ROOTS)
    return deps


def extract_condition_dependencies(condition: Any) -> Set[str]:
    """Like ``extract_dependencies`` but also reads bare (unwrapped) conditions."""

    if not isinstance(condition, str):
        return set()
    if is_template_string(condition):
        return extract_dependencies(condition)
    return {root for root in expression_roots(condition) if root not in IGNORED_ROOTS}


def _iter_expressions(value: Any) -> Iterable[str]:
    if isinstance(value, str):
        for match in TEMPLATE_RE.finditer(value):
            yield match.group(1).strip()
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from _iter_expressions(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _iter_expressions(item)


def parse_path(expression: str) -> List[Segment]:
    trimmed = expression.strip()
    if not trimmed:
        raise ValueError("Empty expression")

    segments: List[Segment] = []
    for part in trimmed.split("."):
        indexed = INDEXED_SEGMENT_RE.match(part)
        if indexed:
            segments.append((indexed.group(1), int(indexed.group(2))))
            continue
        if IDENTIFIER_RE.match(part):
            segments.append((part, None))
            continue
        raise ValueError(f'Invalid expression segment: "{part}" in "{expression}"')
    return segments


def resolve_path(segments: List[Segment], context: Any, *, null_is_missing: bool = False) -> Any:
    """
    Walk ``segments`` through ``context``; returns ``MISSING`` for absent keys.

    A null met before the end of the path yields ``None``, or ``MISSING`` when
    ``null_is_missing`` is set.
    """

    current = context
    last = len(segments) - 1
    for position, (key, index) in enumerate(segments):
        if key == "length" and index is None:
            if isinstance(current, (list, tuple, str)) or (
                isinstance(current, Mapping) and "length" not in current
            ):
                current = len(current)
                continue
        if not isinstance(current, Mapping) or key not in current:
            return MISSING
        current = current[key]
        if current is None:
            if null_is_missing and (index is not None or position < last):
                return MISSING
            return None
        if index is not None:
            if not isinstance(current, (list, tuple)) or index >= len(current):
                return MISSING
            current = current[index]
    return current


def resolve_fragment(fragment: str, context: Any) -> Any:
    trimmed = fragment.strip()
    if not trimmed:
        return MISSING
    if len(trimmed) >= 2 and trimmed[0] == trimmed[-1] and trimmed[0] in ("'", '"'):
        return trimmed[1:-1]
    if NUMBER_RE.match(trimmed):
        return parse_number(trimmed)
    if trimmed == "true":
        return True
    if trimmed == "false":
        return False
    if trimmed == "null":
        return None
    if trimmed == "undefined":
        return MISSING
    return resolve_path(parse_path(trimmed), context)


def parse_number(text: str) -> Any:
    return float(text) if "." in text else int(text)


def resolve_expression(expression: str, context: Any) -> Any:
    """Resolve the inside of one ``{{ }}`` block (paths, ``||`` and ``+``)."""

    trimmed = expression.strip()

    if "||" in trimmed:
        parts = split_outside_quotes(trimmed, "||")
        if len(parts) > 1:
            for part in parts:
                value = resolve_expression(part, context)
                if value is not MISSING and value is not None and value != "" and value is not False:
                    return value
            return resolve_expression(parts[-1], context)

    if "+" in trimmed:
        parts = split_outside_quotes(trimmed, "+")
        if len(parts) > 1:
            pieces = []
            for part in parts:
                value = resolve_fragment(part, context)
                pieces.append("" if value is MISSING or value is None else stringify(value))
            return "".join(pieces)

    return resolve_fragment(trimmed, context)


def split_outside_quotes(text: str, operator: str) -> List[str]:
    parts: List[str] = []
    current: List[str] = []
    quote: Optional[str] = None
    i = 0
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == quote:
                quote = None
            current.append(ch)
        elif ch in ("'", '"'):
            quote = ch
            current.append(ch)
        elif text.startswith(operator, i):
            parts.append("".join(current))
            current = []
            i += len(operator)
            continue
        else:
            current.append(ch)
        i += 1
    parts.append("".join(current))
    return parts


def stringify(value: Any) -> str:
    """Textual form of a resolved value, as it appears inside composed strings."""

    if value is MISSING:
        return ""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def resolve_string(text: str, context: Any) -> Any:
    if "{{" not in text:
        return text

    sole = SOLE_TEMPLATE_RE.match(text)
    if sole:
        try:
            value = resolve_expression(sole.group(1), context)
        except ValueError:
            return None
        return None if value is MISSING else value

    def _substitute(match: "re.Match[str]") -> str:
        try:
            return stringify(resolve_expression(match.group(1), context))
        except ValueError:
            return ""

    return TEMPLATE_RE.sub(_substitute, text)


def resolve_template(value: Any, context: Any) -> Any:
    """Recursively resolve every template string inside ``value``."""

    if isinstance(value, str):
        return resolve_string(value, context)
    if isinstance(value, list):
        return [resolve_template(item, context) for item in value]
    if isinstance(value, Mapping):
        return {key: resolve_template(item, context) for key, item in value.items()}
    return value


def step_references(step: Mapping[str, Any]) -> Set[str]:
    """
    Every root a step refers to through its inputs, condition and forEach.

    A conditional's ``condition`` input and a step-level ``condition`` may be
    written bare (``search.output.total > 0``) as well as template-wrapped.
    A loop's binding name is local to the loop and is not a reference.
    """

    inputs = step.get("inputs") if isinstance(step.get("inputs"), Mapping) else {}
    refs = extract_dependencies(inputs)
    refs |= extract_dependencies(step.get("forEach"))
    refs |= extract_condition_dependencies(step.get("condition"))

    kind = parse_step_kind(step_kind_name(step))
    if kind is StepKind.CONDITIONAL:
        refs |= extract_condition_dependencies(inputs.get("condition"))
    elif kind is StepKind.LOOP and isinstance(inputs.get("as"), str):
        refs.discard(inputs["as"])
    return refs
