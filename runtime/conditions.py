"""
Restricted boolean expressions used by step conditions, filters and branches.

Supported grammar, lowest precedence first::

    or         := and ('||' and)*
    and        := not ('&&' not)*
    not        := '!' not | comparison
    comparison := atom (('===' | '!==' | '>=' | '<=' | '==' | '!=' | '>' | '<') atom)?
    atom       := '(' or ')' | number | string | true | false | null | undefined | path

Expressions are parsed once into a small AST (cached) and then interpreted
against a context mapping. ``evaluate_condition`` never raises: anything that
fails to parse or resolve evaluates to ``False``.
"""

from __future__ import annotations

import functools
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Set, Tuple, Union

from dwe.ir.references import (
    MISSING,
    SOLE_TEMPLATE_RE,
    TEMPLATE_RE,
    parse_number,
    parse_path,
    resolve_expression,
    resolve_path,
    resolve_string,
)

LOGGER = logging.getLogger(__name__)

COMPARISON_OPERATORS = ("===", "!==", ">=", "<=", "==", "!=", ">", "<")
OPERATOR_CHARS = frozenset("><=!&|")

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<number>-?\d+(?:\.\d+)?)(?![A-Za-z_])
      | (?P<string>'[^']*'|"[^"]*")
      | (?P<op>===|!==|>=|<=|==|!=|>|<)
      | (?P<and>&&)
      | (?P<or>\|\|)
      | (?P<not>!)
      | (?P<lparen>\()
      | (?P<rparen>\))
      | (?P<path>[A-Za-z_][A-Za-z0-9_]*(?:\[\d+\])?(?:\.[A-Za-z_][A-Za-z0-9_]*(?:\[\d+\])?)*)
    )
    """,
    re.VERBOSE,
)

_KEYWORDS = {"true": True, "false": False, "null": None, "undefined": MISSING}


class ConditionSyntaxError(ValueError):
    """Raised by the parser for expressions outside the supported grammar."""


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Path:
    segments: Tuple[Tuple[str, Optional[int]], ...]

    @property
    def root(self) -> str:
        return self.segments[0][0]


@dataclass(frozen=True)
class Not:
    operand: "Node"


@dataclass(frozen=True)
class BoolOp:
    op: str
    operands: Tuple["Node", ...]


@dataclass(frozen=True)
class Compare:
    op: str
    left: "Node"
    right: "Node"


Node = Union[Literal, Path, Not, BoolOp, Compare]
Token = Tuple[str, str]


def tokenize(expression: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    end = len(expression.rstrip())
    while pos < end:
        match = _TOKEN_RE.match(expression, pos)
        if not match or match.end() == pos:
            raise ConditionSyntaxError(f"Unexpected input at {pos}: {expression[pos:]!r}")
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> Optional[Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self, kind: str) -> Optional[Token]:
        token = self.peek()
        if token and token[0] == kind:
            self.pos += 1
            return token
        return None

    def parse(self) -> Node:
        if not self.tokens:
            raise ConditionSyntaxError("Empty expression")
        node = self.parse_or()
        if self.peek() is not None:
            raise ConditionSyntaxError(f"Unexpected token {self.peek()[1]!r}")
        return node

    def parse_or(self) -> Node:
        operands = [self.parse_and()]
        while self.take("or"):
            operands.append(self.parse_and())
        return operands[0] if len(operands) == 1 else BoolOp("||", tuple(operands))

    def parse_and(self) -> Node:
        operands = [self.parse_not()]
        while self.take("and"):
            operands.append(self.parse_not())
        return operands[0] if len(operands) == 1 else BoolOp("&&", tuple(operands))

    def parse_not(self) -> Node:
        if self.take("not"):
            return Not(self.parse_not())
        return self.parse_comparison()

    def parse_comparison(self) -> Node:
        left = self.parse_atom()
        op = self.take("op")
        if op is None:
            return left
        return Compare(op[1], left, self.parse_atom())

    def parse_atom(self) -> Node:
        token = self.peek()
        if token is None:
            raise ConditionSyntaxError("Unexpected end of expression")
        kind, text = token
        self.pos += 1
        if kind == "lparen":
            node = self.parse_or()
            if not self.take("rparen"):
                raise ConditionSyntaxError("Missing closing parenthesis")
            return node
        if kind == "number":
            return Literal(parse_number(text))
        if kind == "string":
            return Literal(text[1:-1])
        if kind == "path":
            if text in _KEYWORDS:
                return Literal(_KEYWORDS[text])
            return Path(tuple(parse_path(text)))
        raise ConditionSyntaxError(f"Unexpected token {text!r}")


@functools.lru_cache(maxsize=512)
def parse_condition(expression: str) -> Node:
    return _Parser(tokenize(expression)).parse()


def _category(value: Any) -> str:
    if value is MISSING:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"


def is_truthy(value: Any) -> bool:
    """Truthiness of workflow values: empty lists and mappings count as true."""

    category = _category(value)
    if category in ("undefined", "null"):
        return False
    if category == "boolean":
        return value
    if category == "number":
        return value != 0 and value == value
    if category == "string":
        return value != ""
    return True


def _to_number(value: Any) -> Optional[float]:
    category = _category(value)
    if category == "null":
        return 0.0
    if category == "number":
        return float(value)
    if category == "boolean":
        return 1.0 if value else 0.0
    if category == "string":
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return None
    return None


def loose_equals(left: Any, right: Any) -> bool:
    left_cat, right_cat = _category(left), _category(right)
    if left_cat in ("undefined", "null") or right_cat in ("undefined", "null"):
        return left_cat in ("undefined", "null") and right_cat in ("undefined", "null")
    if left_cat == right_cat:
        return left == right
    if "object" in (left_cat, right_cat):
        return False
    left_num, right_num = _to_number(left), _to_number(right)
    return left_num is not None and right_num is not None and left_num == right_num


def strict_equals(left: Any, right: Any) -> bool:
    return _category(left) == _category(right) and (left is right or left == right)


def _ordered(op: str, left: Any, right: Any) -> bool:
    left_cat, right_cat = _category(left), _category(right)
    if left_cat == "string" and right_cat == "string":
        a, b = left, right
    else:
        if "object" in (left_cat, right_cat) or "undefined" in (left_cat, right_cat):
            return False
        a, b = _to_number(left), _to_number(right)
        if a is None or b is None:
            return False
    if op == ">":
        return a > b
    if op == "<":
        return a < b
    if op == ">=":
        return a >= b
    return a <= b


def _compare(op: str, left: Any, right: Any) -> bool:
    if op == "===":
        return strict_equals(left, right)
    if op == "!==":
        return not strict_equals(left, right)
    if op == "==":
        return loose_equals(left, right)
    if op == "!=":
        return not loose_equals(left, right)
    return _ordered(op, left, right)


def interpret(node: Node, context: Mapping[str, Any]) -> Any:
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Path):
        return resolve_path(list(node.segments), context, null_is_missing=True)
    if isinstance(node, Not):
        return not is_truthy(interpret(node.operand, context))
    if isinstance(node, BoolOp):
        if node.op == "&&":
            return all(is_truthy(interpret(operand, context)) for operand in node.operands)
        return any(is_truthy(interpret(operand, context)) for operand in node.operands)
    if isinstance(node, Compare):
        return _compare(node.op, interpret(node.left, context), interpret(node.right, context))
    raise TypeError(f"Unknown condition node: {node!r}")


def evaluate_expression(expression: str, context: Mapping[str, Any]) -> bool:
    """Evaluate a bare (unwrapped) expression; raises on syntax errors."""

    return is_truthy(interpret(parse_condition(expression.strip()), context))


def evaluate_condition(expression: Any, context: Mapping[str, Any]) -> bool:
    """
    Evaluate a step or branch condition against ``context``.

    ``{{ expr }}`` with an operator inside is evaluated as a condition;
    ``{{ path }}`` alone is resolved and tested for truthiness. Text mixing
    templates and operators is resolved first and the result evaluated.
    """

    if not isinstance(expression, str):
        return is_truthy(MISSING if expression is None else expression)

    text = expression.strip()
    try:
        sole = SOLE_TEMPLATE_RE.match(text)
        if sole:
            inner = sole.group(1).strip()
            if any(ch in OPERATOR_CHARS for ch in inner):
                return evaluate_expression(inner, context)
            return is_truthy(resolve_expression(inner, context))
        if "{{" in text:
            resolved = resolve_string(text, context)
            if not isinstance(resolved, str):
                return is_truthy(resolved)
            return evaluate_expression(resolved, context)
        return evaluate_expression(text, context)
    except Exception as exc:  # conditions never fail a run
        LOGGER.debug("Condition %r evaluated to false: %s", expression, exc)
        return False


def condition_roots(expression: Any) -> Set[str]:
    """Root identifiers a condition reads, keywords excluded."""

    if not isinstance(expression, str):
        return set()
    text = TEMPLATE_RE.sub(lambda match: f" {match.group(1)} ", expression)
    try:
        node = parse_condition(text.strip())
    except ValueError:
        return set()

    roots: Set[str] = set()
    stack: List[Node] = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, Path):
            roots.add(current.root)
        elif isinstance(current, Not):
            stack.append(current.operand)
        elif isinstance(current, BoolOp):
            stack.extend(current.operands)
        elif isinstance(current, Compare):
            stack.extend((current.left, current.right))
    return roots
