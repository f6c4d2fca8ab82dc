"""Step run-guards and free-form boolean conditions.

``evaluate_conditions`` checks a list of ``{field, operator, value}`` records
(AND semantics). ``evaluate_expression`` evaluates strings such as
``{{score.value}} >= 8 && {{score.tier}} != null`` with a small
recursive-descent parser. Nothing here ever calls ``eval``.

Grammar::

    expr       := or
    or         := and ( "||" and )*
    and        := not ( "&&" not )*
    not        := "!" not | comparison
    comparison := unary ( ("=="|"==="|"!="|"!=="|"<"|"<="|">"|">=") unary )?
    unary      := ("-"|"+") unary | primary
    primary    := NUMBER | STRING | true | false | null | undefined
                | PATH | "(" expr ")"
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Iterable

from crmflow.exceptions import ExpressionError
from crmflow.types import Condition
from crmflow.workflows.templates import MISSING, lookup_with_fallback, render_value, resolve

logger = logging.getLogger(__name__)


# ── Value coercion (loose-typed semantics stored configs were written for) ───

def _to_number(value: Any) -> float:
    if value is MISSING:
        return math.nan
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if text == "":
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def _to_text(value: Any) -> str:
    if value is MISSING:
        return "undefined"
    if value is None:
        return "null"
    return render_value(value)


def _truthy(value: Any) -> bool:
    if value is MISSING or value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    return True


def _is_empty(value: Any) -> bool:
    return value is MISSING or value is None or value == ""


def _strict_equal(left: Any, right: Any) -> bool:
    if left is MISSING or right is MISSING:
        return left is right
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return float(left) == float(right)
    return type(left) is type(right) and left == right


def _loose_equal(left: Any, right: Any) -> bool:
    nullish = (None, MISSING)
    if left in nullish or right in nullish:
        return left in nullish and right in nullish
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    if isinstance(left, (bool, int, float)) or isinstance(right, (bool, int, float)):
        if isinstance(left, (dict, list)) or isinstance(right, (dict, list)):
            return False
        return _to_number(left) == _to_number(right)
    return left == right


def _compare(op: str, left: Any, right: Any) -> bool:
    if isinstance(left, str) and isinstance(right, str):
        a, b = left, right
    else:
        a, b = _to_number(left), _to_number(right)
        if math.isnan(a) or math.isnan(b):
            return False
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


# ── Structured run-guards ────────────────────────────────────────────────────

_OPERATOR_ALIASES = {
    "==": "equals",
    "eq": "equals",
    "!=": "not_equals",
    "neq": "not_equals",
    ">": "greater_than",
    "gt": "greater_than",
    "<": "less_than",
    "lt": "less_than",
    ">=": "greater_or_equal",
    "gte": "greater_or_equal",
    "<=": "less_or_equal",
    "lte": "less_or_equal",
}


def _guard_equals(field_value: Any, target: Any) -> bool:
    if isinstance(target, bool):
        return isinstance(field_value, bool) and field_value == target
    return _to_text(field_value) == _to_text(target)


def _check(operator: str, field_value: Any, target: Any) -> bool:
    op = _OPERATOR_ALIASES.get(operator, operator)
    if op == "equals":
        return _guard_equals(field_value, target)
    if op == "not_equals":
        return not _guard_equals(field_value, target)
    if op == "is_empty":
        return _is_empty(field_value)
    if op == "is_not_empty":
        return not _is_empty(field_value)
    if op == "contains":
        if isinstance(field_value, (list, tuple)):
            return any(_to_text(item) == _to_text(target) for item in field_value)
        return _to_text(target) in _to_text(field_value)
    if op in ("greater_than", "less_than", "greater_or_equal", "less_or_equal"):
        symbol = {"greater_than": ">", "less_than": "<",
                  "greater_or_equal": ">=", "less_or_equal": "<="}[op]
        a, b = _to_number(field_value), _to_number(target)
        if math.isnan(a) or math.isnan(b):
            return False
        return _compare(symbol, a, b)
    if op in ("in", "not_in"):
        options = target if isinstance(target, (list, tuple)) else [target]
        found = any(_to_text(field_value) == _to_text(o) for o in options)
        return found if op == "in" else not found
    logger.warning(f"[Conditions] Unknown operator '{operator}' evaluates to false")
    return False


def evaluate_condition(condition: Condition, context: dict) -> bool:
    path = condition.field.replace("{{", "").replace("}}", "").strip()
    field_value = lookup_with_fallback(context, path)
    return _check(condition.operator, field_value, condition.value)


def evaluate_conditions(conditions: Iterable[Condition], context: dict) -> bool:
    """True when every condition holds. An empty list holds trivially."""
    return all(evaluate_condition(c, context) for c in conditions)


# ── Free-form expressions ────────────────────────────────────────────────────

_UNSAFE_CHARS = re.compile(r"[^0-9a-zA-Z_\s.><=!&|()\"'\-+]")
_LOOSE_LITERAL = re.compile(r"(?<![=!])(==|!=)(?!=)\s*(null|true|false)\b")
_QUOTED_KEYWORD = re.compile(r"([\"'])(true|false|null)\1")

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>\d+(?:\.\d+)?)
  | (?P<string>"[^"]*"|'[^']*')
  | (?P<op>===|!==|==|!=|<=|>=|&&|\|\||[<>!()+\-])
  | (?P<path>[A-Za-z_]\w*(?:\.\w+)*)
    """,
    re.VERBOSE,
)

_KEYWORDS = {"true": True, "false": False, "null": None, "undefined": MISSING}


def normalize_expression(expression: str) -> str:
    """Tighten loose comparisons to null/true/false and strip unsafe characters."""
    text = _QUOTED_KEYWORD.sub(lambda m: m.group(2), expression)
    text = _LOOSE_LITERAL.sub(lambda m: f"{m.group(1)}= {m.group(2)}", text)
    return _UNSAFE_CHARS.sub("", text)


def _tokenize(text: str, original: str) -> list[tuple[str, str]]:
    tokens = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise ExpressionError(
                f"Invalid expression: unexpected '{text[pos]}' at {pos}", expression=original
            )
        kind = match.lastgroup
        if kind != "ws":
            tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


class _Parser:
    """Recursive-descent evaluator over the token list."""

    def __init__(self, tokens: list[tuple[str, str]], context: dict | None, original: str):
        self._tokens = tokens
        self._pos = 0
        self._skipping = 0      # >0 while consuming a short-circuited operand
        self._context = context or {}
        self._original = original

    def _error(self, message: str) -> ExpressionError:
        return ExpressionError(f"Invalid expression: {message}", expression=self._original)

    def _peek(self) -> tuple[str, str] | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _accept(self, *ops: str) -> str | None:
        token = self._peek()
        if token is not None and token[0] == "op" and token[1] in ops:
            self._pos += 1
            return token[1]
        return None

    def parse(self) -> Any:
        if not self._tokens:
            raise self._error("empty")
        value = self._or()
        if self._peek() is not None:
            raise self._error(f"unexpected '{self._peek()[1]}'")
        return value

    def _skip(self, operand) -> None:
        self._skipping += 1
        try:
            operand()
        finally:
            self._skipping -= 1

    def _or(self) -> Any:
        left = self._and()
        while self._accept("||"):
            if _truthy(left):
                self._skip(self._and)
            else:
                left = self._and()
        return left

    def _and(self) -> Any:
        left = self._not()
        while self._accept("&&"):
            if _truthy(left):
                left = self._not()
            else:
                self._skip(self._not)
        return left

    def _not(self) -> Any:
        if self._accept("!"):
            return not _truthy(self._not())
        return self._comparison()

    def _comparison(self) -> Any:
        left = self._unary()
        op = self._accept("===", "!==", "==", "!=", "<=", ">=", "<", ">")
        if op is None:
            return left
        right = self._unary()
        if op == "===":
            return _strict_equal(left, right)
        if op == "!==":
            return not _strict_equal(left, right)
        if op == "==":
            return _loose_equal(left, right)
        if op == "!=":
            return not _loose_equal(left, right)
        return _compare(op, left, right)

    def _unary(self) -> Any:
        op = self._accept("-", "+")
        if op is not None:
            number = _to_number(self._unary())
            return -number if op == "-" else number
        return self._primary()

    def _primary(self) -> Any:
        token = self._peek()
        if token is None:
            raise self._error("unexpected end")
        kind, text = token
        self._pos += 1
        if kind == "number":
            return float(text) if "." in text else int(text)
        if kind == "string":
            return text[1:-1]
        if kind == "path":
            if text in _KEYWORDS:
                return _KEYWORDS[text]
            value = lookup_with_fallback(self._context, text)
            if value is MISSING and not self._skipping:
                raise self._error(f"'{text}' is not defined")
            return value
        if kind == "op" and text == "(":
            value = self._or()
            if not self._accept(")"):
                raise self._error("missing ')'")
            return value
        raise self._error(f"unexpected '{text}'")


def evaluate_expression(expression: str, context: dict | None = None) -> bool:
    """Evaluate a boolean expression.

    Placeholders are resolved textually first, then loose comparisons are
    tightened and unsafe characters stripped before parsing. Bare dotted
    paths are looked up in ``context``.

    Raises:
        ExpressionError: malformed expression or undefined identifier
    """
    if not isinstance(expression, str):
        return _truthy(expression)
    resolved = resolve(expression, context or {})
    safe = normalize_expression(resolved)
    tokens = _tokenize(safe, expression)
    return _truthy(_Parser(tokens, context, expression).parse())
