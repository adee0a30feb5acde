"""Condition expressions for CONDITION steps.

The language is deliberately tiny:

    entity.score >= 70 && (context.to_stage == 'Offer' || !entity.archived)

References live in two namespaces, `entity.<field>` (the entity snapshot) and
`context.<field>` (the execution context). They are substituted with literal
values before the expression tree is evaluated by a small recursive-descent
parser. Nothing is ever handed to the host interpreter.

Evaluation fails closed: any problem yields False together with an error.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_ALLOWED_CHARS = re.compile(r"^[A-Za-z0-9_\s.'\"<>=!&|()\-]*$")

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>-?\d+(?:\.\d+)?)
  | (?P<string>"[^"]*"|'[^']*')
  | (?P<op>===|!==|==|!=|>=|<=|&&|\|\||[<>!()])
  | (?P<name>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)
    """,
    re.VERBOSE,
)

_KEYWORDS: dict[str, object] = {"true": True, "false": False, "null": None}
_NAMESPACES = ("entity", "context")
_COMPARISONS = {"==", "!=", "===", "!==", ">", "<", ">=", "<="}


class ExpressionError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class Evaluation:
    value: bool
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class _Token:
    kind: str  # "literal" | "op"
    value: object


def _resolve(path: str, context: Mapping[str, object]) -> object:
    namespace, _, rest = path.partition(".")
    if namespace not in _NAMESPACES or not rest:
        raise ExpressionError(f"Unknown reference {path!r}")

    current: object
    if namespace == "entity":
        current = context.get("entity")
    else:
        current = context

    for part in rest.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def tokenize(expression: str, context: Mapping[str, object]) -> list[_Token]:
    """Split an expression into tokens, substituting references with literals."""

    tokens: list[_Token] = []
    pos = 0
    while pos < len(expression):
        match = _TOKEN_RE.match(expression, pos)
        if match is None:
            raise ExpressionError(f"Unexpected input at position {pos}: {expression[pos:]!r}")
        pos = match.end()
        group = match.lastgroup
        text = match.group()
        if group == "ws":
            continue
        if group == "number":
            tokens.append(_Token("literal", float(text) if "." in text else int(text)))
        elif group == "string":
            tokens.append(_Token("literal", text[1:-1]))
        elif group == "op":
            tokens.append(_Token("op", text))
        elif text in _KEYWORDS:
            tokens.append(_Token("literal", _KEYWORDS[text]))
        else:
            tokens.append(_Token("literal", _resolve(text, context)))
    return tokens


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _compare(op: str, left: object, right: object) -> bool:
    if op in ("==", "==="):
        return left == right
    if op in ("!=", "!=="):
        return left != right

    # A missing field never satisfies an ordering comparison.
    if left is None or right is None:
        return False
    if not (
        (_is_number(left) and _is_number(right))
        or (isinstance(left, str) and isinstance(right, str))
    ):
        raise ExpressionError(
            f"Cannot compare {type(left).__name__} and {type(right).__name__} with {op}"
        )
    if op == ">":
        return left > right  # type: ignore[operator]
    if op == "<":
        return left < right  # type: ignore[operator]
    if op == ">=":
        return left >= right  # type: ignore[operator]
    return left <= right  # type: ignore[operator]


class _Parser:
    """Recursive-descent evaluator over substituted tokens.

    or  := and ('||' and)*
    and := not ('&&' not)*
    not := '!' not | cmp
    cmp := primary (op primary)?
    primary := literal | '(' or ')'
    """

    def __init__(self, tokens: list[_Token]) -> None:
        self._tokens = tokens
        self._pos = 0

    def parse(self) -> bool:
        if not self._tokens:
            raise ExpressionError("Empty expression")
        value = self._or()
        if self._pos != len(self._tokens):
            raise ExpressionError(f"Unexpected token {self._tokens[self._pos].value!r}")
        return bool(value)

    def _peek_op(self) -> str | None:
        if self._pos < len(self._tokens) and self._tokens[self._pos].kind == "op":
            return str(self._tokens[self._pos].value)
        return None

    def _or(self) -> object:
        value = self._and()
        while self._peek_op() == "||":
            self._pos += 1
            right = self._and()
            value = bool(value) or bool(right)
        return value

    def _and(self) -> object:
        value = self._not()
        while self._peek_op() == "&&":
            self._pos += 1
            right = self._not()
            value = bool(value) and bool(right)
        return value

    def _not(self) -> object:
        if self._peek_op() == "!":
            self._pos += 1
            return not bool(self._not())
        return self._cmp()

    def _cmp(self) -> object:
        left = self._primary()
        op = self._peek_op()
        if op in _COMPARISONS:
            self._pos += 1
            right = self._primary()
            return _compare(op, left, right)
        return left

    def _primary(self) -> object:
        if self._pos >= len(self._tokens):
            raise ExpressionError("Unexpected end of expression")
        token = self._tokens[self._pos]
        if token.kind == "literal":
            self._pos += 1
            return token.value
        if token.value == "(":
            self._pos += 1
            value = self._or()
            if self._peek_op() != ")":
                raise ExpressionError("Missing closing parenthesis")
            self._pos += 1
            return value
        raise ExpressionError(f"Unexpected token {token.value!r}")


def evaluate_expression(expression: str, context: Mapping[str, object]) -> Evaluation:
    """Evaluate `expression` against `context`, reporting any error."""

    try:
        if not _ALLOWED_CHARS.match(expression):
            raise ExpressionError("Expression contains disallowed characters")
        value = _Parser(tokenize(expression, context)).parse()
    except (ExpressionError, RecursionError) as e:
        logger.warning(
            "Condition expression rejected",
            extra={"expression": expression, "error": str(e)},
        )
        return Evaluation(value=False, error=str(e))
    return Evaluation(value=value)


def evaluate(expression: str, context: Mapping[str, object]) -> bool:
    return evaluate_expression(expression, context).value
