"""Template compilation and expansion.

A template is literal text with embedded ``${expression}`` spans. Expressions
use a restricted subset of Python expression syntax and are evaluated against a
variable mapping. Lookups that resolve to nothing (undefined names, absent
mapping keys, ``None`` values, out-of-range indexes) do not raise: they yield
:data:`MISSING` and are reported through an ``on_missing`` callback so the
caller can collect every missing reference of one expansion.
"""

from __future__ import annotations

import ast
import operator
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Union

from .errors import TemplateEvaluationError, TemplateSyntaxError

_NEWLINES = re.compile(r"\r?\n")

_ALLOWED_NODES: tuple[type[ast.AST], ...] = (
    ast.Expression,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.Attribute,
    ast.Subscript,
    ast.Slice,
    ast.Call,
    ast.keyword,
    ast.BinOp,
    ast.UnaryOp,
    ast.BoolOp,
    ast.Compare,
    ast.IfExp,
    ast.Tuple,
    ast.List,
    ast.JoinedStr,
    ast.FormattedValue,
    ast.operator,
    ast.unaryop,
    ast.boolop,
    ast.cmpop,
)

# str.format can reach attributes through replacement fields.
_BLOCKED_ATTRIBUTES = frozenset({"format", "format_map"})

# Upper bounds on the values an expression may build.
_MAX_POWER_BITS = 16_384
_MAX_REPEAT_LENGTH = 65_536


def _power(base: Any, exponent: Any) -> Any:
    if isinstance(base, int) and isinstance(exponent, int) and exponent > 0:
        if max(base.bit_length(), 1) * exponent > _MAX_POWER_BITS:
            raise ValueError(f"{base} ** {exponent} is too large")
    return operator.pow(base, exponent)


def _multiply(left: Any, right: Any) -> Any:
    sequence, count = (left, right) if isinstance(right, int) else (right, left)
    if isinstance(sequence, (str, list, tuple)) and isinstance(count, int):
        if len(sequence) * count > _MAX_REPEAT_LENGTH:
            raise ValueError(f"repeating {len(sequence)} items {count} times is too large")
    return operator.mul(left, right)


_BINARY_OPERATORS: dict[type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: _multiply,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: _power,
}

_UNARY_OPERATORS: dict[type[ast.unaryop], Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Not: operator.not_,
    ast.Invert: operator.invert,
}

_COMPARATORS: dict[type[ast.cmpop], Callable[[Any, Any], Any]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda left, right: left in right,
    ast.NotIn: lambda left, right: left not in right,
}

SAFE_BUILTINS: dict[str, Any] = {
    "abs": abs,
    "bool": bool,
    "float": float,
    "int": int,
    "len": len,
    "max": max,
    "min": min,
    "round": round,
    "str": str,
}


class _Missing:
    """Placeholder for a value that could not be resolved."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __str__(self) -> str:
        return ""

    def __format__(self, spec: str) -> str:
        return ""

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()

MissingCallback = Callable[[str], None]


def normalize_template(raw: str) -> str:
    """Strip line breaks and surrounding whitespace from a raw template."""
    return _NEWLINES.sub("", raw).strip()


def render_value(value: Any) -> str:
    """Convert an evaluated expression into template text."""
    if value is None or value is MISSING:
        return ""
    return str(value)


@dataclass(frozen=True, slots=True)
class _Literal:
    text: str


@dataclass(frozen=True, slots=True)
class _Expression:
    source: str
    tree: ast.Expression


Span = Union[_Literal, _Expression]


class Template:
    """A compiled template: an ordered sequence of literal and expression spans."""

    def __init__(self, source: str, spans: Iterable[Span]) -> None:
        self.source = source
        self.spans: tuple[Span, ...] = tuple(spans)

    @classmethod
    def compile(cls, source: str) -> "Template":
        """Parse a template into spans.

        Args:
            source: Template text, already normalized.

        Returns:
            Template: Compiled template ready for repeated expansion.

        Raises:
            TemplateSyntaxError: If a span is unterminated, empty, or uses unsupported syntax.
        """
        return cls(source, _split(source))

    @property
    def expressions(self) -> list[str]:
        return [span.source for span in self.spans if isinstance(span, _Expression)]

    def expand(
        self,
        variables: Mapping[str, Any],
        on_missing: MissingCallback | None = None,
    ) -> str:
        """Evaluate every expression span and concatenate the result with the literals.

        Args:
            variables: Names visible to expressions.
            on_missing: Called with the source text of every lookup that resolved to nothing.

        Returns:
            str: Expanded text.

        Raises:
            TemplateEvaluationError: If an expression fails for any other reason.
        """
        evaluator = _Evaluator(variables, on_missing or (lambda _name: None))
        parts: list[str] = []
        for span in self.spans:
            if isinstance(span, _Literal):
                parts.append(span.text)
                continue
            try:
                value = evaluator.evaluate(span.tree)
            except Exception as exc:
                raise TemplateEvaluationError(f"${{{span.source}}}: {exc}") from exc
            parts.append(render_value(value))
        return "".join(parts)


def _split(source: str) -> list[Span]:
    spans: list[Span] = []
    literal: list[str] = []
    index = 0
    length = len(source)

    while index < length:
        if source.startswith("\\${", index):
            literal.append("${")
            index += 3
            continue
        if not source.startswith("${", index):
            literal.append(source[index])
            index += 1
            continue

        end = _find_closing_brace(source, index + 2)
        if end < 0:
            raise TemplateSyntaxError(f"Unterminated expression starting at column {index + 1}.")
        expression = source[index + 2 : end].strip()
        if not expression:
            raise TemplateSyntaxError(f"Empty expression at column {index + 1}.")
        if literal:
            spans.append(_Literal("".join(literal)))
            literal = []
        spans.append(_Expression(expression, _parse_expression(expression)))
        index = end + 1

    if literal:
        spans.append(_Literal("".join(literal)))
    return spans


def _find_closing_brace(source: str, start: int) -> int:
    depth = 0
    quote: str | None = None
    index = start
    while index < len(source):
        char = source[index]
        if quote:
            if char == "\\":
                index += 2
                continue
            if char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char == "{":
            depth += 1
        elif char == "}":
            if depth == 0:
                return index
            depth -= 1
        index += 1
    return -1


def _parse_expression(expression: str) -> ast.Expression:
    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as exc:
        raise TemplateSyntaxError(f"Invalid expression ${{{expression}}}: {exc.msg}") from exc
    _Validator(expression).visit(tree)
    return tree


class _Validator(ast.NodeVisitor):
    """Reject syntax outside the supported expression subset."""

    def __init__(self, expression: str) -> None:
        self.expression = expression

    def generic_visit(self, node: ast.AST) -> None:
        if not isinstance(node, _ALLOWED_NODES):
            raise TemplateSyntaxError(
                f"Unsupported syntax in ${{{self.expression}}}: {type(node).__name__}"
            )
        super().generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("_"):
            raise TemplateSyntaxError(f"Private name {node.id!r} is not accessible.")
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("_") or node.attr in _BLOCKED_ATTRIBUTES:
            raise TemplateSyntaxError(f"Attribute {node.attr!r} is not accessible.")
        self.generic_visit(node)


class _Evaluator:
    """Walk a validated expression tree and compute its value."""

    def __init__(self, variables: Mapping[str, Any], on_missing: MissingCallback) -> None:
        self.variables = variables
        self.on_missing = on_missing

    def evaluate(self, tree: ast.Expression) -> Any:
        return self.visit(tree.body)

    def visit(self, node: ast.AST) -> Any:
        handler = getattr(self, f"visit_{type(node).__name__}", None)
        if handler is None:
            raise TemplateEvaluationError(f"Cannot evaluate {type(node).__name__} nodes.")
        return handler(node)

    def missing(self, node: ast.AST) -> _Missing:
        self.on_missing(ast.unparse(node))
        return MISSING

    def resolved(self, node: ast.AST, value: Any) -> Any:
        return self.missing(node) if value is None else value

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in self.variables:
            return self.resolved(node, self.variables[node.id])
        if node.id in SAFE_BUILTINS:
            return SAFE_BUILTINS[node.id]
        return self.missing(node)

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        target = self.visit(node.value)
        if target is MISSING:
            return MISSING
        if isinstance(target, Mapping):
            return self.resolved(node, target.get(node.attr))
        if not hasattr(target, node.attr):
            raise TemplateEvaluationError(
                f"{type(target).__name__!r} value has no attribute {node.attr!r}"
            )
        return self.resolved(node, getattr(target, node.attr))

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        target = self.visit(node.value)
        if target is MISSING:
            return MISSING
        key = self.visit(node.slice)
        try:
            value = target[key]
        except (KeyError, IndexError):
            return self.missing(node)
        return self.resolved(node, value)

    def visit_Slice(self, node: ast.Slice) -> slice:
        bounds = (node.lower, node.upper, node.step)
        values = [None if part is None else self._argument(part) for part in bounds]
        return slice(*values)

    def visit_Call(self, node: ast.Call) -> Any:
        function = self.visit(node.func)
        if function is MISSING:
            return MISSING
        if not callable(function):
            raise TemplateEvaluationError(f"{ast.unparse(node.func)} is not callable")
        args = [self._argument(arg) for arg in node.args]
        kwargs = {keyword.arg: self._argument(keyword.value) for keyword in node.keywords}
        return function(*args, **kwargs)

    def _argument(self, node: ast.AST) -> Any:
        value = self.visit(node)
        return None if value is MISSING else value

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        left = self.visit(node.left)
        right = self.visit(node.right)
        if left is MISSING or right is MISSING:
            if isinstance(node.op, ast.Add) and isinstance(left if right is MISSING else right, str):
                return f"{left}{right}"
            return MISSING
        return _BINARY_OPERATORS[type(node.op)](left, right)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        operand = self.visit(node.operand)
        if isinstance(node.op, ast.Not):
            return not operand
        if operand is MISSING:
            return MISSING
        return _UNARY_OPERATORS[type(node.op)](operand)

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        value: Any = None
        for operand in node.values:
            value = self.visit(operand)
            if isinstance(node.op, ast.And) and not value:
                return value
            if isinstance(node.op, ast.Or) and value:
                return value
        return value

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            try:
                outcome = _COMPARATORS[type(op)](left, right)
            except TypeError:
                if left is MISSING or right is MISSING:
                    return False
                raise
            if not outcome:
                return False
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_Tuple(self, node: ast.Tuple) -> tuple[Any, ...]:
        return tuple(self.visit(element) for element in node.elts)

    def visit_List(self, node: ast.List) -> list[Any]:
        return [self.visit(element) for element in node.elts]

    def visit_JoinedStr(self, node: ast.JoinedStr) -> str:
        return "".join(str(self.visit(value)) for value in node.values)

    def visit_FormattedValue(self, node: ast.FormattedValue) -> str:
        value = self.visit(node.value)
        if value is MISSING:
            return ""
        if node.conversion == ord("r"):
            value = repr(value)
        elif node.conversion == ord("s"):
            value = str(value)
        elif node.conversion == ord("a"):
            value = ascii(value)
        spec = self.visit(node.format_spec) if node.format_spec is not None else ""
        return format(value, spec)


__all__ = [
    "MISSING",
    "SAFE_BUILTINS",
    "Template",
    "normalize_template",
    "render_value",
]
