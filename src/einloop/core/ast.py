from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .exceptions import MalformedEquationError

# NOTE: The node set below is closed. Every consumer dispatches over exactly
# these classes and raises MalformedEquationError for anything else, so adding
# a variant means revisiting every ``isinstance`` chain that mentions ``Node``.


@dataclass(frozen=True)
class Symbol:
    name: str


@dataclass(frozen=True)
class Literal:
    value: Union[int, float, complex]


@dataclass(frozen=True)
class Captured:
    """Constant taken from the caller's namespace (``$off`` in equation text)."""

    name: str


@dataclass(frozen=True)
class Offset:
    index: "Node"
    op: str
    amount: "Node"


@dataclass(frozen=True)
class Index:
    base: "Node"
    indices: Tuple["Node", ...] = ()


@dataclass(frozen=True)
class Call:
    func: str
    args: Tuple["Node", ...] = ()


Node = Union[Symbol, Literal, Captured, Offset, Index, Call]
NODE_TYPES = (Symbol, Literal, Captured, Offset, Index, Call)

OPERATORS = ("+", "-", "*", "/", "^")
UPDATE_OPERATORS = ("=", "+=", "-=", "*=", "/=")
DECLARE_OPERATOR = ":="
ASSIGNMENT_OPERATORS = UPDATE_OPERATORS + (DECLARE_OPERATOR,)


@dataclass(frozen=True)
class Equation:
    lhs: Node
    op: str
    rhs: Node
    source: Optional[str] = None

    @property
    def declares(self) -> bool:
        return self.op == DECLARE_OPERATOR

    def __str__(self) -> str:
        return format_equation(self)


def is_node(value: object) -> bool:
    return isinstance(value, NODE_TYPES)


def describe(node: object) -> str:
    """Short human-readable description used in error messages."""
    if is_node(node):
        return f"{type(node).__name__.lower()} `{format_expr(node)}`"
    return f"{type(node).__name__} {node!r}"


# Pretty printer ---------------------------------------------------------------


_PREC = {
    "+": 3,
    "-": 3,
    "*": 4,
    "/": 4,
    "^": 6,
}
_UNARY_PREC = 5


def _precedence(node: Node) -> int:
    if isinstance(node, Call) and node.func in _PREC:
        if len(node.args) == 1:
            return _UNARY_PREC
        return _PREC[node.func]
    if isinstance(node, Offset):
        return _PREC["+"]
    if isinstance(node, Literal) and _is_negative(node.value):
        return _UNARY_PREC
    return 10


def _is_negative(value: object) -> bool:
    try:
        return value < 0  # type: ignore[operator]
    except TypeError:
        return False


def _wrap(child: Node, parent_prec: int, *, strict: bool) -> str:
    text = format_expr(child)
    child_prec = _precedence(child)
    if child_prec < parent_prec or (strict and child_prec == parent_prec):
        return f"({text})"
    return text


def format_expr(node: Node) -> str:
    if isinstance(node, Symbol):
        return node.name
    if isinstance(node, Literal):
        return repr(node.value)
    if isinstance(node, Captured):
        return f"${node.name}"
    if isinstance(node, Offset):
        prec = _PREC["+"]
        return f"{_wrap(node.index, prec, strict=False)} {node.op} {_wrap(node.amount, prec, strict=True)}"
    if isinstance(node, Index):
        base = _wrap(node.base, 10, strict=False)
        return f"{base}[{', '.join(format_expr(i) for i in node.indices)}]"
    if isinstance(node, Call):
        if node.func in _PREC:
            if len(node.args) == 1:
                return f"{node.func}{_wrap(node.args[0], _UNARY_PREC, strict=False)}"
            prec = _PREC[node.func]
            # ^ is right associative, the others left associative
            right_assoc = node.func == "^"
            parts = []
            for pos, arg in enumerate(node.args):
                first = pos == 0
                strict = (not first) if not right_assoc else first
                parts.append(_wrap(arg, prec, strict=strict))
            return f" {node.func} ".join(parts)
        return f"{node.func}({', '.join(format_expr(a) for a in node.args)})"
    raise MalformedEquationError(f"Invalid expression node: {describe(node)}")


def format_equation(eq: Equation) -> str:
    return f"{format_expr(eq.lhs)} {eq.op} {format_expr(eq.rhs)}"
