from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, List

from lark import Lark, Token, Transformer, v_args
from lark.exceptions import LarkError, UnexpectedInput, VisitError

from .ast import Call, Captured, Equation, Index, Literal, Node, Offset, Symbol
from .exceptions import EinloopError, ParseError

GRAMMAR_PATH = Path(__file__).with_name("equation_grammar.lark")


@lru_cache(maxsize=1)
def _build_lark() -> Lark:
    return Lark(
        GRAMMAR_PATH.read_text(encoding="utf-8"),
        parser="lalr",
        start="start",
        propagate_positions=True,
        maybe_placeholders=False,
    )


def _number(text: str):
    if any(ch in text for ch in ".eE"):
        return float(text)
    return int(text)


def _flatten(func: str, left: Node, right: Node) -> Call:
    # a + b + c parses left-deep; keep it as one n-ary call.
    args: List[Node] = []
    if isinstance(left, Call) and left.func == func and len(left.args) > 1:
        args.extend(left.args)
    else:
        args.append(left)
    args.append(right)
    return Call(func, tuple(args))


def _as_subscript(node: Node) -> Node:
    if isinstance(node, Call) and node.func in ("+", "-") and len(node.args) == 2:
        return Offset(node.args[0], node.func, node.args[1])
    if isinstance(node, Call) and node.func in ("+", "-") and len(node.args) > 2:
        # i + 1 + 2: nest so the normalizer sees a non-symbol offset base
        head = Call(node.func, node.args[:-1])
        return Offset(_as_subscript(head), node.func, node.args[-1])
    return node


class EquationTransformer(Transformer):
    def __init__(self, text: str):
        super().__init__()
        self.text = text

    def start(self, items: List[Any]) -> Equation:
        lhs, op_tok, rhs = items
        return Equation(lhs=lhs, op=str(op_tok), rhs=rhs, source=self.text.strip())

    # Atoms -----------------------------------------------------------------------
    def symbol(self, items):
        return Symbol(str(items[0]))

    def number(self, items):
        return Literal(_number(str(items[0])))

    def captured(self, items):
        return Captured(str(items[0]))

    def call(self, items):
        name: Token = items[0]
        args = tuple(items[1]) if len(items) > 1 else ()
        return Call(str(name), args)

    def arguments(self, items):
        return list(items)

    def subscripts(self, items):
        return [_as_subscript(item) for item in items]

    def index(self, items):
        base = items[0]
        subs = tuple(items[1]) if len(items) > 1 else ()
        return Index(base, subs)

    # Operators -------------------------------------------------------------------
    def add(self, items):
        return _flatten("+", items[0], items[1])

    def sub(self, items):
        return Call("-", (items[0], items[1]))

    def mul(self, items):
        return _flatten("*", items[0], items[1])

    def div(self, items):
        return Call("/", (items[0], items[1]))

    def pow(self, items):
        return Call("^", (items[0], items[2]))

    def neg(self, items):
        (value,) = items
        if isinstance(value, Literal):
            return Literal(-value.value)
        return Call("-", (value,))

    @v_args(inline=True)
    def pos(self, value):
        return value


def parse_equation(text: str) -> Equation:
    """Parse ``text`` such as ``"C[i,j] := A[i,k] * B[k,j]"`` into an Equation."""
    parser = _build_lark()
    lines = text.splitlines()
    try:
        tree = parser.parse(text)
    except UnexpectedInput as exc:
        line = getattr(exc, "line", None)
        column = getattr(exc, "column", None)
        if line is None or line < 1:
            # end of input: point just past the last character
            line = max(len(lines), 1)
            column = len(lines[-1]) + 1 if lines else 1
        elif column is None or column < 1:
            column = 1
        line_text = lines[line - 1] if 1 <= line <= len(lines) else ""
        raise ParseError(
            "Syntax error while parsing equation",
            line=line,
            column=column,
            line_text=line_text,
        ) from exc
    except LarkError as exc:  # pragma: no cover - defensive
        raise ParseError(str(exc)) from exc
    try:
        return EquationTransformer(text).transform(tree)
    except VisitError as exc:
        if isinstance(exc.orig_exc, EinloopError):
            raise exc.orig_exc from exc
        raise
