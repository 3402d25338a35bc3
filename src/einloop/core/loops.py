from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

from .ast import Node, format_expr
from .dims import DimExpr, format_dim
from .exceptions import MalformedEquationError


@dataclass(frozen=True)
class AccumulatorRef:
    """The scratch scalar a contraction sums into."""

    def __str__(self) -> str:
        return "s"


ACCUMULATOR = AccumulatorRef()


@dataclass(frozen=True)
class ResetAccumulator:
    pass


@dataclass(frozen=True)
class Accumulate:
    value: Node


@dataclass(frozen=True)
class Store:
    target: Node
    op: str
    value: Union[Node, AccumulatorRef]


@dataclass(frozen=True)
class Block:
    statements: Tuple["Statement", ...]


@dataclass(frozen=True)
class Loop:
    index: str
    extent: DimExpr
    body: "Statement"
    vectorized: bool = False


Statement = Union[Loop, Block, ResetAccumulator, Accumulate, Store]


def nest_loops(
    body: Statement,
    pairs: Sequence[Tuple[str, DimExpr]],
    vectorize: bool = False,
) -> Statement:
    """Wrap ``body`` in one loop per ``(index, extent)`` pair, ``pairs[0]`` innermost.

    Each loop runs over ``1..extent``. With ``vectorize`` the innermost loop is
    marked for vectorized execution; the rest nest normally around it.
    """
    stmt = body
    for pos, (index, extent) in enumerate(pairs):
        stmt = Loop(index=index, extent=extent, body=stmt, vectorized=vectorize and pos == 0)
    return stmt


def loop_order(stmt: Statement) -> List[str]:
    """Loop indices from outermost to innermost along the first nesting path."""
    order: List[str] = []
    while True:
        if isinstance(stmt, Loop):
            order.append(stmt.index)
            stmt = stmt.body
        elif isinstance(stmt, Block):
            loops = [s for s in stmt.statements if isinstance(s, Loop)]
            if not loops:
                return order
            stmt = loops[0]
        else:
            return order


def format_statement(stmt: Statement, indent: int = 0) -> List[str]:
    pad = "  " * indent
    if isinstance(stmt, Loop):
        marker = "  @simd" if stmt.vectorized else ""
        lines = [f"{pad}for {stmt.index} in 1:{format_dim(stmt.extent)}{marker}"]
        lines.extend(format_statement(stmt.body, indent + 1))
        return lines
    if isinstance(stmt, Block):
        lines: List[str] = []
        for inner in stmt.statements:
            lines.extend(format_statement(inner, indent))
        return lines
    if isinstance(stmt, ResetAccumulator):
        return [f"{pad}{ACCUMULATOR} = zero(T)"]
    if isinstance(stmt, Accumulate):
        return [f"{pad}{ACCUMULATOR} += {format_expr(stmt.value)}"]
    if isinstance(stmt, Store):
        value = str(stmt.value) if isinstance(stmt.value, AccumulatorRef) else format_expr(stmt.value)
        return [f"{pad}{format_expr(stmt.target)} {stmt.op} {value}"]
    raise MalformedEquationError(f"Unknown plan statement: {stmt!r}")
