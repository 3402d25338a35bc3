"""Deferred dimension expressions.

A ``DimExpr`` says how to obtain the extent of a loop, e.g. "extent of ``A``
along axis 2, minus 1". Nothing here touches array data: expressions are
carried symbolically through resolution and evaluated once per run by the
backend, which supplies the ``extent_of`` and ``constant_of`` callbacks.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from .ast import Captured, Node, format_expr
from .exceptions import MalformedEquationError


@dataclass(frozen=True)
class Extent:
    array: Node
    axis: int  # 1-based


@dataclass(frozen=True)
class Shifted:
    base: "DimExpr"
    amount: Union[int, Captured]
    sign: int  # +1 or -1


@dataclass(frozen=True)
class Minimum:
    left: "DimExpr"
    right: "DimExpr"


DimExpr = Union[Extent, Shifted, Minimum]


@dataclass(frozen=True)
class DimCheck:
    """Runtime assertion that two extents bounding ``index`` agree."""

    index: str
    left: DimExpr
    right: DimExpr

    def __str__(self) -> str:
        return f"{format_dim(self.left)} == {format_dim(self.right)}"


ExtentFn = Callable[[Node, int], int]
ConstantFn = Callable[[str], int]


def format_dim(dim: DimExpr) -> str:
    if isinstance(dim, Extent):
        return f"size({format_expr(dim.array)}, {dim.axis})"
    if isinstance(dim, Shifted):
        amount = format_expr(dim.amount) if isinstance(dim.amount, Captured) else str(dim.amount)
        op = "+" if dim.sign > 0 else "-"
        return f"{format_dim(dim.base)} {op} {amount}"
    if isinstance(dim, Minimum):
        return f"min({format_dim(dim.left)}, {format_dim(dim.right)})"
    raise MalformedEquationError(f"Unknown dimension expression: {dim!r}")


def evaluate_dim(
    dim: DimExpr,
    extent_of: ExtentFn,
    constant_of: ConstantFn,
    cache: Optional[Dict[DimExpr, int]] = None,
) -> int:
    if cache is not None and dim in cache:
        return cache[dim]
    if isinstance(dim, Extent):
        value = int(extent_of(dim.array, dim.axis))
    elif isinstance(dim, Shifted):
        if isinstance(dim.amount, Captured):
            amount = int(constant_of(dim.amount.name))
        else:
            amount = int(dim.amount)
        value = evaluate_dim(dim.base, extent_of, constant_of, cache) + dim.sign * amount
    elif isinstance(dim, Minimum):
        value = min(
            evaluate_dim(dim.left, extent_of, constant_of, cache),
            evaluate_dim(dim.right, extent_of, constant_of, cache),
        )
    else:
        raise MalformedEquationError(f"Unknown dimension expression: {dim!r}")
    if cache is not None:
        cache[dim] = value
    return value


def dim_arrays(dim: DimExpr) -> List[Node]:
    """Array nodes whose extents ``dim`` reads, in first-seen order."""
    if isinstance(dim, Extent):
        return [dim.array]
    if isinstance(dim, Shifted):
        return dim_arrays(dim.base)
    if isinstance(dim, Minimum):
        seen = dim_arrays(dim.left)
        return seen + [a for a in dim_arrays(dim.right) if a not in seen]
    raise MalformedEquationError(f"Unknown dimension expression: {dim!r}")


def dim_constants(dim: DimExpr) -> List[str]:
    if isinstance(dim, Extent):
        return []
    if isinstance(dim, Shifted):
        names = dim_constants(dim.base)
        if isinstance(dim.amount, Captured) and dim.amount.name not in names:
            names.append(dim.amount.name)
        return names
    if isinstance(dim, Minimum):
        names = dim_constants(dim.left)
        return names + [n for n in dim_constants(dim.right) if n not in names]
    raise MalformedEquationError(f"Unknown dimension expression: {dim!r}")
