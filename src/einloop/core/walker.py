from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

from .ast import Call, Captured, Index, Literal, Node, Offset, Symbol, describe, format_expr
from .dims import DimExpr
from .exceptions import MalformedEquationError
from .offsets import extract_index


@dataclass(frozen=True)
class ArrayRef:
    """One indexed occurrence of an array; bare symbols have no subscripts."""

    base: Node
    subscripts: Tuple[Node, ...] = ()

    @property
    def name(self) -> str:
        return format_expr(self.base)


@dataclass
class IndexExtraction:
    indices: List[str] = field(default_factory=list)
    arrays: List[ArrayRef] = field(default_factory=list)
    dims: List[DimExpr] = field(default_factory=list)


def extract_indices(node: Node) -> IndexExtraction:
    """Walk ``node`` depth-first collecting every array reference and its indices."""
    extraction = IndexExtraction()
    _walk(node, extraction)
    return extraction


def _walk(node: Node, extraction: IndexExtraction) -> None:
    if isinstance(node, Symbol):
        extraction.arrays.append(ArrayRef(node))
        return
    if isinstance(node, Literal):
        return
    if isinstance(node, Index):
        if not isinstance(node.base, (Symbol, Call)):
            raise MalformedEquationError(
                f"Invalid indexed expression `{format_expr(node)}`: only names and call "
                "results can be indexed"
            )
        extraction.arrays.append(ArrayRef(node.base, tuple(node.indices)))
        for axis, sub in enumerate(node.indices, start=1):
            extract_index(sub, node.base, axis, extraction)
        return
    if isinstance(node, Call):
        for arg in node.args:
            _walk(arg, extraction)
        return
    if isinstance(node, (Captured, Offset)):
        raise MalformedEquationError(
            f"Invalid expression {describe(node)}: only allowed inside index brackets"
        )
    raise MalformedEquationError(f"Invalid expression node: {describe(node)}")
