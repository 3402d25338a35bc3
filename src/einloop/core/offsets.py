from __future__ import annotations

from typing import TYPE_CHECKING, Union

from .ast import Call, Captured, Index, Literal, Node, Offset, Symbol, describe, format_expr
from .dims import Extent, Shifted
from .exceptions import InvalidIndexExpressionError

if TYPE_CHECKING:  # pragma: no cover
    from .walker import IndexExtraction


def _is_integer(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def offset_amount(node: Node) -> Union[int, Captured]:
    if isinstance(node, Literal) and _is_integer(node.value):
        return node.value
    if isinstance(node, Captured):
        return node
    raise InvalidIndexExpressionError(
        f"Invalid index offset {describe(node)}: expected an integer literal or a "
        "captured constant such as `$shift`"
    )


def extract_index(
    node: Node,
    array: Node,
    axis: int,
    extraction: "IndexExtraction",
) -> None:
    """Record the loop index (if any) that ``node`` iterates along ``array``'s ``axis``.

    ``i`` bounds ``i`` by the full extent, ``i + k`` by ``extent - k`` and
    ``i - k`` by ``extent + k``. Integer literals and captured constants pin
    the axis and record nothing.
    """
    if isinstance(node, Symbol):
        extraction.indices.append(node.name)
        extraction.dims.append(Extent(array, axis))
        return
    if isinstance(node, Literal):
        if not _is_integer(node.value):
            raise InvalidIndexExpressionError(
                f"Invalid index expression: `{format_expr(node)}` is not an integer"
            )
        return
    if isinstance(node, Captured):
        return
    if isinstance(node, Offset):
        if node.op not in ("+", "-"):
            raise InvalidIndexExpressionError(
                f"Invalid index expression `{format_expr(node)}`: operations inside an "
                "index are limited to `+` or `-`"
            )
        if not isinstance(node.index, Symbol):
            raise InvalidIndexExpressionError(
                f"Invalid index expression `{format_expr(node)}`: the offset must apply "
                "to a bare index symbol"
            )
        amount = offset_amount(node.amount)
        # invert the offset to get the iteration range of the bare symbol
        sign = -1 if node.op == "+" else 1
        extraction.indices.append(node.index.name)
        extraction.dims.append(Shifted(Extent(array, axis), amount, sign))
        return
    if isinstance(node, (Call, Index)):
        raise InvalidIndexExpressionError(f"Invalid index expression: `{format_expr(node)}`")
    raise InvalidIndexExpressionError(f"Invalid index expression: {describe(node)}")
