from __future__ import annotations

from typing import Any, Dict, Iterable, Sequence


def _prod(values: Iterable[int]) -> int:
    result = 1
    for value in values:
        result *= int(max(0, value))
    return int(result)


def compute_loop_stats(
    free_extents: Sequence[int],
    contracted_extents: Sequence[int],
    operand_shapes: Sequence[Sequence[int]],
    operand_itemsizes: Sequence[int],
    result_shape: Sequence[int],
    result_itemsize: int,
) -> Dict[str, Any]:
    """Trip counts and rough cost of one plan execution.

    Every innermost iteration of a contraction costs a multiply-add; without
    contraction each destination element costs one operation.
    """
    output_size = _prod(free_extents)
    contract_size = _prod(contracted_extents) if contracted_extents else 1
    iterations = output_size * contract_size

    if contracted_extents:
        flops = float(2 * iterations)
        reductions = int(max(contract_size - 1, 0) * output_size)
    else:
        flops = float(output_size)
        reductions = 0

    bytes_in = 0
    for shape, itemsize in zip(operand_shapes, operand_itemsizes):
        bytes_in += _prod(shape) * int(itemsize)
    bytes_out = _prod(result_shape) * int(result_itemsize)

    return {
        "iterations": int(iterations),
        "flops": flops,
        "bytes_in": int(bytes_in),
        "bytes_out": int(bytes_out),
        "bytes_total": int(bytes_in + bytes_out),
        "reductions": reductions,
    }
