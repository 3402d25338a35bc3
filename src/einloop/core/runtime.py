"""Runtime array API shared by the NumPy runner and generated kernels.

Subscripts are 1-based throughout, matching the loop ranges of a plan; the
conversion to NumPy's 0-based addressing happens only here.
"""

from __future__ import annotations

import operator
from functools import reduce
from typing import Any, Callable, Dict, Iterable, Mapping, Sequence, Tuple

import numpy as np

from .exceptions import BoundsError, DimensionMismatchError, TypeInferenceError, UnboundNameError


def get_extent(value: Any, axis: int, label: str = "array") -> int:
    """Extent of ``value`` along the 1-based ``axis``."""
    shape = np.shape(value)
    if axis < 1 or axis > len(shape):
        raise DimensionMismatchError(
            f"{label} has {len(shape)} dimension(s) but is indexed along axis {axis}"
        )
    return int(shape[axis - 1])


def check_rank(value: Any, count: int, label: str = "array") -> None:
    """Raise unless ``value`` has exactly ``count`` dimensions."""
    ndim = np.ndim(value)
    if count != ndim:
        raise BoundsError(
            f"{label} has {ndim} dimension(s) but was indexed with {count} subscript(s)"
        )


def _check_bounds(value: Any, subscripts: Sequence[Any], label: str) -> None:
    shape = np.shape(value)
    check_rank(value, len(subscripts), label)
    for axis, (sub, extent) in enumerate(zip(subscripts, shape), start=1):
        if isinstance(sub, np.ndarray):
            if sub.size == 0:
                continue
            low, high = int(sub.min()), int(sub.max())
        else:
            low = high = int(sub)
        if low < 1 or high > extent:
            bad = low if low < 1 else high
            raise BoundsError(
                f"Index {bad} out of bounds for {label} along axis {axis} (extent {extent})"
            )


def _zero_based(subscripts: Sequence[Any]) -> Tuple[Any, ...]:
    return tuple(sub - 1 for sub in subscripts)


def read(value: Any, subscripts: Sequence[Any], label: str = "array", checked: bool = True) -> Any:
    """Element of ``value`` at 1-based ``subscripts``; array subscripts gather."""
    if checked:
        _check_bounds(value, subscripts, label)
    if not subscripts:
        return value[()] if isinstance(value, np.ndarray) else value
    return value[_zero_based(subscripts)]


def fit(item: Any, dest: Any, label: str = "array") -> Any:
    """Return ``item`` if storing it in ``dest`` keeps its kind of number.

    NumPy would otherwise truncate a float stored into an integer array.
    """
    kind = np.result_type(item)
    if not np.can_cast(kind, dest.dtype, "same_kind"):
        raise TypeInferenceError(
            f"Cannot store {kind} values in {label}, which holds {dest.dtype}"
        )
    return item


def write(
    value: Any,
    subscripts: Sequence[Any],
    item: Any,
    label: str = "array",
    checked: bool = True,
) -> None:
    if checked:
        _check_bounds(value, subscripts, label)
    value[_zero_based(subscripts)] = fit(item, value, label)


def lookup(namespace: Mapping[str, Any], name: str) -> Any:
    try:
        return namespace[name]
    except KeyError:
        raise UnboundNameError(f"Name `{name}` is not defined in the equation namespace") from None


def as_operand(value: Any) -> Any:
    if isinstance(value, (np.ndarray, np.generic)):
        return value
    return np.asarray(value)


def resolve_function(namespace: Mapping[str, Any], name: str) -> Callable[..., Any]:
    """Callable for ``name``: the namespace first, then NumPy."""
    candidate = namespace.get(name)
    if candidate is None:
        candidate = getattr(np, name, None)
    if candidate is None or not callable(candidate):
        raise UnboundNameError(f"Function `{name}` is not defined in the equation namespace")
    return candidate


def _variadic(op: Callable[[Any, Any], Any]) -> Callable[..., Any]:
    def apply(*args: Any) -> Any:
        return reduce(op, args)

    return apply


def _minus(*args: Any) -> Any:
    if len(args) == 1:
        return operator.neg(args[0])
    return reduce(operator.sub, args)


def _plus(*args: Any) -> Any:
    if len(args) == 1:
        return operator.pos(args[0])
    return reduce(operator.add, args)


OPERATORS: Dict[str, Callable[..., Any]] = {
    "+": _plus,
    "-": _minus,
    "*": _variadic(operator.mul),
    "/": _variadic(operator.truediv),
    "^": _variadic(operator.pow),
}

COMBINE: Dict[str, Callable[[Any, Any], Any]] = {
    "+=": operator.add,
    "-=": operator.sub,
    "*=": operator.mul,
    "/=": operator.truediv,
}


def combine(op: str, current: Any, value: Any) -> Any:
    if op == "=":
        return value
    return COMBINE[op](current, value)


def check_dimensions(checks: Iterable[Tuple[str, str, int, str, int]]) -> None:
    """Raise on the first ``(index, left_text, left, right_text, right)`` that disagrees."""
    for index, left_text, left, right_text, right in checks:
        if left != right:
            raise DimensionMismatchError(
                f"Dimension mismatch for index `{index}`: {left_text} = {left} "
                f"but {right_text} = {right}",
                index=index,
            )
