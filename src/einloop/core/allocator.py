from __future__ import annotations

import enum
from functools import reduce
from typing import Any, Iterable, Sequence

import numpy as np

from .exceptions import TypeInferenceError


class Allocation(enum.Enum):
    NONE = "none"
    ARRAY = "array"
    SCALAR = "scalar"


def allocation_for(declare: bool, free: Sequence[Any]) -> Allocation:
    if not declare:
        return Allocation.NONE
    return Allocation.ARRAY if free else Allocation.SCALAR


def element_type(value: Any) -> np.dtype:
    if isinstance(value, np.ndarray):
        return value.dtype
    return np.asarray(value).dtype


def _promote(left: np.dtype, right: np.dtype) -> np.dtype:
    try:
        return np.promote_types(left, right)
    except TypeError as exc:
        raise TypeInferenceError(
            f"No common element type for {left} and {right}"
        ) from exc


def infer_element_type(dtypes: Iterable[Any]) -> np.dtype:
    """Widest common type of ``dtypes``, folded pairwise with ``np.promote_types``."""
    normalized = [np.dtype(dt) for dt in dtypes]
    if not normalized:
        raise TypeInferenceError("Cannot infer an element type without right-hand operands")
    return reduce(_promote, normalized)


def accumulator_type(dtype: Any) -> np.dtype:
    """Element type a contraction sums in; booleans are counted as integers."""
    dtype = np.dtype(dtype)
    if dtype == np.bool_:
        return np.dtype(int)
    return dtype


def zero_of(dtype: np.dtype) -> Any:
    return np.zeros((), dtype=dtype)[()]


def allocate(allocation: Allocation, dtype: np.dtype, shape: Sequence[int]) -> Any:
    if allocation is Allocation.NONE:
        return None
    if allocation is Allocation.SCALAR:
        return zero_of(dtype)
    return np.zeros(tuple(max(0, int(n)) for n in shape), dtype=dtype)
