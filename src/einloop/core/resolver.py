from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from .dims import DimCheck, DimExpr, Minimum
from .walker import IndexExtraction

IndexDim = Tuple[str, DimExpr]


@dataclass
class Resolution:
    free: List[IndexDim] = field(default_factory=list)
    contracted: List[IndexDim] = field(default_factory=list)
    checks: List[DimCheck] = field(default_factory=list)

    @property
    def free_indices(self) -> List[str]:
        return [name for name, _ in self.free]

    @property
    def contracted_indices(self) -> List[str]:
        return [name for name, _ in self.contracted]


def _fold_duplicates(
    indices: Sequence[str],
    dims: Sequence[DimExpr],
    folded: List[bool],
    checks: List[DimCheck],
) -> None:
    # Later occurrences fold into the first one; each fold costs one check.
    for pos in reversed(range(len(indices))):
        name = indices[pos]
        for prev in range(pos):
            if indices[prev] == name:
                folded[pos] = True
                checks.append(DimCheck(name, dims[prev], dims[pos]))


def resolve_indices(
    lhs: IndexExtraction,
    rhs: IndexExtraction,
    *,
    declare: bool,
) -> Resolution:
    """Split the indices of an equation into free and contracted sets.

    Repeated right-hand indices collapse onto their first occurrence with an
    equality check between the two extents. Right-hand indices that also
    appear on the left bound the destination: a declared destination takes the
    extent of the first right-hand occurrence, an updated one the minimum of
    its own extent and every right-hand occurrence. Whatever is
    left on the right is contracted. The left-hand side is then folded the
    same way, which turns ``D[i,i]`` into a single free index.
    """
    checks: List[DimCheck] = []
    lhs_dims: List[DimExpr] = list(lhs.dims)

    rhs_folded = [False] * len(rhs.indices)
    _fold_duplicates(rhs.indices, rhs.dims, rhs_folded, checks)
    for pos in reversed(range(len(rhs.indices))):
        # an update is bounded by every occurrence, a declaration by the first
        if rhs_folded[pos] and declare:
            continue
        name = rhs.indices[pos]
        dim = rhs.dims[pos]
        for target, lhs_name in enumerate(lhs.indices):
            if lhs_name != name:
                continue
            lhs_dims[target] = dim if declare else Minimum(lhs_dims[target], dim)
            rhs_folded[pos] = True

    contracted = [
        (name, dim)
        for name, dim, gone in zip(rhs.indices, rhs.dims, rhs_folded)
        if not gone
    ]

    lhs_folded = [False] * len(lhs.indices)
    _fold_duplicates(lhs.indices, lhs_dims, lhs_folded, checks)
    free = [
        (name, dim)
        for name, dim, gone in zip(lhs.indices, lhs_dims, lhs_folded)
        if not gone
    ]
    return Resolution(free=free, contracted=contracted, checks=checks)
