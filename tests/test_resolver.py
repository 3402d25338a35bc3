from einloop import parse_equation
from einloop.core.ast import Symbol
from einloop.core.dims import DimCheck, Extent, Minimum, Shifted
from einloop.core.resolver import resolve_indices
from einloop.core.walker import extract_indices


def _resolve(text):
    eq = parse_equation(text)
    return resolve_indices(
        extract_indices(eq.lhs), extract_indices(eq.rhs), declare=eq.declares
    )


A, B, C, D = (Symbol(n) for n in "ABCD")


def test_matmul_declaration():
    res = _resolve("C[i,j] := A[i,k] * B[k,j]")
    assert res.free == [("i", Extent(A, 1)), ("j", Extent(B, 2))]
    assert res.contracted == [("k", Extent(A, 2))]
    assert res.checks == [DimCheck("k", Extent(A, 2), Extent(B, 1))]


def test_update_takes_minimum_of_both_sides():
    res = _resolve("C[i,j] += A[i,k] * B[k,j]")
    assert res.free == [
        ("i", Minimum(Extent(C, 1), Extent(A, 1))),
        ("j", Minimum(Extent(C, 2), Extent(B, 2))),
    ]
    assert res.contracted_indices == ["k"]


def test_repeated_rhs_index_on_lhs_is_not_contracted():
    res = _resolve("C[i] := A[i] + B[i]")
    assert res.free_indices == ["i"]
    assert res.contracted == []
    assert res.checks == [DimCheck("i", Extent(A, 1), Extent(B, 1))]
    # the first occurrence bounds the destination
    assert res.free == [("i", Extent(A, 1))]


def test_full_contraction_has_no_free_indices():
    res = _resolve("s := A[i] * B[i]")
    assert res.free == []
    assert res.contracted == [("i", Extent(A, 1))]
    assert len(res.checks) == 1


def test_contracted_order_follows_discovery():
    res = _resolve("s := T[a, b, c]")
    assert res.contracted_indices == ["a", "b", "c"]


def test_checks_emitted_from_last_occurrence_backwards():
    res = _resolve("s := A[i] * B[i] * C[i]")
    assert res.checks == [
        DimCheck("i", Extent(A, 1), Extent(C, 1)),
        DimCheck("i", Extent(B, 1), Extent(C, 1)),
        DimCheck("i", Extent(A, 1), Extent(B, 1)),
    ]
    assert res.contracted == [("i", Extent(A, 1))]


def test_offset_free_index_extent():
    res = _resolve("B[i] := A[i + 1]")
    assert res.free == [("i", Shifted(Extent(A, 1), 1, -1))]


def test_incompatible_offsets_produce_a_check():
    res = _resolve("s := A[i + 1] * A[i - 1]")
    assert res.checks == [
        DimCheck("i", Shifted(Extent(A, 1), 1, -1), Shifted(Extent(A, 1), 1, 1))
    ]


def test_diagonal_destination_folds_to_one_free_index():
    res = _resolve("D[i,i] = A[i]")
    assert res.free_indices == ["i"]
    assert len(res.checks) == 1
    check = res.checks[0]
    assert check.index == "i"
    assert check.left == Minimum(Extent(D, 1), Extent(A, 1))
    assert check.right == Minimum(Extent(D, 2), Extent(A, 1))


def test_lhs_only_index_keeps_lhs_extent():
    res = _resolve("C[i,j] = A[i]")
    assert res.free == [("i", Minimum(Extent(C, 1), Extent(A, 1))), ("j", Extent(C, 2))]


def test_every_index_appears_once():
    res = _resolve("E[i,j] := A[i,k] * B[k,l] * C[l,j] * A[i,k]")
    names = res.free_indices + res.contracted_indices
    assert sorted(names) == sorted(set(names))
    assert res.contracted_indices == ["k", "l"]


def test_update_is_bounded_by_every_rhs_occurrence():
    res = _resolve("C[i] = A[i] * B[i]")
    assert res.free == [("i", Minimum(Minimum(Extent(C, 1), Extent(B, 1)), Extent(A, 1)))]
    assert res.checks == [DimCheck("i", Extent(A, 1), Extent(B, 1))]
