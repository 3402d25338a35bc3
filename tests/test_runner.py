import numpy as np
import pytest

from einloop import (
    BackendError,
    BoundsError,
    DimensionMismatchError,
    Einsum,
    ExecutionConfig,
    TypeInferenceError,
    UnboundNameError,
    einsimd,
    einsum,
    einsum_unchecked,
)
from tests._reference import naive_matmul


def test_matmul_matches_naive_reference(matmul_operands):
    ns = dict(matmul_operands)
    result = einsum("C[i,j] := A[i,k] * B[k,j]", ns)
    np.testing.assert_allclose(result, naive_matmul(ns["A"], ns["B"]))
    assert ns["C"] is result


def test_declared_shape_and_dtype():
    A = np.arange(6, dtype=np.int32).reshape(2, 3)
    B = np.ones((3, 5), dtype=np.float32)
    result = einsum("C[i,j] := A[i,k] * B[k,j]", A=A, B=B)
    assert result.shape == (2, 5)
    assert result.dtype == np.promote_types(np.int32, np.float32)


def test_full_contraction_to_scalar():
    ns = {"A": np.array([1, 2, 3]), "B": np.array([10, 20, 30])}
    assert einsum("s := A[i] * B[i]", ns) == 140
    assert ns["s"] == 140


def test_accumulate_twice_doubles():
    A = np.arange(4.0).reshape(2, 2)
    B = np.eye(2)
    once = einsum("C[i,j] += A[i,k] * B[k,j]", C=np.zeros((2, 2)), A=A, B=B)
    ns = {"C": np.zeros((2, 2)), "A": A, "B": B}
    einsum("C[i,j] += A[i,k] * B[k,j]", ns)
    einsum("C[i,j] += A[i,k] * B[k,j]", ns)
    np.testing.assert_allclose(ns["C"], 2 * once)


def test_plain_assign_is_idempotent():
    ns = {"C": np.zeros(3), "A": np.array([1.0, 2.0, 3.0])}
    einsum("C[i] = 2 * A[i]", ns)
    first = ns["C"].copy()
    einsum("C[i] = 2 * A[i]", ns)
    np.testing.assert_array_equal(ns["C"], first)


def test_update_operators():
    x = np.array([2.0, 4.0, 8.0])
    cases = {"-=": x - 1, "*=": x * 2, "/=": x / 2}
    for op, expected in cases.items():
        y = x.copy()
        einsum(f"y[i] {op} v", y=y, v=2.0 if op != "-=" else 1.0)
        np.testing.assert_allclose(y, expected)


def test_update_keeps_destination_dtype():
    y = np.array([1, 2, 3], dtype=np.int64)
    einsum("y[i] += x[i]", y=y, x=np.array([2, 2, 2], dtype=np.int32))
    assert y.dtype == np.int64
    np.testing.assert_array_equal(y, [3, 4, 5])


@pytest.mark.parametrize("backend", ["numpy", "python"])
def test_update_rejects_fractional_values_for_integer_array(backend):
    y = np.array([1, 2, 3], dtype=np.int64)
    runner = Einsum("y[i] += x[i]").compile(backend=backend)
    with pytest.raises(TypeInferenceError):
        runner(y=y, x=np.array([0.5, 0.5, 0.5]))
    np.testing.assert_array_equal(y, [1, 2, 3])


def test_update_is_bounded_by_smaller_side():
    C = np.zeros(5)
    einsum("C[i] = A[i]", C=C, A=np.array([1.0, 2.0, 3.0]))
    np.testing.assert_array_equal(C, [1.0, 2.0, 3.0, 0.0, 0.0])


def test_offset_index_shrinks_range():
    A = np.array([10, 20, 30, 40])
    ns = {"A": A}
    runner = Einsum("B[i] := A[i + 1]").compile()
    result = runner(ns)
    assert result.shape == (3,)
    np.testing.assert_array_equal(result, A[1:])
    assert runner.logs[-1]["equation"]["free"] == {"i": 3}


def test_minus_offset_is_rejected_by_bounds_checks():
    with pytest.raises(BoundsError):
        einsum("B[i] := A[i - 1]", A=np.arange(3))


def test_captured_offset():
    A = np.arange(6)
    result = einsum("B[i] := A[i + $shift]", A=A, shift=2)
    np.testing.assert_array_equal(result, A[2:])


def test_pinned_literal_index():
    M = np.arange(12).reshape(3, 4)
    result = einsum("r[j] := M[2, j]", M=M)
    np.testing.assert_array_equal(result, M[1])


def test_diagonal_destination():
    D = np.zeros((3, 3))
    plan = Einsum("D[i,i] = A[i]").plan
    assert [name for name, _ in plan.free] == ["i"]
    assert len(plan.checks) == 1
    einsum("D[i,i] = A[i]", D=D, A=np.array([1.0, 2.0, 3.0]))
    np.testing.assert_array_equal(D, np.diag([1.0, 2.0, 3.0]))


def test_trace_contraction():
    M = np.arange(9.0).reshape(3, 3)
    assert einsum("t := M[i,i]", M=M) == np.trace(M)


def test_dimension_mismatch_allocates_nothing():
    ns = {"A": np.arange(3), "B": np.arange(4)}
    with pytest.raises(DimensionMismatchError) as excinfo:
        einsum("C[i] := A[i] + B[i]", ns)
    assert excinfo.value.index == "i"
    assert "C" not in ns


def test_dimension_mismatch_leaves_destination_untouched():
    C = np.full(2, 7.0)
    with pytest.raises(DimensionMismatchError):
        einsum("C[i] += A[i,k] * B[k]", C=C, A=np.ones((2, 3)), B=np.ones(4))
    np.testing.assert_array_equal(C, [7.0, 7.0])


def test_unchecked_skips_consistency_checks():
    A = np.arange(1, 4)
    B = np.arange(1, 5)
    result = einsum_unchecked("C[i] := A[i] + B[i]", A=A, B=B)
    np.testing.assert_array_equal(result, A + B[:3])


def test_vectorized_contraction_matches(matmul_operands):
    expected = naive_matmul(matmul_operands["A"], matmul_operands["B"])
    result = einsimd("C[i,j] := A[i,k] * B[k,j]", dict(matmul_operands))
    np.testing.assert_allclose(result, expected)
    result = einsimd("s := A[i,k] * A[i,k]", A=matmul_operands["A"])
    assert result == pytest.approx(float((matmul_operands["A"] ** 2).sum()))


def test_vectorized_contraction_with_index_value():
    result = einsimd("s := x[k] * k", x=np.ones(4))
    assert result == 10


def test_call_base_is_evaluated_once():
    calls = []

    def flip(value):
        calls.append(1)
        return value[::-1]

    B = np.arange(6).reshape(2, 3)
    result = einsum("C[j,k] := flip(B)[j,k]", B=B, flip=flip)
    np.testing.assert_array_equal(result, B[::-1])
    assert len(calls) == 1


def test_numpy_functions_resolve_by_name():
    B = np.arange(6).reshape(2, 3)
    result = einsum("C[j,k] := transpose(B)[j,k]", B=B)
    np.testing.assert_array_equal(result, B.T)
    result = einsum("y[i] := exp(x[i])", x=np.zeros(2))
    np.testing.assert_allclose(result, [1.0, 1.0])


def test_scalar_operands_and_power():
    result = einsum("y[i] := alpha * x[i] ^ 2 - 1", alpha=3, x=np.array([1, 2]))
    np.testing.assert_array_equal(result, [2, 11])


def test_unbound_names():
    with pytest.raises(UnboundNameError):
        einsum("C[i] := A[i] * B[i]", A=np.ones(2))
    with pytest.raises(UnboundNameError):
        einsum("y[i] := nosuchfunction(x[i])", x=np.ones(2))
    with pytest.raises(UnboundNameError):
        einsum("y[i] = x[i]", x=np.ones(2))


def test_type_inference_failure_before_allocation():
    ns = {
        "A": np.array(["2020-01-01", "2020-01-02"], dtype="datetime64[D]"),
        "B": np.array([1.0, 2.0]),
    }
    with pytest.raises(TypeInferenceError):
        einsum("C[i] := A[i] * B[i]", ns)
    assert "C" not in ns


def test_degenerate_extent_runs_zero_iterations():
    result = einsum("B[i] := A[i + 3]", A=np.arange(2))
    assert result.shape == (0,)


def test_runner_logs_and_explain(matmul_operands):
    runner = Einsum("C[i,j] := A[i,k] * B[k,j]").compile()
    runner(dict(matmul_operands))
    kinds = [entry["kind"] for entry in runner.logs]
    assert kinds == ["check", "allocate", "equation"]
    eq = runner.logs[-1]["equation"]
    assert eq["iterations"] == 3 * 2 * 4
    assert eq["flops"] == 2.0 * 3 * 2 * 4
    text = runner.explain()
    assert "[check] k: 4 == 4 ok" in text
    assert "[alloc] C float64 3x2" in text
    payload = runner.explain(json=True)
    assert payload["logs"][1]["allocate"]["shape"] == [3, 2]


def test_unknown_backend():
    with pytest.raises(BackendError):
        Einsum("C[i] := A[i]").compile(backend="fortran")


def test_einsum_object_is_reusable():
    program = Einsum("y[i] := 2 * x[i]")
    np.testing.assert_array_equal(program(x=np.array([1, 2])), [2, 4])
    np.testing.assert_array_equal(program(x=np.array([5])), [10])
    assert len(program.digest) == 64
    assert program.explain(json=True)["digest"] == program.digest


def test_compile_with_override_config():
    program = Einsum("C[i] := A[i] + B[i]")
    runner = program.compile(config=ExecutionConfig(bounds_checked=False))
    result = runner(A=np.arange(2), B=np.arange(3))
    np.testing.assert_array_equal(result, [0, 2])


@pytest.mark.parametrize("backend", ["numpy", "python"])
@pytest.mark.parametrize("checked", [True, False])
@pytest.mark.parametrize(
    "text, operands",
    [
        ("C[i] := A[i] / B[i]", {"A": np.array([1, 3]), "B": np.array([2, 2])}),
        ("C[i] := 0.5 * A[i]", {"A": np.array([1, 3])}),
    ],
)
def test_integer_array_rejects_fractional_results(backend, checked, text, operands):
    cfg = ExecutionConfig(bounds_checked=checked)
    runner = Einsum(text, config=cfg).compile(backend=backend)
    with pytest.raises(TypeInferenceError):
        runner(dict(operands))


def test_declared_scalar_keeps_fractional_result():
    assert einsum("s := A[i] / 2", A=np.array([1, 1, 1])) == 1.5


@pytest.mark.parametrize("backend", ["numpy", "python"])
def test_unchecked_update_is_bounded_by_every_operand(backend):
    cfg = ExecutionConfig(bounds_checked=False)
    runner = Einsum("C[i] = A[i] * B[i]", config=cfg).compile(backend=backend)
    C = np.zeros(5)
    runner(C=C, A=np.ones(5), B=np.full(3, 2.0))
    np.testing.assert_array_equal(C, [2.0, 2.0, 2.0, 0.0, 0.0])


@pytest.mark.parametrize("backend", ["numpy", "python"])
def test_missing_subscripts_fail_before_allocation(backend):
    ns = {"A": np.ones((2, 3))}
    runner = Einsum("C[i] := A[i]").compile(backend=backend)
    with pytest.raises(BoundsError):
        runner(ns)
    assert "C" not in ns


def test_missing_subscripts_on_updated_destination():
    C = np.zeros((2, 2))
    with pytest.raises(BoundsError):
        einsum("C[i] = A[i]", C=C, A=np.ones(2))
    assert not C.any()


@pytest.mark.parametrize("backend", ["numpy", "python"])
@pytest.mark.parametrize("vectorize", [False, True])
def test_boolean_contractions_count(backend, vectorize):
    cfg = ExecutionConfig(vectorize_inner_loop=vectorize)
    a = np.array([True, True, False])
    b = np.array([True, True, True])
    dot = Einsum("s := A[i] * B[i]", config=cfg).compile(backend=backend)
    assert dot(A=a, B=b) == 2
    rows = Einsum("c[i] := M[i,j] * v[j]", config=cfg).compile(backend=backend)
    result = rows(M=np.array([[True, True], [False, True]]), v=np.array([True, True]))
    assert result.dtype.kind == "i"
    np.testing.assert_array_equal(result, [2, 1])
