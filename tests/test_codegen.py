import numpy as np
import pytest

from einloop import (
    DimensionMismatchError,
    Einsum,
    ExecutionConfig,
    SourceKernel,
    build_kernel,
    compile_plan,
)

CASES = [
    ("C[i,j] := A[i,k] * B[k,j]", {"A": (3, 4), "B": (4, 2)}, {}),
    ("s := A[i] * B[i]", {"A": (5,), "B": (5,)}, {}),
    ("y[i] := alpha * x[i] ^ 2 - 1", {"x": (4,)}, {"alpha": 3}),
    ("B[i] := A[i + $shift] * w", {"A": (6,)}, {"shift": 2, "w": 0.5}),
    ("t := M[i,i]", {"M": (3, 3)}, {}),
    ("r[j] := M[2, j] * j", {"M": (3, 4)}, {}),
    ("C[j,k] := transpose(B)[j,k] + exp(B[k,j])", {"B": (2, 3)}, {}),
    ("E[a,b] := X[a,c,d] * Y[d,c,b]", {"X": (2, 3, 2), "Y": (2, 3, 4)}, {}),
]


def _namespace(shapes, constants, seed=0):
    rng = np.random.default_rng(seed)
    ns = {
        name: rng.integers(-3, 4, size=shape).astype(np.float64)
        for name, shape in shapes.items()
    }
    ns.update(constants)
    return ns


@pytest.mark.parametrize("checked", [True, False])
@pytest.mark.parametrize("vectorize", [False, True])
@pytest.mark.parametrize("text, shapes, constants", CASES)
def test_kernel_matches_runner(text, shapes, constants, checked, vectorize):
    cfg = ExecutionConfig(bounds_checked=checked, vectorize_inner_loop=vectorize)
    program = Einsum(text, config=cfg)
    expected = program.compile(backend="numpy")(_namespace(shapes, constants))
    kernel = program.compile(backend="python")
    assert isinstance(kernel, SourceKernel)
    result = kernel(_namespace(shapes, constants))
    np.testing.assert_allclose(np.asarray(result), np.asarray(expected))


def test_update_kernel_writes_in_place():
    kernel = build_kernel(compile_plan("C[i,j] += A[i,k] * B[k,j]"))
    C = np.ones((2, 2))
    ns = {"C": C, "A": np.eye(2), "B": np.full((2, 2), 2.0)}
    result = kernel(ns)
    assert result is C
    np.testing.assert_array_equal(C, np.full((2, 2), 3.0))


def test_scalar_update_kernel():
    kernel = build_kernel(compile_plan("s *= x[i] + 1"))
    ns = {"s": 2.0, "x": np.array([1.0])}
    assert kernel(ns) == 4.0
    assert ns["s"] == 4.0


def test_checked_source_uses_runtime_helpers():
    source = Einsum("C[i,j] := A[i,k] * B[k,j]").to_source()
    assert source.startswith("def einsum_kernel(_ein_ns):")
    assert "_ein_check([" in source
    assert "('k', 'size(A, 2)'" in source
    assert "for j in range(1, " in source
    assert "_ein_read(A, (i, k), 'A', True)" in source
    assert "_ein_write(C, (i, j), _ein_acc, 'C', True)" in source


def test_unchecked_source_indexes_directly():
    cfg = ExecutionConfig(bounds_checked=False)
    source = Einsum("C[i,j] := A[i,k] * B[k,j]", config=cfg).to_source(name="matmul")
    assert source.startswith("def matmul(_ein_ns):")
    assert "_ein_check" not in source
    assert "A[i - 1, k - 1]" in source
    assert "C[i - 1, j - 1] = _ein_fit(_ein_acc, C, 'C')" in source


def test_vectorized_source_uses_arange():
    cfg = ExecutionConfig(vectorize_inner_loop=True)
    source = Einsum("C[i,j] := A[i,k] * B[k,j]", config=cfg).to_source()
    assert "k = _ein_np.arange(1, " in source
    assert "_ein_np.sum(_ein_np.broadcast_to(" in source
    assert "for k in" not in source


def test_reserved_names_are_renamed():
    source = Einsum("out[i] := sum[i] * range[i]").to_source()
    assert "_ein_v_sum" in source and "_ein_v_range" in source
    kernel = Einsum("out[i] := sum[i] * range[i]").compile(backend="python")
    result = kernel(sum=np.array([1, 2]), range=np.array([3, 4]))
    np.testing.assert_array_equal(result, [3, 8])


def test_kernel_checks_before_writing():
    kernel = Einsum("C[i] += A[i,k] * B[k]").compile(backend="python")
    C = np.zeros(2)
    with pytest.raises(DimensionMismatchError):
        kernel(C=C, A=np.ones((2, 3)), B=np.ones(4))
    assert not C.any()


def test_invalid_kernel_name():
    with pytest.raises(ValueError):
        Einsum("s := x[i]").to_source(name="not valid")
