#!/usr/bin/env python3
"""
Loop-plan benchmark for the NumPy runner and the generated Python kernel.

Times a matrix multiply written as an einloop equation with and without
bounds checking and inner-loop vectorization, next to ``numpy.einsum`` as a
reference point. The plans are plain Python loops, so keep sizes small.
"""

from __future__ import annotations

import argparse
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

import numpy as np

from einloop import Einsum, ExecutionConfig

EQUATION = "C[i,j] := A[i,k] * B[k,j]"


@dataclass
class BenchmarkResult:
    backend: str
    variant: str
    min_s: float
    mean_s: float
    iterations: int
    flops_per_s: Optional[float]


def build_inputs(*, size: int, seed: int) -> Dict[str, Any]:
    rng = np.random.default_rng(seed)
    return {
        "A": rng.normal(size=(size, size)),
        "B": rng.normal(size=(size, size)),
    }


def bench(fn: Callable[[], Any], *, iterations: int, warmup: int) -> Iterable[float]:
    timings = []
    for step in range(iterations + warmup):
        start = time.perf_counter()
        fn()
        elapsed = time.perf_counter() - start
        if step >= warmup:
            timings.append(elapsed)
    return timings


def _result(backend: str, variant: str, timings: List[float], flops: float) -> BenchmarkResult:
    min_s = min(timings)
    return BenchmarkResult(
        backend=backend,
        variant=variant,
        min_s=min_s,
        mean_s=sum(timings) / len(timings),
        iterations=len(timings),
        flops_per_s=flops / min_s if min_s > 0 else None,
    )


def run_einloop(
    inputs: Dict[str, Any],
    *,
    backend: str,
    iterations: int,
    warmup: int,
) -> List[BenchmarkResult]:
    size = inputs["A"].shape[0]
    flops = 2.0 * size**3
    results = []
    variants = {
        "checked": ExecutionConfig(),
        "unchecked": ExecutionConfig(bounds_checked=False),
        "simd": ExecutionConfig(vectorize_inner_loop=True),
        "simd-unchecked": ExecutionConfig(bounds_checked=False, vectorize_inner_loop=True),
    }
    for variant, cfg in variants.items():
        runner = Einsum(EQUATION, config=cfg).compile(backend=backend)

        def invoke():
            return runner(dict(inputs))

        timings = list(bench(invoke, iterations=iterations, warmup=warmup))
        results.append(_result(backend, variant, timings, flops))
    return results


def run_reference(inputs: Dict[str, Any], *, iterations: int, warmup: int) -> BenchmarkResult:
    size = inputs["A"].shape[0]

    def invoke():
        return np.einsum("ik,kj->ij", inputs["A"], inputs["B"])

    timings = list(bench(invoke, iterations=iterations, warmup=warmup))
    return _result("einsum", "numpy", timings, 2.0 * size**3)


def format_results(results: Iterable[BenchmarkResult]) -> str:
    header = (
        f"{'backend':<8} {'variant':<16} {'min (ms)':>12} {'mean (ms)':>12} "
        f"{'iters':>6} {'MFLOP/s':>10}"
    )
    rows = [header]
    for result in results:
        mflops = (result.flops_per_s or float("nan")) / 1e6
        rows.append(
            f"{result.backend:<8} {result.variant:<16} {result.min_s * 1e3:12.3f} "
            f"{result.mean_s * 1e3:12.3f} {result.iterations:6d} {mflops:10.2f}"
        )
    return "\n".join(rows)


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Benchmark einloop matrix-multiply plans.")
    parser.add_argument(
        "--backend",
        choices=("numpy", "python", "all"),
        default="all",
        help="Backend(s) to benchmark (default: all).",
    )
    parser.add_argument("--size", type=int, default=24, help="Square matrix size (default: 24).")
    parser.add_argument("--iterations", type=int, default=5, help="Timed iterations.")
    parser.add_argument("--warmup", type=int, default=1, help="Untimed warmup iterations.")
    parser.add_argument("--seed", type=int, default=0, help="Random seed for inputs.")
    return parser.parse_args(list(argv) if argv is not None else None)


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    inputs = build_inputs(size=args.size, seed=args.seed)
    backends = ["numpy", "python"] if args.backend == "all" else [args.backend]

    results: List[BenchmarkResult] = []
    for backend in backends:
        results.extend(
            run_einloop(inputs, backend=backend, iterations=args.iterations, warmup=args.warmup)
        )
    results.append(run_reference(inputs, iterations=args.iterations, warmup=args.warmup))
    print(format_results(results))
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
