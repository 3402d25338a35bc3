from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class ExecutionConfig:
    """
    Compile and run switches shared by the NumPy runner and the source backend.

    Key behaviors:
    * ``bounds_checked`` evaluates the dimension consistency checks before any
      loop runs and asserts every element read and write is within
      ``1..extent``. Turning it off trusts the caller, like ``@inbounds``.
    * ``vectorize_inner_loop`` runs the innermost contraction loop as a single
      vectorized gather-and-sum instead of a scalar loop.
    * ``explain_timings`` records wall-clock durations in the runner log.
    """

    bounds_checked: bool = True
    vectorize_inner_loop: bool = False
    explain_timings: bool = True

    def normalized(self) -> "ExecutionConfig":
        return replace(
            self,
            bounds_checked=bool(self.bounds_checked),
            vectorize_inner_loop=bool(self.vectorize_inner_loop),
            explain_timings=bool(self.explain_timings),
        )
