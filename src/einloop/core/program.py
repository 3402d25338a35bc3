from __future__ import annotations

import hashlib
import logging
from functools import lru_cache
from typing import Any, MutableMapping, Optional, Union

from .ast import Equation, format_equation
from .config import ExecutionConfig
from .evaluator_numpy import NumpyRunner
from .exceptions import BackendError
from .parser import parse_equation
from .plan import Plan, compile_equation

logger = logging.getLogger(__name__)

EquationLike = Union[str, Equation]


def compute_equation_hash(src: str) -> str:
    hasher = hashlib.sha256()
    hasher.update(src.encode("utf-8"))
    return hasher.hexdigest()


@lru_cache(maxsize=256)
def _compile_text(text: str, config: ExecutionConfig) -> Plan:
    logger.debug("compiling %r", text)
    return compile_equation(parse_equation(text), config)


def compile_plan(equation: EquationLike, config: Optional[ExecutionConfig] = None) -> Plan:
    """Plan for ``equation``; text equations are cached per ``(text, config)``."""
    cfg = (config or ExecutionConfig()).normalized()
    if isinstance(equation, str):
        return _compile_text(equation.strip(), cfg)
    return compile_equation(equation, cfg)


class Einsum:
    """A single compiled equation, runnable against any namespace of operands."""

    def __init__(self, equation: EquationLike, config: Optional[ExecutionConfig] = None):
        self.config = (config or ExecutionConfig()).normalized()
        self.plan: Plan = compile_plan(equation, self.config)
        self.src = equation if isinstance(equation, str) else format_equation(equation)
        self.digest = compute_equation_hash(self.src)

    def compile(self, backend: str = "numpy", config: Optional[ExecutionConfig] = None):
        """Runner for the selected backend.

        ``"numpy"`` interprets the plan directly; ``"python"`` lowers it to a
        generated Python function first.
        """
        cfg = (config or self.config).normalized()
        plan = self.plan if cfg == self.plan.config else compile_plan(self.plan.equation, cfg)
        if backend == "numpy":
            return NumpyRunner(plan, config=cfg)
        if backend == "python":
            from .codegen import build_kernel

            return build_kernel(plan)
        raise BackendError(f"Unknown backend '{backend}'")

    def __call__(self, namespace: Optional[MutableMapping[str, Any]] = None, **operands: Any):
        return self.compile()(namespace, **operands)

    def explain(self, *, json: bool = False) -> Any:
        payload = self.plan.explain(json=json)
        if json:
            return {"digest": self.digest, **payload}
        return payload

    def to_source(self, name: str = "einsum_kernel") -> str:
        return self.plan.to_source(name=name)

    def __repr__(self) -> str:
        return f"Einsum({self.src!r})"


def _run(
    equation: EquationLike,
    config: ExecutionConfig,
    namespace: Optional[MutableMapping[str, Any]],
    operands: MutableMapping[str, Any],
):
    plan = compile_plan(equation, config)
    return NumpyRunner(plan)(namespace, **operands)


def einsum(
    equation: EquationLike,
    namespace: Optional[MutableMapping[str, Any]] = None,
    **operands: Any,
):
    """Evaluate ``equation`` with dimension checks and element bounds assertions."""
    return _run(equation, ExecutionConfig(), namespace, operands)


def einsimd(
    equation: EquationLike,
    namespace: Optional[MutableMapping[str, Any]] = None,
    **operands: Any,
):
    """Like :func:`einsum`, with the innermost contraction loop vectorized."""
    return _run(equation, ExecutionConfig(vectorize_inner_loop=True), namespace, operands)


def einsum_unchecked(
    equation: EquationLike,
    namespace: Optional[MutableMapping[str, Any]] = None,
    **operands: Any,
):
    """Like :func:`einsum` without consistency checks or bounds assertions.

    Mismatched extents are not detected; out-of-range reads follow NumPy
    indexing rules.
    """
    return _run(equation, ExecutionConfig(bounds_checked=False), namespace, operands)
