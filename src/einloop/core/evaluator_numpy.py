from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, MutableMapping, Optional

import numpy as np

from .allocator import (
    Allocation,
    accumulator_type,
    allocate,
    element_type,
    infer_element_type,
    zero_of,
)
from .ast import Call, Captured, Index, Literal, Node, Offset, Symbol, describe, format_expr
from .config import ExecutionConfig
from .dims import DimExpr, evaluate_dim, format_dim
from .exceptions import MalformedEquationError
from .loops import (
    Accumulate,
    AccumulatorRef,
    Block,
    Loop,
    ResetAccumulator,
    Statement,
    Store,
)
from .plan import Plan
from .runtime import (
    OPERATORS,
    as_operand,
    check_dimensions,
    check_rank,
    combine,
    get_extent,
    lookup,
    read,
    resolve_function,
    write,
)
from .stats import compute_loop_stats

logger = logging.getLogger(__name__)


def _json_ready(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (np.integer, np.floating)):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, dict):
        return {str(k): _json_ready(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_ready(v) for v in value]
    return str(value)


class _Frame:
    __slots__ = ("accumulator",)

    def __init__(self, accumulator: Any = None):
        self.accumulator = accumulator


class NumpyRunner:
    """Interpret a Plan directly against NumPy arrays held in a namespace."""

    def __init__(self, plan: Plan, config: Optional[ExecutionConfig] = None):
        self.plan = plan
        self.config = (config or plan.config).normalized()
        self.logs: List[Dict[str, Any]] = []
        self._reset_state()

    # Public API ----------------------------------------------------------------
    def __call__(self, namespace: Optional[MutableMapping[str, Any]] = None, **operands: Any):
        return self.run(namespace, **operands)

    def run(self, namespace: Optional[MutableMapping[str, Any]] = None, **operands: Any):
        """Execute the plan; ``operands`` are merged into ``namespace`` first.

        The destination is written into the namespace and returned.
        """
        scope: MutableMapping[str, Any] = namespace if namespace is not None else {}
        if operands:
            scope.update(operands)
        self.logs.clear()
        self._reset_state()
        self._scope = scope
        start = time.perf_counter()

        self._bind(scope)
        dtype = self._element_type()
        self._run_checks()
        free_extents = [self._extent(dim) for _, dim in self.plan.free]
        contracted_extents = [self._extent(dim) for _, dim in self.plan.contracted]
        self._allocate(scope, dtype, free_extents)
        self._zero = zero_of(accumulator_type(dtype))

        self._execute(self.plan.body, {}, _Frame())
        result = scope[self.plan.destination_name]

        duration_ms = (time.perf_counter() - start) * 1000.0 if self.config.explain_timings else None
        self._log_equation(free_extents, contracted_extents, result, duration_ms)
        logger.debug(
            "ran %s: free=%s contracted=%s",
            self.plan.destination_name,
            free_extents,
            contracted_extents,
        )
        return result

    def explain(self, *, json: bool = False):
        if json:
            return {"logs": [_json_ready(entry) for entry in self.logs]}

        lines: List[str] = []
        for entry in self.logs:
            kind = entry.get("kind")
            if kind == "check":
                chk = entry["check"]
                lines.append(
                    f"[check] {chk['index']}: {chk['left']} == {chk['right']} {chk['status']}"
                )
            elif kind == "allocate":
                alloc = entry["allocate"]
                shape = "x".join(str(n) for n in alloc["shape"]) or "scalar"
                lines.append(f"[alloc] {alloc['name']} {alloc['dtype']} {shape}")
            elif kind == "equation":
                eq = entry["equation"]
                details: List[str] = []
                if eq["free"]:
                    details.append(
                        "free=" + ",".join(f"{k}:{v}" for k, v in eq["free"].items())
                    )
                if eq["contracted"]:
                    details.append(
                        "sum=" + ",".join(f"{k}:{v}" for k, v in eq["contracted"].items())
                    )
                if eq["vectorized"]:
                    details.append("simd")
                details.append(f"iters={eq['iterations']}")
                details.append(f"flops={eq['flops']:g}")
                duration = eq.get("duration_ms")
                timing = f" {duration:.3f}ms" if duration is not None else ""
                lines.append(f"[eq] {eq['name']} {eq['status']}{timing} {' '.join(details)}")
        return "\n".join(lines)

    # Internal helpers ----------------------------------------------------------
    def _reset_state(self) -> None:
        self._scope: MutableMapping[str, Any] = {}
        self._values: Dict[Node, Any] = {}
        self._constants: Dict[str, Any] = {}
        self._functions: Dict[str, Callable[..., Any]] = {}
        self._extents: Dict[DimExpr, int] = {}
        self._destination: Any = None
        self._zero: Any = None

    def _bind(self, scope: MutableMapping[str, Any]) -> None:
        for name in self.plan.captured:
            self._constants[name] = lookup(scope, name)
        for node in self.plan.operands:
            self._values[node] = as_operand(self._evaluate_base(node))
        if not self.plan.declare:
            dest = self.plan.destination
            current = lookup(scope, dest.name)
            if dest.subscripts and not isinstance(current, np.ndarray):
                current = np.asarray(current)
                scope[dest.name] = current
            self._destination = current
            self._values[dest.base] = current
        if self.config.bounds_checked:
            for node, count in self.plan.ranks:
                check_rank(self._values[node], count, format_expr(node))

    def _evaluate_base(self, node: Node) -> Any:
        if isinstance(node, Symbol):
            return lookup(self._scope, node.name)
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, Captured):
            if node.name in self._constants:
                return self._constants[node.name]
            return lookup(self._scope, node.name)
        if isinstance(node, Call):
            args = [self._evaluate_base(arg) for arg in node.args]
            return self._call(node.func, args)
        raise MalformedEquationError(
            f"Cannot evaluate {describe(node)} outside the loop nest"
        )

    def _element_type(self) -> np.dtype:
        if not self.plan.declare:
            return element_type(self._destination)
        dtypes = [element_type(self._values[node]) for node in self.plan.operands]
        dtypes.extend(np.dtype(int) for _ in self.plan.index_values)
        dtype = infer_element_type(dtypes)
        return accumulator_type(dtype) if self.plan.contracted else dtype

    def _extent_of(self, node: Node, axis: int) -> int:
        if node not in self._values:
            raise MalformedEquationError(
                f"`{format_expr(node)}` has no value to take the extent of"
            )
        return get_extent(self._values[node], axis, format_expr(node))

    def _extent(self, dim: DimExpr) -> int:
        return evaluate_dim(dim, self._extent_of, self._constants.__getitem__, self._extents)

    def _run_checks(self) -> None:
        if not self.config.bounds_checked:
            return
        evaluated = []
        for check in self.plan.checks:
            left = self._extent(check.left)
            right = self._extent(check.right)
            self.logs.append(
                {
                    "kind": "check",
                    "check": {
                        "index": check.index,
                        "expr": str(check),
                        "left": left,
                        "right": right,
                        "status": "ok" if left == right else "mismatch",
                    },
                }
            )
            evaluated.append(
                (check.index, format_dim(check.left), left, format_dim(check.right), right)
            )
        check_dimensions(evaluated)

    def _allocate(self, scope: MutableMapping[str, Any], dtype: np.dtype, shape: List[int]) -> None:
        if self.plan.allocation is Allocation.NONE:
            return
        value = allocate(self.plan.allocation, dtype, shape)
        scope[self.plan.destination_name] = value
        self._destination = value
        self.logs.append(
            {
                "kind": "allocate",
                "allocate": {
                    "name": self.plan.destination_name,
                    "allocation": self.plan.allocation.value,
                    "dtype": str(dtype),
                    "shape": list(np.shape(value)),
                },
            }
        )

    # Loop execution ------------------------------------------------------------
    def _execute(self, stmt: Statement, env: Dict[str, Any], frame: _Frame) -> None:
        if isinstance(stmt, Loop):
            extent = self._extent(stmt.extent)
            if stmt.vectorized and isinstance(stmt.body, Accumulate):
                env[stmt.index] = np.arange(1, max(extent, 0) + 1)
                value = self._evaluate(stmt.body.value, env)
                frame.accumulator = frame.accumulator + np.sum(
                    np.broadcast_to(value, env[stmt.index].shape)
                )
            else:
                for position in range(1, extent + 1):
                    env[stmt.index] = position
                    self._execute(stmt.body, env, frame)
            env.pop(stmt.index, None)
        elif isinstance(stmt, Block):
            for inner in stmt.statements:
                self._execute(inner, env, frame)
        elif isinstance(stmt, ResetAccumulator):
            frame.accumulator = self._zero
        elif isinstance(stmt, Accumulate):
            frame.accumulator = frame.accumulator + self._evaluate(stmt.value, env)
        elif isinstance(stmt, Store):
            self._store(stmt, env, frame)
        else:
            raise MalformedEquationError(f"Unknown plan statement: {stmt!r}")

    def _store(self, stmt: Store, env: Dict[str, Any], frame: _Frame) -> None:
        if isinstance(stmt.value, AccumulatorRef):
            value = frame.accumulator
        else:
            value = self._evaluate(stmt.value, env)
        target = stmt.target
        checked = self.config.bounds_checked
        if isinstance(target, Symbol):
            current = self._scope.get(target.name)
            self._scope[target.name] = combine(stmt.op, current, value)
            return
        if not isinstance(target, Index):
            raise MalformedEquationError(f"Invalid destination {describe(target)}")
        subs = [self._subscript(sub, env) for sub in target.indices]
        label = format_expr(target.base)
        current = None
        if stmt.op != "=":
            current = read(self._destination, subs, label, checked)
        write(self._destination, subs, combine(stmt.op, current, value), label, checked)

    # Expression evaluation -----------------------------------------------------
    def _call(self, func: str, args: List[Any]) -> Any:
        if func in OPERATORS:
            return OPERATORS[func](*args)
        fn = self._functions.get(func)
        if fn is None:
            fn = resolve_function(self._scope, func)
            self._functions[func] = fn
        return fn(*args)

    def _subscript(self, node: Node, env: Dict[str, Any]) -> Any:
        if isinstance(node, Symbol):
            return env[node.name]
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, Captured):
            return self._constants[node.name]
        if isinstance(node, Offset) and isinstance(node.index, Symbol):
            amount = self._subscript(node.amount, env)
            base = env[node.index.name]
            return base + amount if node.op == "+" else base - amount
        raise MalformedEquationError(f"Invalid index expression: {describe(node)}")

    def _evaluate(self, node: Node, env: Dict[str, Any]) -> Any:
        if isinstance(node, Symbol):
            if node.name in env:
                return env[node.name]
            return read(self._values[node], (), node.name, checked=False)
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, Index):
            subs = [self._subscript(sub, env) for sub in node.indices]
            return read(
                self._values[node.base],
                subs,
                format_expr(node.base),
                self.config.bounds_checked,
            )
        if isinstance(node, Call):
            return self._call(node.func, [self._evaluate(arg, env) for arg in node.args])
        raise MalformedEquationError(f"Invalid expression node: {describe(node)}")

    def _log_equation(
        self,
        free_extents: List[int],
        contracted_extents: List[int],
        result: Any,
        duration_ms: Optional[float],
    ) -> None:
        operand_values = [self._values[node] for node in self.plan.operands]
        stats = compute_loop_stats(
            free_extents,
            contracted_extents,
            [np.shape(v) for v in operand_values],
            [element_type(v).itemsize for v in operand_values],
            np.shape(result),
            element_type(result).itemsize,
        )
        vectorized = any(
            isinstance(stmt, Loop) and stmt.vectorized for stmt in _walk_statements(self.plan.body)
        )
        self.logs.append(
            {
                "kind": "equation",
                "equation": {
                    "name": self.plan.destination_name,
                    "status": "ok",
                    "duration_ms": duration_ms,
                    "free": dict(zip((n for n, _ in self.plan.free), free_extents)),
                    "contracted": dict(
                        zip((n for n, _ in self.plan.contracted), contracted_extents)
                    ),
                    "vectorized": vectorized,
                    **stats,
                },
            }
        )


def _walk_statements(stmt: Statement):
    yield stmt
    if isinstance(stmt, Loop):
        yield from _walk_statements(stmt.body)
    elif isinstance(stmt, Block):
        for inner in stmt.statements:
            yield from _walk_statements(inner)
