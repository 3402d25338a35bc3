"""Lower a Plan to Python source.

The generated function takes a single namespace mapping, binds its operands
once, front-loads the dimension checks and allocation, and then runs plain
``for`` loops over ``range(1, n + 1)``. Helpers from :mod:`runtime` and
:mod:`allocator` are injected as ``_ein_*`` globals.
"""

from __future__ import annotations

import builtins
import keyword
import linecache
from typing import Any, Dict, List, MutableMapping, Optional

import numpy as np

from . import allocator, runtime
from .allocator import Allocation
from .ast import Call, Captured, Index, Literal, Node, Offset, Symbol, describe, format_expr
from .dims import DimExpr, Extent, Minimum, Shifted, format_dim
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

_PY_OPERATORS = {"+": "+", "-": "-", "*": "*", "/": "/", "^": "**"}
_COMBINE = {"+=": "+", "-=": "-", "*=": "*", "/=": "/"}
_ACC = "_ein_acc"
_NS = "_ein_ns"


def _kernel_globals() -> Dict[str, Any]:
    return {
        "_ein_np": np,
        "_ein_Allocation": Allocation,
        "_ein_allocate": allocator.allocate,
        "_ein_infer": allocator.infer_element_type,
        "_ein_eltype": allocator.element_type,
        "_ein_zero_of": allocator.zero_of,
        "_ein_acc_type": allocator.accumulator_type,
        "_ein_lookup": runtime.lookup,
        "_ein_as_operand": runtime.as_operand,
        "_ein_function": runtime.resolve_function,
        "_ein_ops": runtime.OPERATORS,
        "_ein_extent": runtime.get_extent,
        "_ein_read": runtime.read,
        "_ein_write": runtime.write,
        "_ein_fit": runtime.fit,
        "_ein_rank": runtime.check_rank,
        "_ein_check": runtime.check_dimensions,
    }


def _local(name: str) -> str:
    if keyword.iskeyword(name) or hasattr(builtins, name) or name.startswith("_ein_"):
        return f"_ein_v_{name}"
    return name


class _KernelWriter:
    def __init__(self, plan: Plan):
        self.plan = plan
        self.checked = plan.config.bounds_checked
        self.lines: List[str] = []
        self.loop_names = set(plan.loop_indices)
        self.operands: Dict[Node, str] = {}
        self.functions: Dict[str, str] = {}
        self.dims: Dict[DimExpr, str] = {}

    def emit(self, line: str, depth: int) -> None:
        self.lines.append("    " * depth + line)

    # Names ---------------------------------------------------------------------
    def operand(self, node: Node) -> str:
        if node not in self.operands:
            if isinstance(node, Symbol):
                self.operands[node] = _local(node.name)
            else:
                self.operands[node] = f"_ein_t{len(self.operands)}"
        return self.operands[node]

    def constant(self, name: str) -> str:
        return f"_ein_c_{name}"

    def function(self, name: str) -> str:
        if name not in self.functions:
            self.functions[name] = f"_ein_f_{name}"
        return self.functions[name]

    # Expressions ---------------------------------------------------------------
    def static_expr(self, node: Node) -> str:
        """Expression evaluated once, before the loops (call-result bases)."""
        if isinstance(node, Symbol):
            return f"_ein_lookup({_NS}, {node.name!r})"
        if isinstance(node, Literal):
            return repr(node.value)
        if isinstance(node, Captured):
            return self.constant(node.name)
        if isinstance(node, Call):
            args = ", ".join(self.static_expr(arg) for arg in node.args)
            if node.func in runtime.OPERATORS:
                return f"_ein_ops[{node.func!r}]({args})"
            return f"{self.function(node.func)}({args})"
        raise MalformedEquationError(f"Cannot evaluate {describe(node)} outside the loop nest")

    def subscript(self, node: Node) -> str:
        if isinstance(node, Symbol):
            return _local(node.name)
        if isinstance(node, Literal):
            return repr(node.value)
        if isinstance(node, Captured):
            return self.constant(node.name)
        if isinstance(node, Offset) and isinstance(node.index, Symbol):
            return f"{_local(node.index.name)} {node.op} {self.subscript(node.amount)}"
        raise MalformedEquationError(f"Invalid index expression: {describe(node)}")

    def element(self, base: str, label: str, subs: List[Node], checked: bool) -> str:
        if checked:
            packed = ", ".join(self.subscript(s) for s in subs)
            if len(subs) == 1:
                packed += ","
            return f"_ein_read({base}, ({packed}), {label!r}, True)"
        if not subs:
            return f"{base}[()]"
        return f"{base}[{', '.join(self._zero_based(s) for s in subs)}]"

    def _zero_based(self, node: Node) -> str:
        if isinstance(node, Literal):
            return repr(node.value - 1)
        return f"{self.subscript(node)} - 1"

    def expr(self, node: Node) -> str:
        if isinstance(node, Symbol):
            if node.name in self.loop_names:
                return _local(node.name)
            return f"_ein_read({self.operand(node)}, (), {node.name!r}, False)"
        if isinstance(node, Literal):
            return repr(node.value)
        if isinstance(node, Index):
            base = self.operand(node.base)
            return self.element(base, format_expr(node.base), list(node.indices), self.checked)
        if isinstance(node, Call):
            args = [self.expr(arg) for arg in node.args]
            if node.func in _PY_OPERATORS:
                if len(args) == 1:
                    return f"({_PY_OPERATORS[node.func]}{args[0]})"
                if len(args) == 2 or node.func in ("+", "*"):
                    return "(" + f" {_PY_OPERATORS[node.func]} ".join(args) + ")"
                return f"_ein_ops[{node.func!r}]({', '.join(args)})"
            return f"{self.function(node.func)}({', '.join(args)})"
        raise MalformedEquationError(f"Invalid expression node: {describe(node)}")

    def dim(self, dim: DimExpr) -> str:
        if isinstance(dim, Extent):
            label = format_expr(dim.array)
            return f"_ein_extent({self.operand(dim.array)}, {dim.axis}, {label!r})"
        if isinstance(dim, Shifted):
            if isinstance(dim.amount, Captured):
                amount = f"int({self.constant(dim.amount.name)})"
            else:
                amount = str(dim.amount)
            op = "+" if dim.sign > 0 else "-"
            return f"({self.dim(dim.base)} {op} {amount})"
        if isinstance(dim, Minimum):
            return f"min({self.dim(dim.left)}, {self.dim(dim.right)})"
        raise MalformedEquationError(f"Unknown dimension expression: {dim!r}")

    # Statements ----------------------------------------------------------------
    def statement(self, stmt: Statement, depth: int) -> None:
        if isinstance(stmt, Loop):
            index = _local(stmt.index)
            extent = self.dims[stmt.extent]
            if stmt.vectorized and isinstance(stmt.body, Accumulate):
                self.emit(f"{index} = _ein_np.arange(1, max({extent}, 0) + 1)", depth)
                value = self.expr(stmt.body.value)
                self.emit(
                    f"{_ACC} = {_ACC} + _ein_np.sum(_ein_np.broadcast_to({value}, {index}.shape))",
                    depth,
                )
                return
            self.emit(f"for {index} in range(1, {extent} + 1):", depth)
            self.statement(stmt.body, depth + 1)
        elif isinstance(stmt, Block):
            for inner in stmt.statements:
                self.statement(inner, depth)
        elif isinstance(stmt, ResetAccumulator):
            self.emit(f"{_ACC} = _ein_zero", depth)
        elif isinstance(stmt, Accumulate):
            self.emit(f"{_ACC} = {_ACC} + {self.expr(stmt.value)}", depth)
        elif isinstance(stmt, Store):
            self.store(stmt, depth)
        else:
            raise MalformedEquationError(f"Unknown plan statement: {stmt!r}")

    def store(self, stmt: Store, depth: int) -> None:
        value = _ACC if isinstance(stmt.value, AccumulatorRef) else self.expr(stmt.value)
        target = stmt.target
        if isinstance(target, Symbol):
            name = self.operand(target)
            if stmt.op == "=":
                self.emit(f"{name} = {value}", depth)
            else:
                self.emit(f"{name} = {name} {_COMBINE[stmt.op]} {value}", depth)
            return
        if not isinstance(target, Index):
            raise MalformedEquationError(f"Invalid destination {describe(target)}")
        base = self.operand(target.base)
        label = format_expr(target.base)
        subs = list(target.indices)
        if self.checked:
            packed = ", ".join(self.subscript(s) for s in subs)
            if len(subs) == 1:
                packed += ","
            if stmt.op != "=":
                current = self.element(base, label, subs, True)
                value = f"{current} {_COMBINE[stmt.op]} {value}"
            self.emit(f"_ein_write({base}, ({packed}), {value}, {label!r}, True)", depth)
            return
        element = self.element(base, label, subs, False)
        if stmt.op != "=":
            value = f"{element} {_COMBINE[stmt.op]} {value}"
        self.emit(f"{element} = _ein_fit({value}, {base}, {label!r})", depth)

    # Whole kernel --------------------------------------------------------------
    def kernel(self, name: str) -> str:
        plan = self.plan
        dest = plan.destination
        dest_local = self.operand(dest.base)
        body: List[str] = []
        self.lines = body

        for const in plan.captured:
            self.emit(f"{self.constant(const)} = _ein_lookup({_NS}, {const!r})", 1)
        for node in plan.operands:
            self.emit(f"{self.operand(node)} = _ein_as_operand({self.static_expr(node)})", 1)
        if not plan.declare:
            self.emit(f"{dest_local} = _ein_lookup({_NS}, {dest.name!r})", 1)
            if dest.subscripts:
                self.emit(f"{dest_local} = _ein_np.asarray({dest_local})", 1)
                self.emit(f"{_NS}[{dest.name!r}] = {dest_local}", 1)
        if plan.config.bounds_checked:
            for node, count in plan.ranks:
                self.emit(f"_ein_rank({self.operand(node)}, {count}, {format_expr(node)!r})", 1)
        if not plan.declare:
            self.emit(f"_ein_T = _ein_eltype({dest_local})", 1)
        else:
            dtypes = [f"_ein_eltype({self.operand(node)})" for node in plan.operands]
            dtypes.extend("_ein_np.dtype(int)" for _ in plan.index_values)
            self.emit(f"_ein_T = _ein_infer([{', '.join(dtypes)}])", 1)
            if plan.contracted:
                self.emit("_ein_T = _ein_acc_type(_ein_T)", 1)

        ordered: List[DimExpr] = []
        if plan.config.bounds_checked:
            for check in plan.checks:
                ordered.extend([check.left, check.right])
        ordered.extend(dim for _, dim in plan.free + plan.contracted)
        for dim in ordered:
            if dim in self.dims:
                continue
            local = f"_ein_d{len(self.dims)}"
            self.dims[dim] = local
            self.emit(f"{local} = {self.dim(dim)}  # {format_dim(dim)}", 1)

        if plan.config.bounds_checked and plan.checks:
            self.emit("_ein_check([", 1)
            for check in plan.checks:
                self.emit(
                    f"({check.index!r}, {format_dim(check.left)!r}, {self.dims[check.left]}, "
                    f"{format_dim(check.right)!r}, {self.dims[check.right]}),",
                    2,
                )
            self.emit("])", 1)

        if plan.allocation is not Allocation.NONE:
            shape = "".join(f"{self.dims[dim]}, " for _, dim in plan.free).rstrip()
            self.emit(
                f"{dest_local} = _ein_allocate(_ein_Allocation.{plan.allocation.name}, "
                f"_ein_T, ({shape}))",
                1,
            )
            self.emit(f"{_NS}[{dest.name!r}] = {dest_local}", 1)
        self.emit("_ein_zero = _ein_zero_of(_ein_acc_type(_ein_T))", 1)

        loops: List[str] = []
        self.lines = loops
        self.statement(plan.body, 1)
        self.lines = body
        function_lines = [
            f"    {local} = _ein_function({_NS}, {fname!r})"
            for fname, local in self.functions.items()
        ]
        tail = [
            f"    {_NS}[{dest.name!r}] = {dest_local}",
            f"    return {_NS}[{dest.name!r}]",
        ]
        header = [
            f"def {name}({_NS}):",
            f'    """{plan.equation}"""',
        ]
        return "\n".join(header + function_lines + body + loops + tail) + "\n"


def generate_source(plan: Plan, name: str = "einsum_kernel") -> str:
    """Python source of a function ``name(namespace)`` that executes ``plan``."""
    if not name.isidentifier():
        raise ValueError(f"Kernel name must be an identifier, got {name!r}")
    return _KernelWriter(plan).kernel(name)


class SourceKernel:
    """A Plan compiled to Python bytecode through :func:`generate_source`."""

    def __init__(self, plan: Plan, name: str = "einsum_kernel"):
        self.plan = plan
        self.name = name
        self.source = generate_source(plan, name=name)
        filename = f"<einloop:{plan.destination_name}:{id(self):x}>"
        linecache.cache[filename] = (
            len(self.source),
            None,
            self.source.splitlines(True),
            filename,
        )
        scope = _kernel_globals()
        exec(compile(self.source, filename, "exec"), scope)
        self._fn = scope[name]

    def __call__(self, namespace: Optional[MutableMapping[str, Any]] = None, **operands: Any):
        return self.run(namespace, **operands)

    def run(self, namespace: Optional[MutableMapping[str, Any]] = None, **operands: Any):
        scope: MutableMapping[str, Any] = namespace if namespace is not None else {}
        if operands:
            scope.update(operands)
        return self._fn(scope)


def build_kernel(plan: Plan, name: str = "einsum_kernel") -> SourceKernel:
    return SourceKernel(plan, name=name)
