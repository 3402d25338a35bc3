from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .allocator import Allocation, allocation_for
from .ast import (
    ASSIGNMENT_OPERATORS,
    Call,
    Captured,
    Equation,
    Index,
    Node,
    Offset,
    Symbol,
    describe,
    format_equation,
    format_expr,
    is_node,
)
from .config import ExecutionConfig
from .dims import DimCheck, dim_constants, format_dim
from .exceptions import MalformedEquationError
from .loops import (
    ACCUMULATOR,
    Accumulate,
    Block,
    ResetAccumulator,
    Statement,
    Store,
    format_statement,
    nest_loops,
)
from .resolver import IndexDim, Resolution, resolve_indices
from .walker import ArrayRef, IndexExtraction, extract_indices

logger = logging.getLogger(__name__)


@dataclass
class Plan:
    """Resolved, emission-ready form of one equation."""

    equation: Equation
    destination: ArrayRef
    operator: str
    declare: bool
    free: List[IndexDim]
    contracted: List[IndexDim]
    checks: List[DimCheck]
    allocation: Allocation
    operands: List[Node]
    body: Statement
    config: ExecutionConfig
    captured: List[str] = field(default_factory=list)
    index_values: List[str] = field(default_factory=list)
    ranks: List[Tuple[Node, int]] = field(default_factory=list)

    @property
    def destination_name(self) -> str:
        return self.destination.name

    @property
    def loop_indices(self) -> List[str]:
        return [name for name, _ in self.free] + [name for name, _ in self.contracted]

    def index_summary(self) -> Dict[str, Any]:
        return {
            "lhs": [name for name, _ in self.free],
            "contracted": [name for name, _ in self.contracted],
            "checks": len(self.checks),
        }

    def format(self) -> str:
        """Pseudo-code rendering of the whole plan."""
        lines: List[str] = []
        if self.config.bounds_checked:
            for check in self.checks:
                lines.append(f"@assert {check}")
        if self.declare:
            lines.append(f"T = {self._element_type_text()}")
            if self.allocation is Allocation.ARRAY:
                shape = ", ".join(format_dim(dim) for _, dim in self.free)
                lines.append(f"{self.destination_name} = zeros(T, {shape})")
            else:
                lines.append(f"{self.destination_name} = zero(T)")
        else:
            lines.append(f"T = eltype({self.destination_name})")
        lines.extend(format_statement(self.body))
        return "\n".join(lines)

    def explain(self, *, json: bool = False) -> Any:
        summary = self.index_summary()
        payload = {
            "equation": format_equation(self.equation),
            "destination": self.destination_name,
            "operator": self.operator,
            "declare": self.declare,
            "allocation": self.allocation.value,
            "free": [{"index": n, "extent": format_dim(d)} for n, d in self.free],
            "contracted": [{"index": n, "extent": format_dim(d)} for n, d in self.contracted],
            "checks": [str(check) for check in self.checks],
            "operands": [format_expr(op) for op in self.operands],
            "captured": list(self.captured),
            "index_summary": summary,
            "index_table": format_index_summary(summary),
            "bounds_checked": self.config.bounds_checked,
            "vectorized": self.config.vectorize_inner_loop and bool(self.contracted),
        }
        if json:
            return payload

        lines = [f"[eq] {payload['equation']}", f"[idx] {payload['index_table']}"]
        for entry in payload["free"]:
            lines.append(f"[free] {entry['index']} in 1:{entry['extent']}")
        for entry in payload["contracted"]:
            lines.append(f"[sum] {entry['index']} in 1:{entry['extent']}")
        for check in payload["checks"]:
            lines.append(f"[check] {check}")
        if self.allocation is not Allocation.NONE:
            lines.append(f"[alloc] {self.allocation.value} {self.destination_name}")
        lines.append("[plan]")
        lines.extend(f"  {line}" for line in self.format().splitlines())
        return "\n".join(lines)

    def to_source(self, name: str = "einsum_kernel") -> str:
        from .codegen import generate_source  # local import to avoid cycles

        return generate_source(self, name=name)

    def _element_type_text(self) -> str:
        names = [format_expr(op) for op in self.operands] + list(self.index_values)
        return f"promote_type({', '.join(f'eltype({n})' for n in names)})"


def format_index_summary(summary: Mapping[str, Any]) -> str:
    def _format(key: str, label: str) -> str:
        values = summary.get(key, []) or []
        text = ",".join(str(v) for v in values) if values else "-"
        return f"{label}:{text}"

    return " | ".join(
        [
            _format("lhs", "LHS"),
            _format("contracted", "SUM"),
            f"checks:{summary.get('checks', 0)}",
        ]
    )


# Compilation ------------------------------------------------------------------


def _validate_equation(eq: Equation) -> None:
    if eq.op not in ASSIGNMENT_OPERATORS:
        raise MalformedEquationError(
            f"Unsupported assignment operator `{eq.op}`; expected one of "
            + ", ".join(ASSIGNMENT_OPERATORS)
        )
    for side, node in (("left", eq.lhs), ("right", eq.rhs)):
        if not is_node(node):
            raise MalformedEquationError(
                f"Invalid expression on the {side}-hand side: {describe(node)}"
            )


def _destination(eq: Equation, lhs: IndexExtraction) -> ArrayRef:
    if len(lhs.arrays) != 1:
        raise MalformedEquationError(
            "Left-hand side of equation contains multiple arguments. Only a single "
            f"referencing expression (e.g. A[i] = ...) should be used, got `{format_expr(eq.lhs)}`"
        )
    dest = lhs.arrays[0]
    target = eq.lhs
    if isinstance(target, Symbol) or (
        isinstance(target, Index) and isinstance(target.base, Symbol)
    ):
        return dest
    raise MalformedEquationError(
        f"Left-hand side `{format_expr(eq.lhs)}` must be a name or an indexed name"
    )


def _validate_declaration(dest: ArrayRef, rhs: IndexExtraction) -> None:
    seen: List[str] = []
    for sub in dest.subscripts:
        if not isinstance(sub, Symbol):
            raise MalformedEquationError(
                f"New array `{dest.name}` must be indexed by bare index symbols, "
                f"got `{format_expr(sub)}`"
            )
        if sub.name in seen:
            raise MalformedEquationError(
                f"New array `{dest.name}` repeats index `{sub.name}`; declare it first "
                "and update it with `=`"
            )
        if sub.name not in rhs.indices:
            raise MalformedEquationError(
                f"Cannot infer the extent of index `{sub.name}` of new array "
                f"`{dest.name}`: it does not occur on the right-hand side"
            )
        seen.append(sub.name)


def _unique_nodes(nodes: Sequence[Node]) -> List[Node]:
    out: List[Node] = []
    for node in nodes:
        if node not in out:
            out.append(node)
    return out


def _captured_names(node: Node, names: List[str]) -> None:
    if isinstance(node, Captured):
        if node.name not in names:
            names.append(node.name)
    elif isinstance(node, Offset):
        _captured_names(node.index, names)
        _captured_names(node.amount, names)
    elif isinstance(node, Index):
        _captured_names(node.base, names)
        for sub in node.indices:
            _captured_names(sub, names)
    elif isinstance(node, Call):
        for arg in node.args:
            _captured_names(arg, names)


def compile_equation(
    equation: Equation,
    config: Optional[ExecutionConfig] = None,
) -> Plan:
    """Compile ``equation`` into a loop-nest Plan without touching any data."""
    cfg = (config or ExecutionConfig()).normalized()

    # ParseEquation
    _validate_equation(equation)
    lhs = extract_indices(equation.lhs)
    dest = _destination(equation, lhs)
    rhs = extract_indices(equation.rhs)
    declare = equation.declares
    if declare:
        _validate_declaration(dest, rhs)
    logger.debug(
        "parsed %s: lhs indices=%s rhs indices=%s", dest.name, lhs.indices, rhs.indices
    )

    # ResolveIndices
    resolution: Resolution = resolve_indices(lhs, rhs, declare=declare)
    logger.debug(
        "resolved %s: free=%s contracted=%s checks=%d",
        dest.name,
        resolution.free_indices,
        resolution.contracted_indices,
        len(resolution.checks),
    )

    # AllocateOutput
    allocation = allocation_for(declare, resolution.free)
    operator = "=" if declare else equation.op

    # EmitContractionLoop
    if resolution.contracted:
        inner = nest_loops(
            Accumulate(equation.rhs),
            resolution.contracted,
            vectorize=cfg.vectorize_inner_loop,
        )
        assignment: Statement = Block(
            (ResetAccumulator(), inner, Store(equation.lhs, operator, ACCUMULATOR))
        )
    else:
        assignment = Store(equation.lhs, operator, equation.rhs)

    # EmitDestinationLoop
    body = nest_loops(assignment, resolution.free)

    loop_names = set(resolution.free_indices) | set(resolution.contracted_indices)
    bases = _unique_nodes([ref.base for ref in rhs.arrays])
    operands = [
        base for base in bases if not (isinstance(base, Symbol) and base.name in loop_names)
    ]
    index_values = [
        base.name for base in bases if isinstance(base, Symbol) and base.name in loop_names
    ]
    if isinstance(dest.base, Symbol) and dest.base in operands and declare:
        raise MalformedEquationError(
            f"New array `{dest.name}` cannot also be read on the right-hand side"
        )

    # every indexed read, and an updated destination, must use all its axes
    refs = list(rhs.arrays) if declare else [dest] + list(rhs.arrays)
    ranks: List[Tuple[Node, int]] = []
    for ref in refs:
        entry = (ref.base, len(ref.subscripts))
        if ref.subscripts and entry not in ranks:
            ranks.append(entry)

    captured: List[str] = []
    _captured_names(equation.lhs, captured)
    _captured_names(equation.rhs, captured)
    for _, dim in resolution.free + resolution.contracted:
        for name in dim_constants(dim):
            if name not in captured:
                captured.append(name)

    plan = Plan(
        equation=equation,
        destination=dest,
        operator=operator,
        declare=declare,
        free=resolution.free,
        contracted=resolution.contracted,
        checks=resolution.checks,
        allocation=allocation,
        operands=operands,
        body=body,
        config=cfg,
        captured=captured,
        index_values=index_values,
        ranks=ranks,
    )
    logger.debug("compiled plan for %s (%s)", dest.name, allocation.value)
    return plan
