from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _load_version

from .core.ast import Call, Captured, Equation, Index, Literal, Offset, Symbol
from .core.codegen import SourceKernel, build_kernel, generate_source
from .core.config import ExecutionConfig
from .core.evaluator_numpy import NumpyRunner
from .core.exceptions import (
    BackendError,
    BoundsError,
    DimensionMismatchError,
    EinloopError,
    InvalidIndexExpressionError,
    MalformedEquationError,
    ParseError,
    TypeInferenceError,
    UnboundNameError,
)
from .core.parser import parse_equation
from .core.plan import Plan, compile_equation
from .core.program import Einsum, compile_plan, einsimd, einsum, einsum_unchecked

try:
    __version__ = _load_version("einloop")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "Einsum",
    "einsum",
    "einsimd",
    "einsum_unchecked",
    "compile_plan",
    "compile_equation",
    "parse_equation",
    "generate_source",
    "build_kernel",
    "SourceKernel",
    "Plan",
    "NumpyRunner",
    "ExecutionConfig",
    "Equation",
    "Symbol",
    "Literal",
    "Captured",
    "Offset",
    "Index",
    "Call",
    "EinloopError",
    "ParseError",
    "MalformedEquationError",
    "InvalidIndexExpressionError",
    "TypeInferenceError",
    "DimensionMismatchError",
    "BoundsError",
    "UnboundNameError",
    "BackendError",
    "__version__",
]
