from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from .core.config import ExecutionConfig
from .core.exceptions import EinloopError
from .core.program import Einsum


def _load_input(path: Path) -> Any:
    try:
        if path.suffix.lower() == ".json":
            return np.asarray(json.loads(path.read_text(encoding="utf-8")))
        return np.load(path)
    except FileNotFoundError as exc:
        raise SystemExit(f"Input file not found: {path}") from exc


def _split_assignment(text: str, flag: str) -> List[str]:
    name, sep, value = text.partition("=")
    if not sep or not name.strip():
        raise SystemExit(f"{flag} expects NAME=VALUE, got {text!r}")
    return [name.strip(), value.strip()]


def _parse_constant(text: str) -> Any:
    try:
        return int(text)
    except ValueError:
        return float(text)


def _namespace(inputs: List[str], constants: List[str]) -> Dict[str, Any]:
    namespace: Dict[str, Any] = {}
    for item in inputs:
        name, value = _split_assignment(item, "--input")
        namespace[name] = _load_input(Path(value))
    for item in constants:
        name, value = _split_assignment(item, "--const")
        try:
            namespace[name] = _parse_constant(value)
        except ValueError as exc:
            raise SystemExit(f"--const {name} is not a number: {value!r}") from exc
    return namespace


def _write_output(path: Path, tensor: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if str(path).lower().endswith(".npz"):
        np.savez(path, np.asarray(tensor))
    elif str(path).lower().endswith(".json"):
        path.write_text(json.dumps(np.asarray(tensor).tolist(), indent=2), encoding="utf-8")
    else:
        np.save(path, np.asarray(tensor))


def _config(args: argparse.Namespace) -> ExecutionConfig:
    return ExecutionConfig(
        bounds_checked=not args.no_bounds_check,
        vectorize_inner_loop=args.vectorize,
    )


def _explain(args: argparse.Namespace) -> None:
    program = Einsum(args.equation, config=_config(args))
    if args.json:
        print(json.dumps(program.explain(json=True), indent=2))
    else:
        print(program.explain())


def _codegen(args: argparse.Namespace) -> None:
    program = Einsum(args.equation, config=_config(args))
    print(program.to_source(name=args.name), end="")


def _run(args: argparse.Namespace) -> None:
    program = Einsum(args.equation, config=_config(args))
    runner = program.compile(backend=args.backend)
    namespace = _namespace(args.input, args.const)
    result = runner(namespace)
    if args.out is None:
        np.set_printoptions(suppress=True)
        print(f"# {program.plan.destination_name}")
        print(np.asarray(result))
        return
    _write_output(args.out, result)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="einloop command line utilities")
    subparsers = parser.add_subparsers(dest="cmd")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("equation", help="Equation text, e.g. 'C[i,j] := A[i,k] * B[k,j]'")
    common.add_argument(
        "--vectorize",
        action="store_true",
        help="Vectorize the innermost contraction loop",
    )
    common.add_argument(
        "--no-bounds-check",
        action="store_true",
        help="Skip dimension checks and element bounds assertions",
    )

    explain_parser = subparsers.add_parser(
        "explain", parents=[common], help="Show the loop plan for an equation"
    )
    explain_parser.add_argument("--json", action="store_true", help="Emit JSON")

    codegen_parser = subparsers.add_parser(
        "codegen", parents=[common], help="Print the generated Python kernel"
    )
    codegen_parser.add_argument(
        "--name", default="einsum_kernel", help="Name of the generated function"
    )

    run_parser = subparsers.add_parser("run", parents=[common], help="Evaluate an equation")
    run_parser.add_argument(
        "--input",
        action="append",
        default=[],
        metavar="NAME=PATH",
        help="Bind an operand loaded from .npy or .json (repeatable)",
    )
    run_parser.add_argument(
        "--const",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Bind a numeric constant, e.g. for $name offsets (repeatable)",
    )
    run_parser.add_argument(
        "--backend",
        default="numpy",
        choices=["numpy", "python"],
        help="Execution backend to use (default: numpy)",
    )
    run_parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Optional output path (.npy/.npz/.json). If omitted, prints the result",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    handlers = {"explain": _explain, "codegen": _codegen, "run": _run}
    handler = handlers.get(args.cmd)
    if handler is None:
        parser.print_help()
        return
    try:
        handler(args)
    except EinloopError as exc:
        raise SystemExit(f"error: {exc}") from exc


if __name__ == "__main__":  # pragma: no cover
    main(sys.argv[1:])
