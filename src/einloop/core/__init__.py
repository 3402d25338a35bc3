"""Core compiler and runtime modules for einloop."""

__all__ = [
    "allocator",
    "ast",
    "codegen",
    "config",
    "dims",
    "evaluator_numpy",
    "exceptions",
    "loops",
    "offsets",
    "parser",
    "plan",
    "program",
    "resolver",
    "runtime",
    "stats",
    "walker",
]
