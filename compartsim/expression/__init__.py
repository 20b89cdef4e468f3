"""Expression evaluation for compartment, parameter and process definitions."""

from compartsim.expression.evaluator import (
    BUILTIN_FUNCTIONS,
    BUILTIN_NAMES,
    CompiledExpression,
    ExpressionEvaluator,
    iter_names,
)

__all__ = [
    "BUILTIN_FUNCTIONS",
    "BUILTIN_NAMES",
    "CompiledExpression",
    "ExpressionEvaluator",
    "iter_names",
]
