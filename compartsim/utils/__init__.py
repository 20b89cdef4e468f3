"""Utility modules for logging, configuration, and errors."""

from compartsim.utils.exceptions import (
    CompartSimError,
    ValidationError,
    ExpressionSyntaxError,
    UndefinedReferenceError,
    ModelValidationError,
    StructuralError,
    SimulationError,
    EvaluationError,
    NonConvergenceError,
    SimulationBusyError,
    ModelIOError,
    ConfigurationError,
)

__all__ = [
    'CompartSimError',
    'ValidationError',
    'ExpressionSyntaxError',
    'UndefinedReferenceError',
    'ModelValidationError',
    'StructuralError',
    'SimulationError',
    'EvaluationError',
    'NonConvergenceError',
    'SimulationBusyError',
    'ModelIOError',
    'ConfigurationError',
]
