"""
Custom Exceptions for compartsim

Provides specific exception types for authoring, structural, run-time and
persistence failures.
"""

from typing import Iterable, Optional


class CompartSimError(Exception):
    """Base exception for all compartsim errors."""
    pass


class ValidationError(CompartSimError):
    """A name or definition was rejected at authoring time."""
    def __init__(self, subject: str, reason: str):
        self.subject = subject
        self.reason = reason
        super().__init__(f"Invalid '{subject}': {reason}")


class ExpressionSyntaxError(ValidationError):
    """A definition could not be parsed."""
    def __init__(self, expression: str, reason: str):
        self.expression = expression
        super().__init__(expression, f"syntax error: {reason}")


class UndefinedReferenceError(ValidationError):
    """A definition uses names that are unknown or not resolvable at its position."""
    def __init__(self, expression: str, names: Iterable[str]):
        self.expression = expression
        self.names = sorted(set(names))
        super().__init__(
            expression, f"undefined or disallowed names: {', '.join(self.names)}"
        )


class ModelValidationError(ValidationError):
    """The model as a whole is not ready to be simulated."""
    def __init__(self, issues: list):
        self.issues = issues
        super().__init__("model", '; '.join(issues[:3]))


class StructuralError(CompartSimError):
    """A delete, rename or reorder was blocked by outstanding references."""
    def __init__(self, operation: str, subject: str, blocking: Iterable[str]):
        self.operation = operation
        self.subject = subject
        self.blocking = sorted(set(blocking))
        super().__init__(
            f"Cannot {operation} '{subject}': referenced by {', '.join(self.blocking)}"
        )


class SimulationError(CompartSimError):
    """Base class for failures that end a simulation run."""
    pass


class EvaluationError(SimulationError):
    """A definition failed to evaluate during a run."""
    def __init__(self, entity: str, reason: str, time: Optional[float] = None):
        self.entity = entity
        self.reason = reason
        self.time = time
        where = f" at t={time:g}" if time is not None else ""
        super().__init__(f"Evaluation of '{entity}' failed{where}: {reason}")


class NonConvergenceError(SimulationError):
    """The adaptive integrator could not meet its tolerance above the step floor."""
    def __init__(self, time: float, dt: float, error: float):
        self.time = time
        self.dt = dt
        self.error = error
        super().__init__(
            f"Step rejected at t={time:g} with dt={dt:g} (error estimate {error:.3e})"
        )


class SimulationBusyError(SimulationError):
    """Another simulation task is already active, or this one already ran."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ModelIOError(CompartSimError):
    """Error reading or writing a model document or snapshot."""
    def __init__(self, filepath: str, reason: str):
        self.filepath = filepath
        self.reason = reason
        super().__init__(f"Failed to access {filepath}: {reason}")


class ConfigurationError(CompartSimError):
    """Error in configuration."""
    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Configuration error for '{key}': {reason}")
