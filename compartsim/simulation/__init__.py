"""Numerical integration of epidemic models."""

from compartsim.simulation.derivatives import DerivativeEvaluator
from compartsim.simulation.integrators import (
    IntegrationMethod,
    IntegratorSettings,
    StepResult,
)
from compartsim.simulation.preferences import SimulationPreferences
from compartsim.simulation.results import ResultFunction, ResultSink
from compartsim.simulation.task import (
    EventKind,
    RunStatus,
    SimulationEvent,
    SimulationSample,
    SimulationTask,
)

__all__ = [
    "DerivativeEvaluator",
    "IntegrationMethod",
    "IntegratorSettings",
    "StepResult",
    "SimulationPreferences",
    "ResultFunction",
    "ResultSink",
    "EventKind",
    "RunStatus",
    "SimulationEvent",
    "SimulationSample",
    "SimulationTask",
]
