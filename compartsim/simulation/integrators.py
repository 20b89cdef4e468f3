"""
Integrator Family

Explicit one-step methods advancing the compartment state vector. Every
method shares one contract:

    IntegrationMethod.X.advance(f, state, t, dt, settings) -> StepResult

where ``f(t, state)`` returns the derivative vector. Negative compartment
values are never clamped.

Methods:
    euler     y' = y + dt*f(t, y)                              1 evaluation
    heun      Euler predictor, trapezoidal corrector           2 evaluations
    rk4       classical fourth-order Runge-Kutta               4 evaluations
    euler_pc  Euler predictor, iterated trapezoidal corrector  1 + n evaluations
    rkf45     adaptive Runge-Kutta-Fehlberg 4(5)               6 per attempt
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Union

import numpy as np

from compartsim.utils.constants import (
    CORRECTOR_ITERATIONS,
    RKF_DT_MAX,
    RKF_DT_MIN,
    RKF_MAX_RETRIES,
    RKF_SAFETY,
    RKF_TOLERANCE,
)
from compartsim.utils.exceptions import ConfigurationError, NonConvergenceError
from compartsim.utils.logger import get_logger

logger = get_logger(__name__)

Derivative = Callable[[float, np.ndarray], np.ndarray]


@dataclass(frozen=True)
class StepResult:
    """Outcome of one accepted step."""
    state: np.ndarray
    t: float
    dt: float            # step actually taken
    next_dt: float       # suggested size of the next step
    rejected: int = 0    # attempts rejected before acceptance
    error: float = 0.0   # scaled local error estimate (adaptive only)


@dataclass
class IntegratorSettings:
    """Tuning of the predictor-corrector and adaptive methods."""
    tolerance: float = field(default_factory=RKF_TOLERANCE)
    dt_min: float = field(default_factory=RKF_DT_MIN)
    dt_max: float = field(default_factory=RKF_DT_MAX)
    safety: float = field(default_factory=RKF_SAFETY)
    max_retries: int = field(default_factory=RKF_MAX_RETRIES)
    min_factor: float = 0.1
    max_factor: float = 4.0
    corrector_iterations: int = field(default_factory=CORRECTOR_ITERATIONS)

    def __post_init__(self):
        if self.tolerance <= 0:
            raise ConfigurationError('adaptive.tolerance', "must be positive")
        if not 0 < self.dt_min <= self.dt_max:
            raise ConfigurationError('adaptive.dt_min', "must satisfy 0 < dt_min <= dt_max")
        if not 0 < self.safety <= 1:
            raise ConfigurationError('adaptive.safety', "must be in (0, 1]")
        if self.max_retries < 1:
            raise ConfigurationError('adaptive.max_retries', "must be at least 1")
        if self.corrector_iterations < 1:
            raise ConfigurationError('predictor_corrector.corrector_iterations', "must be at least 1")


def _euler(f: Derivative, y: np.ndarray, t: float, dt: float, settings: IntegratorSettings) -> StepResult:
    return StepResult(y + dt * f(t, y), t + dt, dt, dt)


def _heun(f: Derivative, y: np.ndarray, t: float, dt: float, settings: IntegratorSettings) -> StepResult:
    k1 = f(t, y)
    predictor = y + dt * k1
    k2 = f(t + dt, predictor)
    return StepResult(y + dt / 2 * (k1 + k2), t + dt, dt, dt)


def _rk4(f: Derivative, y: np.ndarray, t: float, dt: float, settings: IntegratorSettings) -> StepResult:
    k1 = f(t, y)
    k2 = f(t + dt / 2, y + dt / 2 * k1)
    k3 = f(t + dt / 2, y + dt / 2 * k2)
    k4 = f(t + dt, y + dt * k3)
    return StepResult(y + dt / 6 * (k1 + 2 * k2 + 2 * k3 + k4), t + dt, dt, dt)


def _euler_pc(f: Derivative, y: np.ndarray, t: float, dt: float, settings: IntegratorSettings) -> StepResult:
    k1 = f(t, y)
    corrected = y + dt * k1
    for _ in range(settings.corrector_iterations):
        corrected = y + dt / 2 * (k1 + f(t + dt, corrected))
    return StepResult(corrected, t + dt, dt, dt)


# Fehlberg tableau
_C = np.array([0.0, 1 / 4, 3 / 8, 12 / 13, 1.0, 1 / 2])
_A = [
    [],
    [1 / 4],
    [3 / 32, 9 / 32],
    [1932 / 2197, -7200 / 2197, 7296 / 2197],
    [439 / 216, -8.0, 3680 / 513, -845 / 4104],
    [-8 / 27, 2.0, -3544 / 2565, 1859 / 4104, -11 / 40],
]
_B4 = np.array([25 / 216, 0.0, 1408 / 2565, 2197 / 4104, -1 / 5, 0.0])
_B5 = np.array([16 / 135, 0.0, 6656 / 12825, 28561 / 56430, -9 / 50, 2 / 55])


def _fehlberg_stages(f: Derivative, y: np.ndarray, t: float, h: float) -> np.ndarray:
    k = np.zeros((6, y.size))
    for i in range(6):
        increment = sum((a * k[j] for j, a in enumerate(_A[i])), np.zeros_like(y))
        k[i] = f(t + _C[i] * h, y + h * increment)
    return k


def _rkf45(f: Derivative, y: np.ndarray, t: float, dt: float, settings: IntegratorSettings) -> StepResult:
    """
    One accepted adaptive step.

    The error estimate is the largest difference between the embedded
    fourth- and fifth-order solutions, scaled per compartment by
    max(1, |y|). A rejected attempt is retried at the same t with a smaller
    step; a rejection at or below ``dt_min``, or more than ``max_retries``
    rejections, raises NonConvergenceError. The fifth-order solution is
    propagated.
    """
    h = min(dt, settings.dt_max)
    scale = np.maximum(1.0, np.abs(y))
    error = float('inf')

    for attempt in range(settings.max_retries + 1):
        k = _fehlberg_stages(f, y, t, h)
        y4 = y + h * (_B4 @ k)
        y5 = y + h * (_B5 @ k)
        error = float(np.max(np.abs(y5 - y4) / scale)) if y.size else 0.0

        if error <= settings.tolerance:
            if error == 0.0:
                factor = settings.max_factor
            else:
                factor = settings.safety * (settings.tolerance / error) ** 0.2
            factor = min(max(factor, settings.min_factor), settings.max_factor)
            next_dt = min(max(h * factor, settings.dt_min), settings.dt_max)
            return StepResult(y5, t + h, h, next_dt, rejected=attempt, error=error)

        if h <= settings.dt_min:
            raise NonConvergenceError(t, h, error)

        factor = settings.safety * (settings.tolerance / error) ** 0.2
        factor = min(max(factor, settings.min_factor), 1.0)
        logger.debug(f"RKF45 rejected dt={h:.3e} at t={t:g} (error {error:.3e})")
        h = max(h * factor, settings.dt_min)

    raise NonConvergenceError(t, h, error)


class IntegrationMethod(Enum):
    """Selectable integrators; legacy numeric indices 0-4 map in this order."""
    EULER = "euler"
    HEUN = "heun"
    RK4 = "rk4"
    EULER_PC = "euler_pc"
    RKF45 = "rkf45"

    @classmethod
    def parse(cls, value: Union['IntegrationMethod', str, int]) -> 'IntegrationMethod':
        """
        Resolve a method from a member, its name or value, or a legacy index.

        Raises:
            ConfigurationError: If the value names no method
        """
        if isinstance(value, cls):
            return value
        members = list(cls)
        if isinstance(value, int) and not isinstance(value, bool):
            if 0 <= value < len(members):
                return members[value]
        elif isinstance(value, str):
            text = value.strip().lower()
            if text.isdigit():
                return cls.parse(int(text))
            for member in members:
                if text in (member.value, member.name.lower()):
                    return member
        raise ConfigurationError('simulation.method', f"unknown integration method {value!r}")

    @property
    def adaptive(self) -> bool:
        return self is IntegrationMethod.RKF45

    def advance(
        self,
        f: Derivative,
        state: np.ndarray,
        t: float,
        dt: float,
        settings: Optional[IntegratorSettings] = None
    ) -> StepResult:
        """
        Advance ``state`` from ``t`` by one step of (at most) ``dt``.

        Args:
            f: Derivative function f(t, state)
            state: Current state vector (not modified)
            t: Current time
            dt: Step size; for the adaptive method the first trial step
            settings: Method tuning (defaults from configuration)

        Returns:
            StepResult with the new state and time
        """
        settings = settings or IntegratorSettings()
        return _STEPPERS[self](f, np.asarray(state, dtype=float), t, dt, settings)


_STEPPERS = {
    IntegrationMethod.EULER: _euler,
    IntegrationMethod.HEUN: _heun,
    IntegrationMethod.RK4: _rk4,
    IntegrationMethod.EULER_PC: _euler_pc,
    IntegrationMethod.RKF45: _rkf45,
}
