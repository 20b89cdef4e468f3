"""
Simulation Task

Owns one run end to end: validates the model, writes the autosave
snapshot, drives the selected integrator from t=0 to the horizon, samples
compartment values into its sample list and the model's result sinks, and
reports progress.

State machine:
    IDLE -> RUNNING -> COMPLETED | CANCELLED | FAILED

Events (progress, sample, completed, cancelled, failed) are posted to
``task.events`` (a queue.Queue) and passed to every registered listener,
in the thread running the simulation. Cancellation is polled once per
step, so a cancelled run never holds a partially updated sample. Only one
task may run at a time in a process.
"""

import math
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from compartsim.simulation.derivatives import DerivativeEvaluator
from compartsim.simulation.integrators import IntegrationMethod
from compartsim.simulation.preferences import SimulationPreferences
from compartsim.utils.exceptions import (
    CompartSimError,
    ConfigurationError,
    EvaluationError,
    ModelIOError,
    SimulationBusyError,
)
from compartsim.utils.logger import get_logger

# Held by the task currently running
_ACTIVE_RUN = threading.Lock()


class RunStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class EventKind(Enum):
    PROGRESS = "progress"
    SAMPLE = "sample"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class SimulationSample:
    """Compartment values at one sampled time."""
    t: float
    values: Tuple[float, ...]


@dataclass(frozen=True)
class SimulationEvent:
    """Message posted by a running task."""
    kind: EventKind
    t: float = 0.0
    progress: float = 0.0
    sample: Optional[SimulationSample] = None
    error: Optional[str] = None


Listener = Callable[['SimulationTask', SimulationEvent], None]


class SimulationTask:
    """
    One simulation run of an EpidemicModel.

    The model is only read: the task integrates a copy of the compartment
    values, so the model is unchanged whatever the run's outcome.

    Example:
        >>> task = SimulationTask(model, horizon=50, method="rk4", dt=0.05)
        >>> task.run()
        <RunStatus.COMPLETED: 'completed'>
        >>> df = task.to_dataframe()
    """

    def __init__(
        self,
        model,
        preferences: Optional[SimulationPreferences] = None,
        horizon: Optional[float] = None,
        method=None,
        dt: Optional[float] = None,
        tolerance: Optional[float] = None,
        initial_dt: Optional[float] = None,
        sample_stride: Optional[int] = None,
        autosave=None,
        results: Optional[Sequence] = None
    ):
        """
        Initialize the task.

        Args:
            model: EpidemicModel to simulate
            preferences: Run preferences (read from configuration by default)
            horizon: Simulated time span (default: the model's horizon)
            method: IntegrationMethod, its name, or a legacy index
            dt: Fixed step of the fixed-step methods
            tolerance: Local error tolerance of the adaptive method
            initial_dt: First trial step of the adaptive method
            sample_stride: Sample every n-th accepted step
            autosave: AutosaveManager to use when autosave is enabled
            results: Result sinks to feed (default: the model's results)
        """
        preferences = preferences or SimulationPreferences.from_config()
        self.preferences = preferences.with_overrides(
            method=IntegrationMethod.parse(method) if method is not None else None,
            dt=dt,
            tolerance=tolerance,
            initial_dt=initial_dt,
            sample_stride=sample_stride,
        )
        self.model = model
        self.horizon = float(model.horizon if horizon is None else horizon)
        if not math.isfinite(self.horizon) or self.horizon <= 0:
            raise ConfigurationError('horizon', f"must be positive, got {self.horizon}")

        self.autosave = autosave
        self.results = list(model.results if results is None else results)

        self.status = RunStatus.IDLE
        self.progress = 0.0
        self.samples: List[SimulationSample] = []
        self.error: Optional[BaseException] = None
        self.steps = 0
        self.rejected_steps = 0

        self.events: queue.Queue = queue.Queue()
        self._listeners: List[Listener] = []
        self._cancel_requested = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.logger = get_logger(__name__)

    @property
    def method(self) -> IntegrationMethod:
        return self.preferences.method

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    def cancel(self) -> None:
        """Request cancellation; honoured before the next step."""
        self._cancel_requested.set()

    @property
    def is_active(self) -> bool:
        return self.status == RunStatus.RUNNING

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def _claim(self) -> None:
        if self.status != RunStatus.IDLE:
            raise SimulationBusyError(f"this task has already run (status {self.status.value})")
        if not _ACTIVE_RUN.acquire(blocking=False):
            raise SimulationBusyError("another simulation is already running")
        self.status = RunStatus.RUNNING

    def run(self) -> RunStatus:
        """
        Run synchronously in the calling thread.

        Returns:
            Terminal status

        Raises:
            SimulationBusyError: If this task already ran or another task is running
        """
        self._claim()
        self._execute()
        return self.status

    def start(self) -> threading.Thread:
        """
        Run on a background thread.

        Returns:
            The started thread

        Raises:
            SimulationBusyError: If this task already ran or another task is running
        """
        self._claim()
        self._thread = threading.Thread(target=self._execute, name="compartsim-run", daemon=True)
        self._thread.start()
        return self._thread

    def wait(self, timeout: Optional[float] = None) -> RunStatus:
        """Block until a background run ends (or the timeout elapses)."""
        if self._thread is not None:
            self._thread.join(timeout)
        return self.status

    def _execute(self) -> None:
        try:
            self._run_loop()
        finally:
            _ACTIVE_RUN.release()

    def _emit(self, event: SimulationEvent) -> None:
        self.events.put(event)
        for listener in list(self._listeners):
            listener(self, event)

    def _sample_stride(self) -> int:
        prefs = self.preferences
        if prefs.sample_stride:
            return prefs.sample_stride
        if self.method.adaptive:
            return 1
        n_steps = math.ceil(self.horizon / prefs.dt)
        return max(1, round(n_steps / prefs.max_sample_points))

    def _record(self, derivatives: DerivativeEvaluator, t: float, state: np.ndarray) -> None:
        # Evaluate everything before committing anything
        result_values = [
            derivatives.evaluate_expressions(t, state, sink.expressions)
            for sink in self.results
        ]
        sample = SimulationSample(t, tuple(float(v) for v in state))
        self.samples.append(sample)
        for sink, values in zip(self.results, result_values):
            sink.append_sample(t, values)
        self._emit(SimulationEvent(EventKind.SAMPLE, t=t, progress=self.progress, sample=sample))

    def _autosave_manager(self):
        if not self.preferences.autosave:
            return None
        if self.autosave is None:
            from compartsim.persistence.document import AutosaveManager
            self.autosave = AutosaveManager(self.preferences.autosave_path)
        return self.autosave

    def _run_loop(self) -> None:
        prefs = self.preferences
        method = self.method
        t = 0.0
        self.logger.info(
            f"Starting {method.value} run of '{self.model.name}' to t={self.horizon:g}"
        )

        try:
            self.model.validate()
            derivatives = DerivativeEvaluator(self.model, seed=prefs.random_seed)

            manager = self._autosave_manager()
            if manager is not None:
                try:
                    manager.write(self.model)
                except ModelIOError as e:
                    self.logger.warning(f"Autosave skipped: {e}")

            for sink in self.results:
                sink.clear()

            settings = prefs.integrator_settings()
            dt = prefs.initial_dt if method.adaptive else prefs.dt
            stride = self._sample_stride()
            eps = 1e-9 * max(1.0, self.horizon)
            last_reported = 0.0

            state = self.model.initial_state()
            self._record(derivatives, t, state)

            while self.horizon - t > eps:
                if self._cancel_requested.is_set():
                    self._finish(RunStatus.CANCELLED, t)
                    return

                step = method.advance(derivatives, state, t, min(dt, self.horizon - t), settings)
                if not np.all(np.isfinite(step.state)):
                    raise EvaluationError("state", "a compartment value is no longer finite", time=step.t)

                state, t = step.state, step.t
                if method.adaptive:
                    dt = step.next_dt
                self.steps += 1
                self.rejected_steps += step.rejected

                done = self.horizon - t <= eps
                if done or self.steps % stride == 0:
                    self._record(derivatives, t, state)

                self.progress = 1.0 if done else min(1.0, t / self.horizon)
                if done or self.progress - last_reported >= prefs.progress_interval:
                    last_reported = self.progress
                    self._emit(SimulationEvent(EventKind.PROGRESS, t=t, progress=self.progress))

            self._finish(RunStatus.COMPLETED, t)
            if manager is not None:
                try:
                    manager.discard()
                except ModelIOError as e:
                    self.logger.warning(f"Could not remove autosave snapshot: {e}")

        except CompartSimError as e:
            self.error = e
            self._finish(RunStatus.FAILED, t, str(e))
        except Exception as e:
            self.error = e
            self._finish(RunStatus.FAILED, t, f"{type(e).__name__}: {e}")
            raise

    def _finish(self, status: RunStatus, t: float, error: Optional[str] = None) -> None:
        self.status = status
        kind = {
            RunStatus.COMPLETED: EventKind.COMPLETED,
            RunStatus.CANCELLED: EventKind.CANCELLED,
            RunStatus.FAILED: EventKind.FAILED,
        }[status]
        if status == RunStatus.FAILED:
            self.logger.error(f"Run failed at t={t:g}: {error}")
        else:
            self.logger.info(
                f"Run {status.value} at t={t:g} after {self.steps} steps "
                f"({self.rejected_steps} rejected), {len(self.samples)} samples"
            )
        self._emit(SimulationEvent(kind, t=t, progress=self.progress, error=error))

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def to_dataframe(self) -> pd.DataFrame:
        """Samples as a DataFrame with a 't' column and one column per compartment."""
        columns = list(self.model.compartment_names)
        df = pd.DataFrame([s.values for s in self.samples], columns=columns)
        df.insert(0, 't', [s.t for s in self.samples])
        return df

    def totals(self) -> np.ndarray:
        """Sum over compartments at every sample."""
        return np.array([sum(s.values) for s in self.samples])
