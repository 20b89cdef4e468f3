"""
Simulation preferences.

Key-value settings read when a simulation task is constructed: integration
method, step size, sampling and autosave behaviour, and the tuning of the
adaptive and predictor-corrector methods.
"""

from dataclasses import dataclass, field, replace
from typing import Optional

from compartsim.simulation.integrators import IntegrationMethod, IntegratorSettings
from compartsim.utils.config_manager import ConfigManager
from compartsim.utils.constants import (
    AUTOSAVE_PATH,
    CORRECTOR_ITERATIONS,
    DEFAULT_AUTOSAVE,
    DEFAULT_DT,
    DEFAULT_METHOD,
    MAX_SAMPLE_POINTS,
    PROGRESS_INTERVAL,
    RKF_DT_MAX,
    RKF_DT_MIN,
    RKF_INITIAL_DT,
    RKF_MAX_RETRIES,
    RKF_SAFETY,
    RKF_TOLERANCE,
)
from compartsim.utils.exceptions import ConfigurationError


@dataclass
class SimulationPreferences:
    """Preferences of one simulation run."""
    method: IntegrationMethod = field(default_factory=lambda: IntegrationMethod.parse(DEFAULT_METHOD()))
    dt: float = field(default_factory=DEFAULT_DT)
    autosave: bool = field(default_factory=DEFAULT_AUTOSAVE)
    autosave_path: str = field(default_factory=AUTOSAVE_PATH)
    max_sample_points: int = field(default_factory=MAX_SAMPLE_POINTS)
    sample_stride: Optional[int] = None
    progress_interval: float = field(default_factory=PROGRESS_INTERVAL)
    random_seed: Optional[int] = None

    # Adaptive RKF4(5)
    tolerance: float = field(default_factory=RKF_TOLERANCE)
    initial_dt: float = field(default_factory=RKF_INITIAL_DT)
    dt_min: float = field(default_factory=RKF_DT_MIN)
    dt_max: float = field(default_factory=RKF_DT_MAX)
    safety: float = field(default_factory=RKF_SAFETY)
    max_retries: int = field(default_factory=RKF_MAX_RETRIES)

    # Euler predictor-corrector
    corrector_iterations: int = field(default_factory=CORRECTOR_ITERATIONS)

    def __post_init__(self):
        """Validate preferences."""
        self.method = IntegrationMethod.parse(self.method)
        if self.dt <= 0:
            raise ConfigurationError('simulation.dt', f"must be positive, got {self.dt}")
        if self.initial_dt <= 0:
            raise ConfigurationError('adaptive.initial_dt', f"must be positive, got {self.initial_dt}")
        if self.max_sample_points < 1:
            raise ConfigurationError('simulation.max_sample_points', "must be at least 1")
        if self.sample_stride is not None and self.sample_stride < 1:
            raise ConfigurationError('simulation.sample_stride', "must be at least 1")
        if not 0 <= self.progress_interval <= 1:
            raise ConfigurationError('simulation.progress_interval', "must be in [0, 1]")

    @classmethod
    def from_config(cls, config: Optional[ConfigManager] = None) -> 'SimulationPreferences':
        """
        Read preferences from a ConfigManager.

        Keys missing from the loaded configuration fall back to the
        defaults of ``compartsim.utils.constants``.
        """
        config = config or ConfigManager()
        sample_stride = config.get('simulation.sample_stride')
        random_seed = config.get('simulation.random_seed')
        return cls(
            method=IntegrationMethod.parse(config.get('simulation.method', DEFAULT_METHOD())),
            dt=float(config.get('simulation.dt', DEFAULT_DT())),
            autosave=bool(config.get('simulation.autosave', DEFAULT_AUTOSAVE())),
            autosave_path=str(config.get('simulation.autosave_path', AUTOSAVE_PATH())),
            max_sample_points=int(config.get('simulation.max_sample_points', MAX_SAMPLE_POINTS())),
            sample_stride=int(sample_stride) if sample_stride is not None else None,
            progress_interval=float(config.get('simulation.progress_interval', PROGRESS_INTERVAL())),
            random_seed=int(random_seed) if random_seed is not None else None,
            tolerance=float(config.get('adaptive.tolerance', RKF_TOLERANCE())),
            initial_dt=float(config.get('adaptive.initial_dt', RKF_INITIAL_DT())),
            dt_min=float(config.get('adaptive.dt_min', RKF_DT_MIN())),
            dt_max=float(config.get('adaptive.dt_max', RKF_DT_MAX())),
            safety=float(config.get('adaptive.safety', RKF_SAFETY())),
            max_retries=int(config.get('adaptive.max_retries', RKF_MAX_RETRIES())),
            corrector_iterations=int(
                config.get('predictor_corrector.corrector_iterations', CORRECTOR_ITERATIONS())
            ),
        )

    def with_overrides(self, **changes) -> 'SimulationPreferences':
        """Copy with some fields replaced; None values are ignored."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def integrator_settings(self) -> IntegratorSettings:
        return IntegratorSettings(
            tolerance=self.tolerance,
            dt_min=self.dt_min,
            dt_max=self.dt_max,
            safety=self.safety,
            max_retries=self.max_retries,
            corrector_iterations=self.corrector_iterations,
        )
