"""
Constants and Defaults

Centralized location for the numerical defaults of the integrators and the
simulation task. These can be overridden by config.yaml values.
"""

from functools import lru_cache

import yaml

from compartsim.utils.config_manager import DEFAULT_CONFIG_PATH

# Separator between category names in compartment and shortcut names
NAME_SEPARATOR = "_"

# Character that would let a definition hold more than one statement
STATEMENT_SEPARATOR = ";"


@lru_cache(maxsize=1)
def _load_config() -> dict:
    """Load configuration from config.yaml."""
    if DEFAULT_CONFIG_PATH.exists():
        with open(DEFAULT_CONFIG_PATH, 'r') as f:
            return yaml.safe_load(f) or {}
    return {}


def get_default(section: str, key: str, default):
    """
    Get a default value from config or use the built-in one.

    Args:
        section: Top-level config section (e.g., 'adaptive')
        key: Key inside the section (e.g., 'tolerance')
        default: Value used when the key is absent

    Returns:
        The configured value
    """
    value = _load_config().get(section, {}) or {}
    found = value.get(key)
    return default if found is None else found


# Fixed-step integration
def DEFAULT_METHOD() -> str:
    """Integration method used when no preference is set."""
    return str(get_default('simulation', 'method', 'heun'))


def DEFAULT_DT() -> float:
    """Fixed integration step."""
    return float(get_default('simulation', 'dt', 0.1))


def DEFAULT_AUTOSAVE() -> bool:
    """Whether a snapshot is written before each run."""
    return bool(get_default('simulation', 'autosave', True))


def MAX_SAMPLE_POINTS() -> int:
    """Approximate number of samples kept for a fixed-step run."""
    return int(get_default('simulation', 'max_sample_points', 1000))


def PROGRESS_INTERVAL() -> float:
    """Minimum progress fraction between two progress events."""
    return float(get_default('simulation', 'progress_interval', 0.01))


def AUTOSAVE_PATH() -> str:
    """Location of the pre-run snapshot."""
    return str(get_default('simulation', 'autosave_path', '.compartsim/autosave.yaml'))


# Adaptive Runge-Kutta-Fehlberg
def RKF_TOLERANCE() -> float:
    """Local error tolerance."""
    return float(get_default('adaptive', 'tolerance', 1e-4))


def RKF_INITIAL_DT() -> float:
    """First trial step."""
    return float(get_default('adaptive', 'initial_dt', 0.1))


def RKF_DT_MIN() -> float:
    """Step floor below which a rejected step fails the run."""
    return float(get_default('adaptive', 'dt_min', 1e-3))


def RKF_DT_MAX() -> float:
    """Largest step the controller may take."""
    return float(get_default('adaptive', 'dt_max', 0.5))


def RKF_SAFETY() -> float:
    """Safety factor applied to the optimal step estimate."""
    return float(get_default('adaptive', 'safety', 0.9))


def RKF_MAX_RETRIES() -> int:
    """Maximum rejected attempts for a single step."""
    return int(get_default('adaptive', 'max_retries', 50))


# Euler predictor-corrector
def CORRECTOR_ITERATIONS() -> int:
    """Number of corrector re-evaluations per step."""
    return int(get_default('predictor_corrector', 'corrector_iterations', 2))
