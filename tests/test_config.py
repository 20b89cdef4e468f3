"""
Tests for configuration loading, simulation preferences and logging setup.
"""

import logging

import pytest
import yaml

from compartsim.simulation.integrators import IntegrationMethod
from compartsim.simulation.preferences import SimulationPreferences
from compartsim.utils import constants
from compartsim.utils.config_manager import DEFAULT_CONFIG_PATH, ConfigManager
from compartsim.utils.exceptions import ConfigurationError
from compartsim.utils.logger import LoggerContext, configure_from_config, get_logger, setup_logger


@pytest.fixture
def config(temp_dir):
    """A ConfigManager loaded from a temporary file; cleared afterwards."""
    path = temp_dir / "config.yaml"
    path.write_text(yaml.safe_dump({
        'simulation': {'method': 'rk4', 'dt': 0.05, 'autosave': False, 'sample_stride': 3},
        'adaptive': {'tolerance': 1e-6, 'dt_max': 2.0},
    }))
    manager = ConfigManager()
    manager.load(str(path))
    yield manager
    manager.clear()


class TestConfigManager:
    """Tests for the singleton configuration store."""

    def test_singleton(self):
        assert ConfigManager() is ConfigManager()

    def test_dot_notation(self, config):
        assert config.get('simulation.method') == 'rk4'
        assert config.get('adaptive.tolerance') == pytest.approx(1e-6)
        assert config.get('adaptive.missing', 7) == 7
        assert config.get('simulation.method.deeper', 'x') == 'x'

    def test_set_creates_sections(self, config):
        config.set('logging.level', 'DEBUG')
        assert config.get('logging.level') == 'DEBUG'
        assert config.get_all()['logging'] == {'level': 'DEBUG'}

    def test_missing_file(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            ConfigManager().load(str(temp_dir / "absent.yaml"))

    def test_top_level_must_be_mapping(self, temp_dir):
        path = temp_dir / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            ConfigManager().load(str(path))

    def test_shipped_config_loads(self):
        manager = ConfigManager()
        try:
            loaded = manager.load(str(DEFAULT_CONFIG_PATH))
            assert set(loaded) >= {'simulation', 'adaptive', 'predictor_corrector', 'logging'}
        finally:
            manager.clear()


class TestPreferences:
    """Tests for SimulationPreferences."""

    def test_from_config(self, config):
        prefs = SimulationPreferences.from_config(config)
        assert prefs.method is IntegrationMethod.RK4
        assert prefs.dt == pytest.approx(0.05)
        assert prefs.autosave is False
        assert prefs.sample_stride == 3
        assert prefs.tolerance == pytest.approx(1e-6)
        assert prefs.dt_max == pytest.approx(2.0)

    def test_missing_keys_use_defaults(self, config):
        prefs = SimulationPreferences.from_config(config)
        assert prefs.dt_min == constants.RKF_DT_MIN()
        assert prefs.corrector_iterations == constants.CORRECTOR_ITERATIONS()

    def test_legacy_method_index(self):
        assert SimulationPreferences(method=4).method is IntegrationMethod.RKF45

    @pytest.mark.parametrize("changes", [
        {'dt': 0},
        {'initial_dt': -1.0},
        {'max_sample_points': 0},
        {'sample_stride': 0},
        {'progress_interval': 2.0},
        {'method': 'leapfrog'},
    ])
    def test_invalid_preferences(self, changes):
        with pytest.raises(ConfigurationError):
            SimulationPreferences(**changes)

    def test_overrides_ignore_none(self):
        prefs = SimulationPreferences(dt=0.2)
        changed = prefs.with_overrides(dt=None, method="euler")
        assert changed.dt == pytest.approx(0.2)
        assert changed.method is IntegrationMethod.EULER
        assert prefs.dt == pytest.approx(0.2)

    def test_integrator_settings(self):
        settings = SimulationPreferences(tolerance=1e-5, dt_min=0.01, dt_max=1.0).integrator_settings()
        assert settings.tolerance == pytest.approx(1e-5)
        assert settings.dt_min == pytest.approx(0.01)
        assert settings.dt_max == pytest.approx(1.0)


class TestConstants:
    """Tests for the configured defaults."""

    def test_shipped_defaults(self):
        assert constants.DEFAULT_METHOD() == 'heun'
        assert constants.DEFAULT_DT() == pytest.approx(0.1)
        assert constants.RKF_TOLERANCE() == pytest.approx(1e-4)
        assert constants.RKF_DT_MIN() <= constants.RKF_DT_MAX()

    def test_get_default_falls_back(self):
        assert constants.get_default('simulation', 'no_such_key', 42) == 42
        assert constants.get_default('no_such_section', 'dt', 'x') == 'x'


class TestLogging:
    """Tests for logger configuration."""

    def test_configure_from_config(self, config, temp_dir):
        log_file = temp_dir / "logs" / "run.log"
        config.set('logging.level', 'WARNING')
        config.set('logging.file', str(log_file))
        try:
            logger = configure_from_config(config)
            assert logger.name == "compartsim"
            get_logger("compartsim.simulation.task").debug("file only")
            for handler in logger.handlers:
                handler.flush()
            assert "file only" in log_file.read_text()
        finally:
            setup_logger()

    def test_level_override(self, config):
        try:
            logger = configure_from_config(config, level="ERROR")
            assert logger.handlers[0].level == logging.ERROR
        finally:
            setup_logger()

    def test_logger_context_restores_level(self):
        logger = get_logger("compartsim")
        before = logger.level
        with LoggerContext(logger, "ERROR"):
            assert logger.level == logging.ERROR
        assert logger.level == before

    def test_package_loggers_propagate(self):
        child = get_logger("compartsim.model.epidemic")
        assert child.handlers == []
        assert child.propagate
