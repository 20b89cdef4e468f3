"""
Pytest Configuration and Fixtures

Shared fixtures and configuration for all tests.
"""

import tempfile
from pathlib import Path

import numpy as np
import pytest

from compartsim.model.entities import Population
from compartsim.model.epidemic import EpidemicModel
from compartsim.simulation.preferences import SimulationPreferences


@pytest.fixture(scope="session")
def random_seed():
    """Global random seed for reproducibility."""
    return 42


@pytest.fixture(autouse=True)
def set_random_seed(random_seed):
    """Set random seed before each test."""
    np.random.seed(random_seed)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def preferences():
    """Run preferences that never touch the working directory."""
    return SimulationPreferences(autosave=False, random_seed=42)


@pytest.fixture
def health_model():
    """Population 1000 split into Healthy and Sick, 1% of Healthy falling sick per time unit."""
    model = EpidemicModel("health", horizon=10.0)
    model.set_population(Population.from_categories("People", 1000, [("Health", ["Healthy", "Sick"])]))
    model.set_compartment_values({"Healthy": 1000, "Sick": 0})
    model.set_compartment_definition("Healthy", "-0.01*Healthy")
    model.set_compartment_definition("Sick", "0.01*Healthy")
    return model


def build_decay_model(k: float = 1.0, y0: int = 1000, horizon: float = 1.0) -> EpidemicModel:
    """Single decaying compartment C (dC/dt = -k*C) plus an inert compartment Z."""
    model = EpidemicModel("decay", horizon=horizon)
    model.set_population(Population.from_categories("Pop", y0, [("Decay", ["C", "Z"])]))
    model.set_compartment_values({"C": y0, "Z": 0})
    model.add_parameter("k", repr(float(k)))
    model.set_compartment_definition("C", "-k*C")
    return model


@pytest.fixture
def decay_model():
    """Factory for decay models: decay_model(k=..., y0=..., horizon=...)."""
    return build_decay_model


@pytest.fixture
def stratified_model():
    """Two divisions (Age x Sex) with shortcuts."""
    model = EpidemicModel("stratified", horizon=5.0)
    model.set_population(Population.from_categories(
        "People", 400, [("Age", ["child", "adult"]), ("Sex", ["m", "f"])]
    ))
    return model


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers."""
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.integration)
