"""
Pytest Configuration and Fixtures

Shared fixtures and configuration for all tests.
"""

import pytest
import numpy as np
import pandas as pd
import tempfile
import yaml
from pathlib import Path


@pytest.fixture(scope="session")
def sir_params():
    """Ground-truth SIR parameters for a two-million population outbreak."""
    return {
        'Beta': 2.5,
        'gamma': 0.5,
        'N': 2000000.0,
        'S_0': 1999999.0,
        'I_0': 1.0,
    }


@pytest.fixture(scope="session")
def seir_params():
    """Ground-truth SEIR parameters."""
    return {
        'Beta': 1.2,
        'alpha': 0.3,
        'gamma': 0.2,
        'N': 100000.0,
        'S_0': 99990.0,
        'E_0': 0.0,
        'I_0': 10.0,
    }


@pytest.fixture(scope="session")
def sir_observed(sir_params):
    """Noise-free infected series over days 0..20 generated from sir_params."""
    from epifit.epidemic_model.compartmental import integrate
    from epifit.preprocessing.case_series import TimeSeries

    days = np.arange(21, dtype=float)
    trajectory = integrate('SIR', sir_params, 0.0, days)
    return TimeSeries(days, trajectory.compartment('I'))


@pytest.fixture(scope="session")
def seir_observed(seir_params):
    """Noise-free infected series over days 0..40 generated from seir_params."""
    from epifit.epidemic_model.compartmental import integrate
    from epifit.preprocessing.case_series import TimeSeries

    days = np.arange(41, dtype=float)
    trajectory = integrate('SEIR', seir_params, 0.0, days)
    return TimeSeries(days, trajectory.compartment('I'))


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def cases_csv(temp_dir, sir_observed):
    """Write the synthetic SIR series as a Day/COVID19 CSV."""
    path = temp_dir / "cases.csv"
    pd.DataFrame({
        'Day': sir_observed.times.astype(int),
        'COVID19': sir_observed.values,
    }).to_csv(path, index=False)
    return path


@pytest.fixture
def write_config(temp_dir):
    """Factory writing a YAML config into the temp dir and returning its path."""
    def _write(config: dict, name: str = "config.yaml") -> Path:
        path = temp_dir / name
        with open(path, 'w') as f:
            yaml.safe_dump(config, f)
        return path
    return _write


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
