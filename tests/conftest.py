"""Pytest fixtures for observable tests."""

import shutil
import tempfile

import numpy as np
import pytest

# Add src directory to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


# AR(1) coefficient: integrated autocorrelation time (1 + phi) / (2 (1 - phi)) = 9.5
AR1_PHI = 0.9


@pytest.fixture
def seed():
    """Set random seed for reproducibility."""
    np.random.seed(42)
    return 42


@pytest.fixture
def temp_dir():
    """Create a temporary directory for HDF5 files."""
    temp = tempfile.mkdtemp()
    yield temp
    shutil.rmtree(temp, ignore_errors=True)


@pytest.fixture
def h5_path(temp_dir):
    """Path of a not yet existing HDF5 file."""
    return str(Path(temp_dir) / "Observables.h5")


@pytest.fixture
def iid_series(seed):
    """Uncorrelated standard normal measurements."""
    return np.random.randn(2 ** 14)


@pytest.fixture
def ar1_series(seed):
    """Correlated measurements x_t = phi x_{t-1} + sqrt(1 - phi^2) eps_t, unit variance."""
    n = 2 ** 14
    noise = np.random.randn(n) * np.sqrt(1.0 - AR1_PHI ** 2)
    series = np.zeros(n)
    series[0] = np.random.randn()
    for t in range(1, n):
        series[t] = AR1_PHI * series[t - 1] + noise[t]
    return series


@pytest.fixture
def ar1_exact_error():
    """Asymptotic error of the mean of the AR(1) fixture."""
    return np.sqrt((1.0 + AR1_PHI) / (1.0 - AR1_PHI) / 2 ** 14)


@pytest.fixture
def constant_series():
    """Constant measurements of a value without an exact binary representation."""
    return np.full(1000, 0.1)


@pytest.fixture
def vector_series(seed):
    """Array measurements of shape (3,) with different scales per component."""
    return np.random.randn(4096, 3) * np.array([1.0, 2.0, 0.5]) + np.array([0.0, 1.0, -3.0])
