"""Tests for jackknife error estimation."""

import numpy as np
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from mcobservable.analysis.binning import binning_error
from mcobservable.analysis.jackknife import (
    JackknifeErrorEstimator,
    jackknife,
    jackknife_replicates,
)
from mcobservable.errors import InsufficientDataError, InvalidParameterError


class TestJackknife:
    """Tests for jackknife estimates."""

    @pytest.mark.parametrize("binsize", [1, 10, 64])
    def test_identity_equals_binning(self, ar1_series, binsize):
        """Test that the identity jackknife reproduces the binning error."""
        estimate = jackknife(ar1_series, binsize=binsize)
        expected = binning_error(ar1_series, binsize=binsize)
        assert estimate.error == pytest.approx(expected, rel=1e-8)
        assert estimate.value == pytest.approx(np.mean(ar1_series), abs=1e-12)

    def test_replicates_are_leave_one_out_means(self):
        """Test replicate values for a small series."""
        series = np.array([1.0, 2.0, 3.0, 4.0, 5.0, 6.0])
        replicates = jackknife_replicates(series, binsize=2)
        # Bin means 1.5, 3.5, 5.5
        np.testing.assert_allclose(replicates, [4.5, 3.5, 2.5])

    def test_nonlinear_function(self, seed):
        """Test the error of a ratio against first-order error propagation."""
        n = 20000
        a = 2.0 + 0.1 * np.random.randn(n)
        b = 4.0 + 0.1 * np.random.randn(n)
        series = np.stack([a, b], axis=1)

        estimate = jackknife(series, g=lambda m: m[0] / m[1], binsize=10)

        # Independent components: var(a/b) = (sa/b)^2 + (a sb / b^2)^2
        propagated = np.sqrt((0.1 / 4.0) ** 2 + (2.0 * 0.1 / 16.0) ** 2) / np.sqrt(n)
        assert estimate.value == pytest.approx(a.mean() / b.mean())
        assert estimate.error == pytest.approx(propagated, rel=0.15)

    def test_scalar_argument_for_scalar_series(self):
        """Test that g receives a float for scalar observables."""
        received = []

        def g(mean):
            received.append(type(mean))
            return mean ** 2

        jackknife(np.arange(20.0), g=g, binsize=5)
        assert set(received) == {float}

    def test_constant_series_zero_error(self, constant_series):
        """Test that identical replicates give exactly zero error."""
        estimate = jackknife(constant_series, g=lambda m: 3.0 * m)
        assert estimate.error == 0.0
        assert estimate.value == pytest.approx(0.3)

    def test_too_few_bins(self):
        """Test that at least two bins are required."""
        with pytest.raises(InsufficientDataError):
            jackknife(np.arange(15.0), binsize=10)

    def test_invalid_binsize(self):
        """Test that bin sizes below one are rejected."""
        with pytest.raises(InvalidParameterError):
            jackknife(np.arange(100.0), binsize=0)

    def test_non_scalar_function(self, vector_series):
        """Test that g must return a scalar."""
        with pytest.raises(InvalidParameterError):
            jackknife(vector_series, g=lambda m: m * 2.0)

    def test_vector_identity_rejected(self, vector_series):
        """Test that array observables need a reducing function."""
        with pytest.raises(InvalidParameterError):
            jackknife(vector_series)


class TestJackknifeErrorEstimator:
    """Tests for the estimator wrapper."""

    def test_binsize_used(self, iid_series):
        """Test that the configured bin size is applied."""
        estimator = JackknifeErrorEstimator(binsize=32)
        assert len(estimator.replicates(iid_series)) == len(iid_series) // 32
        assert estimator.estimate(iid_series) == jackknife(iid_series, binsize=32)
