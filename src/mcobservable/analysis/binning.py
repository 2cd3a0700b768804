"""Binning analysis: error of the mean for serially correlated data.

Consecutive Markov chain measurements are correlated, so the naive
std / sqrt(N) underestimates the error of the mean. Averaging over
contiguous bins longer than the correlation time yields nearly independent
bin means whose spread gives an honest error estimate.

References:
    J. Gubernatis, N. Kawashima, P. Werner, Quantum Monte Carlo Methods (2016)
    V. Ambegaokar, M. Troyer, Am. J. Phys. 78, 150 (2010)
"""

import logging
import math
import numbers
import warnings
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from mcobservable.analysis.kernels import bin_means, shifted_variance
from mcobservable.config import BinningConfig
from mcobservable.data_types import BinningAnalysis, BinningResult, ErrorEstimate, Statistic
from mcobservable.errors import (
    BinningConvergenceWarning,
    InsufficientDataError,
    InvalidParameterError,
)

logger = logging.getLogger(__name__)


def prepare_series(series: Any) -> Tuple[np.ndarray, np.ndarray, Tuple[int, ...]]:
    """Flatten a time series for the kernels.

    Args:
        series: Array of shape (N, *element_shape)

    Returns:
        Tuple of (data, reference, element_shape): data is a C-contiguous
        float64 (N, M) array shifted by its first row, reference that row
    """
    arr = np.asarray(series)
    if arr.ndim == 0:
        raise InvalidParameterError("A time series needs a leading time axis")
    if arr.dtype.kind not in 'biuf':
        raise InvalidParameterError(f"Cannot analyse {arr.dtype} data")

    n = arr.shape[0]
    element_shape = arr.shape[1:]
    n_comp = int(np.prod(element_shape, dtype=np.int64))
    data = arr.reshape(n, n_comp).astype(np.float64)

    reference = data[0].copy() if n else np.zeros(n_comp)
    data -= reference
    return np.ascontiguousarray(data), reference, element_shape


def _as_statistic(values: np.ndarray, element_shape: Tuple[int, ...]) -> Statistic:
    if element_shape == ():
        return float(values[0])
    return values.reshape(element_shape)


def series_mean(series: Any) -> Statistic:
    """Mean over the time axis, exact for constant series.

    Raises:
        InsufficientDataError: If the series is empty
    """
    data, reference, element_shape = prepare_series(series)
    _require_samples(data.shape[0], minimum=1)
    return _as_statistic(data.mean(axis=0) + reference, element_shape)


def _require_samples(n: int, minimum: int = 2) -> None:
    if n < minimum:
        raise InsufficientDataError(
            f"Needs at least {minimum} measurements, got {n}"
        )


def validate_binsize(binsize: Any, n: int) -> int:
    """Check that `binsize` leaves at least two bins of a length-n series.

    Raises:
        InvalidParameterError: If binsize < 1 or binsize > n / 2
    """
    if isinstance(binsize, bool) or not isinstance(binsize, numbers.Integral) or binsize < 1:
        raise InvalidParameterError(f"binsize must be a positive integer, got {binsize!r}")
    if binsize > n // 2:
        raise InvalidParameterError(
            f"binsize {binsize} leaves fewer than 2 bins for {n} measurements"
        )
    return int(binsize)


def candidate_binsizes(n: int, min_bins: int) -> List[int]:
    """Bin sizes 1, 2, 4, ... leaving at least `min_bins` bins (1 is always included)."""
    binsizes = [1]
    binsize = 2
    while n // binsize >= min_bins:
        binsizes.append(binsize)
        binsize *= 2
    return binsizes


def _errors_at(data: np.ndarray, binsize: int) -> Tuple[np.ndarray, int]:
    """Error of the mean per component at one bin size."""
    means = bin_means(data, binsize)
    n_bins = means.shape[0]
    return np.sqrt(shifted_variance(means) / n_bins), n_bins


def binning_analysis(
    series: Any,
    binsizes: Optional[Sequence[int]] = None,
    config: Optional[BinningConfig] = None,
) -> BinningAnalysis:
    """Evaluate the binning error for a range of bin sizes.

    Args:
        series: Array of shape (N, *element_shape)
        binsizes: Bin sizes to evaluate (default: 1, 2, 4, ... per config.min_bins)
        config: Binning tunables

    Raises:
        InsufficientDataError: If N < 2
        InvalidParameterError: If a bin size leaves fewer than 2 bins
    """
    config = config or BinningConfig()
    data, _, element_shape = prepare_series(series)
    n = data.shape[0]
    _require_samples(n)

    if binsizes is None:
        binsizes = candidate_binsizes(n, config.min_bins)
    else:
        binsizes = [validate_binsize(b, n) for b in binsizes]

    errors = []
    n_bins = []
    for binsize in binsizes:
        err, nb = _errors_at(data, binsize)
        errors.append(err)
        n_bins.append(nb)

    return BinningAnalysis(
        binsizes=np.asarray(binsizes, dtype=np.int64),
        errors=np.asarray(errors).reshape((len(binsizes),) + element_shape),
        n_bins=np.asarray(n_bins, dtype=np.int64),
    )


def select_binsize(analysis: BinningAnalysis, config: Optional[BinningConfig] = None) -> Tuple[int, bool]:
    """Pick the smallest bin size at which the error estimate has plateaued.

    A step from bin size b to 2b is flat when, for every component,
    |e(2b) - e(b)| <= max(rtol * e(b), e(2b) / sqrt(2 (n_bins(2b) - 1))),
    the second term being the statistical uncertainty of e(2b). A plateau is
    `config.plateau_window` consecutive flat steps.

    Returns:
        Tuple of (index into analysis.binsizes, converged). Without a
        plateau the largest evaluated bin size is returned with converged=False.
    """
    config = config or BinningConfig()
    errors = analysis.errors.reshape(
        len(analysis), int(np.prod(analysis.errors.shape[1:], dtype=np.int64))
    )

    # Constant series: zero at every bin size
    if not np.any(errors):
        return 0, True

    flat = []
    for i in range(len(analysis) - 1):
        current, following = errors[i], errors[i + 1]
        uncertainty = following / math.sqrt(2 * (analysis.n_bins[i + 1] - 1))
        tolerance = np.maximum(config.rtol * current, uncertainty)
        flat.append(bool(np.all(np.abs(following - current) <= tolerance)))

    window = config.plateau_window
    for start in range(len(flat) - window + 1):
        if all(flat[start:start + window]):
            return start, True

    return len(analysis) - 1, False


def binning_result(
    series: Any,
    binsize: Optional[int] = None,
    config: Optional[BinningConfig] = None,
) -> BinningResult:
    """Binning error of the mean with the bin size it was taken at.

    Args:
        series: Array of shape (N, *element_shape)
        binsize: Fixed bin size, or None for automatic selection
        config: Binning tunables for automatic selection

    Raises:
        InsufficientDataError: If N < 2
        InvalidParameterError: If binsize < 1 or binsize > N / 2
    """
    if binsize is not None:
        data, _, element_shape = prepare_series(series)
        _require_samples(data.shape[0])
        binsize = validate_binsize(binsize, data.shape[0])
        err, n_bins = _errors_at(data, binsize)
        return BinningResult(
            error=_as_statistic(err, element_shape),
            binsize=binsize,
            n_bins=n_bins,
        )

    analysis = binning_analysis(series, config=config)
    index, converged = select_binsize(analysis, config)
    chosen = int(analysis.binsizes[index])

    if not converged:
        message = (
            f"Binning error did not plateau up to bin size {chosen} "
            f"({int(analysis.n_bins[index])} bins); the estimate may be too small. "
            "Take more measurements or lower min_bins."
        )
        warnings.warn(message, BinningConvergenceWarning, stacklevel=3)
    logger.debug(f"Binning: selected bin size {chosen} (converged={converged})")

    error = analysis.errors[index]
    return BinningResult(
        error=float(error) if error.ndim == 0 else error.copy(),
        binsize=chosen,
        n_bins=int(analysis.n_bins[index]),
        converged=converged,
    )


def binning_error(
    series: Any,
    binsize: Optional[int] = None,
    config: Optional[BinningConfig] = None,
) -> Statistic:
    """One-sigma error of the mean respecting autocorrelation.

    Not the same as np.std(series) / sqrt(N), not even for uncorrelated data
    unless binsize=1 is forced.
    """
    return binning_result(series, binsize, config).error


class BinningErrorEstimator:
    """Binning error estimation with fixed tunables.

    Args:
        config: Plateau detection parameters (default BinningConfig())
    """

    def __init__(self, config: Optional[BinningConfig] = None) -> None:
        self.config = config or BinningConfig()

    def error(self, series: Any, binsize: Optional[int] = None) -> Statistic:
        """Error of the mean; see binning_error."""
        return binning_error(series, binsize, self.config)

    def result(self, series: Any, binsize: Optional[int] = None) -> BinningResult:
        """Error of the mean with bin size details; see binning_result."""
        return binning_result(series, binsize, self.config)

    def analysis(self, series: Any, binsizes: Optional[Sequence[int]] = None) -> BinningAnalysis:
        """Errors over a range of bin sizes; see binning_analysis."""
        return binning_analysis(series, binsizes, self.config)

    def estimate(self, series: Any, binsize: Optional[int] = None) -> ErrorEstimate:
        """Mean of the series and its binning error."""
        return ErrorEstimate(value=series_mean(series), error=self.error(series, binsize))
