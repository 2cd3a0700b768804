"""Jackknife error of a derived statistic g(mean).

Binning gives the error of the mean itself. For a function of the mean
(a ratio, a susceptibility, a Binder cumulant...) the jackknife evaluates g
on k leave-one-bin-out means and measures their spread:

    error = sqrt((k - 1) / k * sum_i (g_i - mean(g))^2)

`g` must be deterministic and free of side effects; it is called k times.
"""

import logging
import numbers
from typing import Any, Callable, Optional

import numpy as np

from mcobservable.analysis.binning import prepare_series
from mcobservable.analysis.kernels import bin_means, leave_one_out_means
from mcobservable.constants import DEFAULT_JACKKNIFE_BINSIZE
from mcobservable.data_types import ErrorEstimate
from mcobservable.errors import InsufficientDataError, InvalidParameterError

logger = logging.getLogger(__name__)


def _identity(x: Any) -> Any:
    return x


def _scalar(value: Any) -> float:
    result = np.asarray(value)
    if result.ndim != 0:
        raise InvalidParameterError(
            f"Jackknife function must return a scalar, got shape {result.shape}"
        )
    return float(result)


def jackknife_replicates(
    series: Any,
    g: Optional[Callable[[Any], Any]] = None,
    binsize: int = DEFAULT_JACKKNIFE_BINSIZE,
) -> np.ndarray:
    """Evaluate g on every leave-one-bin-out mean.

    Args:
        series: Array of shape (N, *element_shape)
        g: Scalar-valued function of a mean (default identity, scalar series only)
        binsize: Measurements per bin

    Returns:
        Array of k = N // binsize replicate values

    Raises:
        InvalidParameterError: If binsize < 1 or g returns a non-scalar
        InsufficientDataError: If fewer than 2 bins can be formed
    """
    g = g or _identity
    return _replicates(*prepare_series(series), g, binsize)


def _replicates(
    data: np.ndarray,
    reference: np.ndarray,
    element_shape: tuple,
    g: Callable[[Any], Any],
    binsize: int,
) -> np.ndarray:
    if isinstance(binsize, bool) or not isinstance(binsize, numbers.Integral) or binsize < 1:
        raise InvalidParameterError(f"binsize must be a positive integer, got {binsize!r}")

    k = data.shape[0] // binsize
    if k < 2:
        raise InsufficientDataError(
            f"Jackknife needs at least 2 bins; {data.shape[0]} measurements "
            f"with binsize {binsize} give {k}"
        )

    loo = leave_one_out_means(bin_means(data, int(binsize))) + reference
    replicates = np.empty(k)
    for i in range(k):
        mean_i = loo[i].reshape(element_shape)
        replicates[i] = _scalar(g(mean_i.item() if element_shape == () else mean_i))
    return replicates


def jackknife(
    series: Any,
    g: Optional[Callable[[Any], Any]] = None,
    binsize: int = DEFAULT_JACKKNIFE_BINSIZE,
) -> ErrorEstimate:
    """Estimate g(mean(series)) and its one-sigma error.

    With g = identity the error equals the binning error at the same bin size.

    Args:
        series: Array of shape (N, *element_shape)
        g: Scalar-valued function of a mean (default identity)
        binsize: Measurements per bin

    Returns:
        ErrorEstimate(value=g(mean), error=jackknife error)
    """
    g = g or _identity
    data, reference, element_shape = prepare_series(series)
    replicates = _replicates(data, reference, element_shape, g, binsize)
    k = len(replicates)

    # Shift by the first replicate: identical replicates give exactly 0
    deviations = replicates - replicates[0]
    spread = np.sum((deviations - deviations.mean()) ** 2)
    error = float(np.sqrt((k - 1) / k * spread))

    full_mean = data.mean(axis=0) + reference
    value = _scalar(g(full_mean.item() if element_shape == () else full_mean.reshape(element_shape)))

    logger.debug(f"Jackknife over {k} bins of {binsize}: {value} ± {error}")
    return ErrorEstimate(value=value, error=error)


class JackknifeErrorEstimator:
    """Jackknife estimation with a fixed bin size.

    Args:
        binsize: Measurements per bin (default 10)
    """

    def __init__(self, binsize: int = DEFAULT_JACKKNIFE_BINSIZE) -> None:
        self.binsize = binsize

    def estimate(self, series: Any, g: Optional[Callable[[Any], Any]] = None) -> ErrorEstimate:
        """Estimate g(mean) and its error; see jackknife."""
        return jackknife(series, g, self.binsize)

    def replicates(self, series: Any, g: Optional[Callable[[Any], Any]] = None) -> np.ndarray:
        """Leave-one-bin-out replicates of g; see jackknife_replicates."""
        return jackknife_replicates(series, g, self.binsize)
