"""Numba JIT-compiled kernels for binning and jackknife analysis.

All kernels take a C-contiguous float64 array of shape (N, M): axis 0 is
Monte Carlo time, axis 1 the flattened measurement components.
"""

import numpy as np
from numba import njit


@njit(cache=True)
def bin_means(data: np.ndarray, binsize: int) -> np.ndarray:
    """Means of floor(N / binsize) contiguous bins; the remainder is dropped.

    Returns:
        Array of shape (n_bins, M)
    """
    n_bins = data.shape[0] // binsize
    n_comp = data.shape[1]
    out = np.zeros((n_bins, n_comp))
    for i in range(n_bins):
        start = i * binsize
        for j in range(binsize):
            for c in range(n_comp):
                out[i, c] += data[start + j, c]
        for c in range(n_comp):
            out[i, c] /= binsize
    return out


@njit(cache=True)
def shifted_variance(values: np.ndarray) -> np.ndarray:
    """Sample variance (ddof=1) per column, shifted by the first row.

    Identical rows give exactly 0. Needs at least two rows.
    """
    n = values.shape[0]
    n_comp = values.shape[1]
    out = np.zeros(n_comp)
    for c in range(n_comp):
        ref = values[0, c]
        total = 0.0
        total_sq = 0.0
        for i in range(n):
            d = values[i, c] - ref
            total += d
            total_sq += d * d
        var = (total_sq - total * total / n) / (n - 1)
        out[c] = var if var > 0.0 else 0.0
    return out


@njit(cache=True)
def leave_one_out_means(means: np.ndarray) -> np.ndarray:
    """Mean over all bins except bin i, for every i.

    Args:
        means: Bin means of shape (k, M), k >= 2

    Returns:
        Array of shape (k, M)
    """
    k = means.shape[0]
    n_comp = means.shape[1]
    totals = np.zeros(n_comp)
    for i in range(k):
        for c in range(n_comp):
            totals[c] += means[i, c]
    out = np.empty((k, n_comp))
    for i in range(k):
        for c in range(n_comp):
            out[i, c] = (totals[c] - means[i, c]) / (k - 1)
    return out
