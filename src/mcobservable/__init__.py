"""Monte Carlo observables with correlation-aware error estimates.

Record measurements along a Markov chain, keep them in memory or flush them
to HDF5 in chunks, and estimate the mean with binning or jackknife errors.
"""

from mcobservable.analysis import BinningErrorEstimator, JackknifeErrorEstimator
from mcobservable.config import BinningConfig, ObservableOptions
from mcobservable.data_types import BinningResult, ErrorEstimate
from mcobservable.errors import (
    BinningConvergenceWarning,
    IndexOutOfRangeError,
    InsufficientDataError,
    InvalidParameterError,
    InvalidShapeError,
    ObservableError,
    ShapeMismatchError,
    StorageCorruptError,
    StorageWriteFailedError,
)
from mcobservable.io import (
    export_result,
    load_result,
    loadobs,
    loadobs_frommemory,
    saveobs,
    timeseries_frommemory,
    timeseries_frommemory_flat,
)
from mcobservable.observable import Observable

__version__ = "0.1.0"

__all__ = [
    'Observable',
    'ObservableOptions',
    'BinningConfig',
    'BinningErrorEstimator',
    'JackknifeErrorEstimator',
    'BinningResult',
    'ErrorEstimate',
    'saveobs',
    'loadobs',
    'export_result',
    'load_result',
    'loadobs_frommemory',
    'timeseries_frommemory',
    'timeseries_frommemory_flat',
    'ObservableError',
    'ShapeMismatchError',
    'InvalidShapeError',
    'InvalidParameterError',
    'IndexOutOfRangeError',
    'InsufficientDataError',
    'StorageWriteFailedError',
    'StorageCorruptError',
    'BinningConvergenceWarning',
]
