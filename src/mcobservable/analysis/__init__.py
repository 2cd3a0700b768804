"""Correlated error estimation: binning analysis and jackknife resampling."""

from mcobservable.analysis.binning import (
    BinningErrorEstimator,
    binning_analysis,
    binning_error,
    binning_result,
    select_binsize,
    series_mean,
)
from mcobservable.analysis.jackknife import (
    JackknifeErrorEstimator,
    jackknife,
    jackknife_replicates,
)

__all__ = [
    'BinningErrorEstimator',
    'binning_analysis',
    'binning_error',
    'binning_result',
    'select_binsize',
    'series_mean',
    'JackknifeErrorEstimator',
    'jackknife',
    'jackknife_replicates',
]
