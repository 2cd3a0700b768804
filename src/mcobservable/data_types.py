"""Type definitions for observables, storage and error estimation."""

from dataclasses import dataclass
from typing import NamedTuple, Tuple, Union

import numpy as np

# A scalar statistic or one value per component of an array observable
Statistic = Union[float, np.ndarray]


class ErrorEstimate(NamedTuple):
    """A value and its one-sigma uncertainty."""

    value: Statistic
    error: Statistic

    def __str__(self) -> str:
        return f"{self.value} ± {self.error}"


class ChunkInfo(NamedTuple):
    """Metadata of one persisted chunk."""

    ordinal: int
    count: int


@dataclass(frozen=True)
class StoreMetadata:
    """Metadata of an observable's chunk dump.

    Attributes:
        name: Observable name at the time of the last write
        dtype: numpy dtype of a measurement
        shape: Shape of one measurement (() for scalars)
        alloc: Buffer capacity the chunks were flushed with
        n_chunks: Number of committed chunks
        count: Number of committed measurements
    """

    name: str
    dtype: np.dtype
    shape: Tuple[int, ...]
    alloc: int
    n_chunks: int
    count: int


class RecoveredSeries(NamedTuple):
    """Time series reconstructed from committed chunks."""

    metadata: StoreMetadata
    timeseries: np.ndarray


@dataclass
class BinningAnalysis:
    """Binning errors over a range of bin sizes.

    Attributes:
        binsizes: Evaluated bin sizes, increasing
        errors: Error estimate per bin size, shape (len(binsizes), *element_shape)
        n_bins: Number of bins per bin size
    """

    binsizes: np.ndarray
    errors: np.ndarray
    n_bins: np.ndarray

    def __len__(self) -> int:
        return len(self.binsizes)


@dataclass
class BinningResult:
    """Outcome of a binning error estimate.

    Attributes:
        error: One-sigma error of the mean (per component for arrays)
        binsize: Bin size the error was taken at
        n_bins: Number of bins at that bin size
        converged: False if automatic selection found no plateau
    """

    error: Statistic
    binsize: int
    n_bins: int
    converged: bool = True
