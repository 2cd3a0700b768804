"""Observable: a named, typed measurement time series with error estimates.

Usage:
    obs = Observable(np.float64, "energy")
    obs.add(1.23)                 # single measurement
    obs.push(np.random.rand(10))  # batch, same as add
    obs.mean(), obs.std()         # std respects autocorrelation (binning)

    # Long runs: full buffers are flushed to disk as chunks
    obs = Observable(np.float64, "energy", alloc=10_000,
                     outfile="run.h5", inmemory=False)
"""

import logging
from typing import Any, Callable, Optional, Sequence, Tuple

import numpy as np

from mcobservable.analysis.binning import binning_analysis, binning_result, series_mean
from mcobservable.analysis.jackknife import jackknife
from mcobservable.config import BinningConfig, ObservableOptions
from mcobservable.constants import DEFAULT_ALLOC, DEFAULT_JACKKNIFE_BINSIZE, DEFAULT_OUTFILE
from mcobservable.data_types import (
    BinningAnalysis,
    BinningResult,
    ChunkInfo,
    ErrorEstimate,
    Statistic,
)
from mcobservable.errors import (
    BufferOverflowError,
    InsufficientDataError,
    InvalidParameterError,
    ShapeMismatchError,
    StorageWriteFailedError,
)
from mcobservable.storage.buffer import (
    FixedShapeBuffer,
    Index,
    normalize_dtype,
    normalize_index,
    normalize_shape,
)
from mcobservable.storage.chunk_store import ChunkedDiskStore
from mcobservable.storage.memory import check_preallocation

logger = logging.getLogger(__name__)


def _validate_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidParameterError(f"Observable name must be a non-empty string, got {name!r}")
    return name


class Observable:
    """Tracks measurements of one quantity along a Markov chain.

    Every measurement has the same dtype and shape, fixed at creation. With
    inmemory=True the series lives in a preallocated buffer whose capacity
    doubles (by at least `alloc`) whenever it fills up. With inmemory=False a full
    buffer is written to `outfile` as one chunk and emptied; only the
    unflushed tail (see `unflushed`) is lost if the process dies.

    Single writer only: one Observable per simulation loop.

    Args:
        dtype: numpy dtype of a measurement (bool, integer or float)
        name: Observable name
        shape: Shape of one measurement (() for scalars)
        alloc: Preallocated capacity; chunk size in disk mode
        outfile: HDF5 file for chunks (disk mode)
        dataset: Group path inside outfile (default: name)
        inmemory: Keep everything in memory (cannot be changed later)
        binning: Tunables for automatic bin size selection
    """

    def __init__(
        self,
        dtype: Any,
        name: str,
        shape: Any = (),
        *,
        alloc: int = DEFAULT_ALLOC,
        outfile: str = DEFAULT_OUTFILE,
        dataset: Optional[str] = None,
        inmemory: bool = True,
        binning: Optional[BinningConfig] = None,
    ) -> None:
        options = ObservableOptions(
            alloc=alloc,
            outfile=outfile,
            dataset=dataset,
            inmemory=inmemory,
        )
        self._name = _validate_name(name)
        self._dtype = normalize_dtype(dtype)
        self._shape = normalize_shape(shape)
        self._options = options
        self._binning = binning or BinningConfig()

        check_preallocation(self._shape, self._dtype, options.alloc)
        self._buffer = FixedShapeBuffer(self._shape, self._dtype, options.alloc)

        self._n_flushed = 0
        self._n_chunks = 0
        self._store: Optional[ChunkedDiskStore] = None
        if not options.inmemory:
            self._store = ChunkedDiskStore.create(
                options.outfile,
                options.dataset_for(name),
                name,
                self._shape,
                self._dtype,
                options.alloc,
            )

    @classmethod
    def from_options(
        cls,
        dtype: Any,
        name: str,
        options: ObservableOptions,
        shape: Any = (),
        binning: Optional[BinningConfig] = None,
    ) -> "Observable":
        """Create an observable from an ObservableOptions bundle."""
        return cls(
            dtype,
            name,
            shape,
            alloc=options.alloc,
            outfile=options.outfile,
            dataset=options.dataset,
            inmemory=options.inmemory,
            binning=binning,
        )

    @classmethod
    def from_timeseries(
        cls,
        name: str,
        timeseries: Any,
        alloc: Optional[int] = None,
        binning: Optional[BinningConfig] = None,
    ) -> "Observable":
        """Create an in-memory observable holding an existing time series.

        Args:
            name: Observable name
            timeseries: Array of shape (N, *shape); dtype and shape are taken from it
            alloc: Growth block size (default max(N, DEFAULT_ALLOC))
        """
        series = np.asarray(timeseries)
        if series.ndim == 0:
            raise ShapeMismatchError("A time series needs a leading time axis")
        if alloc is None:
            alloc = max(len(series), DEFAULT_ALLOC)
        obs = cls(series.dtype, name, series.shape[1:], alloc=alloc, binning=binning)
        obs.add(series)
        return obs

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def name(self) -> str:
        """Return the observable name."""
        return self._name

    @property
    def dtype(self) -> np.dtype:
        """Return the dtype of one measurement."""
        return self._dtype

    @property
    def shape(self) -> Tuple[int, ...]:
        """Return the shape of one measurement."""
        return self._shape

    @property
    def ndim(self) -> int:
        """Return the number of dimensions of one measurement."""
        return len(self._shape)

    @property
    def options(self) -> ObservableOptions:
        """Return the construction options."""
        return self._options

    @property
    def alloc(self) -> int:
        """Buffer block size; measurements per chunk in disk mode."""
        return self._options.alloc

    @property
    def inmemory(self) -> bool:
        """Check whether the series is kept in memory (vs. on disk)."""
        return self._options.inmemory

    @property
    def outfile(self) -> Optional[str]:
        """Chunk file, or None for an in-memory observable."""
        return None if self.inmemory else self._options.outfile

    @property
    def dataset(self) -> Optional[str]:
        """Group path of the chunk dump, or None for an in-memory observable."""
        return None if self._store is None else self._store.dataset

    @property
    def binning_config(self) -> BinningConfig:
        """Tunables used for automatic bin size selection."""
        return self._binning

    @property
    def n_chunks(self) -> int:
        """Number of chunks written to disk."""
        return self._n_chunks

    @property
    def unflushed(self) -> int:
        """Measurements not yet on disk; these are lost if the process dies.

        Every measurement counts as unflushed for an in-memory observable.
        """
        return len(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer) + self._n_flushed

    def isempty(self) -> bool:
        """Check whether no measurement has been added yet."""
        return len(self) == 0

    # =========================================================================
    # Adding measurements
    # =========================================================================

    def add(self, measurement: Any) -> None:
        """Add one measurement or a batch of measurements.

        A value of the observable's shape is one measurement; an array of
        shape (n, *shape) is a batch of n measurements added in order.

        In disk mode a buffer that becomes full is flushed before returning.
        If a flush fails the call is rejected: measurements of this call
        that are still buffered are dropped again and StorageWriteFailedError
        propagates. Its `committed` attribute counts the leading measurements
        of a batch that an earlier flush of the same call already wrote;
        retry with measurement[committed:].

        Raises:
            ShapeMismatchError: If the shape or dtype does not match
            StorageWriteFailedError: If a required flush failed
        """
        values = np.asarray(measurement)
        if values.shape == self._shape:
            self._add_batch(values[np.newaxis])
        elif values.ndim == len(self._shape) + 1 and values.shape[1:] == self._shape:
            self._add_batch(values)
        else:
            raise ShapeMismatchError(
                f"Observable '{self._name}' holds measurements of shape {self._shape}, "
                f"got {values.shape}"
            )

    # Alias of add
    push = add

    def _add_batch(self, values: np.ndarray) -> None:
        offset = 0
        # Measurements of this call in the buffer / already on disk
        pending = 0
        committed = 0
        try:
            while True:
                try:
                    self._buffer.append_batch(values[offset:])
                    pending += len(values) - offset
                    break
                except BufferOverflowError as e:
                    offset += e.appended
                    pending += e.appended
                    if self.inmemory:
                        self._grow()
                    else:
                        self._flush_buffer()
                        committed += pending
                        pending = 0
            if not self.inmemory and self._buffer.is_full:
                self._flush_buffer()
                committed += pending
                pending = 0
        except StorageWriteFailedError as e:
            self._buffer.truncate(len(self._buffer) - pending)
            e.committed = committed
            raise

    def _grow(self) -> None:
        # Doubles the capacity, by at least alloc
        self._buffer.grow(max(self._options.alloc, self._buffer.capacity))

    def _flush_buffer(self) -> Optional[ChunkInfo]:
        info = self._store.flush(self._buffer)
        if info is not None:
            self._n_flushed += info.count
            self._n_chunks += 1
            logger.debug(f"'{self._name}': flushed chunk {info.ordinal} ({info.count} measurements)")
        return info

    def flush(self) -> Optional[ChunkInfo]:
        """Write buffered measurements to disk now, as a possibly short chunk.

        Returns:
            ChunkInfo of the written chunk; None in memory mode or if nothing was buffered
        """
        if self.inmemory:
            return None
        return self._flush_buffer()

    # =========================================================================
    # Access
    # =========================================================================

    def timeseries(self) -> np.ndarray:
        """Return the full measurement time series, shape (N, *shape).

        In disk mode this reads every chunk from disk and may take some time.
        """
        if self.inmemory:
            return self._buffer.view().copy()
        return np.concatenate([self._store.load_all(), self._buffer.view()], axis=0)

    def _series(self) -> np.ndarray:
        if self.inmemory:
            return self._buffer.view()
        series = self.timeseries()
        series.flags.writeable = False
        return series

    def view(self, index: Index = slice(None)) -> Any:
        """Read-only view into the time series (a copy is read in disk mode)."""
        series = self._series()
        if isinstance(index, slice):
            return series[index]
        return series[normalize_index(index, len(series))]

    def __getitem__(self, index: Index) -> Any:
        value = self.view(index)
        if isinstance(index, slice):
            return value
        return value.item() if self._shape == () else value.copy()

    # =========================================================================
    # Statistics
    # =========================================================================

    def _require_measurements(self) -> np.ndarray:
        series = self._series()
        if len(series) == 0:
            raise InsufficientDataError(f"Observable '{self._name}' has no measurements")
        return series

    def mean(self) -> Statistic:
        """Estimate of the mean (per component for array observables)."""
        return series_mean(self._require_measurements())

    def std(self, binsize: Optional[int] = None) -> Statistic:
        """One-sigma error of the mean from binning analysis.

        Respects correlations between measurements. Not the same as
        np.std(obs.timeseries()), not even for uncorrelated measurements.
        Corresponds to the square root of var().

        Args:
            binsize: Fixed bin size, or None for automatic plateau detection
        """
        return self.binning(binsize).error

    error = std

    def var(self, binsize: Optional[int] = None) -> Statistic:
        """Variance of the mean from binning analysis; the square of std()."""
        return self.std(binsize) ** 2

    def binning(self, binsize: Optional[int] = None) -> BinningResult:
        """Binning error with the bin size it was taken at."""
        return binning_result(self._require_measurements(), binsize, self._binning)

    def binning_analysis(self, binsizes: Optional[Sequence[int]] = None) -> BinningAnalysis:
        """Binning errors over a range of bin sizes."""
        return binning_analysis(self._require_measurements(), binsizes, self._binning)

    def estimate(self, binsize: Optional[int] = None) -> ErrorEstimate:
        """Mean and its binning error."""
        return ErrorEstimate(value=self.mean(), error=self.std(binsize))

    def jackknife(
        self,
        g: Optional[Callable[[Any], Any]] = None,
        binsize: int = DEFAULT_JACKKNIFE_BINSIZE,
    ) -> ErrorEstimate:
        """Estimate g(mean) and its jackknife error.

        Args:
            g: Deterministic scalar-valued function of the mean (default identity)
            binsize: Measurements per jackknife bin
        """
        return jackknife(self._require_measurements(), g, binsize)

    # =========================================================================
    # Mutation
    # =========================================================================

    def clear(self) -> None:
        """Clear all measurement information, in memory and on disk.

        Identical to reset() and init().
        """
        self._buffer.clear()
        self._buffer.shrink_to(self._options.alloc)
        if self._store is not None:
            self._store.reset(self._name, self._options.alloc)
        self._n_flushed = 0
        self._n_chunks = 0
        logger.debug(f"'{self._name}': cleared")

    reset = clear
    init = clear

    def rename(self, name: str) -> None:
        """Rename the observable. The dataset path stays unchanged."""
        self._name = _validate_name(name)
        if self._store is not None:
            self._store.set_name(self._name)

    def __repr__(self) -> str:
        mode = "in memory" if self.inmemory else f"on disk ({self._options.outfile})"
        shape = "" if self._shape == () else f", shape {self._shape}"
        return (
            f"Observable '{self._name}' ({self._dtype}{shape}): "
            f"{len(self)} measurements, {mode}"
        )
