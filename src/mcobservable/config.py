"""Configuration dataclasses for observables and error estimation."""

import numbers
from dataclasses import dataclass
from typing import Optional

from mcobservable.constants import (
    DEFAULT_ALLOC,
    DEFAULT_MIN_BINS,
    DEFAULT_OUTFILE,
    DEFAULT_PLATEAU_RTOL,
    DEFAULT_PLATEAU_WINDOW,
)
from mcobservable.errors import InvalidParameterError, InvalidShapeError


@dataclass(frozen=True)
class ObservableOptions:
    """Construction options for an Observable.

    Attributes:
        alloc: Preallocated buffer capacity. In disk mode this is also the
            number of measurements per chunk: larger values mean fewer
            writes but more data at risk if the process dies.
        outfile: HDF5 file receiving chunks when inmemory is False
        dataset: Group path inside outfile (None = observable name)
        inmemory: Keep the whole time series in memory (True) or flush
            full buffers to outfile (False). Fixed for the observable's lifetime.
    """

    alloc: int = DEFAULT_ALLOC
    outfile: str = DEFAULT_OUTFILE
    dataset: Optional[str] = None
    inmemory: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.alloc, bool) or not isinstance(self.alloc, numbers.Integral) or self.alloc <= 0:
            raise InvalidShapeError(f"alloc must be a positive integer, got {self.alloc!r}")
        if not self.inmemory and not str(self.outfile).strip():
            raise InvalidParameterError("outfile is required when inmemory=False")
        if self.dataset is not None and not str(self.dataset).strip("/ "):
            raise InvalidParameterError("dataset cannot be empty")

    def dataset_for(self, name: str) -> str:
        """Return the dataset path, defaulting to the observable name."""
        return self.dataset if self.dataset is not None else name


@dataclass(frozen=True)
class BinningConfig:
    """Tunables for automatic bin size selection.

    Attributes:
        min_bins: Candidate bin sizes must leave at least this many bins
        rtol: Relative change between consecutive bin sizes treated as flat
        plateau_window: Consecutive flat levels required for a plateau
    """

    min_bins: int = DEFAULT_MIN_BINS
    rtol: float = DEFAULT_PLATEAU_RTOL
    plateau_window: int = DEFAULT_PLATEAU_WINDOW

    def __post_init__(self) -> None:
        if self.min_bins < 2:
            raise InvalidParameterError(f"min_bins must be >= 2, got {self.min_bins}")
        if self.rtol < 0:
            raise InvalidParameterError(f"rtol must be non-negative, got {self.rtol}")
        if self.plateau_window < 1:
            raise InvalidParameterError(
                f"plateau_window must be >= 1, got {self.plateau_window}"
            )
