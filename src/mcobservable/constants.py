"""Shared constants for the mcobservable package."""

from typing import Set

# =============================================================================
# Construction defaults
# =============================================================================

# Preallocated buffer capacity; also the chunk size in disk mode
DEFAULT_ALLOC: int = 1000

DEFAULT_OUTFILE: str = "Observables.h5"

# =============================================================================
# Error estimation defaults
# =============================================================================

DEFAULT_JACKKNIFE_BINSIZE: int = 10

# Automatic binning: smallest number of bins a candidate bin size may leave
DEFAULT_MIN_BINS: int = 16

# Relative change between consecutive bin sizes still counted as flat
DEFAULT_PLATEAU_RTOL: float = 0.05

# Consecutive flat levels required to call it a plateau
DEFAULT_PLATEAU_WINDOW: int = 2

# =============================================================================
# Storage layout
# =============================================================================

SCHEMA_VERSION: str = "1.0.0"

CHUNK_GROUP: str = "chunks"
CHUNK_NAME_FORMAT: str = "chunk_{:06d}"
TIMESERIES_DATASET: str = "timeseries"

# numpy dtype kinds with a well-defined elementwise mean/variance
SUPPORTED_DTYPE_KINDS: Set[str] = {'b', 'i', 'u', 'f'}
