"""Exception and warning hierarchy for observables.

Caller mistakes (shape, index, parameter errors) fail fast.
Storage errors chain the underlying h5py/OS failure.
"""


class ObservableError(Exception):
    """Base exception for observable errors."""

    pass


class ShapeMismatchError(ObservableError, ValueError):
    """Raised when a measurement's shape or dtype differs from the observable's."""

    pass


class InvalidShapeError(ObservableError, ValueError):
    """Raised for a non-positive capacity or an invalid element shape."""

    pass


class InvalidParameterError(ObservableError, ValueError):
    """Raised for invalid estimator parameters, dtypes or storage paths."""

    pass


class BufferOverflowError(ObservableError):
    """Raised when a FixedShapeBuffer is full.

    Internal backpressure signal: Observable catches it and flushes or grows.

    Attributes:
        appended: Number of measurements appended before the buffer filled up
    """

    def __init__(self, message: str, appended: int = 0) -> None:
        super().__init__(message)
        self.appended = appended


class IndexOutOfRangeError(ObservableError, IndexError):
    """Raised when an index falls outside [0, len)."""

    pass


class InsufficientDataError(ObservableError):
    """Raised when too few measurements exist for the requested statistic."""

    pass


class StorageWriteFailedError(ObservableError, OSError):
    """Raised when a chunk could not be written.

    Observable.add rolls back the measurements of the failing call that are
    still buffered; measurements already committed to disk stay there.

    Attributes:
        committed: Measurements of the failing add() call already on disk
    """

    def __init__(self, message: str, committed: int = 0) -> None:
        super().__init__(message)
        self.committed = committed


class StorageCorruptError(ObservableError):
    """Raised when persisted chunks or metadata disagree with their payload."""

    pass


class BinningConvergenceWarning(UserWarning):
    """Emitted when automatic bin size selection finds no plateau."""

    pass
