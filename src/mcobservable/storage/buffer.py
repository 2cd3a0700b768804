"""Preallocated fixed-shape measurement buffer."""

import logging
import numbers
from typing import Any, Sequence, Tuple, Union

import numpy as np

from mcobservable.constants import SUPPORTED_DTYPE_KINDS
from mcobservable.errors import (
    BufferOverflowError,
    IndexOutOfRangeError,
    InvalidParameterError,
    InvalidShapeError,
    ShapeMismatchError,
)

logger = logging.getLogger(__name__)

Index = Union[int, slice]


def normalize_dtype(dtype: Any) -> np.dtype:
    """Convert to a numpy dtype, rejecting types without elementwise mean/variance."""
    try:
        dt = np.dtype(dtype)
    except TypeError as e:
        raise InvalidParameterError(f"Not a numpy dtype: {dtype!r}") from e
    if dt.kind not in SUPPORTED_DTYPE_KINDS:
        raise InvalidParameterError(
            f"Unsupported measurement dtype {dt}: needs a real numeric type"
        )
    return dt


def normalize_shape(shape: Any) -> Tuple[int, ...]:
    """Convert to a shape tuple; an int n means (n,)."""
    if isinstance(shape, numbers.Integral):
        shape = (shape,)
    try:
        shape = tuple(int(extent) for extent in shape)
    except TypeError as e:
        raise InvalidShapeError(f"Not a shape: {shape!r}") from e
    if any(extent < 0 for extent in shape):
        raise InvalidShapeError(f"Shape extents must be non-negative, got {shape}")
    return shape


def normalize_index(index: int, length: int) -> int:
    """Map a possibly negative index into [0, length).

    Raises:
        IndexOutOfRangeError: If the index falls outside
    """
    if not isinstance(index, numbers.Integral) or isinstance(index, bool):
        raise IndexOutOfRangeError(f"Index must be an integer or slice, got {index!r}")
    normalized = index + length if index < 0 else index
    if not 0 <= normalized < length:
        raise IndexOutOfRangeError(f"Index {index} out of range for length {length}")
    return int(normalized)


class FixedShapeBuffer:
    """Contiguous preallocated store of measurements of one shape and dtype.

    Capacity is allocated up front so tight simulation loops never reallocate.
    A full buffer signals BufferOverflowError instead of growing; the owner
    decides whether to flush to disk or grow explicitly.

    Args:
        shape: Shape of one measurement (() for scalars)
        dtype: numpy dtype of a measurement
        capacity: Number of measurements to preallocate
    """

    def __init__(self, shape: Any, dtype: Any, capacity: int) -> None:
        if (
            isinstance(capacity, bool)
            or not isinstance(capacity, numbers.Integral)
            or capacity <= 0
        ):
            raise InvalidShapeError(f"Capacity must be a positive integer, got {capacity!r}")
        self._shape = normalize_shape(shape)
        self._dtype = normalize_dtype(dtype)
        self._data = np.zeros((int(capacity),) + self._shape, dtype=self._dtype)
        self._count = 0

    @property
    def shape(self) -> Tuple[int, ...]:
        """Shape of one measurement."""
        return self._shape

    @property
    def dtype(self) -> np.dtype:
        """dtype of one measurement."""
        return self._dtype

    @property
    def capacity(self) -> int:
        """Number of preallocated slots."""
        return self._data.shape[0]

    @property
    def free(self) -> int:
        """Number of slots still available."""
        return self.capacity - self._count

    @property
    def is_full(self) -> bool:
        """Check if no slot is left."""
        return self._count == self.capacity

    @property
    def nbytes(self) -> int:
        """Bytes held by the preallocated storage."""
        return self._data.nbytes

    def __len__(self) -> int:
        return self._count

    def _check_measurement(self, value: np.ndarray, shape: Tuple[int, ...]) -> None:
        if value.shape != shape:
            raise ShapeMismatchError(
                f"Expected shape {shape}, got {value.shape}"
            )
        if not np.can_cast(value.dtype, self._dtype, casting="safe"):
            raise ShapeMismatchError(
                f"Cannot store {value.dtype} measurements in a {self._dtype} buffer"
            )

    def append(self, measurement: Any) -> None:
        """Add a single measurement.

        Raises:
            ShapeMismatchError: If shape or dtype differ from the buffer's
            BufferOverflowError: If the buffer is full
        """
        value = np.asarray(measurement)
        self._check_measurement(value, self._shape)
        if self.is_full:
            raise BufferOverflowError(
                f"Buffer full ({self.capacity} measurements)", appended=0
            )
        self._data[self._count] = value
        self._count += 1

    def append_batch(self, measurements: Union[Sequence[Any], np.ndarray]) -> int:
        """Add measurements in order, as many as fit.

        Args:
            measurements: Array of shape (n, *shape) or a sequence of measurements

        Returns:
            Number of measurements appended (all of them)

        Raises:
            ShapeMismatchError: If the batch's element shape or dtype differ
                (nothing is appended)
            BufferOverflowError: If only a prefix fit; its `appended`
                attribute holds the prefix length
        """
        values = np.asarray(measurements)
        if values.ndim == 0:
            raise ShapeMismatchError("A batch needs a leading time axis")
        if len(values) == 0:
            return 0
        self._check_measurement(values, (len(values),) + self._shape)

        n = len(values)
        fitting = min(n, self.free)
        self._data[self._count:self._count + fitting] = values[:fitting]
        self._count += fitting

        if fitting < n:
            raise BufferOverflowError(
                f"Buffer full: appended {fitting} of {n} measurements",
                appended=fitting,
            )
        return n

    def _stored(self) -> np.ndarray:
        view = self._data[:self._count]
        view.flags.writeable = False
        return view

    def at(self, index: int) -> Any:
        """Return one measurement; negative indices count from the end."""
        value = self._data[normalize_index(index, self._count)]
        if self._shape == ():
            return value.item()
        return value.copy()

    def view(self, index: Index = slice(None)) -> np.ndarray:
        """Return a read-only view of stored measurements.

        Args:
            index: Integer or slice; Python semantics, normalized to [0, len)
        """
        stored = self._stored()
        if isinstance(index, slice):
            return stored[index]
        return stored[normalize_index(index, self._count)]

    def __getitem__(self, index: Index) -> Any:
        if isinstance(index, slice):
            return self.view(index)
        return self.at(index)

    def drain(self) -> np.ndarray:
        """Return a copy of all stored measurements and empty the buffer.

        Capacity stays allocated.
        """
        contents = self._data[:self._count].copy()
        self._count = 0
        return contents

    def clear(self) -> None:
        """Discard stored measurements, keeping capacity."""
        self._count = 0

    def truncate(self, length: int) -> None:
        """Keep only the first `length` measurements."""
        if not 0 <= length <= self._count:
            raise IndexOutOfRangeError(f"Cannot truncate {self._count} measurements to {length}")
        self._count = int(length)

    def grow(self, additional: int) -> None:
        """Extend capacity by `additional` slots, keeping stored measurements."""
        if additional <= 0:
            raise InvalidShapeError(f"Growth must be positive, got {additional}")
        data = np.zeros((self.capacity + additional,) + self._shape, dtype=self._dtype)
        data[:self._count] = self._data[:self._count]
        self._data = data
        logger.debug(f"Buffer grown to {self.capacity} measurements")

    def shrink_to(self, capacity: int) -> None:
        """Reallocate an empty buffer to `capacity` slots."""
        if self._count:
            raise InvalidShapeError("Only an empty buffer can be shrunk")
        if capacity <= 0:
            raise InvalidShapeError(f"Capacity must be positive, got {capacity}")
        if capacity != self.capacity:
            self._data = np.zeros((capacity,) + self._shape, dtype=self._dtype)

    def __repr__(self) -> str:
        return (
            f"FixedShapeBuffer(shape={self._shape}, dtype={self._dtype}, "
            f"{self._count}/{self.capacity})"
        )
