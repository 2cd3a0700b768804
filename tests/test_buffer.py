"""Tests for the preallocated measurement buffer."""

import numpy as np
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from mcobservable.errors import (
    BufferOverflowError,
    IndexOutOfRangeError,
    InvalidParameterError,
    InvalidShapeError,
    ShapeMismatchError,
)
from mcobservable.storage.buffer import FixedShapeBuffer, normalize_shape


class TestConstruction:
    """Tests for buffer construction and validation."""

    def test_initialization(self):
        """Test empty buffer properties."""
        buffer = FixedShapeBuffer((), np.float64, 10)
        assert len(buffer) == 0
        assert buffer.capacity == 10
        assert buffer.free == 10
        assert not buffer.is_full
        assert buffer.nbytes == 80

    def test_array_shape(self):
        """Test buffer of array measurements."""
        buffer = FixedShapeBuffer((2, 3), np.int64, 5)
        assert buffer.shape == (2, 3)
        assert buffer.dtype == np.dtype(np.int64)

    def test_int_shape_means_vector(self):
        """Test that an int shape n means (n,)."""
        assert normalize_shape(4) == (4,)

    @pytest.mark.parametrize("capacity", [0, -1, 2.5, True])
    def test_invalid_capacity(self, capacity):
        """Test that non-positive or non-integer capacities are rejected."""
        with pytest.raises(InvalidShapeError):
            FixedShapeBuffer((), np.float64, capacity)

    def test_negative_extent(self):
        """Test that negative shape extents are rejected."""
        with pytest.raises(InvalidShapeError):
            FixedShapeBuffer((2, -1), np.float64, 10)

    @pytest.mark.parametrize("dtype", [np.complex128, np.str_, object])
    def test_unsupported_dtype(self, dtype):
        """Test that non-real dtypes are rejected."""
        with pytest.raises(InvalidParameterError):
            FixedShapeBuffer((), dtype, 10)


class TestAppend:
    """Tests for single and batch appends."""

    def test_append_until_full(self):
        """Test that the buffer signals overflow once full."""
        buffer = FixedShapeBuffer((), np.float64, 3)
        for value in (1.0, 2.0, 3.0):
            buffer.append(value)
        assert buffer.is_full

        with pytest.raises(BufferOverflowError) as excinfo:
            buffer.append(4.0)
        assert excinfo.value.appended == 0
        assert len(buffer) == 3

    def test_shape_mismatch(self):
        """Test that a measurement of the wrong shape is rejected."""
        buffer = FixedShapeBuffer((3,), np.float64, 5)
        with pytest.raises(ShapeMismatchError):
            buffer.append(np.zeros(4))
        assert len(buffer) == 0

    def test_unsafe_cast_rejected(self):
        """Test that a float cannot be stored in an int buffer."""
        buffer = FixedShapeBuffer((), np.int64, 5)
        with pytest.raises(ShapeMismatchError):
            buffer.append(1.5)

    def test_safe_cast_accepted(self):
        """Test that an int can be stored in a float buffer."""
        buffer = FixedShapeBuffer((), np.float64, 5)
        buffer.append(3)
        assert buffer.at(0) == 3.0

    def test_batch_fits(self):
        """Test appending a batch that fits entirely."""
        buffer = FixedShapeBuffer((), np.float64, 10)
        assert buffer.append_batch(np.arange(4.0)) == 4
        np.testing.assert_array_equal(buffer.view(), np.arange(4.0))

    def test_batch_partial(self):
        """Test that a batch larger than the free space appends a prefix."""
        buffer = FixedShapeBuffer((), np.float64, 5)
        buffer.append(-1.0)

        with pytest.raises(BufferOverflowError) as excinfo:
            buffer.append_batch(np.arange(10.0))

        assert excinfo.value.appended == 4
        np.testing.assert_array_equal(buffer.view(), [-1.0, 0.0, 1.0, 2.0, 3.0])

    def test_batch_equivalent_to_singles(self):
        """Test that a batch append matches repeated single appends."""
        values = np.random.RandomState(0).randn(7, 2)
        batched = FixedShapeBuffer((2,), np.float64, 10)
        single = FixedShapeBuffer((2,), np.float64, 10)

        batched.append_batch(values)
        for value in values:
            single.append(value)

        np.testing.assert_array_equal(batched.view(), single.view())

    def test_batch_wrong_shape_appends_nothing(self):
        """Test that a mismatched batch leaves the buffer unchanged."""
        buffer = FixedShapeBuffer((2,), np.float64, 10)
        with pytest.raises(ShapeMismatchError):
            buffer.append_batch(np.zeros((3, 3)))
        assert len(buffer) == 0

    def test_empty_batch(self):
        """Test that an empty batch is a no-op."""
        buffer = FixedShapeBuffer((), np.float64, 3)
        assert buffer.append_batch([]) == 0
        assert len(buffer) == 0


class TestAccess:
    """Tests for indexing, views and draining."""

    @pytest.fixture
    def buffer(self):
        """Create a buffer holding 0, 1, ..., 4."""
        buffer = FixedShapeBuffer((), np.int64, 8)
        buffer.append_batch(np.arange(5))
        return buffer

    def test_negative_index(self, buffer):
        """Test Python-style negative indices."""
        assert buffer[-1] == 4
        assert buffer.at(-5) == 0

    def test_index_out_of_range(self, buffer):
        """Test that indices beyond the stored count are rejected."""
        with pytest.raises(IndexOutOfRangeError):
            buffer.at(5)
        with pytest.raises(IndexError):
            buffer[-6]

    def test_slice_is_read_only(self, buffer):
        """Test that slices are read-only views of stored data only."""
        view = buffer[1:]
        np.testing.assert_array_equal(view, [1, 2, 3, 4])
        with pytest.raises(ValueError):
            view[0] = 100

    def test_drain_keeps_capacity(self, buffer):
        """Test that drain returns the contents and resets the count."""
        contents = buffer.drain()
        np.testing.assert_array_equal(contents, np.arange(5))
        assert len(buffer) == 0
        assert buffer.capacity == 8

    def test_array_element_is_copy(self):
        """Test that accessing an array measurement returns a copy."""
        buffer = FixedShapeBuffer((2,), np.float64, 2)
        buffer.append([1.0, 2.0])
        element = buffer[0]
        element[0] = 99.0
        assert buffer[0][0] == 1.0


class TestResize:
    """Tests for growing and shrinking."""

    def test_grow_keeps_contents(self):
        """Test that growing preserves stored measurements."""
        buffer = FixedShapeBuffer((), np.float64, 2)
        buffer.append_batch([1.0, 2.0])
        buffer.grow(3)
        assert buffer.capacity == 5
        buffer.append(3.0)
        np.testing.assert_array_equal(buffer.view(), [1.0, 2.0, 3.0])

    def test_truncate_keeps_prefix(self):
        """Test that truncating keeps the oldest measurements and frees the rest."""
        buffer = FixedShapeBuffer((), np.float64, 5)
        buffer.append_batch([1.0, 2.0, 3.0, 4.0])
        buffer.truncate(2)
        assert len(buffer) == 2
        assert buffer.free == 3
        buffer.append(9.0)
        np.testing.assert_array_equal(buffer.view(), [1.0, 2.0, 9.0])

    @pytest.mark.parametrize("length", [-1, 3])
    def test_truncate_out_of_range(self, length):
        """Test that truncating below zero or beyond the stored length fails."""
        buffer = FixedShapeBuffer((), np.float64, 5)
        buffer.append_batch([1.0, 2.0])
        with pytest.raises(IndexOutOfRangeError):
            buffer.truncate(length)
        assert len(buffer) == 2

    def test_shrink_requires_empty(self):
        """Test that only an empty buffer can be reallocated smaller."""
        buffer = FixedShapeBuffer((), np.float64, 10)
        buffer.append(1.0)
        with pytest.raises(InvalidShapeError):
            buffer.shrink_to(2)
        buffer.clear()
        buffer.shrink_to(2)
        assert buffer.capacity == 2
