"""Measurement storage: preallocated buffers and chunked HDF5 dumps."""

from mcobservable.storage.buffer import FixedShapeBuffer
from mcobservable.storage.chunk_store import ChunkedDiskStore

__all__ = [
    'FixedShapeBuffer',
    'ChunkedDiskStore',
]
