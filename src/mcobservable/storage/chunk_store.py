"""Append-only chunked HDF5 storage for observable time series.

One HDF5 group per observable:

    {dataset}/                  attrs: name, dtype, shape, alloc,
                                       n_chunks, count, schema_version
        chunks/
            chunk_000000        attrs: ordinal, count
            chunk_000001
            ...

A chunk is committed when `n_chunks` is advanced past it, which happens only
after its dataset has been fully written and flushed. `n_chunks` is the only
commit marker: readers ignore anything beyond it and derive the measurement
count from the committed chunks, so an interrupted write never becomes
visible. The group-level `count` attribute is a summary written after the
commit.
The file is opened per operation and closed afterwards, so everything
committed before the process dies is readable.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, List, Optional, Tuple

import h5py
import numpy as np

from mcobservable.constants import CHUNK_GROUP, CHUNK_NAME_FORMAT, SCHEMA_VERSION
from mcobservable.data_types import ChunkInfo, RecoveredSeries, StoreMetadata
from mcobservable.errors import (
    InvalidParameterError,
    ShapeMismatchError,
    StorageCorruptError,
    StorageWriteFailedError,
)
from mcobservable.storage.buffer import FixedShapeBuffer, normalize_dtype, normalize_shape

logger = logging.getLogger(__name__)

# Failures h5py raises on a broken or unwritable file
H5_ERRORS = (OSError, KeyError, ValueError, RuntimeError, TypeError)


def str_attr(value: Any) -> str:
    """Decode an HDF5 string attribute."""
    if isinstance(value, bytes):
        return value.decode('utf-8')
    return str(value)


class ChunkedDiskStore:
    """Persists buffer contents as immutable, ordered chunks.

    Usage:
        store = ChunkedDiskStore.create("run.h5", "energy", "energy", (), np.float64, 1000)
        store.flush(buffer)           # one chunk per full buffer
        series = store.load_all()     # all committed chunks, in order

    Args:
        path: HDF5 file path
        dataset: Group path inside the file
    """

    def __init__(self, path: str, dataset: str) -> None:
        self._path = Path(path)
        self._dataset = dataset.strip("/")
        self._shape: Tuple[int, ...] = ()
        self._dtype: np.dtype = np.dtype(np.float64)

    @property
    def path(self) -> Path:
        """Return the HDF5 file path."""
        return self._path

    @property
    def dataset(self) -> str:
        """Return the group path inside the file."""
        return self._dataset

    @property
    def shape(self) -> Tuple[int, ...]:
        """Shape of one stored measurement."""
        return self._shape

    @property
    def dtype(self) -> np.dtype:
        """dtype of one stored measurement."""
        return self._dtype

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def exists(cls, path: str, dataset: str) -> bool:
        """Check if a chunk dump for `dataset` exists in `path`."""
        if not os.path.exists(path) or not h5py.is_hdf5(path):
            return False
        with h5py.File(path, "r") as f:
            return dataset.strip("/") in f

    @classmethod
    def create(
        cls,
        path: str,
        dataset: str,
        name: str,
        shape: Tuple[int, ...],
        dtype: Any,
        alloc: int,
    ) -> "ChunkedDiskStore":
        """Initialize an empty chunk dump.

        Raises:
            InvalidParameterError: If the dataset already exists in the file
            StorageWriteFailedError: If the file cannot be written
        """
        store = cls(path, dataset)
        store._shape = normalize_shape(shape)
        store._dtype = normalize_dtype(dtype)

        if cls.exists(path, dataset):
            raise InvalidParameterError(
                f"Dataset '{store._dataset}' already exists in {path}. "
                "Each observable needs its own dataset."
            )

        try:
            store._path.parent.mkdir(parents=True, exist_ok=True)
            with h5py.File(store._path, "a") as f:
                store._init_group(f, name, alloc)
        except H5_ERRORS as e:
            raise StorageWriteFailedError(
                f"Could not initialize {store._dataset} in {path}: {e}"
            ) from e

        logger.info(f"Created chunk store {path}:{store._dataset}")
        return store

    @classmethod
    def open(cls, path: str, dataset: str) -> "ChunkedDiskStore":
        """Attach to an existing chunk dump.

        Raises:
            StorageCorruptError: If the file or group is missing or unreadable
        """
        store = cls(path, dataset)
        metadata = store.metadata()
        store._shape = metadata.shape
        store._dtype = metadata.dtype
        return store

    def _init_group(self, f: h5py.File, name: str, alloc: int) -> None:
        grp = f.create_group(self._dataset)
        grp.attrs["name"] = name
        grp.attrs["dtype"] = self._dtype.str
        grp.attrs["shape"] = json.dumps(list(self._shape))
        grp.attrs["alloc"] = int(alloc)
        grp.attrs["n_chunks"] = 0
        grp.attrs["count"] = 0
        grp.attrs["schema_version"] = SCHEMA_VERSION
        grp.create_group(CHUNK_GROUP)

    # =========================================================================
    # Metadata
    # =========================================================================

    def _group(self, f: h5py.File) -> h5py.Group:
        if self._dataset not in f:
            raise StorageCorruptError(f"No dataset '{self._dataset}' in {self._path}")
        return f[self._dataset]

    def _read(self, reader):
        """Run `reader(group)` on the open file, mapping failures to StorageCorruptError."""
        if not self._path.exists():
            raise StorageCorruptError(f"Chunk file not found: {self._path}")
        try:
            with h5py.File(self._path, "r") as f:
                return reader(self._group(f))
        except StorageCorruptError:
            raise
        except H5_ERRORS as e:
            raise StorageCorruptError(
                f"Could not read {self._dataset} from {self._path}: {e}"
            ) from e

    def _committed_count(self, grp: h5py.Group) -> int:
        """Sum of the counts of all committed chunks."""
        n_chunks = int(grp.attrs["n_chunks"])
        chunk_grp = grp[CHUNK_GROUP]
        total = sum(
            int(self._chunk_dataset(chunk_grp, ordinal).attrs["count"])
            for ordinal in range(n_chunks)
        )
        if int(grp.attrs.get("count", total)) != total:
            logger.warning(
                f"Stale count attribute in {self._path}:{self._dataset}; "
                f"committed chunks hold {total} measurements"
            )
        return total

    def metadata(self) -> StoreMetadata:
        """Read the dump's metadata.

        The count is summed over committed chunks; a stale group-level
        `count` left by an interrupted commit is ignored.

        Raises:
            StorageCorruptError: If required attributes are missing
        """

        def reader(grp: h5py.Group) -> StoreMetadata:
            try:
                return StoreMetadata(
                    name=str_attr(grp.attrs["name"]),
                    dtype=np.dtype(str_attr(grp.attrs["dtype"])),
                    shape=tuple(json.loads(str_attr(grp.attrs["shape"]))),
                    alloc=int(grp.attrs["alloc"]),
                    n_chunks=int(grp.attrs["n_chunks"]),
                    count=self._committed_count(grp),
                )
            except KeyError as e:
                raise StorageCorruptError(
                    f"Missing metadata {e} in {self._path}:{self._dataset}"
                ) from e

        return self._read(reader)

    def chunks(self) -> List[ChunkInfo]:
        """List committed chunks in ordinal order."""

        def reader(grp: h5py.Group) -> List[ChunkInfo]:
            n_chunks = int(grp.attrs["n_chunks"])
            chunk_grp = grp[CHUNK_GROUP]
            infos = []
            for ordinal in range(n_chunks):
                ds = self._chunk_dataset(chunk_grp, ordinal)
                infos.append(ChunkInfo(ordinal=ordinal, count=int(ds.attrs["count"])))
            return infos

        return self._read(reader)

    def set_name(self, name: str) -> None:
        """Update the persisted observable name."""
        try:
            with h5py.File(self._path, "a") as f:
                self._group(f).attrs["name"] = name
        except H5_ERRORS as e:
            raise StorageWriteFailedError(f"Could not rename {self._dataset}: {e}") from e

    # =========================================================================
    # Writing
    # =========================================================================

    def write_chunk(self, samples: np.ndarray) -> ChunkInfo:
        """Append samples as the next chunk.

        The chunk dataset is written and flushed before the group's
        `n_chunks` is advanced (the commit), followed by `count`. On failure the partial dataset is
        removed where possible and the commit counters are left untouched.

        Args:
            samples: Array of shape (n, *shape), n >= 1

        Returns:
            ChunkInfo of the committed chunk

        Raises:
            ShapeMismatchError: If samples do not match the store's shape/dtype
            StorageWriteFailedError: If the chunk could not be committed
        """
        samples = np.asarray(samples)
        if samples.shape[1:] != self._shape or samples.ndim != len(self._shape) + 1:
            raise ShapeMismatchError(
                f"Chunk of shape {samples.shape} does not hold measurements of shape {self._shape}"
            )
        if not np.can_cast(samples.dtype, self._dtype, casting="safe"):
            raise ShapeMismatchError(f"Cannot store {samples.dtype} chunks in a {self._dtype} store")

        count = len(samples)
        ordinal = None
        chunk_name = None
        try:
            with h5py.File(self._path, "a") as f:
                grp = self._group(f)
                ordinal = int(grp.attrs["n_chunks"])
                chunk_grp = grp[CHUNK_GROUP]
                committed = self._committed_count(grp)
                chunk_name = CHUNK_NAME_FORMAT.format(ordinal)

                # Leftover from an interrupted write: never committed
                if chunk_name in chunk_grp:
                    logger.warning(f"Discarding uncommitted chunk {chunk_name} in {self._dataset}")
                    del chunk_grp[chunk_name]

                ds = chunk_grp.create_dataset(chunk_name, data=samples.astype(self._dtype, copy=False))
                ds.attrs["ordinal"] = ordinal
                ds.attrs["count"] = count
                f.flush()

                # Commit
                grp.attrs["n_chunks"] = ordinal + 1
                grp.attrs["count"] = committed + count
        except (StorageCorruptError, *H5_ERRORS) as e:
            self._discard_uncommitted(ordinal, chunk_name)
            raise StorageWriteFailedError(
                f"Could not write chunk to {self._path}:{self._dataset}: {e}"
            ) from e

        logger.debug(f"Wrote chunk {ordinal} ({count} measurements) to {self._dataset}")
        return ChunkInfo(ordinal=ordinal, count=count)

    def _discard_uncommitted(self, ordinal: Optional[int], chunk_name: Optional[str]) -> None:
        """Best-effort removal of a chunk dataset that was never committed."""
        if chunk_name is None:
            return
        try:
            with h5py.File(self._path, "a") as f:
                grp = self._group(f)
                if int(grp.attrs["n_chunks"]) <= ordinal and chunk_name in grp[CHUNK_GROUP]:
                    del grp[CHUNK_GROUP][chunk_name]
        except (StorageCorruptError, *H5_ERRORS) as e:
            # Readers skip uncommitted chunks and the next write replaces it
            logger.warning(f"Could not remove partial chunk {chunk_name}: {e}")

    def flush(self, buffer: FixedShapeBuffer) -> Optional[ChunkInfo]:
        """Write the buffer's contents as one chunk, then empty the buffer.

        On failure the buffer keeps its contents so the flush can be retried.

        Returns:
            ChunkInfo, or None if the buffer was empty
        """
        if len(buffer) == 0:
            logger.debug(f"Nothing to flush for {self._dataset}")
            return None
        info = self.write_chunk(buffer.view())
        buffer.clear()
        return info

    def delete(self) -> None:
        """Remove the observable's group from the file."""
        if not self._path.exists():
            return
        try:
            with h5py.File(self._path, "a") as f:
                if self._dataset in f:
                    del f[self._dataset]
        except H5_ERRORS as e:
            raise StorageWriteFailedError(f"Could not delete {self._dataset}: {e}") from e
        logger.info(f"Deleted chunk store {self._path}:{self._dataset}")

    def reset(self, name: str, alloc: int) -> None:
        """Discard all chunks and start an empty dump."""
        self.delete()
        try:
            with h5py.File(self._path, "a") as f:
                self._init_group(f, name, alloc)
        except H5_ERRORS as e:
            raise StorageWriteFailedError(f"Could not reset {self._dataset}: {e}") from e

    # =========================================================================
    # Reading
    # =========================================================================

    def _chunk_dataset(self, chunk_grp: h5py.Group, ordinal: int) -> h5py.Dataset:
        chunk_name = CHUNK_NAME_FORMAT.format(ordinal)
        if chunk_name not in chunk_grp:
            raise StorageCorruptError(
                f"Committed chunk {ordinal} missing from {self._path}:{self._dataset}"
            )
        return chunk_grp[chunk_name]

    def load_all(self) -> np.ndarray:
        """Concatenate all committed chunks in ordinal order.

        Returns:
            Array of shape (N, *shape); Monte Carlo time is axis 0

        Raises:
            StorageCorruptError: If a chunk's declared count or shape
                disagrees with its payload
        """

        def reader(grp: h5py.Group) -> np.ndarray:
            n_chunks = int(grp.attrs["n_chunks"])
            chunk_grp = grp[CHUNK_GROUP]
            parts = []
            for ordinal in range(n_chunks):
                ds = self._chunk_dataset(chunk_grp, ordinal)
                declared = int(ds.attrs["count"])
                if ds.shape[:1] != (declared,) or tuple(ds.shape[1:]) != self._shape:
                    raise StorageCorruptError(
                        f"Chunk {ordinal} of {self._dataset} declares {declared} "
                        f"measurements of shape {self._shape}, payload is {ds.shape}"
                    )
                parts.append(ds[()])
            if not parts:
                return np.zeros((0,) + self._shape, dtype=self._dtype)
            return np.concatenate(parts, axis=0)

        return self._read(reader)

    def load_flat(self) -> np.ndarray:
        """Load all committed chunks with Monte Carlo time as the trailing axis.

        Returns:
            Array of shape (*shape, N)
        """
        return np.moveaxis(self.load_all(), 0, -1)

    @classmethod
    def recover(cls, path: str, dataset: str) -> RecoveredSeries:
        """Rebuild metadata and time series from committed chunks.

        Measurements that were still buffered when the writer stopped never
        reached the file and are not part of the result.
        """
        store = cls.open(path, dataset)
        metadata = store.metadata()
        timeseries = store.load_all()
        logger.info(
            f"Recovered {metadata.count} measurements in {metadata.n_chunks} chunks "
            f"from {path}:{store.dataset}"
        )
        return RecoveredSeries(metadata=metadata, timeseries=timeseries)

    def __repr__(self) -> str:
        return f"ChunkedDiskStore(path={str(self._path)!r}, dataset={self._dataset!r})"
