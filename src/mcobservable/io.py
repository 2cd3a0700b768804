"""HDF5 export and import of observables.

Three layouts live side by side in one file, each under its own entry:

- Full representation (saveobs/loadobs): metadata attributes plus the
  complete `timeseries` dataset; round-trips an Observable.
- Results (export_result/load_result): name, count, mean and error, the
  time series only on request.
- Chunk dumps written by disk-mode observables (see storage.chunk_store),
  read back by the *_frommemory loaders.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import h5py
import numpy as np

from mcobservable.constants import DEFAULT_OUTFILE, TIMESERIES_DATASET
from mcobservable.errors import InvalidParameterError, StorageCorruptError, StorageWriteFailedError
from mcobservable.observable import Observable
from mcobservable.storage.chunk_store import H5_ERRORS, ChunkedDiskStore, str_attr

logger = logging.getLogger(__name__)


def _replace_group(f: h5py.File, entryname: str) -> h5py.Group:
    if entryname in f:
        del f[entryname]
    return f.create_group(entryname)


def _check_not_own_dump(obs: Observable, filename: str, entryname: str) -> None:
    """Refuse to overwrite the chunk dump a disk-mode observable is writing to."""
    if obs.inmemory:
        return
    same_file = Path(filename).resolve() == Path(obs.outfile).resolve()
    if same_file and entryname.strip("/") == obs.dataset:
        raise InvalidParameterError(
            f"Entry '{entryname}' in {filename} holds the chunks of '{obs.name}'"
        )


def _read_entry(filename: str, entryname: str, reader):
    """Run `reader(group)` on an entry, mapping h5py failures to StorageCorruptError."""
    if not Path(filename).exists():
        raise StorageCorruptError(f"File not found: {filename}")
    try:
        with h5py.File(filename, "r") as f:
            if entryname not in f:
                raise StorageCorruptError(f"No entry '{entryname}' in {filename}")
            return reader(f[entryname])
    except StorageCorruptError:
        raise
    except H5_ERRORS as e:
        raise StorageCorruptError(f"Could not read '{entryname}' from {filename}: {e}") from e


# =============================================================================
# Full representation
# =============================================================================

def saveobs(obs: Observable, filename: str = DEFAULT_OUTFILE, entryname: Optional[str] = None) -> None:
    """Save the complete representation of an observable.

    An existing entry of the same name is replaced.

    Args:
        obs: Observable to save
        filename: HDF5 file (created if missing)
        entryname: Group path inside the file (default: obs.name)

    Raises:
        InvalidParameterError: If the entry is the observable's own chunk dump
        StorageWriteFailedError: If the file cannot be written
    """
    entryname = entryname or obs.name
    _check_not_own_dump(obs, filename, entryname)
    timeseries = obs.timeseries()

    try:
        with h5py.File(filename, "a") as f:
            grp = _replace_group(f, entryname)
            grp.attrs["name"] = obs.name
            grp.attrs["dtype"] = obs.dtype.str
            grp.attrs["shape"] = json.dumps(list(obs.shape))
            grp.attrs["alloc"] = obs.alloc
            grp.attrs["inmemory"] = obs.inmemory
            grp.attrs["count"] = len(timeseries)
            grp.create_dataset(TIMESERIES_DATASET, data=timeseries)
    except H5_ERRORS as e:
        raise StorageWriteFailedError(f"Could not save '{obs.name}' to {filename}: {e}") from e

    logger.info(f"Saved observable '{obs.name}' ({len(timeseries)} measurements) to {filename}:{entryname}")


def loadobs(filename: str = DEFAULT_OUTFILE, entryname: str = "") -> Observable:
    """Load an observable saved with saveobs.

    The loaded observable always lives in memory, whatever mode it was saved from.

    Raises:
        StorageCorruptError: If the entry is missing or incomplete
    """

    def reader(grp: h5py.Group) -> Observable:
        try:
            name = str_attr(grp.attrs["name"])
            dtype = np.dtype(str_attr(grp.attrs["dtype"]))
            shape = tuple(json.loads(str_attr(grp.attrs["shape"])))
            alloc = int(grp.attrs["alloc"])
            count = int(grp.attrs["count"])
            timeseries = grp[TIMESERIES_DATASET][()]
        except KeyError as e:
            raise StorageCorruptError(f"Missing {e} in {filename}:{entryname}") from e

        if timeseries.shape != (count,) + shape:
            raise StorageCorruptError(
                f"{filename}:{entryname} declares {count} measurements of shape {shape}, "
                f"timeseries is {timeseries.shape}"
            )
        obs = Observable(dtype, name, shape, alloc=alloc)
        obs.add(timeseries.astype(dtype, copy=False))
        return obs

    obs = _read_entry(filename, entryname, reader)
    logger.info(f"Loaded observable '{obs.name}' ({len(obs)} measurements) from {filename}:{entryname}")
    return obs


# =============================================================================
# Results
# =============================================================================

def export_result(
    obs: Observable,
    filename: str = DEFAULT_OUTFILE,
    entryname: Optional[str] = None,
    timeseries: bool = False,
) -> None:
    """Export name, count, mean and one-sigma error of an observable.

    Args:
        obs: Observable with at least two measurements
        filename: HDF5 file (created if missing)
        entryname: Group path inside the file (default: obs.name)
        timeseries: Also export the full time series

    Raises:
        InsufficientDataError: If the observable has fewer than two measurements
        StorageWriteFailedError: If the file cannot be written
    """
    entryname = entryname or obs.name
    _check_not_own_dump(obs, filename, entryname)
    estimate = obs.estimate()
    series = obs.timeseries() if timeseries else None

    try:
        with h5py.File(filename, "a") as f:
            grp = _replace_group(f, entryname)
            grp.attrs["name"] = obs.name
            grp.attrs["count"] = len(obs)
            grp.create_dataset("mean", data=estimate.value)
            grp.create_dataset("error", data=estimate.error)
            if series is not None:
                grp.create_dataset(TIMESERIES_DATASET, data=series)
    except H5_ERRORS as e:
        raise StorageWriteFailedError(f"Could not export '{obs.name}' to {filename}: {e}") from e

    logger.info(f"Exported result of '{obs.name}' to {filename}:{entryname}")


def load_result(filename: str = DEFAULT_OUTFILE, entryname: str = "") -> Dict[str, Any]:
    """Read an entry written by export_result.

    Returns:
        Dict with keys name, count, mean, error and, if exported, timeseries.
        Scalar statistics come back as floats.
    """

    def reader(grp: h5py.Group) -> Dict[str, Any]:
        try:
            result = {
                'name': str_attr(grp.attrs["name"]),
                'count': int(grp.attrs["count"]),
                'mean': grp["mean"][()],
                'error': grp["error"][()],
            }
        except KeyError as e:
            raise StorageCorruptError(f"Missing {e} in {filename}:{entryname}") from e
        for key in ('mean', 'error'):
            if np.ndim(result[key]) == 0:
                result[key] = float(result[key])
        if TIMESERIES_DATASET in grp:
            result['timeseries'] = grp[TIMESERIES_DATASET][()]
        return result

    return _read_entry(filename, entryname, reader)


# =============================================================================
# Chunk dumps
# =============================================================================

def timeseries_frommemory(filename: str, group: str) -> np.ndarray:
    """Load the committed time series of a disk-mode observable.

    Returns:
        Array of shape (N, *shape); Monte Carlo time is axis 0
    """
    return ChunkedDiskStore.open(filename, group).load_all()


def timeseries_frommemory_flat(filename: str, group: str) -> np.ndarray:
    """Load the committed time series with Monte Carlo time as the last axis.

    Returns:
        Array of shape (*shape, N)
    """
    return ChunkedDiskStore.open(filename, group).load_flat()


def loadobs_frommemory(filename: str, group: str) -> Observable:
    """Rebuild an in-memory observable from a chunk dump.

    Useful after a crashed or finished run: only committed chunks are read,
    measurements that were never flushed are not part of the result.
    """
    recovered = ChunkedDiskStore.recover(filename, group)
    metadata = recovered.metadata
    obs = Observable(metadata.dtype, metadata.name, metadata.shape, alloc=metadata.alloc)
    obs.add(recovered.timeseries)
    return obs
