"""Tests for HDF5 export and import."""

import h5py
import numpy as np
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from mcobservable import io
from mcobservable.errors import InvalidParameterError, StorageCorruptError
from mcobservable.io import (
    export_result,
    load_result,
    loadobs,
    loadobs_frommemory,
    saveobs,
    timeseries_frommemory,
    timeseries_frommemory_flat,
)
from mcobservable.observable import Observable
from mcobservable.storage import chunk_store


@pytest.fixture
def filled_obs(seed):
    """Create an in-memory observable with 500 measurements."""
    obs = Observable(np.float64, "energy", alloc=200)
    obs.add(np.random.randn(500))
    return obs


class TestSaveLoad:
    """Tests for the full representation."""

    def test_roundtrip(self, filled_obs, h5_path):
        """Test that a saved observable loads back identically."""
        saveobs(filled_obs, h5_path)
        loaded = loadobs(h5_path, "energy")

        assert loaded.name == "energy"
        assert loaded.alloc == 200
        assert loaded.inmemory
        np.testing.assert_array_equal(loaded.timeseries(), filled_obs.timeseries())

    def test_layout(self, filled_obs, h5_path):
        """Test the stored attributes and timeseries dataset."""
        saveobs(filled_obs, h5_path, "results/e")
        with h5py.File(h5_path, "r") as f:
            grp = f["results/e"]
            assert grp.attrs["count"] == 500
            assert bool(grp.attrs["inmemory"])
            assert grp["timeseries"].shape == (500,)

    def test_overwrite_entry(self, filled_obs, h5_path):
        """Test that saving twice replaces the entry."""
        saveobs(filled_obs, h5_path)
        filled_obs.add(1.0)
        saveobs(filled_obs, h5_path)
        assert len(loadobs(h5_path, "energy")) == 501

    def test_array_observable(self, vector_series, h5_path):
        """Test saving an array observable."""
        obs = Observable(np.float64, "m", (3,), alloc=5000)
        obs.add(vector_series)
        saveobs(obs, h5_path)

        loaded = loadobs(h5_path, "m")

        assert loaded.shape == (3,)
        np.testing.assert_array_equal(loaded.timeseries(), vector_series)

    def test_disk_observable(self, temp_dir):
        """Test saving a disk-mode observable to another file."""
        chunks = str(Path(temp_dir) / "chunks.h5")
        obs = Observable(np.int64, "n", alloc=10, outfile=chunks, inmemory=False)
        obs.add(np.arange(25))

        target = str(Path(temp_dir) / "full.h5")
        saveobs(obs, target)

        np.testing.assert_array_equal(loadobs(target, "n").timeseries(), np.arange(25))

    def test_refuses_own_chunk_dump(self, h5_path):
        """Test that the chunk dump of a disk-mode observable is not overwritten."""
        obs = Observable(np.float64, "energy", alloc=10, outfile=h5_path, inmemory=False)
        with pytest.raises(InvalidParameterError):
            saveobs(obs, h5_path)

    def test_missing_entry(self, filled_obs, h5_path):
        """Test loading a missing entry."""
        saveobs(filled_obs, h5_path)
        with pytest.raises(StorageCorruptError):
            loadobs(h5_path, "nothing")

    def test_missing_file(self, temp_dir):
        """Test loading from a missing file."""
        with pytest.raises(StorageCorruptError):
            loadobs(str(Path(temp_dir) / "missing.h5"), "energy")


class TestResults:
    """Tests for results export."""

    def test_export_scalar(self, filled_obs, h5_path):
        """Test exported mean and error."""
        export_result(filled_obs, h5_path)
        result = load_result(h5_path, "energy")

        assert result['name'] == "energy"
        assert result['count'] == 500
        assert result['mean'] == filled_obs.mean()
        assert result['error'] == filled_obs.std()
        assert 'timeseries' not in result

    def test_export_with_timeseries(self, filled_obs, h5_path):
        """Test optional time series export."""
        export_result(filled_obs, h5_path, "summary/energy", timeseries=True)
        result = load_result(h5_path, "summary/energy")
        np.testing.assert_array_equal(result['timeseries'], filled_obs.timeseries())

    def test_export_array(self, vector_series, h5_path):
        """Test export of componentwise statistics."""
        obs = Observable(np.float64, "m", (3,), alloc=5000)
        obs.add(vector_series)
        export_result(obs, h5_path)
        result = load_result(h5_path, "m")
        assert result['mean'].shape == (3,)
        assert result['error'].shape == (3,)


class TestChunkDumps:
    """Tests for loading chunk dumps of disk-mode observables."""

    def test_loadobs_frommemory(self, h5_path):
        """Test rebuilding an in-memory observable from committed chunks."""
        obs = Observable(np.float32, "m", (2,), alloc=10, outfile=h5_path, inmemory=False)
        samples = np.arange(50, dtype=np.float32).reshape(25, 2)
        obs.add(samples)

        loaded = loadobs_frommemory(h5_path, "m")

        assert loaded.inmemory
        assert loaded.dtype == np.dtype(np.float32)
        assert loaded.shape == (2,)
        np.testing.assert_array_equal(loaded.timeseries(), samples[:20])

    def test_loadobs_frommemory_stale_count(self, h5_path):
        """Test that a count attribute ahead of the committed chunks does not break loading."""
        obs = Observable(np.float64, "energy", alloc=10, outfile=h5_path, inmemory=False)
        obs.add(np.arange(25.0))
        with h5py.File(h5_path, "a") as f:
            f["energy"].attrs["count"] = int(f["energy"].attrs["count"]) + 10

        loaded = loadobs_frommemory(h5_path, "energy")

        np.testing.assert_array_equal(loaded.timeseries(), np.arange(20.0))

    def test_flat(self, h5_path):
        """Test the flat layout with Monte Carlo time last."""
        obs = Observable(np.float64, "m", (2,), alloc=5, outfile=h5_path, inmemory=False)
        samples = np.arange(20.0).reshape(10, 2)
        obs.add(samples)

        np.testing.assert_array_equal(timeseries_frommemory(h5_path, "m"), samples)
        np.testing.assert_array_equal(timeseries_frommemory_flat(h5_path, "m"), samples.T)


class TestHelpers:
    """Tests for the HDF5 helpers shared with the chunk store."""

    def test_shared_with_chunk_store(self):
        """Test that io uses the chunk store's error tuple and attribute decoder."""
        assert io.H5_ERRORS is chunk_store.H5_ERRORS
        assert io.str_attr is chunk_store.str_attr
        assert io.str_attr(b"energy") == "energy"
        assert io.str_attr("energy") == "energy"
