''' Test partitioned data and document collections '''

import threading
import time
from random import Random
import numpy as np
import pytest
import scipy.sparse as sps
from collection import (LocalCollection, PartitionedCollection,
                        as_collection, equal_partitions)
from cumulants import moment1
from partitioned_data import pload, pload_partition, pmeta, psave

def arr_iterable(arr, num_segments, seed=0):
    ''' Simulate arr iterable '''
    height, width = arr.shape
    assert height >= 1 and width >= 1
    assert num_segments >= 1
    segments = ([0]
                + sorted(Random(seed).sample(range(1, height),
                                             num_segments - 1))
                + [height])
    for start, end in zip(segments[:-1], segments[1:]):
        yield arr[start:end, :]

def test_partitioned_data(tmp_path):
    ''' Simple test cases '''
    # Simulate the ground-truth arr
    height, width = 100, 1000
    arr = np.random.default_rng(0).random((height, width))

    # Save arr as partitioned_data
    fname = tmp_path / 'test_pdata'
    psave(fname, arr_iterable(arr, 50), arr.shape, partition_size=20)
    assert pmeta(fname) == (height, width, 20)

    # Test reading of whole file
    assert np.allclose(arr, pload(fname, 0, height))

    # Test random access
    rng = Random(1)
    for _ in range(50):
        start, end = sorted(rng.sample(range(height + 1), 2))
        assert np.allclose(arr[start:end, :], pload(fname, start, end))

def test_partitioned_data_sparse(tmp_path):
    ''' Simple test cases '''
    height, width = 95, 1000
    arr = sps.random(height, width, density=0.05, format='csr',
                     random_state=2)

    fname = tmp_path / 'test_pdata_sps'
    psave(fname, arr_iterable(arr, 50), arr.shape, partition_size=20)

    # Last partition takes the remainder rows
    assert pload_partition(fname, 4).shape == (15, width)

    arr_loaded = pload(fname, 0, height)
    assert sps.issparse(arr_loaded)
    assert (arr != arr_loaded).nnz == 0

    rng = Random(3)
    for _ in range(50):
        start, end = sorted(rng.sample(range(height + 1), 2))
        assert (arr[start:end, :] != pload(fname, start, end)).nnz == 0

def test_psave_force(tmp_path):
    ''' Existing partitioned array is only overwritten with force '''
    arr = np.ones((10, 3))
    fname = tmp_path / 'test_pdata_force'
    psave(fname, [arr], arr.shape, partition_size=4)

    with pytest.raises(RuntimeError):
        psave(fname, [arr], arr.shape, partition_size=4)

    psave(fname, [2 * arr], arr.shape, partition_size=5, force=True)
    assert pmeta(fname) == (10, 3, 5)
    assert np.allclose(pload(fname, 0, 10), 2)

def test_psave_keeps_unrelated_files(tmp_path):
    ''' Directories with other files and plain files are left alone '''
    arr = np.ones((3, 2))
    target = tmp_path / 'mydata'
    target.mkdir()
    (target / 'notes.txt').write_text('keep me')

    with pytest.raises(RuntimeError):
        psave(target, [arr], arr.shape, partition_size=2)
    assert (target / 'notes.txt').read_text() == 'keep me'
    assert not (target / '.meta').exists()

    plain_file = tmp_path / 'plain'
    plain_file.write_text('keep me too')
    with pytest.raises(RuntimeError):
        psave(plain_file, [arr], arr.shape, partition_size=2)
    assert plain_file.read_text() == 'keep me too'

    # An empty directory is fine
    empty = tmp_path / 'empty'
    empty.mkdir()
    psave(empty, [arr], arr.shape, partition_size=2)
    assert pmeta(empty) == (3, 2, 2)

def test_equal_partitions():
    ''' Partitions cover every document exactly once '''
    assert list(equal_partitions(10, 3)) == [(0, 3), (3, 6), (6, 10)]
    assert list(equal_partitions(5, 1)) == [(0, 5)]

def test_collections_agree(tmp_path):
    ''' Local and partitioned collections reduce to the same sums '''
    docs = np.random.default_rng(4).integers(0, 5, size=(60, 8))
    docs[0] = 0
    fname = tmp_path / 'docs'
    psave(fname, arr_iterable(sps.csr_matrix(docs), 7), docs.shape,
          partition_size=11)

    local = LocalCollection(docs, n_partitions=5, n_jobs=2)
    on_disk = as_collection(str(fname), n_jobs=3)

    assert isinstance(on_disk, PartitionedCollection)
    assert on_disk.shape == local.shape == (60, 8)
    assert on_disk.n_partitions == 6
    assert as_collection(local) is local

    total, = on_disk.map_reduce(lambda part: (part.sum(), ))
    assert total == docs.sum()
    assert np.allclose(moment1(local), moment1(on_disk))

class CountingCollection(LocalCollection):
    ''' Records how many partitions were handed out but not yet mapped '''
    def __init__(self, docs, n_partitions, n_jobs):
        super().__init__(docs, n_partitions=n_partitions, n_jobs=n_jobs)
        self.lock = threading.Lock()
        self.n_started = 0
        self.n_finished = 0
        self.max_outstanding = 0

    def partitions(self):
        for partition in super().partitions():
            with self.lock:
                outstanding = self.n_started - self.n_finished
                self.max_outstanding = max(self.max_outstanding, outstanding)
                self.n_started += 1
            yield partition

    def row_sum(self, partition):
        time.sleep(0.01)
        with self.lock:
            self.n_finished += 1
        return (partition.sum(), )

def test_map_reduce_bounded():
    ''' Threaded passes pull at most n_jobs partitions ahead '''
    docs = np.random.default_rng(5).integers(0, 5, size=(40, 6))
    collection = CountingCollection(docs, n_partitions=20, n_jobs=3)

    total, = collection.map_reduce(collection.row_sum)

    assert total == docs.sum()
    assert collection.n_finished == 20
    assert collection.max_outstanding <= 3
