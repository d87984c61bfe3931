''' Routines for accessing partitioned array

A document collection too large for memory is stored under a directory
as a series of row partitions plus the meta information:

    .meta
    p000000.npy
    p000001.npy
    p000002.npy
    ...

The layout of `.meta` is

    # height width partition_size
    <height> <width> <partition_size>

where `height` is the number of documents, `width` the vocabulary size and
`partition_size` the number of rows in every partition file but the last.
A partition is either a NumPy array or a sparse csr_matrix.
'''
import logging
import shutil
from pathlib import Path
import numpy as np
import scipy.sparse as sps

logger = logging.getLogger(__name__)

META_FILE = '.meta'


def partition_file(fname, partition_id):
    ''' Return the path of the partition file '''
    return Path(fname) / 'p{:06d}.npy'.format(partition_id)

def pmeta(fname):
    ''' Return meta data of the partitioned array

    PARAMETERS
    -----------
    fname : str or Path
        Path to the partitioned array.

    RETURNS
    -----------
    height : int
        Number of rows of the entire data set.
    width : int
        Numer of columns of the entire data set.
    partition_size : int
        Number of rows in each partition.
    '''
    meta = np.loadtxt(Path(fname) / META_FILE, dtype=int)
    height, width, partition_size = (int(v) for v in meta)
    assert height >= 1 and width >= 1
    assert partition_size >= 1
    return height, width, partition_size

def n_partitions(fname):
    ''' Number of partition files of the partitioned array '''
    height, _, partition_size = pmeta(fname)
    return (height + partition_size - 1) // partition_size

def _vstack(blocks):
    ''' vstack arrays or sparse matrices '''
    if sps.issparse(blocks[0]):
        return sps.vstack(blocks, format='csr')
    return np.vstack(blocks)

def pload_partition(fname, partition_id):
    ''' Load one partition of the partitioned array

    PARAMETERS
    -----------
    fname : str or Path
        Path to the partitioned array.
    partition_id : int
        Index of the partition, starting from 0.

    RETURNS
    -----------
    out : array or csr_matrix
        Rows of the partition.
    '''
    partition = np.load(partition_file(fname, partition_id),
                        allow_pickle=True)
    # A csr_matrix is saved as a 0-d object array
    if partition.dtype == object:
        partition = partition.item()
    return partition

def pload(fname, start, end):
    ''' Load specified range of rows of the partitioned array

    PARAMETERS
    -----------
    fname : str or Path
        Path to the partitioned array.
    start : int
        Index of the starting row, inclusive.
    end : int
        Index of the ending row, exclusive.

    RETURNS
    -----------
    out : array or csr_matrix
        Specified range of the partitioned array.
    '''
    height, _, partition_size = pmeta(fname)
    assert 0 <= start <= end <= height

    last_partition_id = (height - 1) // partition_size
    first = min(start // partition_size, last_partition_id)
    last = max(first + 1, -(-end // partition_size))
    superset = _vstack([pload_partition(fname, partition_id)
                        for partition_id in range(first, last)])

    offset = first * partition_size
    return superset[(start - offset):(end - offset)]

def psave(fname, arr, shape, partition_size, force=False):
    ''' Save partitioned array

    PARAMETERS
    -----------
    fname : str or Path
        Path under which to save the partitioned array.
    arr : iterable
        Iterable of row blocks of any height, each a NumPy array
        or sparse csr_matrix.
    shape : tuple
        Shape of the entire array.
    partition_size : int
        Number of rows of each partition.
    force : bool, optional
        False by default, for which a RuntimeError is raised if the
        path exists, unless it is an empty directory. Setting to True
        will remove whatever is there.
    '''
    path = Path(fname)
    assert partition_size >= 1

    if path.exists() and not force:
        if not path.is_dir():
            raise RuntimeError('{} exists and is not a directory'
                               .format(path))
        if any(path.iterdir()):
            raise RuntimeError('{} is not empty'.format(path))
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()
    path.mkdir(parents=True)

    with (path / META_FILE).open(mode='w') as fmeta:
        fmeta.write('# height width partition_size\n')
        fmeta.write('{} {} {}'.format(shape[0], shape[1], partition_size))

    def write_partition(partition_id, rows):
        ''' Write one partition file '''
        if sps.issparse(rows):
            boxed = np.empty((), dtype=object)
            boxed[()] = sps.csr_matrix(rows)
            rows = boxed
        np.save(partition_file(path, partition_id), rows)

    # Buffer incoming blocks until a full partition is available
    pending = []
    n_pending = 0
    partition_id = 0
    n_rows = 0
    for rows in arr:
        pending.append(rows)
        n_pending += rows.shape[0]
        n_rows += rows.shape[0]

        while n_pending >= partition_size:
            cache = _vstack(pending)
            write_partition(partition_id, cache[:partition_size])
            partition_id += 1
            n_pending -= partition_size
            pending = [cache[partition_size:]] if n_pending > 0 else []

    if n_pending > 0:
        write_partition(partition_id, _vstack(pending))
        partition_id += 1

    assert n_rows == shape[0], 'rows written differ from shape'
    logger.info('saved %d rows in %d partitions under %s',
                n_rows, partition_id, path)
