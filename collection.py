''' Document collections supporting map/reduce passes

The moment computations never see the whole corpus at once. They issue
passes over a collection: a function maps every partition of documents
to a tuple of partial sums, and the tuples are added up. The addition is
associative and commutative, so the partitions may be processed in any
order, concurrently or on remote workers.

Example:

    collection = LocalCollection(docs, n_partitions=4, n_jobs=4)
    total_words, = collection.map_reduce(lambda part: (part.sum(),))
'''
import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from functools import reduce
from pathlib import Path
import numpy as np
import scipy.sparse as spsp
from partitioned_data import pmeta, pload_partition, n_partitions

logger = logging.getLogger(__name__)


def equal_partitions(n_docs, n_partitions):
    ''' Compute partition ranges over [0, n_docs)

    Returns an iterator over (start, end) tuples such that
    range(start, end) marks the index range of each partition.
    The last partition takes the remainder rows.

    Parameters
    -----------
    n_docs : int
        Total number of documents.
    n_partitions : int
        Number of partitions, 1 <= n_partitions <= n_docs.

    Returns
    -----------
    out : iterator over (start, end) tuples
        Iterator over tuples such that range(start, end) marks
        the index range of each partition.
    '''
    assert n_docs >= 1 and 1 <= n_partitions <= n_docs

    starts = [i * (n_docs // n_partitions) for i in range(n_partitions)]
    ends = starts[1:] + [n_docs]
    return zip(starts, ends)

def add_contribs(contrib1, contrib2):
    ''' Element-wise sum of two tuples of partial sums '''
    assert len(contrib1) == len(contrib2)
    return tuple(x + y for x, y in zip(contrib1, contrib2))

def _accumulate(total, contrib):
    return contrib if total is None else add_contribs(total, contrib)


class _Collection:
    ''' Common map/reduce driver over the partitions '''
    n_docs = 0
    vocab_size = 0
    n_jobs = 1

    @property
    def shape(self):
        ''' (n_docs, vocab_size) '''
        return self.n_docs, self.vocab_size

    def partitions(self):
        ''' Iterator over the partitions of documents '''
        raise NotImplementedError

    def map_reduce(self, func):
        ''' Apply `func` to every partition and sum the results

        PARAMETERS
        -----------
        func : callable
            Maps an m-by-vocab_size array or csr_matrix to a tuple
            of arrays or numbers.

        RETURNS
        -----------
        out : tuple
            Element-wise sum of the tuples over all partitions.

        At most `n_jobs` partitions are pulled from `partitions()` ahead
        of the running sum.
        '''
        if self.n_jobs == 1:
            return reduce(add_contribs, map(func, self.partitions()))

        total = None
        pending = deque()
        with ThreadPoolExecutor(max_workers=self.n_jobs) as executor:
            for partition in self.partitions():
                if len(pending) >= self.n_jobs:
                    total = _accumulate(total, pending.popleft().result())
                pending.append(executor.submit(func, partition))
            while pending:
                total = _accumulate(total, pending.popleft().result())
        assert total is not None, 'no partitions'
        return total


class LocalCollection(_Collection):
    ''' In-memory documents split into contiguous row ranges

    PARAMETERS
    -----------
    docs : n_docs-by-vocab_size array or csr_matrix
        Entire collection of word count vectors.
    n_partitions : int, optional
        Number of partitions, 1 by default.
    n_jobs : int, optional
        Number of partitions processed concurrently, 1 by default.
    '''
    def __init__(self, docs, n_partitions=1, n_jobs=1):
        if spsp.issparse(docs):
            docs = spsp.csr_matrix(docs, dtype=np.float64)
        else:
            docs = np.asarray(docs, dtype=np.float64)
        assert docs.ndim == 2
        assert n_jobs >= 1

        self.docs = docs
        self.n_docs, self.vocab_size = docs.shape
        self.n_partitions = min(n_partitions, max(self.n_docs, 1))
        self.n_jobs = n_jobs

    def partitions(self):
        for start, end in equal_partitions(self.n_docs, self.n_partitions):
            yield self.docs[start:end]


class PartitionedCollection(_Collection):
    ''' Documents stored as a partitioned array on disk

    Every pass reads the partition files again, holding at most
    `n_jobs` partitions in memory besides the one being loaded.

    PARAMETERS
    -----------
    path : str or Path
        Path to the partitioned array, see `partitioned_data`.
    n_jobs : int, optional
        Number of partitions processed concurrently, 1 by default.
    '''
    def __init__(self, path, n_jobs=1):
        assert n_jobs >= 1
        self.path = Path(path)
        self.n_docs, self.vocab_size, _ = pmeta(self.path)
        self.n_partitions = n_partitions(self.path)
        self.n_jobs = n_jobs

    def partitions(self):
        for partition_id in range(self.n_partitions):
            partition = pload_partition(self.path, partition_id)
            if spsp.issparse(partition):
                yield spsp.csr_matrix(partition, dtype=np.float64)
            else:
                yield np.asarray(partition, dtype=np.float64)


def as_collection(docs, n_partitions=1, n_jobs=1):
    ''' Return a collection over `docs`

    `docs` may already be a collection, a path to a partitioned array,
    or an array/csr_matrix of word count vectors.
    '''
    if isinstance(docs, _Collection):
        return docs
    if isinstance(docs, (str, Path)):
        return PartitionedCollection(docs, n_jobs=n_jobs)
    return LocalCollection(docs, n_partitions=n_partitions, n_jobs=n_jobs)
