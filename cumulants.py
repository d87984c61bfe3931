''' Cumulants computations

It computes M1, the product of M2 with a test matrix, and whitening
of M3, by map/reduce passes over a document collection.

`contrib_xxx()` computes the contribution of one partition of documents
as unnormalised sums together with the number of documents eligible
for the moment, so that contributions of partitions simply add up.

The adjustment terms built from M1 are applied once after the reduction.

Documents with fewer than 2 words contribute nothing to E2, those with
fewer than 3 words nothing to E3, and empty documents nothing at all.
Each moment is averaged over its own eligible documents.
'''
import logging
from functools import partial
import numpy as np
import scipy.sparse as spsp
from scipy.sparse.linalg import LinearOperator
from errors import InvalidParameterError

logger = logging.getLogger(__name__)


def check_alpha0(alpha0):
    ''' Raise InvalidParameterError unless alpha0 > 0 '''
    if not alpha0 > 0:
        raise InvalidParameterError(
            'alpha0 must be positive, got {}'.format(alpha0))

def moment_scales(alpha0):
    ''' Return the scaling factors for M2 and M3

    With the scaling, alpha0 (alpha0 + 1) M2 = sum_i alpha_i mu_i mu_i
    and alpha0 (alpha0 + 1) (alpha0 + 2) / 2 M3 = sum_i alpha_i mu_i^3,
    where mu_i is the i-th topic-word distribution.
    '''
    check_alpha0(alpha0)
    return (alpha0 * (alpha0 + 1),
            alpha0 * (alpha0 + 1) * (alpha0 + 2) / 2)

def document_lengths(docs):
    ''' Return the total word count of every document '''
    return np.asarray(docs.sum(axis=1), dtype=np.float64).ravel()

def inverse_falling_factorial(lengths, order):
    ''' Return 1 / (n (n - 1) ... (n - order + 1)), 0 where n < order '''
    out = np.zeros_like(lengths, dtype=np.float64)
    valid = lengths >= order
    denom = np.ones(valid.sum())
    for i in range(order):
        denom *= lengths[valid] - i
    out[valid] = 1.0 / denom
    return out

def contrib_document_counts(docs):
    ''' Count documents of the partition with at least 1, 2, 3 words '''
    lengths = document_lengths(docs)
    return ((lengths >= 1).sum(), (lengths >= 2).sum(), (lengths >= 3).sum())

def document_counts(collection):
    ''' Count documents with at least 1, 2, 3 words

    Parameters
    -----------
    collection : LocalCollection or PartitionedCollection
        The entire collection of word count vectors.

    Returns
    ----------
    out : tuple of int
        Numbers of documents eligible for M1, E2 and E3.
    '''
    return tuple(int(count) for count
                 in collection.map_reduce(contrib_document_counts))


# ================= M1 Calculation =================
def contrib_m1(docs):
    ''' Compute contribution of the partition to M1

    Parameters
    -----------
    docs : m-by-vocab_size array or csr_matrix
        Current partition of word count vectors.

    Returns
    ----------
    out : length-vocab_size array
        Sum of the normalised non-empty word count vectors.
    count : int
        Number of non-empty documents.
    '''
    lengths = document_lengths(docs)
    inv_lengths = inverse_falling_factorial(lengths, 1)
    normalized_sum = np.asarray(docs.T.dot(inv_lengths)).ravel()
    return normalized_sum, (lengths >= 1).sum()

def moment1(collection):
    ''' Compute M1 over the collection

    Parameters
    -----------
    collection : LocalCollection or PartitionedCollection
        The entire collection of word count vectors.

    Returns
    ----------
    out : length-vocab_size array
        M1 of the entire document collection
    '''
    normalized_sum, count = collection.map_reduce(contrib_m1)
    assert count >= 1, 'no non-empty document'
    return normalized_sum / count


# ================ M2 Calculation ================
def contrib_prod_e2_x(docs, test_x):
    ''' Compute contribution of the partition to the product of E2 and X

    Parameters
    -----------
    docs : m-by-vocab_size array or csr_matrix
        Current partition of word count vectors.
    test_x : vocab_size-by-k array
        Test matrix where k is the number of factors.

    Returns
    ----------
    out : vocab_size-by-k array
        Unnormalised contribution of the partition to E2 X.
    count : int
        Number of documents with at least 2 words.
    '''
    _, vocab_size = docs.shape
    assert test_x.shape[0] == vocab_size

    lengths = document_lengths(docs)
    diag_l = spsp.diags(inverse_falling_factorial(lengths, 2))

    scaled_docs = diag_l.dot(docs)
    prod_x = np.asarray(scaled_docs.T.dot(docs.dot(test_x)))

    sum_scaled_docs = np.asarray(scaled_docs.sum(axis=0)).ravel()
    prod_x_adj = sum_scaled_docs[:, np.newaxis] * test_x

    return prod_x - prod_x_adj, (lengths >= 2).sum()

def prod_m2_x(collection, test_x, alpha0, docs_m1=None):
    ''' Compute the product of M2 by test matrix X

    Parameters
    -----------
    collection : LocalCollection or PartitionedCollection
        Entire collection of word count vectors.
    test_x : vocab_size-by-k array
        Test matrix where k is the number of factors.
    alpha0 : float
        Sum of the Dirichlet prior parameter.
    docs_m1: length-vocab_size array, optional
        M1 of the entire collection of word count vectors.

    Returns
    -----------
    out : vocab_size-by-k array
        Product of M2 by X.
    '''
    check_alpha0(alpha0)
    _vocab_size, num_factors = test_x.shape
    assert collection.vocab_size == _vocab_size and num_factors >= 1
    if docs_m1 is None:
        docs_m1 = moment1(collection)
    assert docs_m1.ndim == 1 and len(docs_m1) == _vocab_size

    prod_e2x, count = collection.map_reduce(
        partial(contrib_prod_e2_x, test_x=test_x))
    assert count >= 1, 'no document with at least 2 words'

    adj = alpha0 / (alpha0 + 1) * np.outer(docs_m1, docs_m1.dot(test_x))
    return prod_e2x / count - adj


# ============== M3 calculation ================
def contrib_whiten_e3(docs, whn):
    ''' Compute contribution of the partition to whitening E3 and E2

    Parameters
    -----------
    docs : m-by-vocab_size array or csr_matrix
        Current partition of word count vectors.
    whn : vocab_size-by-k array
        Whitening matrix.

    Returns
    ----------
    whitened_e3 : k-by-(k ** 2) array
        Unnormalised contribution to the whitened E3, unfolded version.
    whitened_e2 : k-by-k array
        Unnormalised contribution to the whitened E2.
    count_e2 : int
        Number of documents with at least 2 words.
    count_e3 : int
        Number of documents with at least 3 words.
    '''
    # pylint: disable=too-many-locals
    _, vocab_size = docs.shape
    _vocab_size, num_factors = whn.shape
    assert vocab_size == _vocab_size and num_factors >= 1

    # m-by-k
    whitened_docs = np.asarray(docs.dot(whn))

    lengths = document_lengths(docs)
    scale2 = inverse_falling_factorial(lengths, 2)
    scale3 = inverse_falling_factorial(lengths, 3)

    # ======== whiten E3 ========
    # 1st-order terms, p p p for every whitened document p
    terms1 = np.einsum('i,ij,ik,il->jkl', scale3, whitened_docs,
                       whitened_docs, whitened_docs, optimize=True)

    # 2nd-order terms
    # V-by-k, the 3rd vector of w w rho and its permutations,
    # where w is every row of the whitening matrix
    scaled_docs3 = spsp.diags(scale3).dot(docs)
    rho = np.asarray(scaled_docs3.T.dot(whitened_docs))
    terms2 = (np.einsum('ij,ik,il->jkl', rho, whn, whn, optimize=True)
              + np.einsum('ij,ik,il->jkl', whn, rho, whn, optimize=True)
              + np.einsum('ij,ik,il->jkl', whn, whn, rho, optimize=True))

    # 3rd-order terms, w w w weighted by tau
    tau = np.asarray(scaled_docs3.sum(axis=0)).ravel()
    terms3 = 2 * np.einsum('i,ij,ik,il->jkl', tau, whn, whn, whn,
                           optimize=True)

    whitened_e3 = (terms1 - terms2 + terms3).reshape((num_factors, -1))

    # ======== whiten E2 ========
    tau2 = np.asarray(spsp.diags(scale2).dot(docs).sum(axis=0)).ravel()
    whitened_e2 = (np.einsum('i,ij,ik->jk', scale2, whitened_docs,
                             whitened_docs, optimize=True)
                   - whn.T.dot(tau2[:, np.newaxis] * whn))

    return (whitened_e3, whitened_e2,
            (lengths >= 2).sum(), (lengths >= 3).sum())

def whiten_m3(collection, whn, alpha0, docs_m1=None):
    ''' Whiten M3

    Contract every mode of M3 with the whitening matrix, without
    forming M3.

    Parameters
    -----------
    collection : LocalCollection or PartitionedCollection
        Entire collection of word count vectors.
    whn : vocab_size-by-k array
        Whitening matrix.
    alpha0 : float
        Sum of Dirichlet prior parameter.
    docs_m1 : length-vocab_size array, optional
        M1 of the entire collection of word count vectors.

    Returns
    ----------
    out : k-by-(k ** 2) array
        Whitened M3, unfolded version.
    '''
    check_alpha0(alpha0)
    _vocab_size, num_factors = whn.shape
    assert collection.vocab_size == _vocab_size and num_factors >= 1
    if docs_m1 is None:
        docs_m1 = moment1(collection)
    assert docs_m1.ndim == 1 and len(docs_m1) == _vocab_size

    whitened_e3, whitened_e2, count_e2, count_e3 = collection.map_reduce(
        partial(contrib_whiten_e3, whn=whn))
    assert count_e3 >= 1, 'no document with at least 3 words'
    whitened_e3 = whitened_e3.reshape((num_factors, ) * 3) / count_e3
    whitened_e2 /= count_e2

    # length-k
    whitened_m1 = docs_m1.dot(whn)
    whitened_e2m1 = (np.einsum('ij,k->ijk', whitened_e2, whitened_m1)
                     + np.einsum('ij,k->ikj', whitened_e2, whitened_m1)
                     + np.einsum('ij,k->kij', whitened_e2, whitened_m1))
    whitened_m1_3 = np.einsum('i,j,k->ijk', whitened_m1, whitened_m1,
                              whitened_m1)

    coeff1 = alpha0 / (alpha0 + 2)
    coeff2 = 2 * alpha0 ** 2 / (alpha0 + 1) / (alpha0 + 2)
    whitened_m3 = (whitened_e3 - coeff1 * whitened_e2m1
                   + coeff2 * whitened_m1_3)
    return whitened_m3.reshape((num_factors, -1))


# ============== Moment operators ================
class M2Operator:
    ''' M2 as an implicit symmetric operator

    Every application is one pass over the collection; the
    vocab_size-by-vocab_size matrix is never formed.

    PARAMETERS
    -----------
    collection : LocalCollection or PartitionedCollection
        Entire collection of word count vectors.
    alpha0 : float
        Sum of the Dirichlet prior parameter.
    docs_m1 : length-vocab_size array, optional
        M1 of the collection, computed if not given.
    scale : float, optional
        Multiplier applied to M2, 1 by default.
    '''
    def __init__(self, collection, alpha0, docs_m1=None, scale=1.0):
        check_alpha0(alpha0)
        self.collection = collection
        self.alpha0 = alpha0
        self.docs_m1 = moment1(collection) if docs_m1 is None else docs_m1
        self.scale = scale
        self.shape = (collection.vocab_size, collection.vocab_size)

    def apply(self, test_x):
        ''' Return scale * M2 X for a vector or vocab_size-by-m matrix X '''
        test_x = np.asarray(test_x, dtype=np.float64)
        is_vector = test_x.ndim == 1
        if is_vector:
            test_x = test_x[:, np.newaxis]

        prod = self.scale * prod_m2_x(self.collection, test_x, self.alpha0,
                                      docs_m1=self.docs_m1)
        return prod[:, 0] if is_vector else prod

    def as_linear_operator(self):
        ''' Return M2 as a scipy LinearOperator '''
        return LinearOperator(self.shape, matvec=self.apply,
                              rmatvec=self.apply, matmat=self.apply,
                              dtype=np.float64)

    def todense(self):
        ''' Form M2 explicitly, only sensible for small vocabularies '''
        dense = self.apply(np.eye(self.shape[0]))
        return (dense + dense.T) / 2


class M3Operator:
    ''' M3 as an implicit tensor, only accessed by contraction

    PARAMETERS
    -----------
    collection : LocalCollection or PartitionedCollection
        Entire collection of word count vectors.
    alpha0 : float
        Sum of the Dirichlet prior parameter.
    docs_m1 : length-vocab_size array, optional
        M1 of the collection, computed if not given.
    scale : float, optional
        Multiplier applied to M3, 1 by default.
    '''
    def __init__(self, collection, alpha0, docs_m1=None, scale=1.0):
        check_alpha0(alpha0)
        self.collection = collection
        self.alpha0 = alpha0
        self.docs_m1 = moment1(collection) if docs_m1 is None else docs_m1
        self.scale = scale
        self.shape = (collection.vocab_size, ) * 3

    def contract(self, whn):
        ''' Return scale * M3(W, W, W) unfolded as k-by-(k ** 2) '''
        whn = np.asarray(whn, dtype=np.float64)
        return self.scale * whiten_m3(self.collection, whn, self.alpha0,
                                      docs_m1=self.docs_m1)
