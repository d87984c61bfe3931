''' Randomised eigendecomposition for scaled M2

M2 is only available as an operator, so its top eigenpairs are found
by randomised range finding (Halko, Martinsson, Tropp 2011) followed
by a Rayleigh-Ritz projection.

Example:

    eigval, eigvec = rand_svd(m2_operator, k, n_iter=1, random_state=0)

'''
import logging
import numpy as np
import scipy.linalg
from scipy.sparse.linalg import eigsh
from errors import InvalidParameterError

logger = logging.getLogger(__name__)


def check_rank(k, vocab_size):
    ''' Raise InvalidParameterError unless 1 <= k <= vocab_size '''
    if not 1 <= k <= vocab_size:
        raise InvalidParameterError(
            'k must be in [1, {}], got {}'.format(vocab_size, k))

def sketch_size(k, vocab_size, oversampling=None):
    ''' Number of columns of the Gaussian test matrix

    Slightly more than k for better convergence: k + oversampling,
    or min(k + 4, 2k) by default, never more than vocab_size.
    '''
    if oversampling is None:
        return int(min(k + 4, vocab_size, 2 * k))
    assert oversampling >= 0
    return int(min(k + oversampling, vocab_size))

def _sorted_top(eigval, eigvec, k):
    ''' Top k eigenpairs in descending order of eigenvalues '''
    order = np.argsort(-eigval, kind='stable')[:k]
    return eigval[order], eigvec[:, order]

def rand_svd(operator, k, n_iter=1, oversampling=None, random_state=None):
    ''' Randomised eigendecomposition of a symmetric operator

    PARAMETERS
    -----------
    operator : M2Operator or any object with `shape` and `apply()`
        Symmetric operator of order vocab_size.
    k : int
        Number of eigenpairs, 1 <= k <= vocab_size.
    n_iter : int, optional
        Number of power iterations, >= 0, 1 by default. The operator
        is applied 2 * n_iter + 1 times.
    oversampling : int, optional
        Extra columns of the test matrix, min(k + 4, 2k) - k by default.
    random_state : None, int or numpy.random.Generator, optional
        Seed of the Gaussian test matrix.

    RETURNS
    -----------
    eigval : length-k array
        Top k eigenvalues in descending order. The last one is the
        smallest retained eigenvalue.
    eigvec : vocab_size-by-k array
        Corresponding unit-norm eigenvectors.
    '''
    vocab_size = operator.shape[0]
    check_rank(k, vocab_size)
    if n_iter < 0:
        raise InvalidParameterError(
            'n_iter must be non-negative, got {}'.format(n_iter))
    rng = np.random.default_rng(random_state)

    # Gaussian test matrix
    n_cols = sketch_size(k, vocab_size, oversampling)
    test_x = rng.standard_normal((vocab_size, n_cols))
    logger.info('randomised eigendecomposition: %d columns, '
                '%d power iterations', n_cols, n_iter)

    # Range finder with power iterations, re-orthonormalising
    # after every application
    for _ in range(2 * n_iter + 1):
        prod_test = operator.apply(test_x)
        test_x, _ = scipy.linalg.qr(prod_test, mode='economic')

    # Rayleigh-Ritz: Q^T M Q = S D S^T, eigenvectors of M are Q S
    prod_test = operator.apply(test_x)
    rayleigh = test_x.T.dot(prod_test)
    eigval, eigvec = scipy.linalg.eigh((rayleigh + rayleigh.T) / 2)
    eigval, eigvec = _sorted_top(eigval, eigvec, k)

    logger.info('smallest retained eigenvalue: %.6g', eigval[-1])
    return eigval, test_x.dot(eigvec)

def exact_eigh(operator, k, random_state=None):
    ''' Eigendecomposition of a symmetric operator by ARPACK

    Lanczos iterations on the operator; an alternative to `rand_svd()`
    accurate up to ARPACK's tolerance.

    PARAMETERS
    -----------
    operator : M2Operator
        Symmetric operator of order vocab_size.
    k : int
        Number of eigenpairs, 1 <= k < vocab_size.
    random_state : None, int or numpy.random.Generator, optional
        Seed of the starting vector.

    RETURNS
    -----------
    eigval : length-k array
        Top k eigenvalues in descending order.
    eigvec : vocab_size-by-k array
        Corresponding unit-norm eigenvectors.
    '''
    vocab_size = operator.shape[0]
    check_rank(k, vocab_size - 1)
    rng = np.random.default_rng(random_state)

    start = rng.standard_normal(vocab_size)
    eigval, eigvec = eigsh(operator.as_linear_operator(), k=k,
                           which='LA', v0=start)
    eigval, eigvec = _sorted_top(eigval, eigvec, k)

    logger.info('smallest retained eigenvalue: %.6g', eigval[-1])
    return eigval, eigvec
