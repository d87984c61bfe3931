''' Spectral LDA based on tensor CP Decomposition

Example:

    result = spectral_lda(docs, alpha0, k, random_state=0)
    alpha, beta = result.alpha, result.beta

The scaled moments satisfy

    alpha0 (alpha0 + 1) M2 = sum_i alpha_i mu_i mu_i
    alpha0 (alpha0 + 1) (alpha0 + 2) / 2 M3 = sum_i alpha_i mu_i mu_i mu_i

so after whitening with the top-k eigenpairs (s, U) of scaled M2, the
whitened M3 decomposes as sum_i lambda_i v_i v_i v_i with orthonormal
v_i = sqrt(alpha_i) W^T mu_i and lambda_i = 1 / sqrt(alpha_i). Hence
alpha_i = 1 / lambda_i ** 2 and mu_i = lambda_i U diag(sqrt(s)) v_i.


REFERENCE
-----------
    https://github.com/Mega-DatA-Lab/SpectralLDA-MXNet/blob/master/report.pdf

'''
import logging
from collections import namedtuple
import numpy as np
from collection import as_collection
from cumulants import (check_alpha0, document_counts, moment1, moment_scales,
                       M2Operator, M3Operator)
from cp_als import cp_als
from errors import InvalidParameterError
from proj_l1_simplex import proj_l1_simplex
from rand_svd import rand_svd, exact_eigh
from whitening import Whitener

logger = logging.getLogger(__name__)

SpectralLDAResult = namedtuple('SpectralLDAResult',
                               ['alpha', 'beta', 'eigval_m2', 'eigvec_m2',
                                'docs_m1', 'converged', 'residual'])


def project_columns(beta, l1_simplex_proj=False):
    ''' Map every column of beta onto the probability simplex

    By default negative entries are clipped to zero and the column
    renormalised. With `l1_simplex_proj` the Euclidean projection is
    used instead, as it is for columns without any positive entry.
    '''
    if l1_simplex_proj:
        return proj_l1_simplex(beta, 1.0)[0]

    clipped = np.maximum(beta, 0)
    mass = clipped.sum(axis=0)
    degenerate = mass <= 0
    if degenerate.any():
        logger.warning('%d topic(s) without positive mass, projected '
                       'onto the l1-simplex', degenerate.sum())
        clipped[:, degenerate] = proj_l1_simplex(beta[:, degenerate],
                                                 1.0)[0]
        mass[degenerate] = 1.0
    return clipped / mass

def recover(eigval, eigvec, whitener, alpha0, l1_simplex_proj=False):
    ''' Recover alpha and beta from the CP Decomposition of whitened M3

    PARAMETERS
    -----------
    eigval : length-k array
        Positive weights of the rank-1 terms.
    eigvec : k-by-k array
        Unit-norm directions of the rank-1 terms in the whitened space.
    whitener : Whitener
        Whitener built from the eigenpairs of scaled M2.
    alpha0 : float
        Sum of Dirichlet prior parameter.
    l1_simplex_proj : bool, optional
        Euclidean projection of the topics onto the l1-simplex instead
        of clipping and renormalising, False by default.

    RETURNS
    -----------
    alpha : length-k array
        Dirichlet prior parameter summing to alpha0, descending.
    beta : vocab_size-by-k array
        Topic-word distributions in the order of alpha.
    '''
    check_alpha0(alpha0)
    eigval = np.asarray(eigval, dtype=np.float64)
    assert np.all(eigval > 0), 'weights of rank-1 terms must be positive'

    alpha = 1 / eigval ** 2
    alpha *= alpha0 / alpha.sum()

    beta = whitener.unwhiten(eigvec).dot(np.diag(eigval))
    beta = project_columns(beta, l1_simplex_proj=l1_simplex_proj)

    order = np.argsort(-alpha, kind='stable')
    return alpha[order], beta[:, order]

def check_params(n_docs, vocab_size, alpha0, k, max_iter, tol, n_iter,
                 n_partitions):
    ''' Raise InvalidParameterError for invalid input '''
    # pylint: disable=too-many-arguments
    check_alpha0(alpha0)
    if n_docs < 1:
        raise InvalidParameterError('empty corpus')
    if not 1 <= k < vocab_size:
        raise InvalidParameterError(
            'k must be in [1, {}), got {}'.format(vocab_size, k))
    if max_iter < 1:
        raise InvalidParameterError(
            'max_iter must be >= 1, got {}'.format(max_iter))
    if not tol > 0:
        raise InvalidParameterError('tol must be positive, got {}'
                                    .format(tol))
    if n_iter < 0:
        raise InvalidParameterError(
            'n_iter must be non-negative, got {}'.format(n_iter))
    if n_partitions < 1:
        raise InvalidParameterError(
            'n_partitions must be >= 1, got {}'.format(n_partitions))

def spectral_lda(docs, alpha0, k, max_iter=500, tol=1e-6, n_iter=1,
                 randomized=True, oversampling=None, n_restarts=3,
                 l1_simplex_proj=False, random_state=None,
                 n_partitions=1, n_jobs=1, rtol=None):
    ''' Spectral LDA

    Perform Spectral LDA based on tensor CP Decomposition.

    PARAMETERS
    -----------
    docs : n_docs-by-vocab_size array or csr_matrix, path or collection
        Entire collection of word count vectors, or the path to it
        saved as partitioned array.
    alpha0 : float
        Sum of Dirichlet prior parameter.
    k : int
        Number of topics, 1 <= k < vocab_size.
    max_iter : int, optional
        Maximum number of ALS sweeps, 500 by default.
    tol : float, optional
        Convergence tolerance of ALS, 1e-6 by default.
    n_iter : int, optional
        Number of power iterations of the randomised eigendecomposition,
        >= 0, 1 by default.
    randomized : bool, optional
        Randomised eigendecomposition of M2 if True (default), ARPACK
        otherwise.
    oversampling : int, optional
        Extra columns of the randomised eigendecomposition.
    n_restarts : int, optional
        Number of restarts of ALS, 3 by default.
    l1_simplex_proj : bool, optional
        Euclidean projection of topic-word-distribution into the
        l1-simplex instead of clipping, False by default.
    random_state : None, int or numpy.random.Generator, optional
        Seed for the randomised eigendecomposition and ALS.
    n_partitions: int, optional
        Number of partitions of in-memory docs, >= 1, 1 by default.
    n_jobs: int, optional
        Number of partitions processed concurrently, 1 by default.
    rtol: float, optional
        Eigenvalues of M2 not above rtol times the largest one raise
        IllConditionedEigenvalueError, see `Whitener`.

    RETURNS
    -----------
    out : SpectralLDAResult
        `alpha` length-k fitted Dirichlet prior parameter, descending;
        `beta` vocab_size-by-k fitted topic-word distributions;
        `eigval_m2`, `eigvec_m2` top-k eigenpairs of scaled M2;
        `docs_m1` M1; `converged` and `residual` of ALS.
    '''
    # pylint: disable=too-many-arguments,too-many-locals
    collection = as_collection(docs, n_partitions=max(n_partitions, 1),
                               n_jobs=n_jobs)
    n_docs, vocab_size = collection.shape
    check_params(n_docs, vocab_size, alpha0, k, max_iter, tol, n_iter,
                 n_partitions)

    n_m1, n_e2, n_e3 = document_counts(collection)
    logger.info('# docs: %d\t# non-empty: %d\t# with >= 3 words: %d',
                n_docs, n_m1, n_e3)
    if n_e3 < 1:
        raise InvalidParameterError('empty corpus: no document has '
                                    'at least 3 words')
    logger.debug('# docs with >= 2 words: %d', n_e2)

    rng = np.random.default_rng(random_state)
    scale_m2, scale_m3 = moment_scales(alpha0)

    # Whiten scaled M3 with eigendecomposition of scaled M2
    docs_m1 = moment1(collection)
    m2_operator = M2Operator(collection, alpha0, docs_m1=docs_m1,
                             scale=scale_m2)
    if randomized:
        eigval_m2, eigvec_m2 = rand_svd(m2_operator, k, n_iter=n_iter,
                                        oversampling=oversampling,
                                        random_state=rng)
    else:
        eigval_m2, eigvec_m2 = exact_eigh(m2_operator, k, random_state=rng)

    whitener = Whitener(eigval_m2, eigvec_m2, rtol=rtol)
    m3_operator = M3Operator(collection, alpha0, docs_m1=docs_m1,
                             scale=scale_m3)
    whitened_m3 = whitener.whiten3(m3_operator)

    # Perform CP Decomposition on whitened M3
    als = cp_als(whitened_m3, k, tol=tol, max_iter=max_iter,
                 n_restarts=n_restarts, random_state=rng)
    logger.info('ALS: %d sweeps, converged %s, residual %.6g',
                als.n_iter, als.converged, als.residual)

    alpha, beta = recover(als.eigval, als.eigvec, whitener, alpha0,
                          l1_simplex_proj=l1_simplex_proj)
    return SpectralLDAResult(alpha, beta, eigval_m2, eigvec_m2, docs_m1,
                             als.converged, als.residual)
