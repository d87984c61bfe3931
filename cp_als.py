''' Symmetric CP Decomposition by Alternating Least Squares

Decompose a symmetric k-by-k-by-k tensor T into

    T ~ sum_i eigval[i] eigvec[:, i] (x) eigvec[:, i] (x) eigvec[:, i]

The three modes are the three roles of one factor matrix. They start
equal and are updated in turn by the closed-form least squares solution
of the mode with the two others fixed. The shared factor is read back
per column from the pair of modes that agree.

Example:

    result = cp_als(whitened_m3, k, tol=1e-6, max_iter=500, random_state=0)
    eigval, eigvec = result.eigval, result.eigvec


REFERENCE
-----------
    Kolda, Bader, Tensor Decompositions and Applications, 2009.
    Anandkumar et al., Tensor Decompositions for Learning Latent
    Variable Models, 2014.

'''
import logging
from collections import namedtuple
import numpy as np
import scipy.linalg
import tensorly as tl
from tensorly.tenalg import khatri_rao
from errors import InvalidParameterError

tl.set_backend('numpy')

logger = logging.getLogger(__name__)

ALSResult = namedtuple('ALSResult', ['eigval', 'eigvec', 'converged',
                                     'n_iter', 'residual',
                                     'residual_history'])

INITS = ('power', 'random')


def residual_norm(tensor, weights, factors):
    ''' Frobenius norm of the tensor minus its CP reconstruction '''
    return tl.norm(tensor - tl.cp_to_tensor((weights, factors)), 2)

def random_unit_columns(k, rng):
    ''' k-by-k matrix of random unit-norm columns '''
    factor = rng.standard_normal((k, k))
    return factor / np.linalg.norm(factor, axis=0)

def power_method_init(tensor, rng, n_probes=10, n_power_iter=20):
    ''' Initial factor by the tensor power method with deflation

    For each component, `n_probes` random unit vectors are iterated
    theta <- T(I, theta, theta) / |T(I, theta, theta)|, the probe leaving
    the smallest residual after deflation is kept, and T is deflated.

    PARAMETERS
    -----------
    tensor : k-by-k-by-k array
        Symmetric tensor.
    rng : numpy.random.Generator
        Source of the random probes.
    n_probes : int, optional
        Number of random probes per component.
    n_power_iter : int, optional
        Number of power iterations per probe.

    RETURNS
    -----------
    factor : k-by-k array
        Unit-norm columns approximating the components of T.
    '''
    k = tensor.shape[0]
    deflated = tensor.copy()
    factor = np.zeros((k, k))

    for j in range(k):
        best = None
        for _ in range(n_probes):
            theta = rng.standard_normal(k)
            theta /= np.linalg.norm(theta)
            for _ in range(n_power_iter):
                update = np.einsum('ijk,j,k->i', deflated, theta, theta)
                norm = np.linalg.norm(update)
                if norm == 0:
                    break
                theta = update / norm

            val = np.einsum('ijk,i,j,k->', deflated, theta, theta, theta)
            residual = residual_norm(deflated, np.array([val]),
                                     [theta[:, np.newaxis]] * 3)
            if best is None or residual < best[0]:
                best = (residual, val, theta)

        _, val, theta = best
        factor[:, j] = theta
        deflated = deflated - tl.cp_to_tensor((np.array([val]),
                                               [theta[:, np.newaxis]] * 3))

    return factor

def shared_factor(factors):
    ''' Return unique factor matrix with correct signs

    For the j-th component, when two of the modes agree the third one
    carries the sign of the rank-1 term, so its column is taken.
    '''
    _, k = factors[0].shape
    factor = np.zeros_like(factors[0])

    for j in range(k):
        diff_ = [np.linalg.norm(factors[1][:, j] - factors[2][:, j]),
                 np.linalg.norm(factors[0][:, j] - factors[2][:, j]),
                 np.linalg.norm(factors[0][:, j] - factors[1][:, j])]
        factor[:, j] = factors[int(np.argmin(diff_))][:, j]

    return factor

def fit_weights(tensor, factor):
    ''' Least squares weights of the rank-1 terms of a shared factor

    Solves the normal equations ((F^T F) ** 3) w = T(f_i, f_i, f_i).
    '''
    gram = factor.T.dot(factor) ** 3
    rhs = np.einsum('ijk,ia,ja,ka->a', tensor, factor, factor, factor)
    weights, *_ = scipy.linalg.lstsq(gram, rhs)
    return weights

def als_sweeps(tensor, factor, tol, max_iter):
    ''' Run ALS sweeps from a symmetric initial factor

    RETURNS
    -----------
    weights : length-k array
    factors : list of three k-by-k arrays
        Unit-norm columns for every mode.
    history : list of float
        Residual before the first sweep and after every sweep.
    n_iter : int
        Number of sweeps performed.
    converged : bool
    '''
    k = tensor.shape[0]
    factors = [factor.copy() for _ in range(3)]
    weights = np.ones(k)
    norm_tensor = tl.norm(tensor, 2)

    history = [residual_norm(tensor, weights, factors)]
    converged = False
    n_iter = 0
    while n_iter < max_iter:
        n_iter += 1
        for mode in range(3):
            gram = np.ones((k, k))
            for other in range(3):
                if other != mode:
                    gram *= factors[other].T.dot(factors[other])

            updated = (tl.unfold(tensor, mode)
                       .dot(khatri_rao(factors, skip_matrix=mode))
                       .dot(scipy.linalg.pinv(gram)))
            weights = np.linalg.norm(updated, axis=0)
            factors[mode] = updated / np.where(weights > 0, weights, 1)

        history.append(residual_norm(tensor, weights, factors))
        logger.debug('sweep %d, residual %.6g', n_iter, history[-1])

        decrease = history[-2] - history[-1]
        if (history[-1] <= tol * norm_tensor
                or decrease <= tol * history[-2]):
            converged = True
            break

    return weights, factors, history, n_iter, converged

def cp_als(tensor, k, tol=1e-6, max_iter=500, n_restarts=3, init='power',
           n_probes=10, n_power_iter=20, random_state=None):
    ''' Symmetric CP Decomposition by ALS with random restarts

    PARAMETERS
    -----------
    tensor : k-by-(k ** 2) or k-by-k-by-k array
        Symmetric tensor, e.g. whitened M3.
    k : int
        Number of rank-1 terms, >= 1.
    tol : float, optional
        Tolerance on the relative decrease of the residual, 1e-6
        by default.
    max_iter : int, optional
        Maximum number of sweeps per restart, 500 by default.
    n_restarts : int, optional
        Number of restarts, 3 by default. The one with the smallest
        residual is returned.
    init : str, optional
        'power' for the tensor power method, or 'random'.
    n_probes : int, optional
        Random probes per component of the power method.
    n_power_iter : int, optional
        Iterations per probe of the power method.
    random_state : None, int or numpy.random.Generator, optional
        Seed of the initialisations.

    RETURNS
    -----------
    out : ALSResult
        `eigval` length-k non-negative weights in descending order,
        `eigvec` k-by-k unit-norm directions, `converged` False if
        `max_iter` was reached, `n_iter` number of sweeps, `residual`
        Frobenius norm of T minus the reconstruction and
        `residual_history` the residuals along the sweeps.
    '''
    # pylint: disable=too-many-arguments,too-many-locals
    if k < 1:
        raise InvalidParameterError('k must be >= 1, got {}'.format(k))
    if max_iter < 1:
        raise InvalidParameterError(
            'max_iter must be >= 1, got {}'.format(max_iter))
    if not tol > 0:
        raise InvalidParameterError('tol must be positive, got {}'
                                    .format(tol))
    if n_restarts < 1:
        raise InvalidParameterError(
            'n_restarts must be >= 1, got {}'.format(n_restarts))
    if init not in INITS:
        raise InvalidParameterError('init must be one of {}, got {!r}'
                                    .format(INITS, init))

    tensor = np.asarray(tensor, dtype=np.float64).reshape((k, k, k))
    rng = np.random.default_rng(random_state)

    best = None
    for restart in range(n_restarts):
        if init == 'power':
            factor = power_method_init(tensor, rng, n_probes, n_power_iter)
        else:
            factor = random_unit_columns(k, rng)

        _, factors, history, n_iter, converged = als_sweeps(
            tensor, factor, tol, max_iter)

        eigvec = shared_factor(factors)
        eigval = fit_weights(tensor, eigvec)
        # Odd order: the sign of a weight moves into its direction
        negative = eigval < 0
        eigval[negative] *= -1
        eigvec[:, negative] *= -1

        residual = residual_norm(tensor, eigval, [eigvec] * 3)
        logger.debug('restart %d: %d sweeps, converged %s, residual %.6g',
                     restart, n_iter, converged, residual)

        if best is None or residual < best.residual:
            best = ALSResult(eigval, eigvec, converged, n_iter,
                             residual, history)

    if not best.converged:
        logger.warning('ALS did not converge within %d sweeps, '
                       'residual %.6g', max_iter, best.residual)

    order = np.argsort(-best.eigval, kind='stable')
    return best._replace(eigval=best.eigval[order],
                         eigvec=best.eigvec[:, order])
