''' Test Randomised eigendecomposition for M2 '''

import numpy as np
import pytest
import scipy.linalg
import scipy.sparse.linalg
from collection import LocalCollection
from cumulants import M2Operator, moment_scales
from errors import InvalidParameterError
from rand_svd import rand_svd, exact_eigh, sketch_size
from test_cumulants import simulate_word_count_vectors


class DenseOperator:
    ''' Symmetric matrix exposing the operator interface '''
    def __init__(self, mat):
        self.mat = mat
        self.shape = mat.shape
        self.n_applications = 0

    def apply(self, test_x):
        self.n_applications += 1
        return self.mat.dot(test_x)


def planted_matrix(eigval, vocab_size, rng):
    ''' Symmetric matrix with the given non-zero spectrum '''
    basis, _ = np.linalg.qr(rng.standard_normal((vocab_size, len(eigval))))
    return basis.dot(np.diag(eigval)).dot(basis.T), basis

def test_rand_svd():
    ''' Simple test cases '''
    # pylint: disable=too-many-locals
    gen_alpha = [10, 5, 2]
    gen_k = len(gen_alpha)

    vocab_size = 10
    n_docs = 2000

    rng = np.random.default_rng(0)
    gen_beta = rng.random((vocab_size, gen_k))
    gen_beta /= gen_beta.sum(axis=0)

    docs = simulate_word_count_vectors(gen_alpha, gen_beta, n_docs, 200, 400,
                                       rng=rng)

    for n_partitions in [1, 3]:
        k = gen_k
        alpha0 = np.sum(gen_alpha[:k])
        scale_m2, _ = moment_scales(alpha0)
        m2_operator = M2Operator(LocalCollection(docs,
                                                 n_partitions=n_partitions),
                                 alpha0, scale=scale_m2)
        eigval_m2, eigvec_m2 = rand_svd(m2_operator, k, n_iter=3,
                                        random_state=1)

        scaled_m2 = (gen_beta[:, :k].dot(np.diag(gen_alpha[:k]))
                     .dot(gen_beta[:, :k].T))
        svd_u, svd_s, _ = scipy.linalg.svd(scaled_m2)

        assert np.linalg.norm(svd_s[:k] - eigval_m2) < 0.1
        for j in range(k):
            assert (min(np.linalg.norm(svd_u[:, j] - eigvec_m2[:, j]),
                        np.linalg.norm(svd_u[:, j] + eigvec_m2[:, j])) < 0.6)

def test_rand_svd_planted_spectrum():
    ''' Recover the exact top eigenpairs of a low-rank matrix '''
    rng = np.random.default_rng(2)
    eigval = np.array([5.0, 3.0, 1.0, 0.5])
    mat, basis = planted_matrix(eigval, 50, rng)

    operator = DenseOperator(mat)
    fitted_val, fitted_vec = rand_svd(operator, 3, n_iter=2, random_state=3)

    assert operator.n_applications == 2 * 2 + 1 + 1
    assert np.allclose(fitted_val, eigval[:3])
    assert np.allclose(np.linalg.norm(fitted_vec, axis=0), 1)
    for j in range(3):
        assert np.isclose(abs(fitted_vec[:, j].dot(basis[:, j])), 1)

def test_rand_svd_smallest_eigenvalue():
    ''' A rank-deficient matrix shows up as a zero last eigenvalue '''
    rng = np.random.default_rng(4)
    mat, _ = planted_matrix(np.array([2.0, 1.0]), 20, rng)

    eigval, _ = rand_svd(DenseOperator(mat), 3, n_iter=1, random_state=5)

    assert np.all(np.diff(eigval) <= 0)
    assert abs(eigval[-1]) < 1e-8

def test_rand_svd_seed():
    ''' Same seed, same result '''
    rng = np.random.default_rng(6)
    mat, _ = planted_matrix(np.array([4.0, 2.0, 1.0]), 30, rng)
    mat += 0.01 * np.eye(30)

    first = rand_svd(DenseOperator(mat), 2, n_iter=0, random_state=7)
    second = rand_svd(DenseOperator(mat), 2, n_iter=0, random_state=7)

    assert np.array_equal(first[0], second[0])
    assert np.array_equal(first[1], second[1])

def test_exact_eigh():
    ''' ARPACK alternative agrees with the dense eigendecomposition '''
    rng = np.random.default_rng(8)
    eigval = np.array([3.0, 2.0, 1.5])
    mat, _ = planted_matrix(eigval, 25, rng)
    mat += 0.01 * np.eye(25)

    class Operator(DenseOperator):
        ''' Dense operator with a LinearOperator view '''
        def as_linear_operator(self):
            return scipy.sparse.linalg.aslinearoperator(self.mat)

    fitted_val, _ = exact_eigh(Operator(mat), 2, random_state=9)
    assert np.allclose(fitted_val, eigval[:2] + 0.01)

def test_sketch_size():
    ''' Oversampling never exceeds the vocabulary size '''
    assert sketch_size(3, 100) == 6
    assert sketch_size(10, 100) == 14
    assert sketch_size(10, 12) == 12
    assert sketch_size(10, 100, oversampling=20) == 30
    assert sketch_size(10, 15, oversampling=20) == 15

def test_invalid_rank():
    ''' k outside [1, vocab_size] is rejected '''
    operator = DenseOperator(np.eye(5))
    for k in [0, 6]:
        with pytest.raises(InvalidParameterError):
            rand_svd(operator, k)
