''' Whitening with the top eigenpairs of M2

With eigenpairs (s, U) of scaled M2, W = U diag(1 / sqrt(s)) whitens it,
i.e. W^T M2 W = I. Unwhitening maps back with U diag(sqrt(s)).
'''
import numpy as np
from errors import IllConditionedEigenvalueError, NonPositiveEigenvalueError


def default_rtol(vocab_size):
    ''' Relative eigenvalue threshold for a vocab_size-dim M2 '''
    return 10 * np.finfo(np.float64).eps * vocab_size


class Whitener:
    ''' Whitening and unwhitening maps

    PARAMETERS
    -----------
    eigval : length-k array
        Top k eigenvalues of scaled M2, all strictly positive.
    eigvec : vocab_size-by-k array
        Corresponding eigenvectors.
    rtol : float, optional
        Eigenvalues not above rtol times the largest one are rejected.
        10 * machine epsilon * vocab_size by default.
    '''
    def __init__(self, eigval, eigvec, rtol=None):
        eigval = np.asarray(eigval, dtype=np.float64)
        eigvec = np.asarray(eigvec, dtype=np.float64)
        assert eigval.ndim == 1 and eigvec.shape[1] == len(eigval)
        if rtol is None:
            rtol = default_rtol(eigvec.shape[0])

        for index, value in enumerate(eigval):
            if not value > 0:
                raise NonPositiveEigenvalueError(index, value)
        threshold = rtol * np.max(eigval) if len(eigval) > 0 else 0.0
        for index, value in enumerate(eigval):
            if value <= threshold:
                raise IllConditionedEigenvalueError(index, value, threshold)

        self.eigval = eigval
        self.eigvec = eigvec
        self.whn = eigvec / np.sqrt(eigval)
        self.unwhn = eigvec * np.sqrt(eigval)

    @property
    def rank(self):
        ''' Dimension k of the whitened space '''
        return len(self.eigval)

    def whiten(self, vecs):
        ''' Map vocab_size-dim vectors (columns) to the whitened space '''
        return self.whn.T.dot(vecs)

    def unwhiten(self, vecs):
        ''' Map whitened k-dim vectors (columns) back to vocab_size-dim '''
        return self.unwhn.dot(vecs)

    def whiten_m2(self, m2_operator):
        ''' Return W^T M2 W, the identity up to numerical error '''
        return self.whn.T.dot(m2_operator.apply(self.whn))

    def whiten3(self, m3_operator):
        ''' Return M3(W, W, W) unfolded as k-by-(k ** 2) '''
        whitened = m3_operator.contract(self.whn)
        assert whitened.shape == (self.rank, self.rank ** 2)
        return whitened
