''' Exceptions raised by Spectral LDA

Input validation failures raise `InvalidParameterError`, which is also
a `ValueError`. A non-positive eigenvalue met while whitening raises
`NonPositiveEigenvalueError`, which carries the offending eigenvalue.
Its subclass `IllConditionedEigenvalueError` flags a negligible one.
'''


class SpectralLDAError(Exception):
    ''' Base class of all Spectral LDA errors '''


class InvalidParameterError(SpectralLDAError, ValueError):
    ''' Invalid input parameters, rejected before the computation '''


class NonPositiveEigenvalueError(SpectralLDAError, ArithmeticError):
    ''' Retained eigenvalue of M2 is zero or negative

    ATTRIBUTES
    -----------
    index : int
        Position of the eigenvalue among the retained top-k ones.
    eigval : float
        The offending eigenvalue.
    '''
    def __init__(self, index, eigval, message=None):
        self.index = index
        self.eigval = eigval
        if message is None:
            message = ('eigenvalue #{} of M2 is {:.6g}, not strictly '
                       'positive; try a smaller k'.format(index, eigval))
        super().__init__(message)


class IllConditionedEigenvalueError(NonPositiveEigenvalueError):
    ''' Retained eigenvalue of M2 is negligible next to the largest one

    Whitening would scale its direction by 1 / sqrt(eigval).
    `threshold` is the smallest eigenvalue accepted.
    '''
    def __init__(self, index, eigval, threshold):
        self.threshold = threshold
        super().__init__(
            index, eigval,
            'eigenvalue #{} of M2 is {:.6g}, below the threshold {:.6g} '
            'set by the largest one; try a smaller k'
            .format(index, eigval, threshold))
