''' Projection onto the l1-Simplex

Project a given vector, or every column of a matrix, onto the l1-Simplex
{x >= 0, sum(x) = l1_simplex_boundary} with minimal shift measured by
the l2-norm.

Example:

    proj_vec, theta = proj_l1_simplex(vec, l1_simplex_boundary)
    proj_beta, thetas = proj_l1_simplex(beta, 1.0)


REFERENCE
----------

    Duchi, John, Efficient Projections onto the l1-Ball for Learning in High Dimensions.

'''

import numpy as np


def proj_l1_simplex(vec, l1_simplex_boundary=1.0):
    ''' Project a vector or the columns of a matrix onto the l1-Simplex

    PARAMETERS
    -----------
    vec : 1d or 2d array
        Input vector, or matrix whose columns are projected.
    l1_simplex_boundary : float, optional
        Value of the l1-norm of the projection, 1 by default.

    RETURNS
    -----------
    out : array of the same shape as vec
        Projected vector or matrix.
    theta : float or 1d array
        Shift as computed by the Duchi algorithm, one per column
        for a matrix.
    '''
    vec = np.asarray(vec, dtype=np.float64)
    assert vec.ndim in (1, 2) and vec.shape[0] >= 1
    assert l1_simplex_boundary > 0

    cols = vec if vec.ndim == 2 else vec[:, np.newaxis]
    n_rows = cols.shape[0]

    # Sort every column in descending order
    cols_sorted = -np.sort(-cols, axis=0)
    ranks = np.arange(1, n_rows + 1)[:, np.newaxis]
    cols_shifted = (cols_sorted
                    - (cols_sorted.cumsum(axis=0) - l1_simplex_boundary)
                    / ranks)

    # Largest rank with positive shifted value, per column
    rho = n_rows - np.argmax((cols_shifted > 0)[::-1], axis=0)
    theta = ((np.take_along_axis(cols_sorted.cumsum(axis=0),
                                 rho[np.newaxis, :] - 1, axis=0)[0]
              - l1_simplex_boundary) / rho)

    projected = np.maximum(cols - theta, 0)
    if vec.ndim == 1:
        return projected[:, 0], theta[0]
    return projected, theta
