"""Thin wrappers around the scipy eigensolvers, and conversion of operators to dense arrays."""
# Copyright (C) tnenv Developers, GNU GPLv3

import warnings

import numpy as np
import scipy.sparse.linalg

from . import misc

__all__ = ['matvec_to_array', 'speigs', 'speigsh']


def matvec_to_array(H):
    """transform an linear operator with a `matvec` method into a dense numpy array.

    Parameters
    ----------
    H : linear operator
        should have `shape`, `dtype` attributes and a `matvec` method.

    Returns
    -------
    H_dense : ndarray, shape ``(H.dim, H.dim)``
        a dense array version of `H`.
    """
    dim, dim2 = H.shape
    if dim != dim2:
        raise ValueError(f"H.shape not a square matrix: {H.shape!r}")
    X = np.zeros((dim, dim), H.dtype)
    v = np.zeros((dim), H.dtype)
    for i in range(dim):
        v[i] = 1
        X[:, i] = np.ravel(H.matvec(v))
        v[i] = 0
    return X


def _dense_eig(A, k, which, hermitian, return_eigenvectors):
    d = A.shape[0]
    if k > d:
        warnings.warn("trimming k of the eigensolver to the matrix dimension", stacklevel=3)
        k = d
    if isinstance(A, np.ndarray):
        Amat = A
    else:
        Amat = matvec_to_array(A)
    if hermitian:
        W, V = np.linalg.eigh(Amat)
    else:
        W, V = np.linalg.eig(Amat)
    keep = misc.argsort(W, which)[:k]
    if return_eigenvectors:
        return W[keep], V[:, keep]
    return W[keep]


def speigs(A, k, which='LM', return_eigenvectors=True, **kwargs):
    """Wrapper around :func:`scipy.sparse.linalg.eigs`, lifting the restriction ``k < rank(A)-1``.

    For ``k >= rank(A) - 1``, the operator is converted to a dense matrix
    and diagonalized with :func:`numpy.linalg.eig`.

    Parameters
    ----------
    A : MxM ndarray or like :class:`scipy.sparse.linalg.LinearOperator`
        the (square) linear operator for which the eigenvalues should be computed.
    k : int
        the number of eigenvalues to be computed.
    which : str
        Which eigenvalues to compute, see :func:`scipy.sparse.linalg.eigs`.
    return_eigenvectors : bool
        Whether to return the eigenvectors as well.
    **kwargs :
        Further keyword arguments directly given to :func:`scipy.sparse.linalg.eigs`

    Returns
    -------
    w : ndarray
        array of min(`k`, A.shape[0]) eigenvalues
    v : ndarray
        array of min(`k`, A.shape[0]) eigenvectors, ``v[:, i]`` is the `i`-th eigenvector.
        Only returned if `return_eigenvectors`.
    """
    d = A.shape[0]
    if A.shape != (d, d):
        raise ValueError("A.shape not a square matrix: " + str(A.shape))
    if k < d - 1:
        return scipy.sparse.linalg.eigs(A,
                                        k,
                                        which=which,
                                        return_eigenvectors=return_eigenvectors,
                                        **kwargs)
    return _dense_eig(A, k, which, False, return_eigenvectors)


def speigsh(A, k, which='LM', return_eigenvectors=True, **kwargs):
    """Wrapper around :func:`scipy.sparse.linalg.eigsh`, lifting the restriction ``k < rank(A)-1``.

    Parameters
    ----------
    A : MxM ndarray or like :class:`scipy.sparse.linalg.LinearOperator`
        The (square) hermitian linear operator for which the eigenvalues should be computed.
    k : int
        The number of eigenvalues to be computed.
    which : str
        Which eigenvalues to compute, see :func:`scipy.sparse.linalg.eigsh`.
    return_eigenvectors : bool
        Whether to return the eigenvectors as well.
    **kwargs :
        Further keyword arguments directly given to :func:`scipy.sparse.linalg.eigsh`.

    Returns
    -------
    w : ndarray
        Array of min(`k`, A.shape[0]) eigenvalues.
    v : ndarray
        Array of min(`k`, A.shape[0]) eigenvectors, ``v[:, i]`` is the `i`-th eigenvector.
        Only returned if `return_eigenvectors`.
    """
    d = A.shape[0]
    if A.shape != (d, d):
        raise ValueError("A.shape not a square matrix: " + str(A.shape))
    if k < d - 1:
        return scipy.sparse.linalg.eigsh(A,
                                         k,
                                         which=which,
                                         return_eigenvectors=return_eigenvectors,
                                         **kwargs)
    return _dense_eig(A, k, which, True, return_eigenvectors)
