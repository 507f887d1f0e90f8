"""Adapters between tensors and the flat vectors used by iterative solvers.

The Krylov solvers of :mod:`scipy.sparse.linalg` (and :mod:`~tnenv.linalg.krylov_based`)
only need the action of a linear operator on a flat 1D numpy array, a `matvec`.
Here we define how to convert the structural types that we solve for
(numpy arrays, :class:`~tnenv.linalg.sparse_tensor.SparseTensor`, numbers and lists of those)
to and from such flat arrays with :func:`vectorize` and :func:`devectorize`, and wrap
operators acting on the structural types into :class:`scipy.sparse.linalg.LinearOperator`.

An operator `A` can be given either as a callable ``A(x)``, as a matrix acting on the flattened
vectors (:class:`numpy.ndarray`, a scipy sparse matrix or a scipy `LinearOperator`),
or as an object supporting ``A @ x``. Similarly, a preconditioner `M` is a callable
representing the action of ``M^{-1}``, a matrix, or an object with a ``M.solve(x)`` method
representing the left division ``M \\ x``.
"""
# Copyright (C) tnenv Developers, GNU GPLv3

import numbers

import numpy as np
import scipy.sparse
import scipy.sparse.linalg
from scipy.sparse.linalg import LinearOperator as ScipyLinearOperator

from ..tools.misc import DimensionError
from .coordinates import to_indices
from .sparse_tensor import SparseTensor, tensorprod

__all__ = [
    'vectorize', 'devectorize', 'apply_operator', 'apply_inverse', 'FlatLinearOperator',
    'FlatPreconditioner', 'ShiftedLinearOperator'
]


def _sparse_blocks(x):
    """All blocks of a :class:`SparseTensor` in column-major order, structural zeros included."""
    blocks = x.to_dense(merge=False)
    return [blocks[tuple(idx)] for idx in to_indices(x.shape, np.arange(x.size))]


def vectorize(x):
    """Convert `x` into a flat 1D numpy array.

    Parameters
    ----------
    x : ndarray | :class:`~tnenv.linalg.sparse_tensor.SparseTensor` | number | list
        The structural value to be flattened.
        For a list (or tuple), the flattened entries are concatenated.

    Returns
    -------
    vec : 1D ndarray
        The flat data of `x`. For a :class:`SparseTensor`, this includes the structural zeros.
    """
    if isinstance(x, SparseTensor):
        if x.legs is None and not x._has_blocks():
            return x.to_dense().ravel(order='F')
        flat = [x.backend.block_to_flat(b) for b in _sparse_blocks(x)]
        if len(flat) == 0:
            return np.zeros(0, dtype=x.dtype)
        return np.concatenate(flat)
    if isinstance(x, np.ndarray):
        return x.ravel(order='F')
    if isinstance(x, numbers.Number):
        return np.array([x])
    if isinstance(x, (list, tuple)):
        if len(x) == 0:
            return np.zeros(0)
        return np.concatenate([vectorize(xi) for xi in x])
    raise TypeError(f"can't vectorize object of type {type(x).__name__}")


def devectorize(vec, like):
    """Inverse of :func:`vectorize`, with the structure taken from `like`.

    Parameters
    ----------
    vec : 1D ndarray
        Flat data as returned by :func:`vectorize`.
    like : ndarray | :class:`~tnenv.linalg.sparse_tensor.SparseTensor` | number | list
        Reference of the same structural type and shape; only its shape metadata is used.

    Returns
    -------
    x :
        Same structural type as `like`, with the entries of `vec`.
        A :class:`SparseTensor` stores only the non-zero entries (or blocks) of `vec`.
    """
    vec = np.asarray(vec)
    if isinstance(like, (list, tuple)):
        res = []
        start = 0
        for item in like:
            size = len(vectorize(item))
            res.append(devectorize(vec[start:start + size], item))
            start += size
        if start != len(vec):
            raise DimensionError(f"vector of length {len(vec):d} for a structure of {start:d}")
        return type(like)(res)
    if isinstance(like, SparseTensor):
        return _devectorize_sparse(vec, like)
    if isinstance(like, np.ndarray):
        if vec.size != like.size:
            raise DimensionError(f"vector of length {vec.size:d} for shape {like.shape!r}")
        return vec.reshape(like.shape, order='F')
    if isinstance(like, numbers.Number):
        if vec.size != 1:
            raise DimensionError(f"vector of length {vec.size:d} for a number")
        return vec[0]
    raise TypeError(f"can't devectorize into object of type {type(like).__name__}")


def _devectorize_sparse(vec, like):
    backend = like.backend
    if like.legs is None and not like._has_blocks():
        if vec.size != like.size:
            raise DimensionError(f"vector of length {vec.size:d} for shape {like.shape!r}")
        array = vec.reshape(like.shape, order='F')
        nonzero = np.nonzero(array.ravel(order='F'))[0]
        indices = to_indices(like.shape, nonzero)
        values = list(array.ravel(order='F')[nonzero])
        return SparseTensor(like.shape, indices, values, vec.dtype, backend=backend)
    indices, values = [], []
    start = 0
    all_indices = to_indices(like.shape, np.arange(like.size))
    for idx, block in zip(all_indices, _sparse_blocks(like)):
        shape = backend.block_shape(block)
        size = int(np.prod(shape, dtype=np.intp))
        piece = vec[start:start + size]
        start += size
        if np.any(piece != 0):
            indices.append(idx)
            values.append(backend.block_from_flat(piece, shape))
    if start != len(vec):
        raise DimensionError(f"vector of length {len(vec):d} for a structure of {start:d}")
    legs = None if like.legs is None else [list(l) for l in like.legs]
    indices = np.array(indices, dtype=np.intp).reshape(len(values), like.rank)
    return SparseTensor(like.shape, indices, values, vec.dtype, legs, backend)


def _acts_on_flat(A):
    return isinstance(A, (np.ndarray, ScipyLinearOperator)) or scipy.sparse.issparse(A)


def apply_operator(A, x):
    """Apply the operator `A` to the structural value `x`."""
    if _acts_on_flat(A):
        return devectorize(A @ vectorize(x), x)
    if isinstance(A, SparseTensor) and isinstance(x, SparseTensor):
        # contract the trailing axes of `A` with all axes of `x`
        axes_A = list(range(A.rank - x.rank, A.rank))
        return tensorprod(A, x, axes_A, list(range(x.rank)), densify=False)
    if callable(A):
        return A(x)
    if hasattr(A, '__matmul__'):
        return A @ x
    return A * x


def apply_inverse(M, x):
    """Apply the inverse of the preconditioner `M` to the structural value `x`."""
    if isinstance(M, ScipyLinearOperator):
        # scipy convention: the operator already represents the inverse
        return devectorize(M @ vectorize(x), x)
    if callable(M):
        return M(x)
    if isinstance(M, np.ndarray):
        return devectorize(np.linalg.solve(M, vectorize(x)), x)
    if scipy.sparse.issparse(M):
        return devectorize(scipy.sparse.linalg.spsolve(M.tocsc(), vectorize(x)), x)
    if hasattr(M, 'solve'):
        return M.solve(x)
    raise TypeError(f"can't use object of type {type(M).__name__} as preconditioner")


def _operator_dtype(vec, *ops):
    dtypes = [vec.dtype, np.float32]
    for op in ops:
        dtype = getattr(op, 'dtype', None)
        if dtype is not None:
            dtypes.append(dtype)
    return np.result_type(*dtypes)


class FlatLinearOperator(ScipyLinearOperator):
    """Square linear operator acting on flat numpy arrays, based on an operator `A` acting on
    structural values like `like`.

    Parameters
    ----------
    A : callable | ndarray | LinearOperator | object supporting ``A @ x``
        The operator; has to be linear and to return values of the same structure as `like`.
    like :
        A structural value that `A` can act on, see :func:`vectorize`.
    dtype :
        The numpy dtype of the operator. Defaults to the common type of `like` and `A`.

    Attributes
    ----------
    A :
        The wrapped operator.
    like :
        The reference structure used for :func:`devectorize`.
    matvec_count : int
        The number of times `A` was applied.
    """
    def __init__(self, A, like, dtype=None):
        self.A = A
        self.like = like
        vec = vectorize(like)
        if dtype is None:
            dtype = _operator_dtype(vec, A)
        self.matvec_count = 0
        ScipyLinearOperator.__init__(self, dtype=dtype, shape=(vec.size, vec.size))

    @classmethod
    def from_guess(cls, A, guess, dtype=None):
        """Create a :class:`FlatLinearOperator` and the flat version of the `guess`.

        Returns
        -------
        op : :class:`FlatLinearOperator`
            The operator acting on flat vectors of the structure of `guess`.
        guess_flat : 1D ndarray
            The flat version of `guess`, cast to the operator's dtype.
        """
        op = cls(A, guess, dtype)
        return op, vectorize(guess).astype(op.dtype, copy=False)

    def _matvec(self, vec):
        vec = np.asarray(vec)
        if vec.ndim != 1:  # convert Nx1 matrix to vector
            vec = np.squeeze(vec, axis=1)
        x = devectorize(vec, self.like)
        y = apply_operator(self.A, x)
        self.matvec_count += 1
        return vectorize(y)

    def flat_to_structure(self, vec):
        """Convert a flat array back to the structure of :attr:`like`."""
        return devectorize(vec, self.like)


class FlatPreconditioner(ScipyLinearOperator):
    """Flat version of the preconditioner ``M = M1 M2``, i.e. applies ``M2^{-1} M1^{-1}``.

    As expected by :mod:`scipy.sparse.linalg`, this operator approximates the *inverse* of the
    linear operator to be solved.

    Parameters
    ----------
    Ms : list
        The preconditioners ``[M1, M2, ...]``; ``None`` entries are ignored.
    like :
        A structural value that the preconditioners can act on.
    dtype :
        The numpy dtype of the operator.

    Attributes
    ----------
    nonfinite : bool
        Whether any application so far produced non-finite values,
        indicating an ill-conditioned preconditioner.
    """
    def __init__(self, Ms, like, dtype=None):
        self.Ms = [M for M in Ms if M is not None]
        self.like = like
        vec = vectorize(like)
        if dtype is None:
            dtype = _operator_dtype(vec, *self.Ms)
        self.nonfinite = False
        ScipyLinearOperator.__init__(self, dtype=dtype, shape=(vec.size, vec.size))

    def _matvec(self, vec):
        vec = np.asarray(vec)
        if vec.ndim != 1:
            vec = np.squeeze(vec, axis=1)
        x = devectorize(vec, self.like)
        for M in self.Ms:
            x = apply_inverse(M, x)
        res = vectorize(x)
        if not np.all(np.isfinite(res)):
            self.nonfinite = True
        return res


class ShiftedLinearOperator(ScipyLinearOperator):
    """Flat linear operator ``factor * orig + shift * identity``.

    Parameters
    ----------
    orig : LinearOperator
        The original operator acting on flat vectors.
    shift : float | complex
        The prefactor of the identity.
    factor : float | complex
        The prefactor of `orig`.
    """
    def __init__(self, orig, shift, factor=1.):
        self.orig = orig
        self.shift = shift
        self.factor = factor
        dtype = np.result_type(orig.dtype, np.asarray(shift).dtype, np.asarray(factor).dtype)
        ScipyLinearOperator.__init__(self, dtype=dtype, shape=orig.shape)

    def _matvec(self, vec):
        vec = np.ravel(vec)
        return self.factor * self.orig.matvec(vec) + self.shift * vec
