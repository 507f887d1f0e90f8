"""Conversion between linear positions and multi-indices.

All containers in :mod:`tnenv` use the same, fixed convention: coordinates are 0-based and
the linear ordering is column-major, i.e. the *first* axis varies fastest
(as for ``order='F'`` in :func:`numpy.ravel_multi_index`).
For ``shape = (2, 3)``, the linear positions ``0, 1, 2, ...`` correspond to the multi-indices
``(0, 0), (1, 0), (0, 1), (1, 1), ...``.
"""
# Copyright (C) tnenv Developers, GNU GPLv3

import numpy as np

from ..tools.misc import DomainError

__all__ = ['to_indices', 'to_linear', 'strides']


def strides(shape):
    """Column-major strides of `shape`, i.e. ``to_linear(shape, idx) == idx @ strides(shape)``."""
    shape = np.asarray(shape, dtype=np.intp)
    res = np.ones(len(shape), dtype=np.intp)
    if len(shape) > 1:
        res[1:] = np.cumprod(shape[:-1])
    return res


def to_indices(shape, linear):
    """Convert linear positions into rows of multi-indices.

    Parameters
    ----------
    shape : tuple of int
        The shape of the (virtual) array.
    linear : int | 1D array_like of int
        Linear, column-major positions in ``range(prod(shape))``.

    Returns
    -------
    indices : 2D ndarray, shape ``(len(linear), len(shape))``
        One multi-index per row.

    Raises
    ------
    DomainError
        If any of the linear positions is out of bounds.
    """
    shape = tuple(int(s) for s in shape)
    linear = np.atleast_1d(np.asarray(linear, dtype=np.intp))
    if linear.ndim != 1:
        raise DomainError("expected a 1D array of linear positions")
    size = int(np.prod(shape, dtype=np.intp))
    if len(linear) == 0:
        return np.zeros((0, len(shape)), dtype=np.intp)
    if np.any(linear < 0) or np.any(linear >= size):
        raise DomainError(f"linear positions out of bounds for shape {shape!r}")
    if len(shape) == 0:
        return np.zeros((len(linear), 0), dtype=np.intp)
    return np.stack(np.unravel_index(linear, shape, order='F'), axis=1).astype(np.intp)


def to_linear(shape, indices):
    """Convert rows of multi-indices into linear positions; inverse of :func:`to_indices`.

    Parameters
    ----------
    shape : tuple of int
        The shape of the (virtual) array.
    indices : 2D array_like of int, shape ``(n, len(shape))``
        One multi-index per row. A 1D array is interpreted as a single multi-index.

    Returns
    -------
    linear : 1D ndarray of int, length ``n``
        The column-major linear positions.

    Raises
    ------
    DomainError
        If any coordinate is negative or exceeds its axis bound,
        or if the number of columns does not match the rank.
    """
    shape = tuple(int(s) for s in shape)
    indices = np.asarray(indices, dtype=np.intp)
    if indices.ndim == 1:
        indices = indices.reshape(1, -1) if len(indices) > 0 or len(shape) == 0 else \
            indices.reshape(0, len(shape))
    if indices.ndim != 2 or indices.shape[1] != len(shape):
        raise DomainError(f"indices with shape {indices.shape!r} don't fit rank {len(shape):d}")
    if indices.shape[0] == 0:
        return np.zeros(0, dtype=np.intp)
    if np.any(indices < 0) or np.any(indices >= np.array(shape, dtype=np.intp)):
        raise DomainError(f"indices out of bounds for shape {shape!r}")
    return indices @ strides(shape)
