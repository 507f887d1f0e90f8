r"""Block-sparse tensors keyed by multi-indices.

A :class:`SparseTensor` of a given :attr:`~SparseTensor.shape` stores only some of its entries,
as rows of multi-indices in :attr:`~SparseTensor.indices` with a corresponding list of
:attr:`~SparseTensor.values`. All other positions are *structural zeros*.

The stored values can be plain numbers, or blocks (e.g. :class:`numpy.ndarray`) with one leg per
axis of the sparse tensor. An MPO tensor with virtual (channel) axes `wL`, `wR` and physical axes
`p`, `p*` is a typical example::

    |          p*
    |          |
    |   wL --(W)-- wR          W[a, 0, b, 0] is a block with legs (wl, p, wr, p*)
    |          |
    |          p

In the latter case, the leg dimension of the blocks at coordinate `c` of axis `ax` is
``legs[ax][c]``. This *leg space* is needed to materialize structural zeros with the correct
dimensions in :meth:`~SparseTensor.to_dense`.
It can be declared at construction; otherwise it is deduced from the stored blocks.

All element operations go through a :class:`~tnenv.linalg.backends.BlockBackend`,
such that the container itself never needs to know the concrete type of the elements.

Coordinates are 0-based; the linear order of positions is column-major,
see :mod:`~tnenv.linalg.coordinates`.
"""
# Copyright (C) tnenv Developers, GNU GPLv3

import numbers
import warnings

import numpy as np

from ..tools.misc import ArgumentError, DimensionError, DomainError, UnsupportedOperationWarning
from .backends import get_backend
from .coordinates import to_indices, to_linear

import logging
logger = logging.getLogger(__name__)

__all__ = ['SparseTensor', 'tensorprod', 'times', 'dot', 'cat']


class SparseTensor:
    """Block-sparse multi-dimensional array.

    Parameters
    ----------
    shape : tuple of int
        The shape of the tensor, i.e. the number of (block) coordinates per axis.
    indices : 2D array_like of int, shape ``(nnz, len(shape))``
        One multi-index per stored entry, without duplicates.
    values : list
        The stored elements, one per row of `indices`.
    dtype : None | np.dtype
        Declared number type of the elements. The actual :attr:`dtype` is the common type
        of this declared type and the stored values.
        If None, it is taken from the stored values, and defaults to ``np.float64`` if there
        are none.
    legs : None | list of list of {int | None}
        Declared leg dimensions of the blocks, ``legs[ax][c]`` for coordinate `c` of axis `ax`.
        If None, deduce it from the stored values.
    backend : None | :class:`~tnenv.linalg.backends.BlockBackend`
        The backend defining the operations on the elements.

    Attributes
    ----------
    shape : tuple of int
        The shape.
    indices : 2D ndarray of int
        The stored multi-indices, one per row.
    values : list
        The stored elements, same order as :attr:`indices`.
    dtype : np.dtype
        The number type of the elements.
    legs : None | list of list of {int | None}
        The leg dimensions of the blocks. None if the elements are plain numbers,
        or if the elements don't have one leg per axis.
    backend : :class:`~tnenv.linalg.backends.BlockBackend`
        The backend used for element operations.
    """

    # make numpy defer to our reflected operators, e.g. for ``ndarray + SparseTensor``
    __array_ufunc__ = None

    def __init__(self, shape, indices=None, values=None, dtype=None, legs=None, backend=None):
        if backend is None:
            backend = get_backend()
        self.backend = backend
        shape = tuple(int(s) for s in shape)
        if any(s < 0 for s in shape):
            raise ArgumentError(f"negative entries in shape {shape!r}")
        self.shape = shape
        rank = len(shape)
        if indices is None:
            if values is not None and len(values) > 0:
                raise ArgumentError("got values without indices")
            indices = np.zeros((0, rank), dtype=np.intp)
            values = []
        indices = np.array(indices, dtype=np.intp)
        if indices.ndim == 1 and indices.size == 0:
            indices = indices.reshape(0, rank)
        if indices.ndim != 2 or indices.shape[1] != rank:
            raise ArgumentError(f"indices of shape {indices.shape!r} don't fit rank {rank:d}")
        values = list(values)
        if len(values) != indices.shape[0]:
            raise ArgumentError(f"got {indices.shape[0]:d} indices but {len(values):d} values")
        if indices.shape[0] > 0:
            if np.any(indices < 0) or np.any(indices >= np.array(shape, dtype=np.intp)):
                raise ArgumentError(f"indices exceed the shape {shape!r}")
            linear = to_linear(shape, indices)
            if len(np.unique(linear)) != len(linear):
                raise ArgumentError("duplicate indices")
        self.indices = indices
        self.values = values
        self.dtype = backend.result_dtype(values)
        if dtype is not None:
            self.dtype = np.result_type(np.dtype(dtype), *([self.dtype] if values else []))
        if legs is not None:
            if len(legs) != rank or any(len(l) != n for l, n in zip(legs, shape)):
                raise ArgumentError("`legs` need one entry per coordinate of each axis")
            self.legs = [list(l) for l in legs]
            self._update_legs(self.indices, self.values)
        else:
            self.legs = None
            self._update_legs(self.indices, self.values)

    # constructors

    @classmethod
    def zeros(cls, shape, dtype=np.float64, legs=None, backend=None):
        """An empty tensor, without any stored entries."""
        return cls(shape, dtype=dtype, legs=legs, backend=backend)

    @classmethod
    def from_dense(cls, array, backend=None):
        """Store every entry of a numpy `array`, including the zeros."""
        array = np.asarray(array)
        indices = to_indices(array.shape, np.arange(array.size))
        values = list(array.ravel(order='F'))
        return cls(array.shape, indices, values, dtype=array.dtype, backend=backend)

    @classmethod
    def from_coordinates(cls, indices, values, shape=None, dtype=None, legs=None, backend=None):
        """Create a tensor from explicit multi-indices and values.

        Parameters
        ----------
        indices : array_like of int
            Either a 2D array with one multi-index per row, or a 1D array of coordinates of a
            rank-1 tensor.
        values : list | 1D ndarray | element
            The values, one per multi-index. A single value (or a list with a single value) is
            used for all `indices`. To use the same numpy block for all entries, wrap it in a
            list, since a 1D array is interpreted as a sequence of numbers.
        shape : None | tuple of int
            The shape. If None, use the smallest shape containing all `indices`.
        dtype, legs, backend :
            See :class:`SparseTensor`.
        """
        if backend is None:
            backend = get_backend()
        indices = np.asarray(indices, dtype=np.intp)
        if indices.ndim == 1:
            if indices.size == 0 and shape is not None:
                indices = indices.reshape(0, len(shape))
            else:
                indices = indices.reshape(-1, 1)
        if indices.ndim != 2:
            raise ArgumentError("expected a 2D array of indices")
        n = indices.shape[0]
        if isinstance(values, (list, tuple)) or (isinstance(values, np.ndarray)
                                                 and values.ndim == 1):
            values = list(values)
        else:
            values = [values]
        if len(values) == 1 and n != 1:
            values = [backend.block_copy(values[0]) for _ in range(n)]
        if len(values) != n:
            raise ArgumentError(f"got {n:d} indices but {len(values):d} values")
        if shape is None:
            if n == 0:
                raise ArgumentError("can't deduce the shape without any indices")
            if np.any(indices < 0):
                raise ArgumentError("negative indices")
            shape = tuple(int(s) + 1 for s in np.max(indices, axis=0))
        elif indices.shape[1] != len(shape):
            raise ArgumentError(f"indices with {indices.shape[1]:d} columns for shape {shape!r}")
        return cls(shape, indices, values, dtype=dtype, legs=legs, backend=backend)

    @classmethod
    def from_blocks(cls, blocks, dtype=None, legs=None, backend=None):
        """Create a tensor from a (nested list or object array) grid of blocks.

        ``None`` entries of `blocks` are structural zeros and not stored.
        """
        if isinstance(blocks, np.ndarray) and blocks.dtype == object:
            grid = blocks
        else:
            shape = []
            item = blocks
            while isinstance(item, (list, tuple)):
                shape.append(len(item))
                if len(item) == 0:
                    break
                item = item[0]
            grid = np.empty(shape, dtype=object)
            for idx in np.ndindex(*grid.shape):
                item = blocks
                for i in idx:
                    item = item[i]
                grid[idx] = item
        indices, values = [], []
        for idx in to_indices(grid.shape, np.arange(grid.size)):
            v = grid[tuple(idx)]
            if v is not None:
                indices.append(idx)
                values.append(v)
        indices = np.array(indices, dtype=np.intp).reshape(len(values), grid.ndim)
        return cls(grid.shape, indices, values, dtype=dtype, legs=legs, backend=backend)

    def copy(self):
        """Copy of `self`, including the stored blocks."""
        legs = None if self.legs is None else [list(l) for l in self.legs]
        values = [self.backend.block_copy(v) for v in self.values]
        return SparseTensor(self.shape, self.indices.copy(), values, self.dtype, legs,
                            self.backend)

    # properties

    @property
    def rank(self):
        """Number of axes."""
        return len(self.shape)

    ndim = rank

    @property
    def size(self):
        """Number of positions, stored or not."""
        return int(np.prod(self.shape, dtype=np.intp))

    @property
    def nnz(self):
        """Number of stored entries."""
        return len(self.values)

    @property
    def is_scalar(self):
        """Whether the tensor has a single position."""
        return self.size == 1

    @property
    def is_dense(self):
        """Whether every position is stored."""
        return self.nnz == self.size

    def iter_nonzero(self):
        """Iterate over ``(index, value)`` of the stored entries in storage order."""
        for idx, v in zip(self.indices, self.values):
            yield tuple(int(i) for i in idx), v

    def _lookup(self):
        """Dictionary ``{linear position: storage position}``."""
        return {int(lin): k for k, lin in enumerate(to_linear(self.shape, self.indices))}

    # leg spaces and structural zeros

    def _update_legs(self, indices, values):
        """Register the leg dimensions of new blocks stored at `indices`."""
        for idx, v in zip(indices, values):
            if not self.backend.is_block(v):
                continue
            dims = self.backend.block_shape(v)
            if len(dims) != self.rank:
                continue  # opaque element without one leg per axis
            if self.legs is None:
                self.legs = [[None] * n for n in self.shape]
            for ax, (c, d) in enumerate(zip(idx, dims)):
                if self.legs[ax][c] is None:
                    self.legs[ax][c] = int(d)

    def _zero_element(self, idx, missing=None):
        """Structural zero at multi-index `idx`.

        Leg dimensions which can't be deduced are set to 1 and `idx` gets appended to the list
        `missing`, if given.
        """
        if self.legs is None:
            return self.backend.zero_block((), self.dtype)
        dims = []
        for ax, c in enumerate(idx):
            d = self.legs[ax][c]
            if d is None:
                if missing is not None:
                    missing.append(tuple(int(i) for i in idx))
                d = 1
            dims.append(d)
        return self.backend.zero_block(tuple(dims), self.dtype)

    def zero_element(self, idx):
        """Structural zero at multi-index `idx`, warning if the leg dimensions are unknown."""
        missing = []
        res = self._zero_element(idx, missing)
        if missing:
            warnings.warn(f"can't deduce the leg dimensions for the structural zero at "
                          f"{missing[0]!r}", UnsupportedOperationWarning, stacklevel=2)
        return res

    def _has_blocks(self):
        return any(self.backend.is_block(v) for v in self.values)

    # shape operations

    def permute(self, order):
        """Permute the axes of `self` in place.

        Stored blocks with one leg per axis get their legs permuted correspondingly,
        such that ``self.to_dense()`` changes like a numpy transpose.

        Parameters
        ----------
        order : list of int
            The new order of the axes, i.e. the new axis `i` is the old axis ``order[i]``.

        Returns
        -------
        self
        """
        order = [int(o) for o in order]
        if sorted(order) != list(range(self.rank)):
            raise ArgumentError(f"{order!r} is not a permutation of {self.rank:d} axes")
        self.indices = self.indices[:, order]
        self.shape = tuple(self.shape[o] for o in order)
        if self.legs is not None:
            self.legs = [self.legs[o] for o in order]
            self.values = [
                self.backend.block_permute_axes(v, order) if self.backend.is_block(v) else v
                for v in self.values
            ]
        return self

    def transpose(self):
        """Transpose of a matrix, as a new tensor."""
        if self.rank != 2:
            raise DimensionError(f"transpose needs a rank-2 tensor, got rank {self.rank:d}")
        return self.copy().permute([1, 0])

    def reshape(self, new_shape):
        """Return a new tensor with the same (column-major ordered) entries in `new_shape`.

        One entry of `new_shape` may be ``-1``, as in :func:`numpy.reshape`.
        """
        new_shape = [int(s) for s in new_shape]
        if new_shape.count(-1) > 1:
            raise ArgumentError("can only infer one axis of the new shape")
        if -1 in new_shape:
            rest = int(np.prod([s for s in new_shape if s != -1], dtype=np.intp))
            if rest == 0 or self.size % rest != 0:
                raise ArgumentError(f"can't reshape {self.shape!r} into {new_shape!r}")
            new_shape[new_shape.index(-1)] = self.size // rest
        new_shape = tuple(new_shape)
        if int(np.prod(new_shape, dtype=np.intp)) != self.size:
            raise ArgumentError(f"can't reshape {self.shape!r} into {new_shape!r}: "
                                "different number of elements")
        indices = to_indices(new_shape, to_linear(self.shape, self.indices))
        values = [self.backend.block_copy(v) for v in self.values]
        return SparseTensor(new_shape, indices, values, self.dtype, backend=self.backend)

    def to_dense(self, merge=True):
        """Convert to a dense numpy array.

        Parameters
        ----------
        merge : bool
            Only relevant if the elements are blocks. If True, merge the blocks into one big
            numpy array, with the leg dimensions given by :attr:`legs`.
            If False, return a numpy object array of the blocks, with structural zeros filled in.

        Returns
        -------
        array : ndarray
            For plain numbers an array of shape :attr:`shape`.
        """
        if self.legs is None and not self._has_blocks():
            array = np.zeros(self.shape, dtype=self.dtype)
            if self.rank == 0:
                if self.nnz:
                    array[()] = self.values[0]
            elif self.nnz:
                array[tuple(self.indices.T)] = self.values
            return array
        if self.legs is None and self.nnz < self.size:
            warnings.warn("elements have no leg per axis: can't deduce the structure of the "
                          "structural zeros", UnsupportedOperationWarning, stacklevel=2)
        lookup = self._lookup()
        blocks = np.empty(self.shape, dtype=object)
        missing = []
        for lin, idx in enumerate(to_indices(self.shape, np.arange(self.size))):
            k = lookup.get(lin)
            if k is None:
                blocks[tuple(idx)] = self._zero_element(idx, missing)
            else:
                blocks[tuple(idx)] = self.values[k]
        if missing:
            warnings.warn(f"can't deduce the leg dimensions for the structural zero at "
                          f"{missing[0]!r}; best guess: 1", UnsupportedOperationWarning,
                          stacklevel=2)
        if not merge or self.legs is None:
            return blocks
        for idx in np.ndindex(*self.shape):
            dims = tuple(1 if self.legs[ax][c] is None else self.legs[ax][c]
                         for ax, c in enumerate(idx))
            if tuple(self.backend.block_shape(blocks[idx])) != dims:
                raise DimensionError(f"block at {idx!r} has shape "
                                     f"{self.backend.block_shape(blocks[idx])!r}, "
                                     f"incompatible with the leg dimensions {dims!r}")
        return _merge_blocks(blocks, 0)

    # arithmetic

    def _map_values(self, fct):
        legs = None if self.legs is None else [list(l) for l in self.legs]
        return SparseTensor(self.shape, self.indices.copy(), [fct(v) for v in self.values],
                            self.dtype, legs, self.backend)

    def __neg__(self):
        return self._map_values(lambda v: self.backend.block_mul(-1, v))

    def conj(self):
        """Complex conjugate of the stored values."""
        return self._map_values(self.backend.block_conj)

    def __add__(self, other):
        if isinstance(other, SparseTensor):
            return _add_sparse(self, other)
        if isinstance(other, np.ndarray):
            # for blocks, `other` needs the shape of the merged blocks
            dense = self.to_dense()
            if dense.shape != other.shape:
                raise DimensionError(f"can't add shapes {dense.shape!r} and {other.shape!r}")
            return dense + other
        if isinstance(other, numbers.Number) and other == 0:
            return self.copy()
        return NotImplemented

    __radd__ = __add__

    def __sub__(self, other):
        if isinstance(other, (SparseTensor, np.ndarray)):
            return self + (-other)
        if isinstance(other, numbers.Number) and other == 0:
            return self.copy()
        return NotImplemented

    def __rsub__(self, other):
        return (-self) + other

    def __mul__(self, other):
        if isinstance(other, SparseTensor):
            return times(self, other)
        if isinstance(other, numbers.Number):
            return self._map_values(lambda v: self.backend.block_mul(other, v))
        return NotImplemented

    def __rmul__(self, other):
        if isinstance(other, numbers.Number):
            return self._map_values(lambda v: self.backend.block_mul(other, v))
        return NotImplemented

    def __truediv__(self, other):
        if isinstance(other, numbers.Number):
            return self._map_values(lambda v: self.backend.block_mul(1. / other, v))
        return NotImplemented

    def __matmul__(self, other):
        if isinstance(other, SparseTensor):
            return self.matmul(other)
        return NotImplemented

    def times(self, other):
        """Element-wise product, see :func:`times`."""
        return times(self, other)

    def dot(self, other):
        """Inner product ``sum(conj(self) * other)``, see :func:`dot`."""
        return dot(self, other)

    def matmul(self, other, block_axes=None):
        """Matrix product of two rank-2 tensors.

        For each pair of stored entries ``self[i, k]`` and ``other[k, j]``, the product of the
        elements is accumulated into the entry ``[i, j]`` of the result.
        See :func:`tensorprod` for `block_axes`.
        """
        if self.rank != 2 or other.rank != 2:
            raise DimensionError(f"matmul needs rank-2 tensors, got {self.shape!r} and "
                                 f"{other.shape!r}")
        if self.shape[1] != other.shape[0]:
            raise DimensionError(f"inner dimensions of {self.shape!r} and {other.shape!r} "
                                 "don't match")
        return tensorprod(self, other, [1], [0], block_axes=block_axes, densify=False)

    def tensorprod(self, other, axes_self, axes_other, **kwargs):
        """Contract with `other`, see :func:`tensorprod`."""
        return tensorprod(self, other, axes_self, axes_other, **kwargs)

    def norm(self):
        """Frobenius norm; only stored values contribute."""
        return float(np.sqrt(sum(self.backend.block_norm(v)**2 for v in self.values)))

    def normalize(self):
        """Divide by the :meth:`norm` in place.

        For a tensor without (non-zero) stored values, this warns and leaves `self` unchanged.
        """
        norm = self.norm()
        if self.nnz == 0 or norm == 0.:
            warnings.warn("normalizing a tensor without non-zero entries",
                          UnsupportedOperationWarning,
                          stacklevel=2)
            return self
        self.values = [self.backend.block_mul(1. / norm, v) for v in self.values]
        return self

    # indexing

    def _parse_key(self, key, grow=False):
        """Convert an index `key` into one 1D array of coordinates per axis."""
        if not isinstance(key, tuple):
            key = (key, )
        n_ellipsis = sum(1 for k in key if k is Ellipsis)
        if n_ellipsis > 1:
            raise ArgumentError("only a single `...` allowed")
        if n_ellipsis == 1:
            i = [j for j, k in enumerate(key) if k is Ellipsis][0]
            key = key[:i] + (slice(None), ) * (self.rank - len(key) + 1) + key[i + 1:]
        if len(key) != self.rank:
            raise ArgumentError(f"got {len(key):d} selectors for rank {self.rank:d}")
        selectors = []
        all_int = True
        for k, n in zip(key, self.shape):
            if isinstance(k, slice):
                sel = np.arange(n)[k]
                all_int = False
            elif isinstance(k, (numbers.Integral, np.integer)) and not isinstance(k, bool):
                sel = np.array([int(k)], dtype=np.intp)
            else:
                all_int = False
                sel = np.asarray(k)
                if sel.dtype == np.bool_:
                    sel = np.nonzero(sel)[0]
                if sel.ndim != 1:
                    raise ArgumentError("selectors need to be integers, slices or 1D arrays")
                sel = sel.astype(np.intp)
            sel = np.where(sel < 0, sel + n, sel)
            if np.any(sel < 0) or (not grow and np.any(sel >= n)):
                raise DomainError(f"index out of bounds for axis of length {n:d}")
            if len(np.unique(sel)) != len(sel):
                raise ArgumentError("duplicate indices in a selector")
            selectors.append(sel)
        return selectors, all_int

    def _is_linear_key(self, key):
        if not isinstance(key, tuple):
            key = (key, )
        return self.rank > 1 and len(key) == 1 and key[0] is not Ellipsis

    def _parse_linear_key(self, key):
        if isinstance(key, tuple):
            key = key[0]
        if isinstance(key, (numbers.Integral, np.integer)):
            key = int(key) + self.size if key < 0 else int(key)
            return np.array([key], dtype=np.intp), True
        if isinstance(key, slice):
            return np.arange(self.size)[key], False
        positions = np.asarray(key, dtype=np.intp)
        if positions.ndim != 1:
            raise ArgumentError("linear selector needs to be 1D")
        positions = np.where(positions < 0, positions + self.size, positions)
        if len(np.unique(positions)) != len(positions):
            raise ArgumentError("duplicate indices in a selector")
        return positions, False

    def __getitem__(self, key):
        """Read entries.

        Each axis takes an integer, a slice, or a 1D array/list of integers without duplicates.
        If all selectors are integers, return the element (a structural zero if not stored).
        Otherwise, return a new :class:`SparseTensor` whose shape is given by the number of
        selected coordinates per axis; axes selected with an integer are kept with length 1.
        A single selector for a tensor of rank > 1 selects linear (column-major) positions.
        """
        if self._is_linear_key(key):
            positions, single = self._parse_linear_key(key)
            indices = to_indices(self.shape, positions)  # raises DomainError
            if single:
                return self._get_element(indices[0])
            lookup = self._lookup()
            lins = to_linear(self.shape, indices)
            new_idx, values = [], []
            for m, lin in enumerate(lins):
                k = lookup.get(int(lin))
                if k is not None:
                    new_idx.append([m])
                    values.append(self.values[k])
            return SparseTensor((len(positions), ), np.array(new_idx, dtype=np.intp).reshape(-1, 1),
                                values, self.dtype, backend=self.backend)
        selectors, all_int = self._parse_key(key)
        if all_int:
            return self._get_element([int(s[0]) for s in selectors])
        new_shape = tuple(len(s) for s in selectors)
        if self.nnz > 0:
            mapped = []
            for ax, sel in enumerate(selectors):
                m = -np.ones(self.shape[ax], dtype=np.intp)
                m[sel] = np.arange(len(sel))
                mapped.append(m[self.indices[:, ax]])
            mapped = np.stack(mapped, axis=1)
            keep = np.nonzero(np.all(mapped >= 0, axis=1))[0]
            indices = mapped[keep]
            values = [self.values[k] for k in keep]
        else:
            indices, values = None, None
        legs = None
        if self.legs is not None:
            legs = [[self.legs[ax][c] for c in sel] for ax, sel in enumerate(selectors)]
        return SparseTensor(new_shape, indices, values, self.dtype, legs, self.backend)

    def _get_element(self, idx):
        idx = np.asarray(idx, dtype=np.intp)
        k = self._lookup().get(int(to_linear(self.shape, idx.reshape(1, -1))[0]))
        if k is None:
            return self.zero_element(idx)
        return self.values[k]

    def __setitem__(self, key, value):
        self.set(key, value)

    def set(self, key, value, grow=False):
        """Insert or update entries in place.

        The selectors `key` are parsed as for :meth:`__getitem__`, and `value` is written to each
        position of the cartesian product of the selected coordinates.

        Parameters
        ----------
        key :
            Selectors, see :meth:`__getitem__`.
        value : element | ndarray | :class:`SparseTensor`
            If a :class:`SparseTensor` with as many positions as selected, its stored entries are
            written and the other selected positions are removed (set to structural zeros).
            For tensors of plain numbers, an array of the selected shape is written entry by
            entry, including zeros. Anything else is a single element written to all selected
            positions, even if it is zero.
        grow : bool
            Whether indices beyond the current :attr:`shape` are allowed, growing the shape.
            Otherwise they raise a :class:`DomainError`.

        Returns
        -------
        self
        """
        if self._is_linear_key(key):
            positions, _ = self._parse_linear_key(key)
            targets = to_indices(self.shape, positions)
            sel_shape = (len(positions), )
        else:
            selectors, _ = self._parse_key(key, grow)
            if grow:
                new_shape = tuple(
                    max(n, int(np.max(sel)) + 1 if len(sel) else n)
                    for n, sel in zip(self.shape, selectors))
                if new_shape != self.shape:
                    if self.legs is not None:
                        for ax, (old, new) in enumerate(zip(self.shape, new_shape)):
                            self.legs[ax].extend([None] * (new - old))
                    logger.debug("growing SparseTensor from %r to %r", self.shape, new_shape)
                    self.shape = new_shape
            sel_shape = tuple(len(s) for s in selectors)
            n = int(np.prod(sel_shape, dtype=np.intp))
            local = to_indices(sel_shape, np.arange(n))
            if self.rank > 0:
                targets = np.stack([sel[local[:, ax]] for ax, sel in enumerate(selectors)],
                                   axis=1)
            else:
                targets = local
        new_values = self._values_to_write(value, sel_shape)
        lookup = self._lookup()
        indices = list(self.indices)
        values = list(self.values)
        remove = set()
        for idx, lin, v in zip(targets, to_linear(self.shape, targets), new_values):
            k = lookup.get(int(lin))
            if v is None:
                if k is not None:
                    remove.add(k)
            elif k is None:
                lookup[int(lin)] = len(values)
                indices.append(idx)
                values.append(v)
            else:
                values[k] = v
        keep = [k for k in range(len(values)) if k not in remove]
        self.indices = np.array([indices[k] for k in keep],
                                dtype=np.intp).reshape(len(keep), self.rank)
        self.values = [values[k] for k in keep]
        written = [v for v in new_values if v is not None]
        if written:
            self.dtype = np.result_type(self.dtype, self.backend.result_dtype(written))
        self._update_legs(targets, new_values)
        return self

    def _values_to_write(self, value, sel_shape):
        n = int(np.prod(sel_shape, dtype=np.intp))
        if isinstance(value, SparseTensor):
            if value.size != n:
                raise DimensionError(f"can't assign a tensor of shape {value.shape!r} to a "
                                     f"selection of shape {sel_shape!r}")
            res = [None] * n
            for lin, v in zip(to_linear(value.shape, value.indices), value.values):
                res[int(lin)] = v
            return res
        if isinstance(value, np.ndarray) and self.legs is None and not self._has_blocks() and \
                (value.shape == sel_shape or (value.ndim == 1 and value.size == n > 1)):
            return list(value.ravel(order='F'))
        value = self.backend.as_block(value)
        return [self.backend.block_copy(value) for _ in range(n)]

    def find(self, k=None, which='first'):
        """Stored entries, sorted with the last axis as the most significant key.

        This is the column-major order of the positions, independent of the insertion order.

        Parameters
        ----------
        k : None | int
            If given, return only `k` entries.
        which : ``'first' | 'last'``
            Whether to return the first or last `k` entries.

        Returns
        -------
        indices : 2D ndarray
            The sorted multi-indices.
        values : list
            The corresponding values.
        """
        if which not in ['first', 'last']:
            raise ArgumentError(f"`which` should be 'first' or 'last', got {which!r}")
        order = self._sort_order()
        if k is not None:
            k = min(int(k), len(order))
            order = order[:k] if which == 'first' else order[len(order) - k:]
        return self.indices[order], [self.values[i] for i in order]

    def _sort_order(self):
        if self.nnz <= 1 or self.rank == 0:
            return np.arange(self.nnz)
        return np.lexsort(self.indices.T)

    def sortinds(self):
        """Reorder the storage in place into the order returned by :meth:`find`."""
        order = self._sort_order()
        self.indices = self.indices[order]
        self.values = [self.values[i] for i in order]
        return self

    # comparison and display

    def __eq__(self, other):
        """Exact equality, with structural zeros equal to stored zeros."""
        if isinstance(other, np.ndarray):
            return bool(np.array_equal(self.to_dense(), other))
        if not isinstance(other, SparseTensor):
            return NotImplemented
        return self._compare(other, self.backend.block_equal)

    __hash__ = None

    def allclose(self, other, rtol=1e-5, atol=1e-8):
        """Like :func:`numpy.allclose`, with structural zeros close to small stored values."""
        return self._compare(other,
                             lambda a, b: self.backend.block_allclose(a, b, rtol=rtol, atol=atol))

    def _compare(self, other, compare):
        if self.shape != other.shape:
            return False
        lookup_other = other._lookup()
        seen = set()
        for lin, v in zip(to_linear(self.shape, self.indices), self.values):
            k = lookup_other.get(int(lin))
            seen.add(int(lin))
            w = other.values[k] if k is not None else 0. * v
            if not compare(v, w):
                return False
        for lin, w in zip(to_linear(other.shape, other.indices), other.values):
            if int(lin) not in seen and not compare(0. * w, w):
                return False
        return True

    def __repr__(self):
        return f"<SparseTensor shape={self.shape!r} nnz={self.nnz:d} dtype={self.dtype!s}>"

    def __str__(self):
        res = [f"SparseTensor of shape {self.shape!r} with {self.nnz:d} stored entries "
               f"(dtype {self.dtype!s})"]
        if self.nnz <= 20:
            indices, values = self.find()
            for idx, v in zip(indices, values):
                if self.backend.is_block(v):
                    v = f"block of shape {self.backend.block_shape(v)!r}"
                res.append(f"  {tuple(int(i) for i in idx)!r}: {v!s}")
        return "\n".join(res)


def _merge_blocks(blocks, axis):
    """Concatenate an object array of blocks along increasing axes into a single array."""
    if blocks.ndim == 1:
        return np.concatenate(list(blocks), axis=axis)
    return np.concatenate([_merge_blocks(blocks[i], axis + 1) for i in range(blocks.shape[0])],
                          axis=axis)


def _strip_trailing_ones(shape):
    shape = list(shape)
    while shape and shape[-1] == 1:
        shape.pop()
    return tuple(shape)


def _broadcast_shapes(shape_a, shape_b, what):
    if _strip_trailing_ones(shape_a) != _strip_trailing_ones(shape_b):
        raise DimensionError(f"can't {what} shapes {shape_a!r} and {shape_b!r}")
    return shape_a if len(shape_a) >= len(shape_b) else shape_b


def _padded_indices(t, rank):
    if t.rank == rank:
        return t.indices
    pad = np.zeros((t.nnz, rank - t.rank), dtype=np.intp)
    return np.hstack([t.indices, pad])


def _add_sparse(a, b):
    shape = _broadcast_shapes(a.shape, b.shape, "add")
    rank = len(shape)
    ia = _padded_indices(a, rank)
    ib = _padded_indices(b, rank)
    backend = a.backend
    lookup = {int(lin): k for k, lin in enumerate(to_linear(shape, ia))}
    indices = list(ia)
    values = [backend.block_copy(v) for v in a.values]
    for idx, lin, v in zip(ib, to_linear(shape, ib), b.values):
        k = lookup.get(int(lin))
        if k is None:
            lookup[int(lin)] = len(values)
            indices.append(idx)
            values.append(backend.block_copy(v))
        else:
            values[k] = backend.block_add(values[k], v)
    legs = None
    if a.rank == b.rank:
        if a.legs is not None and b.legs is not None:
            legs = [[la if la is not None else lb for la, lb in zip(leg_a, leg_b)]
                    for leg_a, leg_b in zip(a.legs, b.legs)]
        elif a.legs is not None or b.legs is not None:
            legs = [list(l) for l in (a.legs if a.legs is not None else b.legs)]
    indices = np.array(indices, dtype=np.intp).reshape(len(values), rank)
    return SparseTensor(shape, indices, values, np.result_type(a.dtype, b.dtype), legs, backend)


def times(a, b):
    """Element-wise product.

    A number (or a tensor with a single position) is broadcast and multiplies every stored value.
    Two tensors need the same shape; the result stores the products on the intersection of the
    stored positions, since a structural zero times anything is zero.
    """
    if not isinstance(a, SparseTensor):
        return b * a
    if not isinstance(b, SparseTensor):
        return a * b
    if b.is_scalar and not a.is_scalar:
        return a._map_values(lambda v: a.backend.block_mul(v, b[(0, ) * b.rank]))
    if a.is_scalar and not b.is_scalar:
        return b._map_values(lambda v: b.backend.block_mul(a[(0, ) * a.rank], v))
    shape = _broadcast_shapes(a.shape, b.shape, "multiply")
    rank = len(shape)
    ia = _padded_indices(a, rank)
    ib = _padded_indices(b, rank)
    lookup = {int(lin): k for k, lin in enumerate(to_linear(shape, ib))}
    indices, values = [], []
    for idx, lin, v in zip(ia, to_linear(shape, ia), a.values):
        k = lookup.get(int(lin))
        if k is not None:
            indices.append(idx)
            values.append(a.backend.block_mul(v, b.values[k]))
    indices = np.array(indices, dtype=np.intp).reshape(len(values), rank)
    return SparseTensor(shape, indices, values, np.result_type(a.dtype, b.dtype),
                        backend=a.backend)


def dot(a, b):
    """Inner product ``sum(conj(a) * b)`` of two tensors of the same shape.

    Only positions stored in both `a` and `b` contribute; zero if there are none.
    """
    _broadcast_shapes(a.shape, b.shape, "dot")
    dtype = np.result_type(a.dtype, b.dtype)
    res = np.zeros((), dtype=dtype)[()]
    if a.nnz == 0 or b.nnz == 0:
        return res
    rank = max(a.rank, b.rank)
    shape = a.shape if a.rank >= b.rank else b.shape
    lookup = {int(lin): k for k, lin in enumerate(to_linear(shape, _padded_indices(b, rank)))}
    for lin, v in zip(to_linear(shape, _padded_indices(a, rank)), a.values):
        k = lookup.get(int(lin))
        if k is not None:
            res = res + a.backend.block_inner(v, b.values[k], do_dagger=True)
    return res


def _normalize_axes(axes, rank):
    axes = [int(ax) for ax in np.atleast_1d(np.asarray(axes, dtype=np.intp))]
    axes = [ax + rank if ax < 0 else ax for ax in axes]
    if any(ax < 0 or ax >= rank for ax in axes):
        raise ArgumentError(f"axes {axes!r} out of range for rank {rank:d}")
    if len(set(axes)) != len(axes):
        raise ArgumentError(f"duplicate axes {axes!r}")
    return axes


def tensorprod(a, b, axes_a, axes_b, block_axes=None, densify=True):
    """Contract the axes `axes_a` of `a` with the axes `axes_b` of `b`.

    The indices of both tensors are (virtually) permuted and reshaped into matrices,
    the uncontracted axes of `a` as rows and the contracted ones as columns (and vice versa for
    `b`). Then, for each pair of stored entries with matching contracted coordinates, the product
    of the elements is accumulated into the result.

    Parameters
    ----------
    a, b : :class:`SparseTensor`
        The tensors to contract.
    axes_a, axes_b : list of int
        The axes to contract, ``axes_a[i]`` with ``axes_b[i]``.
    block_axes : None | (list of int, list of int)
        How to multiply two elements. If None, use the element-wise product
        (the normal product for numbers). Otherwise, contract the legs ``block_axes[0]`` of the
        elements of `a` with the legs ``block_axes[1]`` of the elements of `b`.
    densify : bool
        If True and every position of the result is stored (and the elements are numbers),
        return a dense numpy array instead of a :class:`SparseTensor`.

    Returns
    -------
    result : :class:`SparseTensor` | ndarray | element
        The axes of the result are the uncontracted axes of `a` followed by those of `b`.
        If all axes are contracted, return the single resulting element.
    """
    axes_a = _normalize_axes(axes_a, a.rank)
    axes_b = _normalize_axes(axes_b, b.rank)
    if len(axes_a) != len(axes_b):
        raise DimensionError(f"contracting {len(axes_a):d} axes with {len(axes_b):d} axes")
    for ax_a, ax_b in zip(axes_a, axes_b):
        if a.shape[ax_a] != b.shape[ax_b]:
            raise DimensionError(f"can't contract axis {ax_a:d} of shape {a.shape!r} "
                                 f"with axis {ax_b:d} of shape {b.shape!r}")
    backend = a.backend
    free_a = [ax for ax in range(a.rank) if ax not in axes_a]
    free_b = [ax for ax in range(b.rank) if ax not in axes_b]
    shape_free_a = tuple(a.shape[ax] for ax in free_a)
    shape_free_b = tuple(b.shape[ax] for ax in free_b)
    shape_contr = tuple(a.shape[ax] for ax in axes_a)
    rows_a = to_linear(shape_free_a, a.indices[:, free_a])
    cols_a = to_linear(shape_contr, a.indices[:, axes_a])
    rows_b = to_linear(shape_contr, b.indices[:, axes_b])
    cols_b = to_linear(shape_free_b, b.indices[:, free_b])
    if block_axes is None:
        product = backend.block_mul
    else:
        idcs_a, idcs_b = block_axes
        product = lambda x, y: backend.block_tdot(x, y, idcs_a, idcs_b)
    by_row_b = {}
    for k, j, v in zip(rows_b, cols_b, b.values):
        by_row_b.setdefault(int(k), []).append((int(j), v))
    acc = {}
    for i, k, va in zip(rows_a, cols_a, a.values):
        for j, vb in by_row_b.get(int(k), ()):
            key = (int(j), int(i))  # column-major order of the result
            p = product(va, vb)
            if key in acc:
                acc[key] = backend.block_add(acc[key], p)
            else:
                acc[key] = p
    dtype = np.result_type(a.dtype, b.dtype)
    out_shape = shape_free_a + shape_free_b
    logger.debug("tensorprod %r x %r -> %r with %d stored entries", a.shape, b.shape, out_shape,
                 len(acc))
    if len(out_shape) == 0:
        if acc:
            return acc[(0, 0)]
        return np.zeros((), dtype=dtype)[()]
    keys = sorted(acc)
    values = [acc[key] for key in keys]
    if keys:
        idx_a = to_indices(shape_free_a, [i for j, i in keys])
        idx_b = to_indices(shape_free_b, [j for j, i in keys])
        indices = np.hstack([idx_a, idx_b])
    else:
        indices = None
    res = SparseTensor(out_shape, indices, values, dtype, backend=backend)
    if densify and res.is_dense and res.legs is None and not res._has_blocks():
        return res.to_dense()
    return res


def cat(tensors, axis=0):
    """Concatenate tensors along an existing `axis`.

    All other axes need to have the same lengths.
    """
    tensors = list(tensors)
    if len(tensors) == 0:
        raise ArgumentError("nothing to concatenate")
    rank = tensors[0].rank
    axis = _normalize_axes([axis], rank)[0]
    for t in tensors[1:]:
        if t.rank != rank or any(n != m for ax, (n, m) in enumerate(zip(t.shape, tensors[0].shape))
                                 if ax != axis):
            raise DimensionError(f"can't concatenate shapes {tensors[0].shape!r} and "
                                 f"{t.shape!r} along axis {axis:d}")
    shape = list(tensors[0].shape)
    shape[axis] = sum(t.shape[axis] for t in tensors)
    indices, values = [], []
    offset = 0
    for t in tensors:
        idx = t.indices.copy()
        idx[:, axis] += offset
        indices.append(idx)
        values.extend(t.values)
        offset += t.shape[axis]
    legs = None
    if all(t.legs is not None for t in tensors):
        legs = [list(l) for l in tensors[0].legs]
        legs[axis] = [d for t in tensors for d in t.legs[axis]]
        for t in tensors[1:]:
            for ax in range(rank):
                if ax != axis:
                    legs[ax] = [la if la is not None else lb
                                for la, lb in zip(legs[ax], t.legs[ax])]
    dtype = np.result_type(*[t.dtype for t in tensors])
    return SparseTensor(shape, np.vstack(indices), values, dtype, legs, tensors[0].backend)
