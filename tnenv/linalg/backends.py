"""Element backends: the operations a :class:`~tnenv.linalg.sparse_tensor.SparseTensor`
performs on its stored values.

A :class:`SparseTensor` never branches on the concrete type of its elements.
Instead, all element arithmetic goes through a :class:`BlockBackend`, which defines the
small capability interface needed by the container: conjugation, norms, inner products,
contraction, shapes (leg dimensions) and construction of structural zeros.

The elements handled by the :class:`NumpyBlockBackend` are either plain numbers or dense
:class:`numpy.ndarray` blocks.
"""
# Copyright (C) tnenv Developers, GNU GPLv3
from __future__ import annotations

from abc import ABCMeta, abstractmethod
import numbers

import numpy as np

__all__ = ['BlockBackend', 'NumpyBlockBackend', 'get_backend']

Block = object  # the type of an element, depends on the backend


class BlockBackend(metaclass=ABCMeta):
    """Abstract base class that defines the operations on individual elements (blocks)."""

    BlockCls = None

    @abstractmethod
    def as_block(self, a, dtype=None) -> Block:
        """Convert `a` to an element of this backend."""
        ...

    @abstractmethod
    def is_block(self, a) -> bool:
        """Whether `a` is a proper block with legs, as opposed to a plain number."""
        ...

    @abstractmethod
    def block_conj(self, a: Block) -> Block:
        ...

    @abstractmethod
    def block_copy(self, a: Block) -> Block:
        ...

    @abstractmethod
    def block_norm(self, a: Block) -> float:
        """Frobenius norm of a single element."""
        ...

    @abstractmethod
    def block_inner(self, a: Block, b: Block, do_dagger: bool = True) -> float | complex:
        """Full contraction ``sum(conj(a) * b)`` (or without ``conj`` for ``do_dagger=False``)."""
        ...

    @abstractmethod
    def block_add(self, a: Block, b: Block) -> Block:
        ...

    @abstractmethod
    def block_mul(self, a: Block, b: Block) -> Block:
        """Element-wise product, including the product with a number."""
        ...

    @abstractmethod
    def block_tdot(self, a: Block, b: Block, idcs_a: list[int], idcs_b: list[int]) -> Block:
        """Contract the legs `idcs_a` of `a` with the legs `idcs_b` of `b`."""
        ...

    @abstractmethod
    def block_permute_axes(self, a: Block, permutation: list[int]) -> Block:
        ...

    @abstractmethod
    def block_shape(self, a: Block) -> tuple[int, ...]:
        """The leg dimensions of an element; ``()`` for a number."""
        ...

    @abstractmethod
    def block_dtype(self, a: Block) -> np.dtype:
        ...

    @abstractmethod
    def block_allclose(self, a: Block, b: Block, rtol: float = 1e-5, atol: float = 1e-8) -> bool:
        ...

    @abstractmethod
    def block_equal(self, a: Block, b: Block) -> bool:
        ...

    @abstractmethod
    def zero_block(self, shape: tuple[int, ...], dtype) -> Block:
        """A structural zero with given leg dimensions; a plain zero number for ``shape=()``."""
        ...

    @abstractmethod
    def block_to_flat(self, a: Block) -> np.ndarray:
        """Flatten an element into a 1D numpy array."""
        ...

    @abstractmethod
    def block_from_flat(self, vec: np.ndarray, shape: tuple[int, ...]) -> Block:
        """Inverse of :meth:`block_to_flat` for an element with leg dimensions `shape`."""
        ...

    def block_linear_combination(self, a, v: Block, b, w: Block) -> Block:
        return self.block_add(self.block_mul(a, v), self.block_mul(b, w))

    def result_dtype(self, values, default=np.float64) -> np.dtype:
        """The common number type of all `values`, `default` if there are none."""
        if len(values) == 0:
            return np.dtype(default)
        return np.result_type(*[self.block_dtype(v) for v in values])


class NumpyBlockBackend(BlockBackend):
    """Elements are plain numbers or :class:`numpy.ndarray` blocks."""

    BlockCls = np.ndarray

    def as_block(self, a, dtype=None) -> Block:
        if isinstance(a, numbers.Number) and dtype is None:
            return a
        block = np.asarray(a, dtype=dtype)
        if block.ndim == 0:
            return block[()]
        return block

    def is_block(self, a) -> bool:
        return isinstance(a, np.ndarray) and a.ndim > 0

    def block_conj(self, a: Block) -> Block:
        return np.conj(a)

    def block_copy(self, a: Block) -> Block:
        if isinstance(a, np.ndarray):
            return a.copy()
        return a

    def block_norm(self, a: Block) -> float:
        return float(np.linalg.norm(np.ravel(a)))

    def block_inner(self, a: Block, b: Block, do_dagger: bool = True) -> float | complex:
        if do_dagger:
            return np.vdot(a, b).item()
        return np.sum(np.multiply(a, b)).item()

    def block_add(self, a: Block, b: Block) -> Block:
        return a + b

    def block_mul(self, a: Block, b: Block) -> Block:
        return a * b

    def block_tdot(self, a: Block, b: Block, idcs_a: list[int], idcs_b: list[int]) -> Block:
        return np.tensordot(a, b, (idcs_a, idcs_b))

    def block_permute_axes(self, a: Block, permutation: list[int]) -> Block:
        return np.transpose(a, permutation)

    def block_shape(self, a: Block) -> tuple[int, ...]:
        return np.shape(a)

    def block_dtype(self, a: Block) -> np.dtype:
        return np.result_type(a)

    def block_allclose(self, a: Block, b: Block, rtol: float = 1e-5, atol: float = 1e-8) -> bool:
        return np.allclose(a, b, rtol=rtol, atol=atol)

    def block_equal(self, a: Block, b: Block) -> bool:
        return np.array_equal(a, b)

    def zero_block(self, shape: tuple[int, ...], dtype) -> Block:
        res = np.zeros(shape, dtype=dtype)
        if res.ndim == 0:
            return res[()]
        return res

    def block_to_flat(self, a: Block) -> np.ndarray:
        return np.ravel(a)

    def block_from_flat(self, vec: np.ndarray, shape: tuple[int, ...]) -> Block:
        res = np.reshape(vec, shape)
        if res.ndim == 0:
            return res[()]
        return res


_backends = {'numpy': NumpyBlockBackend}
_instantiated_backends = {}


def get_backend(name: str = 'numpy') -> BlockBackend:
    """Return the (shared) backend instance registered under `name`."""
    if name not in _backends:
        raise ValueError(f"unknown backend {name!r}, choose from {list(_backends)!r}")
    if name not in _instantiated_backends:
        _instantiated_backends[name] = _backends[name]()
    return _instantiated_backends[name]
