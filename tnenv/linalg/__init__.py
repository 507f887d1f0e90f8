r"""Linear-algebra tools for tensor networks.

Most notably is the module :mod:`~tnenv.linalg.sparse_tensor`, which defines the block-sparse
:class:`~tnenv.linalg.sparse_tensor.SparseTensor` used to represent MPO tensors and
environments, and :mod:`~tnenv.linalg.krylov_based` with the iterative solvers
:func:`~tnenv.linalg.krylov_based.linsolve` and :func:`~tnenv.linalg.krylov_based.eigsolve`.

.. rubric:: Submodules

.. autosummary::
    :toctree: .

    coordinates
    backends
    sparse_tensor
    sparse
    krylov_based

"""
# Copyright (C) tnenv Developers, GNU GPLv3

from . import coordinates, backends, sparse_tensor, sparse, krylov_based
from .coordinates import *
from .backends import *
from .sparse_tensor import *
from .sparse import *
from .krylov_based import *

__all__ = ['coordinates', 'backends', 'sparse_tensor', 'sparse', 'krylov_based',
           *coordinates.__all__,
           *backends.__all__,
           *sparse_tensor.__all__,
           *sparse.__all__,
           *krylov_based.__all__,
           ]
