"""Definitions of tensor networks in the thermodynamic limit.

Here, 'tensor network' refers just to the (partial) contraction of tensors.
For example a uniform MPS represents the contraction along the 'virtual' legs/bonds of its
`AL`, `AR` and `AC`, and an :class:`~tnenv.networks.mpo.InfMPO` the contraction of block-sparse
:class:`~tnenv.linalg.sparse_tensor.SparseTensor` along its virtual MPO channels.

.. rubric:: Submodules

.. autosummary::
    :toctree: .

    uniform_mps
    mpo
    momentum_mps
"""
# Copyright (C) tnenv Developers, GNU GPLv3

from . import uniform_mps, mpo, momentum_mps

from .uniform_mps import *
from .mpo import *
from .momentum_mps import *

__all__ = ['uniform_mps', 'mpo', 'momentum_mps',
           *uniform_mps.__all__,
           *mpo.__all__,
           *momentum_mps.__all__,
           ]
