"""tnenv - environments of infinite matrix product operators

tnenv is a library for the block-sparse tensors and iterative solvers needed to compute the
environments of infinite matrix product operators with a Jordan block structure,
acting on uniform matrix product states in the thermodynamic limit.
"""
# Copyright (C) tnenv Developers, GNU GPLv3
# This file marks this directory as a python package.

# Note: all external packages that are imported should be `del`-ed at the end of the file!
import logging

# main logger for tnenv
logger = logging.getLogger(__name__)

# load and provide sub packages on first input
# note that the order matters!
from . import tools
from . import linalg
from . import networks
from . import version

# provide the more important functions and classes directly from the main namespace:
from .linalg.coordinates import to_indices, to_linear
from .linalg.sparse_tensor import SparseTensor
from .linalg.krylov_based import linsolve, eigsolve, BiCGStabL
from .networks.uniform_mps import UniformMPS
from .networks.mpo import InfMPO, MPOTransferMatrix
from .networks.momentum_mps import QuasiParticleMPS
from .tools.misc import (setup_logging, ArgumentError, DimensionError, DomainError,
                         ConvergenceWarning, UnsupportedOperationWarning, BetaWarning)
from .tools.params import Config, asConfig, load_yaml_with_py_eval

#: hard-coded version string
__version__ = version.version

#: full version from git description, and numpy/scipy/python versions
__full_version__ = version.full_version

__all__ = [
    # subpackages
    'linalg', 'networks', 'tools', 'version',
    # from tnenv.linalg
    'to_indices', 'to_linear', 'SparseTensor', 'linsolve', 'eigsolve', 'BiCGStabL',
    # from tnenv.networks
    'UniformMPS', 'InfMPO', 'MPOTransferMatrix', 'QuasiParticleMPS',
    # from tnenv.tools
    'setup_logging', 'ArgumentError', 'DimensionError', 'DomainError', 'ConvergenceWarning',
    'UnsupportedOperationWarning', 'BetaWarning', 'Config', 'asConfig', 'load_yaml_with_py_eval',
    # from tnenv.__init__, i.e. defined below
    'show_config',
]


def show_config():
    """Print information about the version of tnenv and used libraries.

    The information printed is :attr:`tnenv.version.version_summary`.
    """
    print(version.version_summary)


# remove the imported libraries again. we do not want to expose them e.g. as tnenv.logging
del logging
