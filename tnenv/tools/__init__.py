r"""A collection of tools: short yet useful functions not tied to a single algorithm.

.. rubric:: Submodules

.. autosummary::
    :toctree: .

    params
    misc
    math
"""
# Copyright (C) tnenv Developers, GNU GPLv3

from . import math, misc, params
from .math import *
from .misc import *
from .params import *

__all__ = [
    *math.__all__,
    *misc.__all__,
    *params.__all__,
]
