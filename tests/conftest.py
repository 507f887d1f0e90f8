"""Provide test configuration and common fixtures.

=============================  ===========================================
Fixture                        Description
=============================  ===========================================
np_random                      A numpy random Generator. Use this for
                               reproducibility.
-----------------------------  -------------------------------------------
ising                          The :class:`~tnenv.networks.mpo.InfMPO` of
                               the transverse field Ising chain with
                               ``J=1, h=0.5``.
=============================  ===========================================
"""
# Copyright (C) tnenv Developers, GNU GPLv3
import numpy as np
import pytest

from tnenv.networks.mpo import InfMPO


@pytest.fixture
def np_random() -> np.random.Generator:
    return np.random.default_rng(seed=12345)


@pytest.fixture
def ising() -> InfMPO:
    return InfMPO.ising(J=1., h=0.5)
