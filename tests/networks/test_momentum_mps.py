"""A collection of tests for :mod:`tnenv.networks.momentum_mps`."""
# Copyright (C) tnenv Developers, GNU GPLv3

import warnings

import numpy as np
import numpy.testing as npt
import pytest

from tnenv.networks.momentum_mps import QuasiParticleMPS, left_null_space
from tnenv.networks.uniform_mps import UniformMPS
from tnenv.tools.misc import ArgumentError, BetaWarning

pytestmark = pytest.mark.filterwarnings('ignore::tnenv.tools.misc.BetaWarning')


@pytest.fixture
def umps(np_random):
    return UniformMPS.from_random(d=2, chi=3, L=2, rng=np_random)


def test_left_null_space(umps):
    for i in range(umps.L):
        AL = umps.get_AL(i)
        VL = left_null_space(AL)
        chiL, d, chiR = AL.shape
        assert VL.shape == (chiL, d, chiL * d - chiR)
        VLdVL = np.tensordot(VL.conj(), VL, axes=([0, 1], [0, 1]))
        npt.assert_allclose(VLdVL, np.eye(VL.shape[2]), atol=1.e-12)
        ALdVL = np.tensordot(AL.conj(), VL, axes=([0, 1], [0, 1]))
        npt.assert_allclose(ALdVL, 0., atol=1.e-12)


def test_from_random(umps, np_random):
    with pytest.warns(BetaWarning):
        qp = QuasiParticleMPS.from_random(umps, p=0.5, charge_dim=2, rng=np_random)
    assert qp.L == qp.period() == 2
    assert qp.p == 0.5
    assert qp.charge is None
    assert qp.aux_space() == 2
    assert not qp.is_trivial()
    assert qp.underlying_type() == np.float64
    for i in range(qp.L):
        X = qp.get_X(i)
        assert X.shape == (3, 2, 3)
        assert qp.get_VL(i).shape == (3, 2, 3)
        B = qp.get_B(i)
        assert B.shape == (3, 2, 2, 3)  # vL, p, aux, vR
        # excitation orthogonal to the left background
        ALdB = np.tensordot(qp.get_AL(i).conj(), B, axes=([0, 1], [0, 1]))
        npt.assert_allclose(ALdB, 0., atol=1.e-12)
        assert qp.get_AR(i) is umps.get_AR(i)


def test_B_cache(umps, np_random):
    qp = QuasiParticleMPS.from_random(umps, rng=np_random)
    assert qp.is_trivial()
    B0 = qp.get_B(0)
    assert qp.get_B(0) is B0
    assert qp.get_B(2) is B0
    assert qp.get_B(0, copy=True) is not B0
    X_new = np_random.standard_normal(qp.get_X(1).shape)
    qp.set_X(1, X_new)
    assert np.shares_memory(qp.get_X(1), X_new)
    B1 = qp.get_B(1)
    npt.assert_allclose(B1, np.tensordot(qp.get_VL(1), X_new, axes=(2, 0)))
    assert qp.get_B(0) is not B0
    npt.assert_allclose(qp.get_B(0), B0)
    with pytest.raises(ValueError):
        qp.set_X(0, np.ones((1, 1, 1)))


def test_copy(umps, np_random):
    qp = QuasiParticleMPS.from_random(umps, p=1., charge='odd', rng=np_random)
    with warnings.catch_warnings():
        warnings.simplefilter('error', BetaWarning)
        qp2 = qp.copy()
    assert qp2.p == 1. and qp2.charge == 'odd'
    assert not qp2.is_trivial()
    X = qp2.get_X(0, copy=True)
    X[0, 0, 0] = 17.
    qp2.set_X(0, X)
    assert qp2.get_X(0)[0, 0, 0] == 17.
    assert qp.get_X(0)[0, 0, 0] != 17.
    assert qp2.get_VL(0) is qp.get_VL(0)


def test_different_backgrounds(np_random):
    left = UniformMPS.from_random(d=2, chi=3, L=1, rng=np_random, dtype=np.complex128)
    right = UniformMPS.from_random(d=2, chi=2, L=1, rng=np_random)
    qp = QuasiParticleMPS.from_random(left, right, rng=np_random)
    assert qp.underlying_type() == np.complex128
    assert qp.get_X(0).shape == (3, 1, 2)
    assert qp.get_B(0).shape == (3, 2, 1, 2)
    with pytest.raises(ArgumentError):
        QuasiParticleMPS.from_random(left, UniformMPS.from_random(d=2, chi=2, L=2, rng=np_random))


def test_errors(umps, np_random):
    X = [np.zeros((3, 1, 3)), np.zeros((3, 1, 3))]
    QuasiParticleMPS(umps, umps, X)  # fine
    with pytest.raises(ArgumentError):
        QuasiParticleMPS(umps, umps, X[:1])
    with pytest.raises(ArgumentError):
        QuasiParticleMPS(umps, umps, X, VL=[left_null_space(umps.get_AL(0))])
    single = UniformMPS.from_random(d=2, chi=3, L=1, rng=np_random)
    with pytest.raises(ArgumentError):
        QuasiParticleMPS(single, umps, X)
    with pytest.raises(ValueError):
        QuasiParticleMPS(umps, umps, [np.zeros((3, 1, 2)), np.zeros((3, 1, 3))])
    with pytest.raises(ValueError):
        QuasiParticleMPS(umps, umps, [np.zeros((3, 1, 3)), np.zeros((3, 2, 3))])
    with pytest.raises(ValueError):
        QuasiParticleMPS(umps, umps, [np.zeros((2, 1, 3)), np.zeros((3, 1, 3))])


def test_X_read_only(umps, np_random):
    qp = QuasiParticleMPS.from_random(umps, rng=np_random)
    B0 = qp.get_B(0).copy()
    X = qp.get_X(0)
    assert not X.flags.writeable
    with pytest.raises(ValueError):
        X[0, 0, 0] = 17.
    npt.assert_allclose(qp.get_B(0), B0)
    X = qp.get_X(0, copy=True)
    X[0, 0, 0] += 1.
    npt.assert_allclose(qp.get_B(0), B0)
    qp.set_X(0, X)
    npt.assert_allclose(qp.get_B(0), np.tensordot(qp.get_VL(0), X, axes=(2, 0)))
