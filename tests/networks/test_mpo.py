"""A collection of tests for :mod:`tnenv.networks.mpo`."""
# Copyright (C) tnenv Developers, GNU GPLv3

import numpy as np
import numpy.testing as npt
import pytest

from tnenv.linalg.sparse_tensor import SparseTensor
from tnenv.networks.mpo import InfMPO, MPOTransferMatrix
from tnenv.networks.uniform_mps import UniformMPS

sigma_x = np.array([[0., 1.], [1., 0.]])
sigma_z = np.array([[1., 0.], [0., -1.]])
Id = np.eye(2)


def op_block(op):
    return op.reshape(1, 2, 1, 2)


def product_state(theta):
    return UniformMPS.from_product_state([[np.cos(theta / 2), np.sin(theta / 2)]])


def test_ising_sanity(ising):
    assert ising.L == ising.period() == 1
    assert ising.N == 3
    assert ising.channel_dims(0) == [1, 1, 1]
    assert ising.is_eye(0, 0) and ising.is_eye(0, 2) and ising.is_eye(5, 2)
    assert not ising.is_eye(0, 1)
    assert ising.is_connected()
    W = ising.get_W(0)
    assert W.shape == (3, 1, 3, 1)
    assert W.nnz == 5
    npt.assert_array_equal(W[0, 0, 1, 0], op_block(-sigma_x))
    npt.assert_array_equal(W[0, 0, 2, 0], op_block(-0.5 * sigma_z))
    W_copy = ising.get_W(0, copy=True)
    W_copy[0, 0, 2, 0] = op_block(sigma_z)
    npt.assert_array_equal(ising.get_W(0)[0, 0, 2, 0], op_block(-0.5 * sigma_z))


def test_sanity_errors():
    W = SparseTensor.zeros((2, 1, 2, 1))
    W[0, 0, 0, 0] = op_block(Id)
    W[1, 0, 1, 0] = op_block(Id)
    InfMPO([W])  # fine
    W_lower = W.copy()
    W_lower[1, 0, 0, 0] = op_block(sigma_x)
    with pytest.raises(ValueError):
        InfMPO([W_lower])
    W_no_eye = W.copy()
    W_no_eye[1, 0, 1, 0] = op_block(2. * Id)
    with pytest.raises(ValueError):
        InfMPO([W_no_eye])
    with pytest.raises(ValueError):
        InfMPO([SparseTensor.zeros((2, 2))])
    with pytest.raises(ValueError):
        InfMPO([])


def test_disconnected_channel():
    W = SparseTensor.zeros((3, 1, 3, 1))
    W[0, 0, 0, 0] = op_block(Id)
    W[2, 0, 2, 0] = op_block(Id)
    W[0, 0, 2, 0] = op_block(sigma_z)
    mpo = InfMPO([W])
    assert not mpo.is_connected()


def test_horzcat(ising):
    H2 = ising.horzcat(ising, ising)
    assert H2.L == 3
    assert H2.N == 3
    assert H2.get_W(4) == ising.get_W(0)


def test_transfer_matrix(ising):
    theta = 0.7
    psi = product_state(theta)
    T = ising.transfer_matrix(psi)
    assert isinstance(T, MPOTransferMatrix)
    assert T.L == 1
    assert T.shape == (3, 3)
    npt.assert_array_equal(T.connectivity(),
                           [[True, True, True], [False, False, True], [False, False, True]])
    assert T.is_zero(1, 1) and T.is_zero(2, 0)
    assert not T.is_zero(0, 2)
    assert T.is_eye(0) and T.is_eye(2)
    assert not T.is_eye(1)
    assert not T.is_eye(0, 2)
    assert T.slice([0], [1, 2]).shape == (1, 2)
    assert T.slice(1, 2).connectivity()[0, 0]

    GL = SparseTensor((1, 3, 1), [[0, 0, 0]], [np.ones((1, 1, 1))])
    TGL = T.apply_left(GL)
    assert TGL.shape == (1, 3, 1)
    npt.assert_allclose(TGL[0, 0, 0], [[[1.]]])
    npt.assert_allclose(TGL[0, 1, 0], [[[-np.sin(theta)]]])
    npt.assert_allclose(TGL[0, 2, 0], [[[-0.5 * np.cos(theta)]]])

    GR = SparseTensor((1, 3, 1), [[0, 2, 0]], [np.ones((1, 1, 1))])
    TGR = ising.transfer_matrix(psi, form='RR').apply_right(GR)
    npt.assert_allclose(TGR[0, 2, 0], [[[1.]]])
    npt.assert_allclose(TGR[0, 1, 0], [[[np.sin(theta)]]])
    npt.assert_allclose(TGR[0, 0, 0], [[[-0.5 * np.cos(theta)]]])
    with pytest.raises(ValueError):
        ising.transfer_matrix(psi, form='LR')
    with pytest.raises(ValueError):
        MPOTransferMatrix([ising.get_W(0)], [psi.get_AL(0)] * 2)


@pytest.mark.parametrize('theta', [0., 0.4, np.pi / 2, 2.5])
def test_product_state_energy(ising, theta):
    J, h = 1., 0.5
    psi = product_state(theta)
    GL, GR, lambda_ = ising.environments(psi)
    exact = -J * np.sin(theta)**2 - J * h * np.cos(theta)
    npt.assert_allclose(lambda_, exact, atol=1.e-12)
    npt.assert_allclose(ising.energy_density(psi), exact, atol=1.e-12)
    assert len(GL) == len(GR) == 1
    npt.assert_allclose(GL[0][0, 1, 0], [[[-J * np.sin(theta)]]], atol=1.e-12)
    npt.assert_allclose(GR[0][0, 1, 0], [[[np.sin(theta)]]], atol=1.e-12)


def test_two_site_unit_cell(ising):
    theta0, theta1 = 0.3, 1.9
    J, h = 1., 0.5
    psi = UniformMPS.from_product_state([[np.cos(theta0 / 2), np.sin(theta0 / 2)],
                                         [np.cos(theta1 / 2), np.sin(theta1 / 2)]])
    exact = -J * np.sin(theta0) * np.sin(theta1) - 0.5 * J * h * (np.cos(theta0) + np.cos(theta1))
    npt.assert_allclose(ising.energy_density(psi), exact, atol=1.e-12)
    GL, GR, lambda_ = ising.environments(psi)
    assert len(GL) == len(GR) == 2
    npt.assert_allclose(lambda_, 2 * exact, atol=1.e-12)
    # GL[1] is on the bond between the sites 0 and 1
    npt.assert_allclose(GL[1][0, 1, 0], [[[-J * np.sin(theta0)]]], atol=1.e-12)
    npt.assert_allclose(GR[1][0, 1, 0], [[[np.sin(theta1)]]], atol=1.e-12)
    # the same for a doubled unit cell of the MPO
    npt.assert_allclose(ising.horzcat(ising).energy_density(psi), exact, atol=1.e-12)


@pytest.mark.parametrize('algorithm', ['bicgstab', 'bicgstabl', 'gmres'])
def test_random_state_energy(ising, algorithm, np_random):
    J, h = 1., 0.5
    psi = UniformMPS.from_random(d=2, chi=4, rng=np_random)
    options = {'linsolve': {'Algorithm': algorithm}}
    GL, GR, lambda_ = ising.environments(psi, options=options)
    assert options['linsolve']['Algorithm'] == algorithm
    assert options['linsolve']['MaxIter'] == 500
    exact = -J * psi.expectation_value([sigma_x, sigma_x]) - J * h * psi.expectation_value(sigma_z)
    npt.assert_allclose(lambda_, exact, rtol=1.e-8, atol=1.e-10)

    # fixed point equations: T GL = GL + lambda l and T GR = GR + lambda r
    chi = psi.chi[0]
    TGL = ising.transfer_matrix(psi, form='LL').apply_left(GL[0])
    npt.assert_allclose(TGL[0, 0, 0], GL[0][0, 0, 0], atol=1.e-10)
    npt.assert_allclose(TGL[0, 1, 0], GL[0][0, 1, 0], atol=1.e-10)
    npt.assert_allclose(TGL[0, 2, 0],
                        GL[0][0, 2, 0] + lambda_ * np.eye(chi).reshape(chi, 1, chi),
                        atol=1.e-8)
    TGR = ising.transfer_matrix(psi, form='RR').apply_right(GR[0])
    npt.assert_allclose(TGR[0, 2, 0], GR[0][0, 2, 0], atol=1.e-10)
    npt.assert_allclose(TGR[0, 0, 0],
                        GR[0][0, 0, 0] + lambda_ * np.eye(chi).reshape(chi, 1, chi),
                        atol=1.e-8)


def test_environment_errors(ising):
    psi = product_state(0.3)
    psi2 = UniformMPS.from_product_state([[1., 0.], [0., 1.]])
    with pytest.raises(ValueError):
        ising.left_environment(psi, psi2)
    with pytest.raises(ValueError):
        ising.right_environment(psi2, psi)
    # orthogonal product states
    with pytest.raises(ValueError):
        ising.left_environment(product_state(0.), product_state(np.pi))
    psi3 = UniformMPS.from_product_state([[1., 0., 0.]])
    with pytest.raises(ValueError):
        ising.environments(psi3)
    with pytest.raises(ValueError):
        ising.environments(psi, psi3)


def test_transfer_matrix_connectivity_cache(ising):
    T = ising.transfer_matrix(product_state(0.2))
    assert T._connectivity is None
    assert T.is_zero(1, 1)
    P = T.connectivity()
    assert T._connectivity is not None
    P[0, 0] = False  # a copy
    assert not T.is_zero(0, 0)
    npt.assert_array_equal(T.connectivity(), T._connectivity)
    assert not T.is_eye(0, 3)
    assert not T.is_eye(-1)


@pytest.mark.parametrize('theta_top, theta_bot', [(0.3, 0.3), (0.3, 1.1), (2.5, 0.4),
                                                  (1.0, -0.8)])
def test_mixed_product_states(ising, theta_top, theta_bot):
    J, h = 1., 0.5
    psi_top, psi_bot = product_state(theta_top), product_state(theta_bot)
    overlap = np.cos((theta_bot - theta_top) / 2)
    X = np.sin((theta_bot + theta_top) / 2) / overlap
    Z = np.cos((theta_bot + theta_top) / 2) / overlap
    exact = -J * X**2 - J * h * Z
    GL, lambda_L = ising.left_environment(psi_top, psi_bot)
    GR, lambda_R = ising.right_environment(psi_top, psi_bot)
    npt.assert_allclose(lambda_L, exact, atol=1.e-12)
    npt.assert_allclose(lambda_R, exact, atol=1.e-12)
    npt.assert_allclose(GL[0][0, 1, 0], -J * X * GL[0][0, 0, 0], atol=1.e-12)
    npt.assert_allclose(GR[0][0, 1, 0], X * GR[0][0, 2, 0], atol=1.e-12)
    _, _, lambda_ = ising.environments(psi_top, psi_bot)
    npt.assert_allclose(lambda_, exact, atol=1.e-12)


def test_mixed_same_state(ising, np_random):
    psi = UniformMPS.from_random(d=2, chi=3, rng=np_random)
    _, _, lambda_ = ising.environments(psi)
    GL, GR, lambda_copy = ising.environments(psi, psi.copy())
    npt.assert_allclose(lambda_copy, lambda_, rtol=1.e-8)
    # the left fixed point is the identity, normalized to norm 1
    l = GL[0][0, 0, 0][:, 0, :]
    npt.assert_allclose(np.abs(l), np.eye(3) / np.sqrt(3), atol=1.e-8)
    assert len(GR) == 1


@pytest.mark.parametrize('chi_bot, dtype', [(3, np.float64), (2, np.complex128)])
def test_mixed_random_fixed_point(ising, chi_bot, dtype, np_random):
    psi_top = UniformMPS.from_random(d=2, chi=3, dtype=dtype, rng=np_random)
    if chi_bot == 3:
        # close to `psi_top` such that the dominant eigenvalue is well separated
        A = psi_top.get_AL(0) + 0.1 * np_random.standard_normal((3, 2, 3))
        psi_bot = UniformMPS.from_A([A])
    else:
        psi_bot = UniformMPS.from_random(d=2, chi=chi_bot, dtype=dtype, rng=np_random)
    GL, lambda_ = ising.left_environment(psi_top, psi_bot)
    assert GL[0][0, 0, 0].shape == (chi_bot, 1, 3)
    # GL T = mu (GL + lambda l) with the dominant eigenvalue `mu` of the mixed transfer matrix
    T = ising.transfer_matrix(psi_top, psi_bot, form='LL')
    TGL = T.apply_left(GL[0])
    l = GL[0][0, 0, 0]
    mu = np.vdot(l, TGL[0, 0, 0]) / np.vdot(l, l)
    npt.assert_allclose(TGL[0, 0, 0], mu * l, atol=1.e-9)
    npt.assert_allclose(TGL[0, 1, 0], mu * GL[0][0, 1, 0], atol=1.e-8)
    npt.assert_allclose(TGL[0, 2, 0], mu * (GL[0][0, 2, 0] + lambda_ * l), atol=1.e-8)

    GR, lambda_R = ising.right_environment(psi_top, psi_bot)
    npt.assert_allclose(lambda_R, lambda_, rtol=1.e-7, atol=1.e-9)
    TGR = ising.transfer_matrix(psi_top, psi_bot, form='RR').apply_right(GR[0])
    r = GR[0][0, 2, 0]
    mu_R = np.vdot(r, TGR[0, 2, 0]) / np.vdot(r, r)
    npt.assert_allclose(mu_R, mu, rtol=1.e-8)
    npt.assert_allclose(TGR[0, 0, 0], mu * (GR[0][0, 0, 0] + lambda_R * r), atol=1.e-8)


def test_random_two_site_environment(ising, np_random):
    J, h = 1., 0.5
    psi = UniformMPS.from_random(d=2, chi=3, L=2, rng=np_random)
    GL, GR, lambda_ = ising.environments(psi)
    assert len(GL) == len(GR) == 2
    exact = 0.
    for i in range(2):
        exact = exact - J * psi.expectation_value([sigma_x, sigma_x], i)
        exact = exact - J * h * psi.expectation_value(sigma_z, i)
    npt.assert_allclose(lambda_, exact, rtol=1.e-8, atol=1.e-10)
    npt.assert_allclose(ising.energy_density(psi), exact / 2, rtol=1.e-8, atol=1.e-10)

    # fixed point equations of the two-site transfer matrix
    T = ising.transfer_matrix(psi, form='LL')
    assert T.L == 2
    TGL = T.apply_left(GL[0])
    chi = psi.chi[0]
    npt.assert_allclose(TGL[0, 1, 0], GL[0][0, 1, 0], atol=1.e-10)
    npt.assert_allclose(TGL[0, 2, 0],
                        GL[0][0, 2, 0] + lambda_ * np.eye(chi).reshape(chi, 1, chi),
                        atol=1.e-8)
    # GL[1] is GL[0] moved over site 0
    GL1 = ising.transfer_matrix(psi, form='LL', sites=[0]).apply_left(GL[0])
    for c in range(3):
        npt.assert_allclose(GL[1][0, c, 0], GL1[0, c, 0], atol=1.e-12)
    # GR[1] is GR[0] moved over site 1
    GR1 = ising.transfer_matrix(psi, form='RR', sites=[1]).apply_right(GR[0])
    for c in range(3):
        npt.assert_allclose(GR[1][0, c, 0], GR1[0, c, 0], atol=1.e-12)


def test_environment_options_from_yaml(ising, tmp_path):
    filename = tmp_path / 'environments.yml'
    filename.write_text("linsolve:\n"
                        "  Algorithm: gmres\n"
                        "  Tol: !py_eval \"float(np.finfo(float).eps**0.6)\"\n"
                        "lambda_tol_exponent: 0.25\n")
    psi = product_state(0.4)
    _, _, lambda_ = ising.environments(psi, options=filename)
    exact = -np.sin(0.4)**2 - 0.5 * np.cos(0.4)
    npt.assert_allclose(lambda_, exact, atol=1.e-12)
