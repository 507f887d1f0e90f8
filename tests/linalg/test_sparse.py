"""A collection of tests for :mod:`tnenv.linalg.sparse`."""
# Copyright (C) tnenv Developers, GNU GPLv3
import numpy as np
import numpy.testing as npt
import pytest
import scipy.sparse

from tnenv.linalg import sparse
from tnenv.linalg.sparse_tensor import SparseTensor
from tnenv.tools.misc import DimensionError


def test_vectorize_array(np_random):
    a = np_random.standard_normal((2, 3))
    vec = sparse.vectorize(a)
    npt.assert_array_equal(vec, a.ravel(order='F'))
    npt.assert_array_equal(sparse.devectorize(vec, a), a)
    assert sparse.devectorize(np.array([2.5]), 1.) == 2.5
    with pytest.raises(DimensionError):
        sparse.devectorize(vec[:5], a)


def test_vectorize_sparse_numbers():
    t = SparseTensor.from_coordinates([[0, 1], [1, 2]], [1., 2.], shape=(2, 3))
    vec = sparse.vectorize(t)
    npt.assert_array_equal(vec, [0., 0., 1., 0., 0., 2.])
    back = sparse.devectorize(2. * vec, t)
    assert isinstance(back, SparseTensor)
    assert back.nnz == 2  # zeros are not stored
    npt.assert_array_equal(back.to_dense(), 2. * t.to_dense())


def test_vectorize_sparse_blocks():
    t = SparseTensor.from_blocks([[np.ones((2, 1)), None], [None, 3. * np.ones((1, 2))]])
    vec = sparse.vectorize(t)
    # column-major over the blocks: (0,0), (1,0), (0,1), (1,1)
    assert len(vec) == 2 + 1 + 4 + 2
    npt.assert_array_equal(vec, [1., 1., 0., 0., 0., 0., 0., 3., 3.])
    back = sparse.devectorize(vec, t)
    assert back.nnz == 2
    assert back == t
    assert back.legs == t.legs


def test_vectorize_list(np_random):
    a = np_random.standard_normal(3)
    b = np_random.standard_normal((2, 2))
    vec = sparse.vectorize([a, b])
    assert len(vec) == 7
    a2, b2 = sparse.devectorize(vec, [a, b])
    npt.assert_array_equal(a2, a)
    npt.assert_array_equal(b2, b)


@pytest.mark.parametrize('kind', ['callable', 'array', 'sparse_matrix', 'matmul_object'])
def test_flat_linear_operator(kind, np_random):
    M = np_random.standard_normal((6, 6))
    x = np_random.standard_normal((2, 3))

    class MatmulObject:
        def __matmul__(self, other):
            return (M @ other.ravel(order='F')).reshape(other.shape, order='F')

    if kind == 'callable':
        A = lambda y: (M @ y.ravel(order='F')).reshape(y.shape, order='F')
    elif kind == 'array':
        A = M
    elif kind == 'sparse_matrix':
        A = scipy.sparse.csr_matrix(M)
    else:
        A = MatmulObject()
    op, x_flat = sparse.FlatLinearOperator.from_guess(A, x)
    assert op.shape == (6, 6)
    npt.assert_allclose(op.matvec(x_flat), M @ x.ravel(order='F'))
    assert op.matvec_count == 1
    npt.assert_allclose(op.flat_to_structure(x_flat), x)


def test_apply_inverse(np_random):
    M = np_random.standard_normal((4, 4)) + 4. * np.eye(4)
    x = np_random.standard_normal(4)
    expected = np.linalg.solve(M, x)
    npt.assert_allclose(sparse.apply_inverse(M, x), expected)
    npt.assert_allclose(sparse.apply_inverse(scipy.sparse.csr_matrix(M), x), expected)
    npt.assert_allclose(sparse.apply_inverse(lambda y: 2. * y, x), 2. * x)

    class Solver:
        def solve(self, y):
            return np.linalg.solve(M, y)

    npt.assert_allclose(sparse.apply_inverse(Solver(), x), expected)
    with pytest.raises(TypeError):
        sparse.apply_inverse(3, x)


def test_preconditioner(np_random):
    D = np.diag(np.arange(1., 5.))
    x = np_random.standard_normal(4)
    P = sparse.FlatPreconditioner([D, None, lambda y: 2. * y], x)
    npt.assert_allclose(P.matvec(x), 2. * x / np.arange(1., 5.))
    assert not P.nonfinite
    P = sparse.FlatPreconditioner([np.zeros((4, 4)) + np.diag([1., 1., 1., 0.])], x)
    with pytest.raises(np.linalg.LinAlgError):
        P.matvec(x)


def test_shifted_operator(np_random):
    M = np_random.standard_normal((5, 5))
    op = sparse.FlatLinearOperator(M, np.zeros(5))
    shifted = sparse.ShiftedLinearOperator(op, 2., -1.)
    x = np_random.standard_normal(5)
    npt.assert_allclose(shifted.matvec(x), -M @ x + 2. * x)
