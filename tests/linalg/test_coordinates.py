"""A collection of tests for :mod:`tnenv.linalg.coordinates`."""
# Copyright (C) tnenv Developers, GNU GPLv3
import numpy as np
import numpy.testing as npt
import pytest

from tnenv.linalg.coordinates import to_indices, to_linear, strides
from tnenv.tools.misc import DomainError


def test_column_major_order():
    idx = to_indices((2, 3), np.arange(6))
    npt.assert_array_equal(idx, [[0, 0], [1, 0], [0, 1], [1, 1], [0, 2], [1, 2]])
    npt.assert_array_equal(strides((2, 3, 4)), [1, 2, 6])
    assert to_linear((2, 3, 4), [1, 2, 3]) == 1 + 2 * 2 + 3 * 6


@pytest.mark.parametrize('shape', [(5, ), (2, 3), (3, 1, 4), (2, 2, 2, 2)])
def test_inverse(shape, np_random):
    size = int(np.prod(shape))
    linear = np_random.permutation(size)
    idx = to_indices(shape, linear)
    assert idx.shape == (size, len(shape))
    npt.assert_array_equal(to_linear(shape, idx), linear)
    # agrees with numpy in Fortran order
    expected = np.ravel_multi_index(tuple(idx.T), shape, order='F')
    npt.assert_array_equal(to_linear(shape, idx), expected)


def test_empty_and_scalar():
    assert to_indices((2, 3), []).shape == (0, 2)
    assert to_linear((2, 3), np.zeros((0, 2), dtype=int)).shape == (0, )
    npt.assert_array_equal(to_linear((), np.zeros((1, 0), dtype=int)), [0])


def test_out_of_bounds():
    with pytest.raises(DomainError):
        to_indices((2, 3), [6])
    with pytest.raises(DomainError):
        to_indices((2, 3), [-1])
    with pytest.raises(DomainError):
        to_linear((2, 3), [[0, 3]])
    with pytest.raises(DomainError):
        to_linear((2, 3), [[-1, 0]])
    with pytest.raises(DomainError):
        to_linear((2, 3), [[0, 0, 0]])
