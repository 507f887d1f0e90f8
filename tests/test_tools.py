"""A collection of tests for tnenv.tools submodules."""
# Copyright (C) tnenv Developers, GNU GPLv3

import logging
import warnings

import numpy as np
import numpy.testing as npt
import pytest

import tnenv
from tnenv import tools


def test_to_iterable():
    assert tools.misc.to_iterable(3) == [3]
    assert tools.misc.to_iterable('abc') == ['abc']
    a = [1, 2]
    assert tools.misc.to_iterable(a) is a
    t = (1, 2)
    assert tools.misc.to_iterable(t) is t


def test_argsort():
    x = [1., -1., 1.5, -1.5, 2.j, -2.j]
    npt.assert_equal(tools.misc.argsort(x, 'LM', kind='stable'), [4, 5, 2, 3, 0, 1])
    npt.assert_equal(tools.misc.argsort(x, 'SM', kind='stable'), [0, 1, 2, 3, 4, 5])
    npt.assert_equal(tools.misc.argsort(x, 'LR', kind='stable'), [2, 0, 4, 5, 1, 3])
    npt.assert_equal(tools.misc.argsort(x, 'SA', kind='stable'), [3, 1, 4, 5, 0, 2])
    npt.assert_equal(tools.misc.argsort(x, 'LI', kind='stable'), [4, 0, 1, 2, 3, 5])
    npt.assert_equal(tools.misc.argsort(x, 'SI', kind='stable'), [5, 0, 1, 2, 3, 4])
    with pytest.raises(ValueError):
        tools.misc.argsort(x, 'largest')


def test_speigs():
    x = np.array([1., -1.2, 1.5, -1.8, 2.j, -2.2j])
    tol_NULP = len(x)**3
    x_LM = x[tools.misc.argsort(x, 'm>')]
    x_SM = x[tools.misc.argsort(x, 'SM')]
    A = np.diag(x)

    with pytest.warns(UserWarning, match='trimming k of the eigensolver'):
        for k in range(4, 9):
            W, V = tools.math.speigs(A, k, which='LM')
            W = W[tools.misc.argsort(W, 'LM')]
            npt.assert_array_almost_equal_nulp(W, x_LM[:k], tol_NULP)
            W, V = tools.math.speigs(A, k, which='SM')
            W = W[tools.misc.argsort(W, 'SM')]
            npt.assert_array_almost_equal_nulp(W, x_SM[:k], tol_NULP)


def test_speigsh(np_random):
    A = np_random.standard_normal((6, 6))
    A = A + A.T
    W_exact = np.linalg.eigvalsh(A)
    W = tools.math.speigsh(A, 5, which='SA', return_eigenvectors=False)
    npt.assert_allclose(np.sort(W), W_exact[:5], rtol=1.e-12)
    W, V = tools.math.speigsh(A, 2, which='LA')
    npt.assert_allclose(np.sort(W), W_exact[-2:], rtol=1.e-10)
    npt.assert_allclose(A @ V, V * W[np.newaxis, :], atol=1.e-10)
    with pytest.raises(ValueError):
        tools.math.speigsh(np.ones((2, 3)), 1)


def test_matvec_to_array(np_random):
    A_orig = np_random.random([5, 5]) + 1.j * np_random.random([5, 5])

    class A_matvec:
        def __init__(self, A):
            self.A = A
            self.shape = A.shape
            self.dtype = A.dtype

        def matvec(self, v):
            return np.dot(self.A, v)

    A_reconstructed = tools.math.matvec_to_array(A_matvec(A_orig))
    npt.assert_array_almost_equal(A_orig, A_reconstructed, 14)
    with pytest.raises(ValueError):
        tools.math.matvec_to_array(A_matvec(A_orig[:, :3]))


def test_logging_setup(tmp_path, capsys):
    logger = logging.getLogger('tnenv.test_logging')
    root = logging.getLogger()
    old_handlers, old_level = root.handlers[:], root.level
    try:
        tools.misc.setup_logging(output_filename=str(tmp_path / 'output.pkl'),
                                 to_stdout='INFO',
                                 to_file='WARNING',
                                 logger_levels={'tnenv.test_logging': 'DEBUG'},
                                 capture_warnings=False,
                                 skip_setup=False)
        test_message = "test %s message 12345"
        logger.debug(test_message, 'debug')
        logger.info(test_message, 'info')
        logger.warning(test_message, 'warning')
        for handler in root.handlers:
            handler.flush()
        with open(tmp_path / 'output.log', 'r') as f:
            file_text = f.read()
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()
        for handler in old_handlers:
            root.addHandler(handler)
        root.setLevel(old_level)
    assert test_message % 'warning' in file_text
    assert test_message % 'info' not in file_text  # should have filtered that out
    stdout_text = capsys.readouterr().out
    assert test_message % 'warning' in stdout_text
    assert test_message % 'info' in stdout_text
    assert test_message % 'debug' not in stdout_text


def test_skip_logging_setup():
    root = logging.getLogger()
    handlers = root.handlers[:]
    tools.misc.setup_logging(to_stdout='DEBUG', skip_setup=True)
    assert root.handlers == handlers


def test_error_classes():
    assert issubclass(tnenv.ArgumentError, ValueError)
    assert issubclass(tnenv.DimensionError, ValueError)
    assert issubclass(tnenv.DomainError, IndexError)
    categories = [tnenv.ConvergenceWarning, tnenv.UnsupportedOperationWarning, tnenv.BetaWarning]
    for category in categories:
        assert issubclass(category, UserWarning)
        with pytest.warns(category):
            warnings.warn("test", category)


def test_show_config(capsys):
    tnenv.show_config()
    out = capsys.readouterr().out
    assert tnenv.__version__ in out
    assert 'numpy' in out
