"""Miscellaneous tools: sorting helpers, logging setup and the error/warning classes."""
# Copyright (C) tnenv Developers, GNU GPLv3

import numpy as np
import os.path

__all__ = [
    'to_iterable', 'argsort', 'setup_logging', 'skip_logging_setup',
    'ArgumentError', 'DimensionError', 'DomainError', 'ConvergenceWarning',
    'UnsupportedOperationWarning', 'BetaWarning'
]

_not_set = object()  # sentinel

#: If True, :func:`setup_logging` does nothing; pytest handles the logging setup in the tests.
skip_logging_setup = False


def to_iterable(a):
    """If `a` is a not iterable or a string, return ``[a]``, else return ``a``."""
    if isinstance(a, str):
        return [a]
    try:
        iter(a)
    except TypeError:
        return [a]
    else:
        return a


def argsort(a, sort=None, **kwargs):
    """wrapper around np.argsort to allow sorting ascending/descending and by magnitude.

    Parameters
    ----------
    a : array_like
        The array to sort.
    sort : ``'m>', 'm<', '>', '<', None``
        Specify how the arguments should be sorted.

        ==================== =============================
        `sort`               order
        ==================== =============================
        ``'m>', 'LM'``       Largest magnitude first
        -------------------- -----------------------------
        ``'m<', 'SM'``       Smallest magnitude first
        -------------------- -----------------------------
        ``'>', 'LR', 'LA'``  Largest real part first
        -------------------- -----------------------------
        ``'<', 'SR', 'SA'``  Smallest real part first
        -------------------- -----------------------------
        ``'LI'``             Largest imaginary part first
        -------------------- -----------------------------
        ``'SI'``             Smallest imaginary part first
        -------------------- -----------------------------
        ``None``             numpy default: same as '<'
        ==================== =============================

    **kwargs :
        Further keyword arguments given directly to :func:`numpy.argsort`.

    Returns
    -------
    index_array : ndarray, int
        Same shape as `a`, such that ``a[index_array]`` is sorted in the specified way.
    """
    if sort is not None:
        if sort == 'm<' or sort == 'SM':
            a = np.abs(a)
        elif sort == 'm>' or sort == 'LM':
            a = -np.abs(a)
        elif sort == '<' or sort == 'SR' or sort == 'SA':
            a = np.real(a)
        elif sort == '>' or sort == 'LR' or sort == 'LA':
            a = -np.real(a)
        elif sort == 'SI':
            a = np.imag(a)
        elif sort == 'LI':
            a = -np.imag(a)
        else:
            raise ValueError("unknown sort option " + repr(sort))
    return np.argsort(a, **kwargs)


def setup_logging(output_filename=None,
                  *,
                  filename=_not_set,
                  to_stdout="INFO",
                  to_file="INFO",
                  format="%(levelname)-8s: %(message)s",
                  datefmt=None,
                  logger_levels={},
                  dict_config=None,
                  capture_warnings=None,
                  skip_setup=None):
    """Configure the :mod:`logging` module.

    The default setup logs to stdout and, if a `filename` is known, to a log-file, with
    a root logger at level ``DEBUG``.
    We **remove** any previously configured logging handlers, such that calling this function
    repeatedly does not duplicate the output.

    Parameters
    ----------
    output_filename : None | str
        Filename of some output. The `filename` of the log-file defaults to this,
        but with the extension replaced by ``.log``.
    filename : None | str
        Filename for the log file. ``None`` disables the log file.
    to_stdout : None | ``"DEBUG" | "INFO" | "WARNING" | "ERROR" | "CRITICAL"``
        If not None, print log with (at least) the given level to stdout.
    to_file : None | ``"DEBUG" | "INFO" | "WARNING" | "ERROR" | "CRITICAL"``
        If not None, save log with (at least) the given level to `filename`.
    format : str
        Formatting string, `fmt` argument of :class:`logging.Formatter`.
        The style is chosen depending on whether the string contains ``'%' '{' '$'``.
    datefmt : str
        Formatting string for the `asctime` key in the `format`.
    logger_levels : dict(str, str)
        Set levels for certain loggers, e.g. ``{'tnenv.tools.params': 'WARNING'}`` to suppress
        the logs of option readouts, or ``{'tnenv.linalg.krylov_based': 'DEBUG'}`` to see the
        progress of the iterative solvers.
    dict_config : dict
        Alternatively, a full configuration dictionary for :func:`logging.config.dictConfig`.
        If used, all other options except `skip_setup` and `capture_warnings` are ignored.
    capture_warnings : bool
        Whether to call :func:`logging.captureWarnings` to include the warnings into the log.
    skip_setup : bool
        If True, don't change anything in the logging setup. Defaults to
        :data:`skip_logging_setup`.
    """
    import logging
    import logging.config
    if filename is _not_set:
        if output_filename is not None:
            root, ext = os.path.splitext(output_filename)
            assert ext != '.log'
            filename = root + '.log'
        else:
            filename = None
    if capture_warnings is None:
        capture_warnings = dict_config is not None or bool(to_stdout or to_file)
    if skip_setup is None:
        skip_setup = skip_logging_setup
    if skip_setup:
        return
    if dict_config is None:
        handlers = {}
        if to_stdout:
            handlers['to_stdout'] = {
                'class': 'logging.StreamHandler',
                'level': to_stdout,
                'formatter': 'custom',
                'stream': 'ext://sys.stdout',
            }
        if to_file and filename is not None:
            handlers['to_file'] = {
                'class': 'logging.FileHandler',
                'level': to_file,
                'formatter': 'custom',
                'filename': filename,
                'mode': 'a',
            }
        dict_config = {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'custom': {
                    'format': format,
                    'datefmt': datefmt
                }
            },
            'handlers': handlers,
            'root': {
                'handlers': list(handlers.keys()),
                'level': 'DEBUG'
            },
            'loggers': {},
        }
        if '%' not in format:
            if '{' in format:
                style = '{'
            else:
                style = '$'
            dict_config['formatters']['custom']['style'] = style
        for name, level in logger_levels.items():
            if name == 'root':
                dict_config['root']['level'] = level
            else:
                dict_config['loggers'].setdefault(name, {})['level'] = level
    else:
        dict_config.setdefault('disable_existing_loggers', False)
    logging.config.dictConfig(dict_config)
    if capture_warnings:
        logging.captureWarnings(True)


class ArgumentError(ValueError):
    """Malformed arguments, e.g. mismatching numbers of indices and values for a constructor."""
    pass


class DimensionError(ValueError):
    """Shapes of the operands are incompatible for the requested arithmetic or contraction."""
    pass


class DomainError(IndexError):
    """A coordinate or linear position is outside of the valid range for a given shape."""
    pass


class ConvergenceWarning(UserWarning):
    """An iterative solver did not converge, or two estimates of the same quantity disagree.

    The corresponding function still returns its best result together with a flag;
    it's up to the caller to decide whether the result is usable.
    """
    pass


class UnsupportedOperationWarning(UserWarning):
    """A degenerate case that is handled on a best-effort basis.

    Examples are the normalization of a tensor without stored entries, or a structural zero
    whose leg dimensions can not be deduced.
    """
    pass


class BetaWarning(UserWarning):
    """Warning category for new features that still need to be tested better.

    Results obtained with such features should be cross-checked, e.g. with another
    well-tested algorithm.
    """
    pass
