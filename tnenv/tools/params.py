"""Option dictionaries of the solvers.

The solvers take their optional parameters as `options`, which can be a plain dictionary,
a :class:`Config` or the name of a yaml file; :func:`asConfig` converts between them.
Nested solvers get their own :meth:`Config.subconfig`, e.g. the ``'linsolve'`` options
of :meth:`~tnenv.networks.mpo.InfMPO.environments`.
"""
# Copyright (C) tnenv Developers, GNU GPLv3

import numbers
import os
import pprint
import warnings
from collections.abc import MutableMapping

import numpy as np
import yaml

import logging
logger = logging.getLogger(__name__)

__all__ = ["Config", "asConfig", "load_yaml_with_py_eval"]


class Config(MutableMapping):
    """Dictionary of options, which keeps track of what has been read out.

    Compared to a :class:`dict`, we log each option the first time it is read,
    :meth:`get` stores the default it returns (such that the options document all the values
    used in the end), and we warn about options which were never read out when the config gets
    deleted, which usually indicates a typo in a key.

    Parameters
    ----------
    config : dict
        The actual option keys and values; not copied.
    name : str
        Name for the log messages, e.g. ``'linsolve'``.

    Attributes
    ----------
    name : str
        Name for the log messages.
    options : dict
        The actual option keys and values.
    unused : set
        The keys of :attr:`options` which were not yet read out.
    """
    def __init__(self, config, name):
        self.options = config
        self.unused = set(config.keys())
        self.name = name

    @classmethod
    def from_yaml(cls, filename, name=None):
        """Read the options from the yaml file `filename`.

        See :func:`load_yaml_with_py_eval` for the supported tags. Don't load files from
        untrusted sources!

        Parameters
        ----------
        filename : str | path-like
            The yaml file.
        name : None | str
            Name of the config, defaults to the base name of `filename`.
        """
        if name is None:
            name = os.path.basename(filename)
        config = load_yaml_with_py_eval(filename)
        if config is None:
            config = {}
        if not isinstance(config, dict):
            raise ValueError(f"{filename!s} doesn't contain a dictionary of options")
        return cls(config, name)

    def __getitem__(self, key):
        val = self.options[key]
        self.log(key, "reading")
        self.unused.discard(key)
        return val

    def __setitem__(self, key, value):
        if key not in self.options:
            self.unused.add(key)
        self.options[key] = value
        self.log(key, "setting")

    def __delitem__(self, key):
        self.log(key, "deleting")
        self.unused.discard(key)
        del self.options[key]

    def __iter__(self):
        return iter(self.options)

    def __len__(self):
        return len(self.options)

    def __str__(self):
        return f"Config {self.name!r}:\n" + pprint.pformat(self.options)

    def __repr__(self):
        return f"Config(<{len(self.options):d} options>, {self.name!r})"

    def __del__(self):
        self.warn_unused()

    def warn_unused(self, recursive=False):
        """Warn about the options not read out so far, and forget about them.

        Called when `self` gets deleted.

        Parameters
        ----------
        recursive : bool
            Whether to warn for the sub-configs as well.
        """
        unused = getattr(self, 'unused', None)
        if unused:
            keys = sorted(unused)
            if len(keys) == 1:
                msg = f"unused option {keys!s} for config {self.name!s}"
            else:
                msg = f"unused options for config {self.name!s}:\n{keys!s}"
            warnings.warn(msg)
            unused.clear()
        if recursive:
            for val in self.options.values():
                if isinstance(val, Config):
                    val.warn_unused(True)

    def keys(self):
        return self.options.keys()

    def get(self, key, default, expect_type=None):
        """Read out `key`; like :meth:`dict.setdefault` rather than :meth:`dict.get`.

        Parameters
        ----------
        key : str
            The option to read out.
        default :
            Returned and stored in the options if `key` is not set.
        expect_type : None | str | (sequence of) type
            If given, warn if the value is neither ``None`` nor an instance of one of these types.
            ``'real'`` and ``'complex'`` stand for :class:`numbers.Real` and
            :class:`numbers.Complex`.

        Returns
        -------
        val :
            The value of `key`.
        """
        use_default = key not in self.options
        val = self.options.setdefault(key, default)
        self.log(key, "reading", use_default)
        self.unused.discard(key)
        if expect_type is not None and val is not None:
            types = _expected_types(expect_type)
            if not isinstance(val, types):
                names = ", ".join(t.__name__ for t in types)
                warnings.warn(f"Invalid type for key {key!r} in config {self.name!r}: "
                              f"expected {names}, got {type(val).__name__}.",
                              stacklevel=2)
        return val

    def silent_get(self, key, default):
        """Like :meth:`dict.get`: neither logged nor counted as read out."""
        return self.options.get(key, default)

    def setdefault(self, key, default):
        """Set `key` to `default` if it is not set yet, without reading it out.

        The key counts as used, such that a default set for a nested solver doesn't trigger
        a warning.
        """
        use_default = key not in self.options
        self.options.setdefault(key, default)
        self.log(key, "set default", use_default)
        self.unused.discard(key)

    def subconfig(self, key, default=None):
        """The options `key` as a :class:`Config`, which is stored in `self`.

        Parameters
        ----------
        key : str
            The option holding the sub-config.
        default : None | dict
            Copied if `key` is not set; defaults to an empty dict.
        """
        use_default = key not in self.options
        if use_default:
            sub = {} if default is None else dict(default)
        else:
            sub = self.options[key]
        sub = asConfig(sub, key)
        self.options[key] = sub
        self.log(key, "subconfig", use_default)
        self.unused.discard(key)
        return sub

    def log(self, option, action="Option", use_default=False):
        """Log reading out `option`, only the first time.

        Defaults go to the ``DEBUG``, values set by the user to the ``INFO`` level.
        """
        if option not in self.unused and not use_default:
            return
        val = self.options.get(option, "<not set>")
        if use_default:
            logger.debug("%s: %s %r=%r (default)", self.name, action, option, val)
        else:
            logger.info("%s: %s %r=%r", self.name, action, option, val)


def asConfig(config, name):
    """Convert `config` to a :class:`Config`.

    Parameters
    ----------
    config : None | dict | :class:`Config` | str | path-like
        A :class:`Config` is returned as is, a string or path is read with
        :meth:`Config.from_yaml`. Otherwise, we wrap the dictionary (empty for ``None``).
    name : str
        Name of the new :class:`Config`.
    """
    if isinstance(config, Config):
        return config
    if isinstance(config, (str, os.PathLike)):
        return Config.from_yaml(config, name)
    if config is None:
        config = {}
    return Config(config, name)


def _expected_types(expect_type):
    if expect_type == 'real':
        return (numbers.Real, )
    if expect_type == 'complex':
        return (numbers.Complex, )
    if isinstance(expect_type, type):
        return (expect_type, )
    return tuple(expect_type)


def _yaml_eval_constructor(loader, node):
    """Evaluate the python expression following a ``!py_eval`` tag."""
    cmd = loader.construct_scalar(node)
    if not isinstance(cmd, str):
        raise ValueError("expect string argument to `!py_eval`")
    try:
        return eval(cmd, loader.eval_context)
    except Exception:
        logger.error("Error while yaml parsing the following !py_eval command:\n%s", cmd)
        raise


class _YamlLoaderWithPyEval(yaml.FullLoader):
    eval_context = {}


yaml.add_constructor("!py_eval", _yaml_eval_constructor, Loader=_YamlLoaderWithPyEval)


def load_yaml_with_py_eval(filename=None, yaml_content=None, context={'np': np}):
    """Load yaml with an additional ``!py_eval`` tag for python expressions.

    For example, the options of :func:`~tnenv.linalg.krylov_based.linsolve` can read

    .. code :: yaml

        Algorithm: bicgstabl
        Tol: !py_eval "np.finfo(float).eps**0.5"

    .. warning ::

        This evaluates arbitrary code, only load files you trust!

    Parameters
    ----------
    filename : None | str | path-like
        The file to load.
    yaml_content : None | str
        The content to parse, used if no `filename` is given.
    context : dict
        The globals for evaluating the expressions.

    Returns
    -------
    data :
        The content of the yaml file, usually a (nested) dictionary.
    """
    _YamlLoaderWithPyEval.eval_context = context
    if filename is not None:
        with open(filename, 'r') as stream:
            return yaml.load(stream, Loader=_YamlLoaderWithPyEval)
    if yaml_content is not None:
        return yaml.load(yaml_content, Loader=_YamlLoaderWithPyEval)
    raise ValueError("pass either filename or yaml_content!")
