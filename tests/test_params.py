"""A test for tnenv.tools.params."""
# Copyright (C) tnenv Developers, GNU GPLv3

import copy
import textwrap

import numpy as np
import pytest

from tnenv.tools.params import Config, asConfig, load_yaml_with_py_eval


def example_function(example_pars, keys=['a', 'b', 'c']):
    """example function using a parameter dictionary."""
    for default, k in enumerate(keys):
        p_k = example_pars.get(k, default)
        print("read out parameter {k!r} = {p_k!r}".format(k=k, p_k=p_k))


def test_parameters():
    pars = Config(dict(), "Test empty")
    example_function(pars)
    pars = dict(
        a=None,
        b=2.5,
        d="dict-style access",
        e="non-used",
        sub=dict(x=10, y=20),
    )
    pars_copy = copy.deepcopy(pars)
    config = asConfig(pars, "Test parameters")
    assert asConfig(config, "other name") is config
    example_function(config)
    assert config['d'] == "dict-style access"  # reads out d
    pars_copy['c'] = 2
    assert config.options['c'] == 2
    sub = config.subconfig("sub")
    assert config.options['sub'] is sub
    sub.setdefault('z', 30)
    assert sub.options == dict(x=10, y=20, z=30)
    example_function(sub)
    assert config.subconfig('new', {'k': 1})['k'] == 1

    # test .get(..., expect_types) argument
    _ = config.get('a', 4, NotADirectoryError)  # value of None always passes
    _ = config.get('a', 12, [NotADirectoryError, dict])  # value of None always passes
    _ = config.get('b', 5, 'real')
    with pytest.warns(UserWarning, match='Invalid type for key'):
        _ = config.get('b', 5, int)
    _ = config.get('uses_default_value', 5.3, 'real')
    with pytest.warns(UserWarning, match='Invalid type for key'):
        _ = config.get('uses_default_value', 5.3, int)
    _ = config.get('b', 5, [float, dict])
    with pytest.warns(UserWarning, match='Invalid type for key'):
        _ = config.get('b', 5, [int, dict])
    assert config.silent_get('e', None) == "non-used"
    assert config.silent_get('not there', 3) == 3

    # test warnings on deletion
    assert config.unused == {'e'}
    with pytest.warns(UserWarning, match=r"unused option \['e'\] for config Test parameters"):
        del config
    del pars
    assert sub.unused == {'x', 'y'}
    with pytest.warns(UserWarning, match=r"unused options for config sub"):
        sub.__del__()
    assert len(sub.unused) == 0


def test_linsolve_options_readout():
    """The solvers set the used defaults in the options."""
    from tnenv.linalg.krylov_based import linsolve, default_tol
    options = {'Algorithm': 'gmres'}
    linsolve(np.diag([1., 2., 3.]), np.ones(3), options=options)
    assert options['Tol'] == default_tol(np.float64)
    assert options['MaxIter'] == 400
    assert options['Verbosity'] == 0


def test_yaml(tmp_path):
    yaml_content = """
    Algorithm: bicgstabl
    L: 4
    Tol: !py_eval "float(np.finfo(float).eps**0.5)"
    MaxIter: !py_eval |
        2**3 * 5
    """
    expected = {
        'Algorithm': 'bicgstabl',
        'L': 4,
        'Tol': np.finfo(float).eps**0.5,
        'MaxIter': 40,
    }
    yaml_content = textwrap.dedent(yaml_content)
    assert load_yaml_with_py_eval(yaml_content=yaml_content) == expected
    filename = tmp_path / 'linsolve.yml'
    filename.write_text(yaml_content)
    config = Config.from_yaml(filename)
    assert config.name == 'linsolve.yml'
    assert config.options == expected
    config.unused.clear()
    config = asConfig(str(filename), 'linsolve')
    assert config.name == 'linsolve'
    assert config.unused == set(expected)
    config.unused.clear()

    # solve with the options from a file
    from tnenv.linalg.krylov_based import linsolve
    filename = tmp_path / 'gmres.yml'
    filename.write_text("Algorithm: gmres\nTol: !py_eval \"1.e-2 * np.finfo(float).eps**0.5\"\n")
    options = asConfig(filename, 'linsolve')
    x, flag = linsolve(np.diag([1., 2., 4.]), np.ones(3), options=options)
    assert flag == 0
    np.testing.assert_allclose(x, [1., 0.5, 0.25], rtol=1.e-7)
    assert options.unused == set()

    with pytest.raises(ValueError):
        load_yaml_with_py_eval()
    not_a_dict = tmp_path / 'list.yml'
    not_a_dict.write_text("- 1\n- 2\n")
    with pytest.raises(ValueError):
        Config.from_yaml(not_a_dict)
