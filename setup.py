# Copyright (C) tnenv Developers, GNU GPLv3
from setuptools import setup, find_packages

import os


def read_version():
    """Read the hard-coded version from tnenv/version.py without importing tnenv."""
    fn = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'tnenv', 'version.py')
    with open(fn) as f:
        for line in f:
            if line.startswith('version = '):
                return line.split('=')[1].strip().strip("'\"")
    raise RuntimeError("could not find version in " + fn)


if __name__ == '__main__':
    setup(name='tnenv',
          version=read_version(),
          description='Environments of infinite matrix product operators on uniform MPS',
          license='GPLv3',
          packages=find_packages(include=['tnenv', 'tnenv.*']),
          python_requires='>=3.9',
          install_requires=['numpy', 'scipy>=1.12', 'pyyaml'],
          extras_require={'test': ['pytest']})
