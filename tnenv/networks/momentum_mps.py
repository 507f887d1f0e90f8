r"""Quasi-particle excitations on top of uniform matrix product states.

The quasi-particle ansatz with momentum `p` is built from a left and a right uniform MPS
:class:`~tnenv.networks.uniform_mps.UniformMPS` background.
For each site of the unit cell, one of the tensors is replaced by an excitation tensor `B`::

    |                        ...--AL[n-1] -- B[n] -- AR[n+1] -- ...
    | \sum_n  \exp{i p n}          |         |  |      |

where `AL` are taken from the left and `AR` from the right background.
Compared to the MPS tensors, `B` carries an additional auxiliary leg ``aux``, which for
excitations in a different charge sector carries that charge.
The `B` is decomposed into::

    |           -B- = - VL -- X -
    |            |      |     |

Here, `VL` is the orthogonal complement (left null space) of the corresponding `AL` tensor,
such that the state is always orthogonal to the left background. `X` parametrizes the excited
states.
"""
# Copyright (C) tnenv Developers, GNU GPLv3

import numpy as np
import scipy.linalg
import warnings

from ..tools.misc import ArgumentError, BetaWarning

import logging
logger = logging.getLogger(__name__)

__all__ = ['QuasiParticleMPS', 'left_null_space']


class QuasiParticleMPS:
    r"""A quasi-particle excitation with momentum `p` on top of uniform MPS backgrounds.

    Parameters
    ----------
    mpsleft : :class:`~tnenv.networks.uniform_mps.UniformMPS`
        The background on the left of the excitation.
    mpsright : :class:`~tnenv.networks.uniform_mps.UniformMPS`
        The background on the right of the excitation.
        Needs the same period as `mpsleft`.
    X : list of ndarray
        Excitation parameters for each site of the unit cell, legs ``null, aux, vR``.
    VL : None | list of ndarray
        Left null spaces of the ``mpsleft.get_AL(i)`` with legs ``vL, p, null``.
        Computed with :func:`left_null_space` if not given.
    p : float
        The momentum of the state.
    charge :
        Label of the charge sector carried by the ``aux`` leg; ``None`` for the trivial sector.

    Attributes
    ----------
    mpsleft, mpsright : :class:`~tnenv.networks.uniform_mps.UniformMPS`
        The backgrounds.
    p : float
        The momentum of the state.
    charge :
        Label of the charge sector, ``None`` for the trivial one.
    _X : list of ndarray
        The excitation parameters with legs ``null, aux, vR``.
    _VL : list of ndarray
        The left null spaces with legs ``vL, p, null``.
    _B : None | list of ndarray
        Cached excitation tensors ``B = VL X`` with legs ``vL, p, aux, vR``.
        ``None`` as long as they haven't been computed since the last change of `X`.
    """
    def __init__(self, mpsleft, mpsright, X, VL=None, p=0, charge=None):
        warnings.warn('QuasiParticleMPS is a new feature and not as well-tested as the '
                      'rest of the library', BetaWarning, stacklevel=2)
        if mpsleft.period() != mpsright.period():
            raise ArgumentError(f"periods of the backgrounds differ: {mpsleft.period():d} "
                                f"!= {mpsright.period():d}")
        L = mpsleft.period()
        if len(X) != L:
            raise ArgumentError(f"need one excitation tensor per site, got {len(X):d} for {L:d}")
        self.mpsleft = mpsleft
        self.mpsright = mpsright
        self.p = p
        self.charge = charge
        if VL is None:
            VL = [left_null_space(mpsleft.get_AL(i)) for i in range(L)]
        elif len(VL) != L:
            raise ArgumentError(f"need one null space per site, got {len(VL):d} for {L:d}")
        self._VL = list(VL)
        self._X = [np.asarray(X_i) for X_i in X]
        self._B = None
        self.test_sanity()

    def test_sanity(self):
        """Sanity check, raises ValueErrors, if something is wrong."""
        for i in range(self.period()):
            VL = self._VL[i]
            X = self._X[i]
            AL = self.mpsleft.get_AL(i)
            if VL.ndim != 3 or VL.shape[:2] != AL.shape[:2]:
                raise ValueError(f"VL[{i:d}] of shape {VL.shape!r} doesn't fit AL of shape "
                                 f"{AL.shape!r}")
            if X.ndim != 3:
                raise ValueError(f"X needs legs null, aux, vR, got shape {X.shape!r}")
            if X.shape[0] != VL.shape[2]:
                raise ValueError(f"X[{i:d}] of shape {X.shape!r} doesn't fit VL of shape "
                                 f"{VL.shape!r}")
            chiR = self.mpsright.get_AR(i).shape[2]
            if X.shape[2] != chiR:
                raise ValueError(f"X[{i:d}] of shape {X.shape!r} doesn't fit bond dimension "
                                 f"{chiR:d} of the right background")
            if X.shape[1] != self._X[0].shape[1]:
                raise ValueError("inconsistent auxiliary dimension")

    def copy(self):
        """Returns a copy of `self` with copies of the excitation parameters.

        The backgrounds and null spaces are shared.
        """
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', BetaWarning)
            cp = self.__class__(self.mpsleft, self.mpsright, [X.copy() for X in self._X],
                                self._VL, self.p, self.charge)
        return cp

    def period(self):
        """Number of sites in the unit cell."""
        return len(self._X)

    @property
    def L(self):
        """Number of sites in the unit cell; same as :meth:`period`."""
        return len(self._X)

    def _to_valid_index(self, i):
        """Make sure `i` is a valid index (periodically)."""
        return i % self.period()

    def get_AL(self, i, copy=False):
        """Return (view of) `AL` of the left background at site `i`."""
        return self.mpsleft.get_AL(i, copy=copy)

    def get_AR(self, i, copy=False):
        """Return (view of) `AR` of the right background at site `i`."""
        return self.mpsright.get_AR(i, copy=copy)

    def get_VL(self, i, copy=False):
        """Return (view of) the left null space `VL` at site `i`, legs ``vL, p, null``."""
        VL = self._VL[self._to_valid_index(i)]
        if copy:
            VL = VL.copy()
        return VL

    def get_X(self, i, copy=False):
        """Return `X` at site `i`.

        Parameters
        ----------
        i : int
            Index choosing the site.
        copy : bool
            Whether to return a (writable) copy. Otherwise, we return a read-only view, since
            the cached `B` depend on `X`; use :meth:`set_X` to change it.

        Returns
        -------
        X : ndarray
            The excitation parameters at site `i` with legs ``null, aux, vR``.
        """
        X = self._X[self._to_valid_index(i)]
        if copy:
            return X.copy()
        X = X.view()
        X.flags.writeable = False
        return X

    def set_X(self, i, X):
        """Set `X` at site `i`. No copy is made!

        Invalidates the cached `B` tensors.
        """
        i = self._to_valid_index(i)
        X = np.asarray(X)
        if X.shape != self._X[i].shape:
            raise ValueError(f"X of shape {X.shape!r} doesn't replace shape "
                             f"{self._X[i].shape!r}")
        self._X[i] = X
        self._B = None

    def get_B(self, i, copy=False):
        """Return the excitation tensor ``B = VL X`` at site `i`, legs ``vL, p, aux, vR``.

        All `B` are computed at the first call and cached until the next :meth:`set_X`.
        """
        if self._B is None:
            self._B = [np.tensordot(VL, X, axes=(2, 0)) for VL, X in zip(self._VL, self._X)]
        B = self._B[self._to_valid_index(i)]
        if copy:
            B = B.copy()
        return B

    def aux_space(self, i=0):
        """Dimension of the auxiliary leg of the excitation at site `i`."""
        return self.get_X(i).shape[1]

    def is_trivial(self):
        """Whether the excitation has zero momentum and lives in the trivial charge sector."""
        return self.p == 0 and self.charge is None and self.aux_space(0) == 1

    def underlying_type(self):
        """The common data type of the excitation parameters."""
        return np.result_type(*self._X)

    @classmethod
    def from_random(cls, mpsleft, mpsright=None, p=0, charge=None, charge_dim=1, rng=None):
        """Quasi-particle with random (normal distributed) excitation parameters.

        Parameters
        ----------
        mpsleft : :class:`~tnenv.networks.uniform_mps.UniformMPS`
            The left background.
        mpsright : None | :class:`~tnenv.networks.uniform_mps.UniformMPS`
            The right background; defaults to `mpsleft`, i.e. a topologically trivial excitation.
        p : float
            The momentum.
        charge :
            Label of the charge sector.
        charge_dim : int
            Dimension of the auxiliary leg.
        rng : None | :class:`numpy.random.Generator`
            The random number generator to use.
        """
        if mpsright is None:
            mpsright = mpsleft
        if mpsleft.period() != mpsright.period():
            raise ArgumentError(f"periods of the backgrounds differ: {mpsleft.period():d} "
                                f"!= {mpsright.period():d}")
        if rng is None:
            rng = np.random.default_rng()
        dtype = np.result_type(mpsleft.dtype, mpsright.dtype)
        VL = []
        X = []
        for i in range(mpsleft.period()):
            VL_i = left_null_space(mpsleft.get_AL(i))
            shape = (VL_i.shape[2], charge_dim, mpsright.get_AR(i).shape[2])
            X_i = rng.standard_normal(shape)
            if np.issubdtype(dtype, np.complexfloating):
                X_i = X_i + 1.j * rng.standard_normal(shape)
            VL.append(VL_i)
            X.append(X_i.astype(dtype))
        return cls(mpsleft, mpsright, X, VL, p, charge)


def left_null_space(AL):
    """Orthonormal basis of the complement of `AL` in the ``vL, p`` space.

    Parameters
    ----------
    AL : ndarray
        Left-orthonormal tensor with legs ``vL, p, vR``.

    Returns
    -------
    VL : ndarray
        Tensor with legs ``vL, p, null`` and ``chi_L * d - chi_R`` columns (for an isometric
        `AL`), such that ``VL^dagger VL = 1`` and ``AL^dagger VL = 0``.
    """
    chiL, d, chiR = AL.shape
    M = AL.reshape(chiL * d, chiR)
    N = scipy.linalg.null_space(M.conj().T)
    logger.debug("left null space of AL with shape %r has dimension %d", AL.shape, N.shape[1])
    return N.reshape(chiL, d, N.shape[1])
