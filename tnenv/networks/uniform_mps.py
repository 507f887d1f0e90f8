r"""A uniform matrix product state in the thermodynamic limit.

A uniform MPS stores for each site `i` of the (periodic) unit cell a left-orthonormal tensor
`AL`, a right-orthonormal tensor `AR` and the one-site orthogonality center `AC`, as well as a
center matrix `C` on each bond. All tensors are plain :class:`numpy.ndarray`, the MPS tensors
with legs ``vL, p, vR`` and the center matrices with legs ``vL, vR``.
The center matrix ``C[i]`` is on the left of site `i`, such that::

    |   --AC[i]--  =  --AL[i]--C[i+1]--  =  --C[i]--AR[i]--
    |      |             |                         |

The fixed points of the transfer matrices follow from the center matrices,
see :meth:`UniformMPS.fixed_point`.
Left fixed points have legs ``vR*, vR`` (bra, ket), right fixed points legs ``vL, vL*``
(ket, bra).

Uniform MPS are created from arbitrary tensors with :meth:`UniformMPS.from_A`, which brings them
into the mixed canonical form with the help of :func:`~tnenv.linalg.krylov_based.eigsolve`.
"""
# Copyright (C) tnenv Developers, GNU GPLv3

import numpy as np
import warnings

from ..linalg.krylov_based import eigsolve, default_tol
from ..tools.misc import ConvergenceWarning

import logging
logger = logging.getLogger(__name__)

__all__ = ['UniformMPS']


class UniformMPS:
    r"""A uniform matrix product state, only defined in the thermodynamic limit.

    Parameters
    ----------
    ALs, ARs, ACs : list of ndarray
        The left-orthonormal, right-orthonormal and center-site tensors of each site of the unit
        cell, with legs ``vL, p, vR``.
    Cs : list of ndarray
        The center matrices on the left of each site, legs ``vL, vR``.

    Attributes
    ----------
    dtype : np.dtype
        The common data type of all tensors.
    valid_umps : bool
        Whether ``AL[i] C[i+1] = AC[i] = C[i] AR[i]`` holds, as determined by the last call to
        :meth:`test_validity`.
    _AL, _AR, _AC, _C : list of ndarray
        The tensors, see above.
    """
    def __init__(self, ALs, ARs, ACs, Cs):
        self.dtype = dtype = np.result_type(*ALs, *ARs, *ACs, *Cs)
        self._AL = [np.array(AL, dtype=dtype) for AL in ALs]
        self._AR = [np.array(AR, dtype=dtype) for AR in ARs]
        self._AC = [np.array(AC, dtype=dtype) for AC in ACs]
        self._C = [np.array(C, dtype=dtype) for C in Cs]
        self.valid_umps = False
        self.test_sanity()

    def test_sanity(self):
        """Sanity check, raises ValueErrors, if something is wrong."""
        L = self.L
        if L == 0:
            raise ValueError("empty unit cell")
        for name, Bs in [('AL', self._AL), ('AR', self._AR), ('AC', self._AC)]:
            if len(Bs) != L:
                raise ValueError(f"wrong len of self._{name}")
            for B in Bs:
                if B.ndim != 3:
                    raise ValueError(f"{name} needs legs vL, p, vR, got shape {B.shape!r}")
        if len(self._C) != L:
            raise ValueError("wrong len of self._C")
        for i in range(L):
            chiL = self._C[i].shape[1]
            chiR = self.get_C(i + 1).shape[0]
            for name, B in [('AL', self._AL[i]), ('AR', self._AR[i]), ('AC', self._AC[i])]:
                if B.shape[0] != chiL or B.shape[2] != chiR:
                    raise ValueError(f"{name}[{i:d}] of shape {B.shape!r} doesn't fit bond "
                                     f"dimensions {(chiL, chiR)!r}")
                if B.shape[1] != self._AL[i].shape[1]:
                    raise ValueError(f"inconsistent physical dimension at site {i:d}")

    def test_validity(self, cutoff=1.e-8):
        """Check if ``AL C = AC`` and ``C AR = AC``.

        Returns
        -------
        err : ndarray, shape (L, 2)
            The norm of ``AL[i] C[i+1] - AC[i]`` and ``C[i] AR[i] - AC[i]`` for each site.
        """
        err = np.empty((self.L, 2), dtype=float)
        for i in range(self.L):
            AC = self.get_AC(i)
            ALC = np.tensordot(self.get_AL(i), self.get_C(i + 1), axes=(2, 0))
            CAR = np.tensordot(self.get_C(i), self.get_AR(i), axes=(1, 0))
            err[i, 0] = np.linalg.norm(ALC - AC)
            err[i, 1] = np.linalg.norm(CAR - AC)
        self.valid_umps = np.max(err) < cutoff
        logger.debug("UniformMPS is %s with max error %.3e",
                     "valid" if self.valid_umps else "invalid", np.max(err))
        return err

    @property
    def L(self):
        """Number of sites in the unit cell."""
        return len(self._AL)

    def period(self):
        """Number of sites in the unit cell; same as :attr:`L`."""
        return self.L

    @property
    def d(self):
        """Local dimensions of the physical legs."""
        return [AL.shape[1] for AL in self._AL]

    @property
    def chi(self):
        """Dimensions of the virtual bonds, bond `i` on the left of site `i`."""
        return [C.shape[0] for C in self._C]

    def copy(self):
        """Returns a copy of `self` with copies of all tensors."""
        return self.__class__(self._AL, self._AR, self._AC, self._C)

    def _to_valid_index(self, i):
        """Make sure `i` is a valid index (periodically)."""
        return i % self.L

    def get_AL(self, i, copy=False):
        """Return (view of) `AL` at site `i`."""
        AL = self._AL[self._to_valid_index(i)]
        if copy:
            AL = AL.copy()
        return AL

    def get_AR(self, i, copy=False):
        """Return (view of) `AR` at site `i`."""
        AR = self._AR[self._to_valid_index(i)]
        if copy:
            AR = AR.copy()
        return AR

    def get_AC(self, i, copy=False):
        """Return (view of) `AC` at site `i`."""
        AC = self._AC[self._to_valid_index(i)]
        if copy:
            AC = AC.copy()
        return AC

    def get_C(self, i, copy=False):
        """Return center matrix C on the left of site `i`."""
        C = self._C[self._to_valid_index(i)]
        if copy:
            C = C.copy()
        return C

    def get_B(self, i, form='AR'):
        """Return the tensor at site `i` in the given `form` ``'AL' | 'AR' | 'AC'``."""
        if form == 'AL':
            return self.get_AL(i)
        elif form == 'AR':
            return self.get_AR(i)
        elif form == 'AC':
            return self.get_AC(i)
        raise ValueError(f"invalid form {form!r}")

    def fixed_point(self, kind, i=0):
        """Fixed point of a transfer matrix at bond `i` (on the left of site `i`).

        Parameters
        ----------
        kind : ``'l_LL' | 'r_LL' | 'l_RR' | 'r_RR'``
            ``'l_LL'`` is the left fixed point of the transfer matrix of `AL` (the identity),
            ``'r_LL'`` its right fixed point ``C C^dagger``;
            ``'l_RR'`` is the left fixed point ``C^dagger C`` of the transfer matrix of `AR`,
            ``'r_RR'`` its right fixed point (the identity).
        i : int
            The bond.

        Returns
        -------
        fp : 2D ndarray
            The fixed point. Left fixed points have legs ``vR*, vR``,
            right fixed points ``vL, vL*``; normalized such that ``trace(l r) = 1``.
        """
        C = self.get_C(i)
        if kind == 'l_LL':
            return np.eye(C.shape[0], dtype=self.dtype)
        elif kind == 'r_LL':
            return np.dot(C, C.conj().T)
        elif kind == 'l_RR':
            return np.dot(C.conj().T, C)
        elif kind == 'r_RR':
            return np.eye(C.shape[1], dtype=self.dtype)
        raise ValueError(f"invalid kind of fixed point {kind!r}")

    def norm_test(self):
        """Check that the tensors are properly orthonormal.

        Returns
        -------
        err : ndarray, shape (L, 2)
            Deviation from left-orthonormality of `AL` and right-orthonormality of `AR`.
        """
        err = np.empty((self.L, 2), dtype=float)
        for i in range(self.L):
            AL = self.get_AL(i)
            AR = self.get_AR(i)
            eye_L = np.tensordot(AL.conj(), AL, axes=([0, 1], [0, 1]))
            eye_R = np.tensordot(AR, AR.conj(), axes=([1, 2], [1, 2]))
            err[i, 0] = np.linalg.norm(eye_L - np.eye(eye_L.shape[0]))
            err[i, 1] = np.linalg.norm(eye_R - np.eye(eye_R.shape[0]))
        return err

    def expectation_value(self, ops, i0=0):
        r"""Expectation value of a product of one-site operators on consecutive sites.

        Parameters
        ----------
        ops : ndarray | list of ndarray
            The one-site operator(s) with legs ``p, p*``,
            ``ops[k]`` acting on site ``i0 + k``.
        i0 : int
            The site of the first operator.

        Returns
        -------
        exp_val : float | complex
            ``<psi| ops[0] ops[1] ... |psi>``.
        """
        if isinstance(ops, np.ndarray) and ops.ndim == 2:
            ops = [ops]
        theta = self.get_AC(i0)
        for k in range(1, len(ops)):
            theta = np.tensordot(theta, self.get_AR(i0 + k), axes=(-1, 0))
        n = len(ops)
        op_theta = theta
        for k, op in enumerate(ops):
            op_theta = np.tensordot(op, op_theta, axes=(1, 1 + k))  # p_k, vL, ..., vR
            op_theta = np.moveaxis(op_theta, 0, 1 + k)
        res = np.vdot(theta, op_theta)
        if not np.issubdtype(self.dtype, np.complexfloating) and \
                all(not np.iscomplexobj(op) for op in ops):
            res = res.real
        logger.debug("expectation value of %d-site operator at site %d: %r", n, i0, res)
        return res

    @classmethod
    def from_product_state(cls, p_state, dtype=np.float64):
        """Product state with bond dimension 1.

        Parameters
        ----------
        p_state : list of 1D array_like
            The local state of each site of the unit cell; gets normalized.
        dtype :
            The data type of the tensors.
        """
        As = []
        for psi in p_state:
            psi = np.array(psi, dtype=dtype)
            As.append((psi / np.linalg.norm(psi)).reshape(1, -1, 1))
        Cs = [np.ones((1, 1), dtype=dtype) for _ in As]
        return cls(As, As, As, Cs)

    @classmethod
    def from_random(cls, d=2, chi=4, L=1, dtype=np.float64, rng=None):
        """Random uniform MPS, obtained from random tensors with :meth:`from_A`.

        Parameters
        ----------
        d : int
            Physical dimension.
        chi : int
            Bond dimension.
        L : int
            Number of sites in the unit cell.
        dtype :
            The data type; for complex types, real and imaginary parts are random.
        rng : None | :class:`numpy.random.Generator`
            The random number generator to use.
        """
        if rng is None:
            rng = np.random.default_rng()
        As = []
        for _ in range(L):
            A = rng.standard_normal((chi, d, chi))
            if np.issubdtype(np.dtype(dtype), np.complexfloating):
                A = A + 1.j * rng.standard_normal((chi, d, chi))
            As.append(A.astype(dtype))
        return cls.from_A(As)

    @classmethod
    def from_A(cls, As, tol=None, maxiter=100):
        r"""Bring arbitrary MPS tensors into the mixed canonical form.

        We find the left fixed point ``l = L^\dagger L`` of the transfer matrix of `As` with
        :func:`~tnenv.linalg.krylov_based.eigsolve` and use it as initial guess for an iterative
        sequence of QR decompositions ``L[i] A[i] = AL[i] L[i+1]``. Then, the right fixed point
        ``r = C C^\dagger`` of the transfer matrix of the `AL` gives the center matrices, which
        we diagonalize. Finally, ``AR[i] = C[i]^{-1} AL[i] C[i+1]`` and ``AC[i] = AL[i] C[i+1]``.

        Parameters
        ----------
        As : list of ndarray
            Tensors with legs ``vL, p, vR`` for each site of the unit cell.
            Should be injective, i.e. the transfer matrix should have a non-degenerate fixed point.
        tol : None | float
            Tolerance for the fixed points and the QR iteration.
        maxiter : int
            Maximum number of sweeps in the QR iteration.

        Returns
        -------
        psi : :class:`UniformMPS`
            The normalized uniform MPS in diagonal gauge, i.e. with diagonal `C`.
        """
        As = [np.asarray(A) for A in As]
        L = len(As)
        dtype = np.result_type(*As, np.float32)
        if tol is None:
            tol = default_tol(dtype)
        for i, A in enumerate(As):
            if A.ndim != 3:
                raise ValueError(f"A[{i:d}] needs legs vL, p, vR, got shape {A.shape!r}")
            if A.shape[2] != As[(i + 1) % L].shape[0]:
                raise ValueError(f"bond dimensions of A[{i:d}] and A[{(i + 1) % L:d}] don't match")
            if A.shape[0] * A.shape[1] < A.shape[2]:
                raise ValueError(f"A[{i:d}] of shape {A.shape!r} can't be left-orthonormal")
        eig_options = {'Tol': tol}

        # left fixed point of the transfer matrix of `As`
        def left_transfer(X):
            for A in As:
                X = np.tensordot(X, A, axes=(1, 0))  # vR*, p, vR
                X = np.tensordot(A.conj(), X, axes=([0, 1], [0, 1]))
            return X

        chi0 = As[0].shape[0]
        V, _, _ = eigsolve(left_transfer, np.eye(chi0, dtype=dtype), 1, 'largestabs', eig_options)
        l = _positive_hermitian(V[0], dtype)
        Lam, U = np.linalg.eigh(l)
        L0 = np.sqrt(np.maximum(Lam, 0.))[:, np.newaxis] * U.conj().T
        L0 = L0 / np.linalg.norm(L0)

        # QR sweeps until L[0] is self-consistent
        for sweep in range(maxiter):
            ALs = []
            Lcur = L0
            for A in As:
                chiL, d, chiR = A.shape
                M = np.tensordot(Lcur, A, axes=(1, 0)).reshape(chiL * d, chiR)
                Q, R = _qr_positive(M)
                ALs.append(Q.reshape(chiL, d, chiR))
                Lcur = R / np.linalg.norm(R)
            err = np.linalg.norm(Lcur - L0)
            L0 = Lcur
            if err < tol:
                logger.debug("from_A: QR iteration converged after %d sweeps", sweep + 1)
                break
        else:
            warnings.warn(f"QR iteration did not converge after {maxiter:d} sweeps: "
                          f"error {err:.2e}", ConvergenceWarning, stacklevel=2)

        # right fixed point of the transfer matrix of `AL`
        def right_transfer_site(AL, X):
            X = np.tensordot(AL, X, axes=(2, 0))  # vL, p, vR*
            return np.tensordot(X, AL.conj(), axes=([1, 2], [1, 2]))

        def right_transfer(X):
            for AL in reversed(ALs):
                X = right_transfer_site(AL, X)
            return X

        V, _, _ = eigsolve(right_transfer, np.eye(chi0, dtype=dtype), 1, 'largestabs', eig_options)
        rs = [None] * L
        rs[0] = _positive_hermitian(V[0], dtype)
        for i in reversed(range(1, L)):
            r = right_transfer_site(ALs[i], rs[(i + 1) % L])
            rs[i] = _positive_hermitian(r, dtype)

        # diagonal gauge: r[i] = U[i] S[i]^2 U[i]^dagger
        Us, Ss = [], []
        for r in rs:
            Lam, U = np.linalg.eigh(r)
            Lam, U = Lam[::-1], U[:, ::-1]
            Ss.append(np.sqrt(np.maximum(Lam, 0.)))
            Us.append(U)
        ALs = [
            np.tensordot(np.tensordot(Us[i].conj().T, AL, axes=(1, 0)),
                         Us[(i + 1) % L],
                         axes=(2, 0)) for i, AL in enumerate(ALs)
        ]
        Cs = [np.diag(S).astype(dtype) for S in Ss]
        ARs, ACs = [], []
        for i, AL in enumerate(ALs):
            S_next = Ss[(i + 1) % L]
            AC = AL * S_next[np.newaxis, np.newaxis, :]
            ACs.append(AC)
            ARs.append(AC / Ss[i][:, np.newaxis, np.newaxis])
        psi = cls(ALs, ARs, ACs, Cs)
        psi.test_validity()
        return psi


def _qr_positive(M):
    """QR decomposition with non-negative diagonal of `R`, which makes it unique."""
    Q, R = np.linalg.qr(M)
    diag = np.diag(R)
    phases = np.ones(len(diag), dtype=np.result_type(diag.dtype, np.float64))
    nonzero = np.abs(diag) > 0.
    phases[nonzero] = diag[nonzero] / np.abs(diag[nonzero])
    Q = Q * phases[np.newaxis, :]
    R = phases.conj()[:, np.newaxis] * R
    return Q, R


def _positive_hermitian(X, dtype):
    """Fix the phase of an eigenvector `X` of a transfer matrix to make it hermitian positive
    semi-definite with unit trace."""
    X = np.asarray(X)
    tr = np.trace(X)
    X = X / tr
    X = 0.5 * (X + X.conj().T)
    if not np.issubdtype(np.dtype(dtype), np.complexfloating):
        X = X.real
    return X.astype(dtype, copy=False)
