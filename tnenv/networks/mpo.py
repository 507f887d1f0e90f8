"""Infinite matrix product operators (MPO) with a Jordan block structure and their environments.

An MPO is a periodic sequence of tensors `W`, each with two physical legs ``p, p*``.
Here, each `W` is a :class:`~tnenv.linalg.sparse_tensor.SparseTensor` of shape
``(NL, 1, NR, 1)``, where the first and third axes enumerate the MPO *channels* on the bonds.
The stored elements are numpy blocks with legs ``wl, p, wr, p*``, i.e. local operators (with
additional virtual legs ``wl, wr`` of the channels), graphically::

    |            p*
    |            |
    |     wL --- W --- wR
    |            |
    |            p

We consider MPOs which are sums of local terms, e.g. most Hamiltonians. Their `W` have a
Jordan block structure: the channel matrices are upper triangular, the first channel represents
'only identities to the left' and the last channel 'only identities to the right'.
Similar as for the MPS, a bond index ``i`` is *left* of site `i`,
i.e. between sites ``i-1`` and ``i``.

The environments are the fixed points of the :class:`MPOTransferMatrix`, sandwiching the MPO
between a :class:`~tnenv.networks.uniform_mps.UniformMPS` and its conjugate.
The left environment `GL` on a bond is a :class:`~tnenv.linalg.sparse_tensor.SparseTensor` of
shape ``(1, N, 1)`` with blocks of legs ``vR*, wR, vR`` (bra, MPO, ket);
the right environment `GR` has shape ``(1, N, 1)`` and blocks with legs ``vL, wL, vL*``
(ket, MPO, bra)::

    |    .--- vR*          vL* ---.
    |    |                        |
    |   GL--- wR            wL ---GR
    |    |                        |
    |    .--- vR           vL  ---.

Due to the triangular structure, the environments can be found channel by channel,
solving a linear system for each channel with :func:`~tnenv.linalg.krylov_based.linsolve`.
The channel with identities on the diagonal accumulates the extensive part; its growth per unit
cell is the eigenvalue `lambda`, e.g. the energy per unit cell for a Hamiltonian.
For a bra different from the ket, we divide the transfer matrix by its dominant eigenvalue,
such that `lambda` is the mixed expectation value per unit cell.
"""
# Copyright (C) tnenv Developers, GNU GPLv3

import warnings

import numpy as np

from ..linalg.krylov_based import default_tol, eigsolve, linsolve
from ..linalg.coordinates import to_linear
from ..linalg.sparse_tensor import SparseTensor
from ..tools.misc import ConvergenceWarning, to_iterable
from ..tools.params import asConfig

import logging
logger = logging.getLogger(__name__)

__all__ = ['InfMPO', 'MPOTransferMatrix']


class InfMPO:
    r"""Infinite MPO with a Jordan block structure, i.e. a sum of local terms.

    Parameters
    ----------
    Ws : list of :class:`~tnenv.linalg.sparse_tensor.SparseTensor`
        The tensors of the unit cell, each of shape ``(N, 1, N, 1)`` with numpy blocks of legs
        ``wl, p, wr, p*``.

    Attributes
    ----------
    dtype : np.dtype
        The common data type of all `W`.
    _W : list of :class:`~tnenv.linalg.sparse_tensor.SparseTensor`
        The tensors of the unit cell.
    """
    def __init__(self, Ws):
        Ws = list(Ws)
        self._W = [W.copy() for W in Ws]
        self.dtype = np.result_type(*[W.dtype for W in self._W]) if Ws else np.float64
        self.test_sanity()

    def test_sanity(self):
        """Sanity check, raises ValueErrors, if something is wrong."""
        if self.L == 0:
            raise ValueError("empty unit cell")
        N = self._W[0].shape[0]
        for i, W in enumerate(self._W):
            if W.rank != 4 or W.shape[1] != 1 or W.shape[3] != 1:
                raise ValueError(f"W[{i:d}] should have shape (N, 1, N, 1), got {W.shape!r}")
            if W.shape[0] != N or W.shape[2] != N:
                raise ValueError(f"W[{i:d}] has shape {W.shape!r}, expected {N:d} channels")
            for idx, w in W.iter_nonzero():
                if not W.backend.is_block(w) or len(W.backend.block_shape(w)) != 4:
                    raise ValueError(f"W[{i:d}] has an element at {idx!r} which is not a block "
                                     "with legs wl, p, wr, p*")
                if idx[0] > idx[2]:
                    raise ValueError(f"W[{i:d}] is not upper triangular: element at {idx!r}")
            for c in [0, N - 1]:
                if not self.is_eye(i, c):
                    raise ValueError(f"W[{i:d}] doesn't have an identity at channel {c:d}")
        if not self.is_connected():
            logger.warning("InfMPO has channels which don't connect the first and last channel")

    @property
    def L(self):
        """Number of sites in the unit cell."""
        return len(self._W)

    def period(self):
        """Number of sites in the unit cell; same as :attr:`L`."""
        return self.L

    @property
    def N(self):
        """Number of channels on each bond."""
        return self._W[0].shape[0]

    def _to_valid_index(self, i):
        """Make sure `i` is a valid index (periodically)."""
        return i % self.L

    def get_W(self, i, copy=False):
        """Return `W` at site `i`."""
        W = self._W[self._to_valid_index(i)]
        if copy:
            W = W.copy()
        return W

    def channel_dims(self, i):
        """Dimensions of the virtual block legs of the channels on the bond left of site `i`."""
        legs = self.get_W(i).legs[0]
        return [1 if d is None else d for d in legs]

    def is_eye(self, i, c):
        """Whether channel `c` on the diagonal of ``W[i]`` is an identity."""
        W = self.get_W(i)
        return _is_identity(_stored_element(W, (c, 0, c, 0)))

    def is_connected(self):
        """Whether each channel is reachable from the first and connects to the last channel."""
        P = np.eye(self.N, dtype=bool)
        for W in self._W:
            P = _matmul_bool(P, _pattern(W))
        reach = _matmul_bool(np.eye(self.N, dtype=bool), P)
        # transitive closure over unit cells
        for _ in range(self.N):
            reach = reach | _matmul_bool(reach, P)
        return bool(np.all(reach[0, :]) and np.all(reach[:, -1]))

    def horzcat(self, *others):
        """Concatenate the unit cells of `self` and `others` into a larger unit cell."""
        Ws = list(self._W)
        for other in others:
            Ws.extend(other._W)
        return InfMPO(Ws)

    @classmethod
    def ising(cls, J=1., h=1.):
        r"""Transverse field Ising chain ``H = - J \sum_i (X_i X_{i+1} + h Z_i)``.

        The `W` have the channels ``[Id, X, Id]``::

            |   Id   -J X   -J h Z
            |   0     0       X
            |   0     0       Id
        """
        sigma_x = np.array([[0., 1.], [1., 0.]])
        sigma_z = np.array([[1., 0.], [0., -1.]])
        Id = np.eye(2)
        W = SparseTensor.zeros((3, 1, 3, 1))
        W[0, 0, 0, 0] = _op_block(Id)
        W[2, 0, 2, 0] = _op_block(Id)
        W[0, 0, 1, 0] = _op_block(-J * sigma_x)
        W[1, 0, 2, 0] = _op_block(sigma_x)
        W[0, 0, 2, 0] = _op_block(-J * h * sigma_z)
        return cls([W])

    def transfer_matrix(self, mps_top, mps_bot=None, form='LL', sites=None):
        """The :class:`MPOTransferMatrix` of `self` between `mps_top` and `mps_bot`.

        Parameters
        ----------
        mps_top, mps_bot : :class:`~tnenv.networks.uniform_mps.UniformMPS`
            The MPS for the ket and the (conjugated) bra. `mps_bot` defaults to `mps_top`.
        form : ``'LL' | 'RR'``
            Whether to use the `AL` or the `AR` tensors of the MPS.
        sites : None | list of int
            The sites to include; defaults to the common unit cell of `self` and the MPS.
        """
        if mps_bot is None:
            mps_bot = mps_top
        if form == 'LL':
            B = 'AL'
        elif form == 'RR':
            B = 'AR'
        else:
            raise ValueError(f"invalid form {form!r}")
        if sites is None:
            sites = range(int(np.lcm(self.L, mps_top.L)))
        Ws = [self.get_W(i) for i in sites]
        As_top = [mps_top.get_B(i, B) for i in sites]
        As_bot = [mps_bot.get_B(i, B) for i in sites]
        return MPOTransferMatrix(Ws, As_top, As_bot)

    def left_environment(self, mps_top, mps_bot=None, GL=None, options=None):
        """Find the left environment of the MPO.

        Parameters
        ----------
        mps_top, mps_bot : :class:`~tnenv.networks.uniform_mps.UniformMPS`
            The MPS for the ket and the (conjugated) bra. `mps_bot` defaults to `mps_top`.
            For a different bra, the transfer matrix is normalized by its dominant eigenvalue
            `mu` (the overlap per unit cell), i.e. the environment is a fixed point of ``T/mu``.
        GL : None | list of :class:`~tnenv.linalg.sparse_tensor.SparseTensor`
            Initial guess for the left environments; only ``GL[0]`` is used.
        options : dict | str
            Further optional parameters as described in :cfg:config:`environments`.

        Returns
        -------
        GL : list of :class:`~tnenv.linalg.sparse_tensor.SparseTensor`
            The left environment on the bond left of each site of the unit cell.
        lambda_ : float | complex
            The eigenvalue, i.e. the growth of the last channel per unit cell.
        """
        mps_bot = self._check_mps(mps_top, mps_bot)
        options = asConfig(options, 'environments')
        dtype = np.result_type(self.dtype, mps_top.dtype, mps_bot.dtype)
        linsolve_options, eigsolve_options = _solver_options(options, dtype)
        T, fp_left, fp_right = self._normalized_transfer_matrix(mps_top, mps_bot, 'LL',
                                                                eigsolve_options)
        N = self.N
        guess = None if GL is None else GL[0]
        GL0 = _empty_environment(N, T.As_bot[0].shape[0], self.channel_dims(0),
                                 T.As_top[0].shape[0], np.result_type(T.dtype, fp_left))
        fp_left = _env_block(fp_left)
        GL0[:, [0], :] = fp_left
        lambda_ = 0.
        for i in range(1, N):
            rhs = T.slice(list(range(i)), [i]).apply_left(GL0[:, :i, :])
            x = self._solve_channel(T, i, rhs, guess, fp_left, fp_right, linsolve_options, 'left')
            if isinstance(x, tuple):
                x, lambda_ = x
            GL0[:, [i], :] = x
        GLs = [GL0]
        for w in range(1, T.L):
            T_w = self.transfer_matrix(mps_top, mps_bot, form='LL', sites=[w - 1])
            GLs.append(T_w.apply_left(GLs[-1]))
        logger.debug("left environment: lambda = %r", lambda_)
        return GLs, lambda_

    def right_environment(self, mps_top, mps_bot=None, GR=None, options=None):
        """Find the right environment of the MPO.

        Parameters
        ----------
        mps_top, mps_bot : :class:`~tnenv.networks.uniform_mps.UniformMPS`
            The MPS for the ket and the (conjugated) bra, see :meth:`left_environment`.
        GR : None | list of :class:`~tnenv.linalg.sparse_tensor.SparseTensor`
            Initial guess for the right environments; only ``GR[0]`` is used.
        options : dict | str
            Further optional parameters as described in :cfg:config:`environments`.

        Returns
        -------
        GR : list of :class:`~tnenv.linalg.sparse_tensor.SparseTensor`
            The right environment on the bond left of each site of the unit cell,
            i.e. ``GR[0]`` is right of the last site of the unit cell.
        lambda_ : float | complex
            The eigenvalue, i.e. the growth of the first channel per unit cell.
        """
        mps_bot = self._check_mps(mps_top, mps_bot)
        options = asConfig(options, 'environments')
        dtype = np.result_type(self.dtype, mps_top.dtype, mps_bot.dtype)
        linsolve_options, eigsolve_options = _solver_options(options, dtype)
        T, fp_left, fp_right = self._normalized_transfer_matrix(mps_top, mps_bot, 'RR',
                                                                eigsolve_options)
        N = self.N
        guess = None if GR is None else GR[0]
        GR0 = _empty_environment(N, T.As_top[-1].shape[2], self.channel_dims(0),
                                 T.As_bot[-1].shape[2], np.result_type(T.dtype, fp_right))
        fp_right = _env_block(fp_right)
        GR0[:, [N - 1], :] = fp_right
        lambda_ = 0.
        for i in range(N - 2, -1, -1):
            rhs = T.slice([i], list(range(i + 1, N))).apply_right(GR0[:, i + 1:, :])
            x = self._solve_channel(T, i, rhs, guess, fp_right, fp_left, linsolve_options,
                                    'right')
            if isinstance(x, tuple):
                x, lambda_ = x
            GR0[:, [i], :] = x
        L = T.L
        GRs = [None] * L
        GRs[0] = GR0
        for w in range(L - 1, 0, -1):
            T_w = self.transfer_matrix(mps_top, mps_bot, form='RR', sites=[w])
            GRs[w] = T_w.apply_right(GRs[(w + 1) % L])
        logger.debug("right environment: lambda = %r", lambda_)
        return GRs, lambda_

    def environments(self, mps_top, mps_bot=None, GL=None, GR=None, options=None):
        """Find both the left and right environments.

        Parameters
        ----------
        mps_top, mps_bot, GL, GR :
            See :meth:`left_environment` and :meth:`right_environment`.
        options : dict | str
            Further optional parameters as described in :cfg:config:`environments`,
            or the name of a yaml file containing them.

        Options
        -------
        .. cfg:config :: environments

            linsolve : dict
                Options for the :func:`~tnenv.linalg.krylov_based.linsolve` of each channel.
                We change the defaults to ``Algorithm='bicgstab'``, ``MaxIter=500`` and
                ``Verbosity=1`` (warn if it doesn't converge).
            eigsolve : dict
                Options for the :func:`~tnenv.linalg.krylov_based.eigsolve` finding the fixed
                points of the mixed transfer matrix if `mps_bot` is given.
                ``Tol`` defaults to the one of `linsolve`.
            lambda_tol_exponent : float
                The left and right eigenvalue should agree up to a relative tolerance
                ``eps**lambda_tol_exponent``, otherwise we warn. Defaults to 1/3.

        Returns
        -------
        GL, GR : list of :class:`~tnenv.linalg.sparse_tensor.SparseTensor`
            The left and right environments.
        lambda_ : float | complex
            The average of the left and right eigenvalue.
        """
        options = asConfig(options, 'environments')
        exponent = options.get('lambda_tol_exponent', 1. / 3., 'real')
        GL, lambda_L = self.left_environment(mps_top, mps_bot, GL, options)
        GR, lambda_R = self.right_environment(mps_top, mps_bot, GR, options)
        lambda_ = (lambda_L + lambda_R) / 2.
        eps = np.finfo(np.result_type(self.dtype, mps_top.dtype, np.float32)).eps
        tol = eps**exponent
        if lambda_ != 0.:
            tol = tol * abs(lambda_)
        if abs(lambda_L - lambda_R) > tol:
            msg = f"left and right eigenvalue disagree: {lambda_L!r} vs {lambda_R!r}"
            logger.warning(msg)
            warnings.warn(msg, ConvergenceWarning, stacklevel=2)
        return GL, GR, lambda_

    def energy_density(self, mps, options=None):
        """Energy per site of `mps`, assuming that `self` is a Hamiltonian."""
        _, _, lambda_ = self.environments(mps, options=options)
        L = int(np.lcm(self.L, mps.L))
        return lambda_ / L

    def _check_mps(self, mps_top, mps_bot):
        """Check the physical dimensions; returns `mps_bot`, which defaults to `mps_top`."""
        if mps_bot is None:
            mps_bot = mps_top
        if mps_bot.L != mps_top.L:
            raise ValueError(f"unit cells of the MPS don't match: {mps_top.L:d} vs {mps_bot.L:d}")
        for i in range(int(np.lcm(self.L, mps_top.L))):
            p = self.get_W(i).legs[1][0]
            for mps in [mps_top, mps_bot]:
                if p is not None and p != mps.d[mps._to_valid_index(i)]:
                    raise ValueError(f"physical dimension of the MPO at site {i:d} doesn't match")
        return mps_bot

    def _normalized_transfer_matrix(self, mps_top, mps_bot, form, eigsolve_options):
        """The transfer matrix for the environments, and the fixed points of the identity
        channel.

        For ``mps_bot is mps_top``, the MPS transfer matrix has the dominant eigenvalue 1 and the
        fixed points are known from the canonical form. Otherwise, we find the dominant
        eigenvalue `mu` of the mixed transfer matrix and divide the transfer matrix by it.

        Returns
        -------
        T : :class:`MPOTransferMatrix`
            The (normalized) transfer matrix of the unit cell.
        l, r : 2D ndarray
            Left (legs ``vR*, vR``) and right (legs ``vL, vL*``) fixed points on bond 0,
            normalized to ``trace(l r) = 1``.
        """
        T = self.transfer_matrix(mps_top, mps_bot, form=form)
        if mps_bot is mps_top:
            return T, mps_top.fixed_point('l_' + form, 0), mps_top.fixed_point('r_' + form, 0)
        mu, l, r = _mixed_fixed_points(T.As_top, T.As_bot, T.dtype, eigsolve_options)
        logger.debug("mixed transfer matrix (%s): dominant eigenvalue %r", form, mu)
        if abs(mu) < eigsolve_options['Tol']:
            raise ValueError(f"mps_top and mps_bot are orthogonal: overlap {mu!r} per unit cell")
        As_top = list(T.As_top)
        As_top[0] = As_top[0] / mu
        return MPOTransferMatrix(T.Ws, As_top, T.As_bot), l, r

    def _solve_channel(self, T, i, rhs, guess, fp_eye, fp_other, linsolve_options, direction):
        """Solve for channel `i` of the environment, given the contributions `rhs` of the other
        channels.

        Returns the solution, and for the identity channel also the eigenvalue.
        """
        T_diag = T.slice([i], [i])
        if direction == 'left':
            apply = T_diag.apply_left
        else:
            apply = T_diag.apply_right
        if guess is not None:
            guess = guess[:, [i], :]
        if T.is_zero(i, i):
            return rhs
        if T.is_eye(i):
            # T_diag has the eigenvalue 1 with eigenvectors `fp_eye` and `fp_other`:
            # project out the extensive part and regularize with the projector
            lambda_ = _contract_fixed_point(rhs, fp_other)
            rhs = rhs - lambda_ * fp_eye

            def op(x):
                return x - apply(x) + _contract_fixed_point(x, fp_other) * fp_eye

            x, flag = linsolve(op, rhs, guess, options=linsolve_options)
            x = x - _contract_fixed_point(x, fp_other) * fp_eye
            return x, lambda_

        def op(x):
            return x - apply(x)

        x, flag = linsolve(op, rhs, guess, options=linsolve_options)
        return x


class MPOTransferMatrix:
    r"""Transfer matrix of (a unit cell of) an MPO sandwiched between two MPS.

    Acting to the right on a left environment `GL` (:meth:`apply_left`) it computes::

        |    .---conj(A_bot[0])--- ... ---conj(A_bot[L-1])---
        |    |        |                         |
        |   GL-------W[0]--------- ... --------W[L-1]--------
        |    |        |                         |
        |    .------A_top[0]------ ... -------A_top[L-1]-----

    Parameters
    ----------
    Ws : list of :class:`~tnenv.linalg.sparse_tensor.SparseTensor`
        The MPO tensors, see :class:`InfMPO`.
    As_top : list of ndarray
        MPS tensors of the ket, legs ``vL, p, vR``.
    As_bot : list of ndarray
        MPS tensors of the bra (not conjugated yet), legs ``vL, p, vR``.

    Attributes
    ----------
    dtype : np.dtype
        The common data type of all tensors.
    _connectivity : None | 2D ndarray of bool
        Cache for :meth:`connectivity`.
    """
    def __init__(self, Ws, As_top, As_bot=None):
        if As_bot is None:
            As_bot = As_top
        if not len(Ws) == len(As_top) == len(As_bot):
            raise ValueError("need the same number of MPO and MPS tensors")
        self.Ws = list(Ws)
        self.As_top = list(As_top)
        self.As_bot = list(As_bot)
        self.dtype = np.result_type(*[W.dtype for W in self.Ws], *self.As_top, *self.As_bot)
        self._connectivity = None

    @property
    def L(self):
        """Number of sites."""
        return len(self.Ws)

    @property
    def shape(self):
        """Number of channels ``(N_left, N_right)``."""
        return (self.Ws[0].shape[0], self.Ws[-1].shape[2])

    def slice(self, rows, cols):
        """Restrict to the channels `rows` on the left and `cols` on the right.

        Parameters
        ----------
        rows, cols : int | list of int
            The channels to keep.

        Returns
        -------
        T_slice : :class:`MPOTransferMatrix`
            The transfer matrix between the selected channels.
        """
        rows = [int(r) for r in to_iterable(rows)]
        cols = [int(c) for c in to_iterable(cols)]
        Ws = list(self.Ws)
        Ws[0] = Ws[0][rows, :, :, :]
        Ws[-1] = Ws[-1][:, :, cols, :]
        return MPOTransferMatrix(Ws, self.As_top, self.As_bot)

    def apply_left(self, GL):
        """Apply to a left environment `GL` of shape ``(1, N_left, 1)``."""
        for W, A_top, A_bot in zip(self.Ws, self.As_top, self.As_bot):
            GL = _transfer_left(GL, W, A_top, A_bot)
        return GL

    def apply_right(self, GR):
        """Apply to a right environment `GR` of shape ``(1, N_right, 1)``."""
        for W, A_top, A_bot in zip(reversed(self.Ws), reversed(self.As_top),
                                   reversed(self.As_bot)):
            GR = _transfer_right(GR, W, A_top, A_bot)
        return GR

    def connectivity(self):
        """Boolean matrix, whether a channel on the left is connected to a channel on the
        right."""
        if self._connectivity is None:
            P = _pattern(self.Ws[0])
            for W in self.Ws[1:]:
                P = _matmul_bool(P, _pattern(W))
            self._connectivity = P
        return self._connectivity.copy()

    def is_zero(self, i, j):
        """Whether the block between channel `i` on the left and `j` on the right vanishes."""
        if self._connectivity is None:
            self.connectivity()
        return not self._connectivity[i, j]

    def is_eye(self, i, j=None):
        """Whether the block between the channels `i` and `j` (default: `i`) is the transfer
        matrix of the MPS, i.e. all `W` are identities there."""
        if j is None:
            j = i
        return all(_is_identity(_stored_element(W, (i, 0, j, 0))) for W in self.Ws)


def _op_block(op):
    """Local operator with legs ``p, p*`` as block with legs ``wl, p, wr, p*``."""
    op = np.asarray(op)
    return op.reshape(1, op.shape[0], 1, op.shape[1])


def _env_block(fp):
    """Fixed point matrix as environment of a single channel, shape ``(1, 1, 1)``."""
    fp = np.asarray(fp)
    block = fp.reshape(fp.shape[0], 1, fp.shape[1])
    return SparseTensor((1, 1, 1), [[0, 0, 0]], [block])


def _empty_environment(N, chi_first, dims, chi_last, dtype):
    legs = [[chi_first], list(dims), [chi_last]]
    return SparseTensor.zeros((1, N, 1), dtype=dtype, legs=legs)


def _mixed_fixed_points(As_top, As_bot, dtype, eig_options):
    """Dominant eigenvalue `mu` with left and right fixed points of a mixed MPS transfer matrix.

    The fixed points are normalized to ``trace(l r) = 1`` with ``norm(l) = 1``; they are real if
    `dtype` and `mu` are.
    """
    def left_transfer(l):
        for A_top, A_bot in zip(As_top, As_bot):
            l = np.tensordot(l, A_top, axes=(1, 0))  # vR*, p, vR
            l = np.tensordot(A_bot.conj(), l, axes=([0, 1], [0, 1]))  # vR*, vR
        return l

    def right_transfer(r):
        for A_top, A_bot in zip(reversed(As_top), reversed(As_bot)):
            r = np.tensordot(A_top, r, axes=(2, 0))  # vL, p, vL*
            r = np.tensordot(r, A_bot.conj(), axes=([1, 2], [1, 2]))  # vL, vL*
        return r

    tol = eig_options['Tol']
    guess = np.ones((As_bot[0].shape[0], As_top[0].shape[0]), dtype=np.complex128)
    V, D, _ = eigsolve(left_transfer, guess, 1, 'largestabs', eig_options)
    l, mu = V[0], D[0]
    guess = np.ones((As_top[-1].shape[2], As_bot[-1].shape[2]), dtype=np.complex128)
    # a real transfer matrix can have a complex conjugate pair of dominant eigenvalues
    V, D, _ = eigsolve(right_transfer, guess, min(2, guess.size), 'largestabs', eig_options)
    r = V[int(np.argmin(np.abs(D - mu)))]
    if not np.issubdtype(dtype, np.complexfloating) and abs(mu.imag) <= tol * abs(mu):
        mu = mu.real
        l = _real_up_to_phase(l)
        r = _real_up_to_phase(r)
    l = l / np.linalg.norm(l)
    overlap = np.tensordot(l, r, axes=([0, 1], [1, 0]))
    if abs(overlap) < tol:
        raise ValueError("left and right fixed points of the mixed transfer matrix are orthogonal")
    return mu, l, r / overlap


def _real_up_to_phase(X):
    """Remove the global phase of `X`, which is real up to this phase."""
    k = np.argmax(np.abs(X))
    X = X * np.exp(-1.j * np.angle(X.flat[k]))
    return X.real


def _stored_element(T, idx):
    """The element stored at the multi-index `idx`, None for a structural zero."""
    if any(not 0 <= i < n for i, n in zip(idx, T.shape)):
        return None
    k = T._lookup().get(int(to_linear(T.shape, [idx])[0]))
    return None if k is None else T.values[k]


def _is_identity(w):
    if w is None:
        return False
    dl, p, dr, p2 = w.shape
    if dl != dr or p != p2:
        return False
    return np.allclose(w.reshape(dl * p, dr * p2), np.eye(dl * p), rtol=0., atol=1.e-14)


def _pattern(W):
    """Boolean matrix which channels of `W` are connected by a stored element."""
    P = np.zeros((W.shape[0], W.shape[2]), dtype=bool)
    if W.nnz:
        P[W.indices[:, 0], W.indices[:, 2]] = True
    return P


def _matmul_bool(A, B):
    return np.dot(A.astype(np.intp), B.astype(np.intp)) > 0


def _contract_fixed_point(G, fp):
    """Full contraction ``sum_c trace(G[0, c, 0] fp)`` of an environment with a fixed point."""
    res = 0.
    for _, g in G.iter_nonzero():
        res = res + np.tensordot(g.reshape(g.shape[0], g.shape[2]), fp, axes=([0, 1], [1, 0]))
    return res[()] if isinstance(res, np.ndarray) else res


def _solver_options(options, dtype):
    """The sub-configs ``'linsolve'`` and ``'eigsolve'`` of the environment `options`."""
    linsolve_options = options.subconfig('linsolve')
    linsolve_options.setdefault('Algorithm', 'bicgstab')
    linsolve_options.setdefault('MaxIter', 500)
    linsolve_options.setdefault('Tol', default_tol(dtype))
    linsolve_options.setdefault('Verbosity', 1)
    eigsolve_options = options.subconfig('eigsolve')
    eigsolve_options.setdefault('Tol', linsolve_options.silent_get('Tol', default_tol(dtype)))
    return linsolve_options, eigsolve_options


def _transfer_left(GL, W, A_top, A_bot):
    envs = {idx[1]: g for idx, g in GL.iter_nonzero()}
    acc = {}
    for (a, _, b, _), w in W.iter_nonzero():
        g = envs.get(a)
        if g is None:
            continue
        res = np.tensordot(g, A_top, axes=(2, 0))  # vR*, wR, p*, vR
        res = np.tensordot(res, w, axes=([1, 2], [0, 3]))  # vR*, vR, p, wr
        res = np.tensordot(A_bot.conj(), res, axes=([0, 1], [0, 2]))  # vR*, vR, wr
        res = res.transpose(0, 2, 1)
        acc[b] = acc[b] + res if b in acc else res
    legs = [[A_bot.shape[2]], list(W.legs[2]) if W.legs is not None else [None] * W.shape[2],
            [A_top.shape[2]]]
    return _build_environment(W.shape[2], acc, legs, np.result_type(GL.dtype, W.dtype, A_top,
                                                                    A_bot))


def _transfer_right(GR, W, A_top, A_bot):
    envs = {idx[1]: g for idx, g in GR.iter_nonzero()}
    acc = {}
    for (a, _, b, _), w in W.iter_nonzero():
        g = envs.get(b)
        if g is None:
            continue
        res = np.tensordot(A_top, g, axes=(2, 0))  # vL, p*, wL, vL*
        res = np.tensordot(w, res, axes=([2, 3], [2, 1]))  # wl, p, vL, vL*
        res = np.tensordot(res, A_bot.conj(), axes=([1, 3], [1, 2]))  # wl, vL, vL*
        res = res.transpose(1, 0, 2)
        acc[a] = acc[a] + res if a in acc else res
    legs = [[A_top.shape[0]], list(W.legs[0]) if W.legs is not None else [None] * W.shape[0],
            [A_bot.shape[0]]]
    return _build_environment(W.shape[0], acc, legs, np.result_type(GR.dtype, W.dtype, A_top,
                                                                    A_bot))


def _build_environment(N, acc, legs, dtype):
    channels = sorted(acc)
    indices = [[0, c, 0] for c in channels]
    values = [acc[c] for c in channels]
    return SparseTensor((1, N, 1), indices if indices else None, values, dtype, legs)
