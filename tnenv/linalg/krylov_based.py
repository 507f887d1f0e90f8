"""Krylov-based solvers for linear systems and eigenproblems on structural values.

The entry points :func:`linsolve` and :func:`eigsolve` accept operators acting on numpy arrays,
:class:`~tnenv.linalg.sparse_tensor.SparseTensor` or lists of those (see
:mod:`~tnenv.linalg.sparse` for the supported kinds of operators).
They flatten everything with :func:`~tnenv.linalg.sparse.vectorize` and dispatch to the Krylov
solvers of :mod:`scipy.sparse.linalg` or to :class:`BiCGStabL` defined here.

Non-convergence is never raised as an error. Instead, both functions return a convergence flag
together with the best available result; see :data:`CONVERGENCE_FLAGS`.
Depending on the ``Verbosity`` option, failures are reported as :class:`ConvergenceWarning`.
"""
# Copyright (C) tnenv Developers, GNU GPLv3

import numbers
import warnings

import numpy as np
import scipy.sparse.linalg
from scipy.sparse.linalg import ArpackNoConvergence, LinearOperator as ScipyLinearOperator

from ..tools.params import asConfig
from ..tools.misc import argsort, ArgumentError, ConvergenceWarning, UnsupportedOperationWarning
from ..tools.math import matvec_to_array, speigs, speigsh
from .sparse import FlatLinearOperator, FlatPreconditioner, ShiftedLinearOperator, devectorize, \
    vectorize

import logging
logger = logging.getLogger(__name__)

__all__ = [
    'linsolve', 'eigsolve', 'BiCGStabL', 'default_tol', 'LINSOLVE_ALGORITHMS', 'EIG_SELECTORS',
    'CONVERGENCE_FLAGS'
]

#: Valid choices for the ``Algorithm`` option of :func:`linsolve`.
LINSOLVE_ALGORITHMS = ['bicgstab', 'bicgstabl', 'gmres', 'pcg']

#: Valid string selectors `sigma` of :func:`eigsolve` and the corresponding ARPACK `which`.
EIG_SELECTORS = {
    'largestabs': 'LM',
    'smallestabs': 'SM',
    'largestreal': 'LR',
    'smallestreal': 'SR',
    'bothendsreal': ('LR', 'SR'),
    'largestimag': 'LI',
    'smallestimag': 'SI',
    'bothendsimag': ('LI', 'SI'),
}

#: Meaning of the convergence flags returned by :func:`linsolve`.
CONVERGENCE_FLAGS = {
    0: "converged",
    1: "maximum number of iterations reached",
    2: "ill-conditioned preconditioner",
    3: "stagnated",
    4: "a scalar quantity became too small or too large to continue",
}


def default_tol(dtype, exponent=0.75):
    """Default tolerance ``eps**exponent`` for the machine precision `eps` of `dtype`."""
    dtype = np.result_type(dtype, np.float32)
    return float(np.finfo(dtype).eps)**exponent


class BiCGStabL:
    r"""BiCGStab(l) iteration for ``A x = b``, optionally right-preconditioned.

    Each iteration performs `l` BiCG steps followed by a minimal-residual polynomial step of degree
    `l`, which makes the method more robust than BiCGStab (``l=1``) for operators with complex
    spectrum. We follow Algorithm 9.1 of H. A. van der Vorst,
    "Iterative Krylov Methods for Large Linear Systems".
    With a preconditioner `M` approximating ``A^{-1}``, we solve ``A M y = b - A x0`` and set
    ``x = x0 + M y``.

    Parameters
    ----------
    A : :class:`scipy.sparse.linalg.LinearOperator`
        The operator acting on flat vectors.
    b : 1D ndarray
        Right hand side.
    x0 : 1D ndarray
        Initial guess.
    M : None | :class:`scipy.sparse.linalg.LinearOperator`
        Preconditioner, approximating the inverse of `A`.
    tol : float
        Convergence is reached when ``norm(b - A x) <= tol * norm(b)``.
    maxiter : int
        Maximum number of iterations, each with `l` BiCG steps.
    l : int
        Degree of the minimal residual polynomial.
    callback : None | callable
        Called as ``callback(iteration, relative_residual)`` after each iteration.

    Attributes
    ----------
    n_iter : int
        Number of iterations performed so far.
    """
    #: Number of iterations without improvement of the residual after which we give up.
    stagnation_steps = 3

    def __init__(self, A, b, x0, M=None, tol=1.e-10, maxiter=400, l=2, callback=None):
        if l < 1:
            raise ArgumentError(f"BiCGStab(l) needs l >= 1, got {l!r}")
        self.A = A
        self.M = M
        self.b = b
        self.x0 = x0
        self.tol = tol
        self.maxiter = maxiter
        self.l = l
        self.callback = callback
        self.n_iter = 0

    def _op(self, v):
        if self.M is not None:
            v = self.M.matvec(v)
        return self.A.matvec(v)

    def _x(self, y):
        if self.M is not None:
            y = self.M.matvec(y)
        return self.x0 + y

    def run(self):
        """Perform the iteration.

        Returns
        -------
        x : 1D ndarray
            Best approximation of the solution.
        flag : int
            Convergence flag, see :data:`CONVERGENCE_FLAGS`.
        """
        b = self.b
        l = self.l
        dtype = np.result_type(self.A.dtype, b.dtype, self.x0.dtype)
        self.x0 = self.x0.astype(dtype, copy=True)
        bnorm = np.linalg.norm(b)
        r = b - self.A.matvec(self.x0)
        rnorm = np.linalg.norm(r)
        if rnorm <= self.tol * bnorm:
            return self.x0, 0
        r_shadow = r.copy()
        y = np.zeros_like(self.x0)
        rs = [r] + [None] * l
        us = [np.zeros_like(self.x0)] + [None] * l
        rho0, alpha, omega = 1., 0., 1.
        best_rnorm = rnorm
        n_stagnant = 0
        for self.n_iter in range(1, self.maxiter + 1):
            rho0 = -omega * rho0
            # BiCG part
            for j in range(l):
                rho1 = np.vdot(r_shadow, rs[j])
                if rho0 == 0. or not np.isfinite(rho1):
                    return self._x(y), 4
                beta = alpha * rho1 / rho0
                rho0 = rho1
                for i in range(j + 1):
                    us[i] = rs[i] - beta * us[i]
                us[j + 1] = self._op(us[j])
                gamma = np.vdot(r_shadow, us[j + 1])
                if gamma == 0. or not np.isfinite(gamma):
                    return self._x(y), 4
                alpha = rho0 / gamma
                for i in range(j + 1):
                    rs[i] = rs[i] - alpha * us[i + 1]
                rs[j + 1] = self._op(rs[j])
                y = y + alpha * us[0]
            # minimal residual part: modified Gram-Schmidt on rs[1:]
            tau = np.zeros((l + 1, l + 1), dtype=dtype)
            sigma = np.zeros(l + 1)
            g1 = np.zeros(l + 1, dtype=dtype)  # gamma'
            for j in range(1, l + 1):
                for i in range(1, j):
                    tau[i, j] = np.vdot(rs[i], rs[j]) / sigma[i]
                    rs[j] = rs[j] - tau[i, j] * rs[i]
                sigma[j] = np.vdot(rs[j], rs[j]).real
                if sigma[j] == 0. or not np.isfinite(sigma[j]):
                    return self._x(y), 4
                g1[j] = np.vdot(rs[j], rs[0]) / sigma[j]
            g = np.zeros(l + 1, dtype=dtype)  # gamma
            g[l] = g1[l]
            omega = g[l]
            for j in range(l - 1, 0, -1):
                g[j] = g1[j] - sum(tau[j, i] * g[i] for i in range(j + 1, l + 1))
            g2 = np.zeros(l + 1, dtype=dtype)  # gamma''
            for j in range(1, l):
                g2[j] = g[j + 1] + sum(tau[j, i] * g[i + 1] for i in range(j + 1, l))
            y = y + g[1] * rs[0]
            rs[0] = rs[0] - g1[l] * rs[l]
            us[0] = us[0] - g[l] * us[l]
            for j in range(1, l):
                us[0] = us[0] - g[j] * us[j]
                y = y + g2[j] * rs[j]
                rs[0] = rs[0] - g1[j] * rs[j]
            rnorm = np.linalg.norm(rs[0])
            if not np.isfinite(rnorm):
                return self._x(y), 4
            if self.callback is not None:
                self.callback(self.n_iter, rnorm / bnorm)
            if rnorm <= self.tol * bnorm:
                x = self._x(y)
                r_true = b - self.A.matvec(x)
                if np.linalg.norm(r_true) <= self.tol * bnorm:
                    return x, 0
                # recurrence drifted away from the true residual: restart from `x`
                logger.debug("BiCGStab(l): restart with true residual")
                self.x0 = x
                y = np.zeros_like(x)
                rs[0] = r_true
                rnorm = np.linalg.norm(r_true)
            if rnorm < best_rnorm * (1. - np.finfo(sigma.dtype).eps):
                best_rnorm = rnorm
                n_stagnant = 0
            else:
                n_stagnant += 1
                if n_stagnant >= self.stagnation_steps:
                    return self._x(y), 3
        return self._x(y), 1


def _scipy_solve(algorithm, A_op, b_vec, x0_vec, M_op, tol, maxiter, restart, callback):
    kwargs = dict(x0=x0_vec, rtol=tol, atol=0., maxiter=maxiter, M=M_op)
    if algorithm == 'bicgstab':
        x, info = scipy.sparse.linalg.bicgstab(A_op, b_vec, callback=callback, **kwargs)
    elif algorithm == 'gmres':
        x, info = scipy.sparse.linalg.gmres(A_op,
                                            b_vec,
                                            restart=restart,
                                            callback=callback,
                                            callback_type='pr_norm',
                                            **kwargs)
    else:  # pcg
        x, info = scipy.sparse.linalg.cg(A_op, b_vec, callback=callback, **kwargs)
    if info == 0 and np.all(np.isfinite(x)):
        flag = 0
    elif info > 0:
        flag = 1
    elif not np.all(np.isfinite(x)):
        flag = 4
    else:  # breakdown
        flag = 3
    return x, flag


def linsolve(A, b, x0=None, M1=None, M2=None, options=None, return_info=False):
    r"""Solve ``A(x) = b`` approximately with a Krylov method.

    Parameters
    ----------
    A : callable | ndarray | LinearOperator | object supporting ``A @ x``
        The linear operator, see :mod:`~tnenv.linalg.sparse`.
    b :
        The right hand side; any structural value supported by
        :func:`~tnenv.linalg.sparse.vectorize`.
    x0 : None | like `b`
        Initial guess; zero by default.
    M1, M2 : None | callable | ndarray | object with a ``solve`` method
        Preconditioner ``M = M1 M2``; a callable represents the action of the inverse.
    options : dict
        Further optional parameters as described in :cfg:config:`linsolve`.
    return_info : bool
        Whether to return a dictionary with further information about the iteration.

    Options
    -------
    .. cfg:config :: linsolve

        Tol : float
            Relative tolerance for the residual, ``norm(b - A x) <= Tol * norm(b)``.
            Defaults to ``eps**0.75`` for the machine precision `eps` of the number type.
        Algorithm : ``'bicgstab' | 'bicgstabl' | 'gmres' | 'pcg'``
            Which Krylov method to use. ``'pcg'`` requires a hermitian positive definite `A`.
        MaxIter : int
            Maximum number of iterations. For GMRES the number of restart cycles,
            capped at the dimension of the problem.
        Restart : int
            Size of the Krylov space of GMRES before restarting, capped at the dimension.
        L : int
            Degree of the minimal residual polynomial of BiCGStab(l), defaults to 2.
        Verbosity : int
            0 is silent, 1 warns with a :class:`ConvergenceWarning` on failure, 2 additionally
            logs success, 3 logs every iteration.

    Returns
    -------
    x :
        The solution, same structural type as `b`.
    flag : int
        Convergence flag: 0 converged, 1 maximum number of iterations reached,
        2 ill-conditioned preconditioner, 3 stagnated, 4 overflow or underflow.
    info : dict
        Only returned if `return_info`. Keys ``'relres'`` (relative residual),
        ``'iterations'`` and ``'matvec_count'``.
    """
    options = asConfig(options, 'linsolve')
    A_op = FlatLinearOperator(A, b)
    b_vec = vectorize(b)
    dtype = A_op.dtype
    if x0 is not None:
        x0_vec = vectorize(x0)
        dtype = np.result_type(dtype, x0_vec.dtype)
        x0_vec = x0_vec.astype(dtype)
    else:
        x0_vec = np.zeros(b_vec.size, dtype=dtype)
    b_vec = b_vec.astype(dtype)
    dim = b_vec.size
    eps = np.finfo(np.result_type(dtype, np.float32)).eps

    tol = options.get('Tol', default_tol(dtype), 'real')
    algorithm = options.get('Algorithm', 'gmres', str)
    maxiter = options.get('MaxIter', 400, int)
    restart = min(options.get('Restart', 30, int), dim)
    verbosity = options.get('Verbosity', 0, int)
    if algorithm not in LINSOLVE_ALGORITHMS:
        raise ArgumentError(f"unknown algorithm {algorithm!r}, choose from {LINSOLVE_ALGORITHMS!r}")
    if tol < eps**0.9:
        warnings.warn(f"requested tolerance {tol:.2e} might be too strict",
                      UnsupportedOperationWarning,
                      stacklevel=2)
    if algorithm == 'gmres':
        maxiter = min(maxiter, dim)

    M_op = None
    if M1 is not None or M2 is not None:
        M_op = FlatPreconditioner([M1, M2], b, dtype)

    iterations = [0]

    def callback(*args):
        iterations[0] += 1
        if verbosity >= 3:
            logger.info("linsolve (%s): iteration %d", algorithm, iterations[0])

    bnorm = np.linalg.norm(b_vec)
    if bnorm == 0.:
        x_vec = np.zeros(dim, dtype=dtype)
        flag = 0
    elif algorithm == 'bicgstabl':
        solver = BiCGStabL(A_op,
                           b_vec,
                           x0_vec,
                           M_op,
                           tol=tol,
                           maxiter=maxiter,
                           l=options.get('L', 2, int),
                           callback=callback)
        x_vec, flag = solver.run()
    else:
        x_vec, flag = _scipy_solve(algorithm, A_op, b_vec, x0_vec, M_op, tol, maxiter, restart,
                                   callback)
    if M_op is not None and M_op.nonfinite:
        flag = 2
    if bnorm == 0.:
        relres = 0.
    else:
        relres = np.linalg.norm(b_vec - A_op.matvec(x_vec)) / bnorm
    if flag != 0:
        msg = f"linsolve ({algorithm}) did not converge: {CONVERGENCE_FLAGS[flag]} " \
              f"(relative residual {relres:.3e}, tolerance {tol:.3e})"
        logger.debug(msg)
        if verbosity >= 1:
            warnings.warn(msg, ConvergenceWarning, stacklevel=2)
    elif verbosity >= 2:
        logger.info("linsolve (%s) converged after %d iterations, relative residual %.3e",
                    algorithm, iterations[0], relres)
    x = devectorize(x_vec, b)
    if return_info:
        info = {'relres': relres, 'iterations': iterations[0], 'matvec_count': A_op.matvec_count}
        return x, flag, info
    return x, flag


def _random_guess(A):
    shape = getattr(A, 'shape', None)
    if shape is None:
        raise ArgumentError("an initial guess `x0` is required for an operator without shape")
    dtype = np.result_type(getattr(A, 'dtype', np.float64), np.float64)
    rng = np.random.default_rng()
    x0 = rng.standard_normal(shape[1])
    if np.issubdtype(dtype, np.complexfloating):
        x0 = x0 + 1.j * rng.standard_normal(shape[1])
    return x0.astype(dtype)


def _arpack(A_op, k, which, hermitian, kwargs):
    if hermitian:
        which = {'LR': 'LA', 'SR': 'SA'}.get(which, which)
        w, v = speigsh(A_op, k, which=which, **kwargs)
    else:
        w, v = speigs(A_op, k, which=which, **kwargs)
    return w, v, which


def eigsolve(A, x0=None, howmany=1, sigma='largestabs', options=None):
    """Find a few eigenvalues and eigenvectors of a linear operator.

    Parameters
    ----------
    A : callable | ndarray | LinearOperator | object supporting ``A @ x``
        The linear operator, see :mod:`~tnenv.linalg.sparse`.
    x0 : None | structural value
        Initial guess, which also defines the structure of the eigenvectors.
        Can only be omitted if `A` has a `shape`, in which case a random vector is used.
    howmany : int
        Number of eigenpairs to compute.
    sigma : str | number
        Which eigenvalues to find: one of the keys of :data:`EIG_SELECTORS`,
        or a number to find the eigenvalues closest to it (using shift-invert with
        :func:`linsolve`). For ``'bothends*'``, ``ceil(howmany/2)`` eigenvalues come from the
        upper and the rest from the lower end.
    options : dict
        Further optional parameters as described in :cfg:config:`eigsolve`.

    Options
    -------
    .. cfg:config :: eigsolve

        Tol : float
            Relative accuracy of the eigenvalues, default ``eps**0.75``.
        KrylovDim : int
            Dimension of the Krylov subspace, capped at the dimension of the problem.
        MaxIter : int
            Maximum number of restarts of the Arnoldi/Lanczos iteration.
        IsSymmetric : bool
            Whether `A` is hermitian, allowing to use the Lanczos algorithm.
        Verbosity : int
            0 is silent, 1 warns with a :class:`ConvergenceWarning` on failure, 2 additionally
            logs success.

    Returns
    -------
    V : list
        The eigenvectors, same structural type as `x0`.
    D : 1D ndarray
        The eigenvalues, sorted according to `sigma`.
    flag : int
        0 if all requested eigenvalues converged, 1 otherwise.
    """
    options = asConfig(options, 'eigsolve')
    if isinstance(sigma, str):
        if sigma not in EIG_SELECTORS:
            raise ArgumentError(f"invalid eigenvalue selector {sigma!r}")
    elif not isinstance(sigma, numbers.Number):
        raise ArgumentError(f"invalid eigenvalue selector {sigma!r}")
    if x0 is None:
        x0 = _random_guess(A)
    A_op, x0_vec = FlatLinearOperator.from_guess(A, x0)
    dim = A_op.shape[0]
    howmany = int(howmany)
    if howmany < 1 or howmany > dim:
        raise ArgumentError(f"can't find {howmany:d} eigenvalues of a {dim:d}-dimensional problem")
    dtype = A_op.dtype
    tol = options.get('Tol', default_tol(dtype), 'real')
    krylov_dim = min(options.get('KrylovDim', 20, int), dim)
    maxiter = options.get('MaxIter', 100, int)
    hermitian = options.get('IsSymmetric', False, bool)
    verbosity = options.get('Verbosity', 0, int)
    if hermitian and isinstance(sigma, str) and sigma.endswith('imag'):
        hermitian = False  # eigsh can't select by imaginary part
    ncv = min(dim, max(krylov_dim, 2 * howmany + 1))
    kwargs = dict(tol=tol, maxiter=maxiter, ncv=ncv)
    if np.linalg.norm(x0_vec) > 0.:
        kwargs['v0'] = x0_vec
    flag = 0
    try:
        if not isinstance(sigma, str):
            W, V = _shift_invert(A_op, howmany, sigma, hermitian, tol, kwargs)
            order = np.argsort(np.abs(W - sigma), kind='stable')
        elif isinstance(EIG_SELECTORS[sigma], tuple):
            which_hi, which_lo = EIG_SELECTORS[sigma]
            k_hi = (howmany + 1) // 2
            W, V, _ = _arpack(A_op, k_hi, which_hi, hermitian, kwargs)
            perm = argsort(W, which_hi, kind='stable')
            W_hi, V_hi = W[perm], V[:, perm]
            if howmany - k_hi > 0:
                W_lo, V_lo, _ = _arpack(A_op, howmany - k_hi, which_lo, hermitian, kwargs)
                perm = argsort(W_lo, which_lo, kind='stable')
                W = np.concatenate([W_hi, W_lo[perm]])
                V = np.concatenate([V_hi, V_lo[:, perm]], axis=1)
            else:
                W, V = W_hi, V_hi
            order = np.arange(len(W))
        else:
            W, V, which = _arpack(A_op, howmany, EIG_SELECTORS[sigma], hermitian, kwargs)
            order = argsort(W, which, kind='stable')
    except ArpackNoConvergence as err:
        flag = 1
        W, V = err.eigenvalues, err.eigenvectors
        order = np.arange(len(W))
        if isinstance(sigma, str) and not isinstance(EIG_SELECTORS[sigma], tuple):
            order = argsort(W, EIG_SELECTORS[sigma], kind='stable')
    W = W[order][:howmany]
    V = V[:, order][:, :howmany]
    if len(W) < howmany:
        flag = 1
    if flag:
        msg = f"eigsolve did not converge: found {len(W):d} of {howmany:d} eigenvalues"
        logger.debug(msg)
        if verbosity >= 1:
            warnings.warn(msg, ConvergenceWarning, stacklevel=2)
    elif verbosity >= 2:
        logger.info("eigsolve converged after %d matvecs", A_op.matvec_count)
    vectors = [devectorize(V[:, i], x0) for i in range(V.shape[1])]
    return vectors, W, flag


def _shift_invert(A_op, k, sigma, hermitian, tol, kwargs):
    """Eigenpairs of `A_op` closest to `sigma`."""
    dim = A_op.shape[0]
    if k >= dim - 1:
        Amat = matvec_to_array(A_op)
        if hermitian and np.isreal(sigma):
            return np.linalg.eigh(Amat)
        return np.linalg.eig(Amat)
    shifted = ShiftedLinearOperator(A_op, -sigma)
    inv_options = {'Tol': tol, 'Algorithm': 'gmres', 'MaxIter': dim, 'Verbosity': 1}

    def solve(v):
        x, _ = linsolve(shifted, np.ravel(v), options=dict(inv_options))
        return x

    OPinv = ScipyLinearOperator(shape=A_op.shape, matvec=solve, dtype=shifted.dtype)
    if hermitian and np.isreal(sigma):
        return scipy.sparse.linalg.eigsh(A_op, k, sigma=sigma, which='LM', OPinv=OPinv, **kwargs)
    return scipy.sparse.linalg.eigs(A_op, k, sigma=sigma, which='LM', OPinv=OPinv, **kwargs)
