"""
Sparse-recovery algorithms.

Every algorithm recovers x from y ≈ A·x, where A is a LinearOperator (or an
ndarray) of shape (m, n) with m ≤ n, and stops once the residual norm
‖y − A·x‖₂ drops to the tolerance or the iteration cap is reached.

Algorithms
----------
OMP      Orthogonal Matching Pursuit (greedy, needs sparsity k)
BP       Basis Pursuit: min ‖x‖₁ s.t. |A·x − y| ≤ tol/√m, as a linear program
AMP      Approximate Message Passing with soft thresholding
CoSaMP   Compressive Sampling Matching Pursuit (needs k)
ROMP     Regularized OMP (needs k, default k uses log₁₀²n)
SP       Subspace Pursuit (needs k)
SL0      Smoothed-ℓ₀ with graduated σ
EMBP     Expectation-Maximization Belief Propagation: Bernoulli-Gaussian
         GAMP whose prior and noise parameters are learned by EM (needs k
         for the initial sparsity rate)

AMP and SL0 work on the column-normalized operator A/√m internally; the
wrapper divides the returned x by √m so the public contract y ≈ A·x holds
for the operator that was passed in.

A single solve returns a RecoveryOk or raises RecoveryError. run() applies
the solver column by column, records failures as RecoveryErr entries and
keeps going.
"""

import time
from abc import ABC, abstractmethod

import numpy as np
from scipy.optimize import linprog
from scipy.special import expit
from tqdm import tqdm

from ..errors import DimensionMismatchError, RecoveryError
from .operators import MatrixOperator, as_operator, scale
from .results import RecoveryOk, RecoveryErr, RunResult


DEFAULT_TOLERANCE = 1e-3
DEFAULT_MAX_ITER = 1000


def default_sparsity(m, n, squared=False):
    """
    Sparsity heuristic k = m / log₁₀(n) (or m / log₁₀²(n) when squared).

    Parameters
    ----------
    m : int
        Number of measurements.
    n : int
        Signal length.
    squared : bool, optional
        Use log₁₀²(n) in the denominator (ROMP). Default: False

    Returns
    -------
    int
        Heuristic sparsity, at least 1.

    Raises
    ------
    ValueError
        If the heuristic exceeds n.

    Examples
    --------
    >>> default_sparsity(40, 100)
    20
    >>> default_sparsity(40, 100, squared=True)
    10
    """
    if n < 2:
        return max(n, 0)
    denom = np.log10(n)
    if squared:
        denom = denom ** 2
    k = max(1, int(m / denom))
    if k > n:
        raise ValueError(f"Sparsity heuristic gives k={k} > n={n} (m={m})")
    return k


def _dense(A):
    if isinstance(A, MatrixOperator):
        return A.matrix
    return A.to_dense()


def _lstsq(A_sub, y):
    coef, *_ = np.linalg.lstsq(A_sub, y, rcond=None)
    return coef


def _top(values, count):
    """Indices of the `count` largest entries of |values|."""
    count = min(count, values.size)
    if count <= 0:
        return np.zeros(0, dtype=int)
    return np.argpartition(np.abs(values), -count)[-count:]


class CsAlgorithm(ABC):
    """
    Base class for all sparse-recovery algorithms.

    Parameters
    ----------
    tolerance : float, optional
        Residual-norm stopping threshold ε ≥ 0. Default: 1e-3
    max_iter : int, optional
        Iteration cap T ≥ 1. Default: 1000
    k : int, optional
        Sparsity prior; 0 selects the heuristic. Ignored by algorithms that
        do not need one. Default: 0
    """

    name = None
    requires_sparsity = False
    normalizes_operator = False
    squared_log = False

    def __init__(self, tolerance=DEFAULT_TOLERANCE, max_iter=DEFAULT_MAX_ITER, k=0):
        self.set_tolerance(tolerance)
        self.set_max_iter(max_iter)
        self.set_k(k)

    def set_tolerance(self, tolerance):
        if tolerance < 0:
            raise ValueError(f"tolerance must be >= 0, got {tolerance}")
        self.tolerance = float(tolerance)

    def set_max_iter(self, max_iter):
        if max_iter < 1:
            raise ValueError(f"max_iter must be >= 1, got {max_iter}")
        self.max_iter = int(max_iter)

    def set_k(self, k):
        if k < 0:
            raise ValueError(f"k must be >= 0, got {k}")
        self.k = int(k)

    def sparsity(self, m, n, k=None):
        """Effective sparsity for an m × n problem."""
        k = self.k if k is None else int(k)
        if k == 0:
            return default_sparsity(m, n, squared=self.squared_log)
        if k > n:
            raise ValueError(f"Sparsity k={k} exceeds signal length n={n}")
        return k

    @abstractmethod
    def _solve(self, y, A, k, tol):
        """
        Algorithm body.

        Receives y, an (already normalized where applicable) ndarray A, the
        effective sparsity k (None when not required) and the residual
        tolerance. Returns (x, iterations).
        """

    def solve(self, y, A, k=None):
        """
        Recover a single vector.

        Parameters
        ----------
        y : ndarray of shape (m,)
            Measurement vector.
        A : LinearOperator or ndarray of shape (m, n)
            Sensing operator.
        k : int, optional
            Sparsity prior overriding the configured one; 0 selects the
            heuristic.

        Returns
        -------
        RecoveryOk

        Raises
        ------
        DimensionMismatchError
            If len(y) != A.rows().
        RecoveryError
            If the algorithm fails numerically.
        """
        op = as_operator(A)
        y = np.asarray(y, dtype=np.float64).ravel()
        m, n = op.shape
        if y.size != m:
            raise DimensionMismatchError(f"y has length {y.size}, operator has {m} rows")
        if m == 0:
            raise RecoveryError("No measurements to reconstruct from",
                                kind='insufficient_measurements')

        k_eff = self.sparsity(m, n, k) if self.requires_sparsity else None

        start = time.perf_counter()
        working = scale(op, 1.0 / np.sqrt(m)) if self.normalizes_operator else op
        try:
            x, iterations = self._solve(y, _dense(working), k_eff, self.tolerance)
        except (np.linalg.LinAlgError, FloatingPointError, ValueError) as exc:
            raise RecoveryError(f"{self.name}: {exc}") from exc
        if self.normalizes_operator:
            x = x / np.sqrt(m)
        elapsed_ms = (time.perf_counter() - start) * 1e3

        if not np.all(np.isfinite(x)):
            raise RecoveryError(f"{self.name}: solution contains non-finite values")

        residual = float(np.linalg.norm(y - op.apply(x)))
        return RecoveryOk(x=x, iterations=int(iterations), elapsed_ms=elapsed_ms,
                          converged=residual <= self.tolerance, residual=residual)

    def run(self, Y, A, k=None, fill='zero', verbose=False):
        """
        Recover every column of Y independently with the same operator.

        Parameters
        ----------
        Y : ndarray of shape (m, S)
            Measurement matrix, one vector per column.
        A : LinearOperator or ndarray of shape (m, n)
        k : int, optional
            Sparsity prior override.
        fill : {'zero', 'nan'}, optional
            Value written into columns whose solve failed. Default: 'zero'
        verbose : bool, optional
            Show a progress bar over columns. Default: False

        Returns
        -------
        RunResult
        """
        if fill not in ('zero', 'nan'):
            raise ValueError(f"fill must be 'zero' or 'nan', got '{fill}'")
        op = as_operator(A)
        # Lazy compositions are materialized once for all columns
        if not isinstance(op, MatrixOperator):
            op = MatrixOperator(op.to_dense())
        Y = np.asarray(Y, dtype=np.float64)
        if Y.ndim == 1:
            Y = Y[:, None]
        if Y.shape[0] != op.rows():
            raise DimensionMismatchError(
                f"Y has {Y.shape[0]} rows, operator has {op.rows()} rows"
            )

        n_cols = Y.shape[1]
        X = np.zeros((op.cols(), n_cols))
        fill_value = 0.0 if fill == 'zero' else np.nan
        errors, outcomes = [], []
        total_iter = 0

        start = time.perf_counter()
        columns = range(n_cols)
        if verbose:
            columns = tqdm(columns, desc=f"{self.name} columns")
        for i in columns:
            try:
                res = self.solve(Y[:, i], op, k)
            except RecoveryError as exc:
                err = RecoveryErr(kind=exc.kind, message=str(exc), column=i)
                errors.append(err)
                outcomes.append(err)
                X[:, i] = fill_value
                continue
            X[:, i] = res.x
            total_iter += res.iterations
            outcomes.append(res)
        elapsed_ms = (time.perf_counter() - start) * 1e3

        if verbose:
            print(f"  {self.name}: {n_cols} columns, {total_iter} iterations, "
                  f"{len(errors)} failed, {elapsed_ms:.1f} ms")

        return RunResult(X=X, iterations=total_iter, elapsed_ms=elapsed_ms,
                         errors=errors, outcomes=outcomes)

    def __repr__(self):
        return (f"{type(self).__name__}(tolerance={self.tolerance}, "
                f"max_iter={self.max_iter}, k={self.k})")


class Omp(CsAlgorithm):
    """Orthogonal Matching Pursuit."""

    name = 'OMP'
    requires_sparsity = True

    def _solve(self, y, A, k, tol):
        n = A.shape[1]
        support = []
        coef = np.zeros(0)
        r = y.copy()
        iterations = 0
        while len(support) < k and iterations < self.max_iter:
            if np.linalg.norm(r) <= tol:
                break
            corr = A.T @ r
            corr[support] = 0.0
            j = int(np.argmax(np.abs(corr)))
            if corr[j] == 0.0:
                break
            support.append(j)
            coef = _lstsq(A[:, support], y)
            r = y - A[:, support] @ coef
            iterations += 1

        x = np.zeros(n)
        if support:
            x[support] = coef
        return x, iterations


class BasisPursuit(CsAlgorithm):
    """
    Basis Pursuit as a linear program.

    With x = u − v, u, v ≥ 0 the problem

        min 1ᵀ(u + v)  s.t.  −δ ≤ A(u − v) − y ≤ δ,  δ = tol/√m

    is solved with the HiGHS interior-point method. The box width keeps the
    ℓ₂ residual within tol.
    """

    name = 'BP'

    def _solve(self, y, A, k, tol):
        m, n = A.shape
        delta = tol / np.sqrt(m)
        c = np.ones(2 * n)
        A_split = np.hstack([A, -A])
        A_ub = np.vstack([A_split, -A_split])
        b_ub = np.concatenate([y + delta, delta - y])
        res = linprog(c, A_ub=A_ub, b_ub=b_ub, bounds=(0, None),
                      method='highs-ipm', options={'maxiter': self.max_iter})
        if res.status != 0 or res.x is None:
            raise RecoveryError(f"BP: linear program failed ({res.message})")
        x = res.x[:n] - res.x[n:]
        return x, int(getattr(res, 'nit', 0))


class Amp(CsAlgorithm):
    """
    Approximate Message Passing with soft thresholding.

    Parameters
    ----------
    alpha : float, optional
        Threshold multiplier; τ_t = alpha·‖z_t‖/√m. Default: 1.5
    whiten : bool, optional
        Iterate on the row-whitened system √(n/r)·(V_rᵀx = S_r⁻¹U_rᵀy) from
        the thin SVD A = U_r S_r V_rᵀ instead of on A itself. The whitened
        system has the same solutions as A·x = y projected on the range of
        A, and orthogonal rows even when A = Ω·diag(Φ_k). Zero rows
        (zero-filled packets) drop out.
        Default: True

    Notes
    -----
    The stopping test always uses the residual of the system that was
    passed in.
    """

    name = 'AMP'
    normalizes_operator = True

    def __init__(self, tolerance=DEFAULT_TOLERANCE, max_iter=DEFAULT_MAX_ITER, k=0, alpha=1.5,
                 whiten=True):
        super().__init__(tolerance, max_iter, k)
        self.alpha = alpha
        self.whiten = whiten

    @staticmethod
    def _whitened(y, A):
        U, s, Vt = np.linalg.svd(A, full_matrices=False)
        r = int(np.sum(s > s[0] * max(A.shape) * np.finfo(float).eps)) if s.size else 0
        if r == 0:
            raise RecoveryError("AMP: operator has rank 0", kind='insufficient_measurements')
        gain = np.sqrt(A.shape[1] / r)
        return gain * (U[:, :r].T @ y) / s[:r], gain * Vt[:r]

    def _solve(self, y, A, k, tol):
        y_w, A_w = self._whitened(y, A) if self.whiten else (y, A)
        m, n = A_w.shape
        x = np.zeros(n)
        z = y_w.copy()
        iterations = 0
        for iterations in range(1, self.max_iter + 1):
            pseudo = x + A_w.T @ z
            tau = self.alpha * np.linalg.norm(z) / np.sqrt(m)
            x_new = np.sign(pseudo) * np.maximum(np.abs(pseudo) - tau, 0.0)
            z = y_w - A_w @ x_new + z * (np.count_nonzero(x_new) / m)
            step = np.linalg.norm(x_new - x)
            x = x_new
            if np.linalg.norm(y - A @ x) <= tol:
                break
            if step <= 1e-12 * max(np.linalg.norm(x), 1.0):
                break
        return x, iterations


class CoSaMP(CsAlgorithm):
    """Compressive Sampling Matching Pursuit (Needell & Tropp)."""

    name = 'CoSaMP'
    requires_sparsity = True

    def _solve(self, y, A, k, tol):
        n = A.shape[1]
        x = np.zeros(n)
        r = y.copy()
        r_norm = np.linalg.norm(r)
        iterations = 0
        while iterations < self.max_iter and r_norm > tol:
            iterations += 1
            proxy = A.T @ r
            candidates = np.union1d(_top(proxy, 2 * k), np.flatnonzero(x))
            b = _lstsq(A[:, candidates], y)
            keep = _top(b, k)
            x_new = np.zeros(n)
            x_new[candidates[keep]] = b[keep]
            r_new = y - A @ x_new
            r_new_norm = np.linalg.norm(r_new)
            if r_new_norm >= r_norm:
                break
            x, r, r_norm = x_new, r_new, r_new_norm
        return x, iterations


class Romp(CsAlgorithm):
    """
    Regularized Orthogonal Matching Pursuit (Needell & Vershynin).

    Each iteration takes the k largest correlations, keeps the subset of
    comparable magnitudes (within a factor 2) with maximal energy and adds it
    to the support; stops once the support reaches 2k.
    """

    name = 'ROMP'
    requires_sparsity = True
    squared_log = True

    @staticmethod
    def _regularize(idx, values):
        order = np.argsort(-values)
        idx, values = idx[order], values[order]
        best_energy, best = -1.0, idx[:1]
        j = 0
        for i in range(values.size):
            j = max(j, i)
            while j + 1 < values.size and values[i] <= 2.0 * values[j + 1]:
                j += 1
            energy = np.sum(values[i:j + 1] ** 2)
            if energy > best_energy:
                best_energy, best = energy, idx[i:j + 1]
        return best

    def _solve(self, y, A, k, tol):
        n = A.shape[1]
        support = np.zeros(0, dtype=int)
        coef = np.zeros(0)
        r = y.copy()
        iterations = 0
        while support.size < 2 * k and iterations < self.max_iter:
            if np.linalg.norm(r) <= tol:
                break
            u = np.abs(A.T @ r)
            u[support] = 0.0
            J = _top(u, k)
            J = J[u[J] > 0]
            if J.size == 0:
                break
            J0 = self._regularize(J, u[J])
            support = np.union1d(support, J0)
            coef = _lstsq(A[:, support], y)
            r = y - A[:, support] @ coef
            iterations += 1

        x = np.zeros(n)
        x[support] = coef
        return x, iterations


class SubspacePursuit(CsAlgorithm):
    """Subspace Pursuit (Dai & Milenkovic)."""

    name = 'SP'
    requires_sparsity = True

    def _solve(self, y, A, k, tol):
        n = A.shape[1]
        support = np.sort(_top(A.T @ y, k))
        coef = _lstsq(A[:, support], y)
        r = y - A[:, support] @ coef
        r_norm = np.linalg.norm(r)
        iterations = 1
        while iterations < self.max_iter and r_norm > tol:
            candidates = np.union1d(support, _top(A.T @ r, k))
            b = _lstsq(A[:, candidates], y)
            new_support = np.sort(candidates[_top(b, k)])
            new_coef = _lstsq(A[:, new_support], y)
            r_new = y - A[:, new_support] @ new_coef
            r_new_norm = np.linalg.norm(r_new)
            iterations += 1
            if r_new_norm >= r_norm:
                break
            support, coef, r, r_norm = new_support, new_coef, r_new, r_new_norm

        x = np.zeros(n)
        x[support] = coef
        return x, iterations


class SL0(CsAlgorithm):
    """
    Smoothed-ℓ₀ (Mohimani, Babaie-Zadeh & Jutten).

    Parameters
    ----------
    sigma_decrease : float, optional
        Factor applied to σ after each outer step, in (0, 1). Default: 0.5
    sigma_min_ratio : float, optional
        Final σ relative to max|x₀| of the minimum-norm start. Default: 1e-4
    mu : float, optional
        Gradient step. Default: 2.0
    inner_iter : int, optional
        Gradient steps per σ. Default: 3
    """

    name = 'SL0'
    normalizes_operator = True

    def __init__(self, tolerance=DEFAULT_TOLERANCE, max_iter=DEFAULT_MAX_ITER, k=0,
                 sigma_decrease=0.5, sigma_min_ratio=1e-4, mu=2.0, inner_iter=3):
        super().__init__(tolerance, max_iter, k)
        if not 0 < sigma_decrease < 1:
            raise ValueError(f"sigma_decrease must be in (0, 1), got {sigma_decrease}")
        self.sigma_decrease = sigma_decrease
        self.sigma_min_ratio = sigma_min_ratio
        self.mu = mu
        self.inner_iter = inner_iter

    def _solve(self, y, A, k, tol):
        A_pinv = np.linalg.pinv(A)
        x = A_pinv @ y
        peak = np.max(np.abs(x)) if x.size else 0.0
        if peak == 0.0:
            return x, 0
        sigma = 2.0 * peak
        sigma_min = self.sigma_min_ratio * peak
        iterations = 0
        while sigma > sigma_min and iterations < self.max_iter:
            for _ in range(self.inner_iter):
                delta = x * np.exp(-x ** 2 / (2.0 * sigma ** 2))
                x = x - self.mu * delta
                x = x - A_pinv @ (A @ x - y)
            sigma *= self.sigma_decrease
            iterations += 1
        return x, iterations


class Embp(CsAlgorithm):
    """
    Expectation-Maximization Belief Propagation.

    Generalized AMP with a Bernoulli-Gaussian prior
    p(x) = (1 − ρ)·δ(x) + ρ·N(x; μ, s²) and an additive Gaussian output
    channel of variance Δ. After every message-passing sweep ρ, μ, s² and Δ
    are re-estimated by EM. ρ starts at k/n.

    Parameters
    ----------
    damping : float, optional
        Weight of the new estimate in each update, in (0, 1]. Default: 0.5
    """

    name = 'EMBP'
    requires_sparsity = True

    def __init__(self, tolerance=DEFAULT_TOLERANCE, max_iter=DEFAULT_MAX_ITER, k=0, damping=0.5):
        super().__init__(tolerance, max_iter, k)
        if not 0 < damping <= 1:
            raise ValueError(f"damping must be in (0, 1], got {damping}")
        self.damping = damping

    def _solve(self, y, A, k, tol):
        m, n = A.shape
        A2 = A ** 2
        y_energy = float(y @ y)
        if y_energy == 0.0:
            return np.zeros(n), 0

        rho = min(max(k / n, 1.0 / n), 1.0 - 1e-12)
        mean = 0.0
        var = y_energy / (rho * max(np.sum(A2), np.finfo(float).tiny))
        noise = max(y_energy / (100.0 * m), 1e-300)
        noise_floor = 1e-12 * y_energy / m

        x_hat = np.zeros(n)
        x_var = np.full(n, rho * var)
        s_hat = np.zeros(m)
        beta = self.damping
        iterations = 0
        for iterations in range(1, self.max_iter + 1):
            # Output side: AWGN channel
            p_var = A2 @ x_var
            p_hat = A @ x_hat - p_var * s_hat
            s_hat = beta * (y - p_hat) / (p_var + noise) + (1.0 - beta) * s_hat
            s_var = 1.0 / (p_var + noise)
            z_var = p_var * noise / (p_var + noise)
            z_hat = (p_var * y + noise * p_hat) / (p_var + noise)

            # Input side: Bernoulli-Gaussian denoiser
            r_var = 1.0 / np.maximum(A2.T @ s_var, np.finfo(float).tiny)
            r_hat = x_hat + r_var * (A.T @ s_hat)
            g_var = 1.0 / (1.0 / var + 1.0 / r_var)
            g_mean = g_var * (mean / var + r_hat / r_var)
            log_zero = -0.5 * r_hat ** 2 / r_var - 0.5 * np.log(r_var)
            log_one = -0.5 * (r_hat - mean) ** 2 / (var + r_var) - 0.5 * np.log(var + r_var)
            pi = expit(np.log(rho) - np.log1p(-rho) + log_one - log_zero)

            x_new = pi * g_mean
            x_var = np.maximum(pi * (g_var + g_mean ** 2) - x_new ** 2, 0.0)
            step = np.linalg.norm(x_new - x_hat)
            x_hat = beta * x_new + (1.0 - beta) * x_hat

            # EM parameter updates
            pi_sum = np.sum(pi)
            rho = float(np.clip(pi_sum / n, 1.0 / n, 1.0 - 1e-12))
            if pi_sum > 0:
                mean = float(np.sum(pi * g_mean) / pi_sum)
                var = float(max(np.sum(pi * (g_var + (g_mean - mean) ** 2)) / pi_sum,
                                np.finfo(float).tiny))
            noise = float(max(np.mean((y - z_hat) ** 2 + z_var), noise_floor))

            if np.linalg.norm(y - A @ x_hat) <= tol:
                break
            if step <= 1e-10 * max(np.linalg.norm(x_hat), 1.0):
                break
        return x_hat, iterations


SOLVERS = {
    'omp': Omp,
    'bp': BasisPursuit,
    'amp': Amp,
    'cosamp': CoSaMP,
    'romp': Romp,
    'sp': SubspacePursuit,
    'sl0': SL0,
    'embp': Embp,
}


def make_solver(name, **kwargs):
    """
    Instantiate a solver by (case-insensitive) name.

    Examples
    --------
    >>> make_solver('OMP', tolerance=1e-6)
    Omp(tolerance=1e-06, max_iter=1000, k=0)
    """
    key = str(name).lower()
    if key not in SOLVERS:
        raise ValueError(f"Unknown solver '{name}'. Choose from {sorted(SOLVERS)}")
    return SOLVERS[key](**kwargs)
