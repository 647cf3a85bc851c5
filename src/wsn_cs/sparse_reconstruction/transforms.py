"""
Orthonormal sparsifying transforms Ψ.

Convention: apply maps coefficients to signal (x = Ψ·θ) and apply_adjoint
maps signal to coefficients (θ = Ψᵀ·x). Both transforms are orthonormal, so
Ψᵀ·Ψ = I and the round trip is exact up to floating-point error.

DCT
    Type-II DCT with orthonormal scaling (scipy.fft.dct, norm='ortho');
    Ψ is its inverse.

DFT
    Real orthonormal Fourier basis. The ortho-scaled rfft spectrum X of a
    real x is packed into n reals as

        [X_0, √2·Re X_1, √2·Im X_1, ..., √2·Re X_K, √2·Im X_K, X_{n/2}]

    with K = ⌊(n−1)/2⌋ and the last entry present only for even n. By
    Parseval the packing preserves the norm, so Ψ stays real and orthogonal.
"""

import numpy as np
from scipy import fft as sp_fft

from .operators import LinearOperator


TRANSFORM_KINDS = ('dct', 'dft')


class DctTransform(LinearOperator):
    """Orthonormal 1-D DCT basis of size n."""

    def __init__(self, n):
        super().__init__(n, n)

    def apply(self, theta):
        theta = self._check_input(theta, self._n, 'theta')
        if self._n == 0:
            return theta.copy()
        return sp_fft.idct(theta, type=2, norm='ortho')

    def apply_adjoint(self, x):
        x = self._check_input(x, self._m)
        if self._n == 0:
            return x.copy()
        return sp_fft.dct(x, type=2, norm='ortho')

    def to_dense(self):
        if self._n == 0:
            return np.zeros((0, 0))
        return sp_fft.idct(np.eye(self._n), type=2, norm='ortho', axis=0)


class DftTransform(LinearOperator):
    """Orthonormal real Fourier basis of size n (see module docstring)."""

    def __init__(self, n):
        super().__init__(n, n)
        self._K = (n - 1) // 2 if n > 0 else 0
        self._has_nyquist = n > 0 and n % 2 == 0

    def apply_adjoint(self, x):
        x = self._check_input(x, self._m)
        n, K = self._n, self._K
        if n == 0:
            return x.copy()
        X = sp_fft.rfft(x, norm='ortho')
        theta = np.empty(n)
        theta[0] = X[0].real
        theta[1:2 * K + 1:2] = np.sqrt(2.0) * X[1:K + 1].real
        theta[2:2 * K + 1:2] = np.sqrt(2.0) * X[1:K + 1].imag
        if self._has_nyquist:
            theta[n - 1] = X[n // 2].real
        return theta

    def apply(self, theta):
        theta = self._check_input(theta, self._n, 'theta')
        n, K = self._n, self._K
        if n == 0:
            return theta.copy()
        X = np.zeros(n // 2 + 1, dtype=np.complex128)
        X[0] = theta[0]
        X[1:K + 1] = (theta[1:2 * K + 1:2] + 1j * theta[2:2 * K + 1:2]) / np.sqrt(2.0)
        if self._has_nyquist:
            X[n // 2] = theta[n - 1]
        return sp_fft.irfft(X, n=n, norm='ortho')


def make_transform(kind, n):
    """
    Build a sparsifying transform of size n.

    Parameters
    ----------
    kind : {'dct', 'dft'}
    n : int

    Returns
    -------
    LinearOperator
        Square orthonormal operator Ψ.
    """
    kind = kind.lower()
    if kind == 'dct':
        return DctTransform(n)
    if kind == 'dft':
        return DftTransform(n)
    raise ValueError(f"Unknown transform '{kind}'. Choose from {TRANSFORM_KINDS}")
