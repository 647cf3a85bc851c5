"""
Network-coding coefficient buffer Ω and coefficient generation.

Each packet received at the sink carries one NC coefficient row ω of width
L = Σ l_k: the linear combination of cluster-head rows that produced the
payload. The buffer stacks these rows in arrival order and acts as an
operator of shape (rows, L) without ever being densified on the hot path.
"""

import numpy as np

from ..errors import DimensionMismatchError
from .operators import LinearOperator


NC_COEFF_KINDS = ('normal', 'bernoulli', 'uniform')


class NcMatrix(LinearOperator):
    """
    Row-appendable operator Ω of shape (rows, L).

    Parameters
    ----------
    width : int, optional
        Row length L. Default: 0 (set later with set_width)

    Examples
    --------
    >>> nc = NcMatrix(3)
    >>> nc.append_row([1.0, 0.0, 0.0])
    >>> nc.append_row([0.0, 2.0, 1.0])
    >>> nc.apply(np.array([1.0, 1.0, 1.0]))
    array([1., 3.])
    """

    def __init__(self, width=0):
        super().__init__(0, width)
        self._rows = []

    def set_width(self, width):
        """Set the row length L. Clears any stored rows."""
        if width < 0:
            raise ValueError(f"NC width must be non-negative, got {width}")
        self._n = int(width)
        self.reset()

    def width(self):
        return self._n

    def append_row(self, coeffs):
        coeffs = np.asarray(coeffs, dtype=np.float64).ravel()
        if coeffs.size != self._n:
            raise DimensionMismatchError(
                f"NC row has {coeffs.size} coefficients, expected width {self._n}"
            )
        self._rows.append(coeffs.copy())
        self._m = len(self._rows)

    def reset(self):
        """Drop all rows; the width is kept."""
        self._rows = []
        self._m = 0

    def copy(self):
        """Independent buffer holding the same rows."""
        out = NcMatrix(self._n)
        for row in self._rows:
            out.append_row(row)
        return out

    def row(self, i):
        self._check_index(i, self._m, 'row')
        return self._rows[i].copy()

    def apply(self, x):
        x = self._check_input(x, self._n)
        out = np.empty(self._m)
        for i, row in enumerate(self._rows):
            out[i] = row @ x
        return out

    def apply_adjoint(self, y):
        y = self._check_input(y, self._m, 'y')
        out = np.zeros(self._n)
        for yi, row in zip(y, self._rows):
            out += yi * row
        return out

    def column_adjoint(self, i):
        return self.row(i)

    def to_dense(self):
        if not self._rows:
            return np.zeros((0, self._n))
        return np.vstack(self._rows)

    def __len__(self):
        return self._m


class NcCoefficientGenerator:
    """
    Seeded source of random NC coefficients.

    Parameters
    ----------
    kind : {'normal', 'bernoulli', 'uniform'}
        'normal' (alias 'gaussian') draws N(0, 1), 'bernoulli' draws ±1
        with equal probability, 'uniform' draws from {0, 1} with equal
        probability.
    seed : int, optional
        Seed of the private random stream.
    """

    def __init__(self, kind='normal', seed=None):
        kind = kind.lower()
        if kind == 'gaussian':
            kind = 'normal'
        if kind not in NC_COEFF_KINDS:
            raise ValueError(f"Unknown NC coefficient kind '{kind}'. Choose from {NC_COEFF_KINDS}")
        self.kind = kind
        self._rng = np.random.RandomState(seed)

    def draw(self, size):
        if self.kind == 'normal':
            return self._rng.standard_normal(size)
        if self.kind == 'bernoulli':
            return np.where(self._rng.uniform(size=size) < 0.5, 1.0, -1.0)
        return self._rng.randint(0, 2, size=size).astype(np.float64)
