"""
Seeded random sensing matrices.

Every matrix is a pure function of (kind, m, n, seed, parameters): sender and
sink regenerate the same Φ from the seed alone, so nothing but the seed ever
travels over the network. Draws come from a dedicated RandomState and the
global numpy PRNG state is restored afterwards, so building a matrix never
perturbs other random number users.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field

import numpy as np

from .operators import MatrixOperator, compose
from .transforms import TRANSFORM_KINDS, make_transform


RANDOM_KINDS = ('gaussian', 'bernoulli', 'identity')


@contextmanager
def preserved_random_state(seed):
    """
    Yield a RandomState seeded with `seed`, restoring the global state on exit.

    Examples
    --------
    >>> before = np.random.get_state()[1].copy()
    >>> with preserved_random_state(3) as rng:
    ...     _ = rng.standard_normal(5)
    >>> np.array_equal(before, np.random.get_state()[1])
    True
    """
    saved = np.random.get_state()
    try:
        yield np.random.RandomState(seed)
    finally:
        np.random.set_state(saved)


def _check_dims(m, n):
    if m < 0 or n < 0:
        raise ValueError(f"Matrix dimensions must be non-negative, got m={m}, n={n}")


def gaussian_matrix(m, n, seed, mean=0.0, variance=1.0, normalize=False):
    """
    Gaussian random matrix with i.i.d. N(mean, variance) entries.

    Parameters
    ----------
    m, n : int
        Matrix shape.
    seed : int
        PRNG seed.
    mean : float, optional
        Entry mean. Default: 0.0
    variance : float, optional
        Entry variance. Default: 1.0
    normalize : bool, optional
        Multiply by 1/√m. Default: False

    Returns
    -------
    ndarray of shape (m, n)
    """
    _check_dims(m, n)
    if variance < 0:
        raise ValueError(f"variance must be non-negative, got {variance}")
    with preserved_random_state(seed) as rng:
        phi = rng.normal(mean, np.sqrt(variance), size=(m, n))
    return _maybe_normalize(phi, m, normalize)


def bernoulli_matrix(m, n, seed, normalize=False):
    """
    Symmetric ±1 Bernoulli matrix with P(+1) = 0.5.

    Each entry inverts the CDF of a uniform draw: +1 below 0.5, −1 otherwise.
    """
    _check_dims(m, n)
    with preserved_random_state(seed) as rng:
        u = rng.uniform(0.0, 1.0, size=(m, n))
    phi = np.where(u < 0.5, 1.0, -1.0)
    return _maybe_normalize(phi, m, normalize)


def identity_matrix(m, n, seed, normalize=False):
    """
    Randomly row-subsampled identity.

    The rows of I_n are shuffled with a Fisher-Yates pass that uses exactly
    n − 2 integer draws, then the first m rows are kept. The result selects m
    distinct entries of the input vector.
    """
    _check_dims(m, n)
    if m > n:
        raise ValueError(f"Identity subsampling needs m <= n, got m={m}, n={n}")
    order = np.arange(n)
    with preserved_random_state(seed) as rng:
        for i in range(n - 2):
            j = rng.randint(i, n)
            order[i], order[j] = order[j], order[i]
    phi = np.zeros((m, n))
    phi[np.arange(m), order[:m]] = 1.0
    return _maybe_normalize(phi, m, normalize)


def _maybe_normalize(phi, m, normalize):
    if normalize and m > 0:
        phi = phi / np.sqrt(m)
    return phi


def make_random_matrix(kind, m, n, seed, normalize=False, **params):
    """
    Factory dispatching on `kind`.

    Parameters
    ----------
    kind : {'gaussian', 'bernoulli', 'identity'}
    m, n : int
    seed : int
    normalize : bool, optional
    **params
        Kind-specific parameters (`mean`, `variance` for gaussian).

    Returns
    -------
    ndarray of shape (m, n)
    """
    kind = kind.lower()
    if kind == 'gaussian':
        return gaussian_matrix(m, n, seed, normalize=normalize,
                               mean=params.get('mean', 0.0),
                               variance=params.get('variance', 1.0))
    if kind == 'bernoulli':
        return bernoulli_matrix(m, n, seed, normalize=normalize)
    if kind == 'identity':
        return identity_matrix(m, n, seed, normalize=normalize)
    raise ValueError(f"Unknown random matrix kind '{kind}'. Choose from {RANDOM_KINDS}")


class RandomMatrixOperator(MatrixOperator):
    """Operator wrapping a seeded random matrix; remembers how it was made."""

    def __init__(self, kind, m, n, seed, normalize=False, **params):
        super().__init__(make_random_matrix(kind, m, n, seed, normalize=normalize, **params))
        self.kind = kind
        self.seed = seed
        self.normalized = normalize

    def __repr__(self):
        return (f"RandomMatrixOperator(kind={self.kind!r}, shape={self.shape}, "
                f"seed={self.seed}, normalize={self.normalized})")


@dataclass
class RecMatrix:
    """
    Recipe for a reconstruction operator Φ (optionally followed by Ψ).

    The engine holds one recipe for the spatial stage and one for the
    temporal stage and instantiates concrete operators from seeds on demand.

    Attributes
    ----------
    random_kind : str
        Kind passed to make_random_matrix.
    transform : str or None
        'dct', 'dft' or None (no sparsifying transform).
    normalize : bool
        Apply 1/√m normalization to Φ.
    params : dict
        Extra parameters for the random kind.
    """
    random_kind: str = 'gaussian'
    transform: str = None
    normalize: bool = False
    params: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.random_kind.lower() not in RANDOM_KINDS:
            raise ValueError(f"Unknown random matrix kind '{self.random_kind}'")
        if self.transform is not None and self.transform not in TRANSFORM_KINDS:
            raise ValueError(f"Unknown transform '{self.transform}'")

    def random(self, m, n, seed):
        """The bare random operator Φ (m × n)."""
        return RandomMatrixOperator(self.random_kind, m, n, seed,
                                    normalize=self.normalize, **self.params)

    def sparsifier(self, n):
        """The transform Ψ (n × n), or None."""
        if self.transform is None:
            return None
        return make_transform(self.transform, n)

    def build(self, m, n, seed):
        """Φ, or Φ·Ψ when a transform is configured."""
        phi = self.random(m, n, seed)
        psi = self.sparsifier(n)
        return phi if psi is None else compose(phi, psi)
