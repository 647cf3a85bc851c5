"""Synthetic test signals."""

import numpy as np


def sparse_signals(n, k, n_signals, seed=1, transform=None, nonneg=False):
    """
    Generate independent k-sparse Gaussian signals as matrix columns.

    Parameters
    ----------
    n : int
        Signal length.
    k : int
        Non-zero coefficients per signal.
    n_signals : int
        Number of columns.
    seed : int, optional
        PRNG seed. Default: 1
    transform : LinearOperator, optional
        If given, the sparse vectors are coefficients θ and the returned
        signals are Ψ·θ.
    nonneg : bool, optional
        Draw magnitudes only (no negative entries). Default: False

    Returns
    -------
    X : ndarray of shape (n, n_signals)
    """
    if not 0 <= k <= n:
        raise ValueError(f"k must be in [0, n={n}], got {k}")
    rng = np.random.RandomState(seed)
    X = np.zeros((n, n_signals))
    for j in range(n_signals):
        support = rng.choice(n, size=k, replace=False)
        values = rng.standard_normal(k)
        X[support, j] = np.abs(values) if nonneg else values
    if transform is not None:
        X = np.column_stack([transform.apply(X[:, j]) for j in range(n_signals)]) \
            if n_signals else X
    return X


def sparse_rows(n_rows, n_cols, k, seed=1):
    """
    Matrix with exactly k non-zero rows, each filled with Gaussian values.

    Used as a spatially sparse field: only k of the n_rows nodes observe
    anything during the sequence.
    """
    if not 0 <= k <= n_rows:
        raise ValueError(f"k must be in [0, n_rows={n_rows}], got {k}")
    rng = np.random.RandomState(seed)
    Y = np.zeros((n_rows, n_cols))
    active = rng.choice(n_rows, size=k, replace=False)
    Y[active] = rng.standard_normal((k, n_cols))
    return Y
