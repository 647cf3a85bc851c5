"""
Metrics for evaluating reconstruction quality.
"""

import numpy as np


def snr_db(reference, reconstructed):
    """
    Signal-to-noise ratio of a reconstruction in dB.

    SNR = 20·log10(‖x₀‖ / ‖x₀ − x_r‖), using the Frobenius norm for matrices.

    Parameters
    ----------
    reference : array-like
        Original signal x₀.
    reconstructed : array-like
        Reconstructed signal x_r, same shape as reference.

    Returns
    -------
    float
        SNR in dB. An exact reconstruction returns +inf; a zero reference
        with a non-zero error returns -inf.

    Examples
    --------
    >>> snr_db([1.0, 0.0], [1.0, 0.0])
    inf
    >>> round(snr_db([10.0, 0.0], [10.0, 0.1]), 6)
    40.0
    """
    reference = np.asarray(reference, dtype=np.float64)
    reconstructed = np.asarray(reconstructed, dtype=np.float64)
    if reference.shape != reconstructed.shape:
        raise ValueError(
            f"Shapes differ: reference {reference.shape}, reconstructed {reconstructed.shape}"
        )
    err = np.linalg.norm(reference - reconstructed)
    if err == 0.0:
        return np.inf
    signal = np.linalg.norm(reference)
    if signal == 0.0:
        return -np.inf
    return float(20.0 * np.log10(signal / err))


def relative_error(reference, reconstructed):
    """
    Relative reconstruction error ‖x₀ − x_r‖ / ‖x₀‖.

    Returns 0.0 for an exact match and +inf when the reference is zero but
    the reconstruction is not.
    """
    reference = np.asarray(reference, dtype=np.float64)
    reconstructed = np.asarray(reconstructed, dtype=np.float64)
    if reference.shape != reconstructed.shape:
        raise ValueError(
            f"Shapes differ: reference {reference.shape}, reconstructed {reconstructed.shape}"
        )
    err = np.linalg.norm(reference - reconstructed)
    if err == 0.0:
        return 0.0
    signal = np.linalg.norm(reference)
    if signal == 0.0:
        return np.inf
    return float(err / signal)


def summarize_snr(snr_values, threshold_db=None):
    """
    Summary statistics over a collection of SNR values.

    Parameters
    ----------
    snr_values : array-like
        SNR values in dB (may contain ±inf and NaN).
    threshold_db : float, optional
        If given, also count values at or above this threshold.

    Returns
    -------
    dict
        - 'count': number of values
        - 'finite_mean_db': mean over finite values (NaN if none)
        - 'median_db': median over non-NaN values
        - 'min_db', 'max_db'
        - 'n_exact': number of +inf values
        - 'n_above': values >= threshold_db (only with threshold_db)
    """
    values = np.asarray(snr_values, dtype=np.float64).ravel()
    valid = values[~np.isnan(values)]
    finite = valid[np.isfinite(valid)]
    summary = {
        'count': int(values.size),
        'finite_mean_db': float(np.mean(finite)) if finite.size else np.nan,
        'median_db': float(np.median(valid)) if valid.size else np.nan,
        'min_db': float(np.min(valid)) if valid.size else np.nan,
        'max_db': float(np.max(valid)) if valid.size else np.nan,
        'n_exact': int(np.sum(np.isposinf(valid))),
    }
    if threshold_db is not None:
        summary['n_above'] = int(np.sum(valid >= threshold_db))
    return summary
