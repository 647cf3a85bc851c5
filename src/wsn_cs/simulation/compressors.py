"""
Sender-side compression: source nodes, cluster heads and NC relays.

These mirror exactly what the sink assumes when it rebuilds its operators
from seeds, so a simulated sequence can be fed straight into the engine.
"""

import numpy as np

from ..sparse_reconstruction.nc_matrix import NcCoefficientGenerator
from ..sparse_reconstruction.random_matrix import RecMatrix


class TemporalCompressor:
    """
    Source-node compressor y = Φ_j·x.

    Parameters
    ----------
    n, m : int
        Signal length and number of measurements.
    seed : int
        Node seed of Φ_j.
    rec : RecMatrix, optional
        Random matrix recipe; only the random part is used. Default: Gaussian
    """

    def __init__(self, n, m, seed, rec=None):
        self.n = n
        self.m = m
        self.seed = seed
        self.rec = rec if rec is not None else RecMatrix()
        self._phi = self.rec.random(m, n, seed)

    def compress(self, x):
        return self._phi.apply(x)


class ClusterHeadCompressor:
    """
    Cluster-head compressor Z = Φ_k·B_k·Y.

    Parameters
    ----------
    l : int
        Spatial measurements.
    n_nodes : int
        Number of source nodes (rows of Y).
    seed : int
        Cluster-head seed of Φ_k.
    rec : RecMatrix, optional
        Random matrix recipe. Default: Gaussian
    precode : array-like of shape (n_nodes,), optional
        0/1 participation mask. Default: all ones
    """

    def __init__(self, l, n_nodes, seed, rec=None, precode=None):
        self.l = l
        self.n_nodes = n_nodes
        self.seed = seed
        self.rec = rec if rec is not None else RecMatrix()
        self.precode = np.ones(n_nodes) if precode is None \
            else np.asarray(precode, dtype=np.float64).ravel()
        if self.precode.size != n_nodes:
            raise ValueError(f"precode has {self.precode.size} entries, expected {n_nodes}")
        self._phi = self.rec.random(l, n_nodes, seed).to_dense()

    def compress(self, Y):
        """Compress Y of shape (n_nodes, m) into Z of shape (l, m)."""
        Y = np.asarray(Y, dtype=np.float64)
        if Y.shape[0] != self.n_nodes:
            raise ValueError(f"Y has {Y.shape[0]} rows, expected {self.n_nodes}")
        return self._phi @ (self.precode[:, None] * Y)


class NetworkCoder:
    """
    Random linear network coding over real-valued rows.

    A relay holding rows u_i with coefficient rows ω_i emits
    u = Σ c_i·u_i and ω = Σ c_i·ω_i for fresh random c.
    """

    def __init__(self, kind='normal', seed=None):
        self.generator = NcCoefficientGenerator(kind, seed)

    def recombine(self, payloads, coeff_rows, n_out):
        payloads = np.atleast_2d(np.asarray(payloads, dtype=np.float64))
        coeff_rows = np.atleast_2d(np.asarray(coeff_rows, dtype=np.float64))
        if payloads.shape[0] != coeff_rows.shape[0]:
            raise ValueError(
                f"{payloads.shape[0]} payload rows but {coeff_rows.shape[0]} coefficient rows"
            )
        C = np.vstack([self.generator.draw(payloads.shape[0]) for _ in range(n_out)]) \
            if n_out else np.zeros((0, payloads.shape[0]))
        return C @ payloads, C @ coeff_rows
