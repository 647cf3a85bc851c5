"""
Synthetic clustered-network scenarios.

A Scenario holds the cluster geometry and the random-matrix recipes, can
register itself with a ReconstructionEngine and produces the packet stream
one measurement sequence would deliver to the sink.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from ..network.headers import build_cluster_packet
from ..sparse_reconstruction.random_matrix import RecMatrix
from .compressors import ClusterHeadCompressor, NetworkCoder, TemporalCompressor
from .signals import sparse_signals


NC_MODES = ('one_hot', 'normal', 'bernoulli', 'uniform')
RELAY_SEED_STRIDE = 7919


@dataclass
class ClusterSpec:
    """Geometry of one simulated cluster; node seeds default to cluster_seed + 1 + j."""
    cluster_id: int
    n: int
    m: int
    l: int
    n_nodes: int
    cluster_seed: int
    node_seeds: Optional[List[int]] = None
    precode: Optional[np.ndarray] = None

    def __post_init__(self):
        if self.node_seeds is None:
            self.node_seeds = [self.cluster_seed + 1 + j for j in range(self.n_nodes)]
        if len(self.node_seeds) != self.n_nodes:
            raise ValueError(f"{len(self.node_seeds)} node seeds for {self.n_nodes} nodes")

    @property
    def nodes(self):
        return [(j + 1, seed) for j, seed in enumerate(self.node_seeds)]


@dataclass
class Packet:
    cluster_id: int
    sequence: int
    payload: np.ndarray
    nc_coeffs: np.ndarray
    nc_count: int = 0


@dataclass
class Scenario:
    """
    Parameters
    ----------
    clusters : list of ClusterSpec
    rec_spat, rec_temp : RecMatrix
        Recipes shared with the engine.
    nc_mode : {'one_hot', 'normal', 'bernoulli', 'uniform'}
        How packet rows are formed from the stacked cluster-head rows.
        'one_hot' forwards every row unchanged; the others emit random
        linear combinations of all rows.
    n_packets : int, optional
        Packets per sequence. Default: Σ l_k
    seed : int
        Seed of the NC coefficient stream.
    relay_hops : int
        Relays between the cluster heads and the sink. Each hop recombines
        all packets once more with fresh coefficients (NetworkCoder) and
        increments the packets' nc_count. Default: 0
    """
    clusters: List[ClusterSpec]
    rec_spat: RecMatrix = field(default_factory=RecMatrix)
    rec_temp: RecMatrix = field(default_factory=RecMatrix)
    nc_mode: str = 'one_hot'
    n_packets: Optional[int] = None
    seed: int = 1
    relay_hops: int = 0

    def __post_init__(self):
        if self.nc_mode not in NC_MODES:
            raise ValueError(f"Unknown NC mode '{self.nc_mode}'. Choose from {NC_MODES}")
        self.clusters = sorted(self.clusters, key=lambda c: c.cluster_id)
        if self.relay_hops < 0:
            raise ValueError(f"relay_hops must be >= 0, got {self.relay_hops}")
        recombines = self.nc_mode != 'one_hot' or self.relay_hops > 0
        if recombines and len({c.m for c in self.clusters}) > 1:
            raise ValueError("Random NC recombination needs the same m in every cluster")

    @property
    def nc_width(self):
        return sum(c.l for c in self.clusters)

    def register(self, engine):
        """Register every cluster and both recipes with the engine."""
        engine.set_rec_matrix_spatial(self.rec_spat)
        engine.set_rec_matrix_temporal(self.rec_temp)
        for c in self.clusters:
            engine.add_cluster(c.cluster_id, c.n, c.m, c.l, c.nodes, c.cluster_seed,
                               precode=c.precode)

    def generate_sources(self, k, seed=1, transform=None):
        """
        k-sparse source signals for every cluster.

        Returns
        -------
        dict
            cluster_id -> X0 of shape (n, n_nodes).
        """
        return {c.cluster_id: sparse_signals(c.n, k, c.n_nodes, seed=seed + c.cluster_id,
                                             transform=transform)
                for c in self.clusters}

    def temporal_measurements(self, sources):
        """Y_k (n_nodes × m) for every cluster from X0 (n × n_nodes)."""
        Y = {}
        for c in self.clusters:
            X0 = sources[c.cluster_id]
            Y[c.cluster_id] = np.vstack([
                TemporalCompressor(c.n, c.m, seed, self.rec_temp).compress(X0[:, j])
                for j, seed in enumerate(c.node_seeds)
            ])
        return Y

    def cluster_rows(self, Y):
        """Z_k (l × m) for every cluster from Y_k."""
        return {c.cluster_id: ClusterHeadCompressor(c.l, c.n_nodes, c.cluster_seed,
                                                    self.rec_spat, c.precode).compress(Y[c.cluster_id])
                for c in self.clusters}

    def packets(self, Y, sequence):
        """
        Packets of one sequence, in delivery order.

        Parameters
        ----------
        Y : dict
            cluster_id -> Y_k of shape (n_nodes, m).
        sequence : int

        Returns
        -------
        list of Packet
        """
        Z = self.cluster_rows(Y)
        L = self.nc_width
        owners = [c for c in self.clusters for _ in range(c.l)]

        if self.nc_mode == 'one_hot' and self.relay_hops == 0:
            out = []
            offset = 0
            for c in self.clusters:
                for i in range(c.l):
                    coeffs = np.zeros(L)
                    coeffs[offset + i] = 1.0
                    out.append(Packet(c.cluster_id, sequence, Z[c.cluster_id][i], coeffs))
                offset += c.l
            return out

        payloads = np.vstack([Z[c.cluster_id] for c in self.clusters])
        coeffs = np.eye(L)
        n_packets = L if self.n_packets is None else self.n_packets
        nc_count = 0
        if self.nc_mode != 'one_hot':
            coder = NetworkCoder(self.nc_mode, self.seed + sequence)
            payloads, coeffs = coder.recombine(payloads, coeffs, n_packets)
            nc_count += 1
        relay_kind = 'normal' if self.nc_mode == 'one_hot' else self.nc_mode
        for hop in range(1, self.relay_hops + 1):
            coder = NetworkCoder(relay_kind, self.seed + sequence + RELAY_SEED_STRIDE * hop)
            payloads, coeffs = coder.recombine(payloads, coeffs, n_packets)
            nc_count += 1

        out = []
        for p in range(n_packets):
            owner = owners[p % L] if owners else self.clusters[0]
            out.append(Packet(owner.cluster_id, sequence, payloads[p], coeffs[p],
                              nc_count=min(nc_count, 255)))
        return out

    def packet_bytes(self, Y, sequence, layout):
        """Serialized cluster-head packets carrying precoding bitmaps."""
        src_info = [np.ones(c.n_nodes, dtype=bool) if c.precode is None
                    else np.asarray(c.precode) != 0 for c in self.clusters]
        return [build_cluster_packet(layout, p.cluster_id, p.sequence, p.payload, p.nc_coeffs,
                                     src_info=src_info, nc_count=p.nc_count)
                for p in self.packets(Y, sequence)]
