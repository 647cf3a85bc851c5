"""
Two-stage joint reconstruction at the sink.

Pipeline for one measurement sequence:

    packets ──► U (rows × m_max), Ω (rows × L)       ingestion
    closure ──► zero-fill missing rows               all l_k rows, timeout,
                                                     min_packets or newer seq
    stage 1 ──► Θ = solve(U, Ω·A·Ψ_S)                spatial, joint over clusters
                Y = Ψ_S·Θ,  Y_k = rows of cluster k
    stage 2 ──► x_j = Ψ_T·solve(y_j, Φ_jk·Ψ_T)       temporal, per node

with A = diag(Φ_k·B_k) over the clusters in ascending id order, Φ_k an
l_k × nodes_k random matrix seeded by the cluster head and B_k the 0/1
precoding diagonal. The spatial dimension of cluster k is its number of
source nodes, so Y_k has one row per node and m_k columns.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np
from joblib import Parallel, delayed
from tqdm import tqdm

from ..errors import (DimensionMismatchError, EngineStateError, ExpiredSequenceError,
                      PacketDropError, RecoveryError, SizeMismatchError, UnknownClusterError)
from ..evaluation.metrics import snr_db
from .nc_matrix import NcMatrix
from .operators import DiagonalOperator, block_diag, compose, scale
from .random_matrix import RecMatrix
from .results import (DroppedPacket, ReconstructionErrorRecord, RecoveryErr, SequenceResult,
                      SnrRecord, TimeoutRecord, TimingRecord)
from .solvers import Omp
from .streams import StreamStore


SEQ_MODULUS = 1 << 16
SEQ_HALF_RANGE = SEQ_MODULUS // 2

STREAM_REC_SPAT = 'RecSpat'
STREAM_REC_TEMP = 'RecTemp'
STREAM_SNR_SPAT = 'SnrSpat'
STREAM_SNR_TEMP = 'SnrTemp'
STREAM_TIME_SPAT = 'RecTimeSpat'
STREAM_TIME_TEMP = 'RecTimeTemp'
STREAM_ITER_SPAT = 'RecIterSpat'
STREAM_ITER_TEMP = 'RecIterTemp'
STREAM_N_PKT_RX = 'nPktRx'

TRACE_KINDS = ('drop', 'error', 'timing', 'timeout', 'snr', 'complete')


class EngineState(Enum):
    IDLE = 'idle'
    INGESTING = 'ingesting'
    CLOSING = 'closing'
    SOLVING_SPATIAL = 'solving_spatial'
    SOLVING_TEMPORAL = 'solving_temporal'


def sequence_delta(sequence, current):
    """
    Signed distance of a 16-bit sequence number from the current one.

    Differences are taken modulo 2^16; a forward distance of less than half
    the range counts as newer, anything else as older.

    Examples
    --------
    >>> sequence_delta(5, 3)
    2
    >>> sequence_delta(1, 65534)
    3
    >>> sequence_delta(65534, 1)
    -3
    """
    diff = (int(sequence) - int(current)) % SEQ_MODULUS
    if diff < SEQ_HALF_RANGE:
        return diff
    return diff - SEQ_MODULUS


@dataclass
class ClusterDescriptor:
    """
    Registered geometry of one cluster.

    Attributes
    ----------
    cluster_id : int
    n : int
        Temporal signal length of every source node.
    m : int
        Temporal measurements per node (payload length).
    l : int
        Spatial measurements produced by the cluster head.
    nodes : list of (node_id, seed)
        Source nodes in spatial row order.
    cluster_seed : int
        Seed of the cluster head's spatial matrix Φ_k.
    precode : ndarray of shape (nodes,)
        0/1 participation mask (diagonal of B_k).
    """
    cluster_id: int
    n: int
    m: int
    l: int
    nodes: List[Tuple[int, int]]
    cluster_seed: int
    precode: np.ndarray = None

    def __post_init__(self):
        self.nodes = [(int(nid), int(seed)) for nid, seed in self.nodes]
        if self.precode is None:
            self.precode = np.ones(len(self.nodes))
        else:
            self.precode = np.asarray(self.precode, dtype=np.float64).ravel()

    @property
    def n_nodes(self):
        return len(self.nodes)


@dataclass
class _Sequence:
    number: int
    received: dict
    n_packets: int = 0
    last_rx: Optional[float] = None
    completed: bool = False
    attempted_rows: int = 0


def _solve_node(solver, rec_temp, y, m, n, seed):
    """Stage-2 solve for one node; returns (outcome, signal or None)."""
    phi = rec_temp.random(m, n, seed)
    psi = rec_temp.sparsifier(n)
    op = phi if psi is None else compose(phi, psi)
    try:
        res = solver.solve(y, op)
    except RecoveryError as exc:
        return RecoveryErr(kind=exc.kind, message=str(exc)), None
    x = res.x if psi is None else psi.apply(res.x)
    return res, x


class ReconstructionEngine:
    """
    Sink-side orchestrator of the two-stage joint reconstruction.

    Parameters
    ----------
    solver_spat, solver_temp : CsAlgorithm, optional
        Stage-1 and stage-2 algorithms. Default: OMP with default settings.
    rec_spat, rec_temp : RecMatrix, optional
        Recipes for Φ_k (·Ψ_S) and Φ_jk (·Ψ_T). Default: Gaussian, no
        transform, not normalized.
    nc_enable : bool, optional
        Packets carry NC coefficient rows. When False the engine writes a
        one-hot row per packet (cluster offset + row index). Default: True
    nc_normalize : bool, optional
        Scale Ω and U by 1/√rows before stage 1. Default: True
    joint_transform : bool, optional
        Apply Ψ_S over all clusters jointly instead of per cluster.
        Default: True
    no_rec_temp : bool, optional
        Skip stage 2. Default: False
    calc_snr : bool, optional
        Emit SNR instead of vectors where a reference is known. Default: False
    failure_fill : {'zero', 'nan'}, optional
        Content of columns whose solve failed. Default: 'zero'
    timeout : float, optional
        Inter-packet idle time in seconds after which poll() closes the
        sequence. Default: 10.0
    min_packets : int, optional
        Attempt a reconstruction on every packet once this many packets of
        the sequence arrived, keeping the sequence open; 0 disables.
        Default: 0
    n_jobs : int, optional
        joblib workers for stage 2. Default: 1
    verbose : bool, optional
        Print progress. Default: False
    run_id : int, optional
        Identifier of the first stream set. Default: 0
    """

    def __init__(self, solver_spat=None, solver_temp=None, rec_spat=None, rec_temp=None,
                 nc_enable=True, nc_normalize=True, joint_transform=True, no_rec_temp=False,
                 calc_snr=False, failure_fill='zero', timeout=10.0, min_packets=0,
                 n_jobs=1, verbose=False, run_id=0):
        if failure_fill not in ('zero', 'nan'):
            raise ValueError(f"failure_fill must be 'zero' or 'nan', got '{failure_fill}'")
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        if min_packets < 0:
            raise ValueError(f"min_packets must be >= 0, got {min_packets}")

        self.solver_spat = solver_spat if solver_spat is not None else Omp()
        self.solver_temp = solver_temp if solver_temp is not None else Omp()
        self.rec_spat = rec_spat if rec_spat is not None else RecMatrix()
        self.rec_temp = rec_temp if rec_temp is not None else RecMatrix()
        self.nc_enable = nc_enable
        self.nc_normalize = nc_normalize
        self.joint_transform = joint_transform
        self.no_rec_temp = no_rec_temp
        self.calc_snr = calc_snr
        self.failure_fill = failure_fill
        self.timeout = float(timeout)
        self.min_packets = int(min_packets)
        self.n_jobs = n_jobs
        self.verbose = verbose

        self.state = EngineState.IDLE
        self.streams = StreamStore(run_id)
        self._clusters = {}
        self._offsets = {}
        self._nc = NcMatrix(0)
        self._rows = []
        self._m_max = 0
        self._seq = None
        self._spatial_refs = {}
        self._temporal_refs = {}
        self._callbacks = {kind: [] for kind in TRACE_KINDS}

        self.dropped = []
        self.rec_errors = []
        self.timings = []
        self.timeouts = []
        self.snr_records = []

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_cluster(self, cluster_id, n, m, l, nodes, cluster_seed, precode=None):
        """
        Register a cluster.

        Parameters
        ----------
        cluster_id : int
            8-bit cluster id.
        n, m, l : int
            Signal length, temporal measurements, spatial measurements.
        nodes : list of (node_id, seed)
            Source nodes in the row order used by the cluster head.
        cluster_seed : int
            Seed of the cluster head's spatial matrix.
        precode : array-like of shape (len(nodes),), optional
            Initial participation mask. Default: all ones

        Raises
        ------
        EngineStateError
            If called while a sequence is in progress.
        ValueError
            On invalid geometry or a duplicate id.
        """
        if self.state is not EngineState.IDLE:
            raise EngineStateError(f"Clusters can only be added while idle (state={self.state.value})")
        if not 0 <= cluster_id < 256:
            raise ValueError(f"cluster_id must fit in 8 bits, got {cluster_id}")
        if cluster_id in self._clusters:
            raise ValueError(f"Cluster {cluster_id} is already registered")
        nodes = list(nodes)
        if len({nid for nid, _ in nodes}) != len(nodes):
            raise ValueError(f"Cluster {cluster_id}: node ids must be unique")
        if l > len(nodes):
            raise ValueError(f"Cluster {cluster_id}: l={l} exceeds number of nodes {len(nodes)}")
        if m > n:
            raise ValueError(f"Cluster {cluster_id}: m={m} exceeds n={n}")
        if min(n, m, l) < 0:
            raise ValueError(f"Cluster {cluster_id}: dimensions must be non-negative")

        desc = ClusterDescriptor(cluster_id, int(n), int(m), int(l), nodes, int(cluster_seed), precode)
        if desc.precode.size != desc.n_nodes:
            raise DimensionMismatchError(
                f"Cluster {cluster_id}: precode has {desc.precode.size} entries, "
                f"expected {desc.n_nodes}"
            )
        self._clusters[cluster_id] = desc
        self._update_geometry()

    def _update_geometry(self):
        offset = 0
        self._offsets = {}
        for cid in sorted(self._clusters):
            self._offsets[cid] = offset
            offset += self._clusters[cid].l
        self._nc.set_width(offset)
        self._rows = []
        self._m_max = max((c.m for c in self._clusters.values()), default=0)

    @property
    def clusters(self):
        return [self._clusters[cid] for cid in sorted(self._clusters)]

    def cluster(self, cluster_id):
        try:
            return self._clusters[cluster_id]
        except KeyError:
            raise UnknownClusterError(f"Cluster {cluster_id} is not registered",
                                      cluster_id=cluster_id) from None

    @property
    def nc_width(self):
        """L = Σ l_k."""
        return self._nc.width()

    @property
    def n_rows(self):
        return len(self._rows)

    @property
    def sequence(self):
        return None if self._seq is None else self._seq.number

    def set_rec_matrix_spatial(self, rec):
        self.rec_spat = rec

    def set_rec_matrix_temporal(self, rec):
        self.rec_temp = rec

    def set_solver_spatial(self, solver):
        self.solver_spat = solver

    def set_solver_temporal(self, solver):
        self.solver_temp = solver

    def set_precode_entries(self, cluster_id, entries):
        """
        Set the participation mask of a cluster.

        Only the first nodes_k entries are used, so a full 256-bit
        source-info bitmap can be passed directly.
        """
        desc = self.cluster(cluster_id)
        entries = np.asarray(entries, dtype=np.float64).ravel()
        if entries.size < desc.n_nodes:
            raise DimensionMismatchError(
                f"Cluster {cluster_id}: {entries.size} precode entries, need {desc.n_nodes}"
            )
        desc.precode = (entries[:desc.n_nodes] != 0).astype(np.float64)

    def set_spatial_reference(self, cluster_id, Y0):
        """Reference Y₀ (nodes_k × m_k) for the spatial SNR of a cluster."""
        desc = self.cluster(cluster_id)
        Y0 = np.asarray(Y0, dtype=np.float64)
        if Y0.shape != (desc.n_nodes, desc.m):
            raise DimensionMismatchError(
                f"Cluster {cluster_id}: reference has shape {Y0.shape}, "
                f"expected {(desc.n_nodes, desc.m)}"
            )
        self._spatial_refs[cluster_id] = Y0

    def set_reference(self, cluster_id, node_id, x0):
        """Reference signal x₀ (length n_k) for the temporal SNR of a node."""
        desc = self.cluster(cluster_id)
        if node_id not in {nid for nid, _ in desc.nodes}:
            raise ValueError(f"Node {node_id} is not part of cluster {cluster_id}")
        x0 = np.asarray(x0, dtype=np.float64).ravel()
        if x0.size != desc.n:
            raise DimensionMismatchError(
                f"Node {node_id}: reference has length {x0.size}, expected {desc.n}"
            )
        self._temporal_refs[(cluster_id, node_id)] = x0

    def subscribe(self, kind, callback):
        """Register a callback for trace records of the given kind."""
        if kind not in self._callbacks:
            raise ValueError(f"Unknown trace kind '{kind}'. Choose from {TRACE_KINDS}")
        self._callbacks[kind].append(callback)

    def _emit(self, kind, record):
        for callback in self._callbacks[kind]:
            callback(record)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def on_packet(self, cluster_id, sequence, payload, nc_coeffs=None, now=None, row_index=None,
                  precode=None):
        """
        Ingest one cluster-head packet.

        Parameters
        ----------
        cluster_id : int
        sequence : int
            16-bit sequence number.
        payload : array-like of shape (m_k,)
            One spatially compressed row.
        nc_coeffs : array-like of shape (L,), optional
            NC coefficient row; required when NC is enabled.
        now : float, optional
            Arrival time in seconds. Default: time.monotonic()
        row_index : int, optional
            Position of the row within its cluster; rows skipped before it
            are zero-filled. Only meaningful without NC.
        precode : dict, optional
            cluster_id -> participation entries carried by the packet header.
            Applied only once the packet is accepted, after any earlier
            sequence has been closed and reconstructed.

        Returns
        -------
        bool
            True if the packet was accepted, False if it was dropped.

        Notes
        -----
        With min_packets set, every packet from the min_packets-th on
        triggers a reconstruction attempt while the sequence stays open;
        the sequence closes once all rows arrived, on timeout or when a
        newer sequence starts.
        """
        now = time.monotonic() if now is None else now
        try:
            desc = self.cluster(cluster_id)
            payload, coeffs = self._check_packet(desc, sequence, payload, nc_coeffs, row_index)
            self._enter_sequence(cluster_id, sequence, now)
        except PacketDropError as exc:
            self.record_drop(exc)
            return False

        for cid, entries in (precode or {}).items():
            self.set_precode_entries(cid, entries)

        received = self._seq.received[cluster_id]
        if not self.nc_enable and row_index is not None:
            for _ in range(row_index - received):
                self._append_row(np.zeros(self._m_max), np.zeros(self.nc_width))
            received = max(received, row_index)
        if coeffs is None:
            coeffs = np.zeros(self.nc_width)
            coeffs[self._offsets[cluster_id] + received] = 1.0

        row = np.zeros(self._m_max)
        row[:desc.m] = payload
        self._append_row(row, coeffs)
        self._seq.received[cluster_id] = received + 1
        self._seq.n_packets += 1
        self._seq.last_rx = now
        self.state = EngineState.INGESTING

        if self._all_rows_received():
            self.reconstruct()
        elif self.min_packets and self._seq.n_packets >= self.min_packets:
            self.reconstruct(final=False)
        return True

    def _check_packet(self, desc, sequence, payload, nc_coeffs, row_index):
        cid = desc.cluster_id
        payload = np.asarray(payload, dtype=np.float64).ravel()
        if payload.size != desc.m:
            raise SizeMismatchError(
                f"Cluster {cid}: payload has {payload.size} values, expected {desc.m}",
                cluster_id=cid, sequence=sequence)
        if self.nc_enable:
            if nc_coeffs is None:
                raise SizeMismatchError(f"Cluster {cid}: missing NC coefficients",
                                        cluster_id=cid, sequence=sequence)
            coeffs = np.asarray(nc_coeffs, dtype=np.float64).ravel()
            if coeffs.size != self.nc_width:
                raise SizeMismatchError(
                    f"Cluster {cid}: {coeffs.size} NC coefficients, expected {self.nc_width}",
                    cluster_id=cid, sequence=sequence)
            return payload, coeffs

        received = 0
        if self._seq is not None and self._seq.number == sequence and not self._seq.completed:
            received = self._seq.received[cid]
        index = received if row_index is None else max(row_index, received)
        if index >= desc.l:
            raise SizeMismatchError(
                f"Cluster {cid}: row {index} exceeds l={desc.l}",
                cluster_id=cid, sequence=sequence)
        return payload, None

    def _enter_sequence(self, cluster_id, sequence, now):
        if self._seq is None:
            self._start_sequence(sequence, now)
            return
        delta = sequence_delta(sequence, self._seq.number)
        if delta == 0 and not self._seq.completed:
            return
        if delta <= 0:
            raise ExpiredSequenceError(
                f"Sequence {sequence} is not newer than current {self._seq.number}",
                cluster_id=cluster_id, sequence=sequence)
        if self.state is EngineState.INGESTING:
            self.reconstruct()
        self._start_sequence(sequence, now)

    def _start_sequence(self, sequence, now):
        if self._seq is not None:
            self.streams.append(STREAM_N_PKT_RX, self._seq.n_packets)
        self._seq = _Sequence(number=int(sequence) % SEQ_MODULUS,
                              received={cid: 0 for cid in self._clusters}, last_rx=now)
        self._rows = []
        self._nc.reset()
        if self.verbose:
            print(f"\nSequence {self._seq.number}: expecting {self.nc_width} rows "
                  f"from {len(self._clusters)} cluster(s)")

    def _append_row(self, row, coeffs):
        self._nc.append_row(coeffs)
        self._rows.append(row)

    def _all_rows_received(self):
        return all(self._seq.received[cid] >= desc.l for cid, desc in self._clusters.items())

    def record_drop(self, exc):
        """Store a dropped-packet trace for a PacketDropError and notify subscribers."""
        record = DroppedPacket(cause=exc.cause, cluster_id=exc.cluster_id,
                               sequence=exc.sequence, message=str(exc))
        self.dropped.append(record)
        self._emit('drop', record)
        if self.verbose:
            print(f"  Dropped packet ({exc.cause.value}): {exc}")

    def poll(self, now=None):
        """
        Close the current sequence if it has been idle for longer than the timeout.

        Returns
        -------
        SequenceResult or None
            The reconstruction triggered by the timeout, if any.
        """
        now = time.monotonic() if now is None else now
        if self.state is not EngineState.INGESTING or self._seq.last_rx is None:
            return None
        idle = now - self._seq.last_rx
        if idle < self.timeout:
            return None
        record = TimeoutRecord(sequence=self._seq.number, received_rows=self.n_rows,
                               expected_rows=self.nc_width, idle_s=float(idle))
        self.timeouts.append(record)
        self._emit('timeout', record)
        if self.verbose:
            print(f"  Timeout after {idle:.2f} s: {self.n_rows}/{self.nc_width} rows received")
        return self.reconstruct()

    def flush(self):
        """Close and reconstruct the current sequence regardless of completeness."""
        if self.state is EngineState.INGESTING:
            return self.reconstruct()
        return None

    # ------------------------------------------------------------------
    # Reconstruction
    # ------------------------------------------------------------------

    def reconstruct(self, final=True):
        """
        Run both stages on the rows of the current sequence.

        Missing rows are zero-filled first. Without any received row this is
        a no-op returning None.

        Parameters
        ----------
        final : bool, optional
            Close the sequence afterwards. With False the buffers are kept
            and later packets of the same sequence are still accepted.
            Default: True

        Returns
        -------
        SequenceResult or None
            None as well when a final closure finds no rows beyond those of
            the last early attempt; the sequence is closed without solving.

        Raises
        ------
        DimensionMismatchError
            If the stage-1 operator cannot be composed. The sequence is
            abandoned and the engine returns to IDLE.
        """
        if self._seq is None or self._seq.completed or not self._rows:
            self.state = EngineState.IDLE
            return None
        if final and self._seq.attempted_rows == self.n_rows:
            self._close_sequence()
            return None

        self.state = EngineState.CLOSING
        received_rows = self.n_rows
        U, N = self._zero_filled_system()

        result = SequenceResult(sequence=self._seq.number, rows=U.shape[0],
                                received_rows=received_rows, final=final)
        try:
            self.state = EngineState.SOLVING_SPATIAL
            self._solve_spatial(result, U, N)
            if not self.no_rec_temp:
                self.state = EngineState.SOLVING_TEMPORAL
                self._solve_temporal(result)
        except Exception:
            self._close_sequence()
            raise

        if final:
            self._close_sequence()
        else:
            self._seq.attempted_rows = received_rows
            self.state = EngineState.INGESTING
        self._emit('complete', result)
        return result

    def _close_sequence(self):
        self._seq.completed = True
        self._rows = []
        self._nc.reset()
        self.state = EngineState.IDLE

    def _zero_filled_system(self):
        """Copies of U and Ω with the rows still missing per cluster set to zero."""
        rows = list(self._rows)
        N = self._nc.copy()
        for cid in sorted(self._clusters):
            missing = self._clusters[cid].l - self._seq.received[cid]
            for _ in range(max(missing, 0)):
                rows.append(np.zeros(self._m_max))
                N.append_row(np.zeros(self.nc_width))
        return np.vstack(rows), N

    def spatial_operator(self):
        """
        A = diag(Φ_k·B_k) over clusters in ascending id order.

        With a per-cluster transform each block becomes Φ_k·B_k·Ψ_S(nodes_k).
        """
        blocks = []
        for desc in self.clusters:
            phi = self.rec_spat.random(desc.l, desc.n_nodes, desc.cluster_seed)
            block = compose(phi, DiagonalOperator(desc.precode))
            psi = None if self.joint_transform else self.rec_spat.sparsifier(desc.n_nodes)
            if psi is not None:
                block = compose(block, psi)
            blocks.append(block)
        return block_diag(blocks)

    def _solve_spatial(self, result, U, N):
        rows = U.shape[0]
        if self.nc_normalize:
            N = scale(N, 1.0 / np.sqrt(rows))
            U = U / np.sqrt(rows)

        A = self.spatial_operator()
        if N.cols() != A.rows():
            raise DimensionMismatchError(
                f"NC width {N.cols()} does not match spatial operator rows {A.rows()}"
            )
        n_total = A.cols()
        psi_joint = self.rec_spat.sparsifier(n_total) if self.joint_transform else None
        H = compose(N, A) if psi_joint is None else compose(N, A, psi_joint)

        if self.verbose:
            print(f"\n{'='*60}")
            print(f"Stage 1 (spatial): sequence {self._seq.number}")
            print(f"{'='*60}")
            print(f"  H: {H.rows()} × {H.cols()}, U: {U.shape[0]} × {U.shape[1]}")
            print(f"  Solver: {self.solver_spat!r}")

        run = self.solver_spat.run(U, H, fill=self.failure_fill)
        result.spatial_run = run

        theta = run.X
        if psi_joint is not None:
            Y = psi_joint.to_dense() @ theta
        elif self.rec_spat.transform is not None:
            Y = np.empty_like(theta)
        else:
            Y = theta

        seq = self._seq.number
        offset = 0
        for desc in self.clusters:
            cid = desc.cluster_id
            sl = slice(offset, offset + desc.n_nodes)
            if psi_joint is None and self.rec_spat.transform is not None:
                Y[sl] = self.rec_spat.sparsifier(desc.n_nodes).to_dense() @ theta[sl]
            Y_k = Y[sl, :desc.m].copy()
            result.spatial[cid] = Y_k
            offset += desc.n_nodes

            if self.calc_snr and cid in self._spatial_refs:
                snr = snr_db(self._spatial_refs[cid], Y_k)
                self.streams.append(STREAM_SNR_SPAT, snr, cluster_id=cid)
                self._record_snr(SnrRecord('spatial', seq, snr, cluster_id=cid))
            else:
                self.streams.append(STREAM_REC_SPAT, Y_k, cluster_id=cid)

        for err in run.errors:
            self._record_error(ReconstructionErrorRecord(
                stage='spatial', kind=err.kind, message=err.message,
                sequence=seq, column=err.column), result)
        timing = TimingRecord('spatial', seq, run.elapsed_ms, run.iterations)
        self.streams.append(STREAM_TIME_SPAT, run.elapsed_ms)
        self.streams.append(STREAM_ITER_SPAT, run.iterations)
        self.timings.append(timing)
        self._emit('timing', timing)

        if self.verbose:
            print(f"  Done: {run.iterations} iterations, {len(run.errors)} failed column(s), "
                  f"{run.elapsed_ms:.1f} ms")

    def _solve_temporal(self, result):
        seq = self._seq.number
        jobs = []
        for desc in self.clusters:
            Y_k = result.spatial[desc.cluster_id]
            for j, (nid, seed) in enumerate(desc.nodes):
                jobs.append((desc, j, nid, seed, np.nan_to_num(Y_k[j])))

        if self.verbose:
            print(f"\n{'='*60}")
            print(f"Stage 2 (temporal): {len(jobs)} node(s)")
            print(f"{'='*60}")
            print(f"  Solver: {self.solver_temp!r}")

        iterator = tqdm(jobs, desc="Temporal") if self.verbose else jobs
        outcomes = Parallel(n_jobs=self.n_jobs)(
            delayed(_solve_node)(self.solver_temp, self.rec_temp, y, desc.m, desc.n, seed)
            for desc, j, nid, seed, y in iterator
        )

        fill_value = 0.0 if self.failure_fill == 'zero' else np.nan
        for desc in self.clusters:
            result.temporal[desc.cluster_id] = np.zeros((desc.n, desc.n_nodes))

        for (desc, j, nid, seed, y), (outcome, x) in zip(jobs, outcomes):
            cid = desc.cluster_id
            if x is None:
                x = np.full(desc.n, fill_value)
                self._record_error(ReconstructionErrorRecord(
                    stage='temporal', kind=outcome.kind, message=outcome.message,
                    sequence=seq, cluster_id=cid, node_id=nid), result)
            else:
                timing = TimingRecord('temporal', seq, outcome.elapsed_ms, outcome.iterations,
                                      cluster_id=cid, node_id=nid)
                self.streams.append(STREAM_TIME_TEMP, outcome.elapsed_ms, cluster_id=cid, node_id=nid)
                self.streams.append(STREAM_ITER_TEMP, outcome.iterations, cluster_id=cid, node_id=nid)
                self.timings.append(timing)
                self._emit('timing', timing)
            result.temporal[cid][:, j] = x

            ref = self._temporal_refs.get((cid, nid))
            if self.calc_snr and ref is not None:
                snr = snr_db(ref, x)
                self.streams.append(STREAM_SNR_TEMP, snr, cluster_id=cid, node_id=nid)
                self._record_snr(SnrRecord('temporal', seq, snr, cluster_id=cid, node_id=nid))
            else:
                self.streams.append(STREAM_REC_TEMP, x, cluster_id=cid, node_id=nid)

        if self.verbose:
            n_failed = sum(1 for _, x in outcomes if x is None)
            print(f"  Done: {len(jobs) - n_failed}/{len(jobs)} node(s) reconstructed")

    def _record_error(self, record, result):
        self.rec_errors.append(record)
        result.errors.append(record)
        self._emit('error', record)

    def _record_snr(self, record):
        self.snr_records.append(record)
        self._emit('snr', record)

    # ------------------------------------------------------------------
    # Run management
    # ------------------------------------------------------------------

    def reset(self, run_id):
        """
        Start a new run: fresh output streams, empty buffers, no current sequence.

        Registered clusters, recipes and solvers are kept; traces and
        references are cleared.
        """
        self.streams.reset(run_id)
        self._rows = []
        self._nc.reset()
        self._seq = None
        self._spatial_refs = {}
        self._temporal_refs = {}
        self.dropped = []
        self.rec_errors = []
        self.timings = []
        self.timeouts = []
        self.snr_records = []
        self.state = EngineState.IDLE
