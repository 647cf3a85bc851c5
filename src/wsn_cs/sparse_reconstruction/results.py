"""Result and trace records produced by the solvers and the engine."""

from dataclasses import dataclass, field, asdict
from typing import List, Optional

import numpy as np

from ..errors import DropCause


@dataclass
class RecoveryOk:
    """Successful single-vector recovery."""
    x: np.ndarray
    iterations: int
    elapsed_ms: float = 0.0
    converged: bool = True
    residual: float = 0.0


@dataclass
class RecoveryErr:
    """Failed single-vector recovery."""
    kind: str
    message: str
    column: Optional[int] = None


@dataclass
class RunResult:
    """
    Outcome of a column-wise solver run.

    Attributes
    ----------
    X : ndarray of shape (n, S)
        One recovered column per input column. Failed columns hold the fill
        value (zeros or NaN).
    iterations : int
        Iterations accumulated over all successful columns.
    elapsed_ms : float
        Wall-clock time of the whole run.
    errors : list of RecoveryErr
        One entry per failed column.
    outcomes : list
        RecoveryOk or RecoveryErr, one per column in input order.
    """
    X: np.ndarray
    iterations: int
    elapsed_ms: float
    errors: List[RecoveryErr] = field(default_factory=list)
    outcomes: list = field(default_factory=list)

    @property
    def n_failed(self):
        return len(self.errors)

    @property
    def ok(self):
        return not self.errors


@dataclass
class DroppedPacket:
    """Trace record for a packet rejected at ingestion."""
    cause: DropCause
    cluster_id: Optional[int]
    sequence: Optional[int]
    message: str = ''

    def to_dict(self):
        d = asdict(self)
        d['cause'] = self.cause.value
        return d


@dataclass
class ReconstructionErrorRecord:
    """Trace record for a failed per-vector solve."""
    stage: str
    kind: str
    message: str
    sequence: int
    cluster_id: Optional[int] = None
    node_id: Optional[int] = None
    column: Optional[int] = None

    def to_dict(self):
        return asdict(self)


@dataclass
class TimingRecord:
    """Elapsed time and iteration count of one solver run."""
    stage: str
    sequence: int
    elapsed_ms: float
    iterations: int
    cluster_id: Optional[int] = None
    node_id: Optional[int] = None

    def to_dict(self):
        return asdict(self)


@dataclass
class SnrRecord:
    """SNR of one reconstructed vector or block, in dB (+inf for an exact match)."""
    stage: str
    sequence: int
    snr_db: float
    cluster_id: Optional[int] = None
    node_id: Optional[int] = None

    def to_dict(self):
        return asdict(self)


@dataclass
class TimeoutRecord:
    """Trace record for a sequence closed by the inter-packet timeout."""
    sequence: int
    received_rows: int
    expected_rows: int
    idle_s: float

    def to_dict(self):
        return asdict(self)


@dataclass
class SequenceResult:
    """
    Everything reconstructed for one measurement sequence.

    Attributes
    ----------
    sequence : int
    rows : int
        Rows of U and Ω used in stage 1 (after zero-fill).
    received_rows : int
        Rows actually received.
    spatial : dict
        cluster_id -> ndarray (nodes_k, m_k), the recovered Y_k.
    temporal : dict
        cluster_id -> ndarray (n_k, nodes_k), one recovered signal per node
        column. Empty when the temporal stage is switched off.
    spatial_run : RunResult or None
    errors : list of ReconstructionErrorRecord
    final : bool
        False for an early attempt triggered by min_packets; the sequence
        stays open and later packets trigger further attempts.
    """
    sequence: int
    rows: int
    received_rows: int
    final: bool = True
    spatial: dict = field(default_factory=dict)
    temporal: dict = field(default_factory=dict)
    spatial_run: Optional[RunResult] = None
    errors: List[ReconstructionErrorRecord] = field(default_factory=list)
