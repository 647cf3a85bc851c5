"""
Exception types and cause codes used throughout the reconstruction pipeline.

Packet-level problems (unknown cluster, expired sequence, size mismatch) are
recoverable: the sink records a dropped-packet trace carrying a DropCause and
keeps going. Solver problems are recoverable per vector. Shape problems while
composing operators are fatal for the current measurement sequence.
"""

from enum import Enum


class DropCause(Enum):
    """Reason codes attached to dropped-packet traces."""
    NOT_A_CLUSTER = 'not_a_cluster'
    UNKNOWN_CLUSTER = 'unknown_cluster'
    EXPIRED_SEQ = 'expired_seq'
    SIZE_MISMATCH = 'size_mismatch'


class CsError(Exception):
    """Base class for all errors raised by wsn_cs."""


class DimensionMismatchError(CsError, ValueError):
    """A matrix/vector operation received incompatible shapes or indices."""


class RecoveryError(CsError):
    """A sparse-recovery algorithm diverged or hit a numerical problem."""

    def __init__(self, message, kind='solver_divergence'):
        super().__init__(message)
        self.kind = kind


class InvalidCoefficientError(CsError, ValueError):
    """An encoded NC coefficient uses a reserved code."""


class EngineStateError(CsError, RuntimeError):
    """An engine operation was requested in a state that does not allow it."""


class PacketDropError(CsError):
    """A packet was rejected at the ingestion boundary."""

    cause = None

    def __init__(self, message, cluster_id=None, sequence=None):
        super().__init__(message)
        self.cluster_id = cluster_id
        self.sequence = sequence


class NotAClusterError(PacketDropError):
    cause = DropCause.NOT_A_CLUSTER


class UnknownClusterError(PacketDropError):
    cause = DropCause.UNKNOWN_CLUSTER


class ExpiredSequenceError(PacketDropError):
    cause = DropCause.EXPIRED_SEQ


class SizeMismatchError(PacketDropError):
    cause = DropCause.SIZE_MISMATCH
