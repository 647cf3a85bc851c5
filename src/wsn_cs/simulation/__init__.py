"""
Sender-side simulation: source signals, compressors and packet streams.
"""

from .signals import sparse_signals, sparse_rows
from .compressors import TemporalCompressor, ClusterHeadCompressor, NetworkCoder
from .scenario import ClusterSpec, Packet, Scenario

__all__ = [
    'sparse_signals',
    'sparse_rows',
    'TemporalCompressor',
    'ClusterHeadCompressor',
    'NetworkCoder',
    'ClusterSpec',
    'Packet',
    'Scenario',
]
