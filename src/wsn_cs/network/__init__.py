"""
Packet formats and the sink-side packet adapter.
"""

from .headers import (
    CLUSTER_NODE_ID,
    ClusterHeaderLayout,
    CsHeader,
    CsClusterHeader,
    pack_bernoulli,
    unpack_bernoulli,
    pack_bitmap,
    unpack_bitmap,
    build_cluster_packet,
    build_source_packet,
    parse_cluster_packet,
)
from .sink_app import CsSinkApp

__all__ = [
    'CLUSTER_NODE_ID',
    'ClusterHeaderLayout',
    'CsHeader',
    'CsClusterHeader',
    'pack_bernoulli',
    'unpack_bernoulli',
    'pack_bitmap',
    'unpack_bitmap',
    'build_cluster_packet',
    'build_source_packet',
    'parse_cluster_packet',
    'CsSinkApp',
]
