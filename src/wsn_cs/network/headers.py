"""
Wire format of compressed-sensing packets.

Every packet starts with the basic header (big-endian)::

    cluster_id u8 | node_id u8 | seq u16 | data_size u16

followed, for packets sent by a cluster head (node_id 0), by

    K × 32 bytes   source-participation bitmaps, one per cluster, LSB-first
    u8             NC recombination counter
    L coefficients NC row, either float64 little-endian (8·L bytes) or the
                   2-bit Bernoulli packing (⌈L/4⌉ bytes)

and then data_size bytes of float64 little-endian payload.

Bernoulli packing: coefficient i occupies bits 2i and 2i+1 of the byte
stream, least significant bits first. Codes 00 → 0, 01 → +1, 10 → −1; the
code 11 is invalid and rejected on decode. Unused trailing bits are zero.
"""

import struct
from dataclasses import dataclass, field

import numpy as np

from ..errors import InvalidCoefficientError


CLUSTER_NODE_ID = 0
SRCINFO_BITS = 256
SRCINFO_BYTES = SRCINFO_BITS // 8
BASIC_HEADER = struct.Struct('>BBHH')
NC_COUNT = struct.Struct('>B')
COEFF_ENCODINGS = ('float64', 'bernoulli')

_BERN_ENCODE = {0.0: 0b00, 1.0: 0b01, -1.0: 0b10}
_BERN_DECODE = {0b00: 0.0, 0b01: 1.0, 0b10: -1.0}


def pack_bernoulli(coeffs):
    """
    Pack a vector of {−1, 0, +1} coefficients into 2 bits each.

    Examples
    --------
    >>> pack_bernoulli([0, 1, -1, 0]).hex()
    '24'
    """
    coeffs = np.asarray(coeffs, dtype=np.float64).ravel()
    out = bytearray((coeffs.size + 3) // 4)
    for i, value in enumerate(coeffs):
        try:
            code = _BERN_ENCODE[float(value)]
        except KeyError:
            raise ValueError(f"Coefficient {i} = {value} is not in {{-1, 0, +1}}") from None
        out[i // 4] |= code << (2 * (i % 4))
    return bytes(out)


def unpack_bernoulli(data, length):
    """
    Decode `length` 2-bit packed coefficients.

    Raises
    ------
    InvalidCoefficientError
        If a coefficient uses the reserved code 11.
    ValueError
        If `data` is too short.
    """
    needed = (length + 3) // 4
    if len(data) < needed:
        raise ValueError(f"Need {needed} bytes for {length} coefficients, got {len(data)}")
    out = np.empty(length)
    for i in range(length):
        code = (data[i // 4] >> (2 * (i % 4))) & 0b11
        if code == 0b11:
            raise InvalidCoefficientError(f"Coefficient {i} uses reserved code 0b11")
        out[i] = _BERN_DECODE[code]
    return out


def pack_bitmap(bits):
    """Pack up to 256 booleans into 32 bytes, LSB-first within each byte."""
    bits = np.asarray(bits, dtype=bool).ravel()
    if bits.size > SRCINFO_BITS:
        raise ValueError(f"Bitmap has {bits.size} bits, maximum is {SRCINFO_BITS}")
    padded = np.zeros(SRCINFO_BITS, dtype=bool)
    padded[:bits.size] = bits
    return np.packbits(padded, bitorder='little').tobytes()


def unpack_bitmap(data):
    """Inverse of pack_bitmap; returns 256 booleans."""
    if len(data) != SRCINFO_BYTES:
        raise ValueError(f"Bitmap needs {SRCINFO_BYTES} bytes, got {len(data)}")
    return np.unpackbits(np.frombuffer(data, dtype=np.uint8), bitorder='little').astype(bool)


@dataclass
class ClusterHeaderLayout:
    """
    Network-wide parameters needed to (de)serialize cluster-head headers.

    Attributes
    ----------
    cluster_ids : list of int
        Cluster ids in ascending order; bitmap i belongs to cluster_ids[i].
    lk : list of int
        Spatial measurements l_k per cluster, same order.
    coeff_encoding : {'float64', 'bernoulli'}
    """
    cluster_ids: list
    lk: list
    coeff_encoding: str = 'float64'

    def __post_init__(self):
        if len(self.cluster_ids) != len(self.lk):
            raise ValueError(
                f"{len(self.cluster_ids)} cluster ids but {len(self.lk)} l_k values"
            )
        if self.coeff_encoding not in COEFF_ENCODINGS:
            raise ValueError(
                f"Unknown coefficient encoding '{self.coeff_encoding}'. Choose from {COEFF_ENCODINGS}"
            )

    @classmethod
    def from_engine(cls, engine, coeff_encoding='float64'):
        clusters = engine.clusters
        return cls([c.cluster_id for c in clusters], [c.l for c in clusters], coeff_encoding)

    @property
    def n_clusters(self):
        return len(self.cluster_ids)

    @property
    def nc_width(self):
        return int(sum(self.lk))

    def offset(self, cluster_id):
        idx = self.cluster_ids.index(cluster_id)
        return int(sum(self.lk[:idx]))

    def one_hot(self, cluster_id, row):
        """NC row selecting row `row` of cluster `cluster_id`."""
        l = self.lk[self.cluster_ids.index(cluster_id)]
        if not 0 <= row < l:
            raise ValueError(f"Row {row} out of range for cluster {cluster_id} with l={l}")
        coeffs = np.zeros(self.nc_width)
        coeffs[self.offset(cluster_id) + row] = 1.0
        return coeffs

    def coeff_size(self):
        if self.coeff_encoding == 'bernoulli':
            return (self.nc_width + 3) // 4
        return 8 * self.nc_width

    def cluster_header_size(self):
        return BASIC_HEADER.size + self.n_clusters * SRCINFO_BYTES + NC_COUNT.size + self.coeff_size()


@dataclass
class CsHeader:
    """Basic header carried by every compressed-sensing packet."""
    cluster_id: int
    node_id: int
    seq: int
    data_size: int = 0

    def serialize(self):
        return BASIC_HEADER.pack(self.cluster_id, self.node_id, self.seq % 65536, self.data_size)

    @classmethod
    def deserialize(cls, data):
        if len(data) < BASIC_HEADER.size:
            raise ValueError(f"Packet of {len(data)} bytes is shorter than the basic header")
        return cls(*BASIC_HEADER.unpack_from(data))

    @property
    def is_cluster_head(self):
        return self.node_id == CLUSTER_NODE_ID


@dataclass
class CsClusterHeader(CsHeader):
    """Header of a cluster-head packet; node_id is always 0."""
    src_info: list = field(default_factory=list)
    nc_count: int = 0
    nc_info: np.ndarray = None

    def __post_init__(self):
        self.node_id = CLUSTER_NODE_ID

    def serialize(self, layout):
        nc_info = np.zeros(layout.nc_width) if self.nc_info is None \
            else np.asarray(self.nc_info, dtype=np.float64).ravel()
        if nc_info.size != layout.nc_width:
            raise ValueError(f"NC row has {nc_info.size} coefficients, layout needs {layout.nc_width}")
        src_info = list(self.src_info) + [[]] * (layout.n_clusters - len(self.src_info))
        if len(src_info) != layout.n_clusters:
            raise ValueError(f"{len(self.src_info)} bitmaps for {layout.n_clusters} clusters")

        parts = [super().serialize()]
        parts.extend(pack_bitmap(bits) for bits in src_info)
        parts.append(NC_COUNT.pack(self.nc_count))
        if layout.coeff_encoding == 'bernoulli':
            parts.append(pack_bernoulli(nc_info))
        else:
            parts.append(nc_info.astype('<f8').tobytes())
        return b''.join(parts)

    @classmethod
    def deserialize(cls, data, layout):
        size = layout.cluster_header_size()
        if len(data) < size:
            raise ValueError(f"Packet of {len(data)} bytes is shorter than the cluster header ({size})")
        cluster_id, _, seq, data_size = BASIC_HEADER.unpack_from(data)
        pos = BASIC_HEADER.size
        src_info = []
        for _ in range(layout.n_clusters):
            src_info.append(unpack_bitmap(data[pos:pos + SRCINFO_BYTES]))
            pos += SRCINFO_BYTES
        (nc_count,) = NC_COUNT.unpack_from(data, pos)
        pos += NC_COUNT.size
        raw = data[pos:pos + layout.coeff_size()]
        if layout.coeff_encoding == 'bernoulli':
            nc_info = unpack_bernoulli(raw, layout.nc_width)
        else:
            nc_info = np.frombuffer(raw, dtype='<f8').astype(np.float64)
        return cls(cluster_id, CLUSTER_NODE_ID, seq, data_size,
                   src_info=src_info, nc_count=nc_count, nc_info=nc_info)

    def is_src_info_set(self, idx):
        return idx < len(self.src_info) and bool(np.any(self.src_info[idx]))


def build_cluster_packet(layout, cluster_id, seq, payload, nc_info, src_info=None, nc_count=0):
    """Serialize a complete cluster-head packet (header + float64 payload)."""
    payload = np.asarray(payload, dtype='<f8').ravel()
    header = CsClusterHeader(cluster_id, CLUSTER_NODE_ID, seq, payload.nbytes,
                             src_info=src_info or [], nc_count=nc_count, nc_info=nc_info)
    return header.serialize(layout) + payload.tobytes()


def build_source_packet(cluster_id, node_id, seq, payload):
    """Serialize a packet sent by a source node (basic header + payload)."""
    payload = np.asarray(payload, dtype='<f8').ravel()
    return CsHeader(cluster_id, node_id, seq, payload.nbytes).serialize() + payload.tobytes()


def parse_cluster_packet(data, layout):
    """
    Split a cluster-head packet into its header and payload.

    Returns
    -------
    header : CsClusterHeader
    payload : ndarray of float64
    """
    header = CsClusterHeader.deserialize(data, layout)
    start = layout.cluster_header_size()
    end = start + header.data_size
    if len(data) < end or header.data_size % 8:
        raise ValueError(
            f"Payload of {len(data) - start} bytes does not match data_size {header.data_size}"
        )
    payload = np.frombuffer(data[start:end], dtype='<f8').astype(np.float64)
    return header, payload
