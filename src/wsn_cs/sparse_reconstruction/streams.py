"""
Named, append-only output streams.

The engine writes every reconstructed vector, SNR value and timing sample to
a stream identified by a base name and an optional cluster / node scope.
Streams are grouped per run: StreamStore.reset(run_id) starts a fresh set
while older runs remain readable through the store's history.
"""

import numpy as np


def stream_key(name, cluster_id=None, node_id=None):
    """
    Build the scoped key of a stream.

    Examples
    --------
    >>> stream_key('RecTemp', 2, 5)
    'C2N5_RecTemp'
    >>> stream_key('nPktRx')
    'nPktRx'
    """
    if cluster_id is None:
        return name
    if node_id is None:
        return f"C{cluster_id}_{name}"
    return f"C{cluster_id}N{node_id}_{name}"


class DataStream:
    """Append-only sequence of ndarray buffers."""

    def __init__(self, name):
        self.name = name
        self._buffers = []

    def append(self, values):
        self._buffers.append(np.array(values, dtype=np.float64, copy=True))

    def last(self):
        if not self._buffers:
            raise IndexError(f"Stream '{self.name}' is empty")
        return self._buffers[-1]

    def to_matrix(self):
        """
        Stack the buffers column-wise.

        Scalars become a 1 × S row, equal-length vectors an (n, S) matrix.
        Buffers of different shapes are returned as a list.
        """
        if not self._buffers:
            return np.zeros((0, 0))
        flat = [np.atleast_1d(b).ravel(order='F') for b in self._buffers]
        if len({f.size for f in flat}) == 1:
            return np.column_stack(flat)
        return list(self._buffers)

    def __len__(self):
        return len(self._buffers)

    def __iter__(self):
        return iter(self._buffers)

    def __getitem__(self, idx):
        return self._buffers[idx]

    def __repr__(self):
        return f"DataStream({self.name!r}, n_buffers={len(self)})"


class StreamStore:
    """
    Collection of DataStreams for the current run.

    Parameters
    ----------
    run_id : int, optional
        Identifier of the first run. Default: 0
    """

    def __init__(self, run_id=0):
        self.run_id = run_id
        self._streams = {}
        self.history = {}

    def stream(self, name, cluster_id=None, node_id=None):
        """Return the stream for the scope, creating it on first use."""
        key = stream_key(name, cluster_id, node_id)
        if key not in self._streams:
            self._streams[key] = DataStream(key)
        return self._streams[key]

    def append(self, name, values, cluster_id=None, node_id=None):
        self.stream(name, cluster_id, node_id).append(values)

    def get(self, key):
        return self._streams.get(key)

    def reset(self, run_id):
        """Archive the current streams under their run id and start empty."""
        if self._streams:
            self.history[self.run_id] = self._streams
        self.run_id = run_id
        self._streams = {}

    def keys(self):
        return list(self._streams)

    def items(self):
        return self._streams.items()

    def __contains__(self, key):
        return key in self._streams

    def __len__(self):
        return len(self._streams)
