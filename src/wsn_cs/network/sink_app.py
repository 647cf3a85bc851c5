"""
Sink application adapter: raw packet bytes in, engine calls out.
"""

import time

from ..errors import (InvalidCoefficientError, NotAClusterError, PacketDropError,
                      SizeMismatchError)
from .headers import CsHeader, ClusterHeaderLayout, parse_cluster_packet


class CsSinkApp:
    """
    Feeds received packets into a ReconstructionEngine.

    Only packets sent by cluster heads (node id 0) are accepted; anything else
    is dropped with cause NOT_A_CLUSTER. The source-participation bitmaps of
    each header are handed to the engine with the payload and become the
    precoding entries of the matching clusters once the engine accepts the
    packet.

    Parameters
    ----------
    engine : ReconstructionEngine
        Engine with all clusters registered.
    layout : ClusterHeaderLayout, optional
        Header layout. Default: derived from the engine with float64 NC
        coefficients.
    verbose : bool, optional
        Print a line per received packet. Default: False
    """

    def __init__(self, engine, layout=None, verbose=False):
        self.engine = engine
        self.layout = layout if layout is not None else ClusterHeaderLayout.from_engine(engine)
        if self.layout.nc_width != engine.nc_width:
            raise ValueError(
                f"Layout NC width {self.layout.nc_width} does not match engine width {engine.nc_width}"
            )
        self.verbose = verbose
        self.n_received = 0

    def receive(self, data, now=None):
        """
        Handle one packet.

        Returns
        -------
        bool
            True if the engine accepted the packet.
        """
        now = time.monotonic() if now is None else now
        self.n_received += 1
        try:
            try:
                basic = CsHeader.deserialize(data)
            except ValueError as exc:
                raise SizeMismatchError(str(exc)) from exc
            if not basic.is_cluster_head:
                raise NotAClusterError(
                    f"Packet from node {basic.node_id} of cluster {basic.cluster_id} "
                    f"is not from a cluster head",
                    cluster_id=basic.cluster_id, sequence=basic.seq)
            try:
                header, payload = parse_cluster_packet(data, self.layout)
            except InvalidCoefficientError:
                raise
            except ValueError as exc:
                raise SizeMismatchError(str(exc), cluster_id=basic.cluster_id,
                                        sequence=basic.seq) from exc
        except PacketDropError as exc:
            self.engine.record_drop(exc)
            return False

        precode = {cid: header.src_info[idx] for idx, cid in enumerate(self.layout.cluster_ids)
                   if header.is_src_info_set(idx)}

        if self.verbose:
            print(f"  Rx cluster {header.cluster_id} seq {header.seq}: "
                  f"{payload.size} values, nc_count={header.nc_count}")

        return self.engine.on_packet(header.cluster_id, header.seq, payload,
                                     nc_coeffs=header.nc_info, now=now, precode=precode)

    def poll(self, now=None):
        """Drive the inter-packet timeout; see ReconstructionEngine.poll."""
        return self.engine.poll(now)
