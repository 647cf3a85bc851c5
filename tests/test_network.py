"""Tests for the packet wire format and the sink adapter."""

import numpy as np
import pytest

from wsn_cs.errors import DropCause, InvalidCoefficientError
from wsn_cs.network import (
    ClusterHeaderLayout, CsClusterHeader, CsHeader, CsSinkApp, build_cluster_packet,
    build_source_packet, pack_bernoulli, pack_bitmap, parse_cluster_packet, unpack_bernoulli,
    unpack_bitmap,
)
from wsn_cs.network.headers import BASIC_HEADER, SRCINFO_BYTES
from wsn_cs.simulation import sparse_signals


class TestBernoulliPacking:

    def test_sixteen_coefficients_fit_in_four_bytes(self):
        coeffs = [1, -1, 0, 1] * 4
        packed = pack_bernoulli(coeffs)
        assert packed == bytes([0x49] * 4)
        np.testing.assert_array_equal(unpack_bernoulli(packed, 16), coeffs)

    def test_trailing_bits_are_zero(self):
        packed = pack_bernoulli([-1, 1, 1, 0, -1])
        assert len(packed) == 2
        assert packed[1] == 0b10
        np.testing.assert_array_equal(unpack_bernoulli(packed, 5), [-1, 1, 1, 0, -1])

    def test_reserved_code_is_rejected(self):
        with pytest.raises(InvalidCoefficientError):
            unpack_bernoulli(bytes([0b00001100]), 2)

    def test_non_ternary_value(self):
        with pytest.raises(ValueError):
            pack_bernoulli([0.5])


class TestHeaders:

    def test_basic_header_round_trip(self):
        header = CsHeader(cluster_id=3, node_id=7, seq=65535, data_size=16)
        data = header.serialize()
        assert len(data) == BASIC_HEADER.size == 6
        assert data[2:4] == b'\xff\xff'
        assert CsHeader.deserialize(data) == header

    def test_sequence_is_16_bit(self):
        assert CsHeader.deserialize(CsHeader(1, 0, 65537).serialize()).seq == 1

    def test_bitmap_round_trip(self):
        bits = np.zeros(20, dtype=bool)
        bits[[0, 3, 19]] = True
        data = pack_bitmap(bits)
        assert len(data) == SRCINFO_BYTES
        assert data[0] == 0b00001001
        out = unpack_bitmap(data)
        assert out.size == 256
        np.testing.assert_array_equal(np.flatnonzero(out), [0, 3, 19])

    @pytest.mark.parametrize('encoding', ['float64', 'bernoulli'])
    def test_cluster_packet_round_trip(self, encoding):
        layout = ClusterHeaderLayout([1, 4], [2, 3], coeff_encoding=encoding)
        nc_info = np.array([1.0, 0.0, -1.0, 0.0, 1.0])
        payload = np.array([0.25, -3.5, 7.0])
        src_info = [np.array([1, 1, 0], dtype=bool), np.ones(5, dtype=bool)]
        data = build_cluster_packet(layout, 4, 12, payload, nc_info, src_info=src_info, nc_count=2)
        assert len(data) == layout.cluster_header_size() + payload.nbytes

        header, out = parse_cluster_packet(data, layout)
        assert (header.cluster_id, header.node_id, header.seq) == (4, 0, 12)
        assert header.nc_count == 2
        np.testing.assert_array_equal(header.nc_info, nc_info)
        np.testing.assert_array_equal(out, payload)
        np.testing.assert_array_equal(header.src_info[0][:3], [True, True, False])
        assert header.is_src_info_set(1)

    def test_layout_offsets(self):
        layout = ClusterHeaderLayout([2, 5, 9], [3, 1, 2])
        assert layout.nc_width == 6
        assert layout.offset(9) == 4
        np.testing.assert_array_equal(layout.one_hot(5, 0), [0, 0, 0, 1, 0, 0])
        with pytest.raises(ValueError):
            layout.one_hot(5, 1)

    def test_truncated_cluster_header(self):
        layout = ClusterHeaderLayout([1], [2])
        with pytest.raises(ValueError):
            CsClusterHeader.deserialize(b'\x01\x00\x00\x01\x00\x00', layout)


class TestSinkApp:

    def _setup(self, single_cluster, engine_factory, encoding='float64'):
        engine = engine_factory(single_cluster, no_rec_temp=True)
        layout = ClusterHeaderLayout.from_engine(engine, coeff_encoding=encoding)
        return engine, layout, CsSinkApp(engine, layout)

    def test_full_sequence_through_bytes(self, single_cluster, engine_factory):
        engine, layout, app = self._setup(single_cluster, engine_factory)
        completed = []
        engine.subscribe('complete', completed.append)

        X0 = single_cluster.generate_sources(k=3, seed=5)
        Y = single_cluster.temporal_measurements(X0)
        for i, data in enumerate(single_cluster.packet_bytes(Y, 9, layout)):
            assert app.receive(data, now=0.1 * i)

        assert len(completed) == 1
        assert completed[0].sequence == 9
        np.testing.assert_allclose(completed[0].spatial[1], Y[1], atol=1e-8)
        assert engine.dropped == []

    def test_source_node_packet_is_dropped(self, single_cluster, engine_factory):
        engine, _, app = self._setup(single_cluster, engine_factory)
        assert not app.receive(build_source_packet(1, 3, 0, np.ones(32)), now=0.0)
        assert engine.dropped[-1].cause is DropCause.NOT_A_CLUSTER
        assert engine.dropped[-1].cluster_id == 1

    def test_short_packet_is_size_mismatch(self, single_cluster, engine_factory):
        engine, _, app = self._setup(single_cluster, engine_factory)
        assert not app.receive(b'\x01\x00', now=0.0)
        assert engine.dropped[-1].cause is DropCause.SIZE_MISMATCH

    def test_invalid_bernoulli_code_is_an_error(self, single_cluster, engine_factory):
        engine, layout, app = self._setup(single_cluster, engine_factory, encoding='bernoulli')
        data = bytearray(build_cluster_packet(layout, 1, 0, np.zeros(32), layout.one_hot(1, 0)))
        data[BASIC_HEADER.size + SRCINFO_BYTES + 1] = 0xFF
        with pytest.raises(InvalidCoefficientError):
            app.receive(bytes(data), now=0.0)

    def test_bitmaps_set_precoding(self, single_cluster, engine_factory):
        engine, layout, app = self._setup(single_cluster, engine_factory)
        mask = np.ones(8, dtype=bool)
        mask[[2, 5]] = False
        data = build_cluster_packet(layout, 1, 0, np.ones(32), layout.one_hot(1, 0),
                                    src_info=[mask])
        app.receive(data, now=0.0)
        np.testing.assert_array_equal(engine.cluster(1).precode, mask.astype(float))

    def test_stale_packet_keeps_precoding(self, single_cluster, engine_factory):
        engine, layout, app = self._setup(single_cluster, engine_factory)
        Y = {1: np.random.RandomState(3).standard_normal((8, 32))}
        for i, data in enumerate(single_cluster.packet_bytes(Y, 5, layout)):
            assert app.receive(data, now=0.1 * i)

        mask = np.ones(8, dtype=bool)
        mask[3] = False
        stale = build_cluster_packet(layout, 1, 4, np.ones(32), layout.one_hot(1, 0),
                                     src_info=[mask])
        assert not app.receive(stale, now=2.0)
        assert engine.dropped[-1].cause is DropCause.EXPIRED_SEQ
        np.testing.assert_array_equal(engine.cluster(1).precode, np.ones(8))

    def test_newer_bitmap_does_not_touch_open_sequence(self, single_cluster, engine_factory):
        Y = {1: np.random.RandomState(7).standard_normal((8, 32))}

        def run(mask):
            engine, layout, app = self._setup(single_cluster, engine_factory)
            completed = []
            engine.subscribe('complete', completed.append)
            for i, data in enumerate(single_cluster.packet_bytes(Y, 1, layout)[:6]):
                assert app.receive(data, now=0.1 * i)
            newer = build_cluster_packet(layout, 1, 2, np.zeros(32), layout.one_hot(1, 0),
                                         src_info=[mask])
            assert app.receive(newer, now=1.0)
            assert [r.sequence for r in completed] == [1]
            return engine, completed[0]

        _, control = run(np.ones(8, dtype=bool))
        mask = np.ones(8, dtype=bool)
        mask[0] = False
        engine, result = run(mask)

        assert result.received_rows == 6
        np.testing.assert_allclose(result.spatial[1], control.spatial[1], atol=1e-10)
        assert engine.cluster(1).precode[0] == 0.0

    def test_poll_drives_timeout(self, single_cluster, engine_factory):
        engine, layout, app = self._setup(single_cluster, engine_factory)
        X0 = {1: sparse_signals(64, 3, 8, seed=2)}
        Y = single_cluster.temporal_measurements(X0)
        packets = single_cluster.packet_bytes(Y, 0, layout)
        for data in packets[:5]:
            app.receive(data, now=1.0)
        assert app.poll(now=5.0) is None
        result = app.poll(now=11.5)
        assert result is not None
        assert result.received_rows == 5
        assert len(engine.timeouts) == 1
