"""Tests for the sender-side simulation helpers."""

import numpy as np
import pytest

from wsn_cs.simulation import (
    ClusterHeadCompressor, ClusterSpec, NetworkCoder, Scenario, TemporalCompressor,
    sparse_rows, sparse_signals,
)
from wsn_cs.network import ClusterHeaderLayout, parse_cluster_packet
from wsn_cs.sparse_reconstruction import DctTransform, Omp, RecMatrix, ReconstructionEngine


def test_sparse_signals():
    X = sparse_signals(32, 4, 5, seed=1)
    assert X.shape == (32, 5)
    np.testing.assert_array_equal(np.count_nonzero(X, axis=0), [4] * 5)
    with pytest.raises(ValueError):
        sparse_signals(4, 5, 1)


def test_sparse_signals_in_transform_domain():
    psi = DctTransform(16)
    X = sparse_signals(16, 2, 3, seed=2, transform=psi)
    theta = np.column_stack([psi.apply_adjoint(X[:, j]) for j in range(3)])
    assert np.all(np.sum(np.abs(theta) > 1e-10, axis=0) == 2)


def test_sparse_rows():
    Y = sparse_rows(10, 4, 3, seed=3)
    assert np.count_nonzero(np.any(Y != 0, axis=1)) == 3


def test_cluster_head_matches_engine_operator():
    spec = ClusterSpec(1, n=16, m=8, l=3, n_nodes=5, cluster_seed=77, precode=[1, 0, 1, 1, 0])
    scenario = Scenario([spec])
    engine = ReconstructionEngine()
    scenario.register(engine)

    Y = np.random.RandomState(0).standard_normal((5, 8))
    Z = ClusterHeadCompressor(3, 5, 77, precode=spec.precode).compress(Y)
    A = engine.spatial_operator().to_dense()
    np.testing.assert_allclose(Z, A @ Y)


def test_temporal_compressor_uses_node_seed():
    rec = RecMatrix('bernoulli')
    x = np.arange(16.0)
    y = TemporalCompressor(16, 6, seed=9, rec=rec).compress(x)
    np.testing.assert_allclose(y, rec.random(6, 16, 9).to_dense() @ x)


def test_network_coder_keeps_consistency():
    rng = np.random.RandomState(4)
    payloads = rng.standard_normal((3, 5))
    coeffs = np.eye(3)
    out_payloads, out_coeffs = NetworkCoder('bernoulli', seed=1).recombine(payloads, coeffs, 4)
    assert out_payloads.shape == (4, 5) and out_coeffs.shape == (4, 3)
    np.testing.assert_allclose(out_payloads, out_coeffs @ payloads)


def test_scenario_validation():
    specs = [ClusterSpec(1, 16, 8, 2, 3, 10), ClusterSpec(2, 16, 6, 2, 3, 20)]
    with pytest.raises(ValueError):
        Scenario(specs, nc_mode='normal')
    with pytest.raises(ValueError):
        Scenario(specs, nc_mode='fountain')
    with pytest.raises(ValueError):
        ClusterSpec(1, 16, 8, 2, 3, 10, node_seeds=[1, 2])


def test_one_hot_packets():
    specs = [ClusterSpec(1, 16, 8, 2, 3, 10), ClusterSpec(2, 16, 8, 1, 2, 20)]
    scenario = Scenario(specs)
    Y = {1: np.ones((3, 8)), 2: np.ones((2, 8))}
    packets = scenario.packets(Y, 4)
    assert [p.cluster_id for p in packets] == [1, 1, 2]
    np.testing.assert_array_equal(np.vstack([p.nc_coeffs for p in packets]), np.eye(3))
    assert all(p.sequence == 4 for p in packets)


def test_relay_hops_recombine_packets():
    specs = [ClusterSpec(1, 16, 8, 2, 3, 10), ClusterSpec(2, 16, 8, 1, 2, 20)]
    scenario = Scenario(specs, nc_mode='normal', seed=2, relay_hops=2)
    Y = {1: np.random.RandomState(1).standard_normal((3, 8)),
         2: np.random.RandomState(2).standard_normal((2, 8))}
    rows = scenario.cluster_rows(Y)
    stacked = np.vstack([rows[1], rows[2]])

    packets = scenario.packets(Y, 0)
    assert len(packets) == 3
    assert all(p.nc_count == 3 for p in packets)
    np.testing.assert_allclose(np.vstack([p.payload for p in packets]),
                               np.vstack([p.nc_coeffs for p in packets]) @ stacked)

    direct = Scenario(specs, nc_mode='normal', seed=2).packets(Y, 0)
    assert all(p.nc_count == 1 for p in direct)
    assert not np.allclose(packets[0].nc_coeffs, direct[0].nc_coeffs)


def test_relay_packets_carry_nc_count_on_the_wire():
    specs = [ClusterSpec(1, 16, 8, 2, 3, 10), ClusterSpec(2, 16, 8, 1, 2, 20)]
    scenario = Scenario(specs, relay_hops=1)
    layout = ClusterHeaderLayout([1, 2], [2, 1])
    Y = {1: np.ones((3, 8)), 2: np.ones((2, 8))}
    for p, data in zip(scenario.packets(Y, 7), scenario.packet_bytes(Y, 7, layout)):
        header, payload = parse_cluster_packet(data, layout)
        assert p.nc_count == 1
        assert header.nc_count == 1 and header.seq == 7
        np.testing.assert_allclose(header.nc_info, p.nc_coeffs)
        np.testing.assert_allclose(payload, p.payload)


def test_relayed_one_hot_sequence_is_recovered():
    cluster = ClusterSpec(1, n=16, m=8, l=4, n_nodes=4, cluster_seed=10)
    scenario = Scenario([cluster], rec_spat=RecMatrix('identity'), relay_hops=1, seed=5)
    engine = ReconstructionEngine(solver_spat=Omp(tolerance=1e-8, k=4), no_rec_temp=True)
    scenario.register(engine)
    completed = []
    engine.subscribe('complete', completed.append)

    Y = {1: np.random.RandomState(9).standard_normal((4, 8))}
    for i, p in enumerate(scenario.packets(Y, 0)):
        assert engine.on_packet(p.cluster_id, p.sequence, p.payload, nc_coeffs=p.nc_coeffs,
                                now=0.1 * i)
    assert len(completed) == 1
    np.testing.assert_allclose(completed[0].spatial[1], Y[1], atol=1e-6)


def test_negative_relay_hops():
    with pytest.raises(ValueError, match='relay_hops'):
        Scenario([ClusterSpec(1, 16, 8, 2, 3, 10)], relay_hops=-1)
