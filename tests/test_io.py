"""Tests for metrics, streams, trace export, .mat I/O and plots."""

import numpy as np
import pandas as pd
import pytest
import scipy.io as sio

from wsn_cs.evaluation import relative_error, snr_db, summarize_snr
from wsn_cs.sparse_reconstruction import StreamStore, stream_key
from wsn_cs.utils import (
    append_csv, iter_columns, load_matrix, records_to_frame, save_engine_records, save_matrix,
    save_streams, snr_table,
)
from wsn_cs.visualization import plot_node_snr, plot_signal_comparison


class TestMetrics:

    def test_snr(self):
        assert snr_db([1.0, 2.0], [1.0, 2.0]) == np.inf
        assert snr_db([10.0, 0.0], [10.0, 0.1]) == pytest.approx(40.0)
        assert snr_db([0.0, 0.0], [0.0, 1.0]) == -np.inf
        with pytest.raises(ValueError):
            snr_db([1.0], [1.0, 2.0])

    def test_relative_error(self):
        assert relative_error([3.0, 4.0], [3.0, 4.0]) == 0.0
        assert relative_error([3.0, 4.0], [3.0, 3.0]) == pytest.approx(0.2)

    def test_summary(self):
        stats = summarize_snr([np.inf, 50.0, 30.0, np.nan], threshold_db=40.0)
        assert stats['count'] == 4
        assert stats['n_exact'] == 1
        assert stats['n_above'] == 2
        assert stats['finite_mean_db'] == pytest.approx(40.0)


class TestStreams:

    def test_keys(self):
        assert stream_key('RecTemp', 2, 5) == 'C2N5_RecTemp'
        assert stream_key('RecSpat', 3) == 'C3_RecSpat'
        assert stream_key('nPktRx') == 'nPktRx'

    def test_to_matrix(self):
        store = StreamStore()
        store.append('RecTemp', [1.0, 2.0], cluster_id=1, node_id=1)
        store.append('RecTemp', [3.0, 4.0], cluster_id=1, node_id=1)
        np.testing.assert_array_equal(store.get('C1N1_RecTemp').to_matrix(), [[1, 3], [2, 4]])
        store.append('RecTimeSpat', 1.5)
        assert store.get('RecTimeSpat').to_matrix().shape == (1, 1)

    def test_buffers_are_copies(self):
        store = StreamStore()
        values = np.zeros(3)
        store.append('x', values)
        values[0] = 9.0
        assert store.get('x').last()[0] == 0.0


class TestMatIO:

    def test_load_and_iterate(self, tmp_path):
        X = np.arange(12.0).reshape(4, 3)
        path = tmp_path / 'sources.mat'
        save_matrix(path, X, name='X0')
        loaded = load_matrix(path)
        np.testing.assert_array_equal(loaded, X)
        cols = list(iter_columns(loaded))
        assert len(cols) == 3
        np.testing.assert_array_equal(cols[1], [1.0, 4.0, 7.0, 10.0])

    def test_ambiguous_file_needs_name(self, tmp_path):
        path = tmp_path / 'two.mat'
        sio.savemat(path, {'a': np.ones((2, 2)), 'b': np.zeros((2, 2))})
        with pytest.raises(ValueError):
            load_matrix(path)
        np.testing.assert_array_equal(load_matrix(path, name='b'), np.zeros((2, 2)))
        with pytest.raises(FileNotFoundError):
            load_matrix(tmp_path / 'missing.mat')

    def test_save_streams(self, tmp_path):
        store = StreamStore()
        store.append('RecTemp', [1.0, 2.0, 3.0], cluster_id=1, node_id=2)
        store.append('RecTemp', [4.0, 5.0, 6.0], cluster_id=1, node_id=2)
        store.append('nPktRx', 8)
        path = tmp_path / 'streams.mat'
        names = save_streams(path, store)
        assert names == ['C1N2_RecTemp', 'nPktRx']
        mat = sio.loadmat(path)
        assert mat['C1N2_RecTemp'].shape == (3, 2)
        assert mat['nPktRx'][0, 0] == 8


class TestRecords:

    def _engine(self, single_cluster, engine_factory):
        engine = engine_factory(single_cluster, calc_snr=True)
        X0 = single_cluster.generate_sources(k=3, seed=4)
        Y = single_cluster.temporal_measurements(X0)
        for j, (nid, _) in enumerate(single_cluster.clusters[0].nodes):
            engine.set_reference(1, nid, X0[1][:, j])
        for i, p in enumerate(single_cluster.packets(Y, 0)):
            engine.on_packet(p.cluster_id, p.sequence, p.payload, nc_coeffs=p.nc_coeffs, now=0.1 * i)
        engine.on_packet(42, 0, np.zeros(32), nc_coeffs=np.zeros(8), now=1.0)
        return engine

    def test_frames_and_csv(self, single_cluster, engine_factory, tmp_path):
        engine = self._engine(single_cluster, engine_factory)
        df = records_to_frame(engine.dropped, run_id=0)
        assert list(df['cause']) == ['unknown_cluster']
        assert (df['run_id'] == 0).all()

        written = save_engine_records(engine, tmp_path)
        assert set(written) == {'snr', 'timing', 'drop'}
        save_engine_records(engine, tmp_path)
        snr_csv = pd.read_csv(written['snr'])
        assert len(snr_csv) == 2 * len(engine.snr_records)
        assert list(snr_csv.columns[:3]) == ['stage', 'sequence', 'snr_db']

    def test_append_csv_skips_empty(self, tmp_path):
        path = tmp_path / 'empty.csv'
        append_csv(pd.DataFrame(), path)
        assert not path.exists()

    def test_snr_table_and_plots(self, single_cluster, engine_factory, tmp_path):
        engine = self._engine(single_cluster, engine_factory)
        table = snr_table(engine)
        assert len(table) == 8
        assert list(table.columns) == ['cluster_id', 'node_id', 'mean_snr_db', 'last_snr_db',
                                       'n_sequences']
        assert (table['n_sequences'] == 1).all()

        fig, ax = plot_node_snr(table, threshold_db=40.0, save_path=tmp_path / 'snr.png')
        assert (tmp_path / 'snr.png').exists()
        assert len(ax.patches) == 8

        x = np.sin(np.linspace(0, 3, 20))
        fig, ax = plot_signal_comparison(x, x + 0.01, label='C1N1')
        assert 'C1N1' in ax.get_title()
