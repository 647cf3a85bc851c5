"""Tests for configuration loading and engine construction."""

from pathlib import Path

import numpy as np
import pytest
import yaml

from wsn_cs.config import (
    DEFAULT_CONFIG, engine_from_config, layout_from_config, load_config, nc_mode_from_config,
    parse_duration, reconstruction_config, scenario_from_config, validate_config,
)
from wsn_cs.sparse_reconstruction import BasisPursuit, CoSaMP, Omp

SAMPLE_CONFIG = Path(__file__).parent.parent / 'config' / 'reconstruction.yaml'


def test_defaults_are_valid():
    cfg = reconstruction_config()
    assert cfg == validate_config(dict(DEFAULT_CONFIG))
    assert cfg['tolerance'] == 1e-3
    assert cfg['max_iter'] == 1000
    assert cfg['nc_enable'] is True


@pytest.mark.parametrize('value, seconds', [
    (2, 2.0),
    (0.5, 0.5),
    ('250ms', 0.25),
    ('10s', 10.0),
    ('1.5 min', 90.0),
])
def test_parse_duration(value, seconds):
    assert parse_duration(value) == pytest.approx(seconds)


def test_parse_duration_rejects_garbage():
    with pytest.raises(ValueError):
        parse_duration('soon')


@pytest.mark.parametrize('key, value', [
    ('solver_spat', 'lasso'),
    ('random_kind_temp', 'poisson'),
    ('transform_kind', 'wavelet'),
    ('nc_coeff_kind', 'cauchy'),
    ('failure_fill', 'mean'),
    ('tolerance', -1.0),
    ('max_iter', 0),
    ('k_temp', -1),
    ('seed', 0),
    ('timeout', 0),
    ('nc_enable', 'yes'),
    ('unknown_key', 1),
])
def test_invalid_values_name_the_key(key, value):
    with pytest.raises(ValueError, match=key):
        reconstruction_config({key: value})


def test_engine_from_config():
    engine = engine_from_config({
        'solver_spat': 'BP',
        'solver_temp': 'CoSaMP',
        'k_temp': 4,
        'tolerance': 1e-6,
        'use_transform_temp': True,
        'transform_kind': 'dft',
        'random_kind_spat': 'Identity',
        'timeout': '500ms',
        'no_rec_temp': True,
    })
    assert isinstance(engine.solver_spat, BasisPursuit)
    assert isinstance(engine.solver_temp, CoSaMP)
    assert engine.solver_temp.k == 4
    assert engine.solver_spat.tolerance == 1e-6
    assert engine.rec_temp.transform == 'dft'
    assert engine.rec_spat.transform is None
    assert engine.rec_spat.random_kind == 'identity'
    assert engine.timeout == 0.5
    assert engine.no_rec_temp


def test_overrides_take_precedence():
    engine = engine_from_config({'reconstruction': {'solver_temp': 'SP'}}, solver_temp='omp')
    assert isinstance(engine.solver_temp, Omp)


def test_load_config(tmp_path):
    path = tmp_path / 'cfg.yaml'
    path.write_text(yaml.safe_dump({'reconstruction': {'solver_spat': 'AMP', 'max_iter': 50}}))
    config = load_config(path)
    cfg = reconstruction_config(config)
    assert cfg['solver_spat'] == 'AMP'
    assert cfg['max_iter'] == 50
    assert cfg['solver_temp'] == DEFAULT_CONFIG['solver_temp']


def test_sample_config_builds_engine():
    config = load_config(SAMPLE_CONFIG)
    engine = engine_from_config(config)
    assert engine.timeout == 10.0
    assert engine.calc_snr
    assert len(config['scenario']['clusters']) == 2


@pytest.mark.parametrize('config, mode', [
    ({}, 'normal'),
    ({'nc_coeff_kind': 'gaussian'}, 'normal'),
    ({'nc_coeff_kind': 'Bernoulli'}, 'bernoulli'),
    ({'nc_coeff_kind': 'uniform'}, 'uniform'),
    ({'nc_enable': False, 'nc_coeff_kind': 'bernoulli'}, 'one_hot'),
])
def test_nc_mode_from_config(config, mode):
    assert nc_mode_from_config(config) == mode


def _scenario_config(nc_coeff_kind='bernoulli', relay_hops=0, nc_enable=True):
    return {
        'reconstruction': {'nc_coeff_kind': nc_coeff_kind, 'nc_enable': nc_enable,
                           'no_rec_temp': True, 'seed': 3},
        'scenario': {
            'relay_hops': relay_hops,
            'clusters': [{'cluster_id': 1, 'n': 16, 'm': 4, 'l': 3, 'n_nodes': 5,
                          'cluster_seed': 10},
                         {'cluster_id': 2, 'n': 16, 'm': 4, 'l': 2, 'n_nodes': 4,
                          'cluster_seed': 20}],
        },
    }


def test_scenario_from_config_uses_nc_coeff_kind():
    config = _scenario_config('bernoulli')
    engine = engine_from_config(config)
    scenario = scenario_from_config(config, engine)
    assert scenario.nc_mode == 'bernoulli'
    assert scenario.seed == 3
    assert [c.cluster_id for c in engine.clusters] == [1, 2]

    Y = {1: np.ones((5, 4)), 2: np.ones((4, 4))}
    packets = scenario.packets(Y, 0)
    assert len(packets) == 5
    for p in packets:
        assert set(np.unique(p.nc_coeffs)) <= {-1.0, 1.0}

    layout = layout_from_config(config, engine)
    assert layout.coeff_encoding == 'bernoulli'
    assert layout.nc_width == 5


@pytest.mark.parametrize('kind, relay_hops, nc_enable, mode', [
    ('normal', 0, True, 'normal'),
    ('bernoulli', 1, True, 'bernoulli'),
    ('bernoulli', 0, False, 'one_hot'),
])
def test_layout_falls_back_to_float64(kind, relay_hops, nc_enable, mode):
    config = _scenario_config(kind, relay_hops, nc_enable)
    engine = engine_from_config(config)
    scenario = scenario_from_config(config, engine)
    assert scenario.nc_mode == mode
    assert scenario.relay_hops == relay_hops
    assert layout_from_config(config, engine).coeff_encoding == 'float64'


def test_scenario_from_config_requires_clusters():
    config = {'reconstruction': {}, 'scenario': {'clusters': []}}
    with pytest.raises(ValueError, match='clusters'):
        scenario_from_config(config, engine_from_config(config))
