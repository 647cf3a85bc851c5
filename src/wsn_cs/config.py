"""
Configuration loading and engine construction.

A configuration file is YAML with a `reconstruction` section (the engine
record) and an optional `scenario` section used by the command-line runner:

    reconstruction:
      solver_spat: OMP
      solver_temp: OMP
      tolerance: 1.0e-3
      ...
    scenario:
      clusters: [...]

Missing reconstruction keys take their values from DEFAULT_CONFIG.
"""

import copy
import re

import yaml

from .network.headers import ClusterHeaderLayout
from .simulation.scenario import ClusterSpec, Scenario
from .sparse_reconstruction.nc_matrix import NC_COEFF_KINDS
from .sparse_reconstruction.random_matrix import RANDOM_KINDS, RecMatrix
from .sparse_reconstruction.reconstruction import ReconstructionEngine
from .sparse_reconstruction.solvers import SOLVERS, make_solver
from .sparse_reconstruction.transforms import TRANSFORM_KINDS


DEFAULT_CONFIG = {
    'solver_spat': 'OMP',
    'solver_temp': 'OMP',
    'tolerance': 1e-3,
    'max_iter': 1000,
    'k_spat': 0,
    'k_temp': 0,
    'seed': 1,
    'random_kind_spat': 'gaussian',
    'random_kind_temp': 'gaussian',
    'use_transform_spat': False,
    'use_transform_temp': False,
    'transform_kind': 'dct',
    'normalize_spat': False,
    'normalize_temp': False,
    'nc_coeff_kind': 'normal',
    'nc_enable': True,
    'nc_normalize': True,
    'joint_transform': True,
    'no_rec_temp': False,
    'calc_snr': False,
    'failure_fill': 'zero',
    'timeout': 10.0,
    'min_packets': 0,
    'n_jobs': 1,
}

_DURATION = re.compile(r'^\s*([0-9]*\.?[0-9]+(?:[eE][-+]?[0-9]+)?)\s*(ms|s|min)?\s*$')
_DURATION_SCALE = {None: 1.0, 's': 1.0, 'ms': 1e-3, 'min': 60.0}


def load_config(config_path):
    """Load configuration from YAML file."""
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)
    return config or {}


def parse_duration(value):
    """
    Convert a duration to seconds.

    Accepts numbers (seconds) or strings with an optional unit.

    Examples
    --------
    >>> parse_duration(2)
    2.0
    >>> parse_duration('250ms')
    0.25
    >>> parse_duration('1.5 min')
    90.0
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    match = _DURATION.match(str(value))
    if not match:
        raise ValueError(f"Invalid duration '{value}'")
    return float(match.group(1)) * _DURATION_SCALE[match.group(2)]


def reconstruction_config(config=None, **overrides):
    """
    Merge a (possibly partial) reconstruction record over the defaults and validate it.

    Parameters
    ----------
    config : dict, optional
        Either the full file contents (with a `reconstruction` section) or
        the reconstruction record itself.
    **overrides
        Individual keys taking precedence over `config`.

    Returns
    -------
    dict
        Complete, validated record.
    """
    config = config or {}
    section = config.get('reconstruction', config)
    merged = copy.deepcopy(DEFAULT_CONFIG)
    merged.update(section)
    merged.update(overrides)
    merged['timeout'] = parse_duration(merged['timeout'])
    validate_config(merged)
    return merged


def validate_config(config):
    """
    Check every recognized key of a reconstruction record.

    Raises
    ------
    ValueError
        Naming the first offending key.
    """
    unknown = set(config) - set(DEFAULT_CONFIG)
    if unknown:
        raise ValueError(f"Unknown configuration key(s): {sorted(unknown)}")

    for key in ('solver_spat', 'solver_temp'):
        if str(config[key]).lower() not in SOLVERS:
            raise ValueError(f"{key}: unknown solver '{config[key]}'")
    for key in ('random_kind_spat', 'random_kind_temp'):
        if str(config[key]).lower() not in RANDOM_KINDS:
            raise ValueError(f"{key}: unknown random matrix kind '{config[key]}'")
    if config['transform_kind'] not in TRANSFORM_KINDS:
        raise ValueError(f"transform_kind: unknown transform '{config['transform_kind']}'")
    if str(config['nc_coeff_kind']).lower() not in NC_COEFF_KINDS + ('gaussian',):
        raise ValueError(f"nc_coeff_kind: must be one of {NC_COEFF_KINDS}")
    if config['failure_fill'] not in ('zero', 'nan'):
        raise ValueError("failure_fill: must be 'zero' or 'nan'")

    if config['tolerance'] < 0:
        raise ValueError(f"tolerance: must be >= 0, got {config['tolerance']}")
    if config['max_iter'] < 1:
        raise ValueError(f"max_iter: must be >= 1, got {config['max_iter']}")
    for key in ('k_spat', 'k_temp', 'min_packets'):
        if config[key] < 0:
            raise ValueError(f"{key}: must be >= 0, got {config[key]}")
    if config['seed'] <= 0:
        raise ValueError(f"seed: must be > 0, got {config['seed']}")
    if parse_duration(config['timeout']) <= 0:
        raise ValueError(f"timeout: must be positive, got {config['timeout']}")
    if config['n_jobs'] == 0:
        raise ValueError("n_jobs: must be non-zero")

    for key in ('use_transform_spat', 'use_transform_temp', 'normalize_spat', 'normalize_temp',
                'nc_enable', 'nc_normalize', 'joint_transform', 'no_rec_temp', 'calc_snr'):
        if not isinstance(config[key], bool):
            raise ValueError(f"{key}: must be a boolean, got {config[key]!r}")
    return config


def engine_from_config(config=None, verbose=False, run_id=0, **overrides):
    """
    Build a ReconstructionEngine from a configuration record.

    Clusters are not part of the record; register them afterwards with
    add_cluster (or Scenario.register).

    Examples
    --------
    >>> engine = engine_from_config({'solver_spat': 'bp', 'no_rec_temp': True})
    >>> engine.solver_spat.name
    'BP'
    """
    cfg = reconstruction_config(config, **overrides)
    common = dict(tolerance=cfg['tolerance'], max_iter=cfg['max_iter'])
    solver_spat = make_solver(cfg['solver_spat'], k=cfg['k_spat'], **common)
    solver_temp = make_solver(cfg['solver_temp'], k=cfg['k_temp'], **common)
    rec_spat = RecMatrix(
        random_kind=cfg['random_kind_spat'].lower(),
        transform=cfg['transform_kind'] if cfg['use_transform_spat'] else None,
        normalize=cfg['normalize_spat'],
    )
    rec_temp = RecMatrix(
        random_kind=cfg['random_kind_temp'].lower(),
        transform=cfg['transform_kind'] if cfg['use_transform_temp'] else None,
        normalize=cfg['normalize_temp'],
    )
    return ReconstructionEngine(
        solver_spat=solver_spat,
        solver_temp=solver_temp,
        rec_spat=rec_spat,
        rec_temp=rec_temp,
        nc_enable=cfg['nc_enable'],
        nc_normalize=cfg['nc_normalize'],
        joint_transform=cfg['joint_transform'],
        no_rec_temp=cfg['no_rec_temp'],
        calc_snr=cfg['calc_snr'],
        failure_fill=cfg['failure_fill'],
        timeout=cfg['timeout'],
        min_packets=cfg['min_packets'],
        n_jobs=cfg['n_jobs'],
        verbose=verbose,
        run_id=run_id,
    )


def nc_mode_from_config(config=None):
    """
    Recombination used by the cluster heads: 'one_hot' without NC, else nc_coeff_kind.

    Examples
    --------
    >>> nc_mode_from_config({'nc_coeff_kind': 'gaussian'})
    'normal'
    >>> nc_mode_from_config({'nc_enable': False, 'nc_coeff_kind': 'bernoulli'})
    'one_hot'
    """
    cfg = reconstruction_config(config)
    if not cfg['nc_enable']:
        return 'one_hot'
    kind = str(cfg['nc_coeff_kind']).lower()
    return 'normal' if kind == 'gaussian' else kind


def scenario_from_config(config, engine):
    """
    Build the synthetic Scenario of a configuration file and register it with engine.

    The NC coefficient distribution comes from `reconstruction.nc_coeff_kind`
    (one-hot rows when `nc_enable` is off); cluster geometry, packet count
    and relay hops come from the `scenario` section.

    Parameters
    ----------
    config : dict
        Full file contents with `reconstruction` and `scenario` sections.
    engine : ReconstructionEngine
        Engine whose matrix recipes the scenario shares.

    Returns
    -------
    Scenario
    """
    scenario_cfg = config.get('scenario', {})
    if not scenario_cfg.get('clusters'):
        raise ValueError("scenario.clusters: at least one cluster is required")
    cfg = reconstruction_config(config)
    scenario = Scenario([ClusterSpec(**c) for c in scenario_cfg['clusters']],
                        rec_spat=engine.rec_spat, rec_temp=engine.rec_temp,
                        nc_mode=nc_mode_from_config(config),
                        n_packets=scenario_cfg.get('n_packets'),
                        seed=cfg['seed'],
                        relay_hops=scenario_cfg.get('relay_hops', 0))
    scenario.register(engine)
    return scenario


def layout_from_config(config, engine):
    """
    Cluster-header layout for the engine's clusters.

    NC coefficients travel 2-bit packed when nc_coeff_kind is bernoulli and
    no relay recombines them further; otherwise as float64.
    """
    relay_hops = config.get('scenario', {}).get('relay_hops', 0)
    packed = nc_mode_from_config(config) == 'bernoulli' and relay_hops == 0
    return ClusterHeaderLayout.from_engine(engine,
                                           coeff_encoding='bernoulli' if packed else 'float64')
