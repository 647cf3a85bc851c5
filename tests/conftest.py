"""Shared fixtures for the wsn_cs test suite."""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add src directory to path so the tests run without installation
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from wsn_cs.simulation import ClusterSpec, Scenario
from wsn_cs.sparse_reconstruction import Omp, RecMatrix, ReconstructionEngine


def make_sparse_vector(n, k, seed):
    """k-sparse vector with entries bounded away from zero."""
    rng = np.random.RandomState(seed)
    x = np.zeros(n)
    support = rng.choice(n, size=k, replace=False)
    x[support] = rng.choice([-1.0, 1.0], size=k) * (1.0 + rng.uniform(size=k))
    return x


@pytest.fixture
def sparse_problem():
    """Gaussian 60 × 100 sensing matrix with a 5-sparse signal."""
    rng = np.random.RandomState(7)
    A = rng.standard_normal((60, 100))
    x = make_sparse_vector(100, 5, seed=11)
    return A, x, A @ x


@pytest.fixture
def single_cluster():
    """Identity-subsampled spatial stage over 8 nodes, Gaussian temporal stage."""
    cluster = ClusterSpec(cluster_id=1, n=64, m=32, l=8, n_nodes=8, cluster_seed=100)
    return Scenario([cluster], rec_spat=RecMatrix('identity'), rec_temp=RecMatrix('gaussian'))


def build_engine(scenario, **kwargs):
    """Engine with tight OMP solvers, registered with the scenario."""
    kwargs.setdefault('solver_spat', Omp(tolerance=1e-8, k=sum(c.n_nodes for c in scenario.clusters)))
    kwargs.setdefault('solver_temp', Omp(tolerance=1e-8))
    engine = ReconstructionEngine(**kwargs)
    scenario.register(engine)
    return engine


@pytest.fixture
def engine_factory():
    return build_engine
