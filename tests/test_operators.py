"""Tests for linear operators, random matrices, transforms and the NC buffer."""

import numpy as np
import pytest

from wsn_cs.errors import DimensionMismatchError
from wsn_cs.sparse_reconstruction import (
    DctTransform, DftTransform, DiagonalOperator, IdentityOperator, MatrixOperator, NcMatrix,
    NcCoefficientGenerator, RecMatrix, block_diag, compose, gaussian_matrix, identity_matrix,
    ReconstructionEngine, bernoulli_matrix, make_random_matrix, make_transform, scale,
)
from wsn_cs.simulation import ClusterSpec, Scenario


def _adjoint_gap(op, seed=0):
    rng = np.random.RandomState(seed)
    x = rng.standard_normal(op.cols())
    y = rng.standard_normal(op.rows())
    return abs(op.apply(x) @ y - x @ op.apply_adjoint(y))


class TestCombinators:

    def test_compose_matches_dense_product(self):
        rng = np.random.RandomState(1)
        A, B = rng.standard_normal((4, 6)), rng.standard_normal((6, 3))
        op = compose(MatrixOperator(A), MatrixOperator(B))
        assert op.shape == (4, 3)
        np.testing.assert_allclose(op.to_dense(), A @ B)

    def test_compose_rejects_nonconforming(self):
        with pytest.raises(DimensionMismatchError):
            compose(MatrixOperator(np.ones((4, 6))), MatrixOperator(np.ones((5, 3))))

    def test_block_diag_action(self):
        A1 = MatrixOperator(np.arange(6.0).reshape(2, 3))
        A2 = MatrixOperator(np.array([[2.0, 0.0], [0.0, 3.0], [1.0, 1.0]]))
        op = block_diag([A1, A2])
        assert op.shape == (5, 5)
        x = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
        expected = np.concatenate([A1.apply(x[:3]), A2.apply(x[3:])])
        np.testing.assert_allclose(op.apply(x), expected)
        np.testing.assert_allclose(op.to_dense()[:2, 3:], 0.0)
        np.testing.assert_allclose(op.column(4), op.to_dense()[:, 4])

    def test_scale(self):
        A = np.arange(6.0).reshape(2, 3)
        np.testing.assert_allclose(scale(MatrixOperator(A), -0.5).to_dense(), -0.5 * A)
        np.testing.assert_allclose((2.0 * MatrixOperator(A)).to_dense(), 2.0 * A)

    def test_adjoint_consistency(self):
        rng = np.random.RandomState(3)
        ops = [
            MatrixOperator(rng.standard_normal((5, 7))),
            compose(MatrixOperator(rng.standard_normal((5, 7))), DiagonalOperator(rng.uniform(size=7))),
            block_diag([MatrixOperator(rng.standard_normal((2, 3))), IdentityOperator(4)]),
            scale(DctTransform(9), 3.0),
            DftTransform(10),
        ]
        for op in ops:
            assert _adjoint_gap(op) < 1e-10

    def test_index_and_shape_errors(self):
        op = MatrixOperator(np.ones((3, 2)))
        with pytest.raises(DimensionMismatchError):
            op.column(2)
        with pytest.raises(DimensionMismatchError):
            op.apply(np.ones(3))
        with pytest.raises(DimensionMismatchError):
            DiagonalOperator(np.ones(3)).set_diag(np.ones(4))


class TestRandomMatrices:

    def test_gaussian_is_deterministic(self):
        np.testing.assert_array_equal(gaussian_matrix(16, 32, 42), gaussian_matrix(16, 32, 42))
        assert not np.array_equal(gaussian_matrix(16, 32, 42), gaussian_matrix(16, 32, 43))

    def test_global_prng_untouched(self):
        np.random.seed(123)
        expected = np.random.uniform(size=3)
        np.random.seed(123)
        make_random_matrix('gaussian', 16, 32, 42)
        make_random_matrix('bernoulli', 8, 8, 5)
        np.testing.assert_array_equal(np.random.uniform(size=3), expected)

    def test_bernoulli_entries(self):
        phi = bernoulli_matrix(20, 30, 1)
        assert set(np.unique(phi)) <= {-1.0, 1.0}
        np.testing.assert_allclose(bernoulli_matrix(20, 30, 1, normalize=True), phi / np.sqrt(20))

    def test_identity_rows_distinct(self):
        phi = identity_matrix(10, 16, seed=9)
        assert phi.shape == (10, 16)
        np.testing.assert_array_equal(phi.sum(axis=1), np.ones(10))
        cols = np.argmax(phi, axis=1)
        assert len(set(cols)) == 10

    def test_identity_requires_m_le_n(self):
        with pytest.raises(ValueError):
            identity_matrix(5, 4, seed=1)

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            make_random_matrix('poisson', 2, 2, 1)
        with pytest.raises(ValueError):
            RecMatrix('poisson')

    def test_rec_matrix_build(self):
        rec = RecMatrix('gaussian', transform='dct')
        op = rec.build(8, 16, seed=4)
        np.testing.assert_allclose(op.to_dense(),
                                   gaussian_matrix(8, 16, 4) @ DctTransform(16).to_dense())


class TestTransforms:

    @pytest.mark.parametrize('kind', ['dct', 'dft'])
    @pytest.mark.parametrize('n', [1, 7, 8, 64])
    def test_round_trip(self, kind, n):
        psi = make_transform(kind, n)
        x = np.random.RandomState(n).standard_normal(n)
        np.testing.assert_allclose(psi.apply(psi.apply_adjoint(x)), x, atol=1e-10)
        np.testing.assert_allclose(psi.apply_adjoint(psi.apply(x)), x, atol=1e-10)

    @pytest.mark.parametrize('kind', ['dct', 'dft'])
    def test_orthonormal(self, kind):
        Psi = make_transform(kind, 12).to_dense()
        np.testing.assert_allclose(Psi.T @ Psi, np.eye(12), atol=1e-10)

    def test_dct_first_atom_is_constant(self):
        atom = DctTransform(16).column(0)
        np.testing.assert_allclose(atom, np.full(16, 0.25))


class TestNcMatrix:

    def test_rows_and_products(self):
        nc = NcMatrix(3)
        nc.append_row([1.0, 0.0, 2.0])
        nc.append_row([0.0, 1.0, -1.0])
        assert nc.shape == (2, 3)
        np.testing.assert_allclose(nc.apply(np.array([1.0, 2.0, 3.0])), [7.0, -1.0])
        np.testing.assert_allclose(nc.apply_adjoint(np.array([1.0, 1.0])), [1.0, 1.0, 1.0])
        assert _adjoint_gap(nc) < 1e-12

    @pytest.mark.parametrize("kind", ['bernoulli', 'normal'])
    def test_adjoint_through_engine_operator(self, kind):
        clusters = [ClusterSpec(1, n=16, m=8, l=6, n_nodes=10, cluster_seed=100),
                    ClusterSpec(2, n=16, m=8, l=5, n_nodes=9, cluster_seed=200)]
        engine = ReconstructionEngine(joint_transform=False)
        Scenario(clusters, rec_spat=RecMatrix('gaussian', transform='dct')).register(engine)
        precode = np.ones(9)
        precode[[1, 4]] = 0.0
        engine.set_precode_entries(2, precode)

        nc = NcMatrix(engine.nc_width)
        gen = NcCoefficientGenerator(kind, seed=3)
        for _ in range(engine.nc_width - 2):
            nc.append_row(gen.draw(engine.nc_width))
        op = compose(nc, engine.spatial_operator())
        assert op.shape == (engine.nc_width - 2, 19)

        rng = np.random.RandomState(4)
        x = rng.standard_normal(op.cols())
        y = rng.standard_normal(op.rows())
        gap = abs(op.apply(x) @ y - x @ op.apply_adjoint(y))
        assert gap <= 1e-9 * np.linalg.norm(x) * np.linalg.norm(y)

    def test_copy_is_independent(self):
        nc = NcMatrix(2)
        nc.append_row([1.0, 2.0])
        snapshot = nc.copy()
        nc.append_row([3.0, 4.0])
        assert snapshot.rows() == 1 and nc.rows() == 2
        np.testing.assert_array_equal(snapshot.to_dense(), [[1.0, 2.0]])

    def test_width_mismatch(self):
        nc = NcMatrix(3)
        with pytest.raises(DimensionMismatchError):
            nc.append_row([1.0, 2.0])

    def test_set_width_clears(self):
        nc = NcMatrix(2)
        nc.append_row([1.0, 1.0])
        nc.set_width(4)
        assert nc.rows() == 0 and nc.width() == 4
        assert nc.to_dense().shape == (0, 4)

    def test_coefficient_generator(self):
        a = NcCoefficientGenerator('gaussian', seed=5).draw(6)
        b = NcCoefficientGenerator('normal', seed=5).draw(6)
        np.testing.assert_array_equal(a, b)
        assert set(NcCoefficientGenerator('bernoulli', 1).draw(50)) <= {-1.0, 1.0}
        assert set(NcCoefficientGenerator('uniform', 1).draw(50)) <= {0.0, 1.0}
        with pytest.raises(ValueError):
            NcCoefficientGenerator('poisson')
