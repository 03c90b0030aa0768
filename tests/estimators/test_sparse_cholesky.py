"""Unit tests for graphslam2d.estimators.sparse_cholesky."""

import numpy as np
import pytest
import scipy.sparse as sp

from graphslam2d.estimators import SparseCholesky


def random_spd(n, seed=0):
    rng = np.random.default_rng(seed)
    A = rng.normal(size=(n, n))
    return A @ A.T + n * np.eye(n)


class TestSparseCholesky:
    """Test suite for the sparse SPD factorization."""

    def test_solve_matches_dense(self):
        H = random_spd(6)
        b = np.arange(6, dtype=float)
        chol = SparseCholesky(sp.csc_matrix(H))
        np.testing.assert_allclose(chol.solve(b), np.linalg.solve(H, b), rtol=1e-10)

    def test_solve_matrix_rhs(self):
        H = random_spd(5, seed=1)
        B = np.eye(5)[:, :2]
        chol = SparseCholesky(H)
        np.testing.assert_allclose(chol.solve(B), np.linalg.inv(H)[:, :2], atol=1e-12)

    def test_inverse_columns(self):
        H = random_spd(7, seed=2)
        chol = SparseCholesky(sp.csr_matrix(H))
        cols = np.array([4, 1])
        np.testing.assert_allclose(
            chol.inverse_columns(cols), np.linalg.inv(H)[:, cols], atol=1e-12
        )

    def test_pivots_are_positive(self):
        chol = SparseCholesky(random_spd(4, seed=3))
        assert chol.pivots.shape == (4,)
        assert np.all(chol.pivots > 0)

    def test_tridiagonal(self):
        n = 50
        H = sp.diags([-1.0, 2.5, -1.0], [-1, 0, 1], shape=(n, n), format="csc")
        b = np.ones(n)
        x = SparseCholesky(H).solve(b)
        np.testing.assert_allclose(H @ x, b, atol=1e-10)

    def test_rank_deficient(self):
        with pytest.raises(np.linalg.LinAlgError):
            SparseCholesky(np.array([[1.0, 1.0], [1.0, 1.0]]))

    def test_indefinite(self):
        with pytest.raises(np.linalg.LinAlgError):
            SparseCholesky(np.array([[1.0, 2.0], [2.0, 1.0]]))

    def test_zero_diagonal_reports_columns(self):
        H = np.diag([1.0, 0.0, 2.0])
        with pytest.raises(np.linalg.LinAlgError) as excinfo:
            SparseCholesky(H)
        assert list(excinfo.value.columns) == [1]

    def test_non_square(self):
        with pytest.raises(ValueError):
            SparseCholesky(np.ones((2, 3)))

    def test_empty(self):
        chol = SparseCholesky(sp.csc_matrix((0, 0)))
        assert chol.solve(np.zeros(0)).shape == (0,)
