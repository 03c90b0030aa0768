"""Unit tests for graphslam2d.estimators.noise_model."""

import numpy as np
import pytest

from graphslam2d.errors import ConstructionError
from graphslam2d.estimators import DiagonalNoiseModel


class TestDiagonalNoiseModel:
    """Test suite for DiagonalNoiseModel."""

    def test_whiten(self):
        model = DiagonalNoiseModel([0.1, 0.5])
        assert np.allclose(model.whiten(np.array([0.2, 1.0])), [2.0, 2.0])

    def test_whiten_jacobian_scales_rows(self):
        model = DiagonalNoiseModel([0.5, 2.0])
        J = np.array([[1.0, 2.0], [4.0, 8.0]])
        assert np.allclose(model.whiten_jacobian(J), [[2.0, 4.0], [2.0, 4.0]])

    def test_error(self):
        model = DiagonalNoiseModel([0.1, 0.1, 0.05])
        assert model.error(np.array([0.1, 0.0, 0.05])) == pytest.approx(1.0)

    @pytest.mark.parametrize("sigmas", [[0.1, 0.0], [0.1, -1.0], [np.inf], [np.nan], []])
    def test_rejects_invalid_sigmas(self, sigmas):
        with pytest.raises(ConstructionError):
            DiagonalNoiseModel(sigmas)

    def test_sigmas_are_read_only(self):
        model = DiagonalNoiseModel([0.1, 0.2])
        with pytest.raises(ValueError):
            model.sigmas[0] = 1.0

    def test_from_variances(self):
        model = DiagonalNoiseModel.from_variances([0.01, 0.04])
        assert np.allclose(model.sigmas, [0.1, 0.2])
        assert np.allclose(model.covariance(), np.diag([0.01, 0.04]))

    def test_from_information(self):
        model = DiagonalNoiseModel.from_information(np.diag([100.0, 25.0]))
        assert np.allclose(model.sigmas, [0.1, 0.2])
        assert np.allclose(model.information(), np.diag([100.0, 25.0]))

    def test_from_covariance_drops_correlation(self):
        cov = np.array([[0.01, 0.001], [0.001, 0.04]])
        with pytest.warns(RuntimeWarning):
            model = DiagonalNoiseModel.from_covariance(cov)
        assert np.allclose(model.sigmas, [0.1, 0.2])

    def test_from_covariance_rejects_zero_variance(self):
        with pytest.raises(ConstructionError):
            DiagonalNoiseModel.from_covariance(np.diag([0.01, 0.0]))

    def test_equality(self):
        assert DiagonalNoiseModel([0.1, 0.2]) == DiagonalNoiseModel([0.1, 0.2])
        assert DiagonalNoiseModel([0.1, 0.2]) != DiagonalNoiseModel([0.1, 0.3])
        assert hash(DiagonalNoiseModel([0.1])) == hash(DiagonalNoiseModel([0.1]))

    def test_from_sigmas(self):
        assert DiagonalNoiseModel.from_sigmas([0.1, 0.2]) == DiagonalNoiseModel([0.1, 0.2])
