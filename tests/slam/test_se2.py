"""Unit tests for graphslam2d.slam.se2.

Tests the SE(2) operations used by the factors, the optimizer's manifold
update and the covariance rotation.
"""

import numpy as np
import pytest

from graphslam2d.slam import (
    Pose2,
    rotation_matrix,
    se2_apply,
    se2_compose,
    se2_inverse,
    se2_local,
    se2_relative,
    se2_retract,
    wrap_angle,
)


class TestWrapAngle:
    """Test suite for wrap_angle function."""

    def test_wrap_zero(self):
        assert np.isclose(wrap_angle(0.0), 0.0, atol=1e-12)

    def test_wrap_pi(self):
        """π stays π."""
        assert np.isclose(wrap_angle(np.pi), np.pi, atol=1e-12)

    def test_wrap_negative_pi_maps_to_pi(self):
        """The range is half-open, -π is represented by π."""
        assert wrap_angle(-np.pi) == pytest.approx(np.pi)

    def test_wrap_slightly_over_pi(self):
        result = wrap_angle(np.pi + 0.1)
        assert result < 0
        assert np.isclose(result, -np.pi + 0.1, atol=1e-12)

    def test_wrap_array_stays_in_range(self):
        angles = np.linspace(-10.0, 10.0, 201)
        wrapped = wrap_angle(angles)
        assert wrapped.shape == angles.shape
        assert np.all(wrapped > -np.pi)
        assert np.all(wrapped <= np.pi)
        assert np.allclose(np.cos(wrapped), np.cos(angles))
        assert np.allclose(np.sin(wrapped), np.sin(angles))

    def test_wrap_returns_float_for_scalar(self):
        assert isinstance(wrap_angle(1.0), float)


class TestSE2Compose:
    """Test suite for composition, inverse and relative pose."""

    def test_compose_with_identity(self):
        p = np.array([1.0, 2.0, 0.3])
        assert np.allclose(se2_compose(p, np.zeros(3)), p)
        assert np.allclose(se2_compose(np.zeros(3), p), p)

    def test_compose_rotated_frame(self):
        """Moving forward after turning left by 90° moves along +y."""
        p1 = np.array([0.0, 0.0, np.pi / 2])
        p2 = np.array([1.0, 0.0, 0.0])
        assert np.allclose(se2_compose(p1, p2), [0.0, 1.0, np.pi / 2])

    def test_compose_wraps_angle(self):
        p = se2_compose(np.array([0.0, 0.0, 3.0]), np.array([0.0, 0.0, 1.0]))
        assert np.isclose(p[2], 4.0 - 2 * np.pi)

    def test_inverse_composes_to_identity(self):
        p = np.array([1.5, -2.0, 0.7])
        assert np.allclose(se2_compose(p, se2_inverse(p)), np.zeros(3), atol=1e-12)
        assert np.allclose(se2_compose(se2_inverse(p), p), np.zeros(3), atol=1e-12)

    def test_relative_pose(self):
        p1 = np.array([1.0, 1.0, np.pi / 2])
        p2 = np.array([1.0, 3.0, np.pi / 2])
        assert np.allclose(se2_relative(p1, p2), [2.0, 0.0, 0.0], atol=1e-12)

    def test_accepts_pose2(self):
        p = Pose2(x=1.0, y=0.0, theta=0.0)
        assert np.allclose(se2_compose(p, p), [2.0, 0.0, 0.0])

    def test_rejects_wrong_shape(self):
        with pytest.raises(ValueError):
            se2_compose(np.zeros(2), np.zeros(3))


class TestSE2Chart:
    """Test suite for the manifold retraction used by the optimizer."""

    def test_local_inverts_retract(self):
        p = np.array([2.0, -1.0, 2.9])
        delta = np.array([0.1, -0.2, 0.4])
        q = se2_retract(p, delta)
        assert np.allclose(se2_local(p, q), delta)

    def test_retract_is_local_frame(self):
        p = np.array([0.0, 0.0, np.pi / 2])
        q = se2_retract(p, np.array([1.0, 0.0, 0.0]))
        assert np.allclose(q, [0.0, 1.0, np.pi / 2])

    def test_retract_normalizes_angle(self):
        q = se2_retract(np.array([0.0, 0.0, 3.1]), np.array([0.0, 0.0, 0.1]))
        assert -np.pi < q[2] <= np.pi


class TestSE2Apply:
    """Test suite for point transformation."""

    def test_apply_single_point(self):
        p = np.array([1.0, 2.0, np.pi / 2])
        assert np.allclose(se2_apply(p, np.array([1.0, 0.0])), [1.0, 3.0])

    def test_apply_many_points(self):
        p = np.array([0.0, 0.0, np.pi])
        points = np.array([[1.0, 0.0], [0.0, 1.0]])
        assert np.allclose(se2_apply(p, points), [[-1.0, 0.0], [0.0, -1.0]])

    def test_apply_rejects_bad_shape(self):
        with pytest.raises(ValueError):
            se2_apply(np.zeros(3), np.zeros((2, 3)))

    def test_rotation_matrix_is_orthonormal(self):
        R = rotation_matrix(0.8)
        assert np.allclose(R @ R.T, np.eye(2))
        assert np.isclose(np.linalg.det(R), 1.0)
