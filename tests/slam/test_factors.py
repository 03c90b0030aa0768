"""Unit tests for graphslam2d.slam.factors.

Tests the SLAM factors (odometry, landmark observations, pose and heading
priors) and the graph builders.
"""

import numpy as np
import pytest

from graphslam2d.errors import ConstructionError
from graphslam2d.estimators import DiagonalNoiseModel, FactorGraph
from graphslam2d.slam import (
    HeadingRecords,
    LandmarkObservation,
    OdometryPose2D,
    OrientationPrior2D,
    PriorPose2D,
    add_anchor_prior,
    add_heading_priors,
    create_pose_graph,
    landmark_key,
    project_landmark,
)

SIGMAS = [0.1, 0.1, 0.05]


class TestPriorPose2D:
    """Test suite for absolute pose priors."""

    def test_zero_residual_at_mean(self):
        mean = np.array([1.0, 2.0, 0.5])
        factor = PriorPose2D(1, mean, SIGMAS)
        assert np.allclose(factor.residual({1: mean}), 0.0, atol=1e-12)
        assert factor.error({1: mean}) == pytest.approx(0.0, abs=1e-20)

    def test_residual_is_in_prior_frame(self):
        factor = PriorPose2D(1, np.array([0.0, 0.0, np.pi / 2]), SIGMAS)
        r = factor.residual({1: np.array([0.0, 1.0, np.pi / 2])})
        assert np.allclose(r, [1.0, 0.0, 0.0], atol=1e-12)

    def test_error_is_whitened(self):
        factor = PriorPose2D(1, np.zeros(3), SIGMAS)
        # 0.1 m off in x with σx = 0.1 → whitened residual 1 → error 0.5
        assert factor.error({1: np.array([0.1, 0.0, 0.0])}) == pytest.approx(0.5)

    def test_is_prior(self):
        factor = PriorPose2D(1, np.zeros(3), SIGMAS)
        assert factor.is_prior
        assert factor.keys == (1,)
        assert factor.dim == 3

    def test_rejects_non_positive_sigma(self):
        with pytest.raises(ConstructionError):
            PriorPose2D(1, np.zeros(3), [0.1, 0.0, 0.1])

    def test_rejects_wrong_sigma_count(self):
        with pytest.raises(ConstructionError):
            PriorPose2D(1, np.zeros(3), [0.1, 0.1])


class TestOdometryPose2D:
    """Test suite for relative pose factors."""

    def test_zero_error_when_consistent(self):
        factor = OdometryPose2D(1, 2, np.array([1.0, 0.0, np.pi / 2]), SIGMAS)
        values = {1: np.array([1.0, 1.0, np.pi / 2]), 2: np.array([1.0, 2.0, np.pi])}
        assert np.allclose(factor.residual(values), 0.0, atol=1e-12)

    def test_nonzero_error_when_inconsistent(self):
        factor = OdometryPose2D(1, 2, np.array([1.0, 0.0, 0.0]), SIGMAS)
        values = {1: np.zeros(3), 2: np.array([2.0, 0.0, 0.0])}
        assert np.allclose(factor.residual(values), [1.0, 0.0, 0.0])
        assert factor.error(values) == pytest.approx(50.0)

    def test_not_a_prior(self):
        factor = OdometryPose2D(1, 2, np.zeros(3), SIGMAS)
        assert not factor.is_prior
        assert factor.keys == (1, 2)

    def test_rejects_self_loop(self):
        with pytest.raises(ConstructionError):
            OdometryPose2D(3, 3, np.zeros(3), SIGMAS)

    def test_accepts_noise_model(self):
        noise = DiagonalNoiseModel(SIGMAS)
        factor = OdometryPose2D(1, 2, np.zeros(3), noise)
        assert factor.noise_model is noise


class TestLandmarkObservation:
    """Test suite for landmark observations."""

    def setup_method(self):
        self.pose = np.array([1.0, 1.0, np.pi / 2])
        self.landmark = np.array([1.0, 3.0])
        self.lkey = landmark_key(0)
        self.values = {1: self.pose, self.lkey: self.landmark}

    def test_bearing_range_zero_residual(self):
        factor = LandmarkObservation(1, self.lkey, [0.0, 2.0], [0.01, 0.05])
        assert np.allclose(factor.residual(self.values), 0.0, atol=1e-12)

    def test_bearing_residual_is_wrapped(self):
        # Landmark straight behind the pose, measured at -π + 0.01
        values = {1: np.zeros(3), self.lkey: np.array([-2.0, 0.0])}
        factor = LandmarkObservation(1, self.lkey, [-np.pi + 0.01, 2.0], [0.01, 0.05])
        r = factor.residual(values)
        assert abs(r[0]) == pytest.approx(0.01)

    def test_xy_model(self):
        factor = LandmarkObservation(1, self.lkey, [2.0, 0.0], [0.1, 0.1], model="xy")
        assert np.allclose(factor.residual(self.values), 0.0, atol=1e-12)

    def test_rejects_unknown_model(self):
        with pytest.raises(ConstructionError):
            LandmarkObservation(1, self.lkey, [0.0, 1.0], [0.1, 0.1], model="range")

    def test_rejects_negative_range(self):
        with pytest.raises(ConstructionError):
            LandmarkObservation(1, self.lkey, [0.0, -1.0], [0.1, 0.1])

    def test_project_landmark(self):
        assert np.allclose(project_landmark(self.pose, 0.0, 2.0), self.landmark)


class TestOrientationPrior2D:
    """Test suite for heading priors."""

    def test_residual(self):
        factor = OrientationPrior2D(2, 0.3, 0.05)
        r = factor.residual({2: np.array([5.0, -1.0, 0.5])})
        assert np.allclose(r, [0.2])

    def test_small_residual_across_pi(self):
        """Headings on both sides of ±π are close to each other."""
        factor = OrientationPrior2D(2, -np.pi + 0.01, 0.05)
        r = factor.residual({2: np.array([0.0, 0.0, np.pi - 0.01])})
        assert abs(r[0]) == pytest.approx(0.02)

    def test_jacobian_selects_heading(self):
        factor = OrientationPrior2D(2, 0.0, 0.05)
        (J,) = factor.jacobians({2: np.zeros(3)})
        assert np.array_equal(J, [[0.0, 0.0, 1.0]])

    def test_rejects_zero_sigma(self):
        with pytest.raises(ConstructionError):
            OrientationPrior2D(2, 0.0, 0.0)


def _chain_graph(n: int) -> FactorGraph:
    graph = FactorGraph()
    for key in range(1, n + 1):
        graph.add_pose(key, np.array([key - 1.0, 0.0, 0.0]))
    for key in range(1, n):
        graph.add_factor(OdometryPose2D(key, key + 1, np.array([1.0, 0.0, 0.0]), SIGMAS))
    return graph


class TestHeadingPriors:
    """Test suite for add_heading_priors."""

    def test_priors_start_at_index_two(self):
        graph = _chain_graph(4)
        headings = HeadingRecords(angles={1: 0.0, 2: 0.1, 3: 0.2, 4: 0.3}, sigma=0.05, count=4)
        added = add_heading_priors(graph, headings)

        priors = [f for f in graph.factors() if isinstance(f, OrientationPrior2D)]
        assert added == 3
        assert [f.key for f in priors] == [2, 3, 4]
        assert [f.heading for f in priors] == [0.1, 0.2, 0.3]
        assert all(np.allclose(f.noise_model.sigmas, [0.05]) for f in priors)

    def test_missing_indices_are_skipped(self):
        graph = _chain_graph(4)
        headings = HeadingRecords(angles={1: 0.0, 4: 0.3}, sigma=0.05, count=4)
        assert add_heading_priors(graph, headings) == 1
        priors = [f for f in graph.factors() if isinstance(f, OrientationPrior2D)]
        assert [f.key for f in priors] == [4]

    def test_non_positive_sigma(self):
        graph = _chain_graph(3)
        headings = HeadingRecords(angles={1: 0.0, 2: 0.1}, sigma=0.0, count=2)
        with pytest.raises(ConstructionError):
            add_heading_priors(graph, headings)

    def test_missing_sigma(self):
        graph = _chain_graph(3)
        headings = HeadingRecords(angles={2: 0.1}, sigma=None, count=2)
        with pytest.raises(ConstructionError):
            add_heading_priors(graph, headings)


class TestAnchorPrior:
    """Test suite for add_anchor_prior."""

    def test_anchors_lowest_pose_at_initial_value(self):
        graph = FactorGraph()
        graph.add_pose(7, np.array([3.0, 4.0, 0.5]))
        graph.add_pose(5, np.array([1.0, 2.0, 0.25]))
        graph.add_point(landmark_key(0), np.array([0.0, 0.0]))

        factor = add_anchor_prior(graph, [0.3, 0.3, 0.1])

        assert factor.key == 5
        assert np.allclose(factor.mean, [1.0, 2.0, 0.25])
        assert np.allclose(factor.noise_model.sigmas, [0.3, 0.3, 0.1])
        assert graph.has_prior()

    def test_explicit_key(self):
        graph = _chain_graph(3)
        factor = add_anchor_prior(graph, SIGMAS, key=2)
        assert factor.key == 2

    def test_empty_graph(self):
        with pytest.raises(ConstructionError):
            add_anchor_prior(FactorGraph(), SIGMAS)


class TestCreatePoseGraph:
    """Test suite for the create_pose_graph convenience builder."""

    def test_structure(self):
        poses = [np.zeros(3), np.array([1.0, 0, 0]), np.array([2.0, 0, 0])]
        odom = [(0, 1, np.array([1.0, 0, 0])), (1, 2, np.array([1.0, 0, 0]))]
        graph = create_pose_graph(poses, odom, loop_closures=[(2, 0, np.array([-2.0, 0, 0]))])
        assert graph.variable_count == 3
        assert graph.factor_count == 4
        assert graph.has_prior()

    def test_optimizes_bad_initial_guess(self):
        poses = [np.zeros(3), np.array([0.5, 0.5, 0.0]), np.array([1.5, 0.5, 0.0])]
        odom = [(0, 1, np.array([1.0, 0, 0])), (1, 2, np.array([1.0, 0, 0]))]
        graph = create_pose_graph(poses, odom)

        result = graph.optimize()

        assert result.success
        assert np.allclose(result.values[1], [1.0, 0.0, 0.0], atol=1e-3)
        assert np.allclose(result.values[2], [2.0, 0.0, 0.0], atol=1e-3)
