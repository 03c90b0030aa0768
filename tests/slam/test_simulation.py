"""Unit tests for graphslam2d.slam.simulation."""

import numpy as np
import pytest

from graphslam2d.slam import (
    POINT2,
    load_graph_file,
    load_heading_file,
    se2_relative,
    simulate_dataset,
    square_trajectory,
)


class TestSquareTrajectory:
    """Test suite for the square-loop generator."""

    def test_shape_and_start(self):
        poses = square_trajectory(20, side_length=10.0)
        assert poses.shape == (20, 3)
        assert np.allclose(poses[0], [0.0, 0.0, 0.0])

    def test_corners_and_headings(self):
        poses = square_trajectory(8, side_length=10.0)
        assert np.allclose(poses[2], [10.0, 0.0, np.pi / 2])
        assert np.allclose(poses[4], [10.0, 10.0, np.pi])
        assert np.allclose(poses[6], [0.0, 10.0, -np.pi / 2])

    def test_constant_spacing(self):
        poses = square_trajectory(40, side_length=20.0)
        steps = np.linalg.norm(np.diff(poses[:, :2], axis=0), axis=1)
        # Steps that turn a corner are shorter than the path length
        assert np.all(steps <= 2.0 + 1e-9)
        assert np.isclose(np.median(steps), 2.0)

    def test_rejects_too_few_poses(self):
        with pytest.raises(ValueError):
            square_trajectory(1)


class TestSimulateDataset:
    """Test suite for simulate_dataset."""

    def test_reproducible(self):
        a = simulate_dataset(n_poses=10, n_landmarks=3, seed=5)
        b = simulate_dataset(n_poses=10, n_landmarks=3, seed=5)
        assert np.array_equal(a.initial_poses, b.initial_poses)
        assert a.observations == b.observations

    def test_loop_closure_edge(self):
        data = simulate_dataset(n_poses=10, n_landmarks=0, seed=1)
        assert len(data.odometry) == 10
        i, j, measured = data.odometry[-1]
        assert (i, j) == (10, 1)
        expected = se2_relative(data.true_poses[-1], data.true_poses[0])
        assert np.allclose(measured[:2], expected[:2], atol=0.5)

    def test_without_loop_closure(self):
        data = simulate_dataset(n_poses=10, n_landmarks=0, loop_closure=False, seed=1)
        assert len(data.odometry) == 9

    def test_observations_within_range(self):
        data = simulate_dataset(n_poses=20, n_landmarks=6, max_range=8.0, seed=2)
        for pose_key, landmark, bearing, range_ in data.observations:
            true_range = np.linalg.norm(
                data.true_landmarks[landmark] - data.true_poses[pose_key - 1, :2]
            )
            assert true_range <= 8.0
            assert -np.pi < bearing <= np.pi
            assert range_ >= 0.0

    def test_headings(self):
        data = simulate_dataset(n_poses=10, n_landmarks=0, heading_sigma=0.02, seed=4)
        assert data.headings.count == 10
        assert data.headings.sigma == 0.02
        assert sorted(data.headings.angles) == list(range(1, 11))

    def test_written_file_parses(self, tmp_path):
        data = simulate_dataset(n_poses=16, n_landmarks=5, heading_sigma=0.05, seed=9)
        path = str(tmp_path / "simData.graph")
        data.write(path)

        graph = load_graph_file(path)
        headings = load_heading_file(path)

        observed = {landmark for _, landmark, _, _ in data.observations}
        assert len(graph.keys_of_type(POINT2)) == len(observed)
        assert graph.factor_count == len(data.odometry) + len(data.observations)
        assert headings == data.headings
        for key, pose in zip(data.pose_keys, data.initial_poses):
            assert np.allclose(graph.variable(key).value, pose)
