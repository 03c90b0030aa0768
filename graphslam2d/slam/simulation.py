"""Synthetic 2D graph-SLAM datasets.

Generates a square-loop trajectory with noisy odometry, a loop-closure
edge, bearing/range landmark observations and optional HD2 heading
records, and writes them in the graph-file grammar read by
``load_graph_file``.

Pose keys start at 1, so pose 1 is the one the pipeline anchors.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .dataset import HEADING_TAG, HeadingRecords, format_value
from .se2 import se2_compose, se2_relative, wrap_angle


@dataclass
class SimulatedDataset:
    """
    Ground truth and noisy measurements of a simulated run.

    Attributes:
        true_poses: Ground-truth poses of keys 1..N, shape (N, 3).
        initial_poses: Dead-reckoned poses from the noisy odometry, (N, 3).
        true_landmarks: Ground-truth landmarks of indices 0..M-1, (M, 2).
        odometry: (i, j, measured relative pose) edges, including the loop
            closure from the last pose back to the first one.
        observations: (pose key, landmark index, bearing, range) sightings.
        odometry_sigmas: Sigmas [σx, σy, σθ] of every edge.
        bearing_sigma: Bearing noise sigma (rad).
        range_sigma: Range noise sigma (m).
        headings: HD2 heading records, or None.
    """

    true_poses: np.ndarray
    initial_poses: np.ndarray
    true_landmarks: np.ndarray
    odometry: List[Tuple[int, int, np.ndarray]] = field(default_factory=list)
    observations: List[Tuple[int, int, float, float]] = field(default_factory=list)
    odometry_sigmas: Tuple[float, float, float] = (0.05, 0.05, 0.01)
    bearing_sigma: float = 0.01
    range_sigma: float = 0.05
    headings: Optional[HeadingRecords] = None

    @property
    def pose_keys(self) -> List[int]:
        return list(range(1, len(self.true_poses) + 1))

    def to_records(self) -> List[str]:
        """Graph-file lines: VERTEX2, EDGE2, BR and optional HD2 records."""
        lines = []
        for key, pose in zip(self.pose_keys, self.initial_poses):
            lines.append(f"VERTEX2 {key} " + " ".join(format_value(v) for v in pose))

        var = np.asarray(self.odometry_sigmas, dtype=float) ** 2
        noise = " ".join(format_value(v) for v in [var[0], 0.0, var[1], var[2], 0.0, 0.0])
        for i, j, measured in self.odometry:
            lines.append(
                f"EDGE2 {i} {j} " + " ".join(format_value(v) for v in measured) + " " + noise
            )

        for pose_key, landmark, bearing, range_ in self.observations:
            lines.append(
                f"BR {pose_key} {landmark} {format_value(bearing)} {format_value(range_)} "
                f"{format_value(self.bearing_sigma)} {format_value(self.range_sigma)}"
            )

        if self.headings:
            for index in sorted(self.headings.angles):
                lines.append(
                    f"{HEADING_TAG} {index} {format_value(self.headings.angles[index])} "
                    f"{format_value(self.headings.sigma)}"
                )
        return lines

    def write(self, path: str) -> None:
        with open(path, "w") as f:
            f.write("\n".join(self.to_records()) + "\n")


def square_trajectory(n_poses: int, side_length: float = 20.0) -> np.ndarray:
    """
    Poses evenly spaced along a counter-clockwise square loop.

    The loop starts at the origin heading east; each pose faces along the
    side it lies on.

    Returns:
        Poses [x, y, theta], shape (n_poses, 3).
    """
    if n_poses < 2:
        raise ValueError(f"n_poses must be >= 2, got {n_poses}")
    if side_length <= 0:
        raise ValueError(f"side_length must be positive, got {side_length}")

    corners = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]]) * side_length
    directions = np.array([[1.0, 0.0], [0.0, 1.0], [-1.0, 0.0], [0.0, -1.0]])
    headings = np.array([0.0, np.pi / 2, np.pi, -np.pi / 2])

    step = 4.0 * side_length / n_poses
    poses = np.zeros((n_poses, 3))
    for i in range(n_poses):
        s = i * step
        side = min(int(s // side_length), 3)
        offset = s - side * side_length
        poses[i, :2] = corners[side] + offset * directions[side]
        poses[i, 2] = headings[side]
    return poses


def simulate_dataset(
    n_poses: int = 40,
    n_landmarks: int = 10,
    side_length: float = 20.0,
    odometry_sigmas: Sequence[float] = (0.05, 0.05, 0.01),
    bearing_sigma: float = 0.01,
    range_sigma: float = 0.05,
    max_range: float = 15.0,
    heading_sigma: Optional[float] = None,
    loop_closure: bool = True,
    seed: int = 42,
) -> SimulatedDataset:
    """
    Simulate a square-loop graph-SLAM run.

    Args:
        n_poses: Number of poses (keys 1..n_poses).
        n_landmarks: Number of landmarks scattered around the loop.
        side_length: Side of the square (m).
        odometry_sigmas: Odometry noise [σx, σy, σθ].
        bearing_sigma: Bearing noise (rad).
        range_sigma: Range noise (m).
        max_range: Landmarks farther than this are not observed.
        heading_sigma: If given, emit one HD2 record per pose with this
            noise level.
        loop_closure: Add an edge from the last pose back to pose 1.
        seed: Random seed.

    Returns:
        SimulatedDataset.
    """
    rng = np.random.default_rng(seed)
    odometry_sigmas = tuple(float(s) for s in odometry_sigmas)
    sigmas = np.asarray(odometry_sigmas)

    true_poses = square_trajectory(n_poses, side_length)
    margin = 0.25 * side_length
    true_landmarks = rng.uniform(-margin, side_length + margin, size=(n_landmarks, 2))

    # Odometry and dead-reckoned initial estimate
    odometry = []
    initial = [true_poses[0].copy()]
    for i in range(n_poses - 1):
        measured = se2_relative(true_poses[i], true_poses[i + 1]) + rng.normal(0.0, sigmas)
        measured[2] = wrap_angle(measured[2])
        odometry.append((i + 1, i + 2, measured))
        initial.append(se2_compose(initial[-1], measured))
    if loop_closure:
        measured = se2_relative(true_poses[-1], true_poses[0]) + rng.normal(0.0, sigmas)
        measured[2] = wrap_angle(measured[2])
        odometry.append((n_poses, 1, measured))

    # Bearing/range observations
    observations = []
    for i, pose in enumerate(true_poses):
        c, s = np.cos(pose[2]), np.sin(pose[2])
        for j, landmark in enumerate(true_landmarks):
            dx, dy = landmark - pose[:2]
            qx, qy = c * dx + s * dy, -s * dx + c * dy
            true_range = np.hypot(qx, qy)
            if true_range > max_range or true_range < 1e-6:
                continue
            bearing = wrap_angle(np.arctan2(qy, qx) + rng.normal(0.0, bearing_sigma))
            range_ = abs(true_range + rng.normal(0.0, range_sigma))
            observations.append((i + 1, j, float(bearing), float(range_)))

    headings = None
    if heading_sigma is not None:
        headings = HeadingRecords(sigma=float(heading_sigma), count=n_poses)
        for i, pose in enumerate(true_poses):
            headings.angles[i + 1] = float(
                wrap_angle(pose[2] + rng.normal(0.0, heading_sigma))
            )

    return SimulatedDataset(
        true_poses=true_poses,
        initial_poses=np.array(initial),
        true_landmarks=true_landmarks,
        odometry=odometry,
        observations=observations,
        odometry_sigmas=odometry_sigmas,
        bearing_sigma=float(bearing_sigma),
        range_sigma=float(range_sigma),
        headings=headings,
    )
