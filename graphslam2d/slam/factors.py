"""Factor graph factors for 2D pose-graph SLAM.

Factors connect poses and landmarks in a graph and encode constraints from:
    - Odometry: relative motion between two poses (also loop closures)
    - Landmark observations: bearing/range or Cartesian sightings
    - Pose priors: absolute pose measurements, e.g. the anchor of the graph
    - Orientation priors: absolute heading measurements (HD2 records)

Each factor is a small immutable value object with an analytic residual and
analytic Jacobians with respect to the tangent-space update of each
variable (x ⊕ δ for poses, x + δ for points). Residual angles are always
wrapped to (-π, π].

Builders:
    - add_heading_priors: one OrientationPrior2D per recorded heading
    - add_anchor_prior: PriorPose2D on the first pose
    - create_pose_graph: complete pose graph from trajectory data
"""

from dataclasses import dataclass
from typing import ClassVar, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import ConstructionError
from ..estimators.factor_graph import FactorGraph
from ..estimators.noise_model import DiagonalNoiseModel
from .se2 import rotation_matrix, se2_apply, se2_relative, wrap_angle
from .variables import POINT2, POSE2

Values = Dict[int, np.ndarray]
Sigmas = Union[Sequence[float], np.ndarray, DiagonalNoiseModel]

# d/dθ R(θ) = R(θ) S
_S = np.array([[0.0, -1.0], [1.0, 0.0]])


def _as_noise_model(sigmas: Sigmas, dim: int, name: str) -> DiagonalNoiseModel:
    if isinstance(sigmas, DiagonalNoiseModel):
        model = sigmas
    else:
        model = DiagonalNoiseModel(sigmas)
    if model.dim != dim:
        raise ConstructionError(f"{name} needs {dim} sigmas, got {model.dim}")
    return model


def _as_vector(value, dim: int, name: str) -> np.ndarray:
    vector = np.array(value, dtype=np.float64).reshape(-1)
    if vector.shape != (dim,) or not np.all(np.isfinite(vector)):
        raise ConstructionError(f"{name} must be {dim} finite values, got {value}")
    vector.setflags(write=False)
    return vector


def _pose_jacobian_of_compose(e: np.ndarray) -> np.ndarray:
    """∂(e ⊕ δ)/∂δ at δ = 0."""
    J = np.eye(3)
    J[:2, :2] = rotation_matrix(e[2])
    return J


@dataclass(frozen=True, eq=False)
class PriorPose2D:
    """
    Absolute prior on a pose.

    Residual:
        r = mean⁻¹ ⊕ x   (angle wrapped)

    Attributes:
        key: Pose key.
        mean: Prior pose [x, y, theta].
        noise_model: Sigmas for x, y, theta (expressed in the prior frame).
    """

    key: int
    mean: np.ndarray
    noise_model: DiagonalNoiseModel

    is_prior: ClassVar[bool] = True
    dim: ClassVar[int] = 3

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", int(self.key))
        object.__setattr__(self, "mean", _as_vector(self.mean, 3, "prior mean"))
        object.__setattr__(
            self, "noise_model", _as_noise_model(self.noise_model, 3, "PriorPose2D")
        )

    @property
    def keys(self) -> Tuple[int, ...]:
        return (self.key,)

    @property
    def variable_types(self):
        return (POSE2,)

    def residual(self, values: Values) -> np.ndarray:
        return se2_relative(self.mean, values[self.key])

    def jacobians(self, values: Values) -> List[np.ndarray]:
        return [_pose_jacobian_of_compose(self.residual(values))]

    def error(self, values: Values) -> float:
        return self.noise_model.error(self.residual(values))


@dataclass(frozen=True, eq=False)
class OdometryPose2D:
    """
    Relative pose constraint between two poses (odometry or loop closure).

    Residual:
        r = z⁻¹ ⊕ (x_i⁻¹ ⊕ x_j)   (angle wrapped)

    where z is the measured motion of pose j in the frame of pose i.

    Attributes:
        key_i: Key of the pose the measurement is expressed in.
        key_j: Key of the target pose.
        measured: Measured relative pose [Δx, Δy, Δθ].
        noise_model: Sigmas for Δx, Δy, Δθ.
    """

    key_i: int
    key_j: int
    measured: np.ndarray
    noise_model: DiagonalNoiseModel

    is_prior: ClassVar[bool] = False
    dim: ClassVar[int] = 3

    def __post_init__(self) -> None:
        object.__setattr__(self, "key_i", int(self.key_i))
        object.__setattr__(self, "key_j", int(self.key_j))
        if self.key_i == self.key_j:
            raise ConstructionError(f"Odometry factor connects pose {self.key_i} to itself")
        object.__setattr__(self, "measured", _as_vector(self.measured, 3, "odometry"))
        object.__setattr__(
            self, "noise_model", _as_noise_model(self.noise_model, 3, "OdometryPose2D")
        )

    @property
    def keys(self) -> Tuple[int, ...]:
        return (self.key_i, self.key_j)

    @property
    def variable_types(self):
        return (POSE2, POSE2)

    def _predicted(self, values: Values) -> np.ndarray:
        return se2_relative(values[self.key_i], values[self.key_j])

    def residual(self, values: Values) -> np.ndarray:
        return se2_relative(self.measured, self._predicted(values))

    def jacobians(self, values: Values) -> List[np.ndarray]:
        h = self._predicted(values)
        e = se2_relative(self.measured, h)

        Rz_t = rotation_matrix(self.measured[2]).T
        J_i = np.zeros((3, 3))
        J_i[:2, :2] = -Rz_t
        J_i[:2, 2] = -Rz_t @ (_S @ h[:2])
        J_i[2, 2] = -1.0

        return [J_i, _pose_jacobian_of_compose(e)]

    def error(self, values: Values) -> float:
        return self.noise_model.error(self.residual(values))


@dataclass(frozen=True, eq=False)
class LandmarkObservation:
    """
    Observation of a landmark from a pose.

    With q = R(θ)ᵀ (l - t) the landmark position in the pose frame:

        model="bearing_range":  r = [wrap(atan2(q_y, q_x) - z_b), |q| - z_r]
        model="xy":             r = q - z

    Attributes:
        pose_key: Key of the observing pose.
        landmark_key: Key of the landmark.
        measured: [bearing, range] or [x, y] in the pose frame.
        noise_model: Two sigmas, in the order of ``measured``.
        model: "bearing_range" or "xy".
    """

    pose_key: int
    landmark_key: int
    measured: np.ndarray
    noise_model: DiagonalNoiseModel
    model: str = "bearing_range"

    is_prior: ClassVar[bool] = False
    dim: ClassVar[int] = 2

    def __post_init__(self) -> None:
        if self.model not in ("bearing_range", "xy"):
            raise ConstructionError(
                f"model must be 'bearing_range' or 'xy', got {self.model!r}"
            )
        object.__setattr__(self, "pose_key", int(self.pose_key))
        object.__setattr__(self, "landmark_key", int(self.landmark_key))
        measured = _as_vector(self.measured, 2, "landmark measurement")
        if self.model == "bearing_range" and measured[1] < 0:
            raise ConstructionError(f"range must be non-negative, got {measured[1]}")
        object.__setattr__(self, "measured", measured)
        object.__setattr__(
            self,
            "noise_model",
            _as_noise_model(self.noise_model, 2, "LandmarkObservation"),
        )

    @property
    def keys(self) -> Tuple[int, ...]:
        return (self.pose_key, self.landmark_key)

    @property
    def variable_types(self):
        return (POSE2, POINT2)

    def _local_point(self, values: Values) -> Tuple[np.ndarray, np.ndarray]:
        pose = values[self.pose_key]
        R = rotation_matrix(pose[2])
        return R.T @ (values[self.landmark_key] - pose[:2]), R

    def residual(self, values: Values) -> np.ndarray:
        q, _ = self._local_point(values)
        if self.model == "xy":
            return q - self.measured
        bearing = np.arctan2(q[1], q[0])
        return np.array(
            [wrap_angle(bearing - self.measured[0]), np.hypot(q[0], q[1]) - self.measured[1]]
        )

    def jacobians(self, values: Values) -> List[np.ndarray]:
        q, R = self._local_point(values)
        qx, qy = q

        # ∂q/∂δ for the pose (local frame) and ∂q/∂l for the landmark
        dq_pose = np.array([[-1.0, 0.0, qy], [0.0, -1.0, -qx]])
        dq_landmark = R.T
        if self.model == "xy":
            return [dq_pose, dq_landmark]

        rho2 = max(qx * qx + qy * qy, 1e-18)
        rho = np.sqrt(rho2)
        d_bearing = np.array([-qy, qx]) / rho2
        d_range = np.array([qx, qy]) / rho
        dz_dq = np.vstack([d_bearing, d_range])
        return [dz_dq @ dq_pose, dz_dq @ dq_landmark]

    def error(self, values: Values) -> float:
        return self.noise_model.error(self.residual(values))


@dataclass(frozen=True, eq=False)
class OrientationPrior2D:
    """
    Absolute heading prior on a pose: r = wrap(θ - heading).

    Headings near ±π give small residuals: θ = π - ε against a heading of
    -π + ε yields r = -2ε, not 2π - 2ε.
    """

    key: int
    heading: float
    noise_model: DiagonalNoiseModel

    is_prior: ClassVar[bool] = True
    dim: ClassVar[int] = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", int(self.key))
        heading = float(self.heading)
        if not np.isfinite(heading):
            raise ConstructionError(f"heading must be finite, got {heading}")
        object.__setattr__(self, "heading", heading)
        noise = self.noise_model
        if not isinstance(noise, DiagonalNoiseModel):
            noise = np.atleast_1d(np.asarray(noise, dtype=np.float64))
        object.__setattr__(
            self, "noise_model", _as_noise_model(noise, 1, "OrientationPrior2D")
        )

    @property
    def keys(self) -> Tuple[int, ...]:
        return (self.key,)

    @property
    def variable_types(self):
        return (POSE2,)

    def residual(self, values: Values) -> np.ndarray:
        return np.array([wrap_angle(values[self.key][2] - self.heading)])

    def jacobians(self, values: Values) -> List[np.ndarray]:
        return [np.array([[0.0, 0.0, 1.0]])]

    def error(self, values: Values) -> float:
        return self.noise_model.error(self.residual(values))


def project_landmark(pose: np.ndarray, bearing: float, range_: float) -> np.ndarray:
    """World position of a landmark seen at (bearing, range) from pose."""
    return se2_apply(pose, range_ * np.array([np.cos(bearing), np.sin(bearing)]))


def add_heading_priors(graph: FactorGraph, headings) -> int:
    """
    Add one OrientationPrior2D per recorded heading.

    Pose 1 carries the anchor prior, so headings are applied from index 2
    through ``headings.count``. Indices without a heading record are
    skipped rather than given a zero-heading prior, so a gap in the HD2
    records never pulls a pose towards theta = 0. All priors share
    ``headings.sigma``.

    Args:
        graph: Factor graph holding the poses.
        headings: Object with ``angles`` (index -> heading), ``sigma`` and
            ``count`` attributes, e.g. HeadingRecords.

    Returns:
        Number of priors added.

    Raises:
        ConstructionError: If the shared sigma is missing or not positive,
            or a heading refers to a pose that is not in the graph.
    """
    indices = [i for i in range(2, headings.count + 1) if i in headings.angles]
    if not indices:
        return 0
    if headings.sigma is None or not headings.sigma > 0:
        raise ConstructionError(
            f"heading sigma must be positive (taken from HD2 index 1), got {headings.sigma}"
        )
    noise = DiagonalNoiseModel([headings.sigma])
    for index in indices:
        graph.add_factor(OrientationPrior2D(index, headings.angles[index], noise))
    return len(indices)


def add_anchor_prior(
    graph: FactorGraph, sigmas: Sigmas, key: Optional[int] = None
) -> PriorPose2D:
    """
    Anchor the graph with a PriorPose2D on one pose.

    The prior mean is the pose's current initial value, so the anchor
    fixes the gauge without moving the trajectory.

    Args:
        graph: Factor graph.
        sigmas: Prior sigmas [σx, σy, σθ].
        key: Pose to anchor; defaults to the lowest pose key.

    Returns:
        The added factor.
    """
    if key is None:
        pose_keys = graph.keys_of_type(POSE2)
        if not pose_keys:
            raise ConstructionError("Cannot anchor a graph without poses")
        key = pose_keys[0]
    if not graph.has_variable(key):
        raise ConstructionError(f"Cannot anchor unknown pose {key}")
    factor = PriorPose2D(key, graph.variable(key).value, sigmas)
    graph.add_factor(factor)
    return factor


def create_pose_graph(
    poses: List[np.ndarray],
    odometry_measurements: List[Tuple[int, int, np.ndarray]],
    loop_closures: Optional[List[Tuple[int, int, np.ndarray]]] = None,
    prior_pose: Optional[np.ndarray] = None,
    odometry_sigmas: Sigmas = (0.1, 0.1, 0.05),
    loop_sigmas: Sigmas = (0.1, 0.1, 0.05),
    prior_sigmas: Sigmas = (1e-3, 1e-3, 1e-3),
) -> FactorGraph:
    """
    Create a complete pose graph from trajectory data.

    Pose i of ``poses`` gets key i. A prior is placed on pose 0.

    Args:
        poses: Initial pose estimates [x, y, theta].
        odometry_measurements: (from_id, to_id, relative_pose) tuples.
        loop_closures: Optional (from_id, to_id, relative_pose) tuples.
        prior_pose: Prior mean for pose 0 (defaults to poses[0]).
        odometry_sigmas: Sigmas of every odometry factor.
        loop_sigmas: Sigmas of every loop-closure factor.
        prior_sigmas: Sigmas of the prior on pose 0.

    Returns:
        FactorGraph ready for optimization.

    Examples:
        >>> poses = [np.zeros(3), np.array([1.0, 0, 0]), np.array([2.0, 0, 0])]
        >>> odom = [(0, 1, np.array([1.0, 0, 0])), (1, 2, np.array([1.0, 0, 0]))]
        >>> graph = create_pose_graph(poses, odom)
        >>> graph.factor_count
        3
    """
    graph = FactorGraph()
    for i, pose in enumerate(poses):
        graph.add_pose(i, pose)

    if prior_pose is None:
        prior_pose = poses[0]
    graph.add_factor(PriorPose2D(0, prior_pose, prior_sigmas))

    for from_id, to_id, rel_pose in odometry_measurements:
        graph.add_factor(OdometryPose2D(from_id, to_id, rel_pose, odometry_sigmas))

    for from_id, to_id, rel_pose in loop_closures or []:
        graph.add_factor(OdometryPose2D(from_id, to_id, rel_pose, loop_sigmas))

    return graph
