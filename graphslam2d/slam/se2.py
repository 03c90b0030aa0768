"""SE(2) operations for 2D pose-graph SLAM.

This module implements the rigid-body operations used by the factors,
the optimizer's manifold update, and the covariance extractor.

Key functions:
    - wrap_angle: Normalize angle to (-π, π]
    - se2_compose: Compose two SE(2) poses (p1 ⊕ p2)
    - se2_inverse: Invert an SE(2) pose (p⁻¹)
    - se2_relative: Relative pose p_from⁻¹ ⊕ p_to
    - se2_apply: Map points from a pose frame to the world frame
    - se2_retract / se2_local: Manifold chart used by the optimizer

SE(2) representation: poses are NumPy arrays [x, y, theta] of shape (3,).

The chart is the one GTSAM uses for Pose2 when the exponential map is
disabled: retract(p, δ) = p ⊕ δ and local(p, q) = p⁻¹ ⊕ q. Tangent
vectors are therefore expressed in the local frame of the pose, which is
why marginal pose covariances come out in the body frame.
"""

from typing import Union

import numpy as np

from .types import Pose2


def wrap_angle(theta: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """
    Normalize angle to the half-open range (-π, π].

    Uses atan2(sin θ, cos θ), then maps the single boundary value -π to π
    so that every angle has exactly one representative.

    Args:
        theta: Angle in radians (scalar or array).

    Returns:
        Normalized angle(s) in (-π, π].

    Examples:
        >>> wrap_angle(np.pi)
        3.141592653589793
        >>> wrap_angle(-np.pi)
        3.141592653589793
        >>> round(wrap_angle(np.pi + 0.1), 6)
        -3.041593
    """
    wrapped = np.arctan2(np.sin(theta), np.cos(theta))
    if np.ndim(wrapped) == 0:
        return float(np.pi) if wrapped <= -np.pi else float(wrapped)
    return np.where(wrapped <= -np.pi, np.pi, wrapped)


def _as_pose_array(p: Union[np.ndarray, Pose2], name: str) -> np.ndarray:
    if isinstance(p, Pose2):
        return p.to_array()
    p = np.asarray(p, dtype=np.float64)
    if p.shape != (3,):
        raise ValueError(f"{name} must have shape (3,), got {p.shape}")
    return p


def rotation_matrix(theta: float) -> np.ndarray:
    """
    2D rotation matrix R(θ) = [[cos θ, -sin θ], [sin θ, cos θ]].
    """
    c = np.cos(theta)
    s = np.sin(theta)
    return np.array([[c, -s], [s, c]], dtype=np.float64)


def se2_compose(
    p1: Union[np.ndarray, Pose2], p2: Union[np.ndarray, Pose2]
) -> np.ndarray:
    """
    Compose two SE(2) poses: p_result = p1 ⊕ p2.

    The composition formula for SE(2):
        x = x1 + x2*cos(θ1) - y2*sin(θ1)
        y = y1 + x2*sin(θ1) + y2*cos(θ1)
        θ = θ1 + θ2  (wrapped to (-π, π])

    Args:
        p1: First pose, array [x1, y1, θ1] or Pose2 instance.
        p2: Second pose, array [x2, y2, θ2] or Pose2 instance.

    Returns:
        Composed pose as array [x, y, θ] of shape (3,).

    Raises:
        ValueError: If poses do not have shape (3,).

    Examples:
        >>> p1 = np.array([0.0, 0.0, np.pi / 2])
        >>> p2 = np.array([1.0, 0.0, 0.0])
        >>> np.allclose(se2_compose(p1, p2), [0.0, 1.0, np.pi / 2])
        True
    """
    p1 = _as_pose_array(p1, "p1")
    p2 = _as_pose_array(p2, "p2")

    x1, y1, th1 = p1
    x2, y2, th2 = p2
    c = np.cos(th1)
    s = np.sin(th1)

    return np.array(
        [x1 + x2 * c - y2 * s, y1 + x2 * s + y2 * c, wrap_angle(th1 + th2)],
        dtype=np.float64,
    )


def se2_inverse(p: Union[np.ndarray, Pose2]) -> np.ndarray:
    """
    Compute the inverse of an SE(2) pose such that p ⊕ p⁻¹ = identity.

    The inverse formula for SE(2):
        x_inv = -(x*cos(θ) + y*sin(θ))
        y_inv = -(-x*sin(θ) + y*cos(θ))
        θ_inv = -θ  (wrapped to (-π, π])

    Args:
        p: Pose to invert, array [x, y, θ] or Pose2 instance.

    Returns:
        Inverted pose as array [x, y, θ] of shape (3,).
    """
    p = _as_pose_array(p, "p")

    x, y, th = p
    c = np.cos(th)
    s = np.sin(th)

    return np.array(
        [-(x * c + y * s), -(-x * s + y * c), wrap_angle(-th)], dtype=np.float64
    )


def se2_relative(
    p_from: Union[np.ndarray, Pose2], p_to: Union[np.ndarray, Pose2]
) -> np.ndarray:
    """
    Compute relative pose between two global poses: p_from⁻¹ ⊕ p_to.

    This is the predicted measurement of an odometry or loop-closure
    constraint between the two poses.

    Examples:
        >>> p1 = np.array([0.0, 0.0, 0.0])
        >>> p2 = np.array([1.0, 1.0, np.pi / 2])
        >>> np.allclose(se2_relative(p1, p2), [1.0, 1.0, np.pi / 2])
        True
    """
    return se2_compose(se2_inverse(p_from), p_to)


def se2_apply(p: Union[np.ndarray, Pose2], points: np.ndarray) -> np.ndarray:
    """
    Transform 2D points from the pose frame to the world frame.

    Computes R(θ) · point + [x, y] for each point.

    Args:
        p: Pose [x, y, θ] or Pose2 instance.
        points: One point of shape (2,) or several of shape (N, 2).

    Returns:
        Transformed points with the same shape as the input.

    Raises:
        ValueError: If points is neither (2,) nor (N, 2).
    """
    p = _as_pose_array(p, "p")
    points = np.asarray(points, dtype=np.float64)
    single = points.shape == (2,)
    if single:
        points = points[np.newaxis, :]
    if points.ndim != 2 or points.shape[1] != 2:
        raise ValueError(f"points must have shape (2,) or (N, 2), got {points.shape}")
    world = points @ rotation_matrix(p[2]).T + p[:2]
    return world[0] if single else world


def se2_retract(p: np.ndarray, delta: np.ndarray) -> np.ndarray:
    """
    Apply a local-frame increment to a pose: p ⊕ δ.

    Args:
        p: Pose [x, y, θ].
        delta: Tangent increment [δx, δy, δθ] in the frame of p.

    Returns:
        Updated pose with the angle re-normalized.
    """
    return se2_compose(p, delta)


def se2_local(p: np.ndarray, q: np.ndarray) -> np.ndarray:
    """
    Local coordinates of q around p: the vector form of p⁻¹ ⊕ q.

    Inverse of se2_retract: se2_retract(p, se2_local(p, q)) == q.
    """
    return se2_relative(p, q)
