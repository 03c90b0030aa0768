"""End-to-end batch graph SLAM: graph file in, estimates and covariances out.

Pipeline:
    1. Parse the graph file (vertices, edges, landmark observations)
    2. Add orientation priors from HD2 heading records, if any
    3. Anchor the first pose with a PriorPose2D
    4. Optimize with sparse Levenberg-Marquardt
    5. Extract marginal covariances at the optimum
    6. Return a GraphSlamResult

Parse and construction errors propagate. Non-convergence is reported through
``GraphSlamResult.converged``; a covariance failure never discards the point
estimates.
"""

import json
import time
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..estimators.factor_graph import FactorGraph
from ..estimators.levenberg_marquardt import (
    LevenbergMarquardtOptimizer,
    LevenbergMarquardtParams,
)
from ..estimators.marginals import Marginals
from .dataset import NOISE_FORMATS, HeadingRecords, load_graph_file, load_heading_file
from .factors import add_anchor_prior, add_heading_priors
from .variables import POINT2, POSE2


@dataclass
class GraphSlamConfig:
    """
    Configuration of a graph-SLAM run.

    Attributes:
        initial_sigmas: Anchor prior sigmas [σx, σy, σθ] on the first pose.
        absolute_error_tol: LM absolute error decrease tolerance.
        relative_error_tol: LM relative error decrease tolerance.
        max_iterations: LM iteration limit.
        lambda_initial: Initial LM damping.
        lambda_factor: LM damping multiplier.
        lambda_upper_bound: LM gives up once λ exceeds this.
        noise_format: How edge noise values are read ("auto", "graph",
            "cov", "toro", "g2o").
        compute_covariances: Extract marginal covariances after solving.
        strict_covariances: Raise on a singular information matrix instead
            of NaN-filling the affected blocks.
        n_workers: Threads used for linearization.
        verbose: Print solver progress.
    """

    initial_sigmas: Tuple[float, float, float] = (0.3, 0.3, 0.1)
    absolute_error_tol: float = 1e-5
    relative_error_tol: float = 1e-5
    max_iterations: int = 100
    lambda_initial: float = 1e-5
    lambda_factor: float = 10.0
    lambda_upper_bound: float = 1e5
    noise_format: str = "auto"
    compute_covariances: bool = True
    strict_covariances: bool = False
    n_workers: int = 1
    verbose: bool = False

    def __post_init__(self) -> None:
        sigmas = tuple(float(s) for s in self.initial_sigmas)
        if len(sigmas) != 3:
            raise ValueError(f"initial_sigmas needs 3 values, got {len(sigmas)}")
        if not all(np.isfinite(s) and s > 0 for s in sigmas):
            raise ValueError(f"initial_sigmas must be positive and finite, got {sigmas}")
        self.initial_sigmas = sigmas
        if self.noise_format not in NOISE_FORMATS:
            raise ValueError(
                f"noise_format must be one of {NOISE_FORMATS}, got {self.noise_format!r}"
            )
        # Remaining fields are validated by LevenbergMarquardtParams
        self.to_lm_params()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphSlamConfig":
        """Build a config from a dict, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {unknown}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["initial_sigmas"] = list(self.initial_sigmas)
        return data

    def to_lm_params(self) -> LevenbergMarquardtParams:
        return LevenbergMarquardtParams(
            absolute_error_tol=self.absolute_error_tol,
            relative_error_tol=self.relative_error_tol,
            max_iterations=self.max_iterations,
            lambda_initial=self.lambda_initial,
            lambda_factor=self.lambda_factor,
            lambda_upper_bound=self.lambda_upper_bound,
            n_workers=self.n_workers,
            verbose=self.verbose,
        )


def load_config(path: str) -> GraphSlamConfig:
    """Load a GraphSlamConfig from a JSON file."""
    with open(path, "r") as f:
        return GraphSlamConfig.from_dict(json.load(f))


@dataclass
class GraphSlamResult:
    """
    Result of a graph-SLAM run.

    Poses and landmarks are ordered by key. Pose covariances are in the
    local frame of each pose (x, y, theta); the global position
    covariances are their x, y blocks rotated into the world frame.
    Blocks that could not be computed are NaN and their keys are listed in
    ``covariance_failed_keys``.

    Attributes:
        pose_keys: Pose keys, shape (N,).
        landmark_keys: Landmark keys, shape (M,).
        estimated_poses: Optimized poses [x, y, theta], shape (N, 3).
        estimated_landmarks: Optimized landmarks [x, y], shape (M, 2).
        pose_covariances: Local pose covariances, shape (N, 3, 3).
        global_position_covariances: World-frame x, y covariances, (N, 2, 2).
        landmark_covariances: Landmark covariances, shape (M, 2, 2).
        optimization_time: Wall-clock solve time in seconds.
        converged: Whether the optimizer met its tolerances.
        iterations: Number of LM iterations.
        initial_error: Graph error before optimization.
        final_error: Graph error after optimization.
        covariance_failed_keys: Keys whose covariance is NaN.
    """

    pose_keys: np.ndarray
    landmark_keys: np.ndarray
    estimated_poses: np.ndarray
    estimated_landmarks: np.ndarray
    pose_covariances: np.ndarray
    global_position_covariances: np.ndarray
    landmark_covariances: np.ndarray
    optimization_time: float
    converged: bool
    iterations: int
    initial_error: float
    final_error: float
    covariance_failed_keys: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Plain numpy arrays and scalars, for an external serializer."""
        return {
            "pose_keys": np.asarray(self.pose_keys),
            "landmark_keys": np.asarray(self.landmark_keys),
            "estimated_poses": np.asarray(self.estimated_poses),
            "estimated_landmarks": np.asarray(self.estimated_landmarks),
            "pose_covariances": np.asarray(self.pose_covariances),
            "global_position_covariances": np.asarray(self.global_position_covariances),
            "landmark_covariances": np.asarray(self.landmark_covariances),
            "optimization_time": float(self.optimization_time),
            "converged": bool(self.converged),
            "iterations": int(self.iterations),
            "initial_error": float(self.initial_error),
            "final_error": float(self.final_error),
            "covariance_failed_keys": np.asarray(self.covariance_failed_keys, dtype=np.int64),
        }


def build_graph_from_file(
    path: str, config: Optional[GraphSlamConfig] = None
) -> Tuple[FactorGraph, HeadingRecords]:
    """
    Parse a graph file and add the heading and anchor priors.

    Returns:
        Tuple (graph, headings).
    """
    if config is None:
        config = GraphSlamConfig()
    graph = load_graph_file(path, noise_format=config.noise_format)
    headings = load_heading_file(path)
    if headings:
        add_heading_priors(graph, headings)
    add_anchor_prior(graph, config.initial_sigmas)
    return graph, headings


def solve_graph(
    graph: FactorGraph, config: Optional[GraphSlamConfig] = None
) -> GraphSlamResult:
    """
    Optimize an anchored graph and extract covariances.

    Args:
        graph: Factor graph with at least one prior factor.
        config: Run configuration (defaults to GraphSlamConfig()).

    Returns:
        GraphSlamResult.
    """
    if config is None:
        config = GraphSlamConfig()

    optimizer = LevenbergMarquardtOptimizer(graph, params=config.to_lm_params())
    start = time.perf_counter()
    opt = optimizer.optimize()
    optimization_time = time.perf_counter() - start
    if config.verbose:
        print(f"Optimization time = {optimization_time:.6f} seconds")

    values = opt.values
    pose_keys = graph.keys_of_type(POSE2)
    landmark_keys = graph.keys_of_type(POINT2)
    n, m = len(pose_keys), len(landmark_keys)

    poses = np.array([values[k] for k in pose_keys]).reshape(n, 3)
    landmarks = np.array([values[k] for k in landmark_keys]).reshape(m, 2)
    pose_cov = np.full((n, 3, 3), np.nan)
    global_cov = np.full((n, 2, 2), np.nan)
    landmark_cov = np.full((m, 2, 2), np.nan)
    failed: List[int] = []

    if config.compute_covariances:
        marginals = Marginals(
            graph, values, strict=config.strict_covariances, n_workers=config.n_workers
        )
        failed = marginals.failed_keys
        failed_set = set(failed)
        for i, key in enumerate(pose_keys):
            if key not in failed_set:
                pose_cov[i] = marginals.marginal_covariance(key)
                global_cov[i] = marginals.global_position_covariance(key)
        for i, key in enumerate(landmark_keys):
            if key not in failed_set:
                landmark_cov[i] = marginals.marginal_covariance(key)

    return GraphSlamResult(
        pose_keys=np.array(pose_keys, dtype=np.int64),
        landmark_keys=np.array(landmark_keys, dtype=np.int64),
        estimated_poses=poses,
        estimated_landmarks=landmarks,
        pose_covariances=pose_cov,
        global_position_covariances=global_cov,
        landmark_covariances=landmark_cov,
        optimization_time=optimization_time,
        converged=opt.success,
        iterations=opt.iterations,
        initial_error=opt.initial_error,
        final_error=opt.final_error,
        covariance_failed_keys=failed,
    )


def run_graph_slam(path: str, config: Optional[GraphSlamConfig] = None) -> GraphSlamResult:
    """
    Run the full pipeline on a graph file.

    Examples:
        >>> result = run_graph_slam("simData.graph")  # doctest: +SKIP
        >>> result.estimated_poses.shape  # doctest: +SKIP
        (100, 3)
    """
    if config is None:
        config = GraphSlamConfig()
    graph, _ = build_graph_from_file(path, config)
    return solve_graph(graph, config)
