"""
2D graph SLAM: geometry, factors, graph files and the batch pipeline.

Components:
    - SE(2) operations and key conventions
    - Pose/point variables and the SLAM factors
    - Graph-file parser and writer (GTSAM load2D grammar plus HD2 headings)
    - End-to-end pipeline and synthetic datasets
"""

from graphslam2d.slam.types import (
    Pose2,
    format_key,
    landmark_key,
    symbol,
    symbol_chr,
    symbol_index,
)
from graphslam2d.slam.se2 import (
    rotation_matrix,
    se2_apply,
    se2_compose,
    se2_inverse,
    se2_local,
    se2_relative,
    se2_retract,
    wrap_angle,
)
from graphslam2d.slam.variables import POINT2, POSE2
from graphslam2d.slam.factors import (
    LandmarkObservation,
    OdometryPose2D,
    OrientationPrior2D,
    PriorPose2D,
    add_anchor_prior,
    add_heading_priors,
    create_pose_graph,
    project_landmark,
)
from graphslam2d.slam.dataset import (
    HeadingRecords,
    format_graph_records,
    load_graph_file,
    load_heading_file,
    write_graph_file,
)
from graphslam2d.slam.pipeline import (
    GraphSlamConfig,
    GraphSlamResult,
    build_graph_from_file,
    load_config,
    run_graph_slam,
    solve_graph,
)
from graphslam2d.slam.simulation import (
    SimulatedDataset,
    simulate_dataset,
    square_trajectory,
)

__all__ = [
    # Types and keys
    "Pose2",
    "symbol",
    "symbol_chr",
    "symbol_index",
    "landmark_key",
    "format_key",
    # SE(2)
    "wrap_angle",
    "rotation_matrix",
    "se2_compose",
    "se2_inverse",
    "se2_relative",
    "se2_apply",
    "se2_retract",
    "se2_local",
    # Variables and factors
    "POSE2",
    "POINT2",
    "PriorPose2D",
    "OdometryPose2D",
    "LandmarkObservation",
    "OrientationPrior2D",
    "project_landmark",
    "add_heading_priors",
    "add_anchor_prior",
    "create_pose_graph",
    # Graph files
    "HeadingRecords",
    "load_graph_file",
    "load_heading_file",
    "format_graph_records",
    "write_graph_file",
    # Pipeline
    "GraphSlamConfig",
    "GraphSlamResult",
    "load_config",
    "build_graph_from_file",
    "solve_graph",
    "run_graph_slam",
    # Simulation
    "SimulatedDataset",
    "simulate_dataset",
    "square_trajectory",
]
