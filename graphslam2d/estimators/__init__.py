"""
Batch state estimation on factor graphs.

Available components:
    - Factor graph model and sparse linearization
    - Diagonal Gaussian noise models
    - Sparse symmetric positive-definite factorization
    - Levenberg-Marquardt optimizer
    - Marginal covariance extraction
"""

from graphslam2d.estimators.noise_model import DiagonalNoiseModel
from graphslam2d.estimators.sparse_cholesky import SparseCholesky
from graphslam2d.estimators.factor_graph import (
    Factor,
    FactorGraph,
    LinearizedGraph,
    Ordering,
    Values,
    Variable,
    VariableType,
    linearize,
    solve_damped_system,
)
from graphslam2d.estimators.levenberg_marquardt import (
    LevenbergMarquardtOptimizer,
    LevenbergMarquardtParams,
    OptimizationResult,
    OptimizerState,
)
from graphslam2d.estimators.marginals import Marginals, extract_covariances

__all__ = [
    # Noise models
    "DiagonalNoiseModel",
    # Linear algebra
    "SparseCholesky",
    # Factor graph
    "Factor",
    "FactorGraph",
    "LinearizedGraph",
    "Ordering",
    "Values",
    "Variable",
    "VariableType",
    "linearize",
    "solve_damped_system",
    # Levenberg-Marquardt
    "LevenbergMarquardtOptimizer",
    "LevenbergMarquardtParams",
    "OptimizationResult",
    "OptimizerState",
    # Covariances
    "Marginals",
    "extract_covariances",
]
