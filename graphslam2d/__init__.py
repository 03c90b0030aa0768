"""Offline 2D pose-graph SLAM.

This package contains the building blocks of a batch graph-SLAM pipeline:
- estimators: Factor graph, sparse Levenberg-Marquardt, marginal covariances
- slam: SE(2) geometry, factors, dataset parsing, end-to-end pipeline
- utils: Numerical helpers (finite-difference Jacobians)
"""

__version__ = "0.1.0"
