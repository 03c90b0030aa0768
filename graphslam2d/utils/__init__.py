"""Numerical helpers shared by the estimators and the tests."""

from graphslam2d.utils.jacobians import numerical_jacobian, numerical_jacobians

__all__ = ["numerical_jacobian", "numerical_jacobians"]
