"""Exception and warning types raised by the graph-SLAM pipeline.

Parse and construction errors abort the pipeline: no partial graph is
usable after them. Linear-algebra failures subclass numpy's LinAlgError so
callers that already guard numpy solves keep working. Solver
non-convergence is soft and reported through ``NonConvergenceWarning``.
"""

import numpy as np


class GraphSlamError(ValueError):
    """Base class for invalid input to the graph-SLAM pipeline."""


class ParseError(GraphSlamError):
    """Raised when a graph file is missing, malformed, or inconsistent."""


class ConstructionError(GraphSlamError):
    """Raised when a factor graph is assembled from invalid parts.

    Covers non-positive noise sigmas, duplicate variable keys, and factors
    referencing unknown (or wrongly typed) variables.
    """


class SingularSystemError(np.linalg.LinAlgError):
    """Raised when the damped normal equations cannot be solved."""


class SingularInformationError(np.linalg.LinAlgError):
    """Raised when the information matrix is not positive definite.

    Attributes:
        keys: Variable keys belonging to the singular sub-problem.
    """

    def __init__(self, message, keys=()):
        super().__init__(message)
        self.keys = tuple(keys)


class NonConvergenceWarning(RuntimeWarning):
    """Issued when the optimizer stops before meeting its tolerances."""
