"""Variable kinds of 2D graph SLAM: SE(2) poses and 2D points."""

import numpy as np

from ..estimators.factor_graph import VariableType
from .se2 import se2_local, se2_retract


def _vector_retract(x: np.ndarray, delta: np.ndarray) -> np.ndarray:
    return np.asarray(x, dtype=np.float64) + np.asarray(delta, dtype=np.float64)


def _vector_local(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    return np.asarray(y, dtype=np.float64) - np.asarray(x, dtype=np.float64)


# Robot pose [x, y, theta]; updated on the manifold, x ⊕ δ.
POSE2 = VariableType(name="pose2", dim=3, retract=se2_retract, local=se2_local)

# Landmark position [x, y]; updated by plain addition.
POINT2 = VariableType(name="point2", dim=2, retract=_vector_retract, local=_vector_local)
