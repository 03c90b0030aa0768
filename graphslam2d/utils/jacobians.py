"""
Numerical Jacobians by central differences on the manifold.

Used to check the factors' analytic Jacobians and as an alternative
linearization (``linearize(..., numeric=True)``).
"""

from typing import Callable, Dict, List

import numpy as np


def numerical_jacobian(
    f: Callable[[np.ndarray], np.ndarray], x: np.ndarray, epsilon: float = 1e-7
) -> np.ndarray:
    """
    Jacobian of a vector function by central differences in R^n.

    Args:
        f: Function of x returning a 1D array.
        x: Evaluation point.
        epsilon: Step size.

    Returns:
        Jacobian, shape (len(f(x)), len(x)).
    """
    x = np.asarray(x, dtype=float)
    n_out = len(f(x))
    J = np.zeros((n_out, x.size))
    for i in range(x.size):
        x_plus = x.copy()
        x_minus = x.copy()
        x_plus[i] += epsilon
        x_minus[i] -= epsilon
        J[:, i] = (f(x_plus) - f(x_minus)) / (2 * epsilon)
    return J


def _angle_safe_difference(r_plus: np.ndarray, r_minus: np.ndarray) -> np.ndarray:
    diff = r_plus - r_minus
    # a residual wrapping across ±π jumps by 2π between the two sides
    return np.where(np.abs(diff) > np.pi, diff - 2 * np.pi * np.round(diff / (2 * np.pi)), diff)


def numerical_jacobians(
    factor, values: Dict[int, np.ndarray], epsilon: float = 1e-6
) -> List[np.ndarray]:
    """
    Jacobians of a factor's residual w.r.t. each of its variables.

    Each variable is perturbed through its own retraction, so the result
    is expressed in the same tangent space as the analytic Jacobians:

        J_k[:, i] = (r(x_k ⊕ ε e_i) - r(x_k ⊕ -ε e_i)) / 2ε

    The divisor is the step actually taken, ``local(x_k, x_k ⊕ ε e_i)``,
    which absorbs the rounding of the retraction.

    Args:
        factor: Object with ``keys``, ``variable_types`` and ``residual``.
        values: Evaluation point.
        epsilon: Tangent step size.

    Returns:
        One (d, dim_k) array per key.
    """
    jacobians = []
    for key, var_type in zip(factor.keys, factor.variable_types):
        x0 = np.asarray(values[key], dtype=float)

        def residual_at(delta, key=key, var_type=var_type):
            perturbed = dict(values)
            perturbed[key] = var_type.retract(x0, delta)
            return np.asarray(factor.residual(perturbed), dtype=float)

        d = residual_at(np.zeros(var_type.dim)).size
        J = np.zeros((d, var_type.dim))
        for i in range(var_type.dim):
            step = np.zeros(var_type.dim)
            step[i] = epsilon
            taken = var_type.local(x0, var_type.retract(x0, step))[i]
            J[:, i] = _angle_safe_difference(residual_at(step), residual_at(-step)) / (2 * taken)
        jacobians.append(J)
    return jacobians
