"""
Marginal covariances of factor-graph variables.

At the optimum the Gauss-Newton information matrix H = JᵀJ approximates the
inverse posterior covariance. The marginal covariance of a variable is the
corresponding diagonal block of H⁻¹, obtained here by solving H x = e_i for
the variable's columns only. H itself is never inverted.

Variables that share no factor path are statistically independent, so H is
split into the connected components of the variable graph and each
component is factorized on its own. A singular component (an unanchored
island, or a landmark seen from a single bearing) then only affects its own
keys.

Pose covariances are expressed in the local tangent frame of the pose
(x, y along the heading, then theta), matching the manifold update used by
the optimizer. ``global_position_covariance`` rotates the x, y block into
the world frame.
"""

import warnings
from typing import Dict, List, Optional

import numpy as np
import scipy.sparse as sp
from scipy.sparse.csgraph import connected_components

from ..errors import SingularInformationError
from .factor_graph import FactorGraph, Ordering, Values, linearize
from .sparse_cholesky import SparseCholesky


class Marginals:
    """
    Marginal covariance extractor.

    Args:
        graph: Factor graph.
        values: Linearization point, usually the optimized values.
            Defaults to the graph's initial values.
        strict: Raise SingularInformationError as soon as any component of
            the information matrix is not positive definite. When False,
            the affected keys are recorded in ``failed_keys`` and a
            RuntimeWarning is issued instead.
        n_workers: Threads used for linearization.

    Examples:
        >>> marginals = Marginals(graph, result.values)  # doctest: +SKIP
        >>> marginals.marginal_covariance(1).shape  # doctest: +SKIP
        (3, 3)
    """

    def __init__(
        self,
        graph: FactorGraph,
        values: Optional[Values] = None,
        strict: bool = True,
        n_workers: int = 1,
    ):
        if values is None:
            values = graph.initial_values()
        self.graph = graph
        self.values = values
        self.strict = strict
        self.ordering: Ordering = graph.ordering()

        linear = linearize(graph, values, self.ordering, n_workers=n_workers)
        H, _ = linear.normal_equations()
        self.information_matrix = H

        self._component_of: Dict[int, int] = {}
        self._local_offset: Dict[int, int] = {}
        self._factorizations: Dict[int, SparseCholesky] = {}
        self._failed: set = set()
        self._cache: Dict[int, np.ndarray] = {}

        for component, keys in enumerate(_variable_components(graph, self.ordering)):
            offset = 0
            for key in keys:
                self._component_of[key] = component
                self._local_offset[key] = offset
                offset += self.ordering.dims[key]

            columns = self.ordering.columns(keys)
            block = H[columns][:, columns]
            try:
                self._factorizations[component] = SparseCholesky(block)
            except np.linalg.LinAlgError as exc:
                message = (
                    f"Information matrix is not positive definite for "
                    f"{len(keys)} variable(s) (keys {keys[:5]}"
                    f"{'...' if len(keys) > 5 else ''}); the sub-graph is "
                    f"unanchored or under-constrained"
                )
                if strict:
                    raise SingularInformationError(message, keys) from exc
                warnings.warn(message, RuntimeWarning)
                self._failed.update(keys)

    @property
    def failed_keys(self) -> List[int]:
        """Keys whose covariance could not be computed, ascending."""
        return sorted(self._failed)

    def marginal_covariance(self, key: int) -> np.ndarray:
        """
        Marginal covariance of one variable.

        Returns:
            (3, 3) local x, y, theta covariance for a pose, (2, 2) for a
            point. The block is symmetric.

        Raises:
            KeyError: If the key is not in the graph.
            SingularInformationError: If the key belongs to a singular
                component.
        """
        if key not in self._component_of:
            raise KeyError(f"Unknown variable key {key}")
        if key in self._failed:
            raise SingularInformationError(
                f"No covariance for key {key}: its information matrix is singular",
                [key],
            )
        if key not in self._cache:
            chol = self._factorizations[self._component_of[key]]
            start = self._local_offset[key]
            cols = np.arange(start, start + self.ordering.dims[key])
            block = chol.inverse_columns(cols)[cols]
            self._cache[key] = 0.5 * (block + block.T)
        return self._cache[key].copy()

    def marginal_information(self, key: int) -> np.ndarray:
        """Inverse of the marginal covariance."""
        return np.linalg.inv(self.marginal_covariance(key))

    def global_position_covariance(self, key: int) -> np.ndarray:
        """
        Position covariance of a pose rotated into the world frame.

        Computes R(θ) Σ_xy R(θ)ᵀ with θ the pose's heading at the
        linearization point.
        """
        if self.ordering.dims.get(key) != 3:
            raise ValueError(f"Key {key} is not a pose variable")
        cov = self.marginal_covariance(key)
        theta = float(self.values[key][2])
        c, s = np.cos(theta), np.sin(theta)
        R = np.array([[c, -s], [s, c]])
        rotated = R @ cov[:2, :2] @ R.T
        return 0.5 * (rotated + rotated.T)

    def covariances(self) -> Dict[int, np.ndarray]:
        """
        Marginal covariance of every variable.

        Keys in ``failed_keys`` map to NaN-filled blocks.
        """
        result = {}
        for key in self.ordering.keys:
            if key in self._failed:
                dim = self.ordering.dims[key]
                result[key] = np.full((dim, dim), np.nan)
            else:
                result[key] = self.marginal_covariance(key)
        return result


def _variable_components(graph: FactorGraph, ordering: Ordering) -> List[List[int]]:
    """Connected components of the variable adjacency induced by factors."""
    keys = ordering.keys
    if not keys:
        return []
    index = {key: i for i, key in enumerate(keys)}
    rows, cols = [], []
    for factor in graph.factors():
        first = index[factor.keys[0]]
        for key in factor.keys[1:]:
            rows.append(first)
            cols.append(index[key])
    adjacency = sp.coo_matrix(
        (np.ones(len(rows)), (rows, cols)), shape=(len(keys), len(keys))
    )
    n_components, labels = connected_components(adjacency, directed=False)

    components: List[List[int]] = [[] for _ in range(n_components)]
    for key, label in zip(keys, labels):
        components[label].append(key)
    return components


def extract_covariances(
    graph: FactorGraph,
    values: Optional[Values] = None,
    strict: bool = True,
    n_workers: int = 1,
) -> Dict[int, np.ndarray]:
    """
    Marginal covariance of every variable in the graph.

    Functional wrapper around Marginals. With ``strict=False`` failed keys
    map to NaN-filled blocks.
    """
    return Marginals(graph, values, strict=strict, n_workers=n_workers).covariances()
