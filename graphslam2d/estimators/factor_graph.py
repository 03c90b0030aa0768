"""
Factor graph model and linearization engine for batch state estimation.

A factor graph is a bipartite graph of variables (the unknowns) and
factors (measurement constraints). For Gaussian factors the MAP estimate
is the minimizer of

    E(X) = Σ_k ½ ‖ r_k(X) / σ_k ‖²

This module provides:
    - VariableType / Variable: typed unknowns with their own retraction
    - Factor: the capability interface every factor implements
    - FactorGraph: the mutable graph builder
    - linearize: whitened residuals and sparse Jacobian at given values
    - solve_damped_system: (JᵀJ + λD) Δ = -Jᵀr with a sparse factorization

Variables are laid out in the linear system by ascending key. Each key
maps to a column offset (the Ordering), and each factor contributes dense
Jacobian blocks at those offsets, so the system is assembled directly in
sparse form.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple

import numpy as np
import scipy.sparse as sp

from ..errors import ConstructionError, SingularSystemError
from .noise_model import DiagonalNoiseModel
from .sparse_cholesky import SparseCholesky

# Current assignment of every variable: key -> value array.
Values = Dict[int, np.ndarray]


@dataclass(frozen=True)
class VariableType:
    """
    Kind of unknown stored in the graph.

    Attributes:
        name: Short identifier, e.g. "pose2".
        dim: Dimension of the tangent space (size of Δ for this variable).
        retract: Manifold update x ⊕ δ.
        local: Inverse of retract, local(x, retract(x, δ)) == δ.
    """

    name: str
    dim: int
    retract: Callable[[np.ndarray, np.ndarray], np.ndarray]
    local: Callable[[np.ndarray, np.ndarray], np.ndarray]

    def __repr__(self) -> str:
        return f"VariableType({self.name}, dim={self.dim})"


@dataclass
class Variable:
    """A keyed unknown together with its initial value."""

    key: int
    type: VariableType
    value: np.ndarray


class Factor(Protocol):
    """
    Capability interface of a factor.

    Factors are plain value objects; the graph only relies on these
    members:

    Attributes:
        keys: Keys of the variables the factor connects.
        variable_types: Expected VariableType of each key.
        noise_model: Diagonal noise model whitening the residual.
        is_prior: True for factors that anchor the gauge freedom of the
            graph (absolute pose or heading priors).
    """

    keys: Tuple[int, ...]
    variable_types: Tuple[VariableType, ...]
    noise_model: DiagonalNoiseModel
    is_prior: bool

    def residual(self, values: Values) -> np.ndarray:
        """Unwhitened residual r(values), shape (d,)."""
        ...

    def jacobians(self, values: Values) -> List[np.ndarray]:
        """∂r/∂δ_k for each key, shapes (d, dim_k), w.r.t. the retraction."""
        ...


@dataclass
class Ordering:
    """
    Column layout of the linear system.

    Attributes:
        keys: Variable keys in ascending order.
        offsets: Key -> first column of the variable.
        dims: Key -> tangent dimension.
        total_dim: Number of columns.
    """

    keys: Tuple[int, ...]
    offsets: Dict[int, int]
    dims: Dict[int, int]
    total_dim: int

    def slice(self, key: int) -> slice:
        start = self.offsets[key]
        return slice(start, start + self.dims[key])

    def columns(self, keys: Iterable[int]) -> np.ndarray:
        """Concatenated column indices of the given keys."""
        cols = [np.arange(self.offsets[k], self.offsets[k] + self.dims[k]) for k in keys]
        return np.concatenate(cols) if cols else np.zeros(0, dtype=int)


class FactorGraph:
    """
    Factor graph for batch state estimation.

    Iteration order is deterministic: variables by ascending key, factors
    in insertion order. This makes linear-system assembly reproducible.

    Examples:
        >>> from graphslam2d.slam import POSE2, PriorPose2D
        >>> graph = FactorGraph()
        >>> _ = graph.add_variable(1, POSE2, np.zeros(3))
        >>> graph.add_factor(PriorPose2D(1, np.zeros(3), [0.1, 0.1, 0.05]))
        >>> graph.variable_count, graph.factor_count
        (1, 1)
    """

    def __init__(self):
        self._variables: Dict[int, Variable] = {}
        self._factors: List[Factor] = []

    def add_variable(
        self, key: int, var_type: VariableType, initial_value: np.ndarray
    ) -> Variable:
        """
        Add a variable to the graph.

        Args:
            key: Unique integer key.
            var_type: Kind of variable (pose or point).
            initial_value: Initial estimate, shape (var_type.dim,).

        Returns:
            The stored Variable.

        Raises:
            ConstructionError: On a duplicate key or a malformed value.
        """
        key = int(key)
        if key in self._variables:
            raise ConstructionError(f"Duplicate variable key {key}")

        value = np.array(initial_value, dtype=np.float64)
        if value.shape != (var_type.dim,):
            raise ConstructionError(
                f"Variable {key} ({var_type.name}) must have shape "
                f"({var_type.dim},), got {value.shape}"
            )
        if not np.all(np.isfinite(value)):
            raise ConstructionError(f"Variable {key} has non-finite value {value}")

        variable = Variable(key=key, type=var_type, value=value)
        self._variables[key] = variable
        return variable

    def add_pose(self, key: int, value: np.ndarray) -> Variable:
        """Add an SE(2) pose variable [x, y, theta]."""
        from ..slam.variables import POSE2

        return self.add_variable(key, POSE2, value)

    def add_point(self, key: int, value: np.ndarray) -> Variable:
        """Add a 2D point (landmark) variable [x, y]."""
        from ..slam.variables import POINT2

        return self.add_variable(key, POINT2, value)

    def add_factor(self, factor: Factor) -> None:
        """
        Add a factor to the graph.

        Raises:
            ConstructionError: If the factor references a key that is not
                in the graph, or a variable of the wrong type.
        """
        keys = tuple(factor.keys)
        types = tuple(factor.variable_types)
        if len(keys) != len(types):
            raise ConstructionError(
                f"{type(factor).__name__} declares {len(keys)} keys but "
                f"{len(types)} variable types"
            )
        for key, expected in zip(keys, types):
            variable = self._variables.get(key)
            if variable is None:
                raise ConstructionError(
                    f"{type(factor).__name__} references unknown variable {key}"
                )
            if variable.type.name != expected.name:
                raise ConstructionError(
                    f"{type(factor).__name__} expects variable {key} to be "
                    f"{expected.name}, got {variable.type.name}"
                )
        self._factors.append(factor)

    @property
    def variable_count(self) -> int:
        return len(self._variables)

    @property
    def factor_count(self) -> int:
        return len(self._factors)

    def variables(self) -> List[Variable]:
        """Variables sorted by key."""
        return [self._variables[k] for k in sorted(self._variables)]

    def factors(self) -> List[Factor]:
        """Factors in insertion order."""
        return list(self._factors)

    def keys(self) -> List[int]:
        return sorted(self._variables)

    def has_variable(self, key: int) -> bool:
        return key in self._variables

    def variable(self, key: int) -> Variable:
        return self._variables[key]

    def variable_type(self, key: int) -> VariableType:
        return self._variables[key].type

    def keys_of_type(self, var_type: VariableType) -> List[int]:
        return [k for k in self.keys() if self._variables[k].type.name == var_type.name]

    def has_prior(self) -> bool:
        """True if at least one factor anchors the graph."""
        return any(getattr(f, "is_prior", False) for f in self._factors)

    def initial_values(self) -> Values:
        """Copy of the initial value of every variable."""
        return {k: v.value.copy() for k, v in self._variables.items()}

    def ordering(self) -> Ordering:
        """Column layout: variables by ascending key."""
        keys = tuple(sorted(self._variables))
        offsets: Dict[int, int] = {}
        dims: Dict[int, int] = {}
        offset = 0
        for key in keys:
            dim = self._variables[key].type.dim
            offsets[key] = offset
            dims[key] = dim
            offset += dim
        return Ordering(keys=keys, offsets=offsets, dims=dims, total_dim=offset)

    def compute_error(self, values: Optional[Values] = None) -> float:
        """
        Total error E = Σ ½ ‖r_k / σ_k‖² over all factors.

        Args:
            values: Assignment to evaluate. Defaults to the initial values.
        """
        if values is None:
            values = self.initial_values()
        total = 0.0
        for factor in self._factors:
            total += factor.noise_model.error(factor.residual(values))
        return total

    def retract(
        self, values: Values, delta: np.ndarray, ordering: Optional[Ordering] = None
    ) -> Values:
        """
        Apply a stacked tangent update to every variable.

        Poses are updated on the manifold (angle re-normalized), points by
        plain addition; each VariableType supplies its own retraction.
        """
        if ordering is None:
            ordering = self.ordering()
        delta = np.asarray(delta, dtype=np.float64)
        if delta.shape != (ordering.total_dim,):
            raise ValueError(
                f"delta must have shape ({ordering.total_dim},), got {delta.shape}"
            )
        updated = {}
        for key in ordering.keys:
            var_type = self._variables[key].type
            updated[key] = var_type.retract(values[key], delta[ordering.slice(key)])
        return updated

    def local(
        self, values: Values, other: Values, ordering: Optional[Ordering] = None
    ) -> np.ndarray:
        """
        Stacked tangent vector taking ``values`` to ``other``.

        Inverse of retract: ``retract(values, local(values, other))``
        reproduces ``other``.
        """
        if ordering is None:
            ordering = self.ordering()
        delta = np.zeros(ordering.total_dim)
        for key in ordering.keys:
            var_type = self._variables[key].type
            delta[ordering.slice(key)] = var_type.local(values[key], other[key])
        return delta

    def optimize(self, initial_values: Optional[Values] = None, params=None):
        """
        Optimize the graph with Levenberg-Marquardt.

        Convenience wrapper around LevenbergMarquardtOptimizer.

        Returns:
            OptimizationResult.
        """
        from .levenberg_marquardt import LevenbergMarquardtOptimizer

        optimizer = LevenbergMarquardtOptimizer(self, initial_values, params)
        return optimizer.optimize()


@dataclass
class LinearizedGraph:
    """
    Whitened linearization of a factor graph at a given assignment.

    Attributes:
        ordering: Column layout of the system.
        residual: Stacked whitened residual b, shape (m,).
        rows, cols, data: COO triplets of the whitened Jacobian A.
    """

    ordering: Ordering
    residual: np.ndarray
    rows: np.ndarray
    cols: np.ndarray
    data: np.ndarray

    @property
    def n_rows(self) -> int:
        return self.residual.size

    @property
    def error(self) -> float:
        """½ ‖b‖², equal to the graph error at the linearization point."""
        return 0.5 * float(self.residual @ self.residual)

    def jacobian_matrix(self) -> sp.csr_matrix:
        """Sparse whitened Jacobian A, shape (m, n)."""
        return sp.csr_matrix(
            (self.data, (self.rows, self.cols)),
            shape=(self.n_rows, self.ordering.total_dim),
        )

    def normal_equations(self) -> Tuple[sp.csc_matrix, np.ndarray]:
        """
        Gauss-Newton normal equations.

        Returns:
            Tuple (H, g) with H = AᵀA (information matrix approximation)
            and g = Aᵀb (gradient of E).
        """
        A = self.jacobian_matrix()
        H = (A.T @ A).tocsc()
        g = A.T @ self.residual
        return H, np.asarray(g, dtype=np.float64)


def _linearize_factor(
    factor: Factor, values: Values, numeric: bool
) -> Tuple[np.ndarray, List[np.ndarray]]:
    residual = np.asarray(factor.residual(values), dtype=np.float64)
    if numeric:
        from ..utils.jacobians import numerical_jacobians

        jacobians = numerical_jacobians(factor, values)
    else:
        jacobians = factor.jacobians(values)
    noise = factor.noise_model
    return noise.whiten(residual), [noise.whiten_jacobian(J) for J in jacobians]


def linearize(
    graph: FactorGraph,
    values: Values,
    ordering: Optional[Ordering] = None,
    n_workers: int = 1,
    numeric: bool = False,
) -> LinearizedGraph:
    """
    Linearize every factor and stack the whitened system.

    Factors are independent, so with ``n_workers > 1`` they are evaluated
    on a thread pool. Blocks are always stacked in factor insertion order,
    which keeps the result identical to the serial evaluation.

    Args:
        graph: Factor graph.
        values: Linearization point.
        ordering: Column layout (defaults to graph.ordering()).
        n_workers: Number of worker threads.
        numeric: Use central-difference Jacobians instead of the
            factors' analytic ones.

    Returns:
        LinearizedGraph.
    """
    if ordering is None:
        ordering = graph.ordering()
    factors = graph.factors()
    work = partial(_linearize_factor, values=values, numeric=numeric)

    if n_workers > 1 and len(factors) > 1:
        with ThreadPoolExecutor(max_workers=n_workers) as pool:
            blocks = list(pool.map(work, factors))
    else:
        blocks = [work(f) for f in factors]

    residuals, rows, cols, data = [], [], [], []
    row = 0
    for factor, (residual, jacobians) in zip(factors, blocks):
        d = residual.size
        for key, J in zip(factor.keys, jacobians):
            start = ordering.offsets[key]
            dim = ordering.dims[key]
            if J.shape != (d, dim):
                raise ValueError(
                    f"{type(factor).__name__} Jacobian for key {key} has shape "
                    f"{J.shape}, expected {(d, dim)}"
                )
            rr, cc = np.meshgrid(
                np.arange(row, row + d), np.arange(start, start + dim), indexing="ij"
            )
            rows.append(rr.ravel())
            cols.append(cc.ravel())
            data.append(J.ravel())
        residuals.append(residual)
        row += d

    return LinearizedGraph(
        ordering=ordering,
        residual=np.concatenate(residuals) if residuals else np.zeros(0),
        rows=np.concatenate(rows) if rows else np.zeros(0, dtype=int),
        cols=np.concatenate(cols) if cols else np.zeros(0, dtype=int),
        data=np.concatenate(data) if data else np.zeros(0),
    )


def solve_damped_system(
    H: sp.spmatrix,
    g: np.ndarray,
    lam: float,
    damping: str = "diagonal",
    min_diagonal: float = 1e-6,
    max_diagonal: float = 1e32,
) -> np.ndarray:
    """
    Solve the damped normal equations (H + λD) Δ = -g.

    Args:
        H: Information matrix JᵀJ (n × n, sparse).
        g: Gradient Jᵀr (n,).
        lam: Damping factor λ ≥ 0.
        damping: "diagonal" for D = diag(H) clipped to
            [min_diagonal, max_diagonal], or "identity" for D = I.
        min_diagonal: Lower clip of diag(H); keeps D positive for
            variables the factors do not constrain.
        max_diagonal: Upper clip of diag(H).

    Returns:
        Update Δ, shape (n,).

    Raises:
        SingularSystemError: If the damped matrix is not positive definite.
        ValueError: For an unknown damping mode.
    """
    n = H.shape[0]
    if damping == "diagonal":
        d = np.clip(H.diagonal(), min_diagonal, max_diagonal)
    elif damping == "identity":
        d = np.ones(n)
    else:
        raise ValueError(f"Unknown damping mode: {damping}")

    H_damped = (H + sp.diags(lam * d, format="csc")).tocsc()
    try:
        chol = SparseCholesky(H_damped)
    except np.linalg.LinAlgError as exc:
        raise SingularSystemError(
            f"Damped system is not solvable at lambda={lam:g}: {exc}"
        ) from exc
    return chol.solve(-np.asarray(g, dtype=np.float64))
