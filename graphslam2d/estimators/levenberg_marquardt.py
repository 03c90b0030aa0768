"""
Sparse Levenberg-Marquardt optimizer for factor graphs.

Each outer iteration linearizes the graph once and then tries damped steps

    (JᵀJ + λD) Δ = -Jᵀr

until one reduces the total error. Accepted steps shrink λ (towards
Gauss-Newton), rejected steps grow it (towards gradient descent). The
schedule follows GTSAM's LevenbergMarquardtOptimizer:

    - accept:  λ ← max(λ / factor, lower bound)
    - reject:  λ ← λ · factor, give up above the upper bound

Convergence is declared when the accepted error is below error_tol or the
decrease is below the absolute or relative tolerance. A rejected step whose
error change is already below the tolerances also counts as convergence:
the current values cannot be meaningfully improved.
"""

import time
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np

from ..errors import ConstructionError, NonConvergenceWarning, SingularSystemError
from .factor_graph import FactorGraph, Ordering, Values, linearize, solve_damped_system


class OptimizerState(Enum):
    INIT = "init"
    ITERATING = "iterating"
    CONVERGED = "converged"
    FAILED = "failed"


@dataclass
class LevenbergMarquardtParams:
    """
    Parameters of the Levenberg-Marquardt optimizer.

    Attributes:
        absolute_error_tol: Stop when the error decreases by less than this.
        relative_error_tol: Stop when the relative decrease is below this.
        error_tol: Stop when the error itself is at most this.
        max_iterations: Maximum number of outer (linearization) iterations.
        lambda_initial: Initial damping λ.
        lambda_factor: Multiplier applied to λ on reject, divisor on accept.
        lambda_lower_bound: λ never drops below this on accepted steps.
        lambda_upper_bound: The solve fails once λ exceeds this.
        max_retries: Maximum rejected steps within one outer iteration.
        damping: "diagonal" (D = clipped diag(JᵀJ)) or "identity" (D = I).
        min_diagonal: Lower clip of diag(JᵀJ) for diagonal damping.
        max_diagonal: Upper clip of diag(JᵀJ) for diagonal damping.
        n_workers: Threads used for linearization.
        verbose: Print one line per iteration.
    """

    absolute_error_tol: float = 1e-5
    relative_error_tol: float = 1e-5
    error_tol: float = 0.0
    max_iterations: int = 100
    lambda_initial: float = 1e-5
    lambda_factor: float = 10.0
    lambda_lower_bound: float = 0.0
    lambda_upper_bound: float = 1e5
    max_retries: int = 50
    damping: str = "diagonal"
    min_diagonal: float = 1e-6
    max_diagonal: float = 1e32
    n_workers: int = 1
    verbose: bool = False

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        for name in ("absolute_error_tol", "relative_error_tol", "error_tol"):
            value = getattr(self, name)
            if not np.isfinite(value) or value < 0:
                raise ValueError(f"{name} must be finite and non-negative, got {value}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if not self.lambda_initial > 0:
            raise ValueError(f"lambda_initial must be positive, got {self.lambda_initial}")
        if not self.lambda_factor > 1:
            raise ValueError(f"lambda_factor must be > 1, got {self.lambda_factor}")
        if self.lambda_lower_bound < 0:
            raise ValueError(
                f"lambda_lower_bound must be non-negative, got {self.lambda_lower_bound}"
            )
        if not self.lambda_upper_bound > self.lambda_lower_bound:
            raise ValueError(
                "lambda_upper_bound must exceed lambda_lower_bound, got "
                f"{self.lambda_upper_bound} <= {self.lambda_lower_bound}"
            )
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.damping not in ("diagonal", "identity"):
            raise ValueError(
                f"damping must be 'diagonal' or 'identity', got {self.damping!r}"
            )
        if not 0 < self.min_diagonal <= self.max_diagonal:
            raise ValueError(
                "need 0 < min_diagonal <= max_diagonal, got "
                f"{self.min_diagonal}, {self.max_diagonal}"
            )
        if self.n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {self.n_workers}")


@dataclass
class OptimizationResult:
    """
    Outcome of a Levenberg-Marquardt solve.

    Attributes:
        values: Best assignment found (never worse than the initial one).
        state: Final optimizer state (CONVERGED or FAILED).
        success: True if the tolerances were met.
        iterations: Number of outer iterations performed.
        error_history: Initial error followed by every accepted error
            (non-increasing).
        initial_error: Error at the initial values.
        final_error: Error at ``values``.
        lambda_final: Damping λ when the solve stopped.
        duration: Wall-clock time of the solve in seconds.
        failure_reason: Why the solve failed, None on success.
    """

    values: Values
    state: OptimizerState
    success: bool
    iterations: int
    error_history: List[float] = field(default_factory=list)
    initial_error: float = 0.0
    final_error: float = 0.0
    lambda_final: float = 0.0
    duration: float = 0.0
    failure_reason: Optional[str] = None


class LevenbergMarquardtOptimizer:
    """
    Levenberg-Marquardt optimizer over a FactorGraph.

    The graph must contain at least one prior-type factor, otherwise its
    solution is only defined up to a rigid transform and the normal
    equations are singular.

    Examples:
        >>> result = LevenbergMarquardtOptimizer(graph).optimize()  # doctest: +SKIP
        >>> result.success, result.final_error  # doctest: +SKIP
        (True, 1.3e-12)
    """

    def __init__(
        self,
        graph: FactorGraph,
        initial_values: Optional[Values] = None,
        params: Optional[LevenbergMarquardtParams] = None,
    ):
        if not graph.has_prior():
            raise ConstructionError(
                "Factor graph has no prior factor; add an anchor prior before "
                "optimizing"
            )
        self.graph = graph
        self.params = params if params is not None else LevenbergMarquardtParams()
        self.values = _checked_values(graph, initial_values)
        self.state = OptimizerState.INIT
        self.lam = self.params.lambda_initial
        self.iterations = 0
        self.error = graph.compute_error(self.values)
        self.error_history = [self.error]
        self.failure_reason: Optional[str] = None

    def optimize(self) -> OptimizationResult:
        """
        Run the solver to convergence or failure.

        Returns:
            OptimizationResult with the best values found.
        """
        start = time.perf_counter()
        params = self.params
        ordering = self.graph.ordering()
        initial_error = self.error

        if not np.isfinite(self.error):
            self._fail(f"initial error is not finite ({self.error})")
        elif self.error <= params.error_tol or self.error == 0.0:
            self.state = OptimizerState.CONVERGED
        else:
            self.state = OptimizerState.ITERATING

        while self.state is OptimizerState.ITERATING:
            if self.iterations >= params.max_iterations:
                self._fail(f"reached max_iterations={params.max_iterations}")
                warnings.warn(
                    f"Levenberg-Marquardt did not converge in {params.max_iterations} "
                    f"iterations (error={self.error:.6g})",
                    NonConvergenceWarning,
                )
                break
            self._iterate(ordering)

        success = self.state is OptimizerState.CONVERGED
        if params.verbose:
            status = "converged" if success else f"failed: {self.failure_reason}"
            print(
                f"LM {status} after {self.iterations} iterations, "
                f"error {initial_error:.6g} -> {self.error:.6g}"
            )

        return OptimizationResult(
            values={k: v.copy() for k, v in self.values.items()},
            state=self.state,
            success=success,
            iterations=self.iterations,
            error_history=list(self.error_history),
            initial_error=initial_error,
            final_error=self.error,
            lambda_final=self.lam,
            duration=time.perf_counter() - start,
            failure_reason=self.failure_reason,
        )

    def _iterate(self, ordering: Ordering) -> None:
        """One outer iteration: linearize once, then try damped steps."""
        params = self.params
        self.iterations += 1

        linear = linearize(self.graph, self.values, ordering, n_workers=params.n_workers)
        H, g = linear.normal_equations()
        error = self.error

        retries = 0
        while True:
            try:
                delta = solve_damped_system(
                    H,
                    g,
                    self.lam,
                    damping=params.damping,
                    min_diagonal=params.min_diagonal,
                    max_diagonal=params.max_diagonal,
                )
            except SingularSystemError:
                candidate = None
                new_error = np.inf
            else:
                candidate = self.graph.retract(self.values, delta, ordering)
                new_error = self.graph.compute_error(candidate)

            if params.verbose:
                print(
                    f"  iter {self.iterations:3d}: error={error:.6g} "
                    f"new_error={new_error:.6g} lambda={self.lam:.3g}"
                )

            if candidate is not None and new_error < error:
                self.values = candidate
                self.error = new_error
                self.error_history.append(new_error)
                self.lam = max(self.lam / params.lambda_factor, params.lambda_lower_bound)
                if self._converged(error, new_error):
                    self.state = OptimizerState.CONVERGED
                return

            if candidate is not None and np.isfinite(new_error) and self._converged(
                error, new_error
            ):
                # Rejected, but the change is already within tolerance
                self.state = OptimizerState.CONVERGED
                return

            self.lam *= params.lambda_factor
            retries += 1
            if self.lam > params.lambda_upper_bound:
                self._fail(
                    f"lambda {self.lam:.3g} exceeded lambda_upper_bound "
                    f"{params.lambda_upper_bound:.3g}"
                )
                return
            if retries > params.max_retries:
                self._fail(f"exceeded max_retries={params.max_retries} in one iteration")
                return

    def _converged(self, error: float, new_error: float) -> bool:
        params = self.params
        if new_error <= params.error_tol:
            return True
        change = abs(error - new_error)
        if change < params.absolute_error_tol:
            return True
        return error > 0 and change / error < params.relative_error_tol

    def _fail(self, reason: str) -> None:
        self.state = OptimizerState.FAILED
        self.failure_reason = reason


def _checked_values(graph: FactorGraph, values: Optional[Values]) -> Values:
    if values is None:
        return graph.initial_values()
    missing = set(graph.keys()) - set(values)
    if missing:
        raise ConstructionError(
            f"initial values are missing {len(missing)} variable(s), e.g. key {min(missing)}"
        )
    return {
        key: np.array(values[key], dtype=np.float64) for key in graph.keys()
    }
