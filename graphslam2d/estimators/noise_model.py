"""
Diagonal Gaussian noise models for factor whitening.

A factor's residual r is whitened component-wise by its standard
deviations before it enters the least-squares problem:

    whitened r = r / σ
    error      = ½ ‖r / σ‖²

Zero or negative sigmas are rejected: they encode infinite certainty,
which cannot be represented by dividing through σ.
"""

import warnings
from typing import Sequence

import numpy as np

from ..errors import ConstructionError


class DiagonalNoiseModel:
    """
    Diagonal Gaussian noise model given by per-component sigmas.

    Attributes:
        sigmas: Standard deviations, shape (d,).

    Examples:
        >>> model = DiagonalNoiseModel.from_sigmas([0.1, 0.1, 0.05])
        >>> model.whiten(np.array([0.1, 0.2, 0.05]))
        array([1., 2., 1.])
    """

    def __init__(self, sigmas: Sequence[float]):
        sigmas = np.atleast_1d(np.asarray(sigmas, dtype=np.float64))
        if sigmas.ndim != 1 or sigmas.size == 0:
            raise ConstructionError(
                f"sigmas must be a non-empty 1D sequence, got shape {sigmas.shape}"
            )
        if not np.all(np.isfinite(sigmas)) or np.any(sigmas <= 0.0):
            raise ConstructionError(
                f"noise sigmas must be strictly positive and finite, got {sigmas}"
            )
        self._sigmas = sigmas
        self._sigmas.setflags(write=False)

    @classmethod
    def from_sigmas(cls, sigmas: Sequence[float]) -> "DiagonalNoiseModel":
        return cls(sigmas)

    @classmethod
    def from_variances(cls, variances: Sequence[float]) -> "DiagonalNoiseModel":
        variances = np.asarray(variances, dtype=np.float64)
        if np.any(variances <= 0.0):
            raise ConstructionError(
                f"variances must be strictly positive, got {variances}"
            )
        return cls(np.sqrt(variances))

    @classmethod
    def from_covariance(cls, covariance: np.ndarray) -> "DiagonalNoiseModel":
        """
        Build a model from a covariance matrix, keeping its diagonal.

        Off-diagonal terms are not representable by a diagonal model; they
        are dropped with a RuntimeWarning.
        """
        covariance = np.asarray(covariance, dtype=np.float64)
        _warn_if_correlated(covariance, "covariance")
        return cls.from_variances(np.diag(covariance))

    @classmethod
    def from_information(cls, information: np.ndarray) -> "DiagonalNoiseModel":
        """Build a model from an information (inverse covariance) matrix."""
        information = np.asarray(information, dtype=np.float64)
        _warn_if_correlated(information, "information")
        diag = np.diag(information)
        if np.any(diag <= 0.0):
            raise ConstructionError(
                f"information diagonal must be strictly positive, got {diag}"
            )
        return cls(1.0 / np.sqrt(diag))

    @property
    def sigmas(self) -> np.ndarray:
        return self._sigmas

    @property
    def dim(self) -> int:
        return self._sigmas.size

    def covariance(self) -> np.ndarray:
        return np.diag(self._sigmas**2)

    def information(self) -> np.ndarray:
        return np.diag(1.0 / self._sigmas**2)

    def whiten(self, residual: np.ndarray) -> np.ndarray:
        return np.asarray(residual, dtype=np.float64) / self._sigmas

    def whiten_jacobian(self, jacobian: np.ndarray) -> np.ndarray:
        """Divide row i of the Jacobian by sigma i."""
        return np.asarray(jacobian, dtype=np.float64) / self._sigmas[:, None]

    def error(self, residual: np.ndarray) -> float:
        """Return ½ ‖r / σ‖²."""
        w = self.whiten(residual)
        return 0.5 * float(w @ w)

    def __eq__(self, other) -> bool:
        if not isinstance(other, DiagonalNoiseModel):
            return NotImplemented
        return np.array_equal(self._sigmas, other._sigmas)

    def __hash__(self) -> int:
        return hash(self._sigmas.tobytes())

    def __repr__(self) -> str:
        return f"DiagonalNoiseModel(sigmas={np.array2string(self._sigmas, precision=6)})"


def _warn_if_correlated(matrix: np.ndarray, name: str) -> None:
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise ConstructionError(f"{name} must be a square matrix, got {matrix.shape}")
    off_diagonal = matrix - np.diag(np.diag(matrix))
    if np.any(off_diagonal != 0.0):
        warnings.warn(
            f"Ignoring off-diagonal terms of {name} matrix; only diagonal "
            f"noise models are supported.",
            RuntimeWarning,
        )
