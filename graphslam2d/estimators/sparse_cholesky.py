"""
Sparse symmetric positive-definite factorization.

SciPy ships no sparse Cholesky, so this wraps SuperLU (``splu``) in
symmetric mode:

    - column ordering MMD_AT_PLUS_A (minimum degree on AᵀA + A, a
      fill-reducing ordering suited to symmetric matrices)
    - diag_pivot_thresh = 0, so the diagonal is always chosen as pivot and
      the row permutation equals the column permutation

With symmetric pivoting, P A Pᵀ = L U with unit-lower L and U = D Lᵀ, so
the diagonal of U holds the LDLᵀ pivots. The matrix is positive definite
exactly when all of them are positive. A pivot is accepted when it is
larger than ``rcond`` times the corresponding diagonal entry of A. A
rank-deficient (gauge-free) system leaves round-off-sized pivots that fail
this test.
"""

from typing import Optional

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla


class SparseCholesky:
    """
    Factorization of a sparse symmetric positive-definite matrix.

    Attributes:
        n: Matrix dimension.
        pivots: LDLᵀ pivots in the original column order, shape (n,).

    Raises:
        ValueError: If the matrix is not square.
        numpy.linalg.LinAlgError: If the matrix is not positive definite.
            The offending columns are available as ``exc.columns``.

    Examples:
        >>> H = sp.csc_matrix(np.array([[4.0, 1.0], [1.0, 3.0]]))
        >>> chol = SparseCholesky(H)
        >>> np.allclose(H @ chol.solve(np.array([1.0, 2.0])), [1.0, 2.0])
        True
    """

    def __init__(self, matrix, rcond: float = 1e-12):
        A = sp.csc_matrix(matrix, dtype=np.float64)
        if A.shape[0] != A.shape[1]:
            raise ValueError(f"matrix must be square, got shape {A.shape}")

        self.n = A.shape[0]
        self.rcond = rcond
        self._lu = None
        self.pivots = np.zeros(0)

        if self.n == 0:
            return

        if not np.all(np.isfinite(A.data)):
            raise _not_pd("matrix has non-finite entries", np.arange(self.n))

        diag = A.diagonal()
        nonpositive = np.flatnonzero(diag <= 0.0)
        if nonpositive.size:
            raise _not_pd("matrix has non-positive diagonal entries", nonpositive)

        try:
            lu = spla.splu(
                A,
                permc_spec="MMD_AT_PLUS_A",
                diag_pivot_thresh=0.0,
                options={"SymmetricMode": True},
            )
        except RuntimeError as exc:
            # SuperLU reports an exactly zero pivot this way
            raise _not_pd(f"matrix is singular ({exc})", np.arange(self.n)) from exc

        if not np.array_equal(lu.perm_r, lu.perm_c):
            raise _not_pd(
                "factorization needed off-diagonal pivoting", np.arange(self.n)
            )

        pivots = lu.U.diagonal()[lu.perm_c]
        bad = np.flatnonzero(~(pivots > rcond * diag))
        if bad.size:
            raise _not_pd(
                f"{bad.size} pivot(s) are not positive relative to the diagonal",
                bad,
            )

        self._lu = lu
        self.pivots = pivots

    def solve(self, rhs: np.ndarray) -> np.ndarray:
        """
        Solve A x = rhs.

        Args:
            rhs: Right-hand side, shape (n,) or (n, k).

        Returns:
            Solution with the same shape as rhs.
        """
        rhs = np.asarray(rhs, dtype=np.float64)
        if rhs.shape[0] != self.n:
            raise ValueError(f"rhs must have {self.n} rows, got {rhs.shape[0]}")
        if self.n == 0:
            return rhs.copy()
        return self._lu.solve(rhs)

    def inverse_columns(self, columns: np.ndarray) -> np.ndarray:
        """
        Selected columns of A⁻¹, shape (n, len(columns)).
        """
        columns = np.asarray(columns, dtype=int)
        E = np.zeros((self.n, columns.size))
        E[columns, np.arange(columns.size)] = 1.0
        return self.solve(E)


def _not_pd(message: str, columns: Optional[np.ndarray]) -> np.linalg.LinAlgError:
    exc = np.linalg.LinAlgError(f"Matrix is not positive definite: {message}")
    exc.columns = np.asarray(columns if columns is not None else [], dtype=int)
    return exc
