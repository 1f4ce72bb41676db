"""
Small dense linear solvers used by trilateration.

Normal-equation least squares solved by Gaussian elimination with partial
pivoting. Singular or near-singular systems raise DegenerateGeometry so
callers can fall back to a cheaper algorithm instead of returning garbage.
"""

from typing import Optional

import numpy as np

from rtls_core.errors import DegenerateGeometry


def gaussian_elimination(A, b, pivot_tol: float = 1e-10) -> np.ndarray:
    """
    Solve the square system A x = b.

    Args:
        A: (n, n) coefficient matrix
        b: (n,) right-hand side
        pivot_tol: Pivots below pivot_tol * max|A| are treated as zero

    Returns:
        Solution vector x, shape (n,)

    Raises:
        ValueError: If shapes are inconsistent
        DegenerateGeometry: If the matrix is singular or near-singular
    """
    A = np.array(A, dtype=float)
    b = np.array(b, dtype=float).reshape(-1)

    if A.ndim != 2 or A.shape[0] != A.shape[1]:
        raise ValueError(f"Coefficient matrix must be square, got {A.shape}")
    n = A.shape[0]
    if b.shape[0] != n:
        raise ValueError(f"Right-hand side has {b.shape[0]} rows, expected {n}")

    scale = float(np.max(np.abs(A))) if A.size else 0.0
    if scale == 0.0:
        raise DegenerateGeometry("coefficient matrix is all zeros")
    threshold = pivot_tol * scale

    aug = np.hstack([A, b[:, None]])

    # Forward elimination
    for col in range(n):
        pivot_row = col + int(np.argmax(np.abs(aug[col:, col])))
        if abs(aug[pivot_row, col]) <= threshold:
            raise DegenerateGeometry(f"singular system (pivot {aug[pivot_row, col]:.3e} in column {col})")

        if pivot_row != col:
            aug[[col, pivot_row]] = aug[[pivot_row, col]]

        for row in range(col + 1, n):
            factor = aug[row, col] / aug[col, col]
            if factor != 0.0:
                aug[row, col:] -= factor * aug[col, col:]

    # Back substitution
    x = np.zeros(n)
    for row in range(n - 1, -1, -1):
        x[row] = (aug[row, n] - aug[row, row + 1:n] @ x[row + 1:]) / aug[row, row]

    return x


def solve_least_squares(A, b, weights: Optional[np.ndarray] = None, pivot_tol: float = 1e-10) -> np.ndarray:
    """
    Weighted linear least squares via the normal equations.

    Solves (A^T W A) x = A^T W b with W = diag(weights).

    Args:
        A: (m, n) design matrix, m >= n
        b: (m,) observations
        weights: (m,) non-negative row weights (uniform if None)

    Raises:
        DegenerateGeometry: If A^T W A is singular (rank-deficient geometry)
    """
    A = np.array(A, dtype=float)
    b = np.array(b, dtype=float).reshape(-1)

    if A.ndim != 2 or A.shape[0] != b.shape[0]:
        raise ValueError(f"Design matrix {A.shape} does not match observations {b.shape}")
    if A.shape[0] < A.shape[1]:
        raise DegenerateGeometry(f"underdetermined system: {A.shape[0]} equations, {A.shape[1]} unknowns")

    if weights is None:
        w = np.ones(A.shape[0])
    else:
        w = np.array(weights, dtype=float).reshape(-1)
        if w.shape[0] != A.shape[0] or np.any(w < 0):
            raise ValueError("Weights must be non-negative, one per equation")

    AtW = A.T * w
    return gaussian_elimination(AtW @ A, AtW @ b, pivot_tol=pivot_tol)
