"""Kronecker-structured variance algebra.

Under the matrix linear model ``Y = X B Zᵗ + E`` with row-independent
errors of column covariance Σ, the sampling covariance of ``vec(B)`` is
the Kronecker product

    Cov(vec B) = [(ZᵗZ)⁻¹ Zᵗ Σ Z (ZᵗZ)⁻¹] ⊗ (XᵗX)⁻¹

and, more generally, a bilinear contrast ``C B D`` has covariance
``(Dᵗ V_right D) ⊗ (C V_left Cᵗ)``.  Only the per-cell variances —
the diagonal — are ever needed.  For square ``A`` (a x a) and ``B``
(b x b) the diagonal of ``A ⊗ B`` is

    diag(A ⊗ B)[i·b + j] = A[i, i] · B[j, j]

so it is the outer product of the two diagonals.  Forming it that way
costs O(a·b) instead of the O(a²·b²) needed to materialise the full
Kronecker product, and it performs exactly the same single
floating-point multiplication per entry, so the two routes agree bit
for bit.
"""

from __future__ import annotations

import numpy as np

from .exceptions import DegenerateDataError, PreconditionError


def _square(M: np.ndarray | float, name: str) -> np.ndarray:
    M = np.atleast_2d(np.asarray(M, dtype=float))
    if M.ndim != 2 or M.shape[0] != M.shape[1]:
        raise PreconditionError(f"'{name}' must be a square matrix, got shape {M.shape}.")
    return M


def kron_diag(A: np.ndarray | float, B: np.ndarray | float) -> np.ndarray:
    """Diagonal of ``A ⊗ B`` reshaped to ``(a, b)``.

    Args:
        A: Square matrix ``(a, a)`` (scalars and 1x1 arrays accepted).
        B: Square matrix ``(b, b)`` (scalars and 1x1 arrays accepted).

    Returns:
        Array ``out`` of shape ``(a, b)`` with
        ``out[i, j] == A[i, i] * B[j, j]``, identical to
        ``np.diag(np.kron(A, B)).reshape(a, b)``.

    Raises:
        PreconditionError: If either argument is not square.
    """
    A = _square(A, "A")
    B = _square(B, "B")
    return np.outer(np.diag(A), np.diag(B))


def gram_inverse(A: np.ndarray, name: str = "X") -> np.ndarray:
    """Return ``(AᵗA)⁻¹``, refusing rank-deficient designs.

    Raises:
        DegenerateDataError: If ``AᵗA`` is singular.
    """
    gram = A.T @ A
    if np.linalg.matrix_rank(gram) < gram.shape[0]:
        raise DegenerateDataError(
            f"{name}ᵗ{name} is singular; the {name} design is rank deficient "
            f"({A.shape[1]} columns, rank {np.linalg.matrix_rank(A)})."
        )
    return np.linalg.inv(gram)


def column_covariance(Z: np.ndarray, sigma: np.ndarray) -> np.ndarray:
    """Column-side sampling covariance ``(ZᵗZ)⁻¹ Zᵗ Σ Z (ZᵗZ)⁻¹``.

    Args:
        Z: Column design ``(m, q)``.
        sigma: Error covariance ``(m, m)``.

    Returns:
        Symmetric ``(q, q)`` matrix.
    """
    ZTZ_inv = gram_inverse(Z, "Z")
    out = ZTZ_inv @ (Z.T @ sigma @ Z) @ ZTZ_inv
    return (out + out.T) / 2.0


__all__ = ["column_covariance", "gram_inverse", "kron_diag"]
