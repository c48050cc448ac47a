"""In-memory plate datasets.

A plate experiment is described by three matrices:

* ``Y`` — the response (colony sizes / opacities), ``n x m``;
* ``X`` — row covariates, one row per response row (conditions);
* ``Z`` — column covariates, one row per response column (clones).

:class:`Predictors` bundles ``X`` and ``Z`` with two flags recording
whether the leading column of each is an intercept.  :class:`RawData`
adds the response.  Both are frozen and hold read-only arrays, so a
fitted model or a permutation trial can keep a reference to them
without copying and without any risk of another trial mutating them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from scipy import stats
from typing_extensions import Self

from ._compat import MatrixLike, _ensure_matrix
from .exceptions import DegenerateDataError, PreconditionError


def _read_only(arr: np.ndarray) -> np.ndarray:
    arr = np.array(arr, dtype=float)
    arr.flags.writeable = False
    return arr


def add_intercept(A: MatrixLike) -> np.ndarray:
    """Prepend a column of ones to *A*."""
    A = _ensure_matrix(A, name="A")
    return np.hstack([np.ones((A.shape[0], 1)), A])


def remove_intercept(A: MatrixLike) -> np.ndarray:
    """Drop the leading (intercept) column of *A*."""
    A = _ensure_matrix(A, name="A")
    if A.shape[1] < 2:
        raise PreconditionError(
            "Cannot remove the intercept from a matrix with a single column."
        )
    return A[:, 1:].copy()


def standardize_rows(Y: MatrixLike) -> np.ndarray:
    """Centre each row of *Y* on its median and scale it by its IQR.

    Args:
        Y: Response matrix ``(n, m)``.

    Returns:
        New ``(n, m)`` array.

    Raises:
        DegenerateDataError: If a row has zero interquartile range.
    """
    Y = _ensure_matrix(Y, name="Y")
    medians = np.median(Y, axis=1, keepdims=True)
    iqrs = stats.iqr(Y, axis=1, keepdims=True)
    flat = np.flatnonzero(iqrs.ravel() == 0)
    if flat.size:
        raise DegenerateDataError(
            f"Cannot standardize rows with zero interquartile range "
            f"(rows {flat.tolist()})."
        )
    return (Y - medians) / iqrs


@dataclass(frozen=True, eq=False)
class Predictors:
    """Row (``X``) and column (``Z``) predictor matrices.

    Attributes:
        X: Row predictor matrix ``(n, p)``.
        Z: Column predictor matrix ``(m, q)``.
        x_intercept: Whether the first column of ``X`` is an intercept.
        z_intercept: Whether the first column of ``Z`` is an intercept.
    """

    X: np.ndarray
    Z: np.ndarray
    x_intercept: bool = False
    z_intercept: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "X", _read_only(_ensure_matrix(self.X, name="X")))
        object.__setattr__(self, "Z", _read_only(_ensure_matrix(self.Z, name="Z")))

    def with_intercepts(self, x_intercept: bool, z_intercept: bool) -> Self:
        """Return predictors whose intercept columns match the flags.

        A missing intercept is prepended; an unwanted one is dropped.
        Returns ``self`` when nothing changes.
        """
        X, Z = self.X, self.Z
        if x_intercept and not self.x_intercept:
            X = add_intercept(X)
        elif not x_intercept and self.x_intercept:
            X = remove_intercept(X)
        if z_intercept and not self.z_intercept:
            Z = add_intercept(Z)
        elif not z_intercept and self.z_intercept:
            Z = remove_intercept(Z)
        if X is self.X and Z is self.Z:
            return self
        return type(self)(X, Z, x_intercept, z_intercept)


@dataclass(frozen=True, eq=False)
class RawData:
    """Response matrix with its predictors.

    Attributes:
        Y: Response matrix ``(n, m)``.
        predictors: :class:`Predictors` aligned with ``Y``.

    Raises:
        PreconditionError: If ``X`` does not have ``n`` rows or ``Z``
            does not have ``m`` rows.
    """

    Y: np.ndarray
    predictors: Predictors = field(repr=False)

    def __post_init__(self) -> None:
        Y = _read_only(_ensure_matrix(self.Y, name="Y"))
        object.__setattr__(self, "Y", Y)
        if self.predictors.X.shape[0] != Y.shape[0]:
            raise PreconditionError(
                f"X has {self.predictors.X.shape[0]} rows but Y has "
                f"{Y.shape[0]} rows."
            )
        if self.predictors.Z.shape[0] != Y.shape[1]:
            raise PreconditionError(
                f"Z has {self.predictors.Z.shape[0]} rows but Y has "
                f"{Y.shape[1]} columns."
            )

    @classmethod
    def from_arrays(
        cls,
        Y: MatrixLike,
        X: MatrixLike,
        Z: MatrixLike,
        *,
        x_intercept: bool = False,
        z_intercept: bool = False,
    ) -> RawData:
        """Build a dataset straight from the three matrices."""
        return cls(Y, Predictors(X, Z, x_intercept, z_intercept))

    @property
    def X(self) -> np.ndarray:
        return self.predictors.X

    @property
    def Z(self) -> np.ndarray:
        return self.predictors.Z

    @property
    def n(self) -> int:
        """Number of response rows."""
        return self.Y.shape[0]

    @property
    def m(self) -> int:
        """Number of response columns."""
        return self.Y.shape[1]

    @property
    def p(self) -> int:
        """Number of row predictors (including any intercept)."""
        return self.X.shape[1]

    @property
    def q(self) -> int:
        """Number of column predictors (including any intercept)."""
        return self.Z.shape[1]

    def with_response(self, Y: MatrixLike) -> RawData:
        """Return a dataset with the same predictors and a new response."""
        return type(self)(Y, self.predictors)

    def with_intercepts(self, x_intercept: bool, z_intercept: bool) -> RawData:
        """Return a dataset whose predictors carry the requested intercepts."""
        predictors = self.predictors.with_intercepts(x_intercept, z_intercept)
        if predictors is self.predictors:
            return self
        return type(self)(self.Y, predictors)


__all__ = [
    "Predictors",
    "RawData",
    "add_intercept",
    "remove_intercept",
    "standardize_rows",
]
