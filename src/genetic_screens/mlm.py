"""Least-squares matrix linear model (MLM) fitting.

The matrix linear model relates a response ``Y`` (n x m) to row
covariates ``X`` (n x p) and column covariates ``Z`` (m x q):

    Y = X B Zᵗ + E,    rows of E ~ iid (0, Σ)

The least-squares estimate is closed form,

    B̂ = (XᵗX)⁻¹ Xᵗ Y Z (ZᵗZ)⁻¹,

and the per-cell sampling variance of B̂ is the diagonal of the
Kronecker covariance described in :mod:`genetic_screens.variance`.

Column weights
--------------
Optional nonnegative column weights ``w`` (one per response column)
turn the fit into weighted least squares over columns.  The model is
fitted in the weighted column space ``Y diag(√w)`` and
``diag(√w) Z``; Σ, the coefficient variances, and any later
back-estimation all live in that space.

Covariance shrinkage
--------------------
With many plate columns and few replicate rows, the residual
covariance ``EᵗE / (n − p)`` is badly conditioned.  Passing a
``target_type`` shrinks the sample covariance S of the residuals
toward a structured target T,

    Σ* = λ T + (1 − λ) S,

with the analytic intensity λ of Schäfer & Strimmer (2005), clipped to
``[0, 1]``.  Four targets are supported (the legacy letters in
brackets):

* ``identity`` (``"A"``) — T = I;
* ``constant_diagonal`` (``"B"``) — T = v I, v the mean variance;
* ``common_diag_offdiag`` (``"C"``) — common variance on the
  diagonal, common covariance off the diagonal;
* ``unequal_diagonal`` (``"D"``) — T = diag(S).

Reference:
    Schäfer, J. & Strimmer, K. (2005). A shrinkage approach to
    large-scale covariance matrix estimation and implications for
    functional genomics. *Statistical Applications in Genetics and
    Molecular Biology*, 4(1), Article 32.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from ._results import PermutationResult
from ._typing import ArrayLike
from .data import RawData
from .engine import PermFn, perm_pvals
from .exceptions import DegenerateDataError, PreconditionError
from .permutations import shuffle_rows
from .variance import column_covariance, gram_inverse, kron_diag

logger = logging.getLogger(__name__)


class ShrinkageTarget(str, Enum):
    """Target toward which the error covariance is shrunk."""

    IDENTITY = "identity"
    CONSTANT_DIAGONAL = "constant_diagonal"
    COMMON_DIAG_OFFDIAG = "common_diag_offdiag"
    UNEQUAL_DIAGONAL = "unequal_diagonal"


_LEGACY_TARGETS = {
    "A": ShrinkageTarget.IDENTITY,
    "B": ShrinkageTarget.CONSTANT_DIAGONAL,
    "C": ShrinkageTarget.COMMON_DIAG_OFFDIAG,
    "D": ShrinkageTarget.UNEQUAL_DIAGONAL,
}


def resolve_target(target: str | ShrinkageTarget | None) -> ShrinkageTarget | None:
    """Map a target name, legacy letter, or member to a :class:`ShrinkageTarget`.

    Raises:
        PreconditionError: If *target* is not recognised.
    """
    if target is None or isinstance(target, ShrinkageTarget):
        return target
    if isinstance(target, str):
        key = target.strip()
        if key.upper() in _LEGACY_TARGETS:
            return _LEGACY_TARGETS[key.upper()]
        try:
            return ShrinkageTarget(key.lower())
        except ValueError:
            pass
    valid = [t.value for t in ShrinkageTarget] + sorted(_LEGACY_TARGETS)
    raise PreconditionError(f"Unknown target_type {target!r}. Choose from: {valid}")


@dataclass(frozen=True, eq=False)
class MlmConfig:
    """Options for :func:`mlm`.

    Attributes:
        x_intercept: Include an ``X`` intercept (row main effects).
        z_intercept: Include a ``Z`` intercept (column main effects).
        weights: Optional nonnegative column weights for ``Y``, one per
            response column.
        target_type: Optional shrinkage target for the error covariance;
            a :class:`ShrinkageTarget`, its value, or a letter
            ``"A"``–``"D"``.
    """

    x_intercept: bool = True
    z_intercept: bool = True
    weights: ArrayLike | None = None
    target_type: str | ShrinkageTarget | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "target_type", resolve_target(self.target_type))
        if self.weights is None:
            return
        w = np.array(self.weights, dtype=float).ravel()
        if w.size == 0 or not np.all(np.isfinite(w)):
            raise PreconditionError("weights must be a non-empty vector of finite values.")
        if np.any(w < 0):
            raise PreconditionError("weights must be nonnegative.")
        if not np.any(w > 0):
            raise PreconditionError("At least one weight must be positive.")
        w.flags.writeable = False
        object.__setattr__(self, "weights", w)


def _design(data: RawData, weights: np.ndarray | None) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return ``(X, Y, Z)`` in the (optionally) weighted column space."""
    if weights is None:
        return data.X, data.Y, data.Z
    if weights.shape[0] != data.m:
        raise PreconditionError(
            f"weights has length {weights.shape[0]} but Y has {data.m} columns."
        )
    root = np.sqrt(weights)
    return data.X, data.Y * root[np.newaxis, :], data.Z * root[:, np.newaxis]


@dataclass(frozen=True, eq=False)
class Mlm:
    """A fitted matrix linear model.

    Instances are immutable; :func:`genetic_screens.backest_sum` returns
    a new object with the back-estimated level appended.

    Attributes:
        B: Coefficient matrix ``(p, q)``, plus one trailing row / column
            per back-estimated sum-contrast level.
        var_B: Per-cell variance of ``B``, same shape.
        sigma: Error covariance estimate ``(m, m)``.
        data: Dataset the model was fitted to, with intercepts reconciled
            to ``config``.
        config: Fitting options.
        shrinkage_lambda: Shrinkage intensity, or ``None`` without a
            target.
        x_backest: Whether the omitted ``X`` sum-contrast level has been
            appended as the last row.
        z_backest: Whether the omitted ``Z`` sum-contrast level has been
            appended as the last column.
    """

    B: np.ndarray
    var_B: np.ndarray
    sigma: np.ndarray = field(repr=False)
    data: RawData = field(repr=False)
    config: MlmConfig = field(default_factory=MlmConfig)
    shrinkage_lambda: float | None = None
    x_backest: bool = False
    z_backest: bool = False

    def __post_init__(self) -> None:
        if self.B.shape != self.var_B.shape:
            raise PreconditionError(
                f"B {self.B.shape} and var_B {self.var_B.shape} must share a shape."
            )

    def variance_factors(self) -> tuple[np.ndarray, np.ndarray]:
        """Return the row and column factors of ``Cov(vec B)``.

        Returns:
            ``(var_left, var_right)`` where ``var_left = (XᵗX)⁻¹``
            (p x p) and ``var_right = (ZᵗZ)⁻¹ Zᵗ Σ Z (ZᵗZ)⁻¹`` (q x q),
            both over the fitted (weighted) design.
        """
        X, _, Z = _design(self.data, self.config.weights)
        return gram_inverse(X, "X"), column_covariance(Z, self.sigma)


def shrink_sigma(
    resid: np.ndarray,
    target_type: str | ShrinkageTarget,
) -> tuple[np.ndarray, float]:
    """Shrink the residual covariance toward a structured target.

    Args:
        resid: Residual matrix ``(n, m)``.
        target_type: Target selector (see :func:`resolve_target`).

    Returns:
        ``(sigma, lambda_)`` — the shrunk ``(m, m)`` covariance and the
        intensity used.

    Raises:
        PreconditionError: If *target_type* is ``None`` or unknown.
        DegenerateDataError: With fewer than two residual rows.
    """
    target = resolve_target(target_type)
    if target is None:
        raise PreconditionError("shrink_sigma requires a target_type.")
    resid = np.asarray(resid, dtype=float)
    n, m = resid.shape
    if n < 2:
        raise DegenerateDataError("Covariance shrinkage needs at least two residual rows.")

    centered = resid - resid.mean(axis=0)
    # w_kij = c_ki c_kj; S = n/(n-1) * mean_k w_kij and
    # Var(s_ij) = n/(n-1)^3 * sum_k (w_kij - mean_k w_kij)^2,
    # expanded so the (n, m, m) tensor is never formed.
    w_bar = centered.T @ centered / n
    sq = centered**2
    var_s = n / (n - 1) ** 3 * (sq.T @ sq - n * w_bar**2)
    S = n / (n - 1) * w_bar

    off = ~np.eye(m, dtype=bool)
    diag = np.diag(S)
    if target is ShrinkageTarget.IDENTITY:
        T = np.eye(m)
    elif target is ShrinkageTarget.CONSTANT_DIAGONAL:
        T = np.eye(m) * diag.mean()
    elif target is ShrinkageTarget.COMMON_DIAG_OFFDIAG:
        c = S[off].mean() if m > 1 else 0.0
        T = np.full((m, m), c)
        np.fill_diagonal(T, diag.mean())
    else:
        T = np.diag(diag)

    if target is ShrinkageTarget.UNEQUAL_DIAGONAL:
        numerator = var_s[off].sum()
        denominator = (S[off] ** 2).sum()
    else:
        numerator = var_s.sum()
        denominator = ((S - T) ** 2).sum()

    lambda_ = 1.0 if denominator == 0 else float(np.clip(numerator / denominator, 0.0, 1.0))
    logger.debug("Shrinking sigma toward %s with lambda=%.4f", target.value, lambda_)
    return lambda_ * T + (1.0 - lambda_) * S, lambda_


def mlm(data: RawData, config: MlmConfig | None = None) -> Mlm:
    """Fit a matrix linear model by least squares.

    Args:
        data: Plate dataset.
        config: Fitting options; defaults to ``MlmConfig()`` (both
            intercepts, no weights, no shrinkage).

    Returns:
        The fitted :class:`Mlm`.

    Raises:
        PreconditionError: If the weights do not match ``Y``.
        DegenerateDataError: If ``XᵗX`` or ``ZᵗZ`` is singular, or there
            are no residual degrees of freedom for the unshrunk
            covariance.
    """
    config = config if config is not None else MlmConfig()
    data = data.with_intercepts(config.x_intercept, config.z_intercept)
    X, Y, Z = _design(data, config.weights)
    n, p = X.shape

    XTX_inv = gram_inverse(X, "X")
    ZTZ_inv = gram_inverse(Z, "Z")
    B = np.linalg.solve(X.T @ X, X.T @ Y @ Z) @ ZTZ_inv
    resid = Y - X @ B @ Z.T

    lambda_: float | None = None
    if config.target_type is None:
        if n <= p:
            raise DegenerateDataError(
                f"No residual degrees of freedom: {n} response rows for "
                f"{p} row predictors."
            )
        sigma = resid.T @ resid / (n - p)
    else:
        sigma, lambda_ = shrink_sigma(resid, config.target_type)

    var_B = kron_diag(XTX_inv, column_covariance(Z, sigma))
    logger.debug(
        "Fitted MLM: n=%d, m=%d, p=%d, q=%d, target=%s",
        n,
        data.m,
        p,
        data.q,
        config.target_type.value if config.target_type is not None else None,
    )
    return Mlm(B, var_B, sigma, data, config, lambda_)


def t_stat(fit: Mlm, main_effects: bool = False) -> np.ndarray:
    """Cellwise t-statistics ``B / sqrt(var_B)``.

    Args:
        fit: Fitted model (back-estimated levels included as fitted).
        main_effects: Keep the intercept row / column.  By default they
            are dropped so only interactions remain.

    Returns:
        Matrix of t-statistics.

    Raises:
        DegenerateDataError: If any coefficient variance is not positive.
    """
    if np.any(fit.var_B <= 0):
        raise DegenerateDataError("Coefficient variances must be positive to form t-statistics.")
    t = fit.B / np.sqrt(fit.var_B)
    if not main_effects:
        if fit.data.predictors.x_intercept:
            t = t[1:, :]
        if fit.data.predictors.z_intercept:
            t = t[:, 1:]
    return t


def mlm_perms(
    data: RawData,
    n_permutations: int = 1000,
    *,
    perm_fn: PermFn = shuffle_rows,
    config: MlmConfig | None = None,
    main_effects: bool = False,
    random_state: int | None = None,
    n_jobs: int | None = None,
) -> PermutationResult:
    """Permutation p-values for MLM t-statistics.

    Args:
        data: Plate dataset.
        n_permutations: Number of permutation trials.
        perm_fn: Row or column shuffle of ``Y`` (see :func:`perm_pvals`).
        config: Fitting options shared by every fit.
        main_effects: Also test the intercept row / column.
        random_state: Seed for the permutation plan.
        n_jobs: joblib worker count; ``None`` uses the package default.

    Returns:
        :class:`PermutationResult` of t-statistics and p-values.
    """

    def _t_stat(d: RawData) -> np.ndarray:
        return t_stat(mlm(d, config), main_effects)

    return perm_pvals(
        _t_stat,
        data,
        n_permutations,
        perm_fn=perm_fn,
        random_state=random_state,
        n_jobs=n_jobs,
    )


__all__ = [
    "Mlm",
    "MlmConfig",
    "ShrinkageTarget",
    "mlm",
    "mlm_perms",
    "resolve_target",
    "shrink_sigma",
    "t_stat",
]
