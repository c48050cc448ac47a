"""Back-estimation of left-out sum-contrast levels.

When a categorical factor with L levels is encoded as sum contrasts,
only L − 1 indicator columns enter the design: the last level is
represented implicitly as minus the sum of the others, so its
coefficient is never estimated directly.  Because the level effects sum
to zero, that coefficient is recovered after the fit as a linear
contrast of the estimated ones:

    β_L = −(β_1 + … + β_{L−1})

For the matrix linear model this applies on either side of ``B``:

* **X side** — with ``C = [0, −1, …, −1]`` (zero at the intercept),
  the missing row is ``C B``;
* **Z side** — with ``D = [0, −1, …, −1]ᵗ``, the missing column is
  ``B D``;
* **both** — the corner cell is ``C B D``.

Their variances follow from the Kronecker covariance of ``vec(B)``::

    Var(C B)   = kron_diag(C V_left Cᵗ, V_right)
    Var(B D)   = kron_diag(V_left, Dᵗ V_right D)
    Var(C B D) = kron_diag(C V_left Cᵗ, Dᵗ V_right D)

The reconstructed row is appended below ``B``, the column to its
right, and the corner at their intersection; ``var_B`` is assembled
the same way.

These formulas assume ``X`` (when back-estimating the X side) and
``Z`` (Z side) consist of an intercept plus the sum contrasts of a
single categorical variable.  Without an intercept the constraint is
not defined, so the request is refused.
"""

from __future__ import annotations

import logging
from dataclasses import replace

import numpy as np

from ._results import PermutationResult
from .data import RawData
from .engine import PermFn, perm_pvals
from .exceptions import PreconditionError
from .mlm import Mlm, MlmConfig, mlm, t_stat
from .permutations import shuffle_rows
from .variance import kron_diag

logger = logging.getLogger(__name__)


def _sum_contrast(length: int) -> np.ndarray:
    """``[0, −1, …, −1]``: minus the sum of all non-intercept levels."""
    out = -np.ones(length)
    out[0] = 0.0
    return out


def backest_sum(fit: Mlm, x_sum: bool = True, z_sum: bool = True) -> Mlm:
    """Back-estimate the left-out sum-contrast level(s) of a fitted model.

    Args:
        fit: Fitted model whose ``X`` and/or ``Z`` consist of an
            intercept and the sum contrasts of one categorical variable.
        x_sum: Reconstruct the left-out ``X`` level (appended as the
            last row).
        z_sum: Reconstruct the left-out ``Z`` level (appended as the
            last column).

    Returns:
        A new :class:`Mlm` with the augmented ``B`` and ``var_B``; every
        other field is shared with *fit*.

    Raises:
        PreconditionError: If a side is requested whose model has no
            intercept, or whose level has already been back-estimated.
    """
    predictors = fit.data.predictors
    if x_sum and not predictors.x_intercept:
        raise PreconditionError("No X intercept: cannot back-estimate the left-out X level.")
    if z_sum and not predictors.z_intercept:
        raise PreconditionError("No Z intercept: cannot back-estimate the left-out Z level.")
    if x_sum and fit.x_backest:
        raise PreconditionError("The left-out X level has already been back-estimated.")
    if z_sum and fit.z_backest:
        raise PreconditionError("The left-out Z level has already been back-estimated.")
    if not (x_sum or z_sum):
        return fit

    var_left, var_right = fit.variance_factors()
    p, q = var_left.shape[0], var_right.shape[0]
    # Contrasts always act on the originally fitted block; a level
    # appended by an earlier call is rebuilt alongside the new one.
    B_fit = fit.B[:p, :q]
    x_final = fit.x_backest or x_sum
    z_final = fit.z_backest or z_sum

    C = _sum_contrast(p)[np.newaxis, :]
    D = _sum_contrast(q)[:, np.newaxis]
    C_var = C @ var_left @ C.T
    D_var = D.T @ var_right @ D

    coef_rows = [[B_fit]]
    var_rows = [[fit.var_B[:p, :q]]]
    if z_final:
        coef_rows[0].append(B_fit @ D)
        var_rows[0].append(kron_diag(var_left, D_var))
    if x_final:
        coef_rows.append([C @ B_fit])
        var_rows.append([kron_diag(C_var, var_right)])
        if z_final:
            coef_rows[1].append(C @ B_fit @ D)
            var_rows[1].append(kron_diag(C_var, D_var))

    new_B = np.block(coef_rows)
    new_var = np.block(var_rows)
    logger.debug(
        "Back-estimated sum contrasts (x_sum=%s, z_sum=%s): B %s -> %s",
        x_sum,
        z_sum,
        fit.B.shape,
        new_B.shape,
    )
    return replace(fit, B=new_B, var_B=new_var, x_backest=x_final, z_backest=z_final)


def mlm_backest_sum(
    data: RawData,
    config: MlmConfig | None = None,
    *,
    x_sum: bool = True,
    z_sum: bool = True,
) -> Mlm:
    """Fit a matrix linear model and back-estimate left-out sum contrasts.

    Args:
        data: Plate dataset whose ``X`` (when *x_sum*) and ``Z`` (when
            *z_sum*) hold the sum contrasts of one categorical variable.
        config: Fitting options (intercepts, column weights, shrinkage
            target); defaults to ``MlmConfig()``.
        x_sum: Back-estimate the left-out ``X`` level.
        z_sum: Back-estimate the left-out ``Z`` level.

    Returns:
        The augmented :class:`Mlm`.
    """
    return backest_sum(mlm(data, config), x_sum=x_sum, z_sum=z_sum)


def mlm_backest_sum_perms(
    data: RawData,
    n_permutations: int = 1000,
    *,
    perm_fn: PermFn = shuffle_rows,
    config: MlmConfig | None = None,
    x_sum: bool = True,
    z_sum: bool = True,
    main_effects: bool = False,
    random_state: int | None = None,
    n_jobs: int | None = None,
) -> PermutationResult:
    """Permutation p-values for t-statistics including back-estimated levels.

    Every trial refits the model on its own permuted copy of ``Y``,
    back-estimates the left-out level(s), and forms t-statistics.

    Args:
        data: Plate dataset with sum-contrast ``X`` and/or ``Z``.
        n_permutations: Number of permutation trials.
        perm_fn: Row (default) or column shuffle of ``Y``, or a custom
            callable ``(Y, rng) -> Y``.
        config: Fitting options shared by every fit.
        x_sum: Back-estimate the left-out ``X`` level.
        z_sum: Back-estimate the left-out ``Z`` level.
        main_effects: Also test the intercept row / column.
        random_state: Seed for the permutation plan.
        n_jobs: joblib worker count; ``None`` uses the package default.

    Returns:
        :class:`PermutationResult`; unpacks as ``(t_stats, p_values)``.
    """

    def _backest_t_stat(d: RawData) -> np.ndarray:
        return t_stat(mlm_backest_sum(d, config, x_sum=x_sum, z_sum=z_sum), main_effects)

    return perm_pvals(
        _backest_t_stat,
        data,
        n_permutations,
        perm_fn=perm_fn,
        random_state=random_state,
        n_jobs=n_jobs,
    )


__all__ = ["backest_sum", "mlm_backest_sum", "mlm_backest_sum_perms"]
