"""Collins et al. S scores for condition × clone interactions.

The S score compares the colony sizes of one clone under one condition
(the *experimental* group) with that clone's colony sizes over the whole
plate (the *control* group), as a two-sample t-like statistic:

    S[i, j] = (μ_exp[i, j] − μ_cont[j]) / sqrt(v_exp[i, j] / n_exp[i, j]
                                              + v_cont[j] / n_cont[j])

Inputs are over-parameterized treatment indicators: column ``i`` of
``X`` marks the response rows measured under condition ``i`` and
column ``j`` of ``Z`` the response columns holding clone ``j``.  A row
belongs to at most one condition (rows marking none, such as untreated
wells, only feed the control groups) and every column to exactly one
clone; no intercept.

Variance floor
--------------
Small groups with near-zero spread produce inflated scores.  With
``var_floor=True`` (the default):

* the control centre is the clone's median colony size;
* the control variance is the larger of the clone's median
  experimental variance and ``(μ_cont · median(√v_exp / μ_exp))²``;
* the control size is the median experimental group size;
* the experimental variance is floored by a smooth mean → standard
  deviation trend, fitted across all cells by LOWESS (statsmodels,
  local-linear, ``frac=0.75``, no robustness iterations by default)
  and squared;
* the two variances are pooled with ``n − 1`` degrees of freedom each
  and the score uses ``pooled · (1/n_exp + 1/n_cont)``.

Reference:
    Collins, S. R., Schuldiner, M., Krogan, N. J., & Weissman, J. S.
    (2006). A strategy for extracting and analyzing large-scale
    quantitative epistatic interaction data. *Genome Biology*, 7(7),
    R63.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from statsmodels.nonparametric.smoothers_lowess import lowess

from ._results import PermutationResult
from .data import RawData
from .engine import PermFn, perm_pvals
from .exceptions import DegenerateDataError, PreconditionError
from .permutations import shuffle_rows

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class SScoreComponents:
    """S scores together with the group statistics behind them.

    All ``*_exp`` arrays are ``(conditions, clones)``; all ``*_cont``
    arrays are ``(clones,)``.

    Attributes:
        S: The S scores.
        mu_exp: Experimental group means.
        raw_var_exp: Experimental sample variances before any floor.
        var_exp: Experimental variances used (floored when
            ``var_floor``).
        n_exp: Experimental group sizes.
        mu_cont: Control centres (means, or medians when ``var_floor``).
        var_cont: Control variances used.
        n_cont: Control group sizes.
        pooled_var: Pooled variances, or ``None`` without a floor.
        var_floor: Whether the floor was applied.
    """

    S: np.ndarray
    mu_exp: np.ndarray
    raw_var_exp: np.ndarray
    var_exp: np.ndarray
    n_exp: np.ndarray
    mu_cont: np.ndarray
    var_cont: np.ndarray
    n_cont: np.ndarray
    pooled_var: np.ndarray | None
    var_floor: bool


def _indicator_masks(
    A: np.ndarray, name: str, unit: str, *, allow_unassigned: bool = False
) -> np.ndarray:
    if not np.all((A == 0) | (A == 1)):
        raise PreconditionError(f"{name} must be a 0/1 {unit} indicator matrix.")
    per_row = A.sum(axis=1)
    allowed = (per_row <= 1) if allow_unassigned else (per_row == 1)
    if not np.all(allowed):
        bad = np.flatnonzero(~allowed)[:5].tolist()
        quantity = "at most one" if allow_unassigned else "exactly one"
        raise PreconditionError(
            f"Each row of {name} must mark {quantity} {unit} (rows {bad} do "
            f"not); {name} must not contain an intercept column."
        )
    return A.astype(bool)


def _group_stats(
    Y: np.ndarray,
    cond_masks: np.ndarray,
    clone_masks: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    n_conds, n_clones = cond_masks.shape[1], clone_masks.shape[1]
    mu = np.empty((n_conds, n_clones))
    var = np.empty((n_conds, n_clones))
    n = np.empty((n_conds, n_clones))
    for i in range(n_conds):
        rows = Y[cond_masks[:, i], :]
        for j in range(n_clones):
            values = rows[:, clone_masks[:, j]]
            if values.size < 2:
                raise DegenerateDataError(
                    f"Condition {i} x clone {j} has {values.size} replicate(s); "
                    f"at least two are needed for a mean and variance."
                )
            mu[i, j] = values.mean()
            var[i, j] = values.var(ddof=1)
            n[i, j] = values.size
    return mu, var, n


def s_score_components(
    data: RawData,
    var_floor: bool = True,
    *,
    frac: float = 0.75,
    it: int = 0,
) -> SScoreComponents:
    """Compute S scores and the group statistics behind them.

    Args:
        data: Dataset whose ``X`` holds condition indicators and ``Z``
            clone indicators, both without intercept.
        var_floor: Apply the variance floor and adjustments.
        frac: LOWESS span for the mean → standard deviation trend.
        it: LOWESS robustness iterations.

    Returns:
        :class:`SScoreComponents`.

    Raises:
        PreconditionError: If either side carries an intercept or is not
            a 0/1 indicator matrix with at most one condition per
            row and exactly one clone per column.
        DegenerateDataError: If a condition × clone cell has fewer than
            two replicates, an experimental mean is zero, the trend
            cannot be fitted, or a denominator vanishes.
    """
    predictors = data.predictors
    if predictors.x_intercept or predictors.z_intercept:
        raise PreconditionError("S scores require X and Z without intercept columns.")
    Y = data.Y
    cond_masks = _indicator_masks(data.X, "X", "condition", allow_unassigned=True)
    clone_masks = _indicator_masks(data.Z, "Z", "clone")
    mu_exp, raw_var_exp, n_exp = _group_stats(Y, cond_masks, clone_masks)
    clone_values = [Y[:, clone_masks[:, j]] for j in range(clone_masks.shape[1])]

    if not var_floor:
        mu_cont = np.array([v.mean() for v in clone_values])
        var_cont = np.array([v.var(ddof=1) for v in clone_values])
        n_cont = np.array([float(v.size) for v in clone_values])
        denom = np.sqrt(raw_var_exp / n_exp + var_cont / n_cont)
        var_exp = raw_var_exp
        pooled = None
    else:
        mu_cont = np.array([np.median(v) for v in clone_values])
        if np.any(mu_exp == 0):
            raise DegenerateDataError(
                "Experimental means of zero leave the control variance bound undefined."
            )
        ratio = np.median(np.sqrt(raw_var_exp) / mu_exp)
        var_cont = np.maximum(np.median(raw_var_exp, axis=0), (mu_cont * ratio) ** 2)
        n_cont = np.full(mu_cont.shape, float(np.median(n_exp)))

        sd_trend = lowess(
            np.sqrt(raw_var_exp).ravel(),
            mu_exp.ravel(),
            frac=frac,
            it=it,
            xvals=mu_exp.ravel(),
        )
        if not np.all(np.isfinite(sd_trend)):
            raise DegenerateDataError(
                "The mean-variance trend could not be fitted; too few distinct "
                "group means for the LOWESS span."
            )
        var_exp = np.maximum(raw_var_exp, sd_trend.reshape(mu_exp.shape) ** 2)
        pooled = (var_exp * (n_exp - 1) + var_cont * (n_cont - 1)) / (n_exp + n_cont - 2)
        denom = np.sqrt(pooled / n_exp + pooled / n_cont)

    if np.any(denom == 0):
        raise DegenerateDataError("Zero variance in a condition x clone comparison.")
    S = (mu_exp - mu_cont) / denom
    logger.debug(
        "S scores: %d conditions x %d clones (var_floor=%s)",
        S.shape[0],
        S.shape[1],
        var_floor,
    )
    return SScoreComponents(
        S=S,
        mu_exp=mu_exp,
        raw_var_exp=raw_var_exp,
        var_exp=var_exp,
        n_exp=n_exp,
        mu_cont=mu_cont,
        var_cont=var_cont,
        n_cont=n_cont,
        pooled_var=pooled,
        var_floor=var_floor,
    )


def s_score(data: RawData, var_floor: bool = True, **kwargs) -> np.ndarray:
    """S scores, conditions × clones.

    See :func:`s_score_components` for the arguments.
    """
    return s_score_components(data, var_floor, **kwargs).S


def s_score_perms(
    data: RawData,
    n_permutations: int = 1000,
    *,
    perm_fn: PermFn = shuffle_rows,
    var_floor: bool = True,
    random_state: int | None = None,
    n_jobs: int | None = None,
) -> PermutationResult:
    """Permutation p-values for S scores.

    Args:
        data: Dataset with condition / clone indicators (no intercept).
        n_permutations: Number of permutation trials.
        perm_fn: Row (default) or column shuffle of ``Y``, or a custom
            callable ``(Y, rng) -> Y``.
        var_floor: Apply the variance floor and adjustments.
        random_state: Seed for the permutation plan.
        n_jobs: joblib worker count; ``None`` uses the package default.

    Returns:
        :class:`PermutationResult`; unpacks as ``(S, p_values)``.
    """

    def _s_score(d: RawData) -> np.ndarray:
        return s_score(d, var_floor)

    return perm_pvals(
        _s_score,
        data,
        n_permutations,
        perm_fn=perm_fn,
        random_state=random_state,
        n_jobs=n_jobs,
    )


__all__ = ["SScoreComponents", "s_score", "s_score_components", "s_score_perms"]
