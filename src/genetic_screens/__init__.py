"""genetic_screens — Matrix linear models and S scores for plate screens.

Fits matrix linear models ``Y = X B Zᵗ + E`` to high-throughput
genetic screens (conditions on the rows, clones on the columns),
back-estimates the sum-contrast level left out of each design,
computes Collins et al. S scores with a mean-variance floor, and
turns any of these statistics into per-interaction permutation
p-values with reproducible, parallel row or column shuffles.

Public API:
    .. autosummary::
        mlm
        mlm_perms
        t_stat
        shrink_sigma
        backest_sum
        mlm_backest_sum
        mlm_backest_sum_perms
        s_score
        s_score_components
        s_score_perms
        coef
        predict
        fitted
        resid
        kron_diag
        perm_pvals
        shuffle_rows
        shuffle_cols
        generate_unique_permutations
        add_intercept
        remove_intercept
        standardize_rows
        get_n_jobs
        set_n_jobs
        Predictors
        RawData
        Mlm
        MlmConfig
        ShrinkageTarget
        PermutationEngine
        PermutationResult
        SScoreComponents
        InterceptAdjustment
"""

from ._config import get_n_jobs, set_n_jobs
from ._results import PermutationResult
from .backest import backest_sum, mlm_backest_sum, mlm_backest_sum_perms
from .data import (
    Predictors,
    RawData,
    add_intercept,
    remove_intercept,
    standardize_rows,
)
from .engine import PermutationEngine, perm_pvals
from .exceptions import (
    DegenerateDataError,
    GeneticScreensError,
    PermutationTrialError,
    PreconditionError,
)
from .mlm import (
    Mlm,
    MlmConfig,
    ShrinkageTarget,
    mlm,
    mlm_perms,
    resolve_target,
    shrink_sigma,
    t_stat,
)
from .permutations import generate_unique_permutations, shuffle_cols, shuffle_rows
from .predict import InterceptAdjustment, coef, fitted, predict, resid
from .sscore import SScoreComponents, s_score, s_score_components, s_score_perms
from .variance import kron_diag

__all__ = [
    "Mlm",
    "MlmConfig",
    "ShrinkageTarget",
    "Predictors",
    "RawData",
    "PermutationEngine",
    "PermutationResult",
    "SScoreComponents",
    "InterceptAdjustment",
    "mlm",
    "mlm_perms",
    "t_stat",
    "shrink_sigma",
    "resolve_target",
    "backest_sum",
    "mlm_backest_sum",
    "mlm_backest_sum_perms",
    "s_score",
    "s_score_components",
    "s_score_perms",
    "coef",
    "predict",
    "fitted",
    "resid",
    "kron_diag",
    "perm_pvals",
    "shuffle_rows",
    "shuffle_cols",
    "generate_unique_permutations",
    "add_intercept",
    "remove_intercept",
    "standardize_rows",
    "get_n_jobs",
    "set_n_jobs",
    "GeneticScreensError",
    "PreconditionError",
    "DegenerateDataError",
    "PermutationTrialError",
]

__version__ = "0.1.0"
