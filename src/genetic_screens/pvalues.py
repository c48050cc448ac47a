"""Empirical p-values for matrix-valued permutation statistics.

Every cell of a statistic matrix (a t-statistic per condition × clone
interaction, an S score per condition × clone) gets its own two-sided
empirical p-value.

Phipson & Smyth (2010) correction
---------------------------------
Counting only the permuted statistics at least as extreme as the
observed one,

    p_naïve = #{|T*| >= |T|} / B,

returns exactly zero whenever the observed statistic is the most
extreme, which is impossible: the observed arrangement is itself one of
the B + 1 equally likely outcomes.  The corrected estimator

    p = (b + 1) / (B + 1),    b = #{|T*| >= |T|}

is never zero (its minimum is 1 / (B + 1)) and has correct size under
H₀.  Ties count as exceedances.  With ``B = 0`` permutations the
p-value is exactly 1 in every cell: no permutations, no evidence
against the null.

Counts are plain integers, so partial counts from independent batches
of trials can be summed in any order and give identical p-values.

Reference:
    Phipson, B. & Smyth, G. K. (2010). Permutation p-values should
    never be zero: calculating exact p-values when permutations are
    randomly drawn. *Statistical Applications in Genetics and Molecular
    Biology*, 9(1), Article 39.
"""

from __future__ import annotations

import numpy as np


def count_exceedances(permuted: np.ndarray, observed: np.ndarray) -> np.ndarray:
    """Cellwise indicator ``|permuted| >= |observed|`` as integers.

    Args:
        permuted: Statistic from one permuted dataset.
        observed: Statistic from the real data, same shape.

    Returns:
        ``int64`` array of zeros and ones, same shape as *observed*.
    """
    return (np.abs(permuted) >= np.abs(observed)).astype(np.int64)


def empirical_p_values(counts: np.ndarray, n_permutations: int) -> np.ndarray:
    """Phipson–Smyth p-values ``(counts + 1) / (n_permutations + 1)``.

    Args:
        counts: Per-cell number of permuted statistics at least as
            extreme as the observed one.
        n_permutations: Number of permutations B.

    Returns:
        Float array in ``(0, 1]``, same shape as *counts*.

    Raises:
        ValueError: If *n_permutations* is negative or a count lies
            outside ``[0, n_permutations]``.
    """
    if n_permutations < 0:
        raise ValueError(f"n_permutations must be >= 0, got {n_permutations}.")
    counts = np.asarray(counts)
    if counts.size and (counts.min() < 0 or counts.max() > n_permutations):
        raise ValueError(
            f"Exceedance counts must lie in [0, {n_permutations}], got "
            f"[{counts.min()}, {counts.max()}]."
        )
    return (counts + 1) / (n_permutations + 1)


__all__ = ["count_exceedances", "empirical_p_values"]
