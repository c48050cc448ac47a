"""Row and column permutations of the response matrix.

Permutation tests on plate data break the link between the response and
one side of the design by reshuffling ``Y``:

* **rows** (:func:`shuffle_rows`) — exchanges whole conditions'
  replicate rows, destroying the ``X``-side association;
* **columns** (:func:`shuffle_cols`) — exchanges clones' replicate
  positions, destroying the ``Z``-side association.

For the permutation engine the shuffles are pre-generated as index
arrays by :func:`generate_unique_permutations`, which guarantees that no
two trials use the same permutation and that the identity (the observed
data) is never counted as a null sample.

Generation strategies
---------------------
1. **Lehmer-code sampling** (length <= ``max_exhaustive``): each of the
   n! orderings is identified by its lexicographic rank; B distinct
   ranks are drawn without replacement and decoded through the
   factorial number system.  O(B·n), never materialising all n!
   orderings.
2. **Vectorised batch generation** (larger lengths): all B shuffles are
   produced by a single ``Generator.permuted`` call.  When the
   birthday bound ``B(B−1) / (2·n!)`` is not negligible, duplicates are
   removed by hashing and the gaps refilled with fresh draws.
"""

from __future__ import annotations

import math

import numpy as np

from ._compat import MatrixLike, _ensure_matrix

# ------------------------------------------------------------------ #
# Public shuffle primitives
# ------------------------------------------------------------------ #


def shuffle_rows(
    Y: MatrixLike,
    rng: np.random.Generator | int | None = None,
) -> np.ndarray:
    """Return a copy of *Y* with its rows randomly permuted.

    Args:
        Y: Response matrix ``(n, m)``.
        rng: Generator or seed.

    Returns:
        New ``(n, m)`` array.
    """
    Y = _ensure_matrix(Y, name="Y")
    rng = np.random.default_rng(rng)
    return Y[rng.permutation(Y.shape[0]), :]


def shuffle_cols(
    Y: MatrixLike,
    rng: np.random.Generator | int | None = None,
) -> np.ndarray:
    """Return a copy of *Y* with its columns randomly permuted.

    Args:
        Y: Response matrix ``(n, m)``.
        rng: Generator or seed.

    Returns:
        New ``(n, m)`` array.
    """
    Y = _ensure_matrix(Y, name="Y")
    rng = np.random.default_rng(rng)
    return Y[:, rng.permutation(Y.shape[1])]


# Maps the built-in shuffles (and their string aliases) to the axis of
# Y they permute.
_AXIS_OF = {
    shuffle_rows: 0,
    shuffle_cols: 1,
    "rows": 0,
    "cols": 1,
}


def builtin_axis(perm_fn: object) -> int | None:
    """Axis permuted by a built-in shuffle, or ``None`` for custom callables."""
    try:
        return _AXIS_OF.get(perm_fn)  # type: ignore[call-overload]
    except TypeError:
        return None


def permute_axis(Y: np.ndarray, indices: np.ndarray, axis: int) -> np.ndarray:
    """Apply a pre-generated permutation to the rows or columns of *Y*."""
    return np.take(Y, indices, axis=axis)


# ------------------------------------------------------------------ #
# Lehmer code (factorial number system)
# ------------------------------------------------------------------ #
#
# A rank k in [0, n!) decomposes as k = d₁·(n−1)! + d₂·(n−2)! + … with
# dᵢ ∈ [0, n−i]; each digit picks the dᵢ-th element still available.
# Rank 0 is the identity.


def _unrank_permutation(k: int, n: int) -> list[int]:
    """Return the *k*-th lexicographic permutation of ``[0..n-1]``."""
    available = list(range(n))
    result: list[int] = []
    for i in range(n, 0, -1):
        idx, k = divmod(k, math.factorial(i - 1))
        result.append(available.pop(idx))
    return result


def generate_unique_permutations(
    n_samples: int,
    n_permutations: int,
    random_state: int | np.random.SeedSequence | None = None,
    exclude_identity: bool = True,
    max_exhaustive: int = 10,
) -> np.ndarray:
    """Pre-generate distinct permutation index arrays.

    Args:
        n_samples: Length of the axis to permute.
        n_permutations: Number of distinct permutations requested.
        random_state: Seed (or seed sequence) for reproducibility.
        exclude_identity: Never return ``[0, 1, ..., n-1]``.
        max_exhaustive: Use Lehmer-code sampling when
            ``n_samples <= max_exhaustive``.

    Returns:
        Integer array of shape ``(n_permutations, n_samples)`` whose rows
        are pairwise distinct permutations.

    Raises:
        ValueError: If more permutations are requested than exist.
    """
    rng = np.random.default_rng(random_state)
    if n_permutations == 0:
        return np.empty((0, n_samples), dtype=np.intp)

    if n_samples <= max_exhaustive:
        total = math.factorial(n_samples)
        available = total - 1 if exclude_identity else total
        if n_permutations > available:
            raise ValueError(
                f"Requested {n_permutations} unique permutations but only "
                f"{available} are available for n_samples={n_samples} "
                f"(exclude_identity={exclude_identity})."
            )
        # Identity has rank 0, so excluding it means drawing from [1, n!).
        offset = 1 if exclude_identity else 0
        ranks = rng.choice(available, size=n_permutations, replace=False) + offset
        return np.array(
            [_unrank_permutation(int(k), n_samples) for k in ranks],
            dtype=np.intp,
        )

    batch = np.tile(np.arange(n_samples, dtype=np.intp), (n_permutations, 1))
    rng.permuted(batch, axis=1, out=batch)

    collision_prob = n_permutations * (n_permutations - 1) / (2 * math.factorial(n_samples))
    if collision_prob < 1e-9 and not exclude_identity:
        return batch

    seen: set[tuple[int, ...]] = set()
    if exclude_identity:
        seen.add(tuple(range(n_samples)))

    result = np.empty((n_permutations, n_samples), dtype=np.intp)
    count = 0
    for row in batch:
        key = tuple(row.tolist())
        if key not in seen:
            seen.add(key)
            result[count] = row
            count += 1

    # Refill gaps left by identity hits or duplicate draws.
    attempts = 0
    max_attempts = n_permutations * 20 + 1000
    while count < n_permutations and attempts < max_attempts:
        perm = rng.permutation(n_samples)
        key = tuple(perm.tolist())
        if key not in seen:
            seen.add(key)
            result[count] = perm
            count += 1
        attempts += 1

    return result[:count]


__all__ = [
    "generate_unique_permutations",
    "permute_axis",
    "shuffle_cols",
    "shuffle_rows",
]
