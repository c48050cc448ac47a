"""Permutation engine for matrix-valued statistics.

:class:`PermutationEngine` evaluates a caller-supplied statistic on the
real dataset and on B reshuffled copies of it, and turns the results
into per-cell empirical p-values.  The statistic can be anything that
maps a :class:`~genetic_screens.data.RawData` to a matrix of fixed
shape — MLM t-statistics with back-estimated interactions, S scores,
or a user function.

Construction resolves everything that happens *before* the trials run:

1. **Observed statistic** — computed once; it must be finite.
2. **Permutation plan** — for the built-in row / column shuffles, B
   distinct non-identity index permutations are pre-generated from
   ``random_state``, so no two trials reuse a permutation.  When the
   axis is too short to supply B distinct orders (n! - 1 < B), each trial
   instead draws its own shuffle with replacement.  A custom
   ``perm_fn(Y, rng)`` instead gets its own ``numpy.random.Generator``
   per trial, spawned from ``SeedSequence(random_state)`` by trial
   index.
3. **Workers** — ``n_jobs`` is resolved against the package default
   (see :mod:`genetic_screens._config`).

:meth:`PermutationEngine.run` then splits the trials into one batch per
worker.  Each batch owns its permuted copies of ``Y`` and returns an
integer count matrix of ``|T*| >= |T|``; the batch counts are summed.
Because every trial's permutation depends only on its index and the
reduction is an integer sum, the p-values are identical for any
worker count and any completion order.

Parallelism
~~~~~~~~~~~
Batches run under ``joblib.Parallel(prefer="threads")``.  The heavy
work in each trial is NumPy / LAPACK linear algebra that releases the
GIL, so threads overlap without pickling the dataset for every worker.

Failures
~~~~~~~~
A trial that raises, returns a statistic of the wrong shape, or
returns NaN / Inf aborts the whole run with
:class:`~genetic_screens.exceptions.PermutationTrialError`.  Trials are
never skipped, so the permutation count behind every p-value is exactly
``n_permutations``.  There is no early stopping or timeout; bound the
runtime by choosing ``n_permutations``.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable

import numpy as np
from joblib import Parallel, delayed, effective_n_jobs

from ._config import resolve_n_jobs
from ._results import PermutationResult
from .data import RawData
from .exceptions import DegenerateDataError, PermutationTrialError, PreconditionError
from .permutations import (
    builtin_axis,
    generate_unique_permutations,
    permute_axis,
    shuffle_rows,
)
from .pvalues import count_exceedances, empirical_p_values

logger = logging.getLogger(__name__)

Statistic = Callable[[RawData], np.ndarray]
PermFn = Callable[[np.ndarray, np.random.Generator], np.ndarray] | str

# Factorials beyond this exceed any realistic permutation count.
_MAX_COUNTED_LENGTH = 20


def _distinct_orders(length: int) -> int | float:
    """Number of non-identity orderings of *length* items."""
    if length > _MAX_COUNTED_LENGTH:
        return math.inf
    return math.factorial(length) - 1


class PermutationEngine:
    """Observed statistic, permutation plan, and trial runner.

    The engine captures a snapshot of its inputs at construction and is
    not modified by :meth:`run`, which may be called repeatedly with the
    same result.

    Attributes:
        statistic: Function mapping a dataset to a statistic matrix.
        data: The real dataset.
        n_permutations: Number of trials B.
        perm_axis: ``0`` (rows) or ``1`` (columns) for the built-in
            shuffles, ``None`` for a custom permutation function.
        observed: Statistic on the real data.
        perm_indices: Pre-generated ``(B, len)`` index array for the
            built-in shuffles, else ``None``.
        with_replacement: Whether a built-in shuffle draws each trial
            independently because fewer than B distinct orders exist.
        n_jobs: Resolved joblib worker count.
    """

    def __init__(
        self,
        statistic: Statistic,
        data: RawData,
        *,
        n_permutations: int = 1000,
        perm_fn: PermFn = shuffle_rows,
        random_state: int | None = None,
        n_jobs: int | None = None,
    ) -> None:
        if isinstance(n_permutations, bool) or not isinstance(n_permutations, (int, np.integer)):
            raise PreconditionError(f"n_permutations must be an integer, got {n_permutations!r}.")
        if n_permutations < 0:
            raise PreconditionError(f"n_permutations must be >= 0, got {n_permutations}.")

        self.statistic = statistic
        self.data = data
        self.n_permutations = int(n_permutations)
        self.random_state = random_state
        self.n_jobs = resolve_n_jobs(n_jobs)

        self.perm_axis = builtin_axis(perm_fn)
        if self.perm_axis is None and not callable(perm_fn):
            raise PreconditionError(
                f"perm_fn must be shuffle_rows, shuffle_cols, 'rows', 'cols' "
                f"or a callable (Y, rng) -> Y, got {perm_fn!r}."
            )
        self._perm_fn = perm_fn

        # ---- Observed statistic -----------------------------------
        self.observed = np.asarray(statistic(data), dtype=float)
        if not np.all(np.isfinite(self.observed)):
            raise DegenerateDataError("The observed statistic contains NaN or infinite values.")

        # ---- Permutation plan -------------------------------------
        self.perm_indices: np.ndarray | None = None
        self._seeds: list[np.random.SeedSequence] = []
        self.with_replacement = False
        length = data.Y.shape[self.perm_axis] if self.perm_axis is not None else 0
        if self.perm_axis is not None and self.n_permutations > _distinct_orders(length):
            # Too few distinct orders: every trial draws its own shuffle.
            logger.debug(
                "%d permutations requested but only %d distinct non-identity "
                "orders of length %d exist; drawing with replacement",
                self.n_permutations,
                _distinct_orders(length),
                length,
            )
            self.with_replacement = True
            self._seeds = np.random.SeedSequence(random_state).spawn(self.n_permutations)
        elif self.perm_axis is not None:
            self.perm_indices = generate_unique_permutations(
                length, self.n_permutations, random_state=random_state
            )
            if self.perm_indices.shape[0] < self.n_permutations:
                raise PreconditionError(
                    f"Could only draw {self.perm_indices.shape[0]} distinct "
                    f"permutations of length {length}; {self.n_permutations} "
                    f"were requested."
                )
        else:
            self._seeds = np.random.SeedSequence(random_state).spawn(self.n_permutations)

    # ---- Trials ----------------------------------------------------

    def permuted_data(self, trial: int) -> RawData:
        """Dataset for permutation *trial* (a fresh copy of ``Y``)."""
        if self.perm_indices is not None:
            Y = permute_axis(self.data.Y, self.perm_indices[trial], self.perm_axis)
        else:
            rng = np.random.default_rng(self._seeds[trial])
            if self.perm_axis is not None:
                length = self.data.Y.shape[self.perm_axis]
                Y = permute_axis(self.data.Y, rng.permutation(length), self.perm_axis)
            else:
                Y = self._perm_fn(np.array(self.data.Y), rng)
        return self.data.with_response(Y)

    def _run_batch(self, trials: np.ndarray) -> np.ndarray:
        counts = np.zeros(self.observed.shape, dtype=np.int64)
        for trial in trials:
            trial = int(trial)
            try:
                stat = np.asarray(self.statistic(self.permuted_data(trial)), dtype=float)
            except Exception as exc:
                raise PermutationTrialError(
                    f"Permutation trial {trial} failed: {exc}", trial=trial
                ) from exc
            if stat.shape != self.observed.shape:
                raise PermutationTrialError(
                    f"Permutation trial {trial} returned shape {stat.shape}; "
                    f"expected {self.observed.shape}.",
                    trial=trial,
                )
            if not np.all(np.isfinite(stat)):
                raise PermutationTrialError(
                    f"Permutation trial {trial} returned NaN or infinite values.",
                    trial=trial,
                )
            counts += count_exceedances(stat, self.observed)
        return counts

    def run(self) -> PermutationResult:
        """Run every trial and return the statistic with its p-values."""
        trials = np.arange(self.n_permutations)
        n_workers = min(effective_n_jobs(self.n_jobs), max(self.n_permutations, 1))
        logger.debug(
            "Running %d permutation trials (axis=%s) on %d worker(s)",
            self.n_permutations,
            self.perm_axis,
            n_workers,
        )

        if n_workers == 1:
            counts = self._run_batch(trials)
        else:
            batches = np.array_split(trials, n_workers)
            partials = Parallel(n_jobs=n_workers, prefer="threads")(
                delayed(self._run_batch)(batch) for batch in batches
            )
            counts = np.sum(partials, axis=0, dtype=np.int64)

        return PermutationResult(
            statistic=self.observed,
            p_values=empirical_p_values(counts, self.n_permutations),
            counts=counts,
            n_permutations=self.n_permutations,
            perm_axis=self.perm_axis,
            random_state=self.random_state,
        )


def perm_pvals(
    statistic: Statistic,
    data: RawData,
    n_permutations: int = 1000,
    *,
    perm_fn: PermFn = shuffle_rows,
    random_state: int | None = None,
    n_jobs: int | None = None,
) -> PermutationResult:
    """Permutation p-values for any matrix-valued statistic.

    Args:
        statistic: Function mapping a dataset to a statistic matrix.
        data: The real dataset.
        n_permutations: Number of permutation trials.
        perm_fn: :func:`~genetic_screens.shuffle_rows` (default),
            :func:`~genetic_screens.shuffle_cols`, ``"rows"``,
            ``"cols"``, or a callable ``(Y, rng) -> Y``.
        random_state: Seed for the permutation plan.
        n_jobs: joblib worker count; ``None`` uses the package default.

    Returns:
        :class:`PermutationResult`; unpacks as ``(statistic, p_values)``.

    Raises:
        DegenerateDataError: If the observed statistic is not finite.
        PermutationTrialError: If any permutation trial fails.
    """
    engine = PermutationEngine(
        statistic,
        data,
        n_permutations=n_permutations,
        perm_fn=perm_fn,
        random_state=random_state,
        n_jobs=n_jobs,
    )
    return engine.run()


__all__ = ["PermutationEngine", "perm_pvals"]
