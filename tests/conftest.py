"""Shared plate builders for the test suite."""

from __future__ import annotations

import numpy as np
import pytest

from genetic_screens import RawData


def _sum_contrasts(levels, n_levels):
    """Sum-contrast coding; the last level is the left-out one."""
    levels = np.asarray(levels)
    out = np.zeros((levels.size, n_levels - 1))
    for row, level in enumerate(levels):
        if level == n_levels - 1:
            out[row] = -1.0
        else:
            out[row, level] = 1.0
    return out


def _indicators(levels, n_levels):
    levels = np.asarray(levels)
    return (levels[:, None] == np.arange(n_levels)[None, :]).astype(float)


@pytest.fixture()
def sum_contrasts():
    return _sum_contrasts


@pytest.fixture()
def indicators():
    return _indicators


@pytest.fixture()
def make_plate():
    """Factory for sum-contrast plates with known effects.

    Rows are ``n_conds`` conditions with ``reps`` replicates each;
    columns are ``n_clones`` clones with ``clone_reps`` replicates each.
    Returns ``(data, B_true, row_levels, col_levels)`` where ``data``
    carries contrast matrices without intercepts and ``B_true`` is the
    ``(n_conds, n_clones)`` coefficient matrix of the intercept-plus-
    contrasts design.
    """

    def _make(n_conds=3, reps=2, n_clones=2, clone_reps=3, noise=0.1, seed=0):
        rng = np.random.default_rng(seed)
        row_levels = np.repeat(np.arange(n_conds), reps)
        col_levels = np.tile(np.arange(n_clones), clone_reps)
        X = _sum_contrasts(row_levels, n_conds)
        Z = _sum_contrasts(col_levels, n_clones)
        B_true = rng.normal(scale=2.0, size=(n_conds, n_clones))
        X_full = np.column_stack([np.ones(X.shape[0]), X])
        Z_full = np.column_stack([np.ones(Z.shape[0]), Z])
        Y = X_full @ B_true @ Z_full.T
        Y = Y + rng.normal(scale=noise, size=Y.shape)
        return RawData.from_arrays(Y, X, Z), B_true, row_levels, col_levels

    return _make
