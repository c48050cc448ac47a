"""Tests for S scores."""

from __future__ import annotations

import numpy as np
import pytest

from genetic_screens import RawData
from genetic_screens.exceptions import DegenerateDataError, PreconditionError
from genetic_screens.sscore import s_score, s_score_components, s_score_perms


@pytest.fixture()
def screen(indicators):
    """4 conditions x 3 replicates by 5 clones x 2 replicates."""

    def _make(seed=0, effect=0.0):
        rng = np.random.default_rng(seed)
        row_levels = np.repeat(np.arange(4), 3)
        col_levels = np.tile(np.arange(5), 2)
        Y = 10.0 + rng.normal(scale=1.0, size=(12, 10))
        Y += rng.normal(scale=2.0, size=5)[col_levels][None, :]
        # Condition 0 x clone 0 interaction.
        Y[np.ix_(row_levels == 0, col_levels == 0)] += effect
        return RawData.from_arrays(Y, indicators(row_levels, 4), indicators(col_levels, 5))

    return _make


class TestNoFloor:
    def test_hand_computed(self, indicators):
        Y = np.array(
            [
                [1.0, 2.0, 5.0, 7.0],
                [2.0, 4.0, 6.0, 6.0],
                [3.0, 3.0, 9.0, 8.0],
                [5.0, 4.0, 7.0, 9.0],
            ]
        )
        rows = np.array([0, 0, 1, 1])
        cols = np.array([0, 0, 1, 1])
        data = RawData.from_arrays(Y, indicators(rows, 2), indicators(cols, 2))
        S = s_score(data, var_floor=False)

        expected = np.empty((2, 2))
        for i in range(2):
            for j in range(2):
                exp = Y[np.ix_(rows == i, cols == j)].ravel()
                cont = Y[:, cols == j].ravel()
                denom = np.sqrt(exp.var(ddof=1) / exp.size + cont.var(ddof=1) / cont.size)
                expected[i, j] = (exp.mean() - cont.mean()) / denom
        np.testing.assert_allclose(S, expected)

    def test_unassigned_rows_feed_control(self, indicators):
        rng = np.random.default_rng(7)
        Y = 5.0 + rng.standard_normal((5, 4))
        X = indicators([0, 0, 1, 1, 0], 2)
        # Row 4 belongs to no condition.
        X[4] = 0.0
        cols = np.array([0, 0, 1, 1])
        data = RawData.from_arrays(Y, X, indicators(cols, 2))
        comps = s_score_components(data, var_floor=False)

        np.testing.assert_array_equal(comps.n_exp, 4.0)
        np.testing.assert_array_equal(comps.n_cont, 10.0)
        np.testing.assert_allclose(comps.mu_cont, [Y[:, cols == j].mean() for j in range(2)])
        np.testing.assert_allclose(comps.mu_exp[0, 0], Y[:2, :2].mean())
        assert np.all(np.isfinite(comps.S))

    def test_components(self, screen):
        comps = s_score_components(screen(), var_floor=False)
        assert comps.S.shape == (4, 5)
        np.testing.assert_array_equal(comps.n_exp, 6.0)
        np.testing.assert_array_equal(comps.n_cont, 24.0)
        assert comps.pooled_var is None
        np.testing.assert_array_equal(comps.var_exp, comps.raw_var_exp)

    def test_detects_interaction(self, screen):
        S = s_score(screen(effect=6.0), var_floor=False)
        assert np.argmax(np.abs(S)) == 0
        assert S[0, 0] > 0


class TestVarianceFloor:
    def test_floor_never_lowers_variance(self, screen):
        comps = s_score_components(screen(seed=1))
        assert comps.var_floor
        assert np.all(comps.var_exp >= comps.raw_var_exp)

    def test_control_statistics(self, screen):
        data = screen(seed=2)
        comps = s_score_components(data)
        clone_medians = [np.median(data.Y[:, data.Z[:, j] == 1]) for j in range(5)]
        np.testing.assert_allclose(comps.mu_cont, clone_medians)
        np.testing.assert_array_equal(comps.n_cont, np.median(comps.n_exp))
        assert np.all(comps.var_cont >= np.median(comps.raw_var_exp, axis=0))

    def test_pooled_variance(self, screen):
        comps = s_score_components(screen(seed=3))
        n_e, n_c = comps.n_exp, comps.n_cont
        expected = (comps.var_exp * (n_e - 1) + comps.var_cont * (n_c - 1)) / (n_e + n_c - 2)
        np.testing.assert_allclose(comps.pooled_var, expected)
        np.testing.assert_allclose(
            comps.S,
            (comps.mu_exp - comps.mu_cont) / np.sqrt(expected * (1 / n_e + 1 / n_c)),
        )

    def test_detects_interaction(self, screen):
        S = s_score(screen(effect=6.0))
        assert np.argmax(np.abs(S)) == 0

    def test_finite(self, screen):
        assert np.all(np.isfinite(s_score(screen(seed=4))))


class TestPreconditions:
    def test_intercept_flag_raises(self, indicators):
        rows = np.repeat(np.arange(2), 2)
        cols = np.tile(np.arange(2), 2)
        data = RawData.from_arrays(
            np.ones((4, 4)),
            np.column_stack([np.ones(4), indicators(rows, 2)]),
            indicators(cols, 2),
            x_intercept=True,
        )
        with pytest.raises(PreconditionError, match="intercept"):
            s_score(data)

    def test_non_indicator_raises(self, indicators):
        rng = np.random.default_rng(0)
        data = RawData.from_arrays(
            rng.standard_normal((4, 4)), rng.standard_normal((4, 2)), indicators([0, 0, 1, 1], 2)
        )
        with pytest.raises(PreconditionError, match="indicator"):
            s_score(data)

    def test_overlapping_indicators_raise(self, indicators):
        X = np.ones((4, 2))
        data = RawData.from_arrays(np.ones((4, 4)), X, indicators([0, 0, 1, 1], 2))
        with pytest.raises(PreconditionError, match="at most one"):
            s_score(data)

    def test_empty_condition_raises(self, indicators):
        rng = np.random.default_rng(0)
        X = np.zeros((4, 2))
        X[:, 0] = 1.0
        data = RawData.from_arrays(rng.standard_normal((4, 4)), X, indicators([0, 0, 1, 1], 2))
        with pytest.raises(DegenerateDataError, match="replicate"):
            s_score(data, var_floor=False)

    def test_single_replicate_raises(self, indicators):
        rng = np.random.default_rng(0)
        data = RawData.from_arrays(
            rng.standard_normal((3, 4)),
            indicators([0, 1, 1], 2),
            indicators([0, 1, 1, 1], 2),
        )
        with pytest.raises(DegenerateDataError, match="replicate"):
            s_score(data, var_floor=False)

    def test_constant_data_raises(self, indicators):
        data = RawData.from_arrays(
            np.ones((4, 4)), indicators([0, 0, 1, 1], 2), indicators([0, 0, 1, 1], 2)
        )
        with pytest.raises(DegenerateDataError):
            s_score(data, var_floor=False)


class TestSScorePerms:
    def test_shapes_and_range(self, screen):
        result = s_score_perms(screen(), 20, random_state=0)
        assert result.statistic.shape == (4, 5)
        assert np.all((result.p_values > 0) & (result.p_values <= 1))

    def test_strong_interaction_is_significant(self, screen):
        result = s_score_perms(screen(effect=8.0), 99, var_floor=False, random_state=1)
        assert result.p_values[0, 0] <= 0.05

    def test_reproducible_across_workers(self, screen):
        data = screen(seed=5)
        a = s_score_perms(data, 20, random_state=2, n_jobs=1)
        b = s_score_perms(data, 20, random_state=2, n_jobs=2)
        np.testing.assert_array_equal(a.p_values, b.p_values)

    def test_default_count_on_small_plate(self, indicators):
        # 4 rows give only 4! - 1 = 23 distinct orders.
        rng = np.random.default_rng(6)
        data = RawData.from_arrays(
            10.0 + rng.standard_normal((4, 6)),
            indicators([0, 0, 1, 1], 2),
            indicators([0, 1, 2, 0, 1, 2], 3),
        )
        result = s_score_perms(data, var_floor=False, random_state=3)
        assert result.n_permutations == 1000
        assert np.all((result.p_values > 0) & (result.p_values <= 1))
