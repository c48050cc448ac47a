"""Tests for sum-contrast back-estimation."""

from __future__ import annotations

import numpy as np
import pytest

from genetic_screens import RawData
from genetic_screens.backest import backest_sum, mlm_backest_sum, mlm_backest_sum_perms
from genetic_screens.exceptions import PreconditionError
from genetic_screens.mlm import MlmConfig, mlm, t_stat


class TestBackestSum:
    """3 conditions x 2 replicates by 2 clones x 3 replicates."""

    def test_shapes(self, make_plate):
        data, _, _, _ = make_plate()
        fit = mlm(data)
        assert fit.B.shape == (3, 2)
        full = backest_sum(fit)
        assert full.B.shape == (4, 3)
        assert full.var_B.shape == (4, 3)
        assert full.x_backest and full.z_backest

    def test_left_out_level_is_negative_sum(self, make_plate):
        data, _, _, _ = make_plate()
        fit = mlm(data)
        full = backest_sum(fit)
        np.testing.assert_array_equal(full.B[:3, :2], fit.B)
        np.testing.assert_allclose(full.B[3, :2], -fit.B[1:, :].sum(axis=0))
        np.testing.assert_allclose(full.B[:3, 2], -fit.B[:, 1:].sum(axis=1))

    def test_effects_sum_to_zero(self, make_plate):
        data, _, _, _ = make_plate(n_conds=4, reps=3, n_clones=3, clone_reps=2, seed=2)
        full = mlm_backest_sum(data)
        np.testing.assert_allclose(full.B[1:, :].sum(axis=0), 0.0, atol=1e-10)
        np.testing.assert_allclose(full.B[:, 1:].sum(axis=1), 0.0, atol=1e-10)

    def test_recovers_left_out_effects(self, make_plate):
        data, B_true, _, _ = make_plate(noise=0.01, seed=4)
        full = mlm_backest_sum(data)
        expected_row = -B_true[1:, :].sum(axis=0)
        np.testing.assert_allclose(full.B[3, :2], expected_row, atol=0.05)

    def test_variances_positive(self, make_plate):
        data, _, _, _ = make_plate()
        full = mlm_backest_sum(data)
        assert np.all(full.var_B > 0)

    def test_row_variance_formula(self, make_plate):
        data, _, _, _ = make_plate()
        fit = mlm(data)
        var_left, var_right = fit.variance_factors()
        C = np.array([[0.0, -1.0, -1.0]])
        full = backest_sum(fit, x_sum=True, z_sum=False)
        expected = (C @ var_left @ C.T)[0, 0] * np.diag(var_right)
        np.testing.assert_allclose(full.var_B[3, :], expected, rtol=1e-12)

    def test_matches_refit_with_other_reference(self, make_plate, sum_contrasts):
        """The back-estimated level equals the direct estimate when another
        level is left out instead."""
        data, _, row_levels, _ = make_plate(n_conds=3, reps=3, seed=6)
        full = mlm_backest_sum(data, x_sum=True, z_sum=False)

        # Recode so level 0 is left out: new codes 0, 1, 2 are old levels 1, 2, 0.
        recoded = (row_levels - 1) % 3
        X_alt = sum_contrasts(recoded, 3)
        alt = mlm(RawData.from_arrays(data.Y, X_alt, data.Z))
        # Old level 2 is new level 1, the second contrast row.
        np.testing.assert_allclose(full.B[3, :], alt.B[2, :], atol=1e-10)
        np.testing.assert_allclose(full.var_B[3, :], alt.var_B[2, :], rtol=1e-8)

    def test_sequential_matches_joint(self, make_plate):
        data, _, _, _ = make_plate(seed=8)
        fit = mlm(data)
        joint = backest_sum(fit)
        stepwise = backest_sum(backest_sum(fit, x_sum=True, z_sum=False), x_sum=False, z_sum=True)
        np.testing.assert_allclose(stepwise.B, joint.B, atol=1e-12)
        np.testing.assert_allclose(stepwise.var_B, joint.var_B, rtol=1e-12)

    def test_z_side_only(self, make_plate):
        data, _, _, _ = make_plate()
        full = mlm_backest_sum(data, x_sum=False)
        assert full.B.shape == (3, 3)
        assert full.z_backest and not full.x_backest

    def test_does_not_modify_input(self, make_plate):
        data, _, _, _ = make_plate()
        fit = mlm(data)
        B = fit.B.copy()
        backest_sum(fit)
        np.testing.assert_array_equal(fit.B, B)
        assert not fit.x_backest

    def test_nothing_requested_returns_fit(self, make_plate):
        data, _, _, _ = make_plate()
        fit = mlm(data)
        assert backest_sum(fit, x_sum=False, z_sum=False) is fit

    def test_missing_intercept_raises(self, make_plate):
        data, _, _, _ = make_plate()
        fit = mlm(data, MlmConfig(x_intercept=False))
        with pytest.raises(PreconditionError, match="No X intercept"):
            backest_sum(fit)
        # The Z side alone is still defined.
        assert backest_sum(fit, x_sum=False).B.shape == (2, 3)

    def test_double_backest_raises(self, make_plate):
        data, _, _, _ = make_plate()
        full = mlm_backest_sum(data)
        with pytest.raises(PreconditionError, match="already"):
            backest_sum(full, x_sum=True, z_sum=False)

    def test_weights_and_shrinkage(self, make_plate):
        data, _, _, _ = make_plate(seed=3)
        config = MlmConfig(weights=np.linspace(0.5, 1.5, data.m), target_type="B")
        full = mlm_backest_sum(data, config)
        assert full.B.shape == (4, 3)
        assert np.all(full.var_B > 0)


class TestBackestTStat:
    def test_interactions_only(self, make_plate):
        data, _, _, _ = make_plate()
        t = t_stat(mlm_backest_sum(data))
        assert t.shape == (3, 2)

    def test_end_to_end_within_standard_errors(self, make_plate):
        """Back-estimated interactions fall within 3 standard errors of the
        truth for at least 95% of cells across seeds."""
        z_scores = []
        for seed in range(20):
            data, B_true, _, _ = make_plate(
                n_conds=4, reps=3, n_clones=6, clone_reps=2, noise=0.5, seed=seed
            )
            full = mlm_backest_sum(data)
            truth = np.zeros((5, 7))
            truth[:4, :6] = B_true
            truth[4, :6] = -B_true[1:, :].sum(axis=0)
            truth[:, 6] = -truth[:, 1:6].sum(axis=1)
            z_scores.append(np.abs(full.B - truth) / np.sqrt(full.var_B))
        within = np.mean(np.concatenate([z.ravel() for z in z_scores]) <= 3.0)
        assert within >= 0.95


class TestBackestPerms:
    def test_shapes_and_range(self, make_plate):
        data, _, _, _ = make_plate()
        result = mlm_backest_sum_perms(data, 50, random_state=0)
        assert result.statistic.shape == (3, 2)
        assert np.all((result.p_values > 0) & (result.p_values <= 1))
        assert result.n_permutations == 50

    def test_reproducible(self, make_plate):
        data, _, _, _ = make_plate()
        a = mlm_backest_sum_perms(data, 30, random_state=5, n_jobs=1)
        b = mlm_backest_sum_perms(data, 30, random_state=5, n_jobs=2)
        np.testing.assert_array_equal(a.p_values, b.p_values)

    def test_statistic_matches_direct_fit(self, make_plate):
        data, _, _, _ = make_plate()
        result = mlm_backest_sum_perms(data, 10, random_state=0)
        np.testing.assert_allclose(result.statistic, t_stat(mlm_backest_sum(data)))

    def test_main_effects(self, make_plate):
        data, _, _, _ = make_plate()
        result = mlm_backest_sum_perms(data, 10, main_effects=True, random_state=0)
        assert result.statistic.shape == (4, 3)

    def test_default_count_on_small_plate(self, make_plate):
        # 6 rows give only 6! - 1 = 719 distinct orders.
        data, _, _, _ = make_plate()
        result = mlm_backest_sum_perms(data, random_state=0)
        assert result.n_permutations == 1000
        assert np.all((result.p_values > 0) & (result.p_values <= 1))
