"""Tests for the pvalues module."""

import numpy as np
import pytest

from genetic_screens.pvalues import count_exceedances, empirical_p_values


class TestCountExceedances:
    def test_two_sided(self):
        observed = np.array([[1.0, -2.0], [0.5, 3.0]])
        permuted = np.array([[-1.5, 1.0], [0.1, -3.5]])
        np.testing.assert_array_equal(
            count_exceedances(permuted, observed), [[1, 0], [0, 1]]
        )

    def test_ties_count(self):
        observed = np.array([[2.0]])
        assert count_exceedances(np.array([[-2.0]]), observed)[0, 0] == 1

    def test_integer_dtype(self):
        out = count_exceedances(np.zeros((2, 2)), np.ones((2, 2)))
        assert out.dtype == np.int64


class TestEmpiricalPValues:
    def test_phipson_smyth(self):
        counts = np.array([[0, 5], [99, 100]])
        np.testing.assert_allclose(
            empirical_p_values(counts, 100),
            [[1 / 101, 6 / 101], [100 / 101, 1.0]],
        )

    def test_never_zero(self):
        p = empirical_p_values(np.zeros((3, 3), dtype=np.int64), 999)
        assert np.all(p > 0)
        np.testing.assert_allclose(p, 1e-3)

    def test_zero_permutations_give_one(self):
        p = empirical_p_values(np.zeros((2, 3), dtype=np.int64), 0)
        np.testing.assert_array_equal(p, 1.0)

    def test_negative_permutations_raise(self):
        with pytest.raises(ValueError, match=">= 0"):
            empirical_p_values(np.zeros((1, 1)), -1)

    def test_count_out_of_range_raises(self):
        with pytest.raises(ValueError, match="Exceedance counts"):
            empirical_p_values(np.array([[11]]), 10)

    def test_batch_counts_sum(self):
        rng = np.random.default_rng(0)
        observed = rng.standard_normal((3, 4))
        perms = rng.standard_normal((40, 3, 4))
        whole = sum(count_exceedances(p, observed) for p in perms)
        halves = sum(count_exceedances(p, observed) for p in perms[:17]) + sum(
            count_exceedances(p, observed) for p in perms[17:]
        )
        np.testing.assert_array_equal(
            empirical_p_values(whole, 40), empirical_p_values(halves, 40)
        )
