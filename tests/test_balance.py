#!/usr/bin/env python3
"""
Tests for single balancing attempts and the convergence tracker.
"""
import numpy as np
import pytest
from numpy.testing import assert_allclose

from hicscale import (
    BalanceConfig,
    ConvergenceTracker,
    ExclusionParams,
    FailureReason,
    SparseSymmetricMatrix,
    scale_to_target_vector,
)
from hicscale.convergence import max_abs_ignoring_nan

from conftest import balanced_row_sums


def test_attempt_converges_on_chain(small_matrix):
    """The 3-bin chain balances to unit row sums"""
    outcome = scale_to_target_vector(small_matrix, np.ones(3), ExclusionParams())
    assert outcome.converged
    assert outcome.reason is None
    assert outcome.ber <= 5e-4
    assert outcome.err <= 2.5e-3
    assert np.all(np.isfinite(outcome.vector))
    assert np.all(outcome.vector > 0)
    assert_allclose(balanced_row_sums(small_matrix, outcome.vector), 1.0, atol=5e-4)


def test_attempt_matches_target_profile(random_matrix):
    """Non-uniform targets are matched bin by bin"""
    rng = np.random.default_rng(7)
    target = rng.uniform(0.5, 2.0, size=random_matrix.n_bins)
    outcome = scale_to_target_vector(random_matrix, target, ExclusionParams())
    assert outcome.converged
    assert_allclose(balanced_row_sums(random_matrix, outcome.vector), target, atol=5e-4)


def test_contact_with_excluded_bin_leaves_both_ends_nan():
    """
    Bin 0 has no self-contact and its only partner is bin 1, whose diagonal
    is zero. Both come out NaN and bin 2 balances on its own.
    """
    m = SparseSymmetricMatrix.from_records([(0, 1, 4), (1, 1, 0), (2, 2, 5)], 3)
    outcome = scale_to_target_vector(m, np.ones(3), ExclusionParams())
    assert outcome.converged
    assert np.isnan(outcome.vector[1])
    assert np.isnan(outcome.vector[0])
    assert outcome.vector[2] == pytest.approx(1.0 / np.sqrt(5.0))
    assert outcome.n_bad == 2


def test_zero_target_bins_are_not_fitted():
    """A zero target drives the bin's scale to zero without failing"""
    records = [(0, 0, 4), (0, 1, 1), (1, 1, 4), (1, 2, 1), (2, 2, 4)]
    m = SparseSymmetricMatrix.from_records(records, 3)
    outcome = scale_to_target_vector(m, [1.0, 1.0, 0.0], ExclusionParams())
    assert outcome.converged
    assert outcome.vector[2] == 0.0
    assert_allclose(balanced_row_sums(m, outcome.vector)[:2], 1.0, atol=5e-4)


def test_no_usable_bins():
    """Nothing to fit is reported as a failure reason, not an exception"""
    m = SparseSymmetricMatrix.from_records([(0, 1, 3.0)], 2)
    outcome = scale_to_target_vector(m, np.ones(2), ExclusionParams())
    assert not outcome.converged
    assert outcome.vector is None
    assert outcome.reason is FailureReason.NO_USABLE_BINS
    assert outcome.iterations == 0


def test_iteration_budget_exhausted(small_matrix):
    config = BalanceConfig(max_iter=1)
    outcome = scale_to_target_vector(small_matrix, np.ones(3), ExclusionParams(), config)
    assert not outcome.converged
    assert outcome.vector is None
    assert outcome.reason is FailureReason.MAX_ITERATIONS
    assert outcome.iterations == 1
    assert outcome.summary()["reason"] == "MAX_ITERATIONS"


def test_attempt_stalls_before_iteration_budget(small_matrix):
    """Anything short of a 1000x drop per iteration counts as stuck here"""
    config = BalanceConfig(tolerance=1e-12, delta=0.999,
                           num_trials_within_scaling_run=1)
    outcome = scale_to_target_vector(small_matrix, np.ones(3), ExclusionParams(), config)
    assert not outcome.converged
    assert outcome.vector is None
    assert outcome.reason is FailureReason.STALLED
    assert outcome.iterations < config.max_iter
    assert outcome.ber > config.tolerance


def test_inputs_are_not_modified(small_matrix):
    target = np.array([1.0, np.nan, 1.0])
    before = small_matrix.weights.copy()
    scale_to_target_vector(small_matrix, target, ExclusionParams())
    assert np.isnan(target[1])
    assert_allclose(small_matrix.weights, before)


class TestConvergenceTracker:
    """Stagnation and termination rules"""

    def test_stalls_on_flat_error(self):
        tracker = ConvergenceTracker(BalanceConfig())
        # Stuck iterations are counted from the 7th on; 5 in a row stall.
        for _ in range(10):
            assert tracker.update(1.0)
        assert not tracker.update(1.0)
        assert tracker.stalled
        assert tracker.iterations == 11

    def test_real_improvement_resets_stuck(self):
        tracker = ConvergenceTracker(BalanceConfig())
        for _ in range(10):
            tracker.update(1.0)
        assert tracker.stuck == 4
        tracker.update(0.5)
        assert tracker.stuck == 0
        assert not tracker.stalled

    def test_small_improvement_is_stuck(self):
        tracker = ConvergenceTracker(BalanceConfig())
        errors = [1.0 * 0.995 ** i for i in range(11)]
        for ber in errors[:-1]:
            assert tracker.update(ber)
        assert not tracker.update(errors[-1])

    def test_max_iter(self):
        tracker = ConvergenceTracker(BalanceConfig(max_iter=3))
        assert tracker.update(1.0)
        assert tracker.update(0.5)
        assert not tracker.update(0.25)
        assert not tracker.stalled

    def test_converged_needs_both_criteria(self):
        tracker = ConvergenceTracker(BalanceConfig())
        tracker.update(1e-4)
        assert tracker.converged(1e-3)
        assert not tracker.converged(3e-3)
        tracker.update(1e-3)
        assert not tracker.converged(0.0)

    def test_initial_error_is_above_tolerance(self):
        tracker = ConvergenceTracker(BalanceConfig())
        assert not tracker.converged(0.0)


def test_max_abs_ignoring_nan():
    values = np.array([np.nan, -3.0, 1.0, 7.0])
    excluded = np.array([False, False, False, True])
    assert max_abs_ignoring_nan(values, excluded) == 3.0
    assert max_abs_ignoring_nan(np.array([np.nan]), np.array([False])) == 0.0
