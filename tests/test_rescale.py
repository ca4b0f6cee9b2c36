#!/usr/bin/env python3
"""
Tests for turning scaling vectors into mass-preserving normalization vectors.
"""
import logging

import numpy as np
import pytest
from numpy.testing import assert_allclose

from hicscale import (
    SparseSymmetricMatrix,
    balanced_pixels,
    normalize_vector_by_scale_factor,
    scale,
    scale_to_vector,
)


def test_normalize_vector_hand_computed():
    """Inversion followed by the sqrt mass ratio"""
    m = SparseSymmetricMatrix.from_records([(0, 0, 4), (0, 1, 2), (1, 1, 1)], 2)
    norm = normalize_vector_by_scale_factor(np.array([0.5, 1.0]), m)
    # Inverted [2, 1]; balanced mass 4 against raw mass 9.
    assert_allclose(norm, [4.0 / 3.0, 2.0 / 3.0])


def test_non_positive_entries_become_nan():
    m = SparseSymmetricMatrix.from_records(
        [(0, 0, 4), (0, 1, 2), (1, 1, 1), (2, 2, 1), (3, 3, 1)], 4
    )
    vector = np.array([0.5, 0.0, np.nan, -1.0])
    norm = normalize_vector_by_scale_factor(vector, m)
    assert np.isnan(norm[1:]).all()
    # Only the (0, 0) contact survives: 4 / 2**2 against 4.
    assert norm[0] == pytest.approx(2.0 * np.sqrt(0.25))
    # Input is left untouched
    assert vector[1] == 0.0


def test_mass_is_preserved(random_matrix):
    """Balanced contact mass equals raw mass over the surviving bins"""
    result = scale(random_matrix, np.ones(random_matrix.n_bins))
    norm = normalize_vector_by_scale_factor(result.vector, random_matrix)

    pixels = balanced_pixels(random_matrix, norm)
    kept = pixels["balanced"].notna()
    doubled = np.where(random_matrix.off_diagonal, 2.0, 1.0)[kept.to_numpy()]
    raw_mass = np.sum(pixels.loc[kept, "count"].to_numpy() * doubled)
    balanced_mass = np.sum(pixels.loc[kept, "balanced"].to_numpy() * doubled)
    assert balanced_mass == pytest.approx(raw_mass, rel=1e-9)


def test_global_factor_is_single(small_matrix):
    """Rescaling changes the inverted vector by one common factor"""
    result = scale(small_matrix, np.ones(3))
    norm = normalize_vector_by_scale_factor(result.vector, small_matrix)
    ratios = norm * result.vector
    assert_allclose(ratios, ratios[0])


def test_scale_to_vector_gives_flat_marginals(small_matrix):
    """Balanced row sums are equal once divided by the normalization vector"""
    result = scale_to_vector(small_matrix, np.ones(3))
    assert result.success
    inv = 1.0 / result.vector
    rows = inv * small_matrix.multiply(inv)
    assert_allclose(rows, rows.mean(), rtol=5e-3)
    assert rows.sum() == pytest.approx(small_matrix.total_mass())


def test_scale_to_vector_failure_passes_through():
    result = scale_to_vector([(0, 1, 3.0)], np.ones(2))
    assert not result.success
    assert result.vector is None


def test_no_surviving_contacts_warns(caplog):
    m = SparseSymmetricMatrix.from_records([(0, 1, 2.0)], 2)
    with caplog.at_level(logging.WARNING):
        norm = normalize_vector_by_scale_factor(np.array([2.0, np.nan]), m)
    assert norm[0] == pytest.approx(0.5)
    assert "vector left unscaled" in caplog.text


def test_balanced_pixels_nan_for_excluded_bins(small_matrix):
    pixels = balanced_pixels(small_matrix, np.array([1.0, 2.0, np.nan]))
    assert_allclose(pixels["balanced"].iloc[:3], [10.0, 2.5, 2.0])
    assert pixels["balanced"].iloc[3:].isna().all()
