#!/usr/bin/env python3
"""
preprocess.py - Target clipping and bad-bin detection before balancing.

Bins are dropped from the fit when they have no self-contact, when their
target lies outside a percentile window of the positive targets, or when
their row sum lies outside a percentile window of the non-zero row sums.
"""

import logging
from dataclasses import dataclass
from typing import Any, Tuple

import numpy as np

from .config import ExclusionParams
from .contacts import SparseSymmetricMatrix

logger = logging.getLogger(__name__)


@dataclass
class PreparedTarget:
    """
    Inputs of one balancing attempt after outlier exclusion.

    Attributes
    ----------
    target : np.ndarray
        Target marginals. Bad bins carry the placeholder 1.0.
    bad : np.ndarray
        Bins reported as NaN in the output.
    excluded : np.ndarray
        Bins left out of the error metrics: the bad bins plus the bins
        whose target is zero.
    row_sums : np.ndarray
        Unscaled row sums, with zero-target bins left out of the product.
    """
    target: np.ndarray
    bad: np.ndarray
    excluded: np.ndarray
    row_sums: np.ndarray

    @property
    def n_fitted(self) -> int:
        return int(np.count_nonzero(~self.excluded))


def validate_target(target: Any, n_bins: int) -> np.ndarray:
    """
    Copy a target vector to a float array of length `n_bins`.

    Negative entries are set to 0 so that they are excluded like zeros.

    Raises
    ------
    TypeError
        If the target cannot be converted to a numpy array.
    ValueError
        If its length does not match `n_bins`.
    """
    try:
        target = np.array(target, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise TypeError(f"Cannot convert target vector to numpy array: {e}")

    if target.ndim != 1:
        raise ValueError(f"Expected a 1D target vector, got {target.ndim}D")
    if len(target) != n_bins:
        raise ValueError(
            f"Target vector length {len(target)} does not match the "
            f"{n_bins} bins of the contact matrix"
        )
    target[target < 0] = 0.0
    return target


def clip_target_outliers(
    target: np.ndarray,
    percent_z_vals_to_ignore: float
) -> np.ndarray:
    """
    Set positive targets outside a percentile window to NaN.

    The window is ``[pct, 1 - pct]`` over the sorted positive finite
    targets. Values outside it are removed, not clamped.

    Parameters
    ----------
    target : np.ndarray
        Target vector (not modified).
    percent_z_vals_to_ignore : float
        Fraction trimmed from each end.

    Returns
    -------
    np.ndarray
        Clipped copy of the target.
    """
    target = np.array(target, dtype=np.float64)
    zz = np.sort(target[np.isfinite(target) & (target > 0)])
    n = len(zz)
    if n == 0:
        return target

    lind = min(max(int(n * percent_z_vals_to_ignore + 0.5), 0), n - 1)
    hind = min(int(n * (1.0 - percent_z_vals_to_ignore) + 0.5), n - 1)
    low, high = zz[lind], zz[hind]

    outside = (target > 0) & ((target < low) | (target > high))
    target[outside] = np.nan
    return target


def find_bad_bins(
    row_sums: np.ndarray,
    target: np.ndarray,
    percent_low_row_sum_excluded: float,
    bad: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Mark bins whose row sum is an outlier, or whose target is NaN.

    Zero row sums are skipped when placing the window
    ``[pct, 1 - 0.1 * pct]`` over the sorted row sums. Newly marked bins
    get the neutral target 1.0.

    Parameters
    ----------
    row_sums : np.ndarray
        Unscaled row sums.
    target : np.ndarray
        Clipped target vector.
    percent_low_row_sum_excluded : float
        Fraction of the non-zero row sums trimmed from the low end.
    bad : np.ndarray
        Bins already known to be bad.

    Returns
    -------
    Tuple[np.ndarray, np.ndarray]
        Updated bad mask and target (both copies).
    """
    k = len(row_sums)
    r0 = np.sort(row_sums)
    n = int(np.count_nonzero(r0 == 0))

    lind = n - 1 + int((k - n) * percent_low_row_sum_excluded + 0.5)
    hind = n - 1 + int((k - n) * (1.0 - 0.1 * percent_low_row_sum_excluded) + 0.5)
    lind = max(lind, 0)
    hind = min(hind, k - 1)
    low, high = r0[lind], r0[hind]

    outlier = (
        ((row_sums < low) | (row_sums > high)) & (target > 0)
    ) | np.isnan(target)

    bad = bad | outlier
    target = target.copy()
    target[outlier] = 1.0
    return bad, target


def prepare_target(
    matrix: SparseSymmetricMatrix,
    target_initial: Any,
    params: ExclusionParams
) -> PreparedTarget:
    """
    Run the full exclusion pass for one balancing attempt.

    Parameters
    ----------
    matrix : SparseSymmetricMatrix
        Contact matrix.
    target_initial : array-like
        Caller-supplied target marginals.
    params : ExclusionParams
        Exclusion fractions of this attempt.

    Returns
    -------
    PreparedTarget
    """
    target = validate_target(target_initial, matrix.n_bins)
    target = clip_target_outliers(target, params.percent_z_vals_to_ignore)

    one = np.ones(matrix.n_bins)
    one[target == 0] = 0.0

    # A bin without self-contact cannot be balanced.
    bad = matrix.diagonal() == 0
    n_no_diagonal = int(np.count_nonzero(bad))

    row_sums = matrix.multiply(one)
    bad, target = find_bad_bins(
        row_sums, target, params.percent_low_row_sum_excluded, bad
    )
    excluded = bad | (target == 0)

    logger.debug(
        f"Excluded {int(np.count_nonzero(bad))} of {matrix.n_bins} bins "
        f"({n_no_diagonal} without self-contact), "
        f"{int(np.count_nonzero(excluded & ~bad))} with zero target"
    )
    return PreparedTarget(
        target=target, bad=bad, excluded=excluded, row_sums=row_sums
    )
