#!/usr/bin/env python3
"""
rescale.py - Turn scaling vectors into normalization vectors.

A normalization vector divides the contacts: the balanced value of
contact (x, y) is ``count / (v[x] * v[y])``. It is the inverse of the
scaling vector, rescaled so the balanced map keeps the total contact mass
of the raw map over the bins that survived balancing.
"""

import logging
from typing import Any, Optional

import numpy as np
import pandas as pd

from .config import BalanceConfig
from .contacts import SparseSymmetricMatrix, as_contact_matrix
from .scaling import ScalingResult, scale

logger = logging.getLogger(__name__)


def normalize_vector_by_scale_factor(
    vector: Any,
    matrix: SparseSymmetricMatrix
) -> np.ndarray:
    """
    Invert a scaling vector and calibrate it to preserve contact mass.

    Off-diagonal contacts are counted twice in both mass sums and
    diagonal contacts once, matching upper-triangle storage.

    Parameters
    ----------
    vector : array-like
        Scaling vector; entries that are not positive become NaN.
    matrix : SparseSymmetricMatrix
        Contact matrix the vector was computed for.

    Returns
    -------
    np.ndarray
        Normalization vector (a new array).
    """
    norm = np.array(vector, dtype=np.float64)
    if norm.shape != (matrix.n_bins,):
        raise ValueError(
            f"Expected a vector of length {matrix.n_bins}, got shape {norm.shape}"
        )

    valid = norm > 0
    norm[~valid] = np.nan
    norm[valid] = 1.0 / norm[valid]

    x, y, counts = matrix.bin_x, matrix.bin_y, matrix.weights
    kept = ~np.isnan(norm[x]) & ~np.isnan(norm[y])
    multiplicity = np.where(matrix.off_diagonal[kept], 2.0, 1.0)
    counts = counts[kept]
    normalized = counts / (norm[x[kept]] * norm[y[kept]])

    normalized_sum_total = float(np.sum(normalized * multiplicity))
    sum_total = float(np.sum(counts * multiplicity))
    if sum_total == 0:
        logger.warning(
            "No contacts between normalized bins; vector left unscaled"
        )
        return norm

    scale_factor = np.sqrt(normalized_sum_total / sum_total)
    logger.debug(f"Normalization vector scale factor: {scale_factor:.6g}")
    return norm * scale_factor


def scale_to_vector(
    contacts: Any,
    target_initial: Any,
    key: str = "scale_to_vector",
    config: Optional[BalanceConfig] = None
) -> ScalingResult:
    """
    Balance `contacts` and return the mass-preserving normalization vector.

    Parameters
    ----------
    contacts : SparseSymmetricMatrix or compatible
        Contact matrix.
    target_initial : array-like
        Target row sums.
    key : str, optional
        Label used in log messages.
    config : BalanceConfig, optional
        Solver configuration.

    Returns
    -------
    ScalingResult
        Result whose vector, on success, is the normalization vector.
    """
    target_initial = np.asarray(target_initial, dtype=np.float64)
    matrix = as_contact_matrix(contacts, n_bins=len(target_initial))
    result = scale(matrix, target_initial, key=key, config=config)
    if result.success:
        result.vector = normalize_vector_by_scale_factor(result.vector, matrix)
    return result


def balanced_pixels(
    matrix: SparseSymmetricMatrix,
    norm_vector: Any
) -> pd.DataFrame:
    """
    Pixel table with a ``balanced`` column, ``count / (v[x] * v[y])``.

    Contacts touching a NaN bin get a NaN balanced value.
    """
    v = np.asarray(norm_vector, dtype=np.float64)
    if v.shape != (matrix.n_bins,):
        raise ValueError(
            f"Expected a vector of length {matrix.n_bins}, got shape {v.shape}"
        )
    pixels = matrix.to_pixels()
    pixels["balanced"] = (
        matrix.weights / (v[matrix.bin_x] * v[matrix.bin_y])
    )
    return pixels
