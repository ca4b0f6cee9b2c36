"""
hicscale - Balancing of sparse symmetric Hi-C contact matrices.

Computes per-bin scaling vectors so that the balanced contact map has
target row sums, with outlier bin exclusion and retries under relaxed
exclusion when balancing does not converge.
"""

import logging

from .balance import BalanceOutcome, FailureReason, scale_to_target_vector
from .batch import scale_many
from .config import BalanceConfig, ExclusionParams
from .contacts import ContactRecord, SparseSymmetricMatrix, as_contact_matrix
from .convergence import ConvergenceTracker
from .preprocess import PreparedTarget, prepare_target
from .rescale import balanced_pixels, normalize_vector_by_scale_factor, scale_to_vector
from .scaling import ScalingResult, launch_scaling_with_diff_tolerances, scale

__version__ = "0.1.0"

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

__all__ = [
    "BalanceConfig",
    "BalanceOutcome",
    "ContactRecord",
    "ConvergenceTracker",
    "ExclusionParams",
    "FailureReason",
    "PreparedTarget",
    "ScalingResult",
    "SparseSymmetricMatrix",
    "as_contact_matrix",
    "balanced_pixels",
    "launch_scaling_with_diff_tolerances",
    "normalize_vector_by_scale_factor",
    "prepare_target",
    "scale",
    "scale_many",
    "scale_to_target_vector",
    "scale_to_vector",
]
