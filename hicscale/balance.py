#!/usr/bin/env python3
"""
balance.py - Alternating row/column scaling of a symmetric contact matrix.

A single balancing attempt: bins are screened once, then row scales
``dr`` and column scales ``dc`` are updated in turn until the geometric
mean ``sqrt(dr * dc)`` stops changing. This is a Sinkhorn/RAS iteration
specialized to a symmetric matrix, in the spirit of the matrix balancing
of Knight & Ruiz (2013) and the SCALE vectors of Rao et al. (2014).

  Knight, P. A. & Ruiz, D. (2013). A fast algorithm for matrix balancing.
      IMA J. Numer. Anal., 33(3), 1029-1047.
      DOI: 10.1093/imanum/drs019
"""

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, Optional

import numpy as np

from .config import BalanceConfig, ExclusionParams
from .contacts import SparseSymmetricMatrix
from .convergence import ConvergenceTracker, max_abs_ignoring_nan
from .preprocess import prepare_target

logger = logging.getLogger(__name__)


class FailureReason(Enum):
    """Why balancing produced no vector."""
    NO_USABLE_BINS = auto()     # Every bin was excluded before iterating.
    STALLED = auto()            # Error stopped improving.
    MAX_ITERATIONS = auto()     # Iteration budget ran out.
    RETRIES_EXHAUSTED = auto()  # Every escalation failed.


@dataclass
class BalanceOutcome:
    """
    Result of a single balancing attempt.

    Attributes
    ----------
    params : ExclusionParams
        Exclusion fractions used by this attempt.
    vector : Optional[np.ndarray]
        Scaling vector with NaN at bad bins, or None if the attempt failed.
    converged : bool
        Whether both error criteria were met.
    iterations : int
        Iterations run.
    ber : float
        Change of the scaling vector in the last iteration.
    err : float
        Largest deviation of a balanced row sum from its target.
    n_bad : int
        Bins excluded as bad.
    reason : Optional[FailureReason]
        Failure reason, None on success.
    """
    params: ExclusionParams
    vector: Optional[np.ndarray]
    converged: bool
    iterations: int
    ber: float
    err: float
    n_bad: int
    reason: Optional[FailureReason] = None

    def summary(self) -> Dict[str, Any]:
        return {
            "percent_low_row_sum_excluded": self.params.percent_low_row_sum_excluded,
            "percent_z_vals_to_ignore": self.params.percent_z_vals_to_ignore,
            "converged": self.converged,
            "iterations": self.iterations,
            "ber": self.ber,
            "err": self.err,
            "n_bad": self.n_bad,
            "reason": self.reason.name if self.reason else None,
        }


def scale_to_target_vector(
    matrix: SparseSymmetricMatrix,
    target_initial: Any,
    params: ExclusionParams,
    config: Optional[BalanceConfig] = None
) -> BalanceOutcome:
    """
    Balance `matrix` so that its row sums approach `target_initial`.

    The returned vector ``s`` multiplies the matrix on both sides: the
    balanced row sum of bin ``p`` is ``sum_q A[p, q] * s[p] * s[q]``.

    Parameters
    ----------
    matrix : SparseSymmetricMatrix
        Contact matrix.
    target_initial : array-like
        Target row sums, one per bin.
    params : ExclusionParams
        Outlier exclusion fractions.
    config : BalanceConfig, optional
        Solver configuration.

    Returns
    -------
    BalanceOutcome
        Outcome carrying the vector on success.
    """
    config = config or BalanceConfig()
    prepared = prepare_target(matrix, target_initial, params)
    target = prepared.target
    bad = prepared.bad
    excluded = prepared.excluded
    n_bad = int(np.count_nonzero(bad))

    if prepared.n_fitted == 0:
        logger.debug("No bins left to balance")
        return BalanceOutcome(
            params=params, vector=None, converged=False, iterations=0,
            ber=np.nan, err=np.nan, n_bad=n_bad,
            reason=FailureReason.NO_USABLE_BINS
        )

    dr = 1.0 - bad.astype(np.float64)
    dc = dr.copy()
    row = prepared.row_sums.copy()
    current = np.sqrt(dr * dc)
    calculated = current
    tracker = ConvergenceTracker(config)

    # Bins the matrix cannot balance turn into inf/NaN and are skipped by
    # the error metrics.
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        while tracker.should_continue():
            row[excluded] = 1.0
            dr *= target / row

            col = matrix.multiply(dr) * dc
            col[excluded] = 1.0
            dc *= target / col

            row = matrix.multiply(dc) * dr

            calculated = np.sqrt(dr * dc)
            ber = max_abs_ignoring_nan(calculated - current, excluded)
            current = calculated
            tracker.update(ber)

        col = matrix.multiply(calculated)
        err = max_abs_ignoring_nan(col * calculated - target, excluded)

    converged = tracker.converged(err)
    logger.debug(
        f"Attempt {params}: {tracker.iterations} iterations, "
        f"ber={tracker.ber:.3g}, err={err:.3g}, converged={converged}"
    )
    if not converged:
        reason = (FailureReason.STALLED if tracker.stalled
                  else FailureReason.MAX_ITERATIONS)
        return BalanceOutcome(
            params=params, vector=None, converged=False,
            iterations=tracker.iterations, ber=tracker.ber, err=err,
            n_bad=n_bad, reason=reason
        )

    vector = calculated.copy()
    vector[bad] = np.nan
    return BalanceOutcome(
        params=params, vector=vector, converged=True,
        iterations=tracker.iterations, ber=tracker.ber, err=err,
        n_bad=n_bad
    )
