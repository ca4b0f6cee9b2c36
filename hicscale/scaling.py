#!/usr/bin/env python3
"""
scaling.py - Balancing with retries under relaxed outlier exclusion.

A failed attempt is retried with both exclusion fractions multiplied by
``escalation_factor``, up to ``max_overall_attempts`` times. If the ladder
that starts without any exclusion fails, a second ladder starts from the
fallback fractions. Failure is reported as a value, never raised.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

import numpy as np
import pandas as pd

from .balance import BalanceOutcome, FailureReason, scale_to_target_vector
from .config import BalanceConfig, ExclusionParams
from .contacts import SparseSymmetricMatrix, as_contact_matrix

logger = logging.getLogger(__name__)


@dataclass
class ScalingResult:
    """
    Outcome of ``scale``.

    Attributes
    ----------
    key : str
        Label of the balanced input, for diagnostics.
    vector : Optional[np.ndarray]
        Scaling vector with NaN at excluded bins, None on failure.
    reason : Optional[FailureReason]
        Why no vector was produced, None on success.
    attempts : List[BalanceOutcome]
        Every attempt made, in order.
    """
    key: str
    vector: Optional[np.ndarray] = None
    reason: Optional[FailureReason] = None
    attempts: List[BalanceOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.vector is not None

    def to_frame(self) -> pd.DataFrame:
        """One row per attempt."""
        frame = pd.DataFrame([a.summary() for a in self.attempts])
        frame.insert(0, "key", self.key)
        return frame


def launch_scaling_with_diff_tolerances(
    matrix: SparseSymmetricMatrix,
    target_initial: Any,
    initial_params: ExclusionParams,
    key: str = "",
    config: Optional[BalanceConfig] = None
) -> List[BalanceOutcome]:
    """
    Run one escalation ladder starting from `initial_params`.

    Stops at the first converged attempt. A ladder starting from zero
    fractions is not escalated, since scaling zero changes nothing and
    the solver is deterministic.

    Parameters
    ----------
    matrix : SparseSymmetricMatrix
        Contact matrix.
    target_initial : array-like
        Target row sums.
    initial_params : ExclusionParams
        Exclusion fractions of the first attempt.
    key : str, optional
        Label used in log messages.
    config : BalanceConfig, optional
        Solver configuration.

    Returns
    -------
    List[BalanceOutcome]
        All attempts of the ladder; the last one tells whether it succeeded.

    Raises
    ------
    ValueError
        If escalating `initial_params` would leave ``[0, 1)``. Checked
        before any attempt runs.
    """
    config = config or BalanceConfig()
    config.check_ladder(initial_params)
    params = initial_params
    outcomes = [scale_to_target_vector(matrix, target_initial, params, config)]

    count = 0
    while not outcomes[-1].converged and count < config.max_overall_attempts:
        count += 1
        if params.is_zero:
            if config.verbose:
                logger.info(f"Did not converge for {key}")
                logger.info(
                    "Exclusion fractions are zero; escalating would repeat "
                    "the same attempt"
                )
            break
        if outcomes[-1].reason is FailureReason.NO_USABLE_BINS:
            # More exclusion cannot bring bins back.
            break

        params = params.escalate(config.escalation_factor)
        if config.verbose:
            logger.info(f"Did not converge for {key}")
            logger.info(
                f"New percent_low_row_sum_excluded = "
                f"{params.percent_low_row_sum_excluded} and new "
                f"percent_z_vals_to_ignore = {params.percent_z_vals_to_ignore}"
            )
        outcomes.append(
            scale_to_target_vector(matrix, target_initial, params, config)
        )

    if not outcomes[-1].converged and config.verbose:
        logger.warning(
            f"Scaling result still missing for {key}; vector did not converge "
            f"({outcomes[-1].reason.name})"
        )
    return outcomes


def scale(
    contacts: Any,
    target_initial: Any,
    key: str = "",
    config: Optional[BalanceConfig] = None
) -> ScalingResult:
    """
    Compute a scaling vector that balances `contacts` to `target_initial`.

    Parameters
    ----------
    contacts : SparseSymmetricMatrix or compatible
        Contact matrix, or anything ``as_contact_matrix`` accepts.
    target_initial : array-like
        Target row sums; all ones for uniform balancing.
    key : str, optional
        Label of the input (chromosome, resolution), used only in logs.
    config : BalanceConfig, optional
        Solver configuration.

    Returns
    -------
    ScalingResult
        Result holding the vector, or the failure reason.
    """
    config = config or BalanceConfig()
    target_initial = np.asarray(target_initial, dtype=np.float64)
    if target_initial.ndim != 1:
        raise ValueError(
            f"Expected a 1D target vector, got {target_initial.ndim}D"
        )
    matrix = as_contact_matrix(contacts, n_bins=len(target_initial))

    outcomes = launch_scaling_with_diff_tolerances(
        matrix, target_initial, config.initial_exclusions, key, config
    )
    if not outcomes[-1].converged:
        outcomes += launch_scaling_with_diff_tolerances(
            matrix, target_initial, config.fallback_exclusions, key, config
        )

    last = outcomes[-1]
    if last.converged:
        logger.debug(
            f"Balanced {key} after {len(outcomes)} attempt(s) "
            f"({last.n_bad} bad bins)"
        )
        return ScalingResult(key=key, vector=last.vector, attempts=outcomes)
    return ScalingResult(
        key=key, reason=FailureReason.RETRIES_EXHAUSTED, attempts=outcomes
    )
