#!/usr/bin/env python3
"""
convergence.py - Iteration error bookkeeping for the balancer.
"""

import logging
from typing import List

import numpy as np

from .config import BalanceConfig

logger = logging.getLogger(__name__)


def max_abs_ignoring_nan(values: np.ndarray, excluded: np.ndarray) -> float:
    """
    Largest absolute value over the non-excluded entries.

    NaN entries are skipped, and an empty selection gives 0.
    """
    vals = np.abs(values[~excluded])
    vals = vals[~np.isnan(vals)]
    if vals.size == 0:
        return 0.0
    return float(vals.max())


class ConvergenceTracker:
    """
    Track the per-iteration error of one balancing attempt.

    An iteration is stuck when its error did not drop below
    ``(1 - delta)`` times the previous one. Stuck iterations are only
    counted once ``num_trials_within_scaling_run + 1`` iterations have
    run, and the attempt stalls after that many consecutive stuck
    iterations.

    Parameters
    ----------
    config : BalanceConfig
        Solver configuration.
    """

    def __init__(self, config: BalanceConfig):
        self.tolerance = config.tolerance
        self.residual_tolerance = config.residual_tolerance
        self.max_iter = config.max_iter
        self.delta = config.delta
        self.num_trials = config.num_trials_within_scaling_run
        self.errors: List[float] = []
        self.stuck = 0
        self.stalled = False

    @property
    def iterations(self) -> int:
        return len(self.errors)

    @property
    def ber(self) -> float:
        """Error of the latest iteration."""
        if not self.errors:
            return 10.0 * (1.0 + self.tolerance)
        return self.errors[-1]

    def should_continue(self) -> bool:
        return not self.stalled and self.iterations < self.max_iter

    def update(self, ber: float) -> bool:
        """
        Record the error of a finished iteration.

        Returns
        -------
        bool
            True if the attempt should keep iterating.
        """
        self.errors.append(ber)
        if self.iterations >= self.num_trials + 2:
            if ber > (1.0 - self.delta) * self.errors[-2]:
                self.stuck += 1
            else:
                self.stuck = 0
            if self.stuck >= self.num_trials:
                self.stalled = True
                logger.debug(
                    f"Stalled after {self.iterations} iterations "
                    f"(error {ber:.3g})"
                )
        return self.should_continue()

    def converged(self, err: float) -> bool:
        """Check the last iteration error and the final residual `err`."""
        return self.ber <= self.tolerance and err <= self.residual_tolerance
