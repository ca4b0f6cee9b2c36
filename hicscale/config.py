#!/usr/bin/env python3
"""
config.py - Configuration for sparse matrix balancing.

Default constants are those of the SCALE normalization vectors published
with the Rao et al. (2014) maps:

  Rao, S. S. et al. (2014). A 3D map of the human genome at kilobase
      resolution reveals principles of chromatin looping.
      Cell, 159(7), 1665-1680.
      DOI: 10.1016/j.cell.2014.11.021
"""

from dataclasses import dataclass, field, replace


@dataclass(frozen=True)
class ExclusionParams:
    """
    Outlier exclusion fractions for a single balancing attempt.

    Attributes
    ----------
    percent_low_row_sum_excluded : float
        Fraction of non-zero row sums trimmed from the low end (and a tenth
        of that from the high end).
    percent_z_vals_to_ignore : float
        Fraction of positive target values clipped from each end.
    """
    percent_low_row_sum_excluded: float = 0.0
    percent_z_vals_to_ignore: float = 0.0

    def __post_init__(self):
        for name in ("percent_low_row_sum_excluded", "percent_z_vals_to_ignore"):
            value = getattr(self, name)
            if not 0.0 <= value < 1.0:
                raise ValueError(
                    f"{name} must be in [0, 1) (received {value})"
                )

    def escalate(self, factor: float) -> "ExclusionParams":
        """Return both fractions multiplied by `factor`."""
        return ExclusionParams(
            percent_low_row_sum_excluded=self.percent_low_row_sum_excluded * factor,
            percent_z_vals_to_ignore=self.percent_z_vals_to_ignore * factor,
        )

    @property
    def is_zero(self) -> bool:
        return (self.percent_low_row_sum_excluded == 0
                and self.percent_z_vals_to_ignore == 0)


@dataclass
class BalanceConfig:
    """
    Configure the balancing solver and its retry ladder.

    Attributes
    ----------
    tolerance : float
        Largest change of the scaling vector between two iterations that
        counts as converged. The final residual must be below 5x this.
    max_iter : int
        Maximum iterations of a single attempt.
    delta : float
        Relative improvement of the iteration error below which an
        iteration counts as stuck.
    max_overall_attempts : int
        Escalations tried after a failed attempt, per exclusion ladder.
    num_trials_within_scaling_run : int
        Consecutive stuck iterations that abort an attempt.
    escalation_factor : float
        Multiplier applied to both exclusion fractions on each escalation.
    initial_exclusions : ExclusionParams
        Exclusion fractions of the first ladder.
    fallback_exclusions : ExclusionParams
        Exclusion fractions of the second ladder, used when the first fails.
    verbose : bool
        Log escalations and convergence failures.
    """
    tolerance: float = 5e-4
    max_iter: int = 300
    delta: float = 1e-2
    max_overall_attempts: int = 3
    num_trials_within_scaling_run: int = 5
    escalation_factor: float = 1.5
    initial_exclusions: ExclusionParams = field(default_factory=ExclusionParams)
    fallback_exclusions: ExclusionParams = field(
        default_factory=lambda: ExclusionParams(0.01, 0.0025)
    )
    verbose: bool = False

    def __post_init__(self):
        if self.tolerance <= 0:
            raise ValueError(
                f"Tolerance must be positive (received {self.tolerance})"
            )
        if self.max_iter <= 0:
            raise ValueError(
                f"Max iterations must be positive (received {self.max_iter})"
            )
        if not 0.0 < self.delta < 1.0:
            raise ValueError(
                f"Delta must be in (0, 1) (received {self.delta})"
            )
        if self.max_overall_attempts < 0:
            raise ValueError(
                f"Max overall attempts must be non-negative (received "
                f"{self.max_overall_attempts})"
            )
        if self.num_trials_within_scaling_run <= 0:
            raise ValueError(
                f"Trials within a scaling run must be positive (received "
                f"{self.num_trials_within_scaling_run})"
            )
        if self.escalation_factor <= 1.0:
            raise ValueError(
                f"Escalation factor must be greater than 1 (received "
                f"{self.escalation_factor})"
            )
        for start in (self.initial_exclusions, self.fallback_exclusions):
            self.check_ladder(start)

    def check_ladder(self, start: ExclusionParams) -> None:
        """
        Check that every escalation of a ladder starting at `start` stays
        a valid fraction.

        Raises
        ------
        ValueError
            If the last escalation reaches 1 or more.
        """
        growth = self.escalation_factor ** self.max_overall_attempts
        top = max(start.percent_low_row_sum_excluded,
                  start.percent_z_vals_to_ignore) * growth
        if top >= 1.0:
            raise ValueError(
                f"Exclusion fractions {start} reach {top:.3g} after "
                f"{self.max_overall_attempts} escalations"
            )

    @property
    def residual_tolerance(self) -> float:
        return 5.0 * self.tolerance

    @classmethod
    def strict(cls, **kwargs):
        """Tighter tolerance and a longer iteration budget."""
        return cls(tolerance=1e-5, max_iter=1000, **kwargs)

    @classmethod
    def relaxed(cls, **kwargs):
        """Start excluding outliers right away, for noisy or sparse maps."""
        return cls(
            initial_exclusions=ExclusionParams(0.01, 0.0025),
            fallback_exclusions=ExclusionParams(0.05, 0.01),
            **kwargs
        )

    def with_verbose(self, verbose: bool = True) -> "BalanceConfig":
        return replace(self, verbose=verbose)
