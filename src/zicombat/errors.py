"""
Exception taxonomy for batch adjustment.

Every error raised here is terminal for the run that triggered it: no partial
adjusted matrix is returned and nothing is retried. Numerically degenerate
sub-computations (zero variance, zero standard deviation, zero sum of squares)
are not errors; they are substituted locally where they occur.
"""

from __future__ import annotations

__all__ = [
    'BatchAdjustmentError',
    'ConfigurationError',
    'ConvergenceError',
    'InternalConsistencyError',
]


class BatchAdjustmentError(Exception):
    """Base class for all batch adjustment failures."""


class ConfigurationError(BatchAdjustmentError, ValueError):
    """
    Inputs or design cannot support a correction.

    Raised for rank-deficient designs, batch columns with fewer than two
    levels, misaligned samples, invalid abundance tables or control values,
    and tables where every feature is single-batch-specific.
    """


class ConvergenceError(BatchAdjustmentError, RuntimeError):
    """Per-batch shrinkage iteration exceeded the iteration cap."""

    def __init__(self, batch: str, maxit: int, change: float):
        self.batch = batch
        self.maxit = maxit
        self.change = change
        super().__init__(
            f"Shrinkage for batch '{batch}' did not converge within {maxit} "
            f"iterations (last relative change {change:.3g})"
        )


class InternalConsistencyError(BatchAdjustmentError, RuntimeError):
    """Eligibility bookkeeping disagrees with a downstream stage."""
