"""
Quality flag system for tracking what batch adjustment did to each value.

Batch adjustment does not treat every cell alike. Under zero-inflation, exact
zeros are excluded from fitting and restored verbatim; features without enough
data in at least two batches are passed through; everything else is relocated
and rescaled. Flagging each value makes it possible to answer "which cells
were actually corrected?" after the fact.

Engineering Design:
    IntFlag enables efficient bitwise operations:
    - Multiple flags per value: STRUCTURAL_ZERO | NOT_ESTIMABLE
    - Fast bitwise checks: if flags & QualityFlag.BATCH_CORRECTED
    - Memory efficient: single int per value

Examples:
    >>> import numpy as np
    >>> from zicombat.core.quality import QualityFlag
    >>>
    >>> flags = np.array([0, 2, 4, 2], dtype=int)
    >>> n_corrected = np.sum(flags & QualityFlag.BATCH_CORRECTED != 0)
"""

from __future__ import annotations

from enum import IntFlag

__all__ = ['QualityFlag']


class QualityFlag(IntFlag):
    """
    Bitwise flags for per-value provenance in abundance matrices.

    Attributes:
        ORIGINAL: Untouched value (0)
        STRUCTURAL_ZERO: Zero treated as missing and excluded from fitting (1)
        BATCH_CORRECTED: Relocated and rescaled by shrunk batch parameters (2)
        NOT_ESTIMABLE: Feature had no estimable batch and was passed through (4)
    """

    ORIGINAL = 0
    """Untouched original value."""

    STRUCTURAL_ZERO = 1
    """
    Exact zero under zero-inflation.
    Excluded from location/scale fitting and forced back to zero on output.
    """

    BATCH_CORRECTED = 2
    """Batch location removed and scale equalised using shrunk parameters."""

    NOT_ESTIMABLE = 4
    """
    Feature lacked enough non-missing data in two or more batches.
    Only renormalisation touches these values.
    """
