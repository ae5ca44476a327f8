"""
Normalization and analysis-scale transforms for abundance tables.

Batch parameters are estimated on log2 relative abundances:

    x_analysis = log2(TSS(x) + pseudo_count)

Total-sum scaling (TSS) divides every sample by its total so that
sequencing depth does not masquerade as a batch effect. The pseudo-count keeps
zeros finite on the log scale; by default it is half the smallest non-zero
relative abundance in the table.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from zicombat.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = ['normalize_features', 'set_pseudo', 'transform_features']


def normalize_features(data: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Total-sum scale each sample (column) to sum to one.

    Samples whose total is zero are left as all zeros.

    Examples:
        >>> normalize_features(np.array([[1.0, 0.0], [3.0, 0.0]]))
        array([[0.25, 0.  ],
               [0.75, 0.  ]])
    """
    totals = data.sum(axis=0)
    safe_totals = np.where(totals == 0, 1.0, totals)
    return data / safe_totals[None, :]


def set_pseudo(data: NDArray[np.float64]) -> float:
    """
    Half the smallest non-zero value of a table.

    Raises:
        ConfigurationError: If the table has no non-zero values.
    """
    nonzero = data[data > 0]
    if nonzero.size == 0:
        raise ConfigurationError("All values in the feature table are zero!")
    return float(nonzero.min()) / 2


def transform_features(
    data: NDArray[np.float64],
    pseudo_count: Optional[float] = None,
) -> tuple[NDArray[np.float64], float]:
    """
    log2-transform a relative abundance table.

    Args:
        data: Non-negative relative abundances (features × samples).
        pseudo_count: Added before the log. None uses `set_pseudo(data)`.

    Returns:
        Tuple of (log2 table, pseudo-count actually used).
    """
    if pseudo_count is None:
        pseudo_count = set_pseudo(data)
        logger.info(f"Pseudo count is not specified and set to half of minimal non-zero value: "
                    f"{pseudo_count:.2e}")
    return np.log2(data + pseudo_count), pseudo_count
