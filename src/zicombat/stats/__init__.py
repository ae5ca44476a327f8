"""
Statistical building blocks for batch adjustment.

- Design matrices for batch and covariates, with rank checks
- Total-sum normalization and log2 transform of abundance tables
"""

from .design_matrix import (
    AdjustmentDesign,
    build_adjustment_design,
    check_batch,
    check_rank,
    construct_design,
)
from .normalization import (
    normalize_features,
    set_pseudo,
    transform_features,
)

__all__ = [
    "AdjustmentDesign",
    "build_adjustment_design",
    "check_batch",
    "check_rank",
    "construct_design",
    "normalize_features",
    "set_pseudo",
    "transform_features",
]
