"""
zicombat - Zero-inflation-aware ComBat batch adjustment for abundance tables

Removes batch (study, run, cohort) effects from feature × sample count or
relative abundance tables with location/scale empirical Bayes shrinkage,
while keeping the effects of biological covariates.
"""

__version__ = "0.1.0"

from zicombat.batch.adjust import BatchAdjustment, BatchAdjustmentResult, adjust_batch, adjust_matrix
from zicombat.config import AdjustBatchControl, load_control
from zicombat.core.abundance import AbundanceMatrix
from zicombat.core.quality import QualityFlag
from zicombat.core.transform import Transform
from zicombat.errors import (
    BatchAdjustmentError,
    ConfigurationError,
    ConvergenceError,
    InternalConsistencyError,
)

__all__ = [
    "AbundanceMatrix",
    "AdjustBatchControl",
    "BatchAdjustment",
    "BatchAdjustmentError",
    "BatchAdjustmentResult",
    "ConfigurationError",
    "ConvergenceError",
    "InternalConsistencyError",
    "QualityFlag",
    "Transform",
    "adjust_batch",
    "adjust_matrix",
    "load_control",
]
