"""
Per-feature location/scale standardization ahead of empirical Bayes fitting.

For each eligible feature, log abundances of its usable samples are regressed
on (estimable batch columns + covariates):

    beta       = (X'X)^-1 X'y
    grand_mean = mean(X_batch @ beta_batch)
    stand_mean = grand_mean + X_cov @ beta_cov
    var_pooled = var(y - X @ beta)
    y_stand    = (y - stand_mean) / sqrt(var_pooled)

Covariate effects are removed and the feature is brought to unit pooled
variance, while batch location differences remain for the shrinkage stage to
estimate. `stand_mean` and `var_pooled` are kept so the covariate effects can
be added back after correction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Tuple

import numpy as np
from numpy.typing import NDArray

from zicombat.batch.eligibility import EligibilityIndex
from zicombat.utils.parallel import parallel_map

logger = logging.getLogger(__name__)

__all__ = ['StandardizationFit', 'fit_stand_feature', 'standardize_feature']

# Pooled variances at or below this are treated as zero (R all.equal tolerance)
VAR_POOLED_TOLERANCE = 1.5e-8


@dataclass(frozen=True)
class StandardizationFit:
    """Standardization of one feature over its usable samples.

    Attributes:
        y_stand: Standardized values.
        stand_mean: Fitted mean without batch effects (grand mean + covariates).
        var_pooled: Residual variance pooled across batches.
    """

    y_stand: NDArray[np.float64]
    stand_mean: NDArray[np.float64]
    var_pooled: float


def standardize_feature(
    y: NDArray[np.float64],
    design: NDArray[np.float64],
    n_batch: int,
) -> StandardizationFit:
    """
    Centre one feature by its covariate-adjusted fit and scale to unit pooled variance.

    Args:
        y: Usable values of the feature.
        design: Design restricted to usable samples and the feature's columns,
            batch columns first.
        n_batch: Number of batch columns in `design`.
    """
    beta = np.linalg.solve(design.T @ design, design.T @ y)
    grand_mean = float(np.mean(design[:, :n_batch] @ beta[:n_batch]))

    var_pooled = float(np.var(y - design @ beta, ddof=1))
    if var_pooled <= VAR_POOLED_TOLERANCE:
        var_pooled = 1.0

    stand_mean = np.full(len(y), grand_mean)
    if design.shape[1] > n_batch:
        stand_mean = stand_mean + design[:, n_batch:] @ beta[n_batch:]

    y_stand = (y - stand_mean) / np.sqrt(var_pooled)
    return StandardizationFit(y_stand=y_stand, stand_mean=stand_mean, var_pooled=var_pooled)


def fit_stand_feature(
    log_data: NDArray[np.float64],
    design: NDArray[np.float64],
    eligibility: EligibilityIndex,
    n_jobs: int = 1,
) -> Tuple[NDArray[np.float64], Dict[int, StandardizationFit]]:
    """
    Standardize every eligible feature.

    Args:
        log_data: Analysis-scale abundances (features × samples).
        design: Full design, batch columns first.
        eligibility: Eligibility index for the run.
        n_jobs: Worker threads.

    Returns:
        Tuple of (standardized matrix, fits keyed by feature row). Ineligible
        features and unusable observations are copied through unchanged.
    """
    s_data = log_data.copy()
    features = np.flatnonzero(eligibility.feature_mask)

    def fit_one(i: int) -> StandardizationFit:
        rows = eligibility.usable[i]
        sub_design = design[np.ix_(rows, eligibility.design_columns(i))]
        return standardize_feature(
            log_data[i, rows],
            sub_design,
            n_batch=int(eligibility.batch_estimable[i].sum()),
        )

    fits: Dict[int, StandardizationFit] = {}
    for i, fit in zip(features, parallel_map(fit_one, features, n_jobs)):
        s_data[i, eligibility.usable[i]] = fit.y_stand
        fits[int(i)] = fit

    logger.debug(f"Standardized {len(fits)} features")
    return s_data, fits
