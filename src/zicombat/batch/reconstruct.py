"""
Apply shrunk batch parameters and return to the original abundance scale.

Three steps, in order:
    1. relocate_scale: remove each batch's shrunk location and scale from the
       standardized values of its samples.
    2. add_back_covariates: undo standardization, restoring covariate effects
       and the feature's grand mean.
    3. back_transform_abd: leave the log2 scale, put original zeros back,
       close each sample to one and rescale to its original total.
"""

from __future__ import annotations

import logging
from typing import Dict

import numpy as np
from numpy.typing import NDArray

from zicombat.batch.eligibility import EligibilityIndex
from zicombat.batch.shrinkage import ShrunkParameters
from zicombat.batch.standardize import StandardizationFit
from zicombat.errors import InternalConsistencyError
from zicombat.stats.normalization import normalize_features

logger = logging.getLogger(__name__)

__all__ = ['add_back_covariates', 'back_transform_abd', 'relocate_scale']


def relocate_scale(
    s_data: NDArray[np.float64],
    shrunk: ShrunkParameters,
    batch_indicator: NDArray[np.bool_],
    eligibility: EligibilityIndex,
) -> NDArray[np.float64]:
    """
    Remove shrunk batch location and scale: (value - gamma_star) / sqrt(delta_star).

    Only usable samples of eligible feature × batch cells are touched.

    Raises:
        InternalConsistencyError: If the cells holding shrunk parameters differ
            from the eligible cells.
    """
    defined = ~np.isnan(shrunk.gamma_star) & ~np.isnan(shrunk.delta_star)
    if not np.array_equal(defined, eligibility.batch_estimable):
        raise InternalConsistencyError(
            "Features determined to be eligible for batch estimation do not "
            "agree with the ones with valid per-batch shrunk parameters!"
        )

    adj_data = s_data.copy()
    for b in range(eligibility.n_batch):
        in_batch = batch_indicator[:, b]
        for i in np.flatnonzero(eligibility.batch_estimable[:, b]):
            samples = eligibility.usable[i] & in_batch
            adj_data[i, samples] = (
                (adj_data[i, samples] - shrunk.gamma_star[i, b])
                / np.sqrt(shrunk.delta_star[i, b])
            )
    return adj_data


def add_back_covariates(
    adj_data: NDArray[np.float64],
    fits: Dict[int, StandardizationFit],
    eligibility: EligibilityIndex,
) -> NDArray[np.float64]:
    """Rescale by pooled variance and add back the standardization mean."""
    adj_data = adj_data.copy()
    for i in np.flatnonzero(eligibility.feature_mask):
        fit = fits[int(i)]
        rows = eligibility.usable[i]
        adj_data[i, rows] = adj_data[i, rows] * np.sqrt(fit.var_pooled) + fit.stand_mean
    return adj_data


def back_transform_abd(
    adj_data: NDArray[np.float64],
    feature_abd: NDArray[np.float64],
    abundance_type: str,
) -> NDArray[np.float64]:
    """
    Map adjusted log2 values back to the scale of `feature_abd`.

    Zeros of the original table stay exactly zero and every sample keeps its
    original total. Count tables are rounded to integers.
    """
    result = np.power(2.0, adj_data)
    result[feature_abd == 0] = 0
    result = normalize_features(result) * feature_abd.sum(axis=0)[None, :]

    if abundance_type == "counts":
        result = np.round(result)

    return result
