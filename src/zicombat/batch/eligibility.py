"""
Which features and batches have enough data for batch parameter estimation.

Under zero-inflation, exact zeros are structurally missing. A feature that is
non-zero in only one batch carries no information about batch differences,
and a batch represented by a single feature cannot support a pooled prior.
This module decides, once per run, which observations, feature × batch cells
and features every later stage is allowed to touch.

Eligibility rules (zero-inflation on), per feature:
    1. Zeros are unusable; the design is restricted to usable samples.
    2. A batch is estimable if it keeps at least one usable sample.
    3. The feature is eligible for its estimable batches only if
       (a) at least two batches are estimable,
       (b) the design restricted to (estimable batches + covariates) is full rank,
       (c) usable samples strictly outnumber restricted design columns.

Then, across features, batches with fewer than two eligible features are
dropped. Each feature that loses a batch also loses that batch's samples and
is checked against rules 3(a)-(c) again. This repeats until nothing changes,
so every surviving batch has at least two features and every surviving
feature at least two batches.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from zicombat.errors import ConfigurationError
from zicombat.stats.design_matrix import check_rank

logger = logging.getLogger(__name__)

__all__ = ['EligibilityIndex', 'construct_eligibility']


@dataclass(frozen=True)
class EligibilityIndex:
    """Co-indexed eligibility masks for one adjustment run.

    Attributes:
        usable: (n_features, n_samples) observations used for fitting.
        batch_estimable: (n_features, n_batch) cells with batch parameters.
        covariate_mask: (n_covariate_params,) covariate columns kept; always
            all True.
        feature_mask: (n_features,) features with any estimable batch.
    """

    usable: NDArray[np.bool_]
    batch_estimable: NDArray[np.bool_]
    covariate_mask: NDArray[np.bool_]
    feature_mask: NDArray[np.bool_]

    @property
    def n_features(self) -> int:
        return self.usable.shape[0]

    @property
    def n_batch(self) -> int:
        return self.batch_estimable.shape[1]

    @property
    def n_eligible_features(self) -> int:
        return int(self.feature_mask.sum())

    def design_columns(self, feature: int) -> NDArray[np.bool_]:
        """Design column mask for one feature: its estimable batches + covariates."""
        return np.concatenate([self.batch_estimable[feature], self.covariate_mask])

    def estimable_pairs(self) -> List[Tuple[int, int]]:
        """Sparse view: (feature, batch) index pairs that are estimable."""
        return [(int(f), int(b)) for f, b in np.argwhere(self.batch_estimable)]

    def features_per_batch(self) -> NDArray[np.int_]:
        return self.batch_estimable.sum(axis=0)


def _estimable_batches(
    sub_design: NDArray[np.float64],
    n_batch: int,
    covariate_mask: NDArray[np.bool_],
) -> NDArray[np.bool_]:
    """Batches one feature can be adjusted for, given its usable-sample design."""
    present = (sub_design[:, :n_batch] == 1).any(axis=0)
    restricted = sub_design[:, np.concatenate([present, covariate_mask])]

    if (
        present.sum() > 1
        and check_rank(restricted)
        and restricted.shape[0] > restricted.shape[1]
    ):
        return present
    return np.zeros(n_batch, dtype=bool)


def _prune(
    batch_estimable: NDArray[np.bool_],
    usable: NDArray[np.bool_],
    design: NDArray[np.float64],
    covariate_mask: NDArray[np.bool_],
) -> Tuple[NDArray[np.bool_], NDArray[np.bool_]]:
    """Drop sparse batches and re-check the affected features until stable."""
    n_batch = batch_estimable.shape[1]
    in_batch = design[:, :n_batch] == 1
    estimable = batch_estimable.copy()
    usable = usable.copy()

    while True:
        sparse = estimable.sum(axis=0) < 2
        changed = np.flatnonzero((estimable & sparse).any(axis=1))
        if len(changed) == 0:
            break
        estimable[:, sparse] = False
        for i in changed:
            usable[i] &= in_batch[:, estimable[i]].any(axis=1)
            estimable[i] = _estimable_batches(design[usable[i]], n_batch, covariate_mask)

    return estimable, usable


def construct_eligibility(
    feature_abd: NDArray[np.float64],
    n_batch: int,
    design: NDArray[np.float64],
    zero_inflation: bool,
    batch_levels: Optional[Sequence[str]] = None,
) -> EligibilityIndex:
    """
    Build the eligibility index for a run.

    Args:
        feature_abd: Original abundances (features × samples); zeros are
            recognised here, before any transform.
        n_batch: Number of batch levels (leading design columns).
        design: Full design (samples × params), batch columns first.
        zero_inflation: Treat zeros as unusable.
        batch_levels: Level names, only used for log messages.

    Returns:
        EligibilityIndex

    Raises:
        ConfigurationError: If no feature is eligible for any batch.
    """
    n_features, n_samples = feature_abd.shape
    if design.shape[0] != n_samples:
        raise ValueError(
            f"design rows ({design.shape[0]}) must match samples ({n_samples})"
        )
    batch_levels = list(batch_levels) if batch_levels is not None else [str(b) for b in range(n_batch)]

    usable = np.ones((n_features, n_samples), dtype=bool)
    batch_estimable = np.ones((n_features, n_batch), dtype=bool)
    covariate_mask = np.ones(design.shape[1] - n_batch, dtype=bool)

    if zero_inflation:
        usable = feature_abd != 0
        for i in range(n_features):
            batch_estimable[i] = _estimable_batches(design[usable[i]], n_batch, covariate_mask)

    candidate_batches = batch_estimable.any(axis=0)
    batch_estimable, pruned_usable = _prune(batch_estimable, usable, design, covariate_mask)

    for b in np.flatnonzero(candidate_batches & ~batch_estimable.any(axis=0)):
        logger.warning(f"Batch '{batch_levels[b]}' has fewer than two adjustable features "
                       f"and will not be adjusted")

    feature_mask = batch_estimable.any(axis=1)
    usable = np.where(feature_mask[:, None], pruned_usable, usable)
    if not feature_mask.any():
        raise ConfigurationError(
            "All features are single-batch-specific; batch correction is not possible!"
        )

    logger.info(f"{int(feature_mask.sum())}/{n_features} features eligible for batch adjustment "
                f"({int(batch_estimable.sum())} feature-batch cells)")

    return EligibilityIndex(
        usable=usable,
        batch_estimable=batch_estimable,
        covariate_mask=covariate_mask,
        feature_mask=feature_mask,
    )
