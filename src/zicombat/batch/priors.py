"""
Frequentist batch parameters and their empirical Bayes hyper-priors.

For every eligible feature × batch cell, the standardized values of that
batch give a location estimate (mean, gamma_hat) and a scale estimate
(standard deviation, delta_hat). Pooling these across the features of a batch
gives the batch's hyper-parameters by the method of moments:

    gamma ~ Normal(gamma_bar, t2)
    delta ~ InverseGamma(a_prior, b_prior)

    a_prior = (2 s2 + m^2) / s2
    b_prior = (m s2 + m^3) / s2

where m and s2 are the mean and variance of delta_hat in the batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np
from numpy.typing import NDArray

from zicombat.batch.eligibility import EligibilityIndex
from zicombat.errors import InternalConsistencyError
from zicombat.utils.parallel import parallel_map

logger = logging.getLogger(__name__)

__all__ = ['EBParameters', 'aprior', 'bprior', 'fit_eb']


@dataclass(frozen=True)
class EBParameters:
    """Per-cell estimates and per-batch hyper-parameters.

    Attributes:
        gamma_hat: (n_features, n_batch) location estimates, NaN where ineligible.
        delta_hat: (n_features, n_batch) scale estimates, NaN where ineligible.
        gamma_bar: (n_batch,) hyper-mean of location.
        t2: (n_batch,) hyper-variance of location.
        a_prior: (n_batch,) inverse-gamma shape.
        b_prior: (n_batch,) inverse-gamma scale.

    Batches without eligible features carry NaN hyper-parameters.
    """

    gamma_hat: NDArray[np.float64]
    delta_hat: NDArray[np.float64]
    gamma_bar: NDArray[np.float64]
    t2: NDArray[np.float64]
    a_prior: NDArray[np.float64]
    b_prior: NDArray[np.float64]


def _moments(delta_hat: NDArray[np.float64]) -> Tuple[float, float]:
    m = float(np.mean(delta_hat))
    s2 = float(np.var(delta_hat, ddof=1))
    # a point-mass prior is degenerate
    if s2 == 0:
        s2 = 1.0
    return m, s2


def aprior(delta_hat: NDArray[np.float64]) -> float:
    """Inverse-gamma shape from scale estimates."""
    m, s2 = _moments(delta_hat)
    return (2 * s2 + m ** 2) / s2


def bprior(delta_hat: NDArray[np.float64]) -> float:
    """Inverse-gamma scale from scale estimates."""
    m, s2 = _moments(delta_hat)
    return (m * s2 + m ** 3) / s2


def _feature_estimates(
    values: NDArray[np.float64],
    membership: NDArray[np.bool_],
    batches: NDArray[np.int_],
) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Mean and standard deviation of one feature's values in each of `batches`."""
    gamma = np.empty(len(batches))
    delta = np.empty(len(batches))
    for k, b in enumerate(batches):
        x = values[membership[:, b]]
        gamma[k] = x.mean()
        sd = x.std(ddof=1) if len(x) > 1 else np.nan
        delta[k] = 1.0 if np.isnan(sd) or sd == 0 else sd
    return gamma, delta


def fit_eb(
    s_data: NDArray[np.float64],
    batch_indicator: NDArray[np.bool_],
    eligibility: EligibilityIndex,
    n_jobs: int = 1,
) -> EBParameters:
    """
    Estimate per-cell batch parameters and per-batch hyper-priors.

    Args:
        s_data: Standardized matrix from `fit_stand_feature`.
        batch_indicator: (n_samples, n_batch) batch membership.
        eligibility: Eligibility index for the run.
        n_jobs: Worker threads for the per-feature estimates.

    Raises:
        InternalConsistencyError: If a batch has exactly one feature with
            estimates, which eligibility construction should have excluded.
    """
    n_features, n_batch = eligibility.batch_estimable.shape
    gamma_hat = np.full((n_features, n_batch), np.nan)
    delta_hat = np.full((n_features, n_batch), np.nan)

    features = np.flatnonzero(eligibility.feature_mask)

    def estimate_one(i: int) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
        rows = eligibility.usable[i]
        return _feature_estimates(
            s_data[i, rows],
            batch_indicator[rows],
            np.flatnonzero(eligibility.batch_estimable[i]),
        )

    for i, (gamma, delta) in zip(features, parallel_map(estimate_one, features, n_jobs)):
        cells = eligibility.batch_estimable[i]
        gamma_hat[i, cells] = gamma
        delta_hat[i, cells] = delta

    n_valid = (~np.isnan(gamma_hat)).sum(axis=0)
    if np.any(n_valid == 1):
        raise InternalConsistencyError(
            "One batch has only one feature with valid parameter estimate! "
            f"Features per batch: {n_valid.tolist()}"
        )

    gamma_bar = np.full(n_batch, np.nan)
    t2 = np.full(n_batch, np.nan)
    a_prior = np.full(n_batch, np.nan)
    b_prior = np.full(n_batch, np.nan)
    for b in np.flatnonzero(n_valid >= 2):
        valid = ~np.isnan(gamma_hat[:, b])
        gamma_bar[b] = np.mean(gamma_hat[valid, b])
        t2[b] = np.var(gamma_hat[valid, b], ddof=1)
        a_prior[b] = aprior(delta_hat[valid, b])
        b_prior[b] = bprior(delta_hat[valid, b])

    return EBParameters(
        gamma_hat=gamma_hat,
        delta_hat=delta_hat,
        gamma_bar=gamma_bar,
        t2=t2,
        a_prior=a_prior,
        b_prior=b_prior,
    )
