"""
Posterior shrinkage of batch location/scale parameters.

Each batch is solved independently by a fixed-point iteration that alternates
the posterior mean of the location and the posterior mode of the scale:

    gamma_new = (t2 n gamma_hat + delta_old gamma_bar) / (t2 n + delta_old)
    delta_new = (0.5 sum((x - gamma_new)^2) + b) / (n / 2 + a - 1)

with n the number of usable samples of the feature in the batch. Iteration
stops once the largest relative change of either parameter falls to `conv`.

References:
    - Johnson, Li & Rabinovic (2007) Biostatistics 8(1):118-127
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from zicombat.batch.eligibility import EligibilityIndex
from zicombat.batch.priors import EBParameters
from zicombat.config import AdjustBatchControl
from zicombat.errors import ConvergenceError
from zicombat.utils.parallel import parallel_map

logger = logging.getLogger(__name__)

__all__ = ['ShrunkParameters', 'fit_shrink', 'it_sol', 'postmean', 'postvar']


@dataclass(frozen=True)
class ShrunkParameters:
    """Posterior batch parameters.

    Attributes:
        gamma_star: (n_features, n_batch), NaN exactly where ineligible.
        delta_star: (n_features, n_batch), NaN exactly where ineligible.
        n_iterations: Iterations used per batch level (0 for skipped batches).
    """

    gamma_star: NDArray[np.float64]
    delta_star: NDArray[np.float64]
    n_iterations: Dict[str, int]


def postmean(g_hat, g_bar, n, d_star, t2):
    return (t2 * n * g_hat + d_star * g_bar) / (t2 * n + d_star)


def postvar(sum2, n, a, b):
    return (0.5 * sum2 + b) / (n / 2 + a - 1)


def _relative_change(new: NDArray[np.float64], old: NDArray[np.float64]) -> NDArray[np.float64]:
    # signed denominator, as in sva's it.sol
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.abs(new - old) / old


def it_sol(
    s_data: NDArray[np.float64],
    g_hat: NDArray[np.float64],
    d_hat: NDArray[np.float64],
    g_bar: float,
    t2: float,
    a: float,
    b: float,
    conv: float = 1e-4,
    maxit: int = 1000,
    batch: str = "",
) -> Tuple[NDArray[np.float64], NDArray[np.float64], int]:
    """
    Iteratively solve one batch's shrunk location and scale parameters.

    Args:
        s_data: (n_features, n_batch_samples) standardized values of the
            batch, NaN where unusable.
        g_hat, d_hat: Frequentist location and scale per feature.
        g_bar, t2: Location hyper-mean and hyper-variance.
        a, b: Inverse-gamma shape and scale.
        conv: Relative-change tolerance.
        maxit: Iteration cap.
        batch: Batch name for error messages.

    Returns:
        Tuple of (gamma_star, delta_star, iterations used).

    Raises:
        ConvergenceError: If more than `maxit` iterations are needed.
    """
    n = np.sum(~np.isnan(s_data), axis=1)
    g_old = g_hat.copy()
    d_old = d_hat.copy()
    g_new, d_new = g_old, d_old
    change = 1.0
    count = 0

    while change > conv:
        g_new = postmean(g_hat, g_bar, n, d_old, t2)
        sum2 = np.nansum((s_data - g_new[:, None]) ** 2, axis=1)
        # zero sum of squares carries no scale information; keep previous value
        d_new = np.where(sum2 == 0, d_old, postvar(sum2, n, a, b))

        changes = np.concatenate([_relative_change(g_new, g_old), _relative_change(d_new, d_old)])
        changes = changes[~np.isnan(changes)]
        change = float(changes.max()) if changes.size else 0.0

        g_old = g_new
        d_old = d_new
        count += 1
        if count > maxit:
            raise ConvergenceError(batch=batch, maxit=maxit, change=change)

    return g_new, d_new, count


def fit_shrink(
    s_data: NDArray[np.float64],
    params: EBParameters,
    batch_indicator: NDArray[np.bool_],
    eligibility: EligibilityIndex,
    control: AdjustBatchControl,
    batch_levels: Sequence[str],
) -> ShrunkParameters:
    """
    Shrink every batch's parameters towards its hyper-priors.

    Batches are independent and run on `control.n_jobs` threads; each returns
    its own vectors, which are scattered into the output matrices here.
    """
    n_features, n_batch = eligibility.batch_estimable.shape
    gamma_star = np.full((n_features, n_batch), np.nan)
    delta_star = np.full((n_features, n_batch), np.nan)
    n_iterations = {str(level): 0 for level in batch_levels}

    batches: List[int] = [int(b) for b in np.flatnonzero(eligibility.batch_estimable.any(axis=0))]

    def solve_one(k: int) -> Tuple[NDArray[np.float64], NDArray[np.float64], int]:
        features = np.flatnonzero(eligibility.batch_estimable[:, k])
        samples = batch_indicator[:, k]
        batch_data = s_data[np.ix_(features, samples)].copy()
        batch_data[~eligibility.usable[np.ix_(features, samples)]] = np.nan
        return it_sol(
            batch_data,
            g_hat=params.gamma_hat[features, k],
            d_hat=params.delta_hat[features, k],
            g_bar=params.gamma_bar[k],
            t2=params.t2[k],
            a=params.a_prior[k],
            b=params.b_prior[k],
            conv=control.conv,
            maxit=control.maxit,
            batch=str(batch_levels[k]),
        )

    for k, (g_star, d_star, count) in zip(batches, parallel_map(solve_one, batches, control.n_jobs)):
        features = eligibility.batch_estimable[:, k]
        gamma_star[features, k] = g_star
        delta_star[features, k] = d_star
        n_iterations[str(batch_levels[k])] = count
        logger.debug(f"Batch '{batch_levels[k]}' converged in {count} iterations")

    return ShrunkParameters(
        gamma_star=gamma_star,
        delta_star=delta_star,
        n_iterations=n_iterations,
    )
