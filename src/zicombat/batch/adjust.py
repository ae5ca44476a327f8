"""
Zero-inflation-aware empirical Bayes batch adjustment.

Pipeline (one run, no state kept between runs):

    1. Design:        batch one-hot + covariates, full rank
    2. Transform:     log2(TSS(x) + pseudo_count)
    3. Eligibility:   usable observations, estimable feature × batch cells
    4. Standardize:   per-feature OLS, remove covariates, unit pooled variance
    5. Priors:        gamma_hat/delta_hat per cell, hyper-priors per batch
    6. Shrinkage:     per-batch fixed-point posterior estimates
    7. Reconstruct:   relocate/scale, add back covariates, back-transform

Examples:
    >>> from zicombat import adjust_batch
    >>> result = adjust_batch(
    ...     feature_abd=profiles,          # features × samples
    ...     batch="study",
    ...     covariates=["disease"],
    ...     data=sample_metadata,          # samples × variables
    ...     control={"zero_inflation": True},
    ... )
    >>> adjusted = result.feature_abd_adj
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from zicombat.batch.eligibility import EligibilityIndex, construct_eligibility
from zicombat.batch.priors import fit_eb
from zicombat.batch.reconstruct import add_back_covariates, back_transform_abd, relocate_scale
from zicombat.batch.shrinkage import fit_shrink
from zicombat.batch.standardize import fit_stand_feature
from zicombat.config import AdjustBatchControl
from zicombat.core.abundance import AbundanceMatrix, check_abundance_values, infer_abundance_type
from zicombat.core.quality import QualityFlag
from zicombat.core.transform import Transform
from zicombat.errors import ConfigurationError
from zicombat.stats.design_matrix import build_adjustment_design
from zicombat.stats.normalization import normalize_features, transform_features

logger = logging.getLogger(__name__)

__all__ = ['BatchAdjustment', 'BatchAdjustmentResult', 'adjust_batch', 'adjust_matrix']

ControlLike = Union[AdjustBatchControl, Dict[str, Any], None]


@dataclass(frozen=True)
class BatchAdjustmentResult:
    """Adjusted table plus the intermediate parameters for diagnostics.

    Attributes:
        matrix: Adjusted AbundanceMatrix (same labels as input) with quality flags.
        gamma_hat, delta_hat: Frequentist location/scale, features × batch
            levels, NaN for ineligible cells.
        gamma_star, delta_star: Shrunk location/scale, same shape and NaN pattern.
        priors: Per batch level: gamma_bar, t2, a_prior, b_prior,
            n_features, n_iterations.
        eligibility: Eligibility index of the run.
        abundance_type: "counts" or "proportions".
        pseudo_count: Pseudo-count used for the log transform.
        control: Control parameters of the run.
    """

    matrix: AbundanceMatrix
    gamma_hat: pd.DataFrame
    delta_hat: pd.DataFrame
    gamma_star: pd.DataFrame
    delta_star: pd.DataFrame
    priors: pd.DataFrame
    eligibility: EligibilityIndex
    abundance_type: str
    pseudo_count: float
    control: AdjustBatchControl

    @property
    def feature_abd_adj(self) -> pd.DataFrame:
        """Adjusted abundances as a features × samples DataFrame."""
        return self.matrix.to_frame()

    @property
    def n_iterations(self) -> Dict[str, int]:
        return {str(k): int(v) for k, v in self.priors["n_iterations"].items()}


def _resolve_control(control: ControlLike) -> AdjustBatchControl:
    if control is None:
        return AdjustBatchControl()
    if isinstance(control, AdjustBatchControl):
        return control
    if isinstance(control, dict):
        return AdjustBatchControl.from_dict(control)
    raise ConfigurationError(f"control must be AdjustBatchControl or dict, got {type(control)}")


def _resolve_abundance_type(data: np.ndarray, requested: str) -> str:
    if requested == "auto":
        return infer_abundance_type(data)
    check_abundance_values(data)
    return requested


def _quality_flags(
    matrix: AbundanceMatrix,
    eligibility: EligibilityIndex,
    batch_indicator: np.ndarray,
    zero_inflation: bool,
) -> np.ndarray:
    flags = matrix.quality_flags.copy()
    in_adjusted_batch = (
        eligibility.batch_estimable.astype(int) @ batch_indicator.T.astype(int)
    ) > 0
    flags[in_adjusted_batch & eligibility.usable] |= QualityFlag.BATCH_CORRECTED
    flags[~eligibility.feature_mask, :] |= QualityFlag.NOT_ESTIMABLE
    if zero_inflation:
        flags[matrix.data == 0] |= QualityFlag.STRUCTURAL_ZERO
    return flags


def adjust_matrix(
    matrix: AbundanceMatrix,
    batch: str,
    covariates: Optional[Sequence[str]] = None,
    control: ControlLike = None,
) -> BatchAdjustmentResult:
    """
    Remove batch effects from an AbundanceMatrix, keeping covariate effects.

    Args:
        matrix: Abundances with sample metadata holding `batch` and `covariates`.
        batch: Batch column name (at least two levels).
        covariates: Covariate column names whose effects are preserved.
        control: AdjustBatchControl or a dict of its fields.

    Returns:
        BatchAdjustmentResult

    Raises:
        ConfigurationError: Invalid inputs, rank-deficient design, or no
            eligible feature.
        ConvergenceError: Shrinkage did not converge within `maxit`.
        InternalConsistencyError: Eligibility bookkeeping disagreement.
    """
    control = _resolve_control(control)
    covariates = list(covariates or [])

    design = build_adjustment_design(matrix.sample_metadata, batch, covariates)
    abundance_type = _resolve_abundance_type(matrix.data, control.abundance_type)
    logger.info(f"Adjusting {matrix.n_features} features × {matrix.n_samples} samples "
                f"({abundance_type}), zero_inflation={control.zero_inflation}")

    feature_abd = matrix.data
    log_data, pseudo_count = transform_features(
        normalize_features(feature_abd), pseudo_count=control.pseudo_count
    )

    eligibility = construct_eligibility(
        feature_abd,
        n_batch=design.n_batch,
        design=design.X,
        zero_inflation=control.zero_inflation,
        batch_levels=design.batch_levels,
    )
    batch_indicator = design.batch_indicator

    s_data, fits = fit_stand_feature(log_data, design.X, eligibility, n_jobs=control.n_jobs)
    params = fit_eb(s_data, batch_indicator, eligibility, n_jobs=control.n_jobs)
    shrunk = fit_shrink(s_data, params, batch_indicator, eligibility, control, design.batch_levels)

    adj_data = relocate_scale(s_data, shrunk, batch_indicator, eligibility)
    adj_data = add_back_covariates(adj_data, fits, eligibility)
    adjusted = back_transform_abd(adj_data, feature_abd, abundance_type)

    logger.info(f"Batch adjustment complete; iterations per batch: {shrunk.n_iterations}")

    levels: List[str] = design.batch_levels

    def _frame(values: np.ndarray) -> pd.DataFrame:
        return pd.DataFrame(values, index=matrix.feature_ids, columns=levels)

    priors = pd.DataFrame(
        {
            "gamma_bar": params.gamma_bar,
            "t2": params.t2,
            "a_prior": params.a_prior,
            "b_prior": params.b_prior,
            "n_features": eligibility.features_per_batch(),
            "n_iterations": [shrunk.n_iterations[level] for level in levels],
        },
        index=pd.Index(levels, name=batch),
    )

    return BatchAdjustmentResult(
        matrix=matrix.with_data(
            adjusted,
            quality_flags=_quality_flags(matrix, eligibility, batch_indicator, control.zero_inflation),
        ),
        gamma_hat=_frame(params.gamma_hat),
        delta_hat=_frame(params.delta_hat),
        gamma_star=_frame(shrunk.gamma_star),
        delta_star=_frame(shrunk.delta_star),
        priors=priors,
        eligibility=eligibility,
        abundance_type=abundance_type,
        pseudo_count=pseudo_count,
        control=control,
    )


def adjust_batch(
    feature_abd: pd.DataFrame,
    batch: str,
    covariates: Optional[Sequence[str]] = None,
    data: Optional[pd.DataFrame] = None,
    control: ControlLike = None,
) -> BatchAdjustmentResult:
    """
    Remove batch effects from a features × samples table.

    Args:
        feature_abd: Non-negative counts or proportions, features × samples.
        batch: Batch column of `data`.
        covariates: Covariate columns of `data` whose effects are preserved.
        data: Sample metadata; its index must hold the same sample names as
            the columns of `feature_abd`, in any order.
        control: AdjustBatchControl or a dict of its fields.

    Returns:
        BatchAdjustmentResult; `feature_abd_adj` has the labels of `feature_abd`.
    """
    if data is None:
        raise ConfigurationError("Sample metadata (data) is required for batch adjustment")
    matrix = AbundanceMatrix.from_frames(feature_abd, data)
    return adjust_matrix(matrix, batch=batch, covariates=covariates, control=control)


class BatchAdjustment(Transform):
    """
    Batch adjustment as a composable matrix transform.

    Examples:
        >>> transform = BatchAdjustment(batch="study", covariates=["disease"])
        >>> errors = transform.validate(matrix)
        >>> if not errors:
        ...     adjusted = transform.apply(matrix)
    """

    def __init__(
        self,
        batch: str,
        covariates: Optional[Sequence[str]] = None,
        control: ControlLike = None,
    ):
        self.batch = batch
        self.covariates = list(covariates or [])
        self.control = _resolve_control(control)
        super().__init__(
            name="BatchAdjustment",
            params={
                "batch": batch,
                "covariates": self.covariates,
                **self.control.to_dict(),
            },
        )

    def validate(self, matrix: AbundanceMatrix) -> list[str]:
        errors = super().validate(matrix)

        missing = [c for c in [self.batch] + self.covariates
                   if c not in matrix.sample_metadata.columns]
        if missing:
            errors.append(f"Variables not found in sample metadata: {missing}")
        elif matrix.sample_metadata[self.batch].nunique(dropna=True) < 2:
            errors.append(f"Batch variable '{self.batch}' needs at least two levels")

        if np.any(np.isnan(matrix.data)):
            errors.append("Matrix contains missing values")
        elif np.any(matrix.data < 0):
            errors.append("Matrix contains negative values")

        return errors

    def adjust(self, matrix: AbundanceMatrix) -> BatchAdjustmentResult:
        """Full result, including intermediate parameters."""
        return adjust_matrix(matrix, self.batch, self.covariates, self.control)

    def apply(self, matrix: AbundanceMatrix) -> AbundanceMatrix:
        return self.adjust(matrix).matrix
