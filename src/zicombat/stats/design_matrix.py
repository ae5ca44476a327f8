"""
Batch and covariate design matrices for batch adjustment.

Design matrix structure:
    X = [batch_one_hot (one column per level) | covariate_columns]

The batch block has no intercept, so each batch level gets its own location
column. Covariates are treatment-coded with their intercept dropped; the
batch block already spans the constant. Categorical covariates are
dummy-coded by patsy; numeric covariates enter unchanged.

Batch adjustment is only defined when X has full column rank. A covariate
that is constant within batches, or perfectly collinear with another
covariate, makes batch and covariate effects inseparable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd
import patsy
from numpy.typing import NDArray

from zicombat.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    'AdjustmentDesign',
    'build_adjustment_design',
    'check_batch',
    'check_rank',
    'construct_design',
]


def construct_design(
    data: Optional[pd.DataFrame],
    with_intercept: bool = True,
) -> Optional[pd.DataFrame]:
    """
    Build a design matrix from every column of a metadata frame.

    Args:
        data: Metadata restricted to the model variables. None or a frame
            with no columns means "no variables".
        with_intercept: Include an intercept column. Without it, the first
            categorical variable is coded with one column per level.

    Returns:
        Design matrix as a DataFrame indexed like `data`, or None when there
        are no variables (distinct from a design with zero informative effect).

    Raises:
        ConfigurationError: If a variable has missing values or cannot be coded.

    Examples:
        >>> meta = pd.DataFrame({"study": ["a", "b", "a"]}, index=["s1", "s2", "s3"])
        >>> construct_design(meta, with_intercept=False).shape
        (3, 2)
    """
    if data is None or data.shape[1] == 0:
        return None

    formula = " + ".join(f"Q({col!r})" for col in data.columns)
    if not with_intercept:
        formula += " - 1"

    try:
        design = patsy.dmatrix(formula, data, NA_action="raise", return_type="dataframe")
    except patsy.PatsyError as e:
        raise ConfigurationError(
            f"Cannot build design from variables {list(data.columns)}: {e}"
        ) from e

    return design


def check_rank(design: Optional[pd.DataFrame | NDArray]) -> bool:
    """
    Whether a design matrix has full column rank.

    A missing or zero-column design is trivially full rank.
    """
    if design is None:
        return True
    X = np.asarray(design, dtype=np.float64)
    if X.ndim != 2 or X.shape[1] == 0:
        return True
    return int(np.linalg.matrix_rank(X)) == X.shape[1]


def check_batch(batch: pd.Series, min_n_batch: int = 2) -> pd.Series:
    """
    Coerce a batch variable to a categorical with only observed levels.

    Level order follows a pandas categorical's categories when given,
    otherwise the sorted unique values.

    Raises:
        ConfigurationError: If the variable has missing values or fewer than
            `min_n_batch` levels.
    """
    if batch.isna().any():
        raise ConfigurationError(
            f"Batch variable '{batch.name}' has {int(batch.isna().sum())} missing values!"
        )

    if isinstance(batch.dtype, pd.CategoricalDtype):
        batch = batch.cat.remove_unused_categories()
    else:
        batch = pd.Series(pd.Categorical(batch), index=batch.index, name=batch.name)

    n_levels = len(batch.cat.categories)
    if n_levels < min_n_batch:
        raise ConfigurationError(
            f"Batch variable '{batch.name}' has {n_levels} level(s); "
            f"at least {min_n_batch} are needed for batch adjustment."
        )
    return batch


@dataclass(frozen=True)
class AdjustmentDesign:
    """Complete design for a batch adjustment run.

    Attributes:
        X: Design matrix (n_samples, n_params), full column rank. Batch
            indicator columns come first.
        batch: Categorical batch label per sample.
        batch_levels: Batch levels in column order.
        col_names: Names for all columns.
        covariate_names: Names of the covariate columns.
    """

    X: NDArray[np.float64]
    batch: pd.Series
    batch_levels: List[str]
    col_names: List[str]
    covariate_names: List[str]

    @property
    def n_batch(self) -> int:
        return len(self.batch_levels)

    @property
    def n_covariate_params(self) -> int:
        return len(self.covariate_names)

    @property
    def n_params(self) -> int:
        return self.X.shape[1]

    @property
    def n_samples(self) -> int:
        return self.X.shape[0]

    @property
    def batch_indicator(self) -> NDArray[np.bool_]:
        """Boolean (n_samples, n_batch) membership matrix."""
        return self.X[:, :self.n_batch] == 1


def build_adjustment_design(
    sample_metadata: pd.DataFrame,
    batch: str,
    covariates: Optional[Sequence[str]] = None,
) -> AdjustmentDesign:
    """
    Build the batch + covariate design for a set of samples.

    Args:
        sample_metadata: One row per sample.
        batch: Name of the batch column (at least two levels).
        covariates: Names of covariate columns whose effects are preserved.

    Returns:
        AdjustmentDesign with batch columns first.

    Raises:
        ConfigurationError: If columns are missing, the batch has fewer than
            two levels, or the design is not full rank.
    """
    covariates = list(covariates or [])
    missing = [c for c in [batch] + covariates if c not in sample_metadata.columns]
    if missing:
        raise ConfigurationError(f"Variables not found in sample metadata: {missing}")
    if batch in covariates:
        raise ConfigurationError(f"Batch variable '{batch}' cannot also be a covariate")

    batch_var = check_batch(sample_metadata[batch])
    batch_levels = [str(level) for level in batch_var.cat.categories]

    batch_design = construct_design(batch_var.to_frame(name=batch), with_intercept=False)
    parts = [batch_design.to_numpy(dtype=np.float64)]
    covariate_names: List[str] = []

    covariate_frame = sample_metadata[covariates].copy()
    for col in covariate_frame.columns:
        if isinstance(covariate_frame[col].dtype, pd.CategoricalDtype):
            covariate_frame[col] = covariate_frame[col].cat.remove_unused_categories()

    covariate_design = construct_design(covariate_frame, with_intercept=True)
    if covariate_design is not None:
        covariate_design = covariate_design.drop(columns="Intercept")
        covariate_names = [str(c) for c in covariate_design.columns]
        parts.append(covariate_design.to_numpy(dtype=np.float64))

    X = np.hstack(parts)
    col_names = batch_levels + covariate_names

    if not check_rank(X):
        raise ConfigurationError(
            f"Covariates are confounded with batch! Design matrix is rank-deficient: "
            f"rank={np.linalg.matrix_rank(X)}, n_params={X.shape[1]}. Columns: {col_names}"
        )

    logger.info(f"Found {len(batch_levels)} batches: {batch_levels}")
    if covariates:
        logger.info(f"Adjusting for {len(covariates)} covariate(s) "
                    f"({len(covariate_names)} design columns): {covariates}")

    return AdjustmentDesign(
        X=X,
        batch=batch_var,
        batch_levels=batch_levels,
        col_names=col_names,
        covariate_names=covariate_names,
    )
