"""
Core data structure for feature-by-sample abundance tables.

AbundanceMatrix couples a numeric table (counts or relative abundances) with
the sample metadata that batch adjustment needs (batch labels, covariates) and
a per-value provenance matrix.

Biological Context:
    Microbial community profiles and similar compositional tables are:
    - Rows = features (taxa, genes, pathways)
    - Columns = samples (subjects, time points, studies)
    - Values = non-negative counts or proportions, frequently zero

    Batch adjustment needs the metadata of every sample, aligned exactly to
    the columns of the table, and must return a table with identical labels.

Engineering Design:
    - Immutable: Operations return new instances
    - NumPy arrays for data, Pandas for labels and metadata
    - Validated: Constructor checks shape consistency

Examples:
    >>> import pandas as pd
    >>> from zicombat.core.abundance import AbundanceMatrix
    >>>
    >>> table = pd.DataFrame({"s1": [3, 0], "s2": [1, 5]}, index=["taxonA", "taxonB"])
    >>> metadata = pd.DataFrame({"study": ["x", "y"]}, index=["s2", "s1"])
    >>> matrix = AbundanceMatrix.from_frames(table, metadata)
    >>> list(matrix.sample_metadata.index)
    ['s1', 's2']
"""

from __future__ import annotations

from typing import Optional

import numpy as np
import pandas as pd

from zicombat.core.quality import QualityFlag
from zicombat.errors import ConfigurationError

__all__ = ['AbundanceMatrix', 'check_abundance_values', 'infer_abundance_type']


def check_abundance_values(data: np.ndarray) -> None:
    """Reject tables with missing or negative values."""
    if np.any(np.isnan(data)):
        raise ConfigurationError("Found missing values in the feature table!")
    if np.any(data < 0):
        raise ConfigurationError("Found negative values in the feature table!")


def infer_abundance_type(data: np.ndarray) -> str:
    """
    Decide whether a table holds counts or proportions.

    All-integer tables are counts; otherwise every value must be at most 1.

    Raises:
        ConfigurationError: If values are missing, negative, or neither
            integers nor proportions.
    """
    check_abundance_values(data)
    if np.all(data == np.floor(data)):
        return "counts"
    if np.all(data <= 1):
        return "proportions"
    raise ConfigurationError(
        "Feature table does not appear to be either proportions or counts!"
    )


class AbundanceMatrix:
    """
    Immutable container for abundance table + sample metadata + quality flags.

    Attributes:
        data: Numeric abundance matrix (features × samples)
        feature_ids: Row identifiers
        sample_ids: Column identifiers
        sample_metadata: Per-sample annotations (batch, covariates)
        quality_flags: Per-value provenance (QualityFlag bits)

    Shape Invariants:
        - data.shape[0] == len(feature_ids)
        - data.shape[1] == len(sample_ids)
        - quality_flags.shape == data.shape
        - sample_metadata.index equals sample_ids
    """

    def __init__(
        self,
        data: np.ndarray,
        feature_ids: pd.Index,
        sample_ids: pd.Index,
        sample_metadata: pd.DataFrame,
        quality_flags: Optional[np.ndarray] = None,
    ):
        if not isinstance(data, np.ndarray):
            raise TypeError(f"data must be np.ndarray, got {type(data)}")
        if not isinstance(feature_ids, pd.Index):
            raise TypeError(f"feature_ids must be pd.Index, got {type(feature_ids)}")
        if not isinstance(sample_ids, pd.Index):
            raise TypeError(f"sample_ids must be pd.Index, got {type(sample_ids)}")
        if not isinstance(sample_metadata, pd.DataFrame):
            raise TypeError(f"sample_metadata must be pd.DataFrame, got {type(sample_metadata)}")

        if data.ndim != 2:
            raise ValueError(f"data must be 2D, got shape {data.shape}")

        n_features, n_samples = data.shape

        if len(feature_ids) != n_features:
            raise ValueError(
                f"feature_ids length ({len(feature_ids)}) must match data rows ({n_features})"
            )
        if len(sample_ids) != n_samples:
            raise ValueError(
                f"sample_ids length ({len(sample_ids)}) must match data columns ({n_samples})"
            )

        if quality_flags is None:
            quality_flags = np.full(data.shape, QualityFlag.ORIGINAL, dtype=int)
        if quality_flags.shape != data.shape:
            raise ValueError(
                f"quality_flags shape {quality_flags.shape} must match data shape {data.shape}"
            )

        if not sample_metadata.index.equals(sample_ids):
            raise ValueError(
                "sample_metadata.index must match sample_ids exactly. "
                f"Got {len(sample_metadata.index)} metadata rows for {len(sample_ids)} samples."
            )

        self._data = data
        self._feature_ids = feature_ids
        self._sample_ids = sample_ids
        self._sample_metadata = sample_metadata
        self._quality_flags = quality_flags

    @classmethod
    def from_frames(
        cls,
        feature_abd: pd.DataFrame,
        sample_metadata: pd.DataFrame,
    ) -> AbundanceMatrix:
        """
        Build a matrix from a features × samples table and a metadata table.

        Sample identifiers are matched as sets; the metadata is reordered to
        follow the table's column order.

        Raises:
            ConfigurationError: If sample identifiers are duplicated or do not
                match between the two tables.
        """
        if not isinstance(feature_abd, pd.DataFrame):
            raise TypeError(f"feature_abd must be pd.DataFrame, got {type(feature_abd)}")
        if not isinstance(sample_metadata, pd.DataFrame):
            raise TypeError(f"sample_metadata must be pd.DataFrame, got {type(sample_metadata)}")

        if feature_abd.columns.has_duplicates:
            raise ConfigurationError("Feature table has duplicated sample names!")
        if sample_metadata.index.has_duplicates:
            raise ConfigurationError("Sample metadata has duplicated row names!")

        table_samples = set(feature_abd.columns)
        meta_samples = set(sample_metadata.index)
        if table_samples != meta_samples:
            missing_meta = sorted(map(str, table_samples - meta_samples))
            missing_table = sorted(map(str, meta_samples - table_samples))
            raise ConfigurationError(
                "Sample names in feature table and metadata do not agree! "
                f"Without metadata: {missing_meta[:5]}; "
                f"not in feature table: {missing_table[:5]}"
            )

        try:
            data = feature_abd.to_numpy(dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Feature table must be numeric: {e}") from e

        return cls(
            data=data,
            feature_ids=pd.Index(feature_abd.index),
            sample_ids=pd.Index(feature_abd.columns),
            sample_metadata=sample_metadata.loc[feature_abd.columns],
        )

    @property
    def data(self) -> np.ndarray:
        """Abundance matrix (features × samples)."""
        return self._data

    @property
    def feature_ids(self) -> pd.Index:
        return self._feature_ids

    @property
    def sample_ids(self) -> pd.Index:
        return self._sample_ids

    @property
    def sample_metadata(self) -> pd.DataFrame:
        return self._sample_metadata

    @property
    def quality_flags(self) -> np.ndarray:
        return self._quality_flags

    @property
    def shape(self) -> tuple[int, int]:
        return self._data.shape

    @property
    def n_features(self) -> int:
        return self._data.shape[0]

    @property
    def n_samples(self) -> int:
        return self._data.shape[1]

    def to_frame(self) -> pd.DataFrame:
        """Abundances as a labelled features × samples DataFrame."""
        return pd.DataFrame(self._data, index=self._feature_ids, columns=self._sample_ids)

    def with_data(
        self,
        data: np.ndarray,
        quality_flags: Optional[np.ndarray] = None,
    ) -> AbundanceMatrix:
        """New matrix with replaced values (and optionally flags), same labels."""
        return AbundanceMatrix(
            data=data,
            feature_ids=self._feature_ids,
            sample_ids=self._sample_ids,
            sample_metadata=self._sample_metadata,
            quality_flags=self._quality_flags.copy() if quality_flags is None else quality_flags,
        )

    def __repr__(self) -> str:
        return (
            f"AbundanceMatrix({self.n_features} features × {self.n_samples} samples)\n"
            f"  Metadata columns: {list(self.sample_metadata.columns)}"
        )
