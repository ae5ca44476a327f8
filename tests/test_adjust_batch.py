"""
End-to-end tests for zero-inflation-aware batch adjustment.

Checks that batch differences are removed, covariate effects survive, labels
and zeros are preserved, and the result does not depend on batch labelling or
thread count.
"""

import numpy as np
import pandas as pd
import pytest
from scipy import stats

from conftest import generate_batched_abundance
from zicombat import (
    AbundanceMatrix,
    AdjustBatchControl,
    BatchAdjustment,
    ConfigurationError,
    QualityFlag,
    adjust_batch,
)


def _mean_abs_t(table: pd.DataFrame, groups: pd.Series, a, b) -> float:
    """Mean absolute Welch t statistic between two sample groups on log2 scale."""
    log_table = np.log2(table.to_numpy())
    t, _ = stats.ttest_ind(
        log_table[:, (groups == a).to_numpy()],
        log_table[:, (groups == b).to_numpy()],
        axis=1,
        equal_var=False,
    )
    return float(np.mean(np.abs(t)))


class TestBatchRemoval:
    """Batch effects removed, biology kept."""

    def test_batch_difference_reduced(self, two_batch_data):
        feature_abd, metadata = two_batch_data
        result = adjust_batch(feature_abd, "batch", ["disease"], data=metadata)

        before = _mean_abs_t(feature_abd, metadata["batch"], "A", "B")
        after = _mean_abs_t(result.feature_abd_adj, metadata["batch"], "A", "B")

        assert after < 0.3 * before

    def test_covariate_effect_preserved(self, two_batch_data):
        feature_abd, metadata = two_batch_data
        result = adjust_batch(feature_abd, "batch", ["disease"], data=metadata)

        log_adj = np.log2(result.feature_abd_adj.to_numpy())
        case = (metadata["disease"] == "case").to_numpy()
        _, p = stats.ttest_ind(log_adj[:5, case], log_adj[:5, ~case], axis=1, equal_var=False)

        assert np.all(p < 0.01)

    def test_no_batch_signal_changes_little(self):
        feature_abd, metadata = generate_batched_abundance(batch_shift=0.0, seed=11)
        result = adjust_batch(
            feature_abd, "batch", data=metadata, control={"zero_inflation": False}
        )

        log_change = np.log2(result.feature_abd_adj.to_numpy() / feature_abd.to_numpy())
        assert np.median(np.abs(log_change)) < 0.2


class TestOutputShape:

    def test_labels_and_totals_preserved(self, two_batch_data):
        feature_abd, metadata = two_batch_data
        shuffled = metadata.sample(frac=1.0, random_state=0)
        result = adjust_batch(feature_abd, "batch", ["disease"], data=shuffled)

        adjusted = result.feature_abd_adj
        assert adjusted.index.equals(feature_abd.index)
        assert adjusted.columns.equals(feature_abd.columns)
        np.testing.assert_allclose(adjusted.sum(axis=0), feature_abd.sum(axis=0))
        assert result.abundance_type == "proportions"

    def test_zeros_preserved(self, two_batch_data):
        feature_abd, metadata = two_batch_data
        feature_abd = feature_abd.copy()
        feature_abd.iloc[2, [0, 5, 30]] = 0.0
        result = adjust_batch(feature_abd, "batch", ["disease"], data=metadata)

        adjusted = result.feature_abd_adj
        assert (adjusted.iloc[2, [0, 5, 30]] == 0).all()
        assert ((adjusted == 0) == (feature_abd == 0)).all().all()
        flags = result.matrix.quality_flags
        assert flags[2, 0] & QualityFlag.STRUCTURAL_ZERO
        assert not flags[2, 1] & QualityFlag.STRUCTURAL_ZERO
        assert flags[2, 1] & QualityFlag.BATCH_CORRECTED

    def test_counts_rounded(self):
        feature_abd, metadata = generate_batched_abundance(counts=True, seed=5)
        result = adjust_batch(feature_abd, "batch", data=metadata)

        adjusted = result.feature_abd_adj.to_numpy()
        assert result.abundance_type == "counts"
        np.testing.assert_array_equal(adjusted, np.round(adjusted))
        np.testing.assert_allclose(
            adjusted.sum(axis=0), feature_abd.to_numpy().sum(axis=0), atol=feature_abd.shape[0]
        )

    def test_parameter_frames_follow_eligibility(self, two_batch_data):
        feature_abd, metadata = two_batch_data
        feature_abd = feature_abd.copy()
        feature_abd.loc["feature9", metadata.index[metadata["batch"] == "B"]] = 0.0
        result = adjust_batch(feature_abd, "batch", ["disease"], data=metadata)

        for frame in (result.gamma_hat, result.delta_hat, result.gamma_star, result.delta_star):
            assert list(frame.columns) == ["A", "B"]
            assert frame.loc["feature9"].isna().all()
            assert not frame.drop(index="feature9").isna().any().any()

        assert not result.eligibility.feature_mask[9]
        assert (result.matrix.quality_flags[9] & QualityFlag.NOT_ESTIMABLE).all()
        assert list(result.priors.index) == ["A", "B"]
        assert (result.priors["n_features"] == 9).all()

    def test_sparse_batch_left_unadjusted(self):
        feature_abd, metadata = generate_batched_abundance(n_features=6, n_batches=3, seed=3)
        in_c = (metadata["batch"] == "C").to_numpy()
        feature_abd.iloc[1:, in_c] = 0.0
        result = adjust_batch(feature_abd, "batch", data=metadata)

        assert result.n_iterations["C"] == 0
        assert result.gamma_star["C"].isna().all()
        assert np.isnan(result.priors.loc["C", "gamma_bar"])
        np.testing.assert_allclose(
            result.feature_abd_adj.loc[:, in_c], feature_abd.loc[:, in_c]
        )


class TestInvariance:

    def test_batch_relabelling(self, two_batch_data):
        feature_abd, metadata = two_batch_data
        relabelled = metadata.assign(batch=metadata["batch"].map({"A": "B", "B": "A"}))

        original = adjust_batch(feature_abd, "batch", ["disease"], data=metadata)
        swapped = adjust_batch(feature_abd, "batch", ["disease"], data=relabelled)

        np.testing.assert_allclose(swapped.feature_abd_adj, original.feature_abd_adj, rtol=1e-8)
        np.testing.assert_allclose(
            swapped.gamma_star[["B", "A"]].to_numpy(), original.gamma_star.to_numpy(), rtol=1e-8
        )

    def test_threads_match_serial(self, two_batch_data):
        feature_abd, metadata = two_batch_data
        serial = adjust_batch(feature_abd, "batch", ["disease"], data=metadata,
                              control=AdjustBatchControl(n_jobs=1))
        threaded = adjust_batch(feature_abd, "batch", ["disease"], data=metadata,
                                control=AdjustBatchControl(n_jobs=2))

        np.testing.assert_array_equal(serial.feature_abd_adj, threaded.feature_abd_adj)


class TestInputErrors:

    def test_single_level_batch_checked_first(self, two_batch_data):
        feature_abd, metadata = two_batch_data
        feature_abd = feature_abd.copy()
        feature_abd.iloc[0, 0] = -1.0
        with pytest.raises(ConfigurationError, match="level"):
            adjust_batch(feature_abd, "batch", data=metadata.assign(batch="A"))

    def test_negative_values_raise(self, two_batch_data):
        feature_abd, metadata = two_batch_data
        feature_abd = feature_abd.copy()
        feature_abd.iloc[0, 0] = -1.0
        with pytest.raises(ConfigurationError, match="negative"):
            adjust_batch(feature_abd, "batch", data=metadata)

    def test_not_counts_or_proportions_raise(self, two_batch_data):
        feature_abd, metadata = two_batch_data
        with pytest.raises(ConfigurationError, match="proportions or counts"):
            adjust_batch(feature_abd * 100, "batch", data=metadata)

    def test_confounded_covariate_raises(self, two_batch_data):
        feature_abd, metadata = two_batch_data
        metadata = metadata.assign(site=metadata["batch"].map({"A": "x", "B": "y"}))
        with pytest.raises(ConfigurationError, match="confounded"):
            adjust_batch(feature_abd, "batch", ["site"], data=metadata)

    def test_metadata_required(self, two_batch_data):
        feature_abd, _ = two_batch_data
        with pytest.raises(ConfigurationError):
            adjust_batch(feature_abd, "batch")

    def test_unknown_control_key(self, two_batch_data):
        feature_abd, metadata = two_batch_data
        with pytest.raises(ConfigurationError, match="Unknown control"):
            adjust_batch(feature_abd, "batch", data=metadata, control={"tolerance": 1e-3})


class TestBatchAdjustmentTransform:

    def test_validate_and_apply(self, two_batch_data):
        matrix = AbundanceMatrix.from_frames(*two_batch_data)
        before = matrix.data.copy()
        transform = BatchAdjustment(batch="batch", covariates=["disease"])

        assert transform.validate(matrix) == []
        adjusted = transform.apply(matrix)

        assert isinstance(adjusted, AbundanceMatrix)
        assert adjusted.shape == matrix.shape
        np.testing.assert_array_equal(matrix.data, before)
        assert (adjusted.quality_flags & QualityFlag.BATCH_CORRECTED).all()
        assert transform.params["zero_inflation"] is True
        assert "BatchAdjustment(" in repr(transform)

    def test_validate_reports_problems(self, two_batch_data):
        feature_abd, metadata = two_batch_data
        feature_abd = feature_abd.copy()
        feature_abd.iloc[0, 0] = np.nan
        matrix = AbundanceMatrix.from_frames(feature_abd, metadata.assign(batch="A"))

        errors = BatchAdjustment(batch="batch").validate(matrix)
        assert any("two levels" in e for e in errors)
        assert any("missing values" in e for e in errors)

        missing = BatchAdjustment(batch="study").validate(matrix)
        assert any("not found" in e for e in missing)
