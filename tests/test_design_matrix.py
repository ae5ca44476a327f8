"""Tests for batch + covariate design matrix construction."""

import numpy as np
import pandas as pd
import pytest

from zicombat.errors import ConfigurationError
from zicombat.stats.design_matrix import (
    AdjustmentDesign,
    build_adjustment_design,
    check_batch,
    check_rank,
    construct_design,
)


class TestConstructDesign:
    """Tests for construct_design."""

    def test_no_variables_returns_none(self):
        """An empty variable set gives no design at all."""
        meta = pd.DataFrame(index=["s1", "s2"])
        assert construct_design(meta) is None
        assert construct_design(None) is None

    def test_one_hot_without_intercept(self):
        """Without intercept a categorical gets one column per level."""
        meta = pd.DataFrame({"study": ["a", "b", "a", "c"]}, index=list("wxyz"))
        design = construct_design(meta, with_intercept=False)

        assert design.shape == (4, 3)
        np.testing.assert_array_equal(design.sum(axis=1).values, np.ones(4))
        assert list(design.index) == list("wxyz")

    def test_treatment_coding_with_intercept(self):
        """With intercept the first level is the reference."""
        meta = pd.DataFrame({"sex": ["F", "M", "M"], "age": [30.0, 40.0, 50.0]})
        design = construct_design(meta, with_intercept=True)

        assert design.shape == (3, 3)
        assert "Intercept" in design.columns
        np.testing.assert_array_equal(design.iloc[:, -1].values, [30.0, 40.0, 50.0])

    def test_missing_values_raise(self):
        meta = pd.DataFrame({"age": [1.0, np.nan, 3.0]})
        with pytest.raises(ConfigurationError, match="Cannot build design"):
            construct_design(meta)


class TestCheckRank:
    """Tests for check_rank."""

    def test_none_is_full_rank(self):
        assert check_rank(None)

    def test_zero_columns_is_full_rank(self):
        assert check_rank(np.zeros((4, 0)))

    def test_collinear_columns(self):
        X = np.array([[1.0, 2.0], [2.0, 4.0], [3.0, 6.0]])
        assert not check_rank(X)

    def test_full_rank(self, small_design):
        assert check_rank(small_design)


class TestCheckBatch:
    """Tests for check_batch."""

    def test_sorted_levels_for_strings(self):
        batch = check_batch(pd.Series(["b", "a", "b"], name="study"))
        assert list(batch.cat.categories) == ["a", "b"]

    def test_categorical_order_kept_and_unused_dropped(self):
        cat = pd.Categorical(["y", "x", "y"], categories=["z", "y", "x"])
        batch = check_batch(pd.Series(cat, name="study"))
        assert list(batch.cat.categories) == ["y", "x"]

    def test_single_level_raises(self):
        with pytest.raises(ConfigurationError, match="1 level"):
            check_batch(pd.Series(["a", "a", "a"], name="study"))

    def test_missing_batch_raises(self):
        with pytest.raises(ConfigurationError, match="missing values"):
            check_batch(pd.Series(["a", None, "b"], name="study"))


class TestBuildAdjustmentDesign:
    """Tests for build_adjustment_design."""

    def test_batch_columns_first(self):
        meta = pd.DataFrame({
            "batch": ["A", "A", "B", "B", "C", "C"],
            "disease": ["no", "yes", "no", "yes", "no", "yes"],
        })
        design = build_adjustment_design(meta, "batch", ["disease"])

        assert isinstance(design, AdjustmentDesign)
        assert design.batch_levels == ["A", "B", "C"]
        assert design.n_batch == 3
        assert design.n_covariate_params == 1
        assert design.X.shape == (6, 4)
        np.testing.assert_array_equal(design.X[:, 3], [0, 1, 0, 1, 0, 1])
        np.testing.assert_array_equal(
            design.batch_indicator.sum(axis=0), [2, 2, 2]
        )

    def test_no_covariates(self):
        meta = pd.DataFrame({"batch": ["A", "B", "A", "B"]})
        design = build_adjustment_design(meta, "batch")

        assert design.X.shape == (4, 2)
        assert design.covariate_names == []
        assert design.col_names == ["A", "B"]

    def test_confounded_covariate_raises(self):
        """A covariate identical to batch cannot be separated from it."""
        meta = pd.DataFrame({
            "batch": ["A", "A", "B", "B"],
            "site": ["x", "x", "y", "y"],
        })
        with pytest.raises(ConfigurationError, match="confounded"):
            build_adjustment_design(meta, "batch", ["site"])

    def test_single_level_batch_raises(self):
        meta = pd.DataFrame({"batch": ["A"] * 4, "age": [1.0, 2.0, 3.0, 4.0]})
        with pytest.raises(ConfigurationError, match="at least 2"):
            build_adjustment_design(meta, "batch", ["age"])

    def test_missing_column_raises(self):
        meta = pd.DataFrame({"batch": ["A", "B"]})
        with pytest.raises(ConfigurationError, match="not found"):
            build_adjustment_design(meta, "batch", ["age"])

    def test_batch_as_covariate_raises(self):
        meta = pd.DataFrame({"batch": ["A", "B"]})
        with pytest.raises(ConfigurationError, match="cannot also be a covariate"):
            build_adjustment_design(meta, "batch", ["batch"])
