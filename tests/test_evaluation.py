import numpy as np
import pytest

from proteodiff.analysis.clustering import run_pca
from proteodiff.analysis.missingness import compute_missingness
from proteodiff.dataset.intermediateresults import IntermediateResults
from proteodiff.evaluation.evaluation_utils import mean_sd_trend


class TestMeanSdTrend:
    def test_sd_growing_with_mean_is_flagged(self):
        means = np.linspace(5, 25, 200)
        offsets = np.array([-1.0, 1.0, -1.0, 1.0])
        mat = means[:, None] + 0.05 * means[:, None] * offsets[None, :]
        diag = mean_sd_trend(mat)
        assert diag.rho > 0.8
        assert diag.trend_detected

    def test_constant_sd_is_flat(self):
        means = np.linspace(5, 25, 200)
        mat = means[:, None] + np.array([-1.0, 1.0, -1.0, 1.0])[None, :]
        diag = mean_sd_trend(mat)
        assert diag.rho == 0.0
        assert diag.span == 0.0
        assert not diag.trend_detected

    def test_homoscedastic_noise_not_flagged(self):
        rng = np.random.default_rng(0)
        mat = rng.uniform(10, 20, size=(1000, 1)) + rng.normal(0, 0.3, size=(1000, 12))
        diag = mean_sd_trend(mat)
        assert diag.span < 0.5
        assert not diag.trend_detected

    def test_table_sorted_by_mean(self):
        mat = np.array([[3.0, 3.5], [1.0, 1.2], [2.0, 2.6]])
        diag = mean_sd_trend(mat, feature_ids=["c", "a", "b"])
        assert diag.table["FEATURE_ID"].tolist() == ["a", "b", "c"]
        assert diag.table["RANK"].tolist() == [1, 2, 3]

    def test_single_sample_gives_empty_table(self):
        diag = mean_sd_trend(np.ones((5, 1)))
        assert diag.table.empty
        assert not diag.trend_detected


class TestMissingness:
    def test_counts(self):
        raw = np.array([
            [1.0, np.nan, 3.0, np.nan],
            [1.0, 2.0, 3.0, 4.0],
            [np.nan, np.nan, np.nan, np.nan],
        ])
        res = compute_missingness(raw, ["f1", "f2", "f3"], ["s1", "s2", "s3", "s4"], ["A", "A", "B", "B"])
        assert res.n_missing == 6
        assert res.fraction_missing == pytest.approx(0.5)
        assert res.per_sample.loc["s2"] == 2
        assert res.per_feature.columns.tolist() == ["A", "B"]
        assert res.per_feature.loc["f1"].tolist() == [1, 1]
        assert res.per_feature.loc["f3"].tolist() == [2, 2]


class TestPca:
    def test_scores_and_variance(self, lognormal_matrix):
        mat = np.log2(lognormal_matrix)
        samples = [f"s{i}" for i in range(6)]
        res = run_pca(mat, samples, [f"F{i}" for i in range(60)], n_components=3)
        assert res.scores.shape == (6, 3)
        assert res.scores.index.tolist() == samples
        assert res.loadings.shape == (60, 3)
        assert np.all(np.diff(res.explained_variance_ratio) <= 0)

    def test_drops_constant_and_nonfinite_features(self):
        mat = np.array([[1.0, 2.0, 3.0], [5.0, 5.0, 5.0], [np.nan, 1.0, 2.0], [3.0, 1.0, 2.0]])
        res = run_pca(mat, ["a", "b", "c"], ["f1", "f2", "f3", "f4"])
        assert res.loadings.index.tolist() == ["f1", "f4"]

    def test_max_features_keeps_most_variable(self):
        mat = np.array([[1.0, 2.0, 3.0], [0.0, 10.0, 20.0], [1.0, 1.1, 1.2]])
        res = run_pca(mat, ["a", "b", "c"], ["f1", "f2", "f3"], max_features=2)
        assert res.loadings.index.tolist() == ["f1", "f2"]

    def test_single_sample_skipped(self):
        res = run_pca(np.ones((4, 1)) * np.arange(4)[:, None], ["a"], ["f1", "f2", "f3", "f4"])
        assert res.scores.shape == (1, 0)


class TestIntermediateResults:
    def test_stages_are_frozen_and_unique(self):
        ir = IntermediateResults()
        ir.set_columns_and_index(["s1", "s2"], ["f1"])
        ir.add_matrix("raw", np.array([[1.0, 2.0]]))
        with pytest.raises(ValueError):
            ir.matrices["raw"][0, 0] = 5.0
        with pytest.raises(ValueError, match="already stored"):
            ir.add_matrix("raw", np.array([[3.0, 4.0]]))

    def test_shape_checked(self):
        ir = IntermediateResults()
        ir.set_columns_and_index(["s1", "s2"], ["f1"])
        with pytest.raises(ValueError, match="column dimension"):
            ir.add_matrix("raw", np.ones((1, 3)))

    def test_metadata_steps(self):
        ir = IntermediateResults()
        ir.add_metadata("imputation", "method", "knn")
        assert ir.metadata["imputation"]["method"] == "knn"
        with pytest.raises(ValueError):
            ir.add_metadata("clustering", "k", 3)
