"""End-to-end differential analysis on small synthetic tables."""

import numpy as np
import pytest

from conftest import E2E_FEATURES, E2E_GROUPS, E2E_LOG2, E2E_SAMPLES, make_config, write_tables
from proteodiff.analysis import adata_schema as K
from proteodiff.analysis.limma_pipeline import run_limma_pipeline
from proteodiff.analysis.linearmodelfitter import LinearModelFitter
from proteodiff.utils import semantics as S
from proteodiff.utils.errors import ContrastDefinitionError, VSNConvergenceWarning
from proteodiff.workflow.dataset import Dataset


def _run(cfg):
    dataset = Dataset(**cfg)
    return run_limma_pipeline(dataset.get_anndata(), cfg)


def _labels(table):
    return dict(zip(table[S.COL_FEATURE_ID], table[S.COL_REGULATION]))


class TestTwoGroupScenario:
    def test_regulation_labels(self, e2e_config):
        result = _run(e2e_config)
        assert result.contrast_names == ["A_vs_B"]
        labels = _labels(result.tables["A_vs_B"])
        assert labels["P1"] == "up"
        assert labels["P2"] == "down"
        for f in ["P3", "P4", "P5", "P6"]:
            assert labels[f] == "not_significant"

    def test_default_methods_on_small_matrix(self, tmp_path, e2e_files):
        cfg = make_config(*e2e_files, tmp_path / "out", imputation="knn", normalization="vsn")
        with pytest.warns(VSNConvergenceWarning, match="too small"):
            result = _run(cfg)
        labels = _labels(result.tables["A_vs_B"])
        assert labels["P1"] == "up"
        assert labels["P2"] == "down"
        for f in ["P3", "P4", "P5", "P6"]:
            assert labels[f] == "not_significant"
        np.testing.assert_allclose(result.adata.X, E2E_LOG2.T, atol=1e-9)

    def test_log2fc_is_group_mean_difference(self, e2e_config):
        table = _run(e2e_config).tables["A_vs_B"].set_index(S.COL_FEATURE_ID)
        expected = E2E_LOG2[:, :2].mean(axis=1) - E2E_LOG2[:, 2:].mean(axis=1)
        np.testing.assert_allclose(table.loc[E2E_FEATURES, S.COL_LOG2FC], expected, atol=1e-9)
        np.testing.assert_allclose(table.loc[E2E_FEATURES, S.COL_AVG], E2E_LOG2.mean(axis=1), atol=1e-9)

    def test_table_layout(self, e2e_config):
        table = _run(e2e_config).tables["A_vs_B"]
        assert list(table.columns[:len(S.STAT_COLUMNS) + 1]) == [S.COL_FEATURE_ID] + S.STAT_COLUMNS
        assert "GENE_NAMES" in table.columns
        assert len(table) == 6
        p = table[S.COL_P].to_numpy()
        assert np.all(np.diff(p) >= 0)
        assert set(table[S.COL_FEATURE_ID].iloc[:2]) == {"P1", "P2"}
        assert (table[S.COL_Q] >= table[S.COL_P]).all()
        assert (table[S.COL_CI_LOW] < table[S.COL_LOG2FC]).all()
        assert (table[S.COL_CI_HIGH] > table[S.COL_LOG2FC]).all()

    def test_adata_outputs(self, e2e_config):
        result = _run(e2e_config)
        adata = result.adata
        assert adata.varm[K.VARM_LOG2FC].shape == (6, 1)
        assert adata.varm[K.VARM_Q_EBAYES].shape == (6, 1)
        assert adata.uns[K.UNS_CONTRAST_NAMES] == ["A_vs_B"]
        assert adata.uns[K.UNS_CONTRASTS] == {"A_vs_B": ["A", "B"]}
        assert adata.uns[K.UNS_PILOT_MODE] is False
        assert set(adata.layers.keys()) >= {"raw", "floor_filled", "imputed", "normalized"}

    def test_summary(self, e2e_config):
        summary = _run(e2e_config).summary
        row = summary.iloc[0]
        assert (row["N_UP"], row["N_DOWN"], row["N_NOT_SIGNIFICANT"]) == (1, 1, 4)
        assert row["N_TESTED"] == 6

    def test_reversed_contrast_flips_labels(self, tmp_path, e2e_files):
        cfg = make_config(*e2e_files, tmp_path / "out", contrasts=["B_vs_A"])
        labels = _labels(_run(cfg).tables["B_vs_A"])
        assert labels["P1"] == "down"
        assert labels["P2"] == "up"

    def test_higher_fc_threshold(self, tmp_path, e2e_files):
        cfg = make_config(*e2e_files, tmp_path / "out", fc_threshold=5.0)
        labels = _labels(_run(cfg).tables["A_vs_B"])
        assert set(labels.values()) == {"not_significant"}


class TestEdgeCases:
    def test_constant_feature_has_p_value(self, tmp_path):
        values = np.vstack([E2E_LOG2, [11.0, 11.0, 11.0, 11.0]])
        files = write_tables(tmp_path, values, E2E_SAMPLES, E2E_GROUPS, E2E_FEATURES + ["P7"])
        table = _run(make_config(*files, tmp_path / "out")).tables["A_vs_B"].set_index(S.COL_FEATURE_ID)
        assert table.loc["P7", S.COL_P] == pytest.approx(1.0)
        assert table.loc["P7", S.COL_REGULATION] == "not_significant"

    def test_pilot_mode(self, tmp_path):
        files = write_tables(tmp_path, E2E_LOG2[:, [0, 2]], ["s1", "s3"], ["A", "B"], E2E_FEATURES)
        result = _run(make_config(*files, tmp_path / "out"))
        table = result.tables["A_vs_B"].set_index(S.COL_FEATURE_ID)
        assert result.pilot_mode
        assert table[S.COL_P].isna().all()
        assert table[S.COL_Q].isna().all()
        assert (table[S.COL_REGULATION] == "not_significant").all()
        np.testing.assert_allclose(table.loc[E2E_FEATURES, S.COL_LOG2FC], E2E_LOG2[:, 0] - E2E_LOG2[:, 2])
        assert result.summary.iloc[0]["N_TESTED"] == 0

    def test_undefined_group_in_contrast(self, tmp_path, e2e_files):
        cfg = make_config(*e2e_files, tmp_path / "out", contrasts=["A_vs_C"])
        with pytest.raises(ContrastDefinitionError):
            _run(cfg)

    def test_knn_and_vsn_path(self, tmp_path, lognormal_matrix):
        samples = [f"s{i}" for i in range(6)]
        groups = ["A", "A", "A", "B", "B", "B"]
        features = [f"F{i}" for i in range(60)]
        log2 = np.log2(lognormal_matrix)
        log2[0, :3] += 4.0
        files = write_tables(tmp_path, log2, samples, groups, features, missing=[(10, 1), (20, 4)])
        cfg = make_config(*files, tmp_path / "out", imputation="knn", normalization="vsn")
        result = _run(cfg)
        table = result.tables["A_vs_B"]
        assert len(table) == 60
        assert table[S.COL_P].notna().all()
        assert np.isfinite(result.adata.X).all()
        assert result.adata.uns["preprocessing"]["normalization"]["method"] == "vsn"
        labels = _labels(table)
        assert labels["F0"] == "up"
        assert sum(v != "not_significant" for v in labels.values()) <= 3


class TestThreeGroups:
    def test_default_contrasts_against_reference(self, tmp_path):
        values = np.hstack([E2E_LOG2, E2E_LOG2[:, 2:]])
        samples = ["s1", "s2", "s3", "s4", "s5", "s6"]
        groups = ["A", "A", "B", "B", "C", "C"]
        files = write_tables(tmp_path, values, samples, groups, E2E_FEATURES)
        cfg = make_config(*files, tmp_path / "out", contrasts=None)
        cfg["dataset"]["levels"] = ["A", "B", "C"]
        result = _run(cfg)
        assert result.contrast_names == ["B_vs_A", "C_vs_A"]
        labels = _labels(result.tables["C_vs_A"])
        assert labels["P1"] == "down"
        assert labels["P2"] == "up"

    def test_empty_level_required_by_contrast(self, tmp_path, e2e_files):
        cfg = make_config(*e2e_files, tmp_path / "out", contrasts=["C_vs_A"])
        cfg["dataset"]["levels"] = ["A", "B", "C"]
        with pytest.raises(ContrastDefinitionError):
            _run(cfg)


class TestLinearModelFitter:
    X = np.array([[1, 0], [1, 0], [0, 1], [0, 1]], dtype=float)

    def test_complete_rows(self):
        Y = np.array([[1.0, 3.0, 5.0, 7.0]])
        fit = LinearModelFitter(Y, self.X).fit()
        np.testing.assert_allclose(fit.coefficients, [[2.0, 6.0]])
        np.testing.assert_allclose(fit.residual_variance, [2.0])
        assert fit.df_residual.tolist() == [2]
        np.testing.assert_allclose(fit.cov_unscaled[0], np.diag([0.5, 0.5]))

    def test_rows_with_missing_values(self):
        Y = np.array([
            [1.0, np.nan, 5.0, 7.0],
            [np.nan, np.nan, 5.0, 7.0],
            [np.nan, np.nan, np.nan, np.nan],
        ])
        fit = LinearModelFitter(Y, self.X, n_jobs=1).fit()
        np.testing.assert_allclose(fit.coefficients[0], [1.0, 6.0])
        assert fit.df_residual.tolist() == [1, 1, 0]
        np.testing.assert_allclose(fit.cov_unscaled[0], np.diag([1.0, 0.5]))
        assert np.isnan(fit.coefficients[1, 0]) and fit.coefficients[1, 1] == pytest.approx(6.0)
        assert np.isnan(fit.coefficients[2]).all()
        assert np.isnan(fit.residual_variance[2])

    def test_sample_count_mismatch(self):
        with pytest.raises(ValueError):
            LinearModelFitter(np.ones((2, 3)), self.X)
