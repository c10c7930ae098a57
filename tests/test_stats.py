import numpy as np
import pandas as pd
import pytest

from proteodiff.analysis.classification import Regulation, classify, summarize
from proteodiff.analysis.stats_ops import bh_qvalues, bh_qvalues_1d, raw_stats_from_fit
from proteodiff.utils import semantics as S


class TestBenjaminiHochberg:
    def test_known_values(self):
        q = bh_qvalues_1d(np.array([0.01, 0.04, 0.03, 0.2]))
        np.testing.assert_allclose(q, [0.04, 0.04 * 4 / 3, 0.04 * 4 / 3, 0.2])

    def test_nan_left_out(self):
        q = bh_qvalues_1d(np.array([0.01, np.nan, 0.02]))
        assert np.isnan(q[1])
        np.testing.assert_allclose(q[[0, 2]], [0.02, 0.02])

    def test_ties_share_q(self):
        q = bh_qvalues_1d(np.array([0.03, 0.03, 0.5]))
        assert q[0] == q[1]

    def test_q_not_below_p_and_monotone(self):
        rng = np.random.default_rng(0)
        p = rng.uniform(size=200)
        q = bh_qvalues_1d(p)
        assert (q >= p).all()
        order = np.argsort(p)
        assert np.all(np.diff(q[order]) >= 0)

    def test_per_column(self):
        p = np.array([[0.01, 0.5], [0.04, np.nan], [0.03, 0.01]])
        q = bh_qvalues(p)
        np.testing.assert_allclose(q[:, 0], bh_qvalues_1d(p[:, 0]))
        np.testing.assert_allclose(q[[0, 2], 1], [0.5, 0.02])

    def test_requires_2d(self):
        with pytest.raises(ValueError):
            bh_qvalues(np.array([0.1, 0.2]))


class TestRawStats:
    def test_ordinary_t(self):
        se, t, p = raw_stats_from_fit(
            coefs=np.array([[2.0], [1.0], [1.0]]), stdu=np.ones((3, 1)),
            sigma=np.array([0.5, 0.0, 1.0]), df_res=np.array([4, 4, 0]))
        assert t[0, 0] == pytest.approx(4.0)
        assert 0 < p[0, 0] < 0.05
        assert np.isnan(t[1:, 0]).all() and np.isnan(p[1:, 0]).all()


class TestClassify:
    def test_labels(self):
        q = np.array([0.01, 0.01, 0.01, 0.2, np.nan, 0.01])
        lfc = np.array([1.0, -1.0, 0.1, 2.0, 3.0, np.nan])
        labels = classify(q, lfc, q_threshold=0.05, fc_threshold=0.25)
        assert labels.tolist() == [
            Regulation.UP, Regulation.DOWN, Regulation.NOT_SIGNIFICANT,
            Regulation.NOT_SIGNIFICANT, Regulation.NOT_SIGNIFICANT, Regulation.NOT_SIGNIFICANT,
        ]

    def test_thresholds_are_strict(self):
        labels = classify(np.array([0.05, 0.01]), np.array([1.0, 0.25]))
        assert labels.tolist() == [Regulation.NOT_SIGNIFICANT, Regulation.NOT_SIGNIFICANT]

    def test_every_label_is_a_member(self):
        labels = classify(np.array([0.01, 0.5, 0.01]), np.array([1.0, 0.0, -1.0]))
        assert all(isinstance(r, Regulation) for r in labels)
        assert [r.value for r in labels] == ["up", "not_significant", "down"]

    def test_regulation_values(self):
        assert [r.value for r in Regulation] == ["up", "down", "not_significant"]
        assert Regulation.UP == "up"

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            classify(np.ones(3), np.ones(2))


class TestSummarize:
    def test_counts(self):
        df = pd.DataFrame({
            S.COL_LOG2FC: [1.0, -2.0, 0.1, np.nan],
            S.COL_Q: [0.01, 0.01, 0.5, np.nan],
            S.COL_REGULATION: ["up", "down", "not_significant", "not_significant"],
        })
        summary = summarize({"A_vs_B": df}, q_threshold=0.05, fc_threshold=0.25)
        row = summary.iloc[0]
        assert row["CONTRAST"] == "A_vs_B"
        assert (row["N_FEATURES"], row["N_TESTED"]) == (4, 3)
        assert (row["N_UP"], row["N_DOWN"], row["N_NOT_SIGNIFICANT"]) == (1, 1, 2)
        assert row["MAX_ABS_LOG2FC"] == 2.0
        assert row["Q_THRESHOLD"] == 0.05
