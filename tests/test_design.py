import numpy as np
import pandas as pd
import pytest

from proteodiff.design.contrast import apply_contrasts
from proteodiff.design.contrastbuilder import ContrastBuilder, parse_contrasts
from proteodiff.design.designmatrixbuilder import DesignMatrixBuilder
from proteodiff.utils.errors import ContrastDefinitionError, InputMisalignmentError
from proteodiff.utils.semantics import CONDITION


def _meta(groups):
    return pd.DataFrame({CONDITION: groups}, index=[f"s{i}" for i in range(len(groups))])


class TestParseContrasts:
    def test_default_is_each_level_vs_reference(self):
        out = parse_contrasts(None, ["ctrl", "trt1", "trt2"])
        assert out == {"trt1_vs_ctrl": ("trt1", "ctrl"), "trt2_vs_ctrl": ("trt2", "ctrl")}

    def test_explicit_reference(self):
        out = parse_contrasts([], ["A", "B", "C"], reference="B")
        assert list(out) == ["A_vs_B", "C_vs_B"]

    def test_all_pairwise(self):
        out = parse_contrasts("all_pairwise", ["A", "B", "C"])
        assert out == {"A_vs_B": ("A", "B"), "A_vs_C": ("A", "C"), "B_vs_C": ("B", "C")}

    @pytest.mark.parametrize("text", ["KO_1_vs_WT", "KO_1_v_WT", "KO_1 - WT"])
    def test_separators_with_underscored_levels(self, text):
        assert parse_contrasts([text], ["WT", "KO_1"]) == {"KO_1_vs_WT": ("KO_1", "WT")}

    def test_mapping(self):
        out = parse_contrasts({"treated": ["B", "A"], "other": "A_vs_B"}, ["A", "B"])
        assert out == {"treated": ("B", "A"), "other": ("A", "B")}

    def test_unknown_group(self):
        with pytest.raises(ContrastDefinitionError, match="undefined group"):
            parse_contrasts(["A_vs_Z"], ["A", "B"])

    def test_unknown_group_in_mapping(self):
        with pytest.raises(ContrastDefinitionError, match="undefined group 'Z'"):
            parse_contrasts({"x": ["A", "Z"]}, ["A", "B"])

    def test_ambiguous_split(self):
        with pytest.raises(ContrastDefinitionError, match="Ambiguous"):
            parse_contrasts(["A_vs_B_vs_C"], ["A", "A_vs_B", "B_vs_C", "C"])

    def test_unparseable(self):
        with pytest.raises(ContrastDefinitionError, match="Cannot parse"):
            parse_contrasts(["AB"], ["A", "B"])

    def test_self_comparison(self):
        with pytest.raises(ContrastDefinitionError):
            parse_contrasts({"x": ["A", "A"]}, ["A", "B"])

    def test_duplicate_name(self):
        with pytest.raises(ContrastDefinitionError, match="Duplicate"):
            parse_contrasts(["A_vs_B", "A - B"], ["A", "B"])

    def test_reference_must_be_level(self):
        with pytest.raises(ContrastDefinitionError):
            parse_contrasts(None, ["A", "B"], reference="C")

    def test_single_level_has_no_default_contrast(self):
        with pytest.raises(ContrastDefinitionError):
            parse_contrasts(None, ["A"])


class TestDesignMatrixBuilder:
    def test_one_hot_in_level_order(self):
        builder = DesignMatrixBuilder(_meta(["B", "A", "B", "A"]), levels=["A", "B"])
        X, info = builder.build()
        np.testing.assert_array_equal(X, [[0, 1], [1, 0], [0, 1], [1, 0]])
        assert builder.formula == f"0 + C({CONDITION})"
        assert len(info.column_names) == 2

    def test_empty_level_dropped(self):
        builder = DesignMatrixBuilder(_meta(["A", "A", "B"]), levels=["A", "B", "C"])
        X, _ = builder.build()
        assert X.shape == (3, 2)
        assert builder.dropped_levels == ["C"]
        assert builder.levels == ["A", "B"]

    def test_empty_level_needed_by_contrast(self):
        builder = DesignMatrixBuilder(_meta(["A", "A", "B"]), levels=["A", "B", "C"], required_levels=["C"])
        with pytest.raises(ContrastDefinitionError):
            builder.build()

    def test_group_outside_levels(self):
        builder = DesignMatrixBuilder(_meta(["A", "B", "X"]), levels=["A", "B"])
        with pytest.raises(InputMisalignmentError, match="s2"):
            builder.build()

    def test_missing_group_column(self):
        builder = DesignMatrixBuilder(pd.DataFrame({"other": ["A"]}), levels=["A"])
        with pytest.raises(InputMisalignmentError):
            builder.build()


class TestContrastBuilder:
    def _builder(self, levels, groups):
        _, info = DesignMatrixBuilder(_meta(groups), levels=levels).build()
        return ContrastBuilder(info)

    def test_levels_and_baseline(self):
        cb = self._builder(["ctrl", "trt"], ["ctrl", "trt", "ctrl", "trt"])
        assert cb.levels == ["ctrl", "trt"]
        assert cb.baseline == "ctrl"

    def test_contrast_matrix(self):
        cb = self._builder(["A", "B", "C"], ["A", "B", "C"])
        C, names = cb.build({"C_vs_A": ("C", "A"), "A_vs_B": ("A", "B")})
        assert names == ["C_vs_A", "A_vs_B"]
        np.testing.assert_array_equal(C, [[-1, 1], [0, -1], [1, 0]])

    def test_all_pairwise(self):
        cb = self._builder(["A", "B", "C"], ["A", "B", "C"])
        C, names = cb.make_all_pairwise_contrasts()
        assert names == ["A_vs_B", "A_vs_C", "B_vs_C"]
        assert C.shape == (3, 3)
        np.testing.assert_array_equal(C.sum(axis=0), [0, 0, 0])

    def test_group_without_column(self):
        cb = self._builder(["A", "B"], ["A", "B"])
        with pytest.raises(ContrastDefinitionError):
            cb.build({"A_vs_C": ("A", "C")})


class TestApplyContrasts:
    def test_difference_and_unscaled_sd(self):
        fit = {
            "coefficients": np.array([[1.0, 3.0, np.nan], [2.0, 1.5, 4.0]]),
            "cov_unscaled": np.stack([np.diag([0.5, 0.5, np.nan]), np.diag([0.5, 0.25, 1.0])]),
        }
        C = np.array([[-1.0], [1.0], [0.0]])
        lfc, stdu = apply_contrasts(fit, C)
        np.testing.assert_allclose(lfc[:, 0], [2.0, -0.5])
        np.testing.assert_allclose(stdu[:, 0], [1.0, np.sqrt(0.75)])

    def test_unobserved_group_gives_nan(self):
        fit = {
            "coefficients": np.array([[1.0, np.nan]]),
            "cov_unscaled": np.array([[[0.5, np.nan], [np.nan, np.nan]]]),
        }
        lfc, stdu = apply_contrasts(fit, np.array([[1.0], [-1.0]]))
        assert np.isnan(lfc[0, 0])
        assert np.isnan(stdu[0, 0])
