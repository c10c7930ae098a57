"""Preprocessing pipeline for ProteoDiff.

This module performs:
1) Missing-value assessment (per-sample and per-group counts)
2) Floor replacement (always kept, used as reference for diagnostics)
3) Imputation (knn or floor)
4) Normalization (vsn or log2)
5) Diagnostics (imputation correlation, mean-SD trend)

Every stage is recorded as a read-only matrix in `IntermediateResults`; the raw
matrix is never overwritten. The artifacts are assembled into a
`PreprocessResults` container consumed by downstream code.
"""

import warnings
from typing import Optional, Sequence

import numpy as np

from proteodiff.analysis.missingness import compute_missingness
from proteodiff.dataset.intermediateresults import IntermediateResults
from proteodiff.dataset.preprocessresults import PreprocessResults
from proteodiff.evaluation.evaluation_utils import imputation_correlation, mean_sd_trend
from proteodiff.utils.errors import ImputationFallbackWarning
from proteodiff.utils.semantics import IMPUTATION_METHODS, NORMALIZATION_METHODS
from proteodiff.utils.utils import log_info, log_indent, log_time, log_warning
from proteodiff.workflow.imputer_factory import get_imputer
from proteodiff.workflow.imputers.floor_imputer import FloorImputer
from proteodiff.workflow.normalizer_factory import get_normalizer


class Preprocessor:
    """Handles missing values, normalization and their diagnostics for a features x samples matrix."""

    available_imputation = list(IMPUTATION_METHODS)
    available_normalization = list(NORMALIZATION_METHODS)

    def __init__(self, config: Optional[dict] = None):
        """Initialize from the `preprocessing` section of the config."""
        config = config or {}
        self.intermediate_results = IntermediateResults()

        self.imputation = dict(config.get("imputation") or {"method": "knn"})
        self.imputation.setdefault("method", "knn")
        self.min_correlation = float(self.imputation.get("min_correlation", 0.9))

        self.normalization = dict(config.get("normalization") or {"method": "vsn"})
        self.normalization.setdefault("method", "vsn")

        meansd_cfg = config.get("mean_sd") or {}
        self.meansd_window = float(meansd_cfg.get("window_fraction", 0.1))
        self.meansd_rho = float(meansd_cfg.get("trend_rho", 0.8))
        self.meansd_span = float(meansd_cfg.get("trend_span", 0.5))

        if self.imputation["method"] not in self.available_imputation:
            raise ValueError(f"Invalid imputation method: {self.imputation['method']}.\n"
                             f"Options: {', '.join(self.available_imputation)}")
        if self.normalization["method"] not in self.available_normalization:
            raise ValueError(f"Invalid normalization method: {self.normalization['method']}.\n"
                             f"Options: {', '.join(self.available_normalization)}")

    def fit_transform(
        self,
        raw: np.ndarray,
        feature_ids: Sequence[str],
        samples: Sequence[str],
        conditions: Sequence[str],
    ) -> PreprocessResults:
        """Run the full preprocessing pipeline and return a `PreprocessResults` bundle."""
        ir = self.intermediate_results
        ir.set_columns_and_index(samples, feature_ids)
        ir.add_matrix("raw", raw)

        # Step 1: Missingness
        self._assess_missingness(conditions)

        # Step 2: Imputation
        self._impute()

        # Step 3: Normalization
        self._normalize()

        # Step 4: Diagnostics
        self._diagnose()

        imp_meta = ir.metadata["imputation"]
        norm_meta = ir.metadata["normalization"]
        return PreprocessResults(
            raw=ir.matrices["raw"],
            floor_filled=ir.matrices["floor_filled"],
            imputed=ir.matrices["imputed"],
            normalized=ir.matrices["normalized"],
            feature_ids=ir.index,
            samples=list(ir.columns),
            imputation_method=imp_meta["method"],
            normalization_method=norm_meta["method"],
            missingness=ir.metadata["missingness"],
            imputation_correlation=imp_meta.get("correlation"),
            mean_sd=norm_meta.get("mean_sd"),
            fallback_features=imp_meta.get("fallback_features", np.array([], dtype=int)),
            fallback_samples=norm_meta.get("fallback_samples", np.array([], dtype=int)),
        )

    @log_time("Missingness")
    def _assess_missingness(self, conditions: Sequence[str]) -> None:
        ir = self.intermediate_results
        res = compute_missingness(ir.matrices["raw"], ir.index, ir.columns, conditions)
        ir.add_metadata("missingness", "result", res)
        ir.add_metadata("missingness", "n_missing", res.n_missing)
        ir.add_metadata("missingness", "fraction_missing", res.fraction_missing)
        log_info(f"{res.n_missing} missing values ({100 * res.fraction_missing:.1f}% of the matrix)")

    @log_time("Imputation")
    def _impute(self) -> None:
        """Floor-fill the raw matrix, then impute it with the configured method."""
        ir = self.intermediate_results
        raw = ir.matrices["raw"]
        method = self.imputation["method"]
        ir.add_metadata("imputation", "method", method)

        floor = FloorImputer(divisor=self.imputation.get("floor_divisor", 2.0))
        floor_filled = floor.fit_transform(raw)
        ir.add_matrix("floor_filled", floor_filled)
        ir.add_metadata("imputation", "floor", floor.floor_)
        log_info(f"Floor value: {floor.floor_:.4g} (global min / {floor.divisor:g})")

        if method == "floor":
            ir.add_model("imputation", floor)
            ir.add_matrix("imputed", floor_filled)
            return

        imputer = get_imputer(**self.imputation)
        with log_indent():
            imputed = imputer.fit_transform(raw)
        ir.add_model("imputation", imputer)
        ir.add_matrix("imputed", imputed)

        for j in imputer.sparse_samples_:
            log_warning(f"Sample '{ir.columns[j]}' has {100 * imputer.col_missing_[j]:.0f}% missing values "
                        f"(> colmax={imputer.colmax:g})")

        fallback = imputer.fallback_features_
        ir.add_metadata("imputation", "fallback_features", fallback)
        if len(fallback):
            msg = (f"kNN infeasible for {len(fallback)} feature(s); "
                   f"filled with '{imputer.fallback}' fallback")
            log_warning(msg)
            warnings.warn(msg, ImputationFallbackWarning, stacklevel=2)

    @log_time("Normalization")
    def _normalize(self) -> None:
        ir = self.intermediate_results
        method = self.normalization["method"]
        ir.add_metadata("normalization", "method", method)

        normalizer = get_normalizer(**self.normalization)
        normalized = normalizer.fit_transform(ir.matrices["imputed"])
        ir.add_model("normalization", normalizer)
        ir.add_matrix("normalized", normalized)

        fallback = np.asarray(normalizer.fallback_samples_, dtype=int)
        ir.add_metadata("normalization", "fallback_samples", fallback)
        if len(fallback):
            names = [ir.columns[j] for j in fallback]
            log_warning(f"VSN fell back to log2 for {len(names)} sample(s): {names} "
                        f"({getattr(normalizer, 'fallback_reason_', '')})")
        elif method == "vsn":
            log_info(f"VSN converged in {normalizer.n_iter_} iterations")

    @log_time("Diagnostics")
    def _diagnose(self) -> None:
        ir = self.intermediate_results

        if self.imputation["method"] == "knn":
            corr = imputation_correlation(ir.matrices["floor_filled"], ir.matrices["imputed"], ir.columns)
            ir.add_metadata("imputation", "correlation", corr)
            low = corr.index[corr["PEARSON_R"] < self.min_correlation].tolist()
            if low:
                log_warning(f"Imputed vs floor-filled correlation below {self.min_correlation:g} "
                            f"for sample(s): {low}")

        meansd = mean_sd_trend(
            ir.matrices["normalized"], ir.index,
            window_fraction=self.meansd_window,
            trend_rho=self.meansd_rho,
            trend_span=self.meansd_span,
        )
        ir.add_metadata("normalization", "mean_sd", meansd)
        if meansd.trend_detected:
            log_warning(f"Mean-SD trend after normalization (rho={meansd.rho:.2f}, span={meansd.span:.2f}); "
                        "variance is not stabilized")
        else:
            log_info(f"Mean-SD curve flat (rho={meansd.rho:.2f}, span={meansd.span:.2f})")
