"""PDF report exporter for ProteoDiff results.

Generates a multi-page PDF containing:
  1) Title/summary page (settings, thresholds, DEG counts, package versions)
  2) Missing values per sample and per feature
  3) Imputed vs floor-filled correlation per sample (kNN only)
  4) Mean-SD plot of the normalized matrix
  5) PCA scatter of samples
  6) Volcano plots per contrast, colored by regulation
"""

import platform
import textwrap
from datetime import datetime
from typing import Dict, List, Optional

import matplotlib
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from matplotlib.backends.backend_pdf import PdfPages

from proteodiff.analysis.classification import Regulation
from proteodiff.utils import semantics as S
from proteodiff.utils.utils import log_info, log_time

matplotlib.use("Agg")

REGULATION_COLORS = {
    Regulation.UP.value: "#d62728",
    Regulation.DOWN.value: "#1f77b4",
    Regulation.NOT_SIGNIFICANT.value: "#b0b0b0",
}


def get_color_map(labels: List[str], palette: Optional[List[str]] = None) -> Dict[str, str]:
    """Return a stable mapping label -> color, in label order."""
    palette = palette or plt.rcParams["axes.prop_cycle"].by_key()["color"]
    return {lbl: palette[i % len(palette)] for i, lbl in enumerate(labels)}


def q_threshold_p(df: pd.DataFrame, q_threshold: float) -> float:
    """Largest p whose q passes the threshold, NaN when none does."""
    passing = df.loc[df[S.COL_Q] < q_threshold, S.COL_P]
    return float(passing.max()) if len(passing) else np.nan


def _package_versions() -> Dict[str, str]:
    import anndata
    import scipy
    import sklearn
    import statsmodels

    return {
        "python": platform.python_version(),
        "numpy": np.__version__,
        "pandas": pd.__version__,
        "scipy": scipy.__version__,
        "scikit-learn": sklearn.__version__,
        "statsmodels": statsmodels.__version__,
        "anndata": anndata.__version__,
        "matplotlib": matplotlib.__version__,
    }


class ReportPlotter:
    """Prepare plotting context from pipeline artifacts and config dict."""

    def __init__(self, result, preprocessed, pca=None, sample_metadata: Optional[pd.DataFrame] = None,
                 config: Optional[Dict] = None):
        """
        Parameters:
            result: LimmaResult.
            preprocessed: PreprocessResults.
            pca: PcaResult or None.
            sample_metadata: obs table with a CONDITION column, indexed by sample.
        """
        self.result = result
        self.pp = preprocessed
        self.pca = pca
        self.config = config or {}
        self.meta = sample_metadata
        conditions = (self.meta[S.CONDITION].astype(str).tolist()
                      if self.meta is not None else ["all"] * len(self.pp.samples))
        self.conditions = conditions
        self.color_map = get_color_map(list(dict.fromkeys(conditions)))
        self.pdf = None

    @log_time("Exporting PDF report")
    def plot_all(self, path) -> None:
        with PdfPages(path) as pdf:
            self.pdf = pdf
            self._plot_title_page()
            self._plot_missingness()
            self._plot_imputation_correlation()
            self._plot_mean_sd()
            self._plot_pca()
            self._plot_volcano_plots()
        log_info(f"Report written to {path}")

    def _save(self, fig) -> None:
        self.pdf.savefig(fig)
        plt.close(fig)

    def _plot_title_page(self):
        fig = plt.figure(figsize=(8.27, 11.69))
        fig.text(0.5, 0.94, "ProteoDiff report", ha="center", fontsize=22, weight="bold")
        fig.text(0.5, 0.91, datetime.now().strftime("%Y-%m-%d %H:%M"), ha="center", fontsize=11, color="gray")

        lines = [
            f"Features: {len(self.pp.feature_ids)}    Samples: {len(self.pp.samples)}",
            f"Missing values: {self.pp.missingness.get('n_missing', 0)} "
            f"({100 * self.pp.missingness.get('fraction_missing', 0.0):.1f}%)",
            f"Imputation: {self.pp.imputation_method}    Normalization: {self.pp.normalization_method}",
            f"Thresholds: q < {self.result.q_threshold:g}, |log2FC| > {self.result.fc_threshold:g}",
            f"Prior: s0^2 = {self.result.prior.get('s2_prior', np.nan):.4g}, "
            f"d0 = {self.result.prior.get('df_prior', np.nan):.4g}",
        ]
        if self.result.pilot_mode:
            lines.append("PILOT MODE: no residual degrees of freedom, statistics not computed.")
        if len(self.pp.fallback_features):
            lines.append(f"kNN fallback used for {len(self.pp.fallback_features)} feature(s)")
        if len(self.pp.fallback_samples):
            lines.append(f"VSN fell back to log2 for {len(self.pp.fallback_samples)} sample(s)")
        lines.append("")
        for _, row in self.result.summary.iterrows():
            lines.append(f"{row['CONTRAST']}: {row['N_UP']} up, {row['N_DOWN']} down")
        lines.append("")
        lines += [f"{k}: {v}" for k, v in _package_versions().items()]

        text = "\n".join(textwrap.fill(l, 90) if l else l for l in lines)
        fig.text(0.08, 0.85, text, ha="left", va="top", fontsize=10, family="monospace")
        self._save(fig)

    def _plot_missingness(self):
        raw = self.pp.raw
        per_sample = np.isnan(raw).sum(axis=0)
        per_feature = np.isnan(raw).sum(axis=1)

        fig, (ax_s, ax_f) = plt.subplots(2, 1, figsize=(11, 10))
        colors = [self.color_map[c] for c in self.conditions]
        ax_s.bar(range(len(self.pp.samples)), per_sample, color=colors)
        ax_s.set_xticks(range(len(self.pp.samples)))
        ax_s.set_xticklabels(self.pp.samples, rotation=45, ha="right", fontsize=8)
        ax_s.set_ylabel("Missing values")
        ax_s.set_title("Missing values per sample")
        ax_s.grid(axis="y")

        bins = np.arange(-0.5, raw.shape[1] + 1.5, 1)
        ax_f.hist(per_feature, bins=bins, color="gray", edgecolor="black")
        ax_f.set_xlabel("Missing samples per feature")
        ax_f.set_ylabel("Features")
        ax_f.set_title("Missing values per feature")
        fig.tight_layout()
        self._save(fig)

    def _plot_imputation_correlation(self):
        corr = self.pp.imputation_correlation
        if corr is None or corr.empty:
            return
        min_r = float((self.config.get("preprocessing", {}).get("imputation", {}) or {}).get("min_correlation", 0.9))

        fig, ax = plt.subplots(figsize=(11, 6))
        colors = [self.color_map.get(c, "gray") for c in self.conditions]
        ax.bar(range(len(corr)), corr["PEARSON_R"].to_numpy(), color=colors)
        ax.axhline(min_r, color="red", linestyle="--", linewidth=1)
        ax.set_xticks(range(len(corr)))
        ax.set_xticklabels(corr.index, rotation=45, ha="right", fontsize=8)
        ax.set_ylim(min(0.0, float(np.nanmin(corr["PEARSON_R"]))) if corr["PEARSON_R"].notna().any() else 0, 1.02)
        ax.set_ylabel("Pearson r (log2)")
        ax.set_title("kNN-imputed vs floor-filled values")
        fig.tight_layout()
        self._save(fig)

    def _plot_mean_sd(self):
        diag = self.pp.mean_sd
        if diag is None or diag.table.empty:
            return
        tbl = diag.table
        fig, ax = plt.subplots(figsize=(9, 7))
        ax.scatter(tbl["RANK"], tbl["SD"], s=4, color="gray", alpha=0.5, rasterized=True)
        ax.plot(tbl["RANK"], tbl["RUNNING_MEDIAN_SD"], color="red", linewidth=2)
        ax.set_xlabel("Rank of mean")
        ax.set_ylabel("SD")
        flag = "trend detected" if diag.trend_detected else "flat"
        ax.set_title(f"Mean-SD ({self.pp.normalization_method}): rho={diag.rho:.2f}, span={diag.span:.2f}, {flag}")
        fig.tight_layout()
        self._save(fig)

    def _plot_pca(self):
        if self.pca is None or self.pca.scores.shape[1] < 2:
            return
        scores = self.pca.scores.copy()
        scores[S.CONDITION] = self.conditions
        evr = self.pca.explained_variance_ratio

        fig, ax = plt.subplots(figsize=(9, 7))
        sns.scatterplot(data=scores, x="PC1", y="PC2", hue=S.CONDITION, palette=self.color_map,
                        s=80, edgecolor="black", ax=ax)
        for sample, row in scores.iterrows():
            ax.annotate(str(sample), (row["PC1"], row["PC2"]), fontsize=7, alpha=0.7,
                        xytext=(3, 3), textcoords="offset points")
        ax.set_xlabel(f"PC1 ({100 * evr[0]:.1f}%)")
        ax.set_ylabel(f"PC2 ({100 * evr[1]:.1f}%)")
        ax.set_title("PCA of normalized intensities")
        ax.legend(title="Condition", bbox_to_anchor=(1.02, 1), loc="upper left")
        fig.tight_layout()
        self._save(fig)

    def _plot_volcano_plots(self):
        """Volcano plots (one per contrast); skipped in pilot mode."""
        if self.result.pilot_mode:
            return
        fc = self.result.fc_threshold
        for name, df in self.result.tables.items():
            data = df[[S.COL_FEATURE_ID, S.COL_LOG2FC, S.COL_P, S.COL_Q, S.COL_REGULATION]].dropna(
                subset=[S.COL_LOG2FC, S.COL_P]).copy()
            data["-log10(p)"] = -np.log10(np.clip(data[S.COL_P].to_numpy(), 1e-300, None))

            fig, ax = plt.subplots(figsize=(9, 8))
            sns.scatterplot(data=data, x=S.COL_LOG2FC, y="-log10(p)", hue=S.COL_REGULATION,
                            palette=REGULATION_COLORS, hue_order=list(REGULATION_COLORS),
                            s=12, linewidth=0, ax=ax, rasterized=True)
            ax.axvline(fc, color="gray", linestyle="--", linewidth=0.8)
            ax.axvline(-fc, color="gray", linestyle="--", linewidth=0.8)

            p_line = q_threshold_p(data, self.result.q_threshold)
            if np.isfinite(p_line):
                ax.axhline(-np.log10(max(p_line, 1e-300)), color="gray", linestyle=":", linewidth=0.8)

            sig = data[data[S.COL_REGULATION] != Regulation.NOT_SIGNIFICANT.value]
            if len(sig):
                top = sig.nsmallest(10, S.COL_P)
                for _, row in top.iterrows():
                    ax.annotate(str(row[S.COL_FEATURE_ID]), (row[S.COL_LOG2FC], row["-log10(p)"]),
                                fontsize=7, xytext=(3, 3), textcoords="offset points")

            counts = data[S.COL_REGULATION].value_counts()
            ax.set_title(f"{name}: {counts.get(Regulation.UP.value, 0)} up, "
                         f"{counts.get(Regulation.DOWN.value, 0)} down")
            ax.set_xlabel("log2FC")
            ax.set_ylabel("-log10(moderated p)")
            fig.tight_layout()
            self._save(fig)
