"""Limma-style differential analysis.

This module provides:
  - `run_limma_pipeline`: one-hot design, OLS per feature, contrasts, eBayes
    moderation, BH correction and classification, one DEG table per contrast.
"""

from dataclasses import dataclass, field
from typing import Dict, Tuple

import anndata as ad
import numpy as np
import pandas as pd

from proteodiff.analysis import adata_schema as K
from proteodiff.analysis.classification import classify, summarize
from proteodiff.analysis.linearmodelfitter import LinearModelFitter
from proteodiff.analysis.statisticaltester import StatisticalTester
from proteodiff.analysis.stats_ops import bh_qvalues
from proteodiff.design.contrast import apply_contrasts
from proteodiff.design.contrastbuilder import ContrastBuilder, parse_contrasts
from proteodiff.design.designmatrixbuilder import DesignMatrixBuilder
from proteodiff.utils import semantics as S
from proteodiff.utils.utils import log_info, log_time, log_warning


@dataclass
class LimmaResult:
    tables: Dict[str, pd.DataFrame]                 # contrast name -> DEG table
    contrasts: Dict[str, Tuple[str, str]]           # contrast name -> (A, B), meaning A - B
    summary: pd.DataFrame
    adata: ad.AnnData
    pilot_mode: bool
    q_threshold: float
    fc_threshold: float
    prior: Dict[str, float] = field(default_factory=dict)

    @property
    def contrast_names(self):
        return list(self.tables)


def _analysis_settings(config: dict) -> dict:
    analysis_cfg = (config or {}).get("analysis", {}) or {}
    return {
        "reference": analysis_cfg.get("reference"),
        "contrasts": analysis_cfg.get("contrasts"),
        "q_threshold": float(analysis_cfg.get("sign_threshold", S.DEFAULT_SIGN_THRESHOLD)),
        "fc_threshold": float(analysis_cfg.get("fc_threshold", S.DEFAULT_FC_THRESHOLD)),
        "confint": float(analysis_cfg.get("confint", S.DEFAULT_CONFINT)),
        "n_jobs": int(analysis_cfg.get("n_jobs", 1)),
    }


def build_deg_table(
    stats: Dict[str, np.ndarray],
    q: np.ndarray,
    j: int,
    feature_ids,
    amean: np.ndarray,
    annotation: pd.DataFrame,
    q_threshold: float,
    fc_threshold: float,
) -> pd.DataFrame:
    """One DEG table, all features, ranked by moderated p-value (NaN last)."""
    lfc = stats["log2fc"][:, j]
    regulation = classify(q[:, j], lfc, q_threshold, fc_threshold)

    df = pd.DataFrame({
        S.COL_FEATURE_ID: np.asarray(feature_ids).astype(str),
        S.COL_LOG2FC: lfc,
        S.COL_SE: stats["se"][:, j],
        S.COL_CI_LOW: stats["ci_low"][:, j],
        S.COL_CI_HIGH: stats["ci_high"][:, j],
        S.COL_AVG: amean,
        S.COL_T_RAW: stats["t_raw"][:, j],
        S.COL_P_RAW: stats["p_raw"][:, j],
        S.COL_T: stats["t"][:, j],
        S.COL_P: stats["p"][:, j],
        S.COL_Q: q[:, j],
        S.COL_B: stats["b"][:, j],
        S.COL_REGULATION: [r.value for r in regulation],
    })
    if annotation is not None and annotation.shape[1]:
        ann = annotation.reset_index(drop=True)
        ann = ann[[c for c in ann.columns if c not in df.columns]]
        df = pd.concat([df, ann], axis=1)

    order = np.lexsort((np.arange(len(df)), np.nan_to_num(df[S.COL_P].to_numpy(), nan=np.inf)))
    return df.iloc[order].reset_index(drop=True)


@log_time("Analysis pipeline")
def run_limma_pipeline(adata: ad.AnnData, config: dict) -> LimmaResult:
    """Standard limma workflow on `adata.X` (normalized, samples x features) with eBayes."""
    cfg = _analysis_settings(config)
    obs = adata.obs.copy()

    levels = list((adata.uns.get("preprocessing", {}) or {}).get("levels") or [])
    if not levels:
        levels = list((config or {}).get("dataset", {}).get("levels") or sorted(obs[S.CONDITION].unique()))
    levels = [str(l) for l in levels]

    # Contrasts are validated against the declared levels before any fit
    contrasts = parse_contrasts(cfg["contrasts"], levels, cfg["reference"])
    required = {g for pair in contrasts.values() for g in pair}

    builder = DesignMatrixBuilder(obs, levels, group_column=S.CONDITION, required_levels=required)
    design_matrix, design_info = builder.build()
    log_info(f"Design: {builder.formula} with levels {builder.levels}")

    contrast_matrix, contrast_names = ContrastBuilder(design_info).build(contrasts)
    log_info(f"Contrasts: {', '.join(contrast_names)}")

    # Expression: features x samples
    Y = np.asarray(adata.X, dtype=np.float64).T
    feature_ids = adata.var_names.tolist()

    fitter = LinearModelFitter(Y, design_matrix, n_jobs=cfg["n_jobs"]).fit()
    fit = fitter.get_results()
    n_failed = int(np.all(~np.isfinite(fit["coefficients"]), axis=1).sum())
    if n_failed:
        log_warning(f"{n_failed} feature(s) could not be fitted (no observed values); kept with NaN statistics")

    log2fc, stdu = apply_contrasts(fit, contrast_matrix)

    tester = StatisticalTester(
        log2fc, stdu, fit["residual_variance"], fit["df_residual"],
        contrast_names, confint=cfg["confint"],
    )
    stats = tester.compute()
    q = bh_qvalues(stats["p"])

    observed = np.isfinite(Y)
    n_obs = observed.sum(axis=1)
    with np.errstate(invalid="ignore", divide="ignore"):
        amean = np.where(observed, Y, 0.0).sum(axis=1) / n_obs
    amean[n_obs == 0] = np.nan

    tables = {
        name: build_deg_table(stats, q, j, feature_ids, amean, adata.var,
                              cfg["q_threshold"], cfg["fc_threshold"])
        for j, name in enumerate(contrast_names)
    }
    summary = summarize(tables, cfg["q_threshold"], cfg["fc_threshold"])
    for _, row in summary.iterrows():
        log_info(f"{row['CONTRAST']}: {row['N_UP']} up, {row['N_DOWN']} down, "
                 f"{row['N_NOT_SIGNIFICANT']} not significant")

    # Assemble into AnnData
    out = adata.copy()
    out.varm[K.VARM_LOG2FC] = stats["log2fc"]
    out.varm[K.VARM_SE] = stats["se"]
    out.varm[K.VARM_CI_LOW] = stats["ci_low"]
    out.varm[K.VARM_CI_HIGH] = stats["ci_high"]
    out.varm[K.VARM_T_RAW] = stats["t_raw"]
    out.varm[K.VARM_P_RAW] = stats["p_raw"]
    out.varm[K.VARM_T_EBAYES] = stats["t"]
    out.varm[K.VARM_P_EBAYES] = stats["p"]
    out.varm[K.VARM_Q_EBAYES] = q
    out.varm[K.VARM_B] = stats["b"]

    prior = {"s2_prior": float(stats["s2_prior"]), "df_prior": float(stats["df_prior"])}
    out.uns[K.UNS_CONTRAST_NAMES] = list(contrast_names)
    out.uns[K.UNS_CONTRASTS] = {n: list(pair) for n, pair in contrasts.items()}
    out.uns[K.UNS_PILOT_MODE] = bool(tester.pilot_mode)
    out.uns[K.UNS_PRIOR] = prior
    out.uns[K.UNS_THRESHOLDS] = {
        "sign_threshold": cfg["q_threshold"],
        "fc_threshold": cfg["fc_threshold"],
        "confint": cfg["confint"],
    }

    return LimmaResult(
        tables=tables,
        contrasts=contrasts,
        summary=summary,
        adata=out,
        pilot_mode=bool(tester.pilot_mode),
        q_threshold=cfg["q_threshold"],
        fc_threshold=cfg["fc_threshold"],
        prior=prior,
    )
